from __future__ import annotations

from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from branch_ledger.time_utils import to_utc_z


TRANSACTION_TYPE_SALE = "SALE"
TRANSACTION_TYPE_PURCHASE = "PURCHASE"
TRANSACTION_TYPE_TRANSFER = "TRANSFER"
TRANSACTION_TYPE_RETURN = "RETURN"
TRANSACTION_TYPE_WRITE_OFF = "WRITE_OFF"
TRANSACTION_TYPE_STOCK_ADJUSTMENT = "STOCK_ADJUSTMENT"

TRANSACTION_STATUS_PENDING = "PENDING"
TRANSACTION_STATUS_COMPLETED = "COMPLETED"
TRANSACTION_STATUS_CANCELLED = "CANCELLED"

TRANSACTION_STATUSES = (
    TRANSACTION_STATUS_PENDING,
    TRANSACTION_STATUS_COMPLETED,
    TRANSACTION_STATUS_CANCELLED,
)

PAYMENT_TYPE_CASH = "CASH"
PAYMENT_TYPE_CARD = "CARD"
PAYMENT_TYPE_CREDIT = "CREDIT"
PAYMENT_TYPE_INSTALLMENT = "INSTALLMENT"

PAYMENT_TYPES = (
    PAYMENT_TYPE_CASH,
    PAYMENT_TYPE_CARD,
    PAYMENT_TYPE_CREDIT,
    PAYMENT_TYPE_INSTALLMENT,
)
DEFERRED_PAYMENT_TYPES = (PAYMENT_TYPE_CREDIT, PAYMENT_TYPE_INSTALLMENT)


class Transaction(db.Model):
    """
    Header of a stock movement (sale, purchase, transfer, return, write-off,
    adjustment).

    TOTALS: total_cents = sum of item totals, final_total_cents = total - discount.
    remaining_balance_cents is derived from final total and amount paid and is
    never stored, so it cannot drift.

    VERSIONING: repayments stamp last_repayment_date concurrently, so the row is
    optimistically versioned.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_from_branch_created", "from_branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(24), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=TRANSACTION_STATUS_PENDING, index=True)

    from_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    to_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    final_total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_type = db.Column(db.String(16), nullable=True)
    delivery_method = db.Column(db.String(32), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    last_repayment_date = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "TransactionItem",
        backref="transaction",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TransactionItem.id",
    )
    history_entries = db.relationship("StockHistoryEntry", lazy=True, viewonly=True, order_by="StockHistoryEntry.id")
    customer = db.relationship("Customer", backref=db.backref("transactions", lazy=True))
    from_branch = db.relationship("Branch", foreign_keys=[from_branch_id])
    to_branch = db.relationship("Branch", foreign_keys=[to_branch_id])
    user = db.relationship("User", foreign_keys=[user_id])

    __mapper_args__ = {"version_id_col": version_id}

    @hybrid_property
    def remaining_balance_cents(self):
        return self.final_total_cents - self.amount_paid_cents

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} type={self.type} status={self.status} final={self.final_total_cents}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "from_branch_id": self.from_branch_id,
            "to_branch_id": self.to_branch_id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "total_cents": self.total_cents,
            "discount_cents": self.discount_cents,
            "final_total_cents": self.final_total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "remaining_balance_cents": self.remaining_balance_cents,
            "payment_type": self.payment_type,
            "delivery_method": self.delivery_method,
            "note": self.note,
            "last_repayment_date": to_utc_z(self.last_repayment_date),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["stock_history"] = [entry.to_dict() for entry in self.history_entries]
            data["customer"] = self.customer.to_dict() if self.customer else None
        return data


class TransactionItem(db.Model):
    __tablename__ = "transaction_items"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Signed for STOCK_ADJUSTMENT, positive otherwise
    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    # Credit terms captured at sale time (schedule generation happens elsewhere)
    credit_months = db.Column(db.Integer, nullable=True)
    credit_percent_bps = db.Column(db.Integer, nullable=True)
    monthly_payment_cents = db.Column(db.Integer, nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "total_cents": self.total_cents,
            "credit_months": self.credit_months,
            "credit_percent_bps": self.credit_percent_bps,
            "monthly_payment_cents": self.monthly_payment_cents,
        }
