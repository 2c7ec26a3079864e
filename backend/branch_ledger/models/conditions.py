from __future__ import annotations

from ..extensions import db
from branch_ledger.time_utils import to_utc_z


CONDITION_ACTION_DEFECTIVE = "DEFECTIVE"
CONDITION_ACTION_FIXED = "FIXED"
CONDITION_ACTION_RETURN = "RETURN"
CONDITION_ACTION_EXCHANGE = "EXCHANGE"

CONDITION_ACTIONS = (
    CONDITION_ACTION_DEFECTIVE,
    CONDITION_ACTION_FIXED,
    CONDITION_ACTION_RETURN,
    CONDITION_ACTION_EXCHANGE,
)


class ConditionLog(db.Model):
    """
    Append-only record of a condition action on a product.

    cash_amount_cents is signed: negative is a refund paid out of the branch,
    positive is money taken in. The branch's cash moved by exactly this amount
    in the same database transaction that wrote the row.
    """
    __tablename__ = "condition_logs"
    __table_args__ = (
        db.Index("ix_condition_logs_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    action_type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    cash_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    description = db.Column(db.String(255), nullable=True)

    is_from_sale = db.Column(db.Boolean, nullable=False, default=False)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)

    replacement_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    replacement_quantity = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", foreign_keys=[product_id])
    replacement_product = db.relationship("Product", foreign_keys=[replacement_product_id])
    branch = db.relationship("Branch")
    user = db.relationship("User")

    def __repr__(self) -> str:
        return f"<ConditionLog id={self.id} action={self.action_type} product_id={self.product_id} cash={self.cash_amount_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "branch_id": self.branch_id,
            "user_id": self.user_id,
            "action_type": self.action_type,
            "quantity": self.quantity,
            "cash_amount_cents": self.cash_amount_cents,
            "description": self.description,
            "is_from_sale": self.is_from_sale,
            "transaction_id": self.transaction_id,
            "replacement_product_id": self.replacement_product_id,
            "replacement_quantity": self.replacement_quantity,
            "created_at": to_utc_z(self.created_at),
        }
