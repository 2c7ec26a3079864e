from __future__ import annotations

from ..extensions import db
from branch_ledger.time_utils import to_utc_z


# Product condition status
PRODUCT_STATUS_IN_STORE = "IN_STORE"
PRODUCT_STATUS_IN_WAREHOUSE = "IN_WAREHOUSE"
PRODUCT_STATUS_PRE_ORDER = "PRE_ORDER"
PRODUCT_STATUS_SOLD = "SOLD"
PRODUCT_STATUS_DEFECTIVE = "DEFECTIVE"
PRODUCT_STATUS_FIXED = "FIXED"
PRODUCT_STATUS_RETURNED = "RETURNED"
PRODUCT_STATUS_EXCHANGED = "EXCHANGED"

PRODUCT_STATUSES = (
    PRODUCT_STATUS_IN_STORE,
    PRODUCT_STATUS_IN_WAREHOUSE,
    PRODUCT_STATUS_PRE_ORDER,
    PRODUCT_STATUS_SOLD,
    PRODUCT_STATUS_DEFECTIVE,
    PRODUCT_STATUS_FIXED,
    PRODUCT_STATUS_RETURNED,
    PRODUCT_STATUS_EXCHANGED,
)

# Stock history entry types
HISTORY_INFLOW = "INFLOW"
HISTORY_OUTFLOW = "OUTFLOW"
HISTORY_RETURN = "RETURN"
HISTORY_ADJUSTMENT = "ADJUSTMENT"
HISTORY_TRANSFER_IN = "TRANSFER_IN"
HISTORY_TRANSFER_OUT = "TRANSFER_OUT"

HISTORY_TYPES = (
    HISTORY_INFLOW,
    HISTORY_OUTFLOW,
    HISTORY_RETURN,
    HISTORY_ADJUSTMENT,
    HISTORY_TRANSFER_IN,
    HISTORY_TRANSFER_OUT,
)


class Product(db.Model):
    """
    A stock-keeping unit held at one branch.

    BUCKETS: quantity is the in-store count. defective/returned/exchanged are
    condition counters maintained by the condition state machine. All four are
    non-negative, enforced both by the guarded UPDATEs in balance_service and by
    CHECK constraints here.

    IDENTITY: the same article at another branch is a separate row, matched by
    (branch_id, name, model). Transfers rely on that key to find or create the
    destination row.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "name", "model", name="uq_products_branch_name_model"),
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_nonneg"),
        db.CheckConstraint("defective_quantity >= 0", name="ck_products_defective_nonneg"),
        db.CheckConstraint("returned_quantity >= 0", name="ck_products_returned_nonneg"),
        db.CheckConstraint("exchanged_quantity >= 0", name="ck_products_exchanged_nonneg"),
        db.Index("ix_products_branch_status", "branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    model = db.Column(db.String(255), nullable=False, default="")
    barcode = db.Column(db.String(64), nullable=True, index=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    defective_quantity = db.Column(db.Integer, nullable=False, default=0)
    returned_quantity = db.Column(db.Integer, nullable=False, default=0)
    exchanged_quantity = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_IN_STORE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} branch_id={self.branch_id} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "name": self.name,
            "model": self.model,
            "barcode": self.barcode,
            "price_cents": self.price_cents,
            "quantity": self.quantity,
            "defective_quantity": self.defective_quantity,
            "returned_quantity": self.returned_quantity,
            "exchanged_quantity": self.exchanged_quantity,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockHistoryEntry(db.Model):
    """
    Append-only movement record: one row per product per branch per movement.

    quantity is signed (negative for outbound), so summing a product's rows
    gives the net movement the ledger has seen.
    """
    __tablename__ = "stock_history"
    __table_args__ = (
        db.Index("ix_stock_history_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product")
    branch = db.relationship("Branch")
    created_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "branch_id": self.branch_id,
            "transaction_id": self.transaction_id,
            "type": self.type,
            "quantity": self.quantity,
            "description": self.description,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
