from __future__ import annotations

from ..extensions import db
from branch_ledger.time_utils import to_utc_z


class Customer(db.Model):
    """
    Buyer on a sale or credit transaction.

    Phone is the natural key: a sale that brings inline customer details
    reuses the customer with that phone instead of creating a duplicate.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("phone", name="uq_customers_phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    address = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone": self.phone,
            "address": self.address,
            "created_at": to_utc_z(self.created_at),
        }
