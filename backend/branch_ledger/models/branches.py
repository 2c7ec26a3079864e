from __future__ import annotations

from ..extensions import db
from branch_ledger.time_utils import to_utc_z


class Branch(db.Model):
    """
    A physical branch: the holder of product stock and of a cash drawer balance.

    CASH: cash_balance_cents is a shared resource. It is only ever written by
    services.balance_service.adjust_branch_cash, which applies a signed delta in a
    single UPDATE so concurrent postings never overwrite each other.

    opening_balance_cents is the cash the branch started with; reconciliation adds
    the append-only ledgers (condition logs, cash repayments) on top of it.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_branches_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    address = db.Column(db.String(255), nullable=True)

    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r} cash={self.cash_balance_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "opening_balance_cents": self.opening_balance_cents,
            "cash_balance_cents": self.cash_balance_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
