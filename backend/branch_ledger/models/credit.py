from __future__ import annotations

from ..extensions import db
from branch_ledger.time_utils import to_utc_z


REPAYMENT_CHANNEL_CASH = "CASH"
REPAYMENT_CHANNEL_CARD = "CARD"
REPAYMENT_CHANNEL_TRANSFER = "TRANSFER"

REPAYMENT_CHANNELS = (
    REPAYMENT_CHANNEL_CASH,
    REPAYMENT_CHANNEL_CARD,
    REPAYMENT_CHANNEL_TRANSFER,
)


class PaymentSchedule(db.Model):
    """
    One month of a credit/installment plan.

    Rows are generated by the schedule calculator outside this service; the
    ledger only records money against them. paid_amount_cents never decreases
    through the ledger, and is_paid implies paid_amount_cents >= payment_cents.

    VERSIONING: two cashiers may post against the same month at once; the
    optimistic version check turns the loser into a retry instead of a lost update.
    """
    __tablename__ = "payment_schedules"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "month", name="uq_payment_schedules_transaction_month"),
        db.CheckConstraint("paid_amount_cents >= 0", name="ck_payment_schedules_paid_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)

    month = db.Column(db.Integer, nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_cents = db.Column(db.Integer, nullable=False)
    remaining_balance_cents = db.Column(db.Integer, nullable=True)

    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    repayment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_channel = db.Column(db.String(16), nullable=True)
    paid_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    rating = db.Column(db.String(32), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    transaction = db.relationship(
        "Transaction",
        backref=db.backref("payment_schedules", lazy=True, order_by="PaymentSchedule.month"),
    )
    paid_by = db.relationship("User")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<PaymentSchedule id={self.id} tx={self.transaction_id} month={self.month} paid={self.paid_amount_cents}/{self.payment_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "month": self.month,
            "due_date": to_utc_z(self.due_date),
            "payment_cents": self.payment_cents,
            "remaining_balance_cents": self.remaining_balance_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "is_paid": self.is_paid,
            "paid_at": to_utc_z(self.paid_at),
            "repayment_date": to_utc_z(self.repayment_date),
            "paid_channel": self.paid_channel,
            "paid_by_user_id": self.paid_by_user_id,
            "rating": self.rating,
            "note": self.note,
            "version_id": self.version_id,
        }


class PaymentRepayment(db.Model):
    """
    Append-only record of money received against a schedule row.

    branch_id is the branch the money was credited to; cash_posted tells
    whether the amount also moved that branch's cash balance (CASH channel only).
    """
    __tablename__ = "payment_repayments"
    __table_args__ = (
        db.UniqueConstraint("schedule_id", "idempotency_key", name="uq_payment_repayments_schedule_key"),
        db.Index("ix_payment_repayments_branch_paid_at", "branch_id", "paid_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    schedule_id = db.Column(db.Integer, db.ForeignKey("payment_schedules.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    channel = db.Column(db.String(16), nullable=False, default=REPAYMENT_CHANNEL_CASH)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)

    paid_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    cash_posted = db.Column(db.Boolean, nullable=False, default=False)

    idempotency_key = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    schedule = db.relationship("PaymentSchedule", backref=db.backref("repayments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "schedule_id": self.schedule_id,
            "amount_cents": self.amount_cents,
            "channel": self.channel,
            "paid_at": to_utc_z(self.paid_at),
            "paid_by_user_id": self.paid_by_user_id,
            "branch_id": self.branch_id,
            "cash_posted": self.cash_posted,
            "idempotency_key": self.idempotency_key,
            "created_at": to_utc_z(self.created_at),
        }
