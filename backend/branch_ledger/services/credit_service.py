# backend/branch_ledger/services/credit_service.py
"""
Credit repayment ledger: money received against installment schedule rows.

WHY: a schedule row is edited by clients in two shapes, "paid so far is now X"
(absolute) and "received Y more" (delta). Both are reduced to one non-negative
delta before anything is written, and only that delta becomes a
PaymentRepayment and, for cash, a branch cash posting. Rewriting a paid amount
downward, or re-sending the same absolute amount, therefore moves no money.

DESIGN:
- The schedule row is optimistically versioned. A concurrent update of the
  same row fails with ConflictError instead of double-posting; the caller
  re-sends and the delta is then computed against the latest paid amount.
- Cash goes to the receiving user's branch, falling back to the branch that
  made the sale.
- idempotency_key makes client retries of a delta a no-op.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import PaymentRepayment, PaymentSchedule, Transaction, User
from ..models.credit import REPAYMENT_CHANNEL_CASH, REPAYMENT_CHANNELS
from ..time_utils import utcnow
from ..validation import enforce_rules_schedule_metadata
from .balance_service import adjust_branch_cash
from .concurrency import lock_for_update, run_with_retry


# Schedule columns a client may set directly alongside a payment
SCHEDULE_METADATA_FIELDS = {"rating", "note", "due_date"}


@dataclass(frozen=True)
class ScheduleRow:
    """One month as produced by the schedule calculator."""
    month: int
    payment_cents: int
    due_date: datetime | None = None
    remaining_balance_cents: int | None = None


def _get_locked_schedule(schedule_id: int) -> PaymentSchedule:
    schedule = lock_for_update(db.session.query(PaymentSchedule).filter_by(id=schedule_id)).first()
    if not schedule:
        raise NotFoundError(f"Payment schedule {schedule_id} not found")
    return schedule


def _resolve_payment_delta(existing_paid: int, paid_amount_cents: int | None, amount_delta_cents: int | None) -> int:
    if amount_delta_cents is not None:
        return max(0, amount_delta_cents)
    if paid_amount_cents is not None:
        return max(0, paid_amount_cents - existing_paid)
    return 0


def _resolve_credit_branch(paid_by: User | None, transaction: Transaction) -> int:
    if paid_by is not None and paid_by.branch_id is not None:
        return paid_by.branch_id
    return transaction.from_branch_id


def update_schedule(
    schedule_id: int,
    *,
    actor_user_id: int | None = None,
    paid_amount_cents: int | None = None,
    amount_delta_cents: int | None = None,
    is_paid: bool | None = None,
    paid_at: datetime | None = None,
    paid_channel: str | None = None,
    paid_by_user_id: int | None = None,
    idempotency_key: str | None = None,
    metadata: dict | None = None,
) -> PaymentSchedule:
    """
    Record a payment (or a metadata edit) against a schedule row.

    Exactly one of paid_amount_cents (absolute, cumulative) or
    amount_delta_cents (increment) may be given. Negative deltas and absolute
    amounts below what is already paid are clamped to zero movement.

    Side effects when the resolved delta is positive:
    - schedule.paid_amount_cents grows by delta
    - a PaymentRepayment is written
    - CASH channel: the credited branch's cash grows by delta
    - the transaction's last_repayment_date is stamped

    Raises:
        ValidationError: both amount forms, unknown channel or metadata field
        NotFoundError: schedule or paid-by user missing
        ConflictError: is_paid=True while paid amount is below the due amount
    """
    metadata = dict(metadata or {})

    def _op():
        if paid_amount_cents is not None and amount_delta_cents is not None:
            raise ValidationError("Send either paid_amount_cents or amount_delta_cents, not both")

        channel = str(paid_channel or REPAYMENT_CHANNEL_CASH).upper()
        if channel not in REPAYMENT_CHANNELS:
            raise ValidationError(f"Invalid paid_channel: {paid_channel}")

        unknown = set(metadata) - SCHEDULE_METADATA_FIELDS
        if unknown:
            raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
        enforce_rules_schedule_metadata(metadata)

        schedule = _get_locked_schedule(schedule_id)
        transaction = lock_for_update(
            db.session.query(Transaction).filter_by(id=schedule.transaction_id)
        ).first()
        if not transaction:
            raise NotFoundError(f"Transaction {schedule.transaction_id} not found")

        if idempotency_key:
            replay = db.session.query(PaymentRepayment).filter_by(
                schedule_id=schedule.id,
                idempotency_key=idempotency_key,
            ).first()
            if replay:
                return schedule

        payer_id = paid_by_user_id if paid_by_user_id is not None else actor_user_id
        paid_by = None
        if payer_id is not None:
            paid_by = db.session.get(User, payer_id)
            if paid_by is None:
                raise NotFoundError(f"User {payer_id} not found")

        existing_paid = schedule.paid_amount_cents or 0
        delta = _resolve_payment_delta(existing_paid, paid_amount_cents, amount_delta_cents)
        new_paid = existing_paid + delta
        effective_paid_at = paid_at or (utcnow() if delta > 0 else None)

        if is_paid is not None:
            if is_paid and new_paid < schedule.payment_cents:
                raise ConflictError(
                    f"Cannot mark schedule {schedule.id} paid: {new_paid} of {schedule.payment_cents} received"
                )
            schedule.is_paid = is_paid

        if delta > 0:
            schedule.paid_amount_cents = new_paid
            schedule.paid_channel = channel
        elif paid_channel is not None:
            schedule.paid_channel = channel

        if effective_paid_at is not None:
            schedule.paid_at = effective_paid_at
            schedule.repayment_date = effective_paid_at

        if paid_by is not None:
            schedule.paid_by_user_id = paid_by.id

        for key, value in metadata.items():
            setattr(schedule, key, value)

        if delta > 0:
            branch_id = _resolve_credit_branch(paid_by, transaction)
            cash_posted = channel == REPAYMENT_CHANNEL_CASH
            if cash_posted:
                adjust_branch_cash(branch_id, delta)

            db.session.add(PaymentRepayment(
                transaction_id=transaction.id,
                schedule_id=schedule.id,
                amount_cents=delta,
                channel=channel,
                paid_at=effective_paid_at,
                paid_by_user_id=paid_by.id if paid_by else None,
                branch_id=branch_id,
                cash_posted=cash_posted,
                idempotency_key=idempotency_key,
            ))
            transaction.last_repayment_date = effective_paid_at

        db.session.commit()
        return schedule

    return run_with_retry(_op)


def get_schedule(schedule_id: int) -> PaymentSchedule:
    schedule = db.session.get(PaymentSchedule, schedule_id)
    if schedule is None:
        raise NotFoundError(f"Payment schedule {schedule_id} not found")
    return schedule


def attach_schedules(transaction_id: int, rows: list[ScheduleRow]) -> list[PaymentSchedule]:
    """
    Persist schedule rows computed by the schedule calculator for a transaction.

    A transaction gets its schedule once; attaching again is a ConflictError.
    """
    def _op():
        if not rows:
            raise ValidationError("At least one schedule row is required")
        months = [row.month for row in rows]
        if len(set(months)) != len(months):
            raise ValidationError("Schedule months must be unique")
        for row in rows:
            if row.month <= 0:
                raise ValidationError("month must be > 0")
            if row.payment_cents <= 0:
                raise ValidationError("payment_cents must be > 0")

        transaction = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
        if not transaction:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if db.session.query(PaymentSchedule.id).filter_by(transaction_id=transaction_id).first():
            raise ConflictError(f"Transaction {transaction_id} already has a payment schedule")

        created = []
        for row in sorted(rows, key=lambda r: r.month):
            schedule = PaymentSchedule(
                transaction_id=transaction_id,
                month=row.month,
                due_date=row.due_date,
                payment_cents=row.payment_cents,
                remaining_balance_cents=row.remaining_balance_cents,
                paid_amount_cents=0,
                is_paid=False,
            )
            db.session.add(schedule)
            created.append(schedule)

        db.session.commit()
        return created

    return run_with_retry(_op)


def list_repayments(
    *,
    transaction_id: int | None = None,
    schedule_id: int | None = None,
    branch_id: int | None = None,
    paid_by_user_id: int | None = None,
    channel: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[PaymentRepayment]:
    query = db.session.query(PaymentRepayment)
    if transaction_id is not None:
        query = query.filter(PaymentRepayment.transaction_id == transaction_id)
    if schedule_id is not None:
        query = query.filter(PaymentRepayment.schedule_id == schedule_id)
    if branch_id is not None:
        query = query.filter(PaymentRepayment.branch_id == branch_id)
    if paid_by_user_id is not None:
        query = query.filter(PaymentRepayment.paid_by_user_id == paid_by_user_id)
    if channel is not None:
        query = query.filter(PaymentRepayment.channel == channel.upper())
    if start is not None:
        query = query.filter(PaymentRepayment.paid_at >= start)
    if end is not None:
        query = query.filter(PaymentRepayment.paid_at <= end)
    return query.order_by(PaymentRepayment.paid_at.desc(), PaymentRepayment.id.desc()).all()
