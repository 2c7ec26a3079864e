# Overview: Recomputes branch cash from the append-only ledgers.

"""
Cash reconciliation.

A branch's cash balance must equal its opening balance plus every signed
condition-log cash amount and every CASH repayment posted to it. Both ledgers
are insert-only, so the expected balance can always be rebuilt from them and
compared with the running counter.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass

from sqlalchemy import func

from ..extensions import db
from ..models import Branch, ConditionLog, PaymentRepayment
from ..errors import NotFoundError


@dataclass(frozen=True)
class CashReconciliation:
    branch_id: int
    branch_name: str
    opening_balance_cents: int
    condition_cash_cents: int
    cash_repayments_cents: int
    expected_balance_cents: int
    actual_balance_cents: int

    @property
    def difference_cents(self) -> int:
        return self.actual_balance_cents - self.expected_balance_cents

    @property
    def balanced(self) -> bool:
        return self.difference_cents == 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["difference_cents"] = self.difference_cents
        data["balanced"] = self.balanced
        return data


def reconcile_branch_cash(branch_id: int) -> CashReconciliation:
    branch = db.session.get(Branch, branch_id, populate_existing=True)
    if branch is None:
        raise NotFoundError(f"Branch {branch_id} not found")

    condition_cash = (
        db.session.query(func.coalesce(func.sum(ConditionLog.cash_amount_cents), 0))
        .filter(ConditionLog.branch_id == branch.id)
        .scalar()
    )
    repayments = (
        db.session.query(func.coalesce(func.sum(PaymentRepayment.amount_cents), 0))
        .filter(PaymentRepayment.branch_id == branch.id, PaymentRepayment.cash_posted.is_(True))
        .scalar()
    )

    opening = branch.opening_balance_cents or 0
    return CashReconciliation(
        branch_id=branch.id,
        branch_name=branch.name,
        opening_balance_cents=opening,
        condition_cash_cents=int(condition_cash),
        cash_repayments_cents=int(repayments),
        expected_balance_cents=opening + int(condition_cash) + int(repayments),
        actual_balance_cents=branch.cash_balance_cents,
    )


def reconcile_all_branches() -> list[CashReconciliation]:
    branch_ids = [row.id for row in db.session.query(Branch.id).order_by(Branch.id).all()]
    return [reconcile_branch_cash(branch_id) for branch_id in branch_ids]
