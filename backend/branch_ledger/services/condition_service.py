# backend/branch_ledger/services/condition_service.py
"""
Condition state machine: defective, fixed, returned and exchanged stock.

WHY: a condition action moves units between a product's buckets and moves
money in or out of the branch. Both happen in the same database transaction
as the append-only ConditionLog row, so the log's cash_amount_cents always
equals the cash that actually moved.

ACTIONS (see CONDITION_RULES):
- DEFECTIVE: in-store -> defective (in-store untouched for units already
  sold). The unit price times quantity is written off the branch cash.
  Status DEFECTIVE when the shelf empties.
- FIXED: defective -> in-store. The write-off is reversed (positive cash).
  Status IN_STORE.
- RETURN: in-store +qty, returned +qty. Refund paid out (negative cash) unless
  overridden. Status RETURNED.
- EXCHANGE: in-store +qty, exchanged +qty; an optional replacement product
  leaves the shelf. Customer pays the difference (positive cash) unless
  overridden. Status EXCHANGED.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import func

from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..extensions import db
from ..models import ConditionLog, Product, Transaction, TransactionItem, User
from ..models.conditions import (
    CONDITION_ACTION_DEFECTIVE,
    CONDITION_ACTION_EXCHANGE,
    CONDITION_ACTION_FIXED,
    CONDITION_ACTION_RETURN,
    CONDITION_ACTIONS,
)
from ..models.inventory import (
    PRODUCT_STATUS_DEFECTIVE,
    PRODUCT_STATUS_EXCHANGED,
    PRODUCT_STATUS_FIXED,
    PRODUCT_STATUS_IN_STORE,
    PRODUCT_STATUS_RETURNED,
)
from ..models.transactions import TRANSACTION_TYPE_SALE
from ..validation import enforce_rules_condition
from .balance_service import (
    adjust_branch_cash,
    adjust_product_buckets,
    adjust_product_quantity,
    fixed_status,
    get_branch,
    status_when_empty,
)
from .concurrency import lock_for_update, run_with_retry


CASH_DIRECTION_PLUS = "PLUS"
CASH_DIRECTION_MINUS = "MINUS"

# Statuses a product can be listed by through list_products_by_condition
CONDITION_STATUSES = (
    PRODUCT_STATUS_DEFECTIVE,
    PRODUCT_STATUS_FIXED,
    PRODUCT_STATUS_RETURNED,
    PRODUCT_STATUS_EXCHANGED,
)


@dataclass(frozen=True)
class CashOverride:
    """Manual cash amount for RETURN/EXCHANGE; direction PLUS or MINUS."""
    amount_cents: int
    direction: str


@dataclass(frozen=True)
class ConditionRule:
    """
    Effects of one condition action.

    default_cash_sign multiplies price * quantity (0 = no cash).
    The *_sign fields multiply quantity for each bucket.
    in_store_sign_from_sale applies when the units come back from a sale.
    """
    default_cash_sign: int
    allows_cash_override: bool
    in_store_sign: int
    in_store_sign_from_sale: int
    defective_sign: int
    returned_sign: int
    exchanged_sign: int
    status_rule: Callable
    allows_replacement: bool = False


CONDITION_RULES: dict[str, ConditionRule] = {
    CONDITION_ACTION_DEFECTIVE: ConditionRule(
        default_cash_sign=-1,
        allows_cash_override=False,
        in_store_sign=-1,
        in_store_sign_from_sale=0,
        defective_sign=1,
        returned_sign=0,
        exchanged_sign=0,
        status_rule=status_when_empty(PRODUCT_STATUS_DEFECTIVE, PRODUCT_STATUS_IN_STORE),
    ),
    CONDITION_ACTION_FIXED: ConditionRule(
        default_cash_sign=1,
        allows_cash_override=False,
        in_store_sign=1,
        in_store_sign_from_sale=1,
        defective_sign=-1,
        returned_sign=0,
        exchanged_sign=0,
        status_rule=fixed_status(PRODUCT_STATUS_IN_STORE),
    ),
    CONDITION_ACTION_RETURN: ConditionRule(
        default_cash_sign=-1,
        allows_cash_override=True,
        in_store_sign=1,
        in_store_sign_from_sale=1,
        defective_sign=0,
        returned_sign=1,
        exchanged_sign=0,
        status_rule=fixed_status(PRODUCT_STATUS_RETURNED),
    ),
    CONDITION_ACTION_EXCHANGE: ConditionRule(
        default_cash_sign=1,
        allows_cash_override=True,
        in_store_sign=1,
        in_store_sign_from_sale=1,
        defective_sign=0,
        returned_sign=0,
        exchanged_sign=1,
        status_rule=fixed_status(PRODUCT_STATUS_EXCHANGED),
        allows_replacement=True,
    ),
}


def _resolve_cash_amount(rule: ConditionRule, action_type: str, price_cents: int, quantity: int, override: CashOverride | None) -> int:
    if override is None:
        return rule.default_cash_sign * price_cents * quantity
    if not rule.allows_cash_override:
        raise ValidationError(f"Cash override is not allowed for {action_type}")
    direction = (override.direction or "").upper()
    if direction == CASH_DIRECTION_PLUS:
        return abs(override.amount_cents)
    if direction == CASH_DIRECTION_MINUS:
        return -abs(override.amount_cents)
    raise ValidationError(f"Invalid cash override direction: {override.direction}")


def _check_sale_link(transaction_id: int, product_id: int, quantity: int, action_type: str) -> None:
    """
    The originating sale must exist, have sold product_id, and still have
    enough units that have not come back through earlier linked actions.

    FIXED re-shelves units already counted by a linked DEFECTIVE, so it does
    not consume the remainder.
    """
    transaction = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
    if transaction is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    if transaction.type != TRANSACTION_TYPE_SALE:
        raise ValidationError(f"Transaction {transaction_id} is a {transaction.type}, not a {TRANSACTION_TYPE_SALE}")
    sold = (
        db.session.query(func.coalesce(func.sum(TransactionItem.quantity), 0))
        .filter(TransactionItem.transaction_id == transaction_id, TransactionItem.product_id == product_id)
        .scalar()
    )
    if not sold:
        raise ValidationError(f"Product {product_id} is not part of transaction {transaction_id}")
    if action_type == CONDITION_ACTION_FIXED:
        if quantity > sold:
            raise ValidationError(f"Quantity {quantity} exceeds the {sold} sold in transaction {transaction_id}")
        return

    already_back = (
        db.session.query(func.coalesce(func.sum(ConditionLog.quantity), 0))
        .filter(
            ConditionLog.transaction_id == transaction_id,
            ConditionLog.product_id == product_id,
            ConditionLog.action_type != CONDITION_ACTION_FIXED,
        )
        .scalar()
    )
    remaining = sold - already_back
    if quantity > remaining:
        raise ValidationError(
            f"Quantity {quantity} exceeds the {remaining} of {sold} sold in transaction {transaction_id} "
            f"not yet returned, exchanged or marked defective"
        )


def apply_condition_action(
    *,
    product_id: int,
    action_type: str,
    quantity: int,
    actor_user_id: int | None,
    branch_id: int | None = None,
    description: str | None = None,
    is_from_sale: bool = False,
    transaction_id: int | None = None,
    cash_override: CashOverride | None = None,
    replacement_product_id: int | None = None,
    replacement_quantity: int | None = None,
) -> dict:
    """
    Apply a condition action to a product and log it.

    Returns:
        dict with "log", "product", "branch" and, for exchanges with a
        replacement, "replacement_product" (all ORM objects).

    Raises:
        ValidationError: unknown action, bad quantity, override not allowed
        NotFoundError: product, branch, replacement or linked sale missing
        InsufficientStockError: not enough in-store stock (DEFECTIVE off the
            shelf, or the replacement product)
        AuthorizationError: no acting user
    """
    def _op():
        rule = CONDITION_RULES.get(action_type)
        if rule is None:
            raise ValidationError(f"Unsupported action type: {action_type}")
        enforce_rules_condition({"quantity": quantity, "replacement_quantity": replacement_quantity})

        if actor_user_id is None:
            raise AuthorizationError("An acting user is required")
        actor = db.session.get(User, actor_user_id)
        if actor is None:
            raise NotFoundError(f"User {actor_user_id} not found")

        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        target_branch_id = branch_id if branch_id is not None else product.branch_id
        get_branch(target_branch_id)

        if transaction_id is not None:
            _check_sale_link(transaction_id, product.id, quantity, action_type)

        if replacement_product_id is not None:
            if not rule.allows_replacement:
                raise ValidationError(f"A replacement product is only allowed for {CONDITION_ACTION_EXCHANGE}")
            replacement_source = db.session.get(Product, replacement_product_id)
            if replacement_source is None or replacement_source.branch_id != target_branch_id:
                raise NotFoundError(f"Product {replacement_product_id} not found in branch {target_branch_id}")

        cash_amount = _resolve_cash_amount(rule, action_type, product.price_cents, quantity, cash_override)

        in_store_sign = rule.in_store_sign_from_sale if is_from_sale else rule.in_store_sign
        updated = adjust_product_buckets(
            product.id,
            quantity=in_store_sign * quantity,
            defective=rule.defective_sign * quantity,
            returned=rule.returned_sign * quantity,
            exchanged=rule.exchanged_sign * quantity,
            status_rule=rule.status_rule,
        )

        replacement = None
        replacement_qty = None
        if replacement_product_id is not None:
            replacement_qty = replacement_quantity if replacement_quantity is not None else quantity
            replacement = adjust_product_quantity(replacement_product_id, -replacement_qty)

        branch = adjust_branch_cash(target_branch_id, cash_amount)

        log = ConditionLog(
            product_id=product.id,
            branch_id=target_branch_id,
            user_id=actor.id,
            action_type=action_type,
            quantity=quantity,
            cash_amount_cents=cash_amount,
            description=description,
            is_from_sale=bool(is_from_sale),
            transaction_id=transaction_id,
            replacement_product_id=replacement.id if replacement else None,
            replacement_quantity=replacement_qty,
        )
        db.session.add(log)
        db.session.commit()

        result = {"log": log, "product": updated, "branch": branch}
        if replacement is not None:
            result["replacement_product"] = replacement
        return result

    return run_with_retry(_op)


def mark_as_fixed(product_id: int, quantity: int, *, actor_user_id: int | None, description: str | None = None) -> dict:
    return apply_condition_action(
        product_id=product_id,
        action_type=CONDITION_ACTION_FIXED,
        quantity=quantity,
        actor_user_id=actor_user_id,
        description=description or "Marked as fixed",
    )


def get_condition_log(log_id: int) -> ConditionLog:
    log = db.session.get(ConditionLog, log_id)
    if log is None:
        raise NotFoundError(f"Condition log {log_id} not found")
    return log


def _filtered_logs(branch_id=None, action_type=None, start=None, end=None):
    query = db.session.query(ConditionLog)
    if branch_id is not None:
        query = query.filter(ConditionLog.branch_id == branch_id)
    if action_type is not None:
        if action_type not in CONDITION_ACTIONS:
            raise ValidationError(f"Unsupported action type: {action_type}")
        query = query.filter(ConditionLog.action_type == action_type)
    if start is not None:
        query = query.filter(ConditionLog.created_at >= start)
    if end is not None:
        query = query.filter(ConditionLog.created_at <= end)
    return query


def list_condition_logs(
    *,
    branch_id: int | None = None,
    action_type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[ConditionLog]:
    return (
        _filtered_logs(branch_id, action_type, start, end)
        .order_by(ConditionLog.created_at.desc(), ConditionLog.id.desc())
        .all()
    )


def list_condition_logs_for_product(product_id: int) -> list[ConditionLog]:
    return (
        db.session.query(ConditionLog)
        .filter(ConditionLog.product_id == product_id)
        .order_by(ConditionLog.created_at.desc(), ConditionLog.id.desc())
        .all()
    )


def condition_statistics(
    *,
    branch_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """
    Per-action totals over condition logs.

    Returns {"<ACTION>": {"quantity", "cash_amount_cents", "count"}, ...,
    "total_cash_flow_cents"} with every action present, zeros included.
    """
    rows = (
        _filtered_logs(branch_id, None, start, end)
        .with_entities(
            ConditionLog.action_type,
            func.coalesce(func.sum(ConditionLog.quantity), 0),
            func.coalesce(func.sum(ConditionLog.cash_amount_cents), 0),
            func.count(ConditionLog.id),
        )
        .group_by(ConditionLog.action_type)
        .all()
    )

    stats = {
        action: {"quantity": 0, "cash_amount_cents": 0, "count": 0}
        for action in CONDITION_ACTIONS
    }
    total_cash = 0
    for action, quantity, cash, count in rows:
        stats[action] = {"quantity": int(quantity), "cash_amount_cents": int(cash), "count": int(count)}
        total_cash += int(cash)

    stats["total_cash_flow_cents"] = total_cash
    return stats


def list_products_by_condition(status: str, *, branch_id: int | None = None) -> list[Product]:
    if status not in CONDITION_STATUSES:
        raise ValidationError(f"Invalid condition status: {status}")
    query = db.session.query(Product).filter(Product.status == status)
    if branch_id is not None:
        query = query.filter(Product.branch_id == branch_id)
    return query.order_by(Product.updated_at.desc(), Product.id.desc()).all()
