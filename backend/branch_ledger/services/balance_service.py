# Overview: Atomic writers for the two shared counters: product buckets and branch cash.

"""
Product stock and branch cash are read and written by every ledger at once
(sales, transfers, condition actions, repayments). They are never updated by
read-modify-write in Python. Each change is a single guarded UPDATE:

    UPDATE products SET quantity = quantity + :delta
     WHERE id = :id AND quantity + :delta >= 0

so two concurrent sales of the last unit cannot both succeed, and two
concurrent cash postings cannot overwrite each other. A guard that matches no
row is turned into NotFoundError (row missing) or the caller's shortage error.

Status recomputation rides in the same statement, evaluated against the new
quantity, so status and quantity are never observed out of step.
"""
from __future__ import annotations

from typing import Callable

from flask import current_app
from sqlalchemy import and_, case, update

from ..errors import ConflictError, InsufficientStockError, NotFoundError
from ..extensions import db
from ..models import Branch, Product
from ..models.inventory import PRODUCT_STATUS_IN_STORE, PRODUCT_STATUS_SOLD


def sold_when_empty(new_quantity):
    """SOLD at zero; a SOLD product that is restocked goes back IN_STORE."""
    return case(
        (new_quantity == 0, PRODUCT_STATUS_SOLD),
        (Product.status == PRODUCT_STATUS_SOLD, PRODUCT_STATUS_IN_STORE),
        else_=Product.status,
    )


def restock_status(new_quantity):
    """Status untouched, except a SOLD product with stock again goes back IN_STORE."""
    return case(
        (and_(new_quantity > 0, Product.status == PRODUCT_STATUS_SOLD), PRODUCT_STATUS_IN_STORE),
        else_=Product.status,
    )


def status_when_empty(empty_status: str, otherwise: str):
    """Build a status rule: empty_status at zero in-store quantity, otherwise the given status."""
    def _rule(new_quantity):
        return case((new_quantity == 0, empty_status), else_=otherwise)
    return _rule


def fixed_status(status: str):
    def _rule(new_quantity):
        return status
    return _rule


def _floored(column, delta: int):
    if delta >= 0:
        return column + delta
    return case((column + delta < 0, 0), else_=column + delta)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def get_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if branch is None:
        raise NotFoundError(f"Branch {branch_id} not found")
    return branch


def adjust_product_buckets(
    product_id: int,
    *,
    quantity: int = 0,
    defective: int = 0,
    returned: int = 0,
    exchanged: int = 0,
    status_rule: Callable | None = None,
    shortage_error: type[Exception] = InsufficientStockError,
) -> Product:
    """
    Apply signed deltas to a product's buckets in one statement.

    - quantity: in-store delta; rejected with shortage_error if the result would be < 0
    - defective/returned/exchanged: counters; negative deltas floor at 0
    - status_rule: callable(new_quantity_expr) -> SQL expression or literal

    Returns the product refreshed from the database.
    """
    new_quantity = Product.quantity + quantity
    values = {}
    conditions = [Product.id == product_id]

    if quantity:
        values["quantity"] = new_quantity
        if quantity < 0:
            conditions.append(new_quantity >= 0)

    for column, delta in (
        (Product.defective_quantity, defective),
        (Product.returned_quantity, returned),
        (Product.exchanged_quantity, exchanged),
    ):
        if delta:
            values[column.key] = _floored(column, delta)

    if status_rule is not None:
        values["status"] = status_rule(new_quantity)

    if not values:
        return get_product(product_id)

    result = db.session.execute(
        update(Product)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        current = db.session.get(Product, product_id, populate_existing=True)
        if current is None:
            raise NotFoundError(f"Product {product_id} not found")
        raise shortage_error(
            f"Insufficient stock for product {current.id} ({current.name}): "
            f"requested {-quantity}, available {current.quantity}"
        )

    return db.session.get(Product, product_id, populate_existing=True)


def adjust_product_quantity(
    product_id: int,
    delta: int,
    *,
    status_rule: Callable = sold_when_empty,
    shortage_error: type[Exception] = InsufficientStockError,
) -> Product:
    """Move in-store stock by delta; status follows status_rule (sold_when_empty by default)."""
    return adjust_product_buckets(
        product_id,
        quantity=delta,
        status_rule=status_rule,
        shortage_error=shortage_error,
    )


def adjust_branch_cash(branch_id: int, delta: int) -> Branch:
    """
    Post a signed amount to a branch's cash balance.

    When ALLOW_NEGATIVE_CASH_BALANCE is off, a posting that would overdraw the
    branch fails with ConflictError.
    """
    if delta == 0:
        return get_branch(branch_id)

    stmt = update(Branch).where(Branch.id == branch_id)
    if delta < 0 and not current_app.config.get("ALLOW_NEGATIVE_CASH_BALANCE", True):
        stmt = stmt.where(Branch.cash_balance_cents + delta >= 0)

    result = db.session.execute(
        stmt.values(cash_balance_cents=Branch.cash_balance_cents + delta)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        current = db.session.get(Branch, branch_id, populate_existing=True)
        if current is None:
            raise NotFoundError(f"Branch {branch_id} not found")
        raise ConflictError(
            f"Branch {branch_id} cash balance ({current.cash_balance_cents}) cannot cover {-delta}"
        )

    return db.session.get(Branch, branch_id, populate_existing=True)
