# backend/branch_ledger/services/stock_ledger_service.py
"""
Stock ledger: transactions that move product quantity in, out, and between branches.

WHY: every unit that enters or leaves a branch is recorded twice. The product
row's quantity is the shared counter (adjusted atomically in balance_service),
and an append-only StockHistoryEntry linked to the transaction explains the
change.

DISPATCH: MOVEMENT_RULES maps each transaction type to the sign it applies at
the source branch and the history type it writes. TRANSFER also mirrors the
movement into the destination branch, finding or creating the matching
product there by (branch, name, model).

ATOMICITY: create_transaction is one unit of work inside run_with_retry. A
missing product, a short item or a bad discount found halfway through rolls
back every row written before it.

LIFECYCLE: transactions are created PENDING. remove_transaction deletes the
header, items and history rows but does not put quantity back.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AuthorizationError,
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import (
    Branch,
    ConditionLog,
    Customer,
    PaymentSchedule,
    Product,
    StockHistoryEntry,
    Transaction,
    TransactionItem,
    User,
)
from ..models.inventory import (
    HISTORY_ADJUSTMENT,
    HISTORY_INFLOW,
    HISTORY_OUTFLOW,
    HISTORY_RETURN,
    HISTORY_TRANSFER_IN,
    HISTORY_TRANSFER_OUT,
    HISTORY_TYPES,
    PRODUCT_STATUS_IN_STORE,
)
from ..models.transactions import (
    DEFERRED_PAYMENT_TYPES,
    PAYMENT_TYPES,
    TRANSACTION_STATUS_PENDING,
    TRANSACTION_TYPE_PURCHASE,
    TRANSACTION_TYPE_RETURN,
    TRANSACTION_TYPE_SALE,
    TRANSACTION_TYPE_STOCK_ADJUSTMENT,
    TRANSACTION_TYPE_TRANSFER,
    TRANSACTION_TYPE_WRITE_OFF,
)
from ..validation import enforce_rules_line_item
from .balance_service import adjust_product_quantity, get_branch, restock_status, sold_when_empty
from .concurrency import lock_for_update, run_with_retry


DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 500


@dataclass(frozen=True)
class MovementRule:
    """
    How a transaction type moves stock at its source branch.

    source_sign: -1 outbound, +1 inbound, 0 means the item quantity is already signed.
    status_rule: only SALE marks an emptied product SOLD.
    """
    source_sign: int
    history_type: str
    requires_destination: bool = False
    mirror_history_type: str | None = None
    shortage_error: type[Exception] = InsufficientStockError
    status_rule: Callable = restock_status


MOVEMENT_RULES: dict[str, MovementRule] = {
    TRANSACTION_TYPE_SALE: MovementRule(-1, HISTORY_OUTFLOW, status_rule=sold_when_empty),
    TRANSACTION_TYPE_WRITE_OFF: MovementRule(-1, HISTORY_OUTFLOW),
    TRANSACTION_TYPE_TRANSFER: MovementRule(
        -1,
        HISTORY_TRANSFER_OUT,
        requires_destination=True,
        mirror_history_type=HISTORY_TRANSFER_IN,
    ),
    TRANSACTION_TYPE_PURCHASE: MovementRule(1, HISTORY_INFLOW),
    TRANSACTION_TYPE_RETURN: MovementRule(1, HISTORY_RETURN),
    TRANSACTION_TYPE_STOCK_ADJUSTMENT: MovementRule(0, HISTORY_ADJUSTMENT, shortage_error=ConflictError),
}

TRANSACTION_TYPES = tuple(MOVEMENT_RULES)


@dataclass(frozen=True)
class LineItem:
    product_id: int
    quantity: int
    price_cents: int | None = None
    credit_months: int | None = None
    credit_percent_bps: int | None = None
    monthly_payment_cents: int | None = None


@dataclass(frozen=True)
class CustomerDetails:
    full_name: str
    phone: str
    address: str | None = None


def _get_actor(actor_user_id: int | None) -> User:
    if actor_user_id is None:
        raise AuthorizationError("An acting user is required")
    user = db.session.get(User, actor_user_id)
    if user is None:
        raise NotFoundError(f"User {actor_user_id} not found")
    return user


def _check_customer_details(details: CustomerDetails) -> tuple[str, str]:
    full_name = (details.full_name or "").strip()
    phone = (details.phone or "").strip()
    if not phone:
        raise ValidationError("customer.phone is required")
    if not full_name:
        raise ValidationError("customer.full_name is required")
    return full_name, phone


def _find_or_create_customer(details: CustomerDetails) -> Customer:
    """Reuse the customer with this phone, creating it if nobody has it yet."""
    full_name, phone = _check_customer_details(details)
    query = db.session.query(Customer).filter_by(phone=phone)
    existing = query.first()
    if existing:
        return existing

    try:
        with db.session.begin_nested():
            customer = Customer(full_name=full_name, phone=phone, address=details.address)
            db.session.add(customer)
    except IntegrityError:
        # Created by a concurrent sale between our lookup and insert
        customer = query.first()
        if customer is None:
            raise
    return customer


def _find_or_create_mirror(source: Product, branch_id: int) -> Product:
    """Product row at branch_id that represents the same article as source."""
    query = db.session.query(Product).filter_by(branch_id=branch_id, name=source.name, model=source.model)
    mirror = lock_for_update(query).first()
    if mirror:
        return mirror

    try:
        with db.session.begin_nested():
            mirror = Product(
                branch_id=branch_id,
                name=source.name,
                model=source.model,
                barcode=source.barcode,
                price_cents=source.price_cents,
                quantity=0,
                status=PRODUCT_STATUS_IN_STORE,
            )
            db.session.add(mirror)
    except IntegrityError:
        mirror = query.first()
        if mirror is None:
            raise
    return mirror


def _record_history(
    *,
    product_id: int,
    branch_id: int,
    transaction_id: int,
    quantity: int,
    entry_type: str,
    user_id: int,
    description: str,
) -> StockHistoryEntry:
    entry = StockHistoryEntry(
        product_id=product_id,
        branch_id=branch_id,
        transaction_id=transaction_id,
        quantity=quantity,
        type=entry_type,
        created_by_user_id=user_id,
        description=description,
    )
    db.session.add(entry)
    return entry


def create_transaction(
    *,
    type: str,
    from_branch_id: int,
    items: list[LineItem],
    actor_user_id: int | None,
    to_branch_id: int | None = None,
    customer_id: int | None = None,
    customer: CustomerDetails | None = None,
    discount_cents: int = 0,
    payment_type: str | None = None,
    amount_paid_cents: int | None = None,
    delivery_method: str | None = None,
    note: str | None = None,
) -> Transaction:
    """
    Create a stock transaction and apply its movements.

    Args:
        type: SALE, PURCHASE, TRANSFER, RETURN, WRITE_OFF or STOCK_ADJUSTMENT
        from_branch_id: Branch whose products the items refer to
        items: Line items (quantity is a signed delta for STOCK_ADJUSTMENT)
        actor_user_id: User performing the operation
        to_branch_id: Destination branch (TRANSFER only)
        customer_id / customer: Existing customer, or inline details matched by phone

    Returns:
        Transaction: the persisted transaction with items and history

    Raises:
        ValidationError, NotFoundError, InsufficientStockError, ConflictError,
        AuthorizationError
    """
    def _op():
        rule = MOVEMENT_RULES.get(type)
        if rule is None:
            raise ValidationError(f"Unsupported transaction type: {type}")
        if not items:
            raise ValidationError("At least one item is required")
        if payment_type is not None and payment_type not in PAYMENT_TYPES:
            raise ValidationError(f"Invalid payment_type: {payment_type}")
        if discount_cents is None or discount_cents < 0:
            raise ValidationError("discount_cents must be >= 0")

        signed = rule.source_sign == 0
        for item in items:
            enforce_rules_line_item(asdict(item), signed=signed)

        actor = _get_actor(actor_user_id)
        get_branch(from_branch_id)

        if rule.requires_destination:
            if to_branch_id is None:
                raise ValidationError(f"to_branch_id is required for {type}")
            if to_branch_id == from_branch_id:
                raise ValidationError("Cannot transfer to the same branch")
        if to_branch_id is not None:
            get_branch(to_branch_id)

        existing_customer = None
        if customer_id is not None:
            existing_customer = db.session.get(Customer, customer_id)
            if existing_customer is None:
                raise NotFoundError(f"Customer {customer_id} not found")
        elif customer is not None:
            _check_customer_details(customer)

        # Resolve every product before touching any row
        products: dict[int, Product] = {}
        for item in items:
            product = db.session.get(Product, item.product_id)
            if product is None or product.branch_id != from_branch_id:
                raise NotFoundError(f"Product {item.product_id} not found in branch {from_branch_id}")
            products[item.product_id] = product

        lines = []
        total = 0
        for item in items:
            product = products[item.product_id]
            price = item.price_cents if item.price_cents is not None else product.price_cents
            line_total = abs(item.quantity) * price
            total += line_total
            lines.append((item, price, line_total))

        if discount_cents > total:
            raise ValidationError(f"discount_cents ({discount_cents}) cannot exceed total ({total})")
        final_total = total - discount_cents

        if amount_paid_cents is None:
            paid = 0 if payment_type in DEFERRED_PAYMENT_TYPES else final_total
        else:
            paid = amount_paid_cents
        if paid < 0 or paid > final_total:
            raise ValidationError(f"amount_paid_cents must be between 0 and {final_total}")

        transaction = Transaction(
            type=type,
            status=TRANSACTION_STATUS_PENDING,
            from_branch_id=from_branch_id,
            to_branch_id=to_branch_id,
            customer_id=existing_customer.id if existing_customer else None,
            user_id=actor.id,
            total_cents=total,
            discount_cents=discount_cents,
            final_total_cents=final_total,
            amount_paid_cents=paid,
            payment_type=payment_type,
            delivery_method=delivery_method,
            note=note,
        )
        db.session.add(transaction)
        db.session.flush()  # Get ID

        if existing_customer is None and customer is not None:
            transaction.customer_id = _find_or_create_customer(customer).id

        for item, price, line_total in lines:
            db.session.add(TransactionItem(
                transaction_id=transaction.id,
                product_id=item.product_id,
                quantity=item.quantity,
                price_cents=price,
                total_cents=line_total,
                credit_months=item.credit_months,
                credit_percent_bps=item.credit_percent_bps,
                monthly_payment_cents=item.monthly_payment_cents,
            ))

            delta = item.quantity if rule.source_sign == 0 else rule.source_sign * item.quantity
            source = adjust_product_quantity(
                item.product_id,
                delta,
                status_rule=rule.status_rule,
                shortage_error=rule.shortage_error,
            )
            _record_history(
                product_id=source.id,
                branch_id=from_branch_id,
                transaction_id=transaction.id,
                quantity=delta,
                entry_type=rule.history_type,
                user_id=actor.id,
                description=f"{type} #{transaction.id}",
            )

            if rule.mirror_history_type:
                mirror = _find_or_create_mirror(source, to_branch_id)
                adjust_product_quantity(mirror.id, item.quantity, status_rule=restock_status)
                _record_history(
                    product_id=mirror.id,
                    branch_id=to_branch_id,
                    transaction_id=transaction.id,
                    quantity=item.quantity,
                    entry_type=rule.mirror_history_type,
                    user_id=actor.id,
                    description=f"{type} #{transaction.id} from branch {from_branch_id}",
                )

        db.session.commit()
        return transaction

    return run_with_retry(_op)


def get_transaction(transaction_id: int) -> Transaction:
    transaction = db.session.get(Transaction, transaction_id)
    if transaction is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return transaction


def list_transactions(
    *,
    type: str | None = None,
    branch_id: int | None = None,
    customer_id: int | None = None,
    user_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> list[Transaction]:
    """Newest first. branch_id matches either side of a transfer."""
    query = db.session.query(Transaction)
    if type:
        query = query.filter(Transaction.type == type)
    if branch_id is not None:
        query = query.filter(or_(Transaction.from_branch_id == branch_id, Transaction.to_branch_id == branch_id))
    if customer_id is not None:
        query = query.filter(Transaction.customer_id == customer_id)
    if user_id is not None:
        query = query.filter(Transaction.user_id == user_id)
    if start is not None:
        query = query.filter(Transaction.created_at >= start)
    if end is not None:
        query = query.filter(Transaction.created_at <= end)

    limit = max(1, min(limit, MAX_PAGE_SIZE))
    return (
        query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset(max(0, offset))
        .limit(limit)
        .all()
    )


def remove_transaction(transaction_id: int) -> dict:
    """
    Delete a transaction with its items and history rows.

    Product quantities are NOT restored. A transaction that credit or
    condition records point at cannot be removed.
    """
    def _op():
        transaction = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
        if not transaction:
            raise NotFoundError(f"Transaction {transaction_id} not found")

        if db.session.query(PaymentSchedule.id).filter_by(transaction_id=transaction_id).first():
            raise ConflictError(f"Transaction {transaction_id} has payment schedules and cannot be removed")
        if db.session.query(ConditionLog.id).filter_by(transaction_id=transaction_id).first():
            raise ConflictError(f"Transaction {transaction_id} is referenced by condition logs and cannot be removed")

        entries = db.session.query(StockHistoryEntry).filter_by(transaction_id=transaction_id).all()
        for entry in entries:
            db.session.delete(entry)
        db.session.flush()

        removed_items = len(transaction.items)
        db.session.delete(transaction)
        db.session.commit()

        return {
            "id": transaction_id,
            "removed_items": removed_items,
            "removed_history_entries": len(entries),
            "quantities_restored": False,
        }

    return run_with_retry(_op)


def get_stock_history_entry(entry_id: int) -> StockHistoryEntry:
    entry = db.session.get(StockHistoryEntry, entry_id)
    if entry is None:
        raise NotFoundError(f"Stock history entry {entry_id} not found")
    return entry


def list_stock_history(
    *,
    product_id: int | None = None,
    branch_id: int | None = None,
    type: str | None = None,
    user_id: int | None = None,
    transaction_id: int | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> list[StockHistoryEntry]:
    if type is not None and type not in HISTORY_TYPES:
        raise ValidationError(f"Invalid history type: {type}")

    query = db.session.query(StockHistoryEntry)
    if product_id is not None:
        query = query.filter(StockHistoryEntry.product_id == product_id)
    if branch_id is not None:
        query = query.filter(StockHistoryEntry.branch_id == branch_id)
    if type is not None:
        query = query.filter(StockHistoryEntry.type == type)
    if user_id is not None:
        query = query.filter(StockHistoryEntry.created_by_user_id == user_id)
    if transaction_id is not None:
        query = query.filter(StockHistoryEntry.transaction_id == transaction_id)

    limit = max(1, min(limit, MAX_PAGE_SIZE))
    return (
        query.order_by(StockHistoryEntry.created_at.desc(), StockHistoryEntry.id.desc())
        .offset(max(0, offset))
        .limit(limit)
        .all()
    )
