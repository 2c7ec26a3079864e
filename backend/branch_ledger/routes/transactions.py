# backend/branch_ledger/routes/transactions.py
"""
Stock ledger API routes: transactions and stock history.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import LedgerError, ValidationError
from ..extensions import db
from ..models import Customer, PaymentSchedule, Transaction, TransactionItem
from ..services import credit_service, stock_ledger_service
from ..services.credit_service import ScheduleRow
from ..services.stock_ledger_service import CustomerDetails, LineItem
from ..validation import ModelValidationPolicy, parse_date_filters, validate_payload


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


TRANSACTION_POLICY = ModelValidationPolicy(
    writable_fields={
        "type",
        "from_branch_id",
        "to_branch_id",
        "customer_id",
        "discount_cents",
        "payment_type",
        "amount_paid_cents",
        "delivery_method",
        "note",
    },
    required_on_create={"type", "from_branch_id"},
)

ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "product_id",
        "quantity",
        "price_cents",
        "credit_months",
        "credit_percent_bps",
        "monthly_payment_cents",
    },
    required_on_create={"product_id", "quantity"},
)

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"full_name", "phone", "address"},
    required_on_create={"full_name", "phone"},
)

SCHEDULE_ROW_POLICY = ModelValidationPolicy(
    writable_fields={"month", "payment_cents", "due_date", "remaining_balance_cents"},
    required_on_create={"month", "payment_cents"},
)


def _parse_items(raw) -> list[LineItem]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("items must be a non-empty list")
    return [
        LineItem(**validate_payload(model=TransactionItem, payload=entry, policy=ITEM_POLICY, partial=False))
        for entry in raw
    ]


def _parse_customer(raw) -> CustomerDetails | None:
    if raw is None:
        return None
    patch = validate_payload(model=Customer, payload=raw, policy=CUSTOMER_POLICY, partial=False)
    return CustomerDetails(**patch)


def _error_response(e: LedgerError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


@transactions_bp.post("")
@require_auth
def create_transaction():
    """
    Create a stock transaction.

    Request body:
    {
        "type": "SALE" | "PURCHASE" | "TRANSFER" | "RETURN" | "WRITE_OFF" | "STOCK_ADJUSTMENT",
        "from_branch_id": int,
        "to_branch_id": int (TRANSFER only),
        "customer_id": int (optional),
        "customer": {"full_name": str, "phone": str, "address": str} (optional),
        "items": [{"product_id": int, "quantity": int, "price_cents": int (optional)}],
        "discount_cents": int (optional),
        "payment_type": "CASH" | "CARD" | "CREDIT" | "INSTALLMENT" (optional),
        "amount_paid_cents": int (optional)
    }

    Returns:
        201: Transaction with items and history
        400: Validation error or insufficient stock
        404: Branch, product, customer or user not found
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON payload", "kind": "validation_error"}), 400

    payload = dict(payload)
    raw_items = payload.pop("items", None)
    raw_customer = payload.pop("customer", None)

    try:
        patch = validate_payload(model=Transaction, payload=payload, policy=TRANSACTION_POLICY, partial=False)
        transaction = stock_ledger_service.create_transaction(
            type=patch.pop("type").upper(),
            items=_parse_items(raw_items),
            customer=_parse_customer(raw_customer),
            actor_user_id=g.current_user.id,
            **patch,
        )
        return jsonify(transaction.to_dict()), 201
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("")
@require_auth
def list_transactions():
    try:
        start, end = parse_date_filters(request.args.get("start_date"), request.args.get("end_date"))
        transactions = stock_ledger_service.list_transactions(
            type=request.args.get("type"),
            branch_id=request.args.get("branch_id", type=int),
            customer_id=request.args.get("customer_id", type=int),
            user_id=request.args.get("user_id", type=int),
            start=start,
            end=end,
            limit=request.args.get("limit", default=stock_ledger_service.DEFAULT_PAGE_SIZE, type=int),
            offset=request.args.get("offset", default=0, type=int),
        )
        return jsonify({
            "transactions": [t.to_dict(include_items=False) for t in transactions],
            "count": len(transactions),
        }), 200
    except LedgerError as e:
        return _error_response(e)


@transactions_bp.get("/<int:transaction_id>")
@require_auth
def get_transaction(transaction_id: int):
    try:
        transaction = stock_ledger_service.get_transaction(transaction_id)
        return jsonify(transaction.to_dict()), 200
    except LedgerError as e:
        return _error_response(e)


@transactions_bp.delete("/<int:transaction_id>")
@require_auth
def remove_transaction(transaction_id: int):
    """
    Remove a transaction with its items and stock history.

    Product quantities changed by the transaction are left as they are.

    Returns:
        200: Removal summary
        404: Transaction not found
        409: Transaction has schedules or condition logs
    """
    try:
        result = stock_ledger_service.remove_transaction(transaction_id)
        current_app.logger.warning(
            "Transaction %s removed by user %s; product quantities were not restored",
            transaction_id, g.current_user.id,
        )
        return jsonify(result), 200
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to remove transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/payment-schedules")
@require_auth
def attach_schedules(transaction_id: int):
    """
    Store the installment schedule computed for a transaction.

    Request body:
    {
        "rows": [{"month": int, "payment_cents": int, "due_date": str (optional),
                  "remaining_balance_cents": int (optional)}]
    }
    """
    payload = request.get_json(silent=True) or {}
    rows = payload.get("rows")
    try:
        if not isinstance(rows, list) or not rows:
            raise ValidationError("rows must be a non-empty list")
        parsed = [
            ScheduleRow(**validate_payload(model=PaymentSchedule, payload=row, policy=SCHEDULE_ROW_POLICY, partial=False))
            for row in rows
        ]
        schedules = credit_service.attach_schedules(transaction_id, parsed)
        return jsonify({"payment_schedules": [s.to_dict() for s in schedules]}), 201
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to attach payment schedules")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/stock-history")
@require_auth
def list_stock_history():
    try:
        entries = stock_ledger_service.list_stock_history(
            product_id=request.args.get("product_id", type=int),
            branch_id=request.args.get("branch_id", type=int),
            type=request.args.get("type"),
            user_id=request.args.get("user_id", type=int),
            transaction_id=request.args.get("transaction_id", type=int),
            limit=request.args.get("limit", default=stock_ledger_service.DEFAULT_PAGE_SIZE, type=int),
            offset=request.args.get("offset", default=0, type=int),
        )
        return jsonify({"entries": [e.to_dict() for e in entries], "count": len(entries)}), 200
    except LedgerError as e:
        return _error_response(e)


@transactions_bp.get("/stock-history/<int:entry_id>")
@require_auth
def get_stock_history_entry(entry_id: int):
    try:
        entry = stock_ledger_service.get_stock_history_entry(entry_id)
        return jsonify(entry.to_dict()), 200
    except LedgerError as e:
        return _error_response(e)
