# backend/branch_ledger/routes/condition_logs.py
"""
Condition state machine API routes (defective / fixed / return / exchange).
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import LedgerError, ValidationError
from ..extensions import db
from ..models import ConditionLog
from ..services import condition_service
from ..services.condition_service import CashOverride
from ..validation import ModelValidationPolicy, coerce_int, parse_date_filters, validate_payload


condition_logs_bp = Blueprint("condition_logs", __name__, url_prefix="/api/condition-logs")


CONDITION_POLICY = ModelValidationPolicy(
    writable_fields={
        "product_id",
        "branch_id",
        "action_type",
        "quantity",
        "description",
        "is_from_sale",
        "transaction_id",
        "replacement_product_id",
        "replacement_quantity",
    },
    required_on_create={"product_id", "action_type", "quantity"},
)


def _parse_cash_override(raw) -> CashOverride | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValidationError("cash_override must be an object")
    if "amount_cents" not in raw or "direction" not in raw:
        raise ValidationError("cash_override requires amount_cents and direction")
    return CashOverride(
        amount_cents=coerce_int(raw["amount_cents"], "cash_override.amount_cents"),
        direction=str(raw["direction"]),
    )


def _apply_exchange_target(payload: dict, raw) -> None:
    """Accept {"exchange_target": {"product_id", "quantity"}} as an alias."""
    if raw is None:
        return
    if not isinstance(raw, dict) or "product_id" not in raw:
        raise ValidationError("exchange_target requires product_id")
    payload["replacement_product_id"] = raw["product_id"]
    if raw.get("quantity") is not None:
        payload["replacement_quantity"] = raw["quantity"]


def _action_response(result: dict) -> dict:
    data = {
        "log": result["log"].to_dict(),
        "product": result["product"].to_dict(),
        "branch": result["branch"].to_dict(),
    }
    if "replacement_product" in result:
        data["replacement_product"] = result["replacement_product"].to_dict()
    return data


@condition_logs_bp.post("")
@require_auth
def create_condition_log():
    """
    Apply a condition action to a product.

    Request body:
    {
        "product_id": int,
        "branch_id": int (optional, defaults to the product's branch),
        "action_type": "DEFECTIVE" | "FIXED" | "RETURN" | "EXCHANGE",
        "quantity": int,
        "description": str (optional),
        "is_from_sale": bool (optional),
        "transaction_id": int (optional),
        "cash_override": {"amount_cents": int, "direction": "PLUS" | "MINUS"} (RETURN/EXCHANGE),
        "replacement_product_id": int (EXCHANGE, optional),
        "replacement_quantity": int (optional)
    }

    Returns:
        201: {"log", "product", "branch", "replacement_product"?}
        400: Validation error or insufficient stock
        404: Product, branch or replacement not found
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON payload", "kind": "validation_error"}), 400

    payload = dict(payload)
    raw_override = payload.pop("cash_override", None)

    try:
        _apply_exchange_target(payload, payload.pop("exchange_target", None))
        patch = validate_payload(model=ConditionLog, payload=payload, policy=CONDITION_POLICY, partial=False)
        result = condition_service.apply_condition_action(
            product_id=patch["product_id"],
            action_type=patch["action_type"].upper(),
            quantity=patch["quantity"],
            actor_user_id=g.current_user.id,
            branch_id=patch.get("branch_id"),
            description=patch.get("description"),
            is_from_sale=bool(patch.get("is_from_sale")),
            transaction_id=patch.get("transaction_id"),
            cash_override=_parse_cash_override(raw_override),
            replacement_product_id=patch.get("replacement_product_id"),
            replacement_quantity=patch.get("replacement_quantity"),
        )
        return jsonify(_action_response(result)), 201
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to apply condition action")
        return jsonify({"error": "Internal server error"}), 500


@condition_logs_bp.post("/mark-as-fixed/<int:product_id>")
@require_auth
def mark_as_fixed(product_id: int):
    """
    Move repaired units back to the shelf.

    Request body: {"quantity": int, "description": str (optional)}
    """
    payload = request.get_json(silent=True) or {}
    try:
        if "quantity" not in payload:
            raise ValidationError("quantity is required")
        result = condition_service.mark_as_fixed(
            product_id,
            coerce_int(payload["quantity"], "quantity"),
            actor_user_id=g.current_user.id,
            description=payload.get("description"),
        )
        return jsonify(_action_response(result)), 201
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to mark product as fixed")
        return jsonify({"error": "Internal server error"}), 500


@condition_logs_bp.get("")
@require_auth
def list_condition_logs():
    try:
        start, end = parse_date_filters(request.args.get("start_date"), request.args.get("end_date"))
        action_type = request.args.get("action_type")
        logs = condition_service.list_condition_logs(
            branch_id=request.args.get("branch_id", type=int),
            action_type=action_type.upper() if action_type else None,
            start=start,
            end=end,
        )
        return jsonify({"condition_logs": [log.to_dict() for log in logs], "count": len(logs)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@condition_logs_bp.get("/statistics")
@require_auth
def condition_statistics():
    """
    Per-action totals.

    Query params: branch_id, start_date, end_date (all optional).
    """
    try:
        start, end = parse_date_filters(request.args.get("start_date"), request.args.get("end_date"))
        stats = condition_service.condition_statistics(
            branch_id=request.args.get("branch_id", type=int),
            start=start,
            end=end,
        )
        return jsonify(stats), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@condition_logs_bp.get("/products")
@require_auth
def list_products_by_condition():
    status = (request.args.get("status") or "").upper()
    try:
        products = condition_service.list_products_by_condition(
            status,
            branch_id=request.args.get("branch_id", type=int),
        )
        return jsonify({"products": [p.to_dict() for p in products], "count": len(products)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@condition_logs_bp.get("/product/<int:product_id>")
@require_auth
def list_condition_logs_for_product(product_id: int):
    logs = condition_service.list_condition_logs_for_product(product_id)
    return jsonify({"condition_logs": [log.to_dict() for log in logs], "count": len(logs)}), 200


@condition_logs_bp.get("/<int:log_id>")
@require_auth
def get_condition_log(log_id: int):
    try:
        log = condition_service.get_condition_log(log_id)
        return jsonify(log.to_dict()), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
