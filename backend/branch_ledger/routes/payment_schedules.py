# backend/branch_ledger/routes/payment_schedules.py
"""
Credit repayment API routes.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import LedgerError, ValidationError
from ..extensions import db
from ..models import PaymentSchedule
from ..services import credit_service
from ..time_utils import parse_iso_datetime
from ..validation import ModelValidationPolicy, optional_int, parse_date_filters, validate_payload


payment_schedules_bp = Blueprint("payment_schedules", __name__, url_prefix="/api/payment-schedules")
repayments_bp = Blueprint("repayments", __name__, url_prefix="/api/repayments")


PAYMENT_FIELDS = {
    "paid_amount_cents",
    "amount_delta_cents",
    "is_paid",
    "paid_at",
    "paid_channel",
    "paid_by_user_id",
    "idempotency_key",
}

METADATA_POLICY = ModelValidationPolicy(
    writable_fields=set(credit_service.SCHEDULE_METADATA_FIELDS),
)


def _schedule_response(schedule: PaymentSchedule) -> dict:
    data = schedule.to_dict()
    transaction = schedule.transaction
    data["transaction"] = transaction.to_dict() if transaction else None
    return data


def _parse_paid_at(value):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("paid_at must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError("paid_at must be an ISO-8601 datetime")


@payment_schedules_bp.get("/<int:schedule_id>")
@require_auth
def get_schedule(schedule_id: int):
    try:
        schedule = credit_service.get_schedule(schedule_id)
        return jsonify(_schedule_response(schedule)), 200
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code


@payment_schedules_bp.put("/<int:schedule_id>")
@require_auth
def update_schedule(schedule_id: int):
    """
    Record a repayment or edit schedule metadata.

    Request body (all optional; at most one of the two amount fields):
    {
        "paid_amount_cents": int,     # cumulative paid amount
        "amount_delta_cents": int,    # amount received now
        "is_paid": bool,
        "paid_at": str,
        "paid_channel": "CASH" | "CARD" | "TRANSFER",
        "paid_by_user_id": int,
        "idempotency_key": str,       # or Idempotency-Key header
        "rating": str,
        "note": str,
        "due_date": str
    }

    Returns:
        200: Updated schedule with its transaction
        400: Validation error
        404: Schedule or user not found
        409: is_paid without the money, or concurrent update
    """
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON payload", "kind": "validation_error"}), 400

    metadata_payload = {k: v for k, v in payload.items() if k not in PAYMENT_FIELDS}

    try:
        is_paid = payload.get("is_paid")
        if is_paid is not None and not isinstance(is_paid, bool):
            raise ValidationError("is_paid must be true or false")

        idempotency_key = payload.get("idempotency_key") or request.headers.get("Idempotency-Key")
        if idempotency_key is not None and len(str(idempotency_key)) > 64:
            raise ValidationError("idempotency_key exceeds max length 64")

        metadata = validate_payload(
            model=PaymentSchedule,
            payload=metadata_payload,
            policy=METADATA_POLICY,
            partial=True,
        )

        schedule = credit_service.update_schedule(
            schedule_id,
            actor_user_id=g.current_user.id,
            paid_amount_cents=optional_int(payload.get("paid_amount_cents"), "paid_amount_cents"),
            amount_delta_cents=optional_int(payload.get("amount_delta_cents"), "amount_delta_cents"),
            is_paid=is_paid,
            paid_at=_parse_paid_at(payload.get("paid_at")),
            paid_channel=payload.get("paid_channel"),
            paid_by_user_id=optional_int(payload.get("paid_by_user_id"), "paid_by_user_id"),
            idempotency_key=str(idempotency_key) if idempotency_key is not None else None,
            metadata=metadata,
        )
        return jsonify(_schedule_response(schedule)), 200
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update payment schedule")
        return jsonify({"error": "Internal server error"}), 500


@repayments_bp.get("")
@require_auth
def list_repayments():
    try:
        start, end = parse_date_filters(request.args.get("start_date"), request.args.get("end_date"))
        repayments = credit_service.list_repayments(
            transaction_id=request.args.get("transaction_id", type=int),
            schedule_id=request.args.get("schedule_id", type=int),
            branch_id=request.args.get("branch_id", type=int),
            paid_by_user_id=request.args.get("paid_by_user_id", type=int),
            channel=request.args.get("channel"),
            start=start,
            end=end,
        )
        return jsonify({
            "repayments": [r.to_dict() for r in repayments],
            "count": len(repayments),
            "total_amount_cents": sum(r.amount_cents for r in repayments),
        }), 200
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
