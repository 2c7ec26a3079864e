from flask import Blueprint, jsonify

from ..decorators import require_auth
from ..errors import LedgerError
from ..services import reconciliation_service
from ..services.balance_service import get_branch


branches_bp = Blueprint("branches", __name__, url_prefix="/api/branches")


@branches_bp.get("/<int:branch_id>")
@require_auth
def get_branch_detail(branch_id: int):
    try:
        return jsonify(get_branch(branch_id).to_dict()), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@branches_bp.get("/<int:branch_id>/cash-reconciliation")
@require_auth
def cash_reconciliation(branch_id: int):
    """Compare the branch's cash balance with what its ledgers add up to."""
    try:
        report = reconciliation_service.reconcile_branch_cash(branch_id)
        return jsonify(report.to_dict()), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
