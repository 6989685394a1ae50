# Overview: Flask API routes for shift reconciliation and cash distribution.

# backend/forecourt/routes/accounting.py
"""
Shift Accounting & Cash Distribution API Routes

WHY: Close-of-shift reconciliation and the bank deposits that follow it.

DESIGN:
- One reconciliation per closed assignment or closed attendant shift
- Updates replace the declared inputs wholesale
- Distributions are posted as a batch: all lines or none
- Managers/admins edit reconciliations and move cash
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import handle_service_errors, json_body, require_caller
from ..services import accounting_service, distribution_service
from ..services.accounting_service import ShiftScope
from ..time_utils import decimal_str
from ..validation import ValidationError, parse_id


accounting_bp = Blueprint("accounting", __name__, url_prefix="/api/accounting")
distributions_bp = Blueprint("distributions", __name__, url_prefix="/api/distributions")


def _scope_from(kind, scope_id) -> ShiftScope:
    scope_id = parse_id(scope_id, "scope_id")
    if kind == accounting_service.SCOPE_ASSIGNMENT:
        return ShiftScope.assignment(scope_id)
    if kind == accounting_service.SCOPE_ATTENDANT_SHIFT:
        return ShiftScope.attendant_shift(scope_id)
    raise ValidationError("scope must be 'assignment' or 'attendant_shift'", field="scope")


@accounting_bp.post("")
@require_caller
@handle_service_errors
def reconcile_route():
    """
    Reconcile a closed assignment or attendant shift.

    Request body:
    {
        "scope": "assignment",
        "scope_id": 12,
        "inputs": {
            "upi_amount": "5000.00",
            "card_amount": "3000.00",
            "credit_extended": "1000.00",
            "expenses": "200.00",
            "expense_reason": "Tea and snacks",
            "opening_cash_advance": "500.00",
            "denominations": {"notes_500": 13}
        }
    }
    """
    data = json_body()
    scope = _scope_from(data.get("scope"), data.get("scope_id"))
    record = accounting_service.reconcile(g.caller, scope, data.get("inputs") or {})
    return jsonify({"accounting": record.to_dict()}), 201


@accounting_bp.get("/<int:accounting_id>")
@require_caller
@handle_service_errors
def get_accounting_route(accounting_id: int):
    return jsonify({"accounting": accounting_service.describe_accounting(g.caller, accounting_id)}), 200


@accounting_bp.get("/scope/<kind>/<int:scope_id>")
@require_caller
@handle_service_errors
def get_accounting_for_scope_route(kind: str, scope_id: int):
    record = accounting_service.get_accounting_for_scope(g.caller, _scope_from(kind, scope_id))
    return jsonify({"accounting": record.to_dict() if record else None}), 200


@accounting_bp.put("/<int:accounting_id>")
@require_caller
@handle_service_errors
def update_accounting_route(accounting_id: int):
    """Full replace: fields omitted from the body reset to zero."""
    data = json_body()
    record = accounting_service.update_accounting(g.caller, accounting_id, data.get("inputs") or {})
    return jsonify({"accounting": record.to_dict()}), 200


@accounting_bp.delete("/<int:accounting_id>")
@require_caller
@handle_service_errors
def delete_accounting_route(accounting_id: int):
    accounting_service.delete_accounting(g.caller, accounting_id)
    return jsonify({"deleted": accounting_id}), 200


@accounting_bp.delete("/<int:accounting_id>/distributions")
@require_caller
@handle_service_errors
def delete_distributions_route(accounting_id: int):
    removed = distribution_service.delete_distributions(g.caller, accounting_id)
    return jsonify({"accounting_id": accounting_id, "reversed_amount": decimal_str(removed)}), 200


# =============================================================================
# DISTRIBUTIONS
# =============================================================================

@distributions_bp.post("")
@require_caller
@handle_service_errors
def distribute_route():
    """
    Distribute counted cash into bank accounts.

    Request body:
    {
        "accounting_id": 4,
        "lines": [
            {"bank_account_id": 1, "amount": "4000.00"},
            {"bank_account_id": 2, "amount": "2500.00"}
        ]
    }
    """
    data = json_body()
    lines = data.get("lines")
    if not isinstance(lines, list):
        raise ValidationError("lines must be a list", field="lines")
    entries = distribution_service.distribute(g.caller, parse_id(data.get("accounting_id"), "accounting_id"), lines)
    return jsonify({"distributions": [e.to_dict() for e in entries]}), 201


@distributions_bp.get("")
@require_caller
@handle_service_errors
def list_distributions_route():
    accounting_id = parse_id(request.args.get("accounting_id"), "accounting_id")
    entries = distribution_service.list_distributions(g.caller, accounting_id)
    total = distribution_service.get_total_distributed(g.caller, accounting_id)
    return jsonify({
        "distributions": [e.to_dict() for e in entries],
        "total_distributed": decimal_str(total),
    }), 200


@distributions_bp.delete("/<int:entry_id>")
@require_caller
@handle_service_errors
def delete_distribution_route(entry_id: int):
    removed = distribution_service.delete_distribution(g.caller, entry_id)
    return jsonify({"deleted": entry_id, "reversed_amount": decimal_str(removed)}), 200
