# Overview: Flask API routes for meter assignments; parses input and returns JSON responses.

# backend/forecourt/routes/assignments.py
"""
Meter Assignment API Routes

WHY: Attendants take and hand over nozzles from the forecourt terminal;
admins correct readings after the fact.

DESIGN:
- Open / close (with optional handover) for attendants on their own nozzles
- Admin overrides: close, edit, delete (cascades to reconciliations)
- Decimal values travel as strings, never floats
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import handle_service_errors, json_body, require_caller
from ..services import shift_service
from ..services.audit_service import list_events


assignments_bp = Blueprint("assignments", __name__, url_prefix="/api/assignments")


def _close_payload(result: shift_service.CloseResult) -> dict:
    return {
        "closed": result.closed.to_dict(),
        "successor": result.successor.to_dict() if result.successor else None,
    }


@assignments_bp.post("")
@require_caller
@handle_service_errors
def open_assignment_route():
    """
    Open a nozzle for an attendant.

    Request body:
    {
        "nozzle_id": 1,
        "attendant_id": 7,
        "opening_reading": "12345.678",
        "unit_price": "95.50",          (optional, defaults to product rate)
        "start_time": "2026-01-05T06:00:00Z",  (optional)
        "attendant_shift_id": 3          (optional)
    }
    """
    data = json_body()
    assignment = shift_service.open_assignment(
        g.caller,
        nozzle_id=data.get("nozzle_id"),
        attendant_id=data.get("attendant_id"),
        opening_reading=data.get("opening_reading"),
        unit_price=data.get("unit_price"),
        start_time=data.get("start_time"),
        attendant_shift_id=data.get("attendant_shift_id"),
    )
    return jsonify({"assignment": assignment.to_dict()}), 201


@assignments_bp.get("")
@require_caller
@handle_service_errors
def list_assignments_route():
    assignments = shift_service.list_assignments(
        g.caller,
        status=request.args.get("status"),
        nozzle_id=request.args.get("nozzle_id", type=int),
        attendant_id=request.args.get("attendant_id", type=int),
        attendant_shift_id=request.args.get("attendant_shift_id", type=int),
    )
    return jsonify({"assignments": [a.to_dict() for a in assignments]}), 200


@assignments_bp.get("/<int:assignment_id>")
@require_caller
@handle_service_errors
def get_assignment_route(assignment_id: int):
    return jsonify({"assignment": shift_service.describe_assignment(g.caller, assignment_id)}), 200


@assignments_bp.get("/nozzles/<int:nozzle_id>/open")
@require_caller
@handle_service_errors
def open_assignment_for_nozzle_route(nozzle_id: int):
    assignment = shift_service.get_open_assignment_for_nozzle(g.caller, nozzle_id)
    return jsonify({"assignment": assignment.to_dict() if assignment else None}), 200


@assignments_bp.post("/<int:assignment_id>/close")
@require_caller
@handle_service_errors
def close_assignment_route(assignment_id: int):
    """
    Close an assignment, optionally handing the nozzle over.

    Request body:
    {
        "closing_reading": "12500.000",
        "successor_attendant_id": 8,     (optional)
        "successor_unit_price": "96.00", (optional)
        "end_time": "..."                (optional)
    }
    """
    data = json_body()
    result = shift_service.close_assignment(
        g.caller,
        assignment_id,
        closing_reading=data.get("closing_reading"),
        successor_attendant_id=data.get("successor_attendant_id"),
        successor_unit_price=data.get("successor_unit_price"),
        end_time=data.get("end_time"),
    )
    return jsonify(_close_payload(result)), 200


# =============================================================================
# ADMIN OVERRIDES
# =============================================================================

@assignments_bp.post("/<int:assignment_id>/admin-close")
@require_caller
@handle_service_errors
def admin_close_assignment_route(assignment_id: int):
    data = json_body()
    result = shift_service.admin_override_close(
        g.caller,
        assignment_id,
        closing_reading=data.get("closing_reading"),
        successor_attendant_id=data.get("successor_attendant_id"),
        successor_opening_reading=data.get("successor_opening_reading"),
        successor_unit_price=data.get("successor_unit_price"),
        end_time=data.get("end_time"),
    )
    return jsonify(_close_payload(result)), 200


@assignments_bp.patch("/<int:assignment_id>")
@require_caller
@handle_service_errors
def admin_update_assignment_route(assignment_id: int):
    assignment = shift_service.admin_override_update(g.caller, assignment_id, json_body())
    return jsonify({"assignment": assignment.to_dict()}), 200


@assignments_bp.delete("/<int:assignment_id>")
@require_caller
@handle_service_errors
def admin_delete_assignment_route(assignment_id: int):
    shift_service.admin_override_delete(g.caller, assignment_id)
    return jsonify({"deleted": assignment_id}), 200


@assignments_bp.get("/<int:assignment_id>/events")
@require_caller
@handle_service_errors
def assignment_events_route(assignment_id: int):
    events = list_events(
        g.caller,
        entity_type="meter_assignment",
        entity_id=assignment_id,
        limit=request.args.get("limit", default=100, type=int),
    )
    return jsonify({"events": [e.to_dict() for e in events]}), 200
