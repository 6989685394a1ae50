# Overview: Flask API routes for attendant shifts; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import handle_service_errors, json_body, require_caller
from ..services import shift_service


attendant_shifts_bp = Blueprint("attendant_shifts", __name__, url_prefix="/api/attendant-shifts")


@attendant_shifts_bp.post("")
@require_caller
@handle_service_errors
def start_shift_route():
    """
    Start an attendant shift.

    Request body:
    {
        "attendant_id": 7,
        "opening_cash": "500.00",   (optional)
        "start_time": "..."         (optional)
    }
    """
    data = json_body()
    shift = shift_service.start_attendant_shift(
        g.caller,
        attendant_id=data.get("attendant_id"),
        opening_cash=data.get("opening_cash", 0),
        start_time=data.get("start_time"),
    )
    return jsonify({"attendant_shift": shift.to_dict()}), 201


@attendant_shifts_bp.get("")
@require_caller
@handle_service_errors
def list_shifts_route():
    shifts = shift_service.list_attendant_shifts(
        g.caller,
        status=request.args.get("status"),
        attendant_id=request.args.get("attendant_id", type=int),
    )
    return jsonify({"attendant_shifts": [s.to_dict() for s in shifts]}), 200


@attendant_shifts_bp.get("/<int:shift_id>")
@require_caller
@handle_service_errors
def get_shift_route(shift_id: int):
    shift = shift_service.get_attendant_shift(g.caller, shift_id)
    return jsonify({"attendant_shift": shift.to_dict()}), 200


@attendant_shifts_bp.post("/<int:shift_id>/close")
@require_caller
@handle_service_errors
def close_shift_route(shift_id: int):
    data = json_body()
    shift = shift_service.close_attendant_shift(g.caller, shift_id, end_time=data.get("end_time"))
    return jsonify({"attendant_shift": shift.to_dict()}), 200


@attendant_shifts_bp.delete("/<int:shift_id>")
@require_caller
@handle_service_errors
def delete_shift_route(shift_id: int):
    shift_service.delete_attendant_shift(g.caller, shift_id)
    return jsonify({"deleted": shift_id}), 200
