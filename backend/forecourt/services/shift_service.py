"""
Meter assignment and attendant shift lifecycle.

WHY: Every litre that leaves a nozzle must be attributable to exactly one
attendant. A nozzle therefore has at most one OPEN assignment at a time, and
handovers close one assignment and open its successor at the same reading.

DESIGN PRINCIPLES:
- At most one OPEN assignment per nozzle (enforced by a partial unique index,
  checked up front for a clear error message)
- CLOSED is terminal for normal callers; only admin overrides edit history
- A successor opens at exactly the predecessor's closing reading
- dispensed_volume and gross_value are derived, never accepted from callers
- Every state change writes a ShiftEvent in the same transaction
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, NamedTuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..context import CallerContext, ROLE_ADMIN, ROLE_MANAGER
from ..extensions import db
from ..models import AttendantShift, MeterAssignment, STATUS_CLOSED, STATUS_OPEN
from ..models.shifts import VALID_STATUSES
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import (
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
    parse_id,
    parse_money,
    parse_reading,
    parse_unit_price,
)
from . import accounting_service, directory_service, distribution_service
from .audit_service import append_event
from .concurrency import (
    commit_or_conflict,
    flush_or_conflict,
    lock_for_update,
    run_with_retry,
    transactional,
)


class CloseResult(NamedTuple):
    closed: MeterAssignment
    successor: MeterAssignment | None


def _open_conflict(nozzle_id: int) -> ConflictError:
    return ConflictError(
        f"Nozzle {nozzle_id} already has an open assignment",
        field="nozzle_id",
        entity_id=nozzle_id,
    )


def _derived_payload(assignment: MeterAssignment) -> dict:
    return {
        "opening_reading": assignment.opening_reading,
        "closing_reading": assignment.closing_reading,
        "unit_price": assignment.unit_price,
        "dispensed_volume": assignment.dispensed_volume,
        "gross_value": assignment.gross_value,
    }


def _coerce_time(value: Any, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field)
    raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field)


# =============================================================================
# LOOKUPS
# =============================================================================

def get_assignment(ctx: CallerContext, assignment_id: int) -> MeterAssignment:
    assignment = db.session.get(MeterAssignment, assignment_id)
    if not assignment or assignment.tenant_id != ctx.tenant_id:
        raise NotFoundError(f"Assignment {assignment_id} not found", entity_id=assignment_id)
    return assignment


def _get_assignment_for_update(ctx: CallerContext, assignment_id: int) -> MeterAssignment:
    assignment = lock_for_update(
        db.session.query(MeterAssignment).filter_by(id=assignment_id, tenant_id=ctx.tenant_id)
    ).first()
    if not assignment:
        raise NotFoundError(f"Assignment {assignment_id} not found", entity_id=assignment_id)
    return assignment


def list_assignments(
    ctx: CallerContext,
    *,
    status: str | None = None,
    nozzle_id: int | None = None,
    attendant_id: int | None = None,
    attendant_shift_id: int | None = None,
) -> list[MeterAssignment]:
    query = db.session.query(MeterAssignment).filter_by(tenant_id=ctx.tenant_id)
    if status is not None:
        if status not in VALID_STATUSES:
            raise ValidationError(f"Unknown status: {status}", field="status")
        query = query.filter_by(status=status)
    if nozzle_id is not None:
        query = query.filter_by(nozzle_id=nozzle_id)
    if attendant_id is not None:
        query = query.filter_by(attendant_id=attendant_id)
    if attendant_shift_id is not None:
        query = query.filter_by(attendant_shift_id=attendant_shift_id)
    return query.order_by(MeterAssignment.start_time.desc(), MeterAssignment.id.desc()).all()


def get_open_assignment_for_nozzle(ctx: CallerContext, nozzle_id: int) -> MeterAssignment | None:
    return db.session.query(MeterAssignment).filter_by(
        tenant_id=ctx.tenant_id,
        nozzle_id=nozzle_id,
        status=STATUS_OPEN,
    ).first()


def describe_assignment(ctx: CallerContext, assignment_id: int) -> dict:
    """Assignment plus display names for the nozzle, tank, product and attendant."""
    assignment = get_assignment(ctx, assignment_id)
    data = assignment.to_dict()
    data.update(directory_service.describe_nozzle(assignment.nozzle))
    data["attendant_name"] = assignment.attendant.name if assignment.attendant else None
    return data


def _last_closing_reading(ctx: CallerContext, nozzle_id: int) -> Decimal | None:
    last = db.session.query(MeterAssignment).filter_by(
        tenant_id=ctx.tenant_id,
        nozzle_id=nozzle_id,
        status=STATUS_CLOSED,
    ).order_by(MeterAssignment.end_time.desc(), MeterAssignment.id.desc()).first()
    return last.closing_reading if last else None


def _open_shift_for_attendant(ctx: CallerContext, attendant_id: int) -> AttendantShift | None:
    return db.session.query(AttendantShift).filter_by(
        tenant_id=ctx.tenant_id,
        attendant_id=attendant_id,
        status=STATUS_OPEN,
    ).first()


def _insert_open_assignment(
    ctx: CallerContext,
    *,
    nozzle_id: int,
    attendant_id: int,
    opening_reading: Decimal,
    unit_price: Decimal,
    start_time: datetime,
    attendant_shift: AttendantShift | None = None,
    predecessor: MeterAssignment | None = None,
) -> MeterAssignment:
    """
    Insert a new OPEN assignment after the single-open check.

    The check gives a readable error; the partial unique index is what
    actually serializes concurrent openers.
    """
    existing = lock_for_update(
        db.session.query(MeterAssignment).filter_by(
            tenant_id=ctx.tenant_id,
            nozzle_id=nozzle_id,
            status=STATUS_OPEN,
        )
    ).first()
    if existing:
        raise ConflictError(
            f"Nozzle {nozzle_id} already has an open assignment ({existing.id})",
            field="nozzle_id",
            entity_id=existing.id,
        )

    if attendant_shift is not None:
        if not attendant_shift.is_open:
            raise StateError(
                f"Attendant shift {attendant_shift.id} is closed",
                field="attendant_shift_id",
                entity_id=attendant_shift.id,
            )
        if attendant_shift.attendant_id != attendant_id:
            raise ValidationError(
                "Attendant shift belongs to a different attendant",
                field="attendant_shift_id",
                entity_id=attendant_shift.id,
            )

    assignment = MeterAssignment(
        tenant_id=ctx.tenant_id,
        nozzle_id=nozzle_id,
        attendant_id=attendant_id,
        attendant_shift_id=attendant_shift.id if attendant_shift else None,
        predecessor_id=predecessor.id if predecessor else None,
        status=STATUS_OPEN,
        start_time=start_time,
        opening_reading=opening_reading,
        unit_price=unit_price,
    )
    db.session.add(assignment)
    flush_or_conflict(
        f"Nozzle {nozzle_id} already has an open assignment",
        field="nozzle_id",
        entity_id=nozzle_id,
    )
    return assignment


# =============================================================================
# METER ASSIGNMENT LIFECYCLE
# =============================================================================

def open_assignment(
    ctx: CallerContext,
    nozzle_id: int,
    attendant_id: int,
    opening_reading: Any,
    unit_price: Any = None,
    start_time: Any = None,
    attendant_shift_id: int | None = None,
) -> MeterAssignment:
    """
    Open a nozzle for an attendant.

    WHY: Opening is the one step where two people can race for the same
    nozzle. Store contention (locks, stale versions) is retried a bounded
    number of times; a lost race surfaces as ConflictError.

    The opening reading must continue from the nozzle's last closing reading.
    unit_price defaults to the product's current sales rate.
    """
    nozzle_id = parse_id(nozzle_id, "nozzle_id")
    attendant_id = parse_id(attendant_id, "attendant_id")
    reading = parse_reading(opening_reading, "opening_reading")
    price = parse_unit_price(unit_price) if unit_price is not None else None
    started = _coerce_time(start_time, "start_time")
    shift_id = parse_id(attendant_shift_id, "attendant_shift_id") if attendant_shift_id is not None else None

    ctx.require_self_or_privileged(attendant_id)

    def _open() -> MeterAssignment:
        nozzle = directory_service.get_active_nozzle(ctx, nozzle_id)
        directory_service.get_attendant(ctx, attendant_id)

        effective_price = price if price is not None else directory_service.current_sales_rate(nozzle)
        if effective_price is None or effective_price <= 0:
            raise ValidationError(
                "unit_price is required: no sales rate configured for this nozzle's product",
                field="unit_price",
            )

        previous_closing = _last_closing_reading(ctx, nozzle_id)
        if previous_closing is not None and reading != previous_closing:
            raise ValidationError(
                f"Opening reading {reading} does not continue from the last closing reading {previous_closing}",
                field="opening_reading",
                entity_id=nozzle_id,
            )

        if shift_id is not None:
            shift = get_attendant_shift(ctx, shift_id)
        else:
            shift = _open_shift_for_attendant(ctx, attendant_id)

        assignment = _insert_open_assignment(
            ctx,
            nozzle_id=nozzle_id,
            attendant_id=attendant_id,
            opening_reading=reading,
            unit_price=effective_price,
            start_time=started or utcnow(),
            attendant_shift=shift,
        )
        append_event(
            ctx,
            event_type="assignment.opened",
            entity_type="meter_assignment",
            entity_id=assignment.id,
            occurred_at=assignment.start_time,
            note=f"nozzle={nozzle_id} attendant={attendant_id} reading={reading}",
        )
        db.session.commit()
        return assignment

    try:
        assignment = run_with_retry(
            _open,
            attempts=current_app.config.get("SHIFT_OPEN_RETRY_ATTEMPTS", 3),
            backoff_base=current_app.config.get("SHIFT_OPEN_RETRY_BACKOFF", 0.05),
            on_exhausted=lambda exc: _open_conflict(nozzle_id),
        )
    except IntegrityError as exc:
        db.session.rollback()
        raise _open_conflict(nozzle_id) from exc
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Opened assignment %s on nozzle %s for attendant %s", assignment.id, nozzle_id, attendant_id
    )
    return assignment


def _validate_closing(assignment: MeterAssignment, reading: Decimal, end_time: datetime) -> None:
    if reading < assignment.opening_reading:
        raise ValidationError(
            f"Closing reading {reading} is below opening reading {assignment.opening_reading}",
            field="closing_reading",
            entity_id=assignment.id,
        )
    if end_time < assignment.start_time:
        raise ValidationError(
            "end_time cannot be before start_time",
            field="end_time",
            entity_id=assignment.id,
        )


def _chain_successor(
    ctx: CallerContext,
    predecessor: MeterAssignment,
    attendant_id: int,
    *,
    opening_reading: Decimal,
    unit_price: Decimal,
    start_time: datetime,
) -> MeterAssignment:
    directory_service.get_attendant(ctx, attendant_id)
    successor = _insert_open_assignment(
        ctx,
        nozzle_id=predecessor.nozzle_id,
        attendant_id=attendant_id,
        opening_reading=opening_reading,
        unit_price=unit_price,
        start_time=start_time,
        attendant_shift=_open_shift_for_attendant(ctx, attendant_id),
        predecessor=predecessor,
    )
    append_event(
        ctx,
        event_type="assignment.chained",
        entity_type="meter_assignment",
        entity_id=successor.id,
        occurred_at=start_time,
        note=f"predecessor={predecessor.id} attendant={attendant_id} reading={opening_reading}",
    )
    return successor


@transactional
def close_assignment(
    ctx: CallerContext,
    assignment_id: int,
    closing_reading: Any,
    successor_attendant_id: int | None = None,
    successor_unit_price: Any = None,
    end_time: Any = None,
) -> CloseResult:
    """
    Close an OPEN assignment, optionally handing the nozzle to a successor.

    The successor opens at exactly the closing reading, at the same instant,
    in the same transaction: the handover either happens whole or not at all.
    Successor price defaults to the closed assignment's unit price.
    """
    reading = parse_reading(closing_reading, "closing_reading")
    successor_id = (
        parse_id(successor_attendant_id, "successor_attendant_id")
        if successor_attendant_id is not None else None
    )
    successor_price = (
        parse_unit_price(successor_unit_price, "successor_unit_price")
        if successor_unit_price is not None else None
    )
    ended = _coerce_time(end_time, "end_time") or utcnow()

    assignment = _get_assignment_for_update(ctx, assignment_id)
    ctx.require_self_or_privileged(assignment.attendant_id)

    if assignment.is_closed:
        raise StateError(
            f"Assignment {assignment_id} is already closed",
            field="status",
            entity_id=assignment_id,
        )
    _validate_closing(assignment, reading, ended)

    assignment.close(reading, ended)
    # Release the nozzle's open slot before the successor claims it
    flush_or_conflict(f"Assignment {assignment_id} was changed concurrently", entity_id=assignment_id)
    append_event(
        ctx,
        event_type="assignment.closed",
        entity_type="meter_assignment",
        entity_id=assignment.id,
        occurred_at=ended,
        note=f"reading={reading} volume={assignment.dispensed_volume}",
        payload=_derived_payload(assignment),
    )

    successor = None
    if successor_id is not None:
        successor = _chain_successor(
            ctx,
            assignment,
            successor_id,
            opening_reading=reading,
            unit_price=successor_price if successor_price is not None else assignment.unit_price,
            start_time=ended,
        )

    commit_or_conflict(
        f"Assignment {assignment_id} was changed concurrently",
        entity_id=assignment_id,
    )
    current_app.logger.info(
        "Closed assignment %s at %s (volume %s)%s",
        assignment.id,
        reading,
        assignment.dispensed_volume,
        f", handed over to assignment {successor.id}" if successor else "",
    )
    return CloseResult(closed=assignment, successor=successor)


# =============================================================================
# ADMIN OVERRIDES
# =============================================================================

@transactional
def admin_override_close(
    ctx: CallerContext,
    assignment_id: int,
    closing_reading: Any,
    successor_attendant_id: int | None = None,
    successor_opening_reading: Any = None,
    successor_unit_price: Any = None,
    end_time: Any = None,
) -> CloseResult:
    """
    Admin close that may correct an already-closed assignment.

    WHY: Meters get replaced and readings get mistyped. The successor may
    open at a reading other than the closing reading; the single-open rule
    still holds. Existing reconciliations are re-derived from the new figures.
    """
    ctx.require_role(ROLE_ADMIN)

    reading = parse_reading(closing_reading, "closing_reading")
    successor_id = (
        parse_id(successor_attendant_id, "successor_attendant_id")
        if successor_attendant_id is not None else None
    )
    successor_reading = (
        parse_reading(successor_opening_reading, "successor_opening_reading")
        if successor_opening_reading is not None else reading
    )
    successor_price = (
        parse_unit_price(successor_unit_price, "successor_unit_price")
        if successor_unit_price is not None else None
    )

    assignment = _get_assignment_for_update(ctx, assignment_id)
    was_closed = assignment.is_closed
    ended = _coerce_time(end_time, "end_time") or (assignment.end_time if was_closed else utcnow())
    _validate_closing(assignment, reading, ended)

    assignment.close(reading, ended)
    flush_or_conflict(f"Assignment {assignment_id} was changed concurrently", entity_id=assignment_id)
    append_event(
        ctx,
        event_type="assignment.admin_closed",
        entity_type="meter_assignment",
        entity_id=assignment.id,
        occurred_at=ended,
        note=f"reading={reading} reclose={was_closed}",
        payload=_derived_payload(assignment),
    )

    if was_closed:
        accounting_service.refresh_for_assignment(ctx, assignment)

    successor = None
    if successor_id is not None:
        successor = _chain_successor(
            ctx,
            assignment,
            successor_id,
            opening_reading=successor_reading,
            unit_price=successor_price if successor_price is not None else assignment.unit_price,
            start_time=ended,
        )

    commit_or_conflict(
        f"Nozzle {assignment.nozzle_id} already has an open assignment",
        entity_id=assignment_id,
    )
    current_app.logger.info("Admin closed assignment %s at %s", assignment.id, reading)
    return CloseResult(closed=assignment, successor=successor)


_EDITABLE_FIELDS = (
    "attendant_id",
    "start_time",
    "end_time",
    "opening_reading",
    "closing_reading",
    "unit_price",
    "status",
)


@transactional
def admin_override_update(ctx: CallerContext, assignment_id: int, changes: dict) -> MeterAssignment:
    """
    Edit any field of an assignment.

    Derived figures are recomputed and the single-open rule is re-checked
    when the status becomes OPEN. Reopening a reconciled assignment is refused.
    """
    ctx.require_role(ROLE_ADMIN)

    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No changes supplied")
    unknown = sorted(set(changes) - set(_EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(unknown)}", field=unknown[0])

    assignment = _get_assignment_for_update(ctx, assignment_id)

    if "attendant_id" in changes:
        attendant_id = parse_id(changes["attendant_id"], "attendant_id")
        directory_service.get_attendant(ctx, attendant_id)
        if attendant_id != assignment.attendant_id:
            if accounting_service.accountings_covering(ctx, assignment):
                raise StateError(
                    f"Assignment {assignment_id} has been reconciled; its attendant cannot change",
                    field="attendant_id",
                    entity_id=assignment_id,
                )
            # An assignment only ever sits in its own attendant's shift
            new_shift = _open_shift_for_attendant(ctx, attendant_id)
            assignment.attendant_id = attendant_id
            assignment.attendant_shift_id = new_shift.id if new_shift else None
    if "start_time" in changes:
        started = _coerce_time(changes["start_time"], "start_time")
        if started is None:
            raise ValidationError("start_time is required", field="start_time")
        assignment.start_time = started
    if "end_time" in changes:
        assignment.end_time = _coerce_time(changes["end_time"], "end_time")
    if "opening_reading" in changes:
        assignment.opening_reading = parse_reading(changes["opening_reading"], "opening_reading")
    if "closing_reading" in changes:
        value = changes["closing_reading"]
        assignment.closing_reading = parse_reading(value, "closing_reading") if value is not None else None
    if "unit_price" in changes:
        assignment.unit_price = parse_unit_price(changes["unit_price"])

    reopening = False
    if "status" in changes:
        status = changes["status"]
        if status not in VALID_STATUSES:
            raise ValidationError(f"Unknown status: {status}", field="status")
        reopening = status == STATUS_OPEN and assignment.is_closed
        assignment.status = status

    if assignment.is_open:
        if reopening and accounting_service.accountings_covering(ctx, assignment):
            raise StateError(
                f"Assignment {assignment_id} has been reconciled and cannot be reopened",
                field="status",
                entity_id=assignment_id,
            )
        if reopening:
            assignment.closing_reading = None
            assignment.end_time = None
            other = db.session.query(MeterAssignment).filter(
                MeterAssignment.tenant_id == ctx.tenant_id,
                MeterAssignment.nozzle_id == assignment.nozzle_id,
                MeterAssignment.status == STATUS_OPEN,
                MeterAssignment.id != assignment.id,
            ).first()
            if other:
                raise ConflictError(
                    f"Nozzle {assignment.nozzle_id} already has an open assignment ({other.id})",
                    field="status",
                    entity_id=other.id,
                )
        elif assignment.closing_reading is not None:
            raise ValidationError(
                "An open assignment cannot carry a closing reading",
                field="closing_reading",
                entity_id=assignment_id,
            )
    else:
        if assignment.closing_reading is None:
            raise ValidationError(
                "A closed assignment requires a closing reading",
                field="closing_reading",
                entity_id=assignment_id,
            )
        if assignment.end_time is None:
            assignment.end_time = utcnow()
        _validate_closing(assignment, assignment.closing_reading, assignment.end_time)

    assignment.recompute_derived()
    flush_or_conflict(
        f"Nozzle {assignment.nozzle_id} already has an open assignment",
        entity_id=assignment_id,
    )
    append_event(
        ctx,
        event_type="assignment.admin_updated",
        entity_type="meter_assignment",
        entity_id=assignment.id,
        note=f"fields={','.join(sorted(changes))}",
        payload=_derived_payload(assignment),
    )

    if assignment.is_closed:
        accounting_service.refresh_for_assignment(ctx, assignment)

    commit_or_conflict(
        f"Nozzle {assignment.nozzle_id} already has an open assignment",
        entity_id=assignment_id,
    )
    current_app.logger.info("Admin updated assignment %s (%s)", assignment.id, ", ".join(sorted(changes)))
    return assignment


@transactional
def admin_override_delete(ctx: CallerContext, assignment_id: int) -> None:
    """
    Delete an assignment together with every reconciliation that covers it.

    Covering reconciliations lose their distributions first (bank credits are
    reversed). Successors keep their rows; only their predecessor link clears.
    """
    ctx.require_role(ROLE_ADMIN)

    with distribution_service.external_reversals(ctx) as reversals:
        assignment = _get_assignment_for_update(ctx, assignment_id)

        for record in accounting_service.accountings_covering(ctx, assignment):
            accounting_service.delete_accounting_cascade(ctx, record, reversals)

        for successor in db.session.query(MeterAssignment).filter_by(predecessor_id=assignment.id).all():
            successor.predecessor_id = None

        append_event(
            ctx,
            event_type="assignment.admin_deleted",
            entity_type="meter_assignment",
            entity_id=assignment.id,
            note=f"nozzle={assignment.nozzle_id} attendant={assignment.attendant_id}",
            payload=_derived_payload(assignment),
        )
        db.session.delete(assignment)
        commit_or_conflict(f"Assignment {assignment_id} was changed concurrently", entity_id=assignment_id)
    current_app.logger.info("Admin deleted assignment %s", assignment_id)


# =============================================================================
# ATTENDANT SHIFTS
# =============================================================================

def get_attendant_shift(ctx: CallerContext, shift_id: int) -> AttendantShift:
    shift = db.session.get(AttendantShift, shift_id)
    if not shift or shift.tenant_id != ctx.tenant_id:
        raise NotFoundError(f"Attendant shift {shift_id} not found", entity_id=shift_id)
    return shift


def list_attendant_shifts(
    ctx: CallerContext,
    *,
    status: str | None = None,
    attendant_id: int | None = None,
) -> list[AttendantShift]:
    query = db.session.query(AttendantShift).filter_by(tenant_id=ctx.tenant_id)
    if status is not None:
        if status not in VALID_STATUSES:
            raise ValidationError(f"Unknown status: {status}", field="status")
        query = query.filter_by(status=status)
    if attendant_id is not None:
        query = query.filter_by(attendant_id=attendant_id)
    return query.order_by(AttendantShift.start_time.desc(), AttendantShift.id.desc()).all()


@transactional
def start_attendant_shift(
    ctx: CallerContext,
    attendant_id: int,
    opening_cash: Any = 0,
    start_time: Any = None,
) -> AttendantShift:
    """Start an attendant's working shift. One OPEN shift per attendant."""
    attendant_id = parse_id(attendant_id, "attendant_id")
    cash = parse_money(opening_cash if opening_cash is not None else 0, "opening_cash")
    started = _coerce_time(start_time, "start_time") or utcnow()

    ctx.require_self_or_privileged(attendant_id)
    directory_service.get_attendant(ctx, attendant_id)

    existing = _open_shift_for_attendant(ctx, attendant_id)
    if existing:
        raise ConflictError(
            f"Attendant {attendant_id} already has an open shift ({existing.id})",
            field="attendant_id",
            entity_id=existing.id,
        )

    shift = AttendantShift(
        tenant_id=ctx.tenant_id,
        attendant_id=attendant_id,
        status=STATUS_OPEN,
        start_time=started,
        opening_cash=cash,
    )
    db.session.add(shift)
    flush_or_conflict(f"Attendant {attendant_id} already has an open shift", field="attendant_id")
    append_event(
        ctx,
        event_type="attendant_shift.started",
        entity_type="attendant_shift",
        entity_id=shift.id,
        occurred_at=started,
        note=f"attendant={attendant_id} opening_cash={cash}",
    )
    commit_or_conflict(f"Attendant {attendant_id} already has an open shift", field="attendant_id")
    current_app.logger.info("Started attendant shift %s for attendant %s", shift.id, attendant_id)
    return shift


@transactional
def close_attendant_shift(ctx: CallerContext, shift_id: int, end_time: Any = None) -> AttendantShift:
    """
    Close an attendant shift.

    WHY: A shift is reconciled as a whole, so every assignment in it must be
    closed first; otherwise the counted cash would not match a final volume.
    """
    ended = _coerce_time(end_time, "end_time") or utcnow()

    shift = lock_for_update(
        db.session.query(AttendantShift).filter_by(id=shift_id, tenant_id=ctx.tenant_id)
    ).first()
    if not shift:
        raise NotFoundError(f"Attendant shift {shift_id} not found", entity_id=shift_id)
    ctx.require_self_or_privileged(shift.attendant_id)

    if shift.is_closed:
        raise StateError(f"Attendant shift {shift_id} is already closed", field="status", entity_id=shift_id)

    still_open = [a.id for a in shift.assignments if a.is_open]
    if still_open:
        raise StateError(
            f"Attendant shift {shift_id} has {len(still_open)} open assignment(s): "
            f"{', '.join(str(i) for i in still_open)}",
            field="status",
            entity_id=shift_id,
        )
    if ended < shift.start_time:
        raise ValidationError("end_time cannot be before start_time", field="end_time", entity_id=shift_id)

    shift.status = STATUS_CLOSED
    shift.end_time = ended
    append_event(
        ctx,
        event_type="attendant_shift.closed",
        entity_type="attendant_shift",
        entity_id=shift.id,
        occurred_at=ended,
    )
    commit_or_conflict(f"Attendant shift {shift_id} was changed concurrently", entity_id=shift_id)
    current_app.logger.info("Closed attendant shift %s", shift.id)
    return shift


@transactional
def delete_attendant_shift(ctx: CallerContext, shift_id: int) -> None:
    """Delete an OPEN attendant shift that never held an assignment."""
    ctx.require_role(ROLE_MANAGER, ROLE_ADMIN)

    shift = get_attendant_shift(ctx, shift_id)
    if shift.is_closed:
        raise StateError(f"Attendant shift {shift_id} is closed", field="status", entity_id=shift_id)
    if shift.assignments:
        raise StateError(
            f"Attendant shift {shift_id} has assignments and cannot be deleted",
            entity_id=shift_id,
        )

    append_event(
        ctx,
        event_type="attendant_shift.deleted",
        entity_type="attendant_shift",
        entity_id=shift.id,
        note=f"attendant={shift.attendant_id}",
    )
    db.session.delete(shift)
    commit_or_conflict(f"Attendant shift {shift_id} was changed concurrently", entity_id=shift_id)
    current_app.logger.info("Deleted attendant shift %s", shift_id)
