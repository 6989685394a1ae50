"""
Shift cash reconciliation.

WHY: At the end of a shift the attendant declares what they took in by
channel (UPI, card, fleet card, credit) and counts the cash in hand. The
system compares that count to the cash the meters say should be there.

FORMULAS (all money at 2 dp):
    fuel_sales_amount      = sum(gross_value of closed assignments in scope)
    counted_cash           = sum(count x face value)
    system_expected_amount = fuel_sales_amount + customer_receipt_amount
    expected_cash_in_hand  = system_expected_amount - upi - card - fleet_card
                             - credit_extended - expenses + opening_cash_advance
    variance_amount        = counted_cash - expected_cash_in_hand

expected_cash_in_hand may go negative (digital receipts above fuel sales);
that simply flows into the variance.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from decimal import Decimal
from typing import Any, Iterable, Mapping

from flask import current_app
from sqlalchemy import or_

from ..context import CallerContext, ROLE_ADMIN, ROLE_MANAGER
from ..extensions import db
from ..models import AttendantShift, DENOMINATION_FIELDS, MeterAssignment, ShiftAccounting
from ..validation import (
    NotFoundError,
    StateError,
    ValidationError,
    parse_count,
    parse_money,
    quantize_money,
)
from . import directory_service, distribution_service
from .audit_service import append_event
from .concurrency import commit_or_conflict, lock_for_update, transactional


SCOPE_ASSIGNMENT = "assignment"
SCOPE_ATTENDANT_SHIFT = "attendant_shift"

_DENOMINATION_VALUES = dict(DENOMINATION_FIELDS)

_MONEY_INPUTS = (
    "customer_receipt_amount",
    "upi_amount",
    "card_amount",
    "fleet_card_amount",
    "credit_extended",
    "expenses",
)


@dataclass(frozen=True)
class ShiftScope:
    """What a reconciliation covers: one assignment or one attendant shift."""

    kind: str
    id: int

    def __post_init__(self):
        if self.kind not in (SCOPE_ASSIGNMENT, SCOPE_ATTENDANT_SHIFT):
            raise ValidationError(f"Unknown scope kind: {self.kind}", field="scope")
        if isinstance(self.id, bool) or not isinstance(self.id, int):
            raise ValidationError("Scope id must be an integer", field="scope")

    @classmethod
    def assignment(cls, assignment_id: int) -> "ShiftScope":
        return cls(SCOPE_ASSIGNMENT, assignment_id)

    @classmethod
    def attendant_shift(cls, shift_id: int) -> "ShiftScope":
        return cls(SCOPE_ATTENDANT_SHIFT, shift_id)


@dataclass(frozen=True)
class DeclaredInputs:
    """
    Everything the attendant declares for a reconciliation.

    Values are validated and normalized on construction: money to Decimal at
    2 dp (never negative), denomination counts to plain ints. Omitted amounts
    are zero. opening_cash_advance left as None means "use the shift's
    opening cash" for attendant-shift scope, zero otherwise.
    """

    customer_receipt_amount: Any = Decimal("0.00")
    upi_amount: Any = Decimal("0.00")
    card_amount: Any = Decimal("0.00")
    fleet_card_amount: Any = Decimal("0.00")
    credit_extended: Any = Decimal("0.00")
    expenses: Any = Decimal("0.00")
    expense_reason: str | None = None
    opening_cash_advance: Any = None
    denominations: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        for name in _MONEY_INPUTS:
            value = getattr(self, name)
            object.__setattr__(self, name, parse_money(value if value is not None else 0, name))

        if self.opening_cash_advance is not None:
            object.__setattr__(
                self,
                "opening_cash_advance",
                parse_money(self.opening_cash_advance, "opening_cash_advance"),
            )

        if self.expense_reason is not None:
            if not isinstance(self.expense_reason, str):
                raise ValidationError("expense_reason must be text", field="expense_reason")
            reason = self.expense_reason.strip() or None
            if reason and len(reason) > 255:
                raise ValidationError("expense_reason is too long", field="expense_reason")
            object.__setattr__(self, "expense_reason", reason)

        if not isinstance(self.denominations, Mapping):
            raise ValidationError("denominations must be an object of counts", field="denominations")
        unknown = sorted(set(self.denominations) - set(_DENOMINATION_VALUES))
        if unknown:
            raise ValidationError(f"Unknown denomination: {unknown[0]}", field=unknown[0])
        counts = {
            name: parse_count(self.denominations.get(name), name)
            for name, _ in DENOMINATION_FIELDS
        }
        object.__setattr__(self, "denominations", counts)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "DeclaredInputs":
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValidationError("Reconciliation inputs must be an object")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ValidationError(f"Unknown field: {unknown[0]}", field=unknown[0])
        return cls(**payload)


@dataclass(frozen=True)
class ReconciliationFigures:
    fuel_sales_amount: Decimal
    counted_cash: Decimal
    system_expected_amount: Decimal
    expected_cash_in_hand: Decimal
    variance_amount: Decimal


# =============================================================================
# PURE CALCULATIONS
# =============================================================================

def counted_cash(denominations: Mapping[str, int]) -> Decimal:
    """Sum of count x face value over the denomination vector."""
    total = 0
    for name, face_value in DENOMINATION_FIELDS:
        total += (denominations.get(name) or 0) * face_value
    return quantize_money(Decimal(total))


def fuel_sales_for(assignments: Iterable[MeterAssignment]) -> Decimal:
    """Exact sum of gross values, rounded half-up to money precision once."""
    total = Decimal("0")
    for assignment in assignments:
        if assignment.is_open or assignment.gross_value is None:
            raise StateError(
                f"Assignment {assignment.id} is still open",
                field="status",
                entity_id=assignment.id,
            )
        total += assignment.gross_value
    return quantize_money(total)


def derive_figures(
    fuel_sales_amount: Decimal,
    inputs: DeclaredInputs,
    opening_cash_advance: Decimal | None = None,
) -> ReconciliationFigures:
    advance = opening_cash_advance
    if advance is None:
        advance = inputs.opening_cash_advance if inputs.opening_cash_advance is not None else Decimal("0.00")

    fuel_sales = quantize_money(fuel_sales_amount)
    cash = counted_cash(inputs.denominations)
    system_expected = fuel_sales + inputs.customer_receipt_amount
    expected_in_hand = (
        system_expected
        - inputs.upi_amount
        - inputs.card_amount
        - inputs.fleet_card_amount
        - inputs.credit_extended
        - inputs.expenses
        + advance
    )
    return ReconciliationFigures(
        fuel_sales_amount=fuel_sales,
        counted_cash=cash,
        system_expected_amount=system_expected,
        expected_cash_in_hand=expected_in_hand,
        variance_amount=cash - expected_in_hand,
    )


# =============================================================================
# SCOPE RESOLUTION
# =============================================================================

def _coerce_inputs(inputs: DeclaredInputs | Mapping[str, Any] | None) -> DeclaredInputs:
    if isinstance(inputs, DeclaredInputs):
        return inputs
    return DeclaredInputs.from_payload(inputs)


def _resolve_scope(ctx: CallerContext, scope: ShiftScope):
    """Return (owner attendant id, assignments in scope, opening cash default)."""
    if not isinstance(scope, ShiftScope):
        raise ValidationError("scope must be a ShiftScope", field="scope")

    if scope.kind == SCOPE_ASSIGNMENT:
        assignment = db.session.get(MeterAssignment, scope.id)
        if not assignment or assignment.tenant_id != ctx.tenant_id:
            raise NotFoundError(f"Assignment {scope.id} not found", entity_id=scope.id)
        if assignment.is_open:
            raise StateError(
                f"Assignment {scope.id} is still open",
                field="status",
                entity_id=scope.id,
            )
        return assignment.attendant_id, [assignment], None

    shift = db.session.get(AttendantShift, scope.id)
    if not shift or shift.tenant_id != ctx.tenant_id:
        raise NotFoundError(f"Attendant shift {scope.id} not found", entity_id=scope.id)
    if shift.is_open:
        raise StateError(
            f"Attendant shift {scope.id} is still open",
            field="status",
            entity_id=scope.id,
        )
    return shift.attendant_id, list(shift.assignments), shift.opening_cash


def _existing_for_scope(ctx: CallerContext, scope: ShiftScope) -> ShiftAccounting | None:
    query = db.session.query(ShiftAccounting).filter_by(tenant_id=ctx.tenant_id)
    if scope.kind == SCOPE_ASSIGNMENT:
        return query.filter_by(assignment_id=scope.id).first()
    return query.filter_by(attendant_shift_id=scope.id).first()


def _scope_of(record: ShiftAccounting) -> ShiftScope:
    if record.assignment_id is not None:
        return ShiftScope.assignment(record.assignment_id)
    return ShiftScope.attendant_shift(record.attendant_shift_id)


def _check_no_double_count(ctx: CallerContext, scope: ShiftScope, assignments: list[MeterAssignment]) -> None:
    """An assignment is reconciled either on its own or within its shift, never both."""
    if scope.kind == SCOPE_ASSIGNMENT:
        shift_id = assignments[0].attendant_shift_id
        if shift_id is not None and _existing_for_scope(ctx, ShiftScope.attendant_shift(shift_id)):
            raise StateError(
                f"Assignment {scope.id} is already reconciled with attendant shift {shift_id}",
                entity_id=scope.id,
            )
        return

    ids = [a.id for a in assignments]
    if not ids:
        return
    already = db.session.query(ShiftAccounting).filter(
        ShiftAccounting.tenant_id == ctx.tenant_id,
        ShiftAccounting.assignment_id.in_(ids),
    ).first()
    if already:
        raise StateError(
            f"Assignment {already.assignment_id} in this shift is already reconciled on its own",
            entity_id=already.id,
        )


def _apply(record: ShiftAccounting, inputs: DeclaredInputs, advance: Decimal, figures: ReconciliationFigures) -> None:
    """Full replace of the declared inputs and derived snapshot."""
    for name in _MONEY_INPUTS:
        setattr(record, name, getattr(inputs, name))
    record.expense_reason = inputs.expense_reason
    record.opening_cash_advance = advance
    for name, count in inputs.denominations.items():
        setattr(record, name, count)

    record.fuel_sales_amount = figures.fuel_sales_amount
    record.counted_cash = figures.counted_cash
    record.system_expected_amount = figures.system_expected_amount
    record.expected_cash_in_hand = figures.expected_cash_in_hand
    record.variance_amount = figures.variance_amount


def _effective_advance(inputs: DeclaredInputs, default: Decimal | None) -> Decimal:
    if inputs.opening_cash_advance is not None:
        return inputs.opening_cash_advance
    return default if default is not None else Decimal("0.00")


# =============================================================================
# RECONCILIATION
# =============================================================================

@transactional
def reconcile(
    ctx: CallerContext,
    scope: ShiftScope,
    inputs: DeclaredInputs | Mapping[str, Any] | None,
) -> ShiftAccounting:
    """
    Create the reconciliation for a closed assignment or attendant shift.

    A scope is reconciled at most once; corrections go through
    update_accounting.
    """
    declared = _coerce_inputs(inputs)
    owner_id, assignments, advance_default = _resolve_scope(ctx, scope)
    ctx.require_self_or_privileged(owner_id)

    existing = _existing_for_scope(ctx, scope)
    if existing:
        raise StateError(
            f"{scope.kind.replace('_', ' ').capitalize()} {scope.id} is already reconciled; update it instead",
            entity_id=existing.id,
        )
    _check_no_double_count(ctx, scope, assignments)

    advance = _effective_advance(declared, advance_default)
    figures = derive_figures(fuel_sales_for(assignments), declared, advance)

    record = ShiftAccounting(
        tenant_id=ctx.tenant_id,
        assignment_id=scope.id if scope.kind == SCOPE_ASSIGNMENT else None,
        attendant_shift_id=scope.id if scope.kind == SCOPE_ATTENDANT_SHIFT else None,
        distributed_amount=Decimal("0.00"),
        entry_by=ctx.user_id,
    )
    _apply(record, declared, advance, figures)
    db.session.add(record)
    db.session.flush()

    append_event(
        ctx,
        event_type="accounting.created",
        entity_type="shift_accounting",
        entity_id=record.id,
        note=f"{scope.kind}={scope.id} variance={figures.variance_amount}",
        payload=asdict(figures),
    )
    commit_or_conflict(f"{scope.kind} {scope.id} is already reconciled", entity_id=scope.id)
    current_app.logger.info(
        "Reconciled %s %s: counted %s, expected %s, variance %s",
        scope.kind,
        scope.id,
        figures.counted_cash,
        figures.expected_cash_in_hand,
        figures.variance_amount,
    )
    return record


def _get_for_update(ctx: CallerContext, accounting_id: int) -> ShiftAccounting:
    record = lock_for_update(
        db.session.query(ShiftAccounting).filter_by(id=accounting_id, tenant_id=ctx.tenant_id)
    ).first()
    if not record:
        raise NotFoundError(f"Shift accounting {accounting_id} not found", entity_id=accounting_id)
    return record


@transactional
def update_accounting(
    ctx: CallerContext,
    accounting_id: int,
    inputs: DeclaredInputs | Mapping[str, Any] | None,
) -> ShiftAccounting:
    """
    Replace the declared inputs and re-derive every computed figure.

    Fuel sales are re-read from the assignments. Fields omitted from the new
    inputs reset to zero; nothing from the previous version is merged.
    """
    ctx.require_role(ROLE_MANAGER, ROLE_ADMIN)
    declared = _coerce_inputs(inputs)

    record = _get_for_update(ctx, accounting_id)
    _owner, assignments, advance_default = _resolve_scope(ctx, _scope_of(record))

    advance = _effective_advance(declared, advance_default)
    figures = derive_figures(fuel_sales_for(assignments), declared, advance)
    if figures.counted_cash < record.distributed_amount:
        raise ValidationError(
            f"Counted cash {figures.counted_cash} is below the {record.distributed_amount} already distributed",
            field="denominations",
            entity_id=record.id,
        )

    _apply(record, declared, advance, figures)
    record.entry_by = ctx.user_id
    append_event(
        ctx,
        event_type="accounting.updated",
        entity_type="shift_accounting",
        entity_id=record.id,
        note=f"variance={figures.variance_amount}",
        payload=asdict(figures),
    )
    commit_or_conflict(f"Shift accounting {accounting_id} was changed concurrently", entity_id=accounting_id)
    current_app.logger.info("Updated shift accounting %s: variance %s", record.id, figures.variance_amount)
    return record


def refresh_for_assignment(ctx: CallerContext, assignment: MeterAssignment) -> list[ShiftAccounting]:
    """
    Re-derive the figures of every reconciliation covering an edited assignment.

    Declared inputs are kept. Caller owns the transaction.
    """
    refreshed = []
    for record in accountings_covering(ctx, assignment):
        _owner, assignments, _default = _resolve_scope(ctx, _scope_of(record))
        declared = DeclaredInputs(
            **{name: getattr(record, name) for name in _MONEY_INPUTS},
            expense_reason=record.expense_reason,
            opening_cash_advance=record.opening_cash_advance,
            denominations=record.denominations,
        )
        figures = derive_figures(fuel_sales_for(assignments), declared)
        _apply(record, declared, record.opening_cash_advance, figures)
        append_event(
            ctx,
            event_type="accounting.rederived",
            entity_type="shift_accounting",
            entity_id=record.id,
            note=f"assignment={assignment.id} variance={figures.variance_amount}",
            payload=asdict(figures),
        )
        refreshed.append(record)
    return refreshed


def accountings_covering(ctx: CallerContext, assignment: MeterAssignment) -> list[ShiftAccounting]:
    """Reconciliations whose scope includes the assignment (its own or its shift's)."""
    clauses = [ShiftAccounting.assignment_id == assignment.id]
    if assignment.attendant_shift_id is not None:
        clauses.append(ShiftAccounting.attendant_shift_id == assignment.attendant_shift_id)
    return db.session.query(ShiftAccounting).filter(
        ShiftAccounting.tenant_id == ctx.tenant_id,
        or_(*clauses),
    ).all()


def delete_accounting_cascade(
    ctx: CallerContext,
    record: ShiftAccounting,
    reversals: distribution_service.LedgerReversals,
) -> None:
    """Reverse and delete distributions, then the record. Caller owns the transaction."""
    distribution_service.reverse_and_delete_all(ctx, record, reversals)
    append_event(
        ctx,
        event_type="accounting.deleted",
        entity_type="shift_accounting",
        entity_id=record.id,
        note=f"{record.scope_kind}={record.assignment_id or record.attendant_shift_id}",
    )
    db.session.delete(record)
    db.session.flush()


@transactional
def delete_accounting(ctx: CallerContext, accounting_id: int) -> None:
    ctx.require_role(ROLE_MANAGER, ROLE_ADMIN)
    with distribution_service.external_reversals(ctx) as reversals:
        record = _get_for_update(ctx, accounting_id)
        delete_accounting_cascade(ctx, record, reversals)
        commit_or_conflict(f"Shift accounting {accounting_id} was changed concurrently", entity_id=accounting_id)
    current_app.logger.info("Deleted shift accounting %s", accounting_id)


# =============================================================================
# READS
# =============================================================================

def get_accounting(ctx: CallerContext, accounting_id: int) -> ShiftAccounting:
    record = db.session.get(ShiftAccounting, accounting_id)
    if not record or record.tenant_id != ctx.tenant_id:
        raise NotFoundError(f"Shift accounting {accounting_id} not found", entity_id=accounting_id)
    return record


def get_accounting_for_scope(ctx: CallerContext, scope: ShiftScope) -> ShiftAccounting | None:
    return _existing_for_scope(ctx, scope)


def describe_accounting(ctx: CallerContext, accounting_id: int) -> dict:
    """Reconciliation with the display names of everything it covers."""
    record = get_accounting(ctx, accounting_id)
    _owner, assignments, _default = _resolve_scope(ctx, _scope_of(record))

    data = record.to_dict()
    data["undistributed_amount"] = format(record.undistributed_amount, "f")
    data["assignments"] = []
    for assignment in assignments:
        row = {
            "id": assignment.id,
            "attendant_id": assignment.attendant_id,
            "attendant_name": assignment.attendant.name if assignment.attendant else None,
            "dispensed_volume": format(assignment.dispensed_volume, "f"),
            "gross_value": format(assignment.gross_value, "f"),
        }
        row.update(directory_service.describe_nozzle(assignment.nozzle))
        data["assignments"].append(row)
    return data
