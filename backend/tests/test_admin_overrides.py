# Overview: Pytest coverage for admin corrections to meter assignments.

from decimal import Decimal

import pytest

from forecourt.extensions import db
from forecourt.models import BankTransaction, CashDistributionEntry, MeterAssignment, ShiftAccounting, STATUS_CLOSED, STATUS_OPEN
from forecourt.services import accounting_service, distribution_service, shift_service
from forecourt.services.accounting_service import ShiftScope
from forecourt.services.bank_ledger import get_balance
from forecourt.validation import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)


@pytest.fixture
def closed(station, admin_ctx):
    assignment = shift_service.open_assignment(
        admin_ctx, station.nozzle_id, station.asha_id, "1000.000", unit_price="100.00"
    )
    return shift_service.close_assignment(admin_ctx, assignment.id, "1010.000").closed


class TestAdminClose:

    def test_close_open_assignment(self, station, admin_ctx):
        assignment = shift_service.open_assignment(admin_ctx, station.nozzle_id, station.asha_id, "5")
        result = shift_service.admin_override_close(admin_ctx, assignment.id, "7.5")
        assert result.closed.status == STATUS_CLOSED
        assert result.closed.dispensed_volume == Decimal("2.500")

    def test_reclose_corrects_reading_and_rederives_accounting(self, station, admin_ctx, closed):
        record = accounting_service.reconcile(
            admin_ctx, ShiftScope.assignment(closed.id), {"denominations": {"notes_1000": 1}}
        )
        assert record.variance_amount == Decimal("0.00")

        result = shift_service.admin_override_close(admin_ctx, closed.id, "1012.000")

        assert result.closed.dispensed_volume == Decimal("12.000")
        assert result.closed.gross_value == Decimal("1200.00")
        refreshed = accounting_service.get_accounting(admin_ctx, record.id)
        assert refreshed.fuel_sales_amount == Decimal("1200.00")
        assert refreshed.variance_amount == Decimal("-200.00")
        assert refreshed.notes_1000 == 1

    def test_successor_may_open_at_new_meter_reading(self, station, admin_ctx):
        assignment = shift_service.open_assignment(admin_ctx, station.nozzle_id, station.asha_id, "99990.000")
        result = shift_service.admin_override_close(
            admin_ctx,
            assignment.id,
            "99999.000",
            successor_attendant_id=station.ravi_id,
            successor_opening_reading="0.000",
        )
        assert result.successor.opening_reading == Decimal("0.000")
        assert result.successor.predecessor_id == assignment.id
        assert result.successor.status == STATUS_OPEN

    def test_successor_still_respects_single_open(self, station, admin_ctx, closed):
        shift_service.open_assignment(admin_ctx, station.nozzle_id, station.ravi_id, "1010.000")
        with pytest.raises(ConflictError):
            shift_service.admin_override_close(
                admin_ctx, closed.id, "1010.000", successor_attendant_id=station.asha_id
            )

    def test_reading_still_monotonic(self, station, admin_ctx, closed):
        with pytest.raises(ValidationError):
            shift_service.admin_override_close(admin_ctx, closed.id, "999.999")

    def test_manager_cannot_override(self, station, manager_ctx, closed):
        with pytest.raises(PermissionDeniedError):
            shift_service.admin_override_close(manager_ctx, closed.id, "1011")


class TestAdminUpdate:

    def test_price_change_recomputes_gross_value(self, station, admin_ctx, closed):
        updated = shift_service.admin_override_update(admin_ctx, closed.id, {"unit_price": "101.25"})
        assert updated.gross_value == Decimal("1012.50")
        assert updated.dispensed_volume == Decimal("10.000")

    def test_opening_reading_edit(self, station, admin_ctx, closed):
        updated = shift_service.admin_override_update(admin_ctx, closed.id, {"opening_reading": "1005.000"})
        assert updated.dispensed_volume == Decimal("5.000")

    def test_reassign_attendant(self, station, admin_ctx, closed):
        updated = shift_service.admin_override_update(admin_ctx, closed.id, {"attendant_id": station.ravi_id})
        assert updated.attendant_id == station.ravi_id

    def test_reassign_moves_assignment_into_new_attendants_shift(self, station, admin_ctx):
        asha_shift = shift_service.start_attendant_shift(admin_ctx, station.asha_id)
        assignment = shift_service.open_assignment(admin_ctx, station.nozzle_id, station.asha_id, "1")
        shift_service.close_assignment(admin_ctx, assignment.id, "2")
        assert assignment.attendant_shift_id == asha_shift.id
        ravi_shift = shift_service.start_attendant_shift(admin_ctx, station.ravi_id)

        updated = shift_service.admin_override_update(admin_ctx, assignment.id, {"attendant_id": station.ravi_id})

        assert updated.attendant_id == station.ravi_id
        assert updated.attendant_shift_id == ravi_shift.id

    def test_reassign_leaves_old_shift_when_new_attendant_has_none(self, station, admin_ctx):
        shift_service.start_attendant_shift(admin_ctx, station.asha_id)
        assignment = shift_service.open_assignment(admin_ctx, station.nozzle_id, station.asha_id, "1")
        shift_service.close_assignment(admin_ctx, assignment.id, "2")

        updated = shift_service.admin_override_update(admin_ctx, assignment.id, {"attendant_id": station.ravi_id})

        assert updated.attendant_id == station.ravi_id
        assert updated.attendant_shift_id is None

    def test_reassign_reconciled_assignment_refused(self, station, admin_ctx, closed):
        accounting_service.reconcile(admin_ctx, ShiftScope.assignment(closed.id), {})

        with pytest.raises(StateError) as exc:
            shift_service.admin_override_update(admin_ctx, closed.id, {"attendant_id": station.ravi_id})
        assert exc.value.field == "attendant_id"
        assert shift_service.get_assignment(admin_ctx, closed.id).attendant_id == station.asha_id

    def test_derived_fields_not_editable(self, station, admin_ctx, closed):
        with pytest.raises(ValidationError) as exc:
            shift_service.admin_override_update(admin_ctx, closed.id, {"gross_value": "1"})
        assert exc.value.field == "gross_value"

    def test_reopen_clears_closing_fields(self, station, admin_ctx, closed):
        reopened = shift_service.admin_override_update(admin_ctx, closed.id, {"status": STATUS_OPEN})
        assert reopened.status == STATUS_OPEN
        assert reopened.closing_reading is None
        assert reopened.end_time is None
        assert reopened.gross_value is None

    def test_reopen_conflicts_with_other_open_assignment(self, station, admin_ctx, closed):
        shift_service.open_assignment(admin_ctx, station.nozzle_id, station.ravi_id, "1010.000")
        with pytest.raises(ConflictError):
            shift_service.admin_override_update(admin_ctx, closed.id, {"status": STATUS_OPEN})

    def test_reopen_reconciled_assignment_refused(self, station, admin_ctx, closed):
        accounting_service.reconcile(admin_ctx, ShiftScope.assignment(closed.id), {})
        with pytest.raises(StateError):
            shift_service.admin_override_update(admin_ctx, closed.id, {"status": STATUS_OPEN})

    def test_close_via_status_requires_reading(self, station, admin_ctx):
        assignment = shift_service.open_assignment(admin_ctx, station.nozzle_id, station.asha_id, "5")
        with pytest.raises(ValidationError):
            shift_service.admin_override_update(admin_ctx, assignment.id, {"status": STATUS_CLOSED})

        updated = shift_service.admin_override_update(
            admin_ctx, assignment.id, {"status": STATUS_CLOSED, "closing_reading": "6"}
        )
        assert updated.dispensed_volume == Decimal("1.000")
        assert updated.end_time is not None

    def test_unknown_status_rejected(self, station, admin_ctx, closed):
        with pytest.raises(ValidationError):
            shift_service.admin_override_update(admin_ctx, closed.id, {"status": "VOID"})

    def test_empty_changes_rejected(self, station, admin_ctx, closed):
        with pytest.raises(ValidationError):
            shift_service.admin_override_update(admin_ctx, closed.id, {})


class TestAdminDelete:

    def test_delete_cascades_through_accounting_and_distributions(self, station, admin_ctx, closed):
        record = accounting_service.reconcile(
            admin_ctx, ShiftScope.assignment(closed.id), {"denominations": {"notes_500": 2}}
        )
        distribution_service.distribute(admin_ctx, record.id, [(station.bank_account_id, "1000.00")])
        assert get_balance(station.bank_account_id) == Decimal("1000.00")

        shift_service.admin_override_delete(admin_ctx, closed.id)

        with pytest.raises(NotFoundError):
            shift_service.get_assignment(admin_ctx, closed.id)
        assert db.session.query(ShiftAccounting).count() == 0
        assert db.session.query(CashDistributionEntry).count() == 0
        assert get_balance(station.bank_account_id) == Decimal("0.00")
        assert db.session.query(BankTransaction).count() == 2

    def test_delete_cascades_shift_accounting(self, station, admin_ctx):
        shift = shift_service.start_attendant_shift(admin_ctx, station.asha_id)
        assignment = shift_service.open_assignment(admin_ctx, station.nozzle_id, station.asha_id, "1")
        shift_service.close_assignment(admin_ctx, assignment.id, "2")
        shift_service.close_attendant_shift(admin_ctx, shift.id)
        accounting_service.reconcile(admin_ctx, ShiftScope.attendant_shift(shift.id), {})

        shift_service.admin_override_delete(admin_ctx, assignment.id)

        assert accounting_service.get_accounting_for_scope(admin_ctx, ShiftScope.attendant_shift(shift.id)) is None

    def test_delete_unlinks_successor(self, station, admin_ctx):
        first = shift_service.open_assignment(admin_ctx, station.nozzle_id, station.asha_id, "1")
        successor = shift_service.close_assignment(
            admin_ctx, first.id, "2", successor_attendant_id=station.ravi_id
        ).successor
        successor_id = successor.id

        shift_service.admin_override_delete(admin_ctx, first.id)

        remaining = db.session.get(MeterAssignment, successor_id)
        assert remaining is not None
        assert remaining.predecessor_id is None
        assert remaining.status == STATUS_OPEN

    def test_manager_cannot_delete(self, station, manager_ctx, closed):
        with pytest.raises(PermissionDeniedError):
            shift_service.admin_override_delete(manager_ctx, closed.id)
