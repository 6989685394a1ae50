# Overview: Pytest coverage for cash distribution into bank accounts.

"""
Cash Distribution Ledger Tests

Covers:
- Over-distribution guard
- Batch atomicity (all lines or none)
- Bank credits posted and reversed with the distribution rows
- Compensating reversals and re-credits when the bank ledger is external
"""

from decimal import Decimal

import pytest

from forecourt.extensions import db
from forecourt.models import BankAccount, BankTransaction, CashDistributionEntry, ShiftEvent, TXN_CREDIT, TXN_DEBIT
from forecourt.services import accounting_service, distribution_service, shift_service
from forecourt.services.accounting_service import ShiftScope
from forecourt.services.bank_ledger import EXTENSION_KEY, BankLedger, get_balance
from forecourt.validation import (
    ConflictError,
    NotFoundError,
    OverDistributionError,
    PermissionDeniedError,
    ValidationError,
)


@pytest.fixture
def accounting(station, attendant_ctx):
    """Reconciled assignment with 6500.00 counted cash."""
    assignment = shift_service.open_assignment(
        attendant_ctx, station.nozzle_id, station.asha_id, "12345.678", unit_price="95.50"
    )
    shift_service.close_assignment(attendant_ctx, assignment.id, "12500.000")
    return accounting_service.reconcile(
        attendant_ctx,
        ShiftScope.assignment(assignment.id),
        {"upi_amount": "5000", "card_amount": "3000", "denominations": {"notes_500": 13}},
    )


class ExternalLedger(BankLedger):
    """Bank ledger outside the database transaction; fails on the nth credit or reversal."""

    participates_in_transaction = False

    def __init__(self, fail_on_credit: int | None = None, fail_on_reverse: int | None = None):
        self.fail_on_credit = fail_on_credit
        self.fail_on_reverse = fail_on_reverse
        self.credits = []
        self.reversed = []

    def post_credit(self, bank_account_id, amount, description):
        if self.fail_on_credit is not None and len(self.credits) + 1 == self.fail_on_credit:
            raise RuntimeError("bank unavailable")
        self.credits.append((bank_account_id, amount))
        return len(self.credits)

    def reverse(self, transaction_id):
        if self.fail_on_reverse is not None and len(self.reversed) + 1 == self.fail_on_reverse:
            raise RuntimeError("bank unavailable")
        self.reversed.append(transaction_id)
        return 1000 + transaction_id


class TestDistribute:

    def test_over_distribution_after_full_deposit(self, station, manager_ctx, accounting):
        distribution_service.distribute(manager_ctx, accounting.id, [
            (station.bank_account_id, "4000.00"),
            (station.bank_account_2_id, "2500.00"),
        ])
        assert distribution_service.get_total_distributed(manager_ctx, accounting.id) == Decimal("6500.00")

        with pytest.raises(OverDistributionError) as exc:
            distribution_service.distribute(manager_ctx, accounting.id, [(station.bank_account_id, "0.01")])
        assert isinstance(exc.value, ConflictError)
        assert isinstance(exc.value, ValidationError)
        assert exc.value.entity_id == accounting.id

        assert distribution_service.get_total_distributed(manager_ctx, accounting.id) == Decimal("6500.00")
        assert accounting_service.get_accounting(manager_ctx, accounting.id).distributed_amount == Decimal("6500.00")

    def test_credits_bank_accounts(self, station, manager_ctx, accounting):
        entries = distribution_service.distribute(manager_ctx, accounting.id, [
            {"bank_account_id": station.bank_account_id, "amount": "4000.00"},
            {"bank_account_id": station.bank_account_2_id, "amount": "1500.50"},
        ])

        assert [e.amount for e in entries] == [Decimal("4000.00"), Decimal("1500.50")]
        assert all(e.bank_transaction_id is not None for e in entries)
        assert get_balance(station.bank_account_id) == Decimal("4000.00")
        assert get_balance(station.bank_account_2_id) == Decimal("1500.50")

        credit = db.session.get(BankTransaction, entries[0].bank_transaction_id)
        assert credit.transaction_type == TXN_CREDIT
        assert credit.amount == Decimal("4000.00")

    def test_batch_is_all_or_nothing(self, station, manager_ctx, accounting):
        with pytest.raises(OverDistributionError):
            distribution_service.distribute(manager_ctx, accounting.id, [
                (station.bank_account_id, "6000.00"),
                (station.bank_account_2_id, "600.00"),
            ])

        assert distribution_service.list_distributions(manager_ctx, accounting.id) == []
        assert db.session.query(BankTransaction).count() == 0

    def test_inactive_account_fails_whole_batch(self, station, manager_ctx, accounting):
        account = db.session.get(BankAccount, station.bank_account_2_id)
        account.is_active = False
        db.session.commit()

        with pytest.raises(NotFoundError):
            distribution_service.distribute(manager_ctx, accounting.id, [
                (station.bank_account_id, "100.00"),
                (station.bank_account_2_id, "100.00"),
            ])
        assert distribution_service.get_total_distributed(manager_ctx, accounting.id) == Decimal("0.00")
        assert db.session.query(BankTransaction).count() == 0

    @pytest.mark.parametrize("amount", ["0", "0.00", "-5", "1.001"])
    def test_non_positive_or_malformed_amount_rejected(self, station, manager_ctx, accounting, amount):
        with pytest.raises(ValidationError):
            distribution_service.distribute(manager_ctx, accounting.id, [(station.bank_account_id, amount)])

    def test_empty_batch_rejected(self, station, manager_ctx, accounting):
        with pytest.raises(ValidationError):
            distribution_service.distribute(manager_ctx, accounting.id, [])

    def test_missing_accounting_not_found(self, station, manager_ctx):
        with pytest.raises(NotFoundError):
            distribution_service.distribute(manager_ctx, 5151, [(station.bank_account_id, "10.00")])

    def test_attendant_cannot_distribute(self, station, attendant_ctx, accounting):
        with pytest.raises(PermissionDeniedError):
            distribution_service.distribute(attendant_ctx, accounting.id, [(station.bank_account_id, "10.00")])

    def test_multiple_batches_accumulate(self, station, manager_ctx, accounting):
        distribution_service.distribute(manager_ctx, accounting.id, [(station.bank_account_id, "1000.00")])
        distribution_service.distribute(manager_ctx, accounting.id, [(station.bank_account_id, "5500.00")])

        assert distribution_service.get_total_distributed(manager_ctx, accounting.id) == Decimal("6500.00")
        assert len(distribution_service.list_distributions(manager_ctx, accounting.id)) == 2


class TestReversal:

    def test_delete_single_distribution_reverses_credit(self, station, manager_ctx, accounting):
        first, second = distribution_service.distribute(manager_ctx, accounting.id, [
            (station.bank_account_id, "4000.00"),
            (station.bank_account_2_id, "2500.00"),
        ])
        credit_id = first.bank_transaction_id

        removed = distribution_service.delete_distribution(manager_ctx, first.id)

        assert removed == Decimal("4000.00")
        assert get_balance(station.bank_account_id) == Decimal("0.00")
        reversal = db.session.query(BankTransaction).filter_by(reverses_transaction_id=credit_id).one()
        assert reversal.transaction_type == TXN_DEBIT
        assert distribution_service.get_total_distributed(manager_ctx, accounting.id) == Decimal("2500.00")
        assert accounting_service.get_accounting(manager_ctx, accounting.id).distributed_amount == Decimal("2500.00")

        # freed cash can be distributed again
        distribution_service.distribute(manager_ctx, accounting.id, [(station.bank_account_id, "4000.00")])

    def test_delete_all_distributions(self, station, manager_ctx, accounting):
        distribution_service.distribute(manager_ctx, accounting.id, [
            (station.bank_account_id, "4000.00"),
            (station.bank_account_2_id, "2500.00"),
        ])

        removed = distribution_service.delete_distributions(manager_ctx, accounting.id)

        assert removed == Decimal("6500.00")
        assert distribution_service.list_distributions(manager_ctx, accounting.id) == []
        assert get_balance(station.bank_account_id) == Decimal("0.00")
        assert get_balance(station.bank_account_2_id) == Decimal("0.00")
        assert db.session.query(BankTransaction).filter_by(transaction_type=TXN_DEBIT).count() == 2

    def test_delete_accounting_cascades(self, station, manager_ctx, accounting):
        distribution_service.distribute(manager_ctx, accounting.id, [(station.bank_account_id, "6500.00")])

        accounting_service.delete_accounting(manager_ctx, accounting.id)

        assert db.session.query(CashDistributionEntry).count() == 0
        assert get_balance(station.bank_account_id) == Decimal("0.00")
        with pytest.raises(NotFoundError):
            accounting_service.get_accounting(manager_ctx, accounting.id)

    def test_unknown_distribution(self, station, manager_ctx):
        with pytest.raises(NotFoundError):
            distribution_service.delete_distribution(manager_ctx, 31337)

    def test_attendant_cannot_reverse(self, station, manager_ctx, attendant_ctx, accounting):
        (entry,) = distribution_service.distribute(manager_ctx, accounting.id, [(station.bank_account_id, "10.00")])
        with pytest.raises(PermissionDeniedError):
            distribution_service.delete_distribution(attendant_ctx, entry.id)


class TestExternalLedger:

    def test_failed_batch_reverses_posted_credits(self, app, station, manager_ctx, accounting, monkeypatch):
        ledger = ExternalLedger(fail_on_credit=2)
        monkeypatch.setitem(app.extensions, EXTENSION_KEY, ledger)

        with pytest.raises(RuntimeError):
            distribution_service.distribute(manager_ctx, accounting.id, [
                (station.bank_account_id, "100.00"),
                (station.bank_account_2_id, "200.00"),
            ])

        assert ledger.credits == [(station.bank_account_id, Decimal("100.00"))]
        assert ledger.reversed == [1]
        assert db.session.query(CashDistributionEntry).count() == 0
        assert distribution_service.get_total_distributed(manager_ctx, accounting.id) == Decimal("0.00")

    def test_successful_batch_records_external_ids(self, app, station, manager_ctx, accounting, monkeypatch):
        ledger = ExternalLedger()
        monkeypatch.setitem(app.extensions, EXTENSION_KEY, ledger)

        entries = distribution_service.distribute(manager_ctx, accounting.id, [
            (station.bank_account_id, "100.00"),
            (station.bank_account_2_id, "200.00"),
        ])

        assert [e.bank_transaction_id for e in entries] == [1, 2]
        assert ledger.reversed == []

    def test_partial_removal_recredits_reversed_distribution(self, app, station, manager_ctx, accounting, monkeypatch):
        ledger = ExternalLedger(fail_on_reverse=2)
        monkeypatch.setitem(app.extensions, EXTENSION_KEY, ledger)
        first, second = distribution_service.distribute(manager_ctx, accounting.id, [
            (station.bank_account_id, "100.00"),
            (station.bank_account_2_id, "200.00"),
        ])

        with pytest.raises(RuntimeError):
            distribution_service.delete_distributions(manager_ctx, accounting.id)

        assert ledger.reversed == [1]
        assert ledger.credits[2] == (station.bank_account_id, Decimal("100.00"))
        rows = distribution_service.list_distributions(manager_ctx, accounting.id)
        assert [(r.id, r.bank_transaction_id) for r in rows] == [(first.id, 3), (second.id, 2)]
        assert distribution_service.get_total_distributed(manager_ctx, accounting.id) == Decimal("300.00")
        assert accounting_service.get_accounting(manager_ctx, accounting.id).distributed_amount == Decimal("300.00")

        event = db.session.query(ShiftEvent).filter_by(
            event_type="distribution.recredited", entity_id=first.id
        ).one()
        payload = event.to_dict()["payload"]
        assert payload["bank_transaction_id"] == 3
        assert Decimal(payload["amount"]) == Decimal("100.00")

    def test_retry_after_partial_removal_reverses_each_credit_once(self, app, station, manager_ctx, accounting, monkeypatch):
        ledger = ExternalLedger(fail_on_reverse=2)
        monkeypatch.setitem(app.extensions, EXTENSION_KEY, ledger)
        distribution_service.distribute(manager_ctx, accounting.id, [
            (station.bank_account_id, "100.00"),
            (station.bank_account_2_id, "200.00"),
        ])
        with pytest.raises(RuntimeError):
            distribution_service.delete_distributions(manager_ctx, accounting.id)

        ledger.fail_on_reverse = None
        removed = distribution_service.delete_distributions(manager_ctx, accounting.id)

        assert removed == Decimal("300.00")
        assert ledger.reversed == [1, 3, 2]
        assert distribution_service.list_distributions(manager_ctx, accounting.id) == []

    def test_failed_single_removal_recredits(self, app, station, manager_ctx, accounting, monkeypatch):
        ledger = ExternalLedger()
        monkeypatch.setitem(app.extensions, EXTENSION_KEY, ledger)
        (entry,) = distribution_service.distribute(manager_ctx, accounting.id, [(station.bank_account_id, "250.00")])

        def refuse_commit(message, **kwargs):
            raise ConflictError(message, **kwargs)

        monkeypatch.setattr(distribution_service, "commit_or_conflict", refuse_commit)

        with pytest.raises(ConflictError):
            distribution_service.delete_distribution(manager_ctx, entry.id)

        assert ledger.reversed == [1]
        assert ledger.credits == [
            (station.bank_account_id, Decimal("250.00")),
            (station.bank_account_id, Decimal("250.00")),
        ]
        (row,) = distribution_service.list_distributions(manager_ctx, accounting.id)
        assert row.id == entry.id
        assert row.bank_transaction_id == 2

    def test_failed_accounting_delete_recredits(self, app, station, manager_ctx, accounting, monkeypatch):
        ledger = ExternalLedger(fail_on_reverse=2)
        monkeypatch.setitem(app.extensions, EXTENSION_KEY, ledger)
        distribution_service.distribute(manager_ctx, accounting.id, [
            (station.bank_account_id, "100.00"),
            (station.bank_account_2_id, "200.00"),
        ])

        with pytest.raises(RuntimeError):
            accounting_service.delete_accounting(manager_ctx, accounting.id)

        assert accounting_service.get_accounting(manager_ctx, accounting.id).distributed_amount == Decimal("300.00")
        rows = distribution_service.list_distributions(manager_ctx, accounting.id)
        assert [r.bank_transaction_id for r in rows] == [3, 2]
        assert ledger.credits[2] == (station.bank_account_id, Decimal("100.00"))
