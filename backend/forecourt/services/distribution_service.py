"""
Cash distribution ledger.

WHY: Counted cash from a reconciled shift leaves the station as bank
deposits. Each distribution line credits one bank account; together they
may never exceed the cash that was physically counted.

DESIGN PRINCIPLES:
- A batch of lines succeeds or fails as one unit
- The accounting row is locked and distributed_amount moves under its
  version counter, so two managers cannot both spend the same cash
- Removing a distribution reverses its bank credit; rows are never dropped
  without the matching reversal
- Financial postings are never retried automatically
"""

from __future__ import annotations

from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Iterable, NamedTuple

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..context import CallerContext, ROLE_ADMIN, ROLE_MANAGER
from ..extensions import db
from ..models import BankAccount, CashDistributionEntry, ShiftAccounting
from ..validation import (
    ConflictError,
    NotFoundError,
    OverDistributionError,
    ValidationError,
    parse_id,
    parse_money,
    quantize_money,
)
from .audit_service import append_event
from .bank_ledger import BankLedger, get_bank_ledger
from .concurrency import commit_or_conflict, lock_for_update, transactional


class DistributionLine(NamedTuple):
    bank_account_id: int
    amount: Decimal


def _coerce_lines(lines: Iterable[Any]) -> list[DistributionLine]:
    if lines is None:
        raise ValidationError("At least one distribution line is required", field="lines")
    parsed = []
    for index, line in enumerate(lines):
        if isinstance(line, dict):
            account_id, amount = line.get("bank_account_id"), line.get("amount")
        else:
            try:
                account_id, amount = line
            except (TypeError, ValueError):
                raise ValidationError(f"Line {index} must be (bank_account_id, amount)", field="lines")
        parsed.append(DistributionLine(
            bank_account_id=parse_id(account_id, "bank_account_id"),
            amount=parse_money(amount, "amount", allow_zero=False),
        ))
    if not parsed:
        raise ValidationError("At least one distribution line is required", field="lines")
    return parsed


def _get_accounting(ctx: CallerContext, accounting_id: int, *, for_update: bool = False) -> ShiftAccounting:
    query = db.session.query(ShiftAccounting).filter_by(id=accounting_id, tenant_id=ctx.tenant_id)
    if for_update:
        query = lock_for_update(query)
    record = query.first()
    if not record:
        raise NotFoundError(f"Shift accounting {accounting_id} not found", entity_id=accounting_id)
    return record


def _get_active_account(ctx: CallerContext, bank_account_id: int) -> BankAccount:
    account = db.session.get(BankAccount, bank_account_id)
    if not account or account.tenant_id != ctx.tenant_id or not account.is_active:
        raise NotFoundError(
            f"Bank account {bank_account_id} not found or inactive",
            entity_id=bank_account_id,
        )
    return account


def _entries_total(accounting_id: int) -> Decimal:
    entries = db.session.query(CashDistributionEntry).filter_by(shift_accounting_id=accounting_id).all()
    return quantize_money(sum((e.amount for e in entries), Decimal("0")))


def _compensate_credits(ledger: BankLedger, transaction_ids: list[int]) -> None:
    """Undo credits already posted to an external ledger, newest first."""
    for txn_id in reversed(transaction_ids):
        try:
            ledger.reverse(txn_id)
        except Exception:
            current_app.logger.exception("Compensating reversal of bank transaction %s failed", txn_id)


# =============================================================================
# DISTRIBUTE
# =============================================================================

def distribute(ctx: CallerContext, accounting_id: int, lines: Iterable[Any]) -> list[CashDistributionEntry]:
    """
    Move counted cash into bank accounts.

    Fails with OverDistributionError when prior distributions plus this batch
    would exceed the counted cash. All lines post or none do.
    """
    ctx.require_role(ROLE_MANAGER, ROLE_ADMIN)
    parsed = _coerce_lines(lines)

    ledger = get_bank_ledger()
    posted: list[int] = []
    try:
        record = _get_accounting(ctx, accounting_id, for_update=True)
        for line in parsed:
            _get_active_account(ctx, line.bank_account_id)

        prior = _entries_total(record.id)
        batch = quantize_money(sum((line.amount for line in parsed), Decimal("0")))
        if prior + batch > record.counted_cash:
            raise OverDistributionError(
                f"Cannot distribute {batch}: {prior} of {record.counted_cash} counted cash "
                f"is already distributed",
                field="amount",
                entity_id=record.id,
            )

        description = f"Shift cash deposit (accounting {record.id})"
        entries = []
        for line in parsed:
            txn_id = ledger.post_credit(line.bank_account_id, line.amount, description)
            posted.append(txn_id)
            entry = CashDistributionEntry(
                tenant_id=ctx.tenant_id,
                shift_accounting_id=record.id,
                bank_account_id=line.bank_account_id,
                amount=line.amount,
                bank_transaction_id=txn_id,
                entry_by=ctx.user_id,
            )
            db.session.add(entry)
            entries.append(entry)

        record.distributed_amount = prior + batch
        db.session.flush()
        append_event(
            ctx,
            event_type="distribution.created",
            entity_type="shift_accounting",
            entity_id=record.id,
            note=f"lines={len(entries)} amount={batch} total={record.distributed_amount}",
            payload={
                "lines": [
                    {
                        "entry_id": e.id,
                        "bank_account_id": e.bank_account_id,
                        "amount": e.amount,
                        "bank_transaction_id": e.bank_transaction_id,
                    }
                    for e in entries
                ],
                "distributed_amount": record.distributed_amount,
            },
        )
        db.session.commit()
    except (IntegrityError, StaleDataError) as exc:
        db.session.rollback()
        if not ledger.participates_in_transaction:
            _compensate_credits(ledger, posted)
        raise ConflictError(
            f"Shift accounting {accounting_id} was changed concurrently; retry the distribution",
            entity_id=accounting_id,
        ) from exc
    except Exception:
        db.session.rollback()
        if not ledger.participates_in_transaction:
            _compensate_credits(ledger, posted)
        raise

    current_app.logger.info(
        "Distributed %s from shift accounting %s in %s line(s)", batch, accounting_id, len(entries)
    )
    return entries


# =============================================================================
# READS
# =============================================================================

def get_total_distributed(ctx: CallerContext, accounting_id: int) -> Decimal:
    record = _get_accounting(ctx, accounting_id)
    return _entries_total(record.id)


def list_distributions(ctx: CallerContext, accounting_id: int) -> list[CashDistributionEntry]:
    record = _get_accounting(ctx, accounting_id)
    return db.session.query(CashDistributionEntry).filter_by(
        shift_accounting_id=record.id
    ).order_by(CashDistributionEntry.id).all()


# =============================================================================
# REVERSAL
# =============================================================================

class LedgerReversals:
    """
    Reversals issued during one unit of work.

    A transactional ledger rolls back with the session, so nothing is kept.
    For an external ledger every reversal is recorded; if the unit of work
    fails, compensate() re-credits each reversed amount and re-points the
    surviving distribution row at the new credit.
    """

    def __init__(self, ctx: CallerContext, ledger: BankLedger):
        self.ctx = ctx
        self.ledger = ledger
        self.applied: list[tuple[int, int, Decimal]] = []

    def reverse(self, entry: CashDistributionEntry) -> None:
        self.ledger.reverse(entry.bank_transaction_id)
        if not self.ledger.participates_in_transaction:
            self.applied.append((entry.id, entry.bank_account_id, entry.amount))

    def compensate(self) -> None:
        """Call after the session has been rolled back."""
        if not self.applied:
            return

        recredited: list[tuple[int, int]] = []
        for entry_id, bank_account_id, amount in reversed(self.applied):
            try:
                txn_id = self.ledger.post_credit(
                    bank_account_id, amount, f"Re-credit after failed removal of distribution {entry_id}"
                )
            except Exception:
                current_app.logger.exception(
                    "Re-credit of %s to bank account %s for distribution %s failed", amount, bank_account_id, entry_id
                )
                continue
            recredited.append((entry_id, txn_id))

        try:
            for entry_id, txn_id in recredited:
                entry = db.session.get(CashDistributionEntry, entry_id)
                if entry is None:
                    continue
                entry.bank_transaction_id = txn_id
                append_event(
                    self.ctx,
                    event_type="distribution.recredited",
                    entity_type="cash_distribution_entry",
                    entity_id=entry_id,
                    payload={"bank_transaction_id": txn_id, "amount": entry.amount},
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Re-pointing distributions at their re-credits failed: %s", recredited)
        self.applied = []


@contextmanager
def external_reversals(ctx: CallerContext):
    """
    Unit of work that removes distributions.

    On any failure the session is rolled back and reversals already sent to
    an external ledger are compensated before the error propagates.
    """
    reversals = LedgerReversals(ctx, get_bank_ledger())
    try:
        yield reversals
    except Exception:
        db.session.rollback()
        reversals.compensate()
        raise


def _reverse_and_delete(
    ctx: CallerContext,
    record: ShiftAccounting,
    entries: list[CashDistributionEntry],
    reversals: LedgerReversals,
) -> Decimal:
    """
    Reverse each entry's bank credit, then drop the entries.

    Caller owns the transaction. Returns the amount removed.
    """
    removed = Decimal("0.00")
    for entry in entries:
        if entry.bank_transaction_id is not None:
            reversals.reverse(entry)
        removed += entry.amount
        append_event(
            ctx,
            event_type="distribution.deleted",
            entity_type="cash_distribution_entry",
            entity_id=entry.id,
            note=f"accounting={record.id} amount={entry.amount} txn={entry.bank_transaction_id}",
        )
        db.session.delete(entry)

    record.distributed_amount = quantize_money(record.distributed_amount - removed)
    db.session.flush()
    return removed


def reverse_and_delete_all(ctx: CallerContext, record: ShiftAccounting, reversals: LedgerReversals) -> Decimal:
    entries = db.session.query(CashDistributionEntry).filter_by(
        shift_accounting_id=record.id
    ).order_by(CashDistributionEntry.id).all()
    return _reverse_and_delete(ctx, record, entries, reversals)


@transactional
def delete_distributions(ctx: CallerContext, accounting_id: int) -> Decimal:
    """Reverse and remove every distribution of a reconciliation."""
    ctx.require_role(ROLE_MANAGER, ROLE_ADMIN)
    with external_reversals(ctx) as reversals:
        record = _get_accounting(ctx, accounting_id, for_update=True)
        removed = reverse_and_delete_all(ctx, record, reversals)
        commit_or_conflict(f"Shift accounting {accounting_id} was changed concurrently", entity_id=accounting_id)
    current_app.logger.info("Reversed %s of distributions for shift accounting %s", removed, accounting_id)
    return removed


@transactional
def delete_distribution(ctx: CallerContext, entry_id: int) -> Decimal:
    """Reverse and remove a single distribution line."""
    ctx.require_role(ROLE_MANAGER, ROLE_ADMIN)
    entry = db.session.get(CashDistributionEntry, entry_id)
    if not entry or entry.tenant_id != ctx.tenant_id:
        raise NotFoundError(f"Distribution {entry_id} not found", entity_id=entry_id)

    with external_reversals(ctx) as reversals:
        record = _get_accounting(ctx, entry.shift_accounting_id, for_update=True)
        removed = _reverse_and_delete(ctx, record, [entry], reversals)
        commit_or_conflict(f"Shift accounting {record.id} was changed concurrently", entity_id=record.id)
    current_app.logger.info("Reversed distribution %s (%s) for shift accounting %s", entry_id, removed, record.id)
    return removed
