"""
Bank ledger collaborator.

WHY: Cash distribution credits bank accounts, and removing a distribution
must take that credit back out. The distribution ledger only talks to the
BankLedger contract below:

- post_credit(bank_account_id, amount, description) -> transaction id
- reverse(transaction_id) -> reversing transaction id

participates_in_transaction tells callers whether postings ride on the same
database transaction as the caller (rollback undoes them) or are external.
For an external ledger callers compensate on failure: credits posted by a
failed distribution are reversed, and reversals issued by a failed removal
are re-credited. reverse() is not required to be idempotent.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import BankAccount, BankTransaction, TXN_CREDIT, TXN_DEBIT
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError


EXTENSION_KEY = "forecourt.bank_ledger"


class BankLedger:
    """Contract for the bank ledger; see module docstring."""

    participates_in_transaction = False

    def post_credit(self, bank_account_id: int, amount: Decimal, description: str) -> int:
        raise NotImplementedError

    def reverse(self, transaction_id: int) -> int:
        raise NotImplementedError


class SqlBankLedger(BankLedger):
    """
    Bank ledger stored in the application database.

    Postings are flushed, not committed: they commit or roll back together
    with the caller's unit of work.
    """

    participates_in_transaction = True

    def post_credit(self, bank_account_id: int, amount: Decimal, description: str) -> int:
        if amount <= 0:
            raise ValidationError("Credit amount must be positive", field="amount")

        account = db.session.get(BankAccount, bank_account_id)
        if not account:
            raise NotFoundError(f"Bank account {bank_account_id} not found", entity_id=bank_account_id)

        txn = BankTransaction(
            bank_account_id=bank_account_id,
            transaction_type=TXN_CREDIT,
            amount=amount,
            description=description[:255],
            transaction_date=utcnow(),
        )
        db.session.add(txn)
        db.session.flush()
        return txn.id

    def reverse(self, transaction_id: int) -> int:
        original = db.session.get(BankTransaction, transaction_id)
        if not original:
            raise NotFoundError(f"Bank transaction {transaction_id} not found", entity_id=transaction_id)
        if original.transaction_type != TXN_CREDIT:
            raise ValidationError("Only credits can be reversed", entity_id=transaction_id)

        existing = db.session.query(BankTransaction).filter_by(reverses_transaction_id=transaction_id).first()
        if existing:
            return existing.id

        reversal = BankTransaction(
            bank_account_id=original.bank_account_id,
            transaction_type=TXN_DEBIT,
            amount=original.amount,
            description=f"Reversal of transaction {transaction_id}",
            transaction_date=utcnow(),
            reverses_transaction_id=transaction_id,
        )
        db.session.add(reversal)
        db.session.flush()
        return reversal.id


def get_bank_ledger() -> BankLedger:
    return current_app.extensions[EXTENSION_KEY]


def get_balance(bank_account_id: int) -> Decimal:
    """Opening balance plus credits minus debits."""
    account = db.session.get(BankAccount, bank_account_id)
    if not account:
        raise NotFoundError(f"Bank account {bank_account_id} not found", entity_id=bank_account_id)

    balance = account.opening_balance
    for txn in db.session.query(BankTransaction).filter_by(bank_account_id=bank_account_id):
        if txn.transaction_type == TXN_CREDIT:
            balance += txn.amount
        else:
            balance -= txn.amount
    return balance
