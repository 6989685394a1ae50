from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import to_utc_z, decimal_str
from .types import Money


TXN_CREDIT = "CREDIT"
TXN_DEBIT = "DEBIT"


class BankAccount(db.Model):
    __tablename__ = "bank_accounts"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "account_number", name="uq_bank_accounts_tenant_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    account_holder_name = db.Column(db.String(100), nullable=False)
    account_number = db.Column(db.String(20), nullable=False)
    bank = db.Column(db.String(100), nullable=False)
    opening_balance = db.Column(Money(), nullable=False, default=Decimal("0.00"))
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "account_holder_name": self.account_holder_name,
            "account_number": self.account_number,
            "bank": self.bank,
            "opening_balance": decimal_str(self.opening_balance),
            "is_active": self.is_active,
        }


class BankTransaction(db.Model):
    """
    Append-only bank ledger line.

    Reversals never delete: a DEBIT pointing at the original CREDIT through
    reverses_transaction_id cancels it.
    """
    __tablename__ = "bank_transactions"
    __table_args__ = (
        db.Index("ix_bank_transactions_account_date", "bank_account_id", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=False, index=True)
    transaction_type = db.Column(db.String(8), nullable=False)
    amount = db.Column(Money(), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False)
    reverses_transaction_id = db.Column(
        db.Integer, db.ForeignKey("bank_transactions.id"), nullable=True, unique=True
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    bank_account = db.relationship("BankAccount", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bank_account_id": self.bank_account_id,
            "transaction_type": self.transaction_type,
            "amount": decimal_str(self.amount),
            "description": self.description,
            "transaction_date": to_utc_z(self.transaction_date),
            "reverses_transaction_id": self.reverses_transaction_id,
        }
