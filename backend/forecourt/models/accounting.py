from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import to_utc_z, decimal_str
from .types import Money


# Face values of the denomination vector, in column order.
NOTE_DENOMINATIONS = (2000, 1000, 500, 200, 100, 50, 20, 10)
COIN_DENOMINATIONS = (5, 2, 1)

DENOMINATION_FIELDS = tuple(
    [(f"notes_{v}", v) for v in NOTE_DENOMINATIONS]
    + [(f"coins_{v}", v) for v in COIN_DENOMINATIONS]
)

_ZERO = Decimal("0.00")


class ShiftAccounting(db.Model):
    """
    Cash reconciliation of a closed assignment or a closed attendant shift.

    Declared inputs are stored verbatim; the computed figures are a frozen
    snapshot re-derived in full on every update (no partial merges).

    distributed_amount is the running total of cash distributions and is
    only changed under the row's version counter.
    """
    __tablename__ = "shift_accountings"
    __table_args__ = (
        db.CheckConstraint(
            "(assignment_id IS NULL) <> (attendant_shift_id IS NULL)",
            name="ck_shift_accountings_single_scope",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey("meter_assignments.id"), nullable=True, unique=True)
    attendant_shift_id = db.Column(db.Integer, db.ForeignKey("attendant_shifts.id"), nullable=True, unique=True)

    # Declared inputs
    customer_receipt_amount = db.Column(Money(), nullable=False, default=_ZERO)
    upi_amount = db.Column(Money(), nullable=False, default=_ZERO)
    card_amount = db.Column(Money(), nullable=False, default=_ZERO)
    fleet_card_amount = db.Column(Money(), nullable=False, default=_ZERO)
    credit_extended = db.Column(Money(), nullable=False, default=_ZERO)
    expenses = db.Column(Money(), nullable=False, default=_ZERO)
    expense_reason = db.Column(db.String(255), nullable=True)
    opening_cash_advance = db.Column(Money(), nullable=False, default=_ZERO)

    notes_2000 = db.Column(db.Integer, nullable=False, default=0)
    notes_1000 = db.Column(db.Integer, nullable=False, default=0)
    notes_500 = db.Column(db.Integer, nullable=False, default=0)
    notes_200 = db.Column(db.Integer, nullable=False, default=0)
    notes_100 = db.Column(db.Integer, nullable=False, default=0)
    notes_50 = db.Column(db.Integer, nullable=False, default=0)
    notes_20 = db.Column(db.Integer, nullable=False, default=0)
    notes_10 = db.Column(db.Integer, nullable=False, default=0)
    coins_5 = db.Column(db.Integer, nullable=False, default=0)
    coins_2 = db.Column(db.Integer, nullable=False, default=0)
    coins_1 = db.Column(db.Integer, nullable=False, default=0)

    # Derived snapshot
    fuel_sales_amount = db.Column(Money(), nullable=False)
    counted_cash = db.Column(Money(), nullable=False)
    system_expected_amount = db.Column(Money(), nullable=False)
    expected_cash_in_hand = db.Column(Money(), nullable=False)  # may be negative
    variance_amount = db.Column(Money(), nullable=False)  # + surplus, - shortage

    distributed_amount = db.Column(Money(), nullable=False, default=_ZERO)

    entry_by = db.Column(db.Integer, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    assignment = db.relationship("MeterAssignment", backref=db.backref("accounting", uselist=False, lazy=True))
    attendant_shift = db.relationship("AttendantShift", backref=db.backref("accounting", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def scope_kind(self) -> str:
        return "assignment" if self.assignment_id is not None else "attendant_shift"

    @property
    def denominations(self) -> dict[str, int]:
        return {name: getattr(self, name) for name, _ in DENOMINATION_FIELDS}

    @property
    def undistributed_amount(self) -> Decimal:
        return self.counted_cash - self.distributed_amount

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "scope": self.scope_kind,
            "assignment_id": self.assignment_id,
            "attendant_shift_id": self.attendant_shift_id,
            "customer_receipt_amount": decimal_str(self.customer_receipt_amount),
            "upi_amount": decimal_str(self.upi_amount),
            "card_amount": decimal_str(self.card_amount),
            "fleet_card_amount": decimal_str(self.fleet_card_amount),
            "credit_extended": decimal_str(self.credit_extended),
            "expenses": decimal_str(self.expenses),
            "expense_reason": self.expense_reason,
            "opening_cash_advance": decimal_str(self.opening_cash_advance),
            "denominations": self.denominations,
            "fuel_sales_amount": decimal_str(self.fuel_sales_amount),
            "counted_cash": decimal_str(self.counted_cash),
            "system_expected_amount": decimal_str(self.system_expected_amount),
            "expected_cash_in_hand": decimal_str(self.expected_cash_in_hand),
            "variance_amount": decimal_str(self.variance_amount),
            "distributed_amount": decimal_str(self.distributed_amount),
            "entry_by": self.entry_by,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CashDistributionEntry(db.Model):
    """
    Allocation of part of a shift's counted cash into a bank account.

    Each row owns exactly one CREDIT in the bank ledger (bank_transaction_id).
    """
    __tablename__ = "cash_distribution_entries"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    shift_accounting_id = db.Column(db.Integer, db.ForeignKey("shift_accountings.id"), nullable=False, index=True)
    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=False, index=True)
    amount = db.Column(Money(), nullable=False)
    bank_transaction_id = db.Column(db.Integer, nullable=True)

    entry_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    shift_accounting = db.relationship(
        "ShiftAccounting",
        backref=db.backref("distributions", lazy=True, order_by="CashDistributionEntry.id"),
    )
    bank_account = db.relationship("BankAccount")

    def to_dict(self) -> dict:
        account = self.bank_account
        return {
            "id": self.id,
            "shift_accounting_id": self.shift_accounting_id,
            "bank_account_id": self.bank_account_id,
            "bank_name": account.bank if account else None,
            "account_number": account.account_number if account else None,
            "amount": decimal_str(self.amount),
            "bank_transaction_id": self.bank_transaction_id,
            "entry_by": self.entry_by,
            "created_at": to_utc_z(self.created_at),
        }
