"""Forecourt shift core: directory, assignments, reconciliation, bank ledger

Revision ID: 20261018_shift_core
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_shift_core"
down_revision = None
branch_labels = None
depends_on = None


# Decimal columns are stored as canonical strings (see models.types.ExactDecimal)
def _decimal(name, nullable=False):
    return sa.Column(name, sa.String(length=40), nullable=nullable)


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


OPEN_ONLY = sa.text("status = 'OPEN'")


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        _decimal("sales_rate", nullable=True),
        _created_at(),
        sa.UniqueConstraint("tenant_id", "name", name="uq_products_tenant_name"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_products_tenant_id", "products", ["tenant_id"])

    op.create_table(
        "tanks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_tanks_tenant_id", "tanks", ["tenant_id"])
    op.create_index("ix_tanks_product_id", "tanks", ["product_id"])

    op.create_table(
        "nozzles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("tank_id", sa.Integer(), sa.ForeignKey("tanks.id"), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.UniqueConstraint("tenant_id", "name", name="uq_nozzles_tenant_name"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_nozzles_tenant_id", "nozzles", ["tenant_id"])
    op.create_index("ix_nozzles_tank_id", "nozzles", ["tank_id"])

    op.create_table(
        "attendants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_attendants_tenant_id", "attendants", ["tenant_id"])

    op.create_table(
        "attendant_shifts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("attendant_id", sa.Integer(), sa.ForeignKey("attendants.id"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        _decimal("opening_cash"),
        sa.Column("version_id", sa.Integer(), nullable=False),
        _created_at(),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_attendant_shifts_tenant_id", "attendant_shifts", ["tenant_id"])
    op.create_index("ix_attendant_shifts_attendant_id", "attendant_shifts", ["attendant_id"])
    op.create_index("ix_attendant_shifts_status", "attendant_shifts", ["status"])
    op.create_index(
        "uq_attendant_shifts_open_attendant",
        "attendant_shifts",
        ["attendant_id"],
        unique=True,
        sqlite_where=OPEN_ONLY,
        postgresql_where=OPEN_ONLY,
    )

    op.create_table(
        "meter_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("nozzle_id", sa.Integer(), sa.ForeignKey("nozzles.id"), nullable=False),
        sa.Column("attendant_id", sa.Integer(), sa.ForeignKey("attendants.id"), nullable=False),
        sa.Column("attendant_shift_id", sa.Integer(), sa.ForeignKey("attendant_shifts.id"), nullable=True),
        sa.Column(
            "predecessor_id",
            sa.Integer(),
            sa.ForeignKey("meter_assignments.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        _decimal("opening_reading"),
        _decimal("closing_reading", nullable=True),
        _decimal("unit_price"),
        _decimal("dispensed_volume", nullable=True),
        _decimal("gross_value", nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_meter_assignments_tenant_id", "meter_assignments", ["tenant_id"])
    op.create_index("ix_meter_assignments_nozzle_id", "meter_assignments", ["nozzle_id"])
    op.create_index("ix_meter_assignments_attendant_id", "meter_assignments", ["attendant_id"])
    op.create_index("ix_meter_assignments_attendant_shift_id", "meter_assignments", ["attendant_shift_id"])
    op.create_index("ix_meter_assignments_status", "meter_assignments", ["status"])
    op.create_index("ix_meter_assignments_nozzle_start", "meter_assignments", ["nozzle_id", "start_time"])
    op.create_index(
        "uq_meter_assignments_open_nozzle",
        "meter_assignments",
        ["nozzle_id"],
        unique=True,
        sqlite_where=OPEN_ONLY,
        postgresql_where=OPEN_ONLY,
    )

    op.create_table(
        "bank_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("account_holder_name", sa.String(length=100), nullable=False),
        sa.Column("account_number", sa.String(length=20), nullable=False),
        sa.Column("bank", sa.String(length=100), nullable=False),
        _decimal("opening_balance"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.UniqueConstraint("tenant_id", "account_number", name="uq_bank_accounts_tenant_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_bank_accounts_tenant_id", "bank_accounts", ["tenant_id"])

    op.create_table(
        "bank_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("bank_account_id", sa.Integer(), sa.ForeignKey("bank_accounts.id"), nullable=False),
        sa.Column("transaction_type", sa.String(length=8), nullable=False),
        _decimal("amount"),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("transaction_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "reverses_transaction_id",
            sa.Integer(),
            sa.ForeignKey("bank_transactions.id"),
            nullable=True,
            unique=True,
        ),
        _created_at(),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_bank_transactions_bank_account_id", "bank_transactions", ["bank_account_id"])
    op.create_index(
        "ix_bank_transactions_account_date", "bank_transactions", ["bank_account_id", "transaction_date"]
    )

    denominations = [
        sa.Column(name, sa.Integer(), nullable=False, server_default="0")
        for name in (
            "notes_2000", "notes_1000", "notes_500", "notes_200", "notes_100",
            "notes_50", "notes_20", "notes_10", "coins_5", "coins_2", "coins_1",
        )
    ]
    op.create_table(
        "shift_accountings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("assignment_id", sa.Integer(), sa.ForeignKey("meter_assignments.id"), nullable=True, unique=True),
        sa.Column(
            "attendant_shift_id", sa.Integer(), sa.ForeignKey("attendant_shifts.id"), nullable=True, unique=True
        ),
        _decimal("customer_receipt_amount"),
        _decimal("upi_amount"),
        _decimal("card_amount"),
        _decimal("fleet_card_amount"),
        _decimal("credit_extended"),
        _decimal("expenses"),
        sa.Column("expense_reason", sa.String(length=255), nullable=True),
        _decimal("opening_cash_advance"),
        *denominations,
        _decimal("fuel_sales_amount"),
        _decimal("counted_cash"),
        _decimal("system_expected_amount"),
        _decimal("expected_cash_in_hand"),
        _decimal("variance_amount"),
        _decimal("distributed_amount"),
        sa.Column("entry_by", sa.Integer(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "(assignment_id IS NULL) <> (attendant_shift_id IS NULL)",
            name="ck_shift_accountings_single_scope",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_shift_accountings_tenant_id", "shift_accountings", ["tenant_id"])

    op.create_table(
        "cash_distribution_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column(
            "shift_accounting_id", sa.Integer(), sa.ForeignKey("shift_accountings.id"), nullable=False
        ),
        sa.Column("bank_account_id", sa.Integer(), sa.ForeignKey("bank_accounts.id"), nullable=False),
        _decimal("amount"),
        sa.Column("bank_transaction_id", sa.Integer(), nullable=True),
        sa.Column("entry_by", sa.Integer(), nullable=True),
        _created_at(),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cash_distribution_entries_tenant_id", "cash_distribution_entries", ["tenant_id"])
    op.create_index(
        "ix_cash_distribution_entries_shift_accounting_id", "cash_distribution_entries", ["shift_accounting_id"]
    )
    op.create_index(
        "ix_cash_distribution_entries_bank_account_id", "cash_distribution_entries", ["bank_account_id"]
    )
    op.create_index("ix_cash_distribution_entries_created_at", "cash_distribution_entries", ["created_at"])

    op.create_table(
        "shift_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_role", sa.String(length=16), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_shift_events_tenant_id", "shift_events", ["tenant_id"])
    op.create_index("ix_shift_events_event_type", "shift_events", ["event_type"])
    op.create_index("ix_shift_events_occurred_at", "shift_events", ["occurred_at"])
    op.create_index("ix_shift_events_entity", "shift_events", ["entity_type", "entity_id"])


def downgrade():
    op.drop_table("shift_events")
    op.drop_table("cash_distribution_entries")
    op.drop_table("shift_accountings")
    op.drop_table("bank_transactions")
    op.drop_table("bank_accounts")
    op.drop_index("uq_meter_assignments_open_nozzle", table_name="meter_assignments")
    op.drop_table("meter_assignments")
    op.drop_index("uq_attendant_shifts_open_attendant", table_name="attendant_shifts")
    op.drop_table("attendant_shifts")
    op.drop_table("attendants")
    op.drop_table("nozzles")
    op.drop_table("tanks")
    op.drop_table("products")
