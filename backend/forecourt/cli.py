# Overview: Flask CLI command groups for bootstrap and shift inspection.

# backend/forecourt/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "forecourt:create_app".
# - Use: python -m flask <group> <command> [options]
#
# Station bootstrap:
# - python -m flask stations seed-demo --tenant demo
#   Idempotent: creates a product, tank, two nozzles, two attendants and a bank account.
#
# Shift inspection:
# - python -m flask shifts list-open --tenant demo
#   List OPEN meter assignments and attendant shifts.
# - python -m flask shifts audit-variance --tenant demo
#   Recompute every reconciliation from its stored inputs and report drift.

from decimal import Decimal

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import (
    Attendant,
    AttendantShift,
    BankAccount,
    MeterAssignment,
    Nozzle,
    Product,
    ShiftAccounting,
    STATUS_OPEN,
    Tank,
)


@click.group('stations')
def stations_group():
    """Station bootstrap commands."""


@stations_group.command('seed-demo')
@click.option('--tenant', 'tenant_id', default='demo', show_default=True, help='Tenant ID')
@click.option('--rate', default='95.50', show_default=True, help='Product sales rate')
@with_appcontext
def seed_demo_cli(tenant_id, rate):
    """
    Create a small demo station.

    Example:
        flask stations seed-demo --tenant demo
    """
    db.create_all()

    product = db.session.query(Product).filter_by(tenant_id=tenant_id, name="Petrol").first()
    if not product:
        product = Product(tenant_id=tenant_id, name="Petrol", sales_rate=Decimal(rate))
        db.session.add(product)
        db.session.flush()

    tank = db.session.query(Tank).filter_by(tenant_id=tenant_id, name="Tank 1").first()
    if not tank:
        tank = Tank(tenant_id=tenant_id, product_id=product.id, name="Tank 1")
        db.session.add(tank)
        db.session.flush()

    for name in ("N1", "N2"):
        if not db.session.query(Nozzle).filter_by(tenant_id=tenant_id, name=name).first():
            db.session.add(Nozzle(tenant_id=tenant_id, tank_id=tank.id, name=name))

    for name in ("Asha", "Ravi"):
        if not db.session.query(Attendant).filter_by(tenant_id=tenant_id, name=name).first():
            db.session.add(Attendant(tenant_id=tenant_id, name=name))

    if not db.session.query(BankAccount).filter_by(tenant_id=tenant_id, account_number="000111222").first():
        db.session.add(BankAccount(
            tenant_id=tenant_id,
            account_holder_name="Demo Fuels",
            account_number="000111222",
            bank="Demo Bank",
        ))

    db.session.commit()
    click.echo(f"PASS Demo station ready for tenant '{tenant_id}'")


@click.group('shifts')
def shifts_group():
    """Shift inspection commands."""


@shifts_group.command('list-open')
@click.option('--tenant', 'tenant_id', required=True, help='Tenant ID')
@with_appcontext
def list_open_cli(tenant_id):
    """
    List open meter assignments and attendant shifts.

    Example:
        flask shifts list-open --tenant demo
    """
    assignments = db.session.query(MeterAssignment).filter_by(
        tenant_id=tenant_id, status=STATUS_OPEN
    ).order_by(MeterAssignment.nozzle_id).all()
    shifts = db.session.query(AttendantShift).filter_by(
        tenant_id=tenant_id, status=STATUS_OPEN
    ).order_by(AttendantShift.start_time).all()

    if not assignments and not shifts:
        click.echo("No open assignments or shifts.")
        return

    click.echo(f"\n{'ID':<6} {'Nozzle':<10} {'Attendant':<16} {'Opening':>16} {'Price':>10}  Started")
    click.echo("-" * 80)
    for a in assignments:
        attendant = a.attendant.name if a.attendant else a.attendant_id
        nozzle = a.nozzle.name if a.nozzle else a.nozzle_id
        click.echo(
            f"{a.id:<6} {nozzle!s:<10} {attendant!s:<16} {a.opening_reading!s:>16} "
            f"{a.unit_price!s:>10}  {a.start_time:%Y-%m-%d %H:%M}"
        )

    if shifts:
        click.echo("\nOpen attendant shifts:")
        for s in shifts:
            attendant = s.attendant.name if s.attendant else s.attendant_id
            click.echo(f"  #{s.id} {attendant} since {s.start_time:%Y-%m-%d %H:%M} (opening cash {s.opening_cash})")


@shifts_group.command('audit-variance')
@click.option('--tenant', 'tenant_id', required=True, help='Tenant ID')
@with_appcontext
def audit_variance_cli(tenant_id):
    """
    Recompute every reconciliation independently and compare.

    Exits with status 1 if any stored figure drifts from its recomputation.

    Example:
        flask shifts audit-variance --tenant demo
    """
    from .services.accounting_service import DeclaredInputs, derive_figures, fuel_sales_for

    records = db.session.query(ShiftAccounting).filter_by(tenant_id=tenant_id).order_by(ShiftAccounting.id).all()
    drift = 0
    for record in records:
        if record.assignment_id is not None:
            assignments = [record.assignment]
        else:
            assignments = list(record.attendant_shift.assignments)

        declared = DeclaredInputs(
            customer_receipt_amount=record.customer_receipt_amount,
            upi_amount=record.upi_amount,
            card_amount=record.card_amount,
            fleet_card_amount=record.fleet_card_amount,
            credit_extended=record.credit_extended,
            expenses=record.expenses,
            opening_cash_advance=record.opening_cash_advance,
            denominations=record.denominations,
        )
        figures = derive_figures(fuel_sales_for(assignments), declared)

        mismatched = [
            name for name in (
                "fuel_sales_amount",
                "counted_cash",
                "system_expected_amount",
                "expected_cash_in_hand",
                "variance_amount",
            )
            if getattr(record, name) != getattr(figures, name)
        ]
        if record.distributed_amount > record.counted_cash:
            mismatched.append("distributed_amount")

        if mismatched:
            drift += 1
            click.echo(f"FAIL accounting {record.id}: {', '.join(mismatched)}")

    click.echo(f"Checked {len(records)} reconciliation(s), {drift} with drift")
    if drift:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(stations_group)
    app.cli.add_command(shifts_group)
