from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import text

from ..extensions import db
from ..time_utils import to_utc_z, decimal_str
from .types import ExactDecimal, Money, Reading


STATUS_OPEN = "OPEN"
STATUS_CLOSED = "CLOSED"
VALID_STATUSES = (STATUS_OPEN, STATUS_CLOSED)

_OPEN_ONLY = text("status = 'OPEN'")


class AttendantShift(db.Model):
    """
    One attendant's working shift, grouping the nozzle assignments they held.

    LIFECYCLE:
    - OPEN: attendant on duty, assignments may be attached
    - CLOSED: every attached assignment is closed; ready for reconciliation
    """
    __tablename__ = "attendant_shifts"
    __table_args__ = (
        db.Index(
            "uq_attendant_shifts_open_attendant",
            "attendant_id",
            unique=True,
            sqlite_where=_OPEN_ONLY,
            postgresql_where=_OPEN_ONLY,
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    attendant_id = db.Column(db.Integer, db.ForeignKey("attendants.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_OPEN, index=True)
    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)

    # Cash handed to the attendant when the shift starts
    opening_cash = db.Column(Money(), nullable=False, default=Decimal("0.00"))

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    attendant = db.relationship("Attendant", backref=db.backref("attendant_shifts", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == STATUS_OPEN

    @property
    def is_closed(self) -> bool:
        return self.status == STATUS_CLOSED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "attendant_id": self.attendant_id,
            "status": self.status,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "opening_cash": decimal_str(self.opening_cash),
            "assignment_ids": [a.id for a in self.assignments],
            "version_id": self.version_id,
        }


class MeterAssignment(db.Model):
    """
    One attendant's custody of one nozzle between two meter readings.

    INVARIANTS:
    - At most one OPEN row per nozzle (partial unique index below)
    - closing_reading >= opening_reading once set
    - dispensed_volume / gross_value are derived on close, never written directly

    CLOSED is terminal: further work on the nozzle is a new row, chained
    through predecessor_id.
    """
    __tablename__ = "meter_assignments"
    __table_args__ = (
        db.Index(
            "uq_meter_assignments_open_nozzle",
            "nozzle_id",
            unique=True,
            sqlite_where=_OPEN_ONLY,
            postgresql_where=_OPEN_ONLY,
        ),
        db.Index("ix_meter_assignments_nozzle_start", "nozzle_id", "start_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    nozzle_id = db.Column(db.Integer, db.ForeignKey("nozzles.id"), nullable=False, index=True)
    attendant_id = db.Column(db.Integer, db.ForeignKey("attendants.id"), nullable=False, index=True)
    attendant_shift_id = db.Column(db.Integer, db.ForeignKey("attendant_shifts.id"), nullable=True, index=True)
    predecessor_id = db.Column(db.Integer, db.ForeignKey("meter_assignments.id", ondelete="SET NULL"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_OPEN, index=True)
    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)

    opening_reading = db.Column(Reading(), nullable=False)
    closing_reading = db.Column(Reading(), nullable=True)
    unit_price = db.Column(Money(), nullable=False)

    dispensed_volume = db.Column(Reading(), nullable=True)
    # volume (3 dp) x price (2 dp): kept exact
    gross_value = db.Column(ExactDecimal(5), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    nozzle = db.relationship("Nozzle", backref=db.backref("assignments", lazy=True))
    attendant = db.relationship("Attendant", backref=db.backref("assignments", lazy=True))
    attendant_shift = db.relationship("AttendantShift", backref=db.backref("assignments", lazy=True, order_by="MeterAssignment.start_time"))
    predecessor = db.relationship("MeterAssignment", remote_side=[id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == STATUS_OPEN

    @property
    def is_closed(self) -> bool:
        return self.status == STATUS_CLOSED

    def close(self, closing_reading: Decimal, end_time: datetime) -> None:
        """Single OPEN -> CLOSED transition; callers validate the reading first."""
        self.closing_reading = closing_reading
        self.end_time = end_time
        self.status = STATUS_CLOSED
        self.recompute_derived()

    def recompute_derived(self) -> None:
        if self.closing_reading is None:
            self.dispensed_volume = None
            self.gross_value = None
            return
        self.dispensed_volume = self.closing_reading - self.opening_reading
        self.gross_value = self.dispensed_volume * self.unit_price

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "nozzle_id": self.nozzle_id,
            "attendant_id": self.attendant_id,
            "attendant_shift_id": self.attendant_shift_id,
            "predecessor_id": self.predecessor_id,
            "status": self.status,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "opening_reading": decimal_str(self.opening_reading),
            "closing_reading": decimal_str(self.closing_reading),
            "unit_price": decimal_str(self.unit_price),
            "dispensed_volume": decimal_str(self.dispensed_volume),
            "gross_value": decimal_str(self.gross_value),
            "version_id": self.version_id,
        }
