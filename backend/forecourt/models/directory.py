from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, decimal_str
from .types import Money


class Product(db.Model):
    """
    Fuel product sold at the station.

    sales_rate is the current unit price; assignments snapshot it when opened.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_products_tenant_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    sales_rate = db.Column(Money(), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "sales_rate": decimal_str(self.sales_rate),
        }


class Tank(db.Model):
    __tablename__ = "tanks"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)

    product = db.relationship("Product", backref=db.backref("tanks", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "name": self.name,
        }


class Nozzle(db.Model):
    """
    Dispensing nozzle with its own mechanical meter.

    DESIGN: Nozzles are never deleted; inactive nozzles cannot take new assignments.
    """
    __tablename__ = "nozzles"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_nozzles_tenant_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    tank_id = db.Column(db.Integer, db.ForeignKey("tanks.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tank = db.relationship("Tank", backref=db.backref("nozzles", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "tank_id": self.tank_id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Attendant(db.Model):
    __tablename__ = "attendants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "is_active": self.is_active,
        }
