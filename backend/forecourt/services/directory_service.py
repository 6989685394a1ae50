# Overview: Read-only nozzle/tank/product/attendant lookups used to validate and enrich shift data.

from __future__ import annotations

from decimal import Decimal

from ..context import CallerContext
from ..extensions import db
from ..models import Attendant, Nozzle
from ..validation import NotFoundError, StateError


def get_nozzle(ctx: CallerContext, nozzle_id: int) -> Nozzle:
    nozzle = db.session.get(Nozzle, nozzle_id)
    if not nozzle or nozzle.tenant_id != ctx.tenant_id:
        raise NotFoundError(f"Nozzle {nozzle_id} not found", entity_id=nozzle_id)
    return nozzle


def get_active_nozzle(ctx: CallerContext, nozzle_id: int) -> Nozzle:
    nozzle = get_nozzle(ctx, nozzle_id)
    if not nozzle.is_active:
        raise StateError(f"Nozzle {nozzle_id} is inactive", field="nozzle_id", entity_id=nozzle_id)
    return nozzle


def get_attendant(ctx: CallerContext, attendant_id: int) -> Attendant:
    attendant = db.session.get(Attendant, attendant_id)
    if not attendant or attendant.tenant_id != ctx.tenant_id:
        raise NotFoundError(f"Attendant {attendant_id} not found", entity_id=attendant_id)
    if not attendant.is_active:
        raise StateError(f"Attendant {attendant_id} is inactive", field="attendant_id", entity_id=attendant_id)
    return attendant


def current_sales_rate(nozzle: Nozzle) -> Decimal | None:
    """Unit price of the product behind a nozzle, if one is configured."""
    product = nozzle.tank.product if nozzle.tank else None
    return product.sales_rate if product else None


def describe_nozzle(nozzle: Nozzle | None) -> dict:
    """Display names for a nozzle; never used in reconciliation math."""
    if nozzle is None:
        return {"nozzle_name": None, "tank_name": None, "product_name": None}
    tank = nozzle.tank
    product = tank.product if tank else None
    return {
        "nozzle_name": nozzle.name,
        "tank_name": tank.name if tank else None,
        "product_name": product.name if product else None,
    }
