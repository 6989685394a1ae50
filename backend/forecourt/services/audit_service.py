# Overview: Append-only audit events for shift, reconciliation and distribution changes.

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from ..context import CallerContext
from ..extensions import db
from ..models import ShiftEvent
"""
Shift audit invariants

- Append-only: no updates or deletes of existing events.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back operation leaves no event behind.
- occurred_at is business time; created server-side when omitted.
- payload is compact JSON; decimals are written as plain strings.
"""


def _json_default(value: Any) -> str:
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Cannot serialize {type(value).__name__} into an event payload")


def _json_dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True, default=_json_default)


def append_event(
    ctx: CallerContext,
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> ShiftEvent:
    ev = ShiftEvent(
        tenant_id=ctx.tenant_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=ctx.user_id,
        actor_role=ctx.role,
        occurred_at=occurred_at,  # if None, db default applies
        note=note,
        payload=_json_dumps(payload) if payload is not None else None,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_events(
    ctx: CallerContext,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    limit: int = 100,
) -> list[ShiftEvent]:
    query = db.session.query(ShiftEvent).filter_by(tenant_id=ctx.tenant_id)
    if entity_type:
        query = query.filter_by(entity_type=entity_type)
    if entity_id is not None:
        query = query.filter_by(entity_id=entity_id)
    return query.order_by(ShiftEvent.id.desc()).limit(limit).all()
