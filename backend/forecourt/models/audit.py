from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


class ShiftEvent(db.Model):
    """
    Append-only audit trail for the shift / reconciliation / distribution flow.

    Rows are written in the same transaction as the change they describe and
    are never updated. entity_id is not a foreign key so history survives
    administrative deletes.
    """
    __tablename__ = "shift_events"
    __table_args__ = (
        db.Index("ix_shift_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    actor_id = db.Column(db.Integer, nullable=True)
    actor_role = db.Column(db.String(16), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
            "payload": json.loads(self.payload) if self.payload else None,
        }
