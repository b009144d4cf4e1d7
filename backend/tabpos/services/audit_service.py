# Overview: Service-layer operations for the ticket audit trail.

from __future__ import annotations

import json
from typing import Optional

from ..extensions import db
from ..models import TicketEvent
from tabpos.time_utils import utcnow


TICKET_EVENT_TYPES = (
    "OPENED",
    "ITEM_ADDED",
    "ITEM_UPDATED",
    "ITEM_CANCELLED",
    "CLOSED",
    "CANCELLED",
    "REOPENED",
)


def append_ticket_event(
    *,
    ticket_id: int,
    event_type: str,
    user_id: int | None = None,
    payload: Optional[dict] = None,
) -> TicketEvent:
    """
    Append-only ticket event, written inside the same DB transaction as the
    change it records. No deletes/updates of existing events.
    """
    if event_type not in TICKET_EVENT_TYPES:
        raise ValueError(f"Unknown ticket event type: {event_type}")

    event = TicketEvent(
        ticket_id=ticket_id,
        event_type=event_type,
        user_id=user_id,
        payload=json.dumps(payload, sort_keys=True) if payload else None,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    return event


def list_ticket_events(ticket_id: int) -> list[TicketEvent]:
    return (
        db.session.query(TicketEvent)
        .filter_by(ticket_id=ticket_id)
        .order_by(TicketEvent.id)
        .all()
    )
