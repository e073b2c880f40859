"""Append-only event store."""

from datetime import datetime
from typing import List
import uuid
from sqlalchemy.orm import Session

from ..models import TrackingEvent, TrackingSession
from ..schemas import NormalizedEvent


def append_event(
    db: Session,
    db_session: TrackingSession,
    event: NormalizedEvent,
    received_at: datetime,
) -> TrackingEvent:
    """Add an event row tied to the session's internal id. The caller commits."""
    db_event = TrackingEvent(
        session_pk=db_session.id,
        event_type=event.event_type,
        page=event.page,
        element=event.element,
        data=dict(event.payload) if event.payload else None,
        timestamp=event.timestamp,
        received_at=received_at,
    )
    db.add(db_event)
    db.flush()
    return db_event


def get_events_for_session(db: Session, session_pk: uuid.UUID) -> List[TrackingEvent]:
    """All events of a session in client timestamp order."""
    return (
        db.query(TrackingEvent)
        .filter(TrackingEvent.session_pk == session_pk)
        .order_by(TrackingEvent.timestamp, TrackingEvent.received_at)
        .all()
    )
