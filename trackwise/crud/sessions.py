"""Tracking session persistence."""

from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session

from ..models import TrackingSession
from ..schemas import DomainInfo, NormalizedEvent


def get_session_by_key(db: Session, session_id: str) -> Optional[TrackingSession]:
    """Find a session by its client-generated key."""
    return db.query(TrackingSession).filter(TrackingSession.session_id == session_id).first()


def create_session(db: Session, event: NormalizedEvent, domain: DomainInfo) -> TrackingSession:
    """
    Insert a session for a first-seen key and flush it.

    The flush surfaces a unique-key violation right away when another writer
    created the same session first.
    """
    db_session = TrackingSession(
        session_id=event.session_id,
        domain_id=domain.id,
        domain=domain.domain,
        user_agent=event.user_agent,
        referrer=event.referrer,
        start_time=event.timestamp,
        last_activity=event.timestamp,
        # First contact always counts as one page
        page_count=1,
        last_page=event.page,
        is_active=True,
    )
    db.add(db_session)
    db.flush()
    return db_session


def touch_session(db_session: TrackingSession, page: str, now: datetime, *, page_view: bool = False) -> None:
    """Record non-terminal activity on an open session."""
    db_session.last_activity = now
    db_session.last_page = page
    if page_view:
        db_session.page_count = (db_session.page_count or 0) + 1


def end_session(db_session: TrackingSession, exit_page: str, end_time: datetime, duration: int) -> None:
    """Apply the terminal transition fields in one step."""
    db_session.last_activity = end_time
    db_session.end_time = end_time
    db_session.is_active = False
    db_session.exit_page = exit_page
    db_session.duration = duration
