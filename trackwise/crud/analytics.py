"""Read-only queries feeding the aggregation engine."""

from typing import Callable, Iterable, List, Optional
from sqlalchemy.orm import Query, Session, selectinload

from ..core.aggregation_service import AnalyticsRepository, EventRecord, Scope, SessionRecord, TimeWindow
from ..core.clock import ensure_utc
from ..models import Domain, TrackingEvent, TrackingSession
from ..schemas import EventOut, SessionOut


def _apply_window(query: Query, window: TimeWindow) -> Query:
    if window.start is not None:
        query = query.filter(TrackingSession.start_time >= window.start)
    if window.end is not None:
        query = query.filter(TrackingSession.start_time <= window.end)
    return query


def _to_session_record(row: TrackingSession) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        session_id=row.session_id,
        domain_id=row.domain_id,
        domain=row.domain,
        start_time=ensure_utc(row.start_time),
        page_count=row.page_count,
        is_active=row.is_active,
        duration=row.duration,
        exit_page=row.exit_page,
    )


def _to_session_out(row: TrackingSession) -> SessionOut:
    return SessionOut(
        id=str(row.id),
        sessionId=row.session_id,
        domainId=str(row.domain_id),
        domain=row.domain,
        userAgent=row.user_agent,
        referrer=row.referrer,
        startTime=ensure_utc(row.start_time),
        lastActivity=ensure_utc(row.last_activity),
        endTime=ensure_utc(row.end_time),
        pageCount=row.page_count,
        exitPage=row.exit_page,
        duration=row.duration,
        isActive=row.is_active,
        events=[
            EventOut(
                id=str(event.id),
                eventType=event.event_type,
                page=event.page,
                element=event.element,
                data=event.data,
                timestamp=ensure_utc(event.timestamp),
            )
            for event in row.events
        ],
    )


class SqlAnalyticsRepository(AnalyticsRepository):
    """AnalyticsRepository over the ORM tables. Opens a short-lived session per call."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def _scoped_sessions(self, db: Session, scope: Scope, window: TimeWindow) -> Query:
        query = db.query(TrackingSession).filter(TrackingSession.domain_id.in_(list(scope)))
        return _apply_window(query, window)

    def list_sessions(
        self, scope: Scope, window: TimeWindow, domain_name: Optional[str] = None
    ) -> List[SessionRecord]:
        if not scope:
            return []
        db = self._session_factory()
        try:
            query = self._scoped_sessions(db, scope, window)
            if domain_name:
                query = query.filter(TrackingSession.domain == domain_name)
            rows = query.order_by(TrackingSession.start_time.asc(), TrackingSession.created_at.asc()).all()
            return [_to_session_record(row) for row in rows]
        finally:
            db.close()

    def list_events(
        self,
        scope: Scope,
        window: TimeWindow,
        event_types: Iterable[str],
        domain_name: Optional[str] = None,
        page_contains: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[EventRecord]:
        event_types = list(event_types)
        if not scope or not event_types:
            return []
        db = self._session_factory()
        try:
            query = (
                db.query(TrackingEvent, TrackingSession)
                .join(TrackingSession, TrackingEvent.session_pk == TrackingSession.id)
                .filter(TrackingSession.domain_id.in_(list(scope)))
                .filter(TrackingEvent.event_type.in_(event_types))
            )
            query = _apply_window(query, window)
            if domain_name:
                query = query.filter(TrackingSession.domain == domain_name)
            if page_contains:
                query = query.filter(TrackingEvent.page.contains(page_contains, autoescape=True))
            query = query.order_by(TrackingEvent.timestamp.desc())
            if limit is not None:
                query = query.limit(limit)

            return [
                EventRecord(
                    id=event.id,
                    session_pk=session.id,
                    domain=session.domain,
                    event_type=event.event_type,
                    page=event.page,
                    data=event.data,
                    timestamp=ensure_utc(event.timestamp),
                    session_duration=session.duration,
                    session_page_count=session.page_count,
                )
                for event, session in query.all()
            ]
        finally:
            db.close()

    def recent_sessions(self, scope: Scope, window: TimeWindow, limit: int) -> List[SessionOut]:
        if not scope:
            return []
        db = self._session_factory()
        try:
            rows = (
                self._scoped_sessions(db, scope, window)
                .options(selectinload(TrackingSession.events))
                .order_by(TrackingSession.start_time.desc(), TrackingSession.created_at.desc())
                .limit(limit)
                .all()
            )
            return [_to_session_out(row) for row in rows]
        finally:
            db.close()

    def domain_names(self, scope: Scope) -> List[str]:
        if not scope:
            return []
        db = self._session_factory()
        try:
            rows = (
                db.query(Domain.domain)
                .filter(Domain.id.in_(list(scope)))
                .order_by(Domain.created_at.desc(), Domain.domain)
                .all()
            )
            return [row[0] for row in rows]
        finally:
            db.close()
