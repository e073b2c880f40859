"""Session Correlator - maps client session keys to durable session records.

Lifecycle per session key::

    NEW --any event--> ACTIVE --page_exit | session_timeout--> TERMINAL

NEW is not stored: it is the absence of a row. Once TERMINAL, a session is
frozen; later events are still appended to the event store but never touch
the session row, so retries and duplicate beacons cannot rewrite duration,
exit page or end time.

Mutations for one key are serialized in arrival order by a keyed lock inside
this process. Across processes the unique session key and the row's version
column catch the remaining races, and the losing writer replays its event
against the fresh row.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .clock import ensure_utc, utcnow
from .config import settings
from .database import SessionLocal
from .domain_registry import DomainRegistry, domain_registry
from .errors import StorageFailure
from .keyed_lock import KeyedLock
from ..crud import events as events_crud
from ..crud import sessions as sessions_crud
from ..models import TrackingSession
from ..schemas import DomainInfo, EventType, NormalizedEvent

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    TERMINATED = "terminated"
    LATE = "late"  # event arrived after the session ended


@dataclass(frozen=True)
class CorrelationResult:
    session_pk: uuid.UUID
    session_id: str
    event_id: uuid.UUID
    outcome: Outcome


class SessionCorrelator:
    """Applies inbound events to the session state machine and stores them."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        registry: DomainRegistry,
        clock: Callable[[], datetime] = utcnow,
        locks: Optional[KeyedLock] = None,
        max_retries: int = settings.SESSION_UPDATE_RETRIES,
    ):
        self._session_factory = session_factory
        self.registry = registry
        self.clock = clock
        self.locks = locks or KeyedLock()
        self.max_retries = max_retries

    def ingest(self, event: NormalizedEvent) -> CorrelationResult:
        """
        Correlate one event. Raises UnknownDomainError / InactiveDomainError
        for events the registry rejects and StorageFailure when the database
        write cannot be completed.
        """
        domain = self.registry.resolve(event.domain_name)

        with self.locks.hold(event.session_id):
            # Arrival time is taken under the lock so it follows serialization order
            now = self.clock()
            for attempt in range(self.max_retries + 1):
                db = self._session_factory()
                try:
                    result = self._apply(db, event, domain, now)
                    db.commit()
                    return result
                except (IntegrityError, StaleDataError) as e:
                    db.rollback()
                    logger.info(
                        f"Concurrent write on session {event.session_id!r} "
                        f"(attempt {attempt + 1}/{self.max_retries + 1}): {e.__class__.__name__}"
                    )
                except SQLAlchemyError as e:
                    db.rollback()
                    raise StorageFailure(f"Failed to store event: {e.__class__.__name__}") from e
                finally:
                    db.close()

        raise StorageFailure(f"Gave up on session {event.session_id!r} after {self.max_retries + 1} attempts")

    def _apply(self, db: Session, event: NormalizedEvent, domain: DomainInfo, now: datetime) -> CorrelationResult:
        """One attempt at the transition plus the event append, inside an open transaction."""
        event_type = event.known_type
        db_session = sessions_crud.get_session_by_key(db, event.session_id)

        if db_session is None:
            # First contact always opens the session, even for a terminal event type
            db_session = sessions_crud.create_session(db, event, domain)
            outcome = Outcome.CREATED
        elif not db_session.is_active:
            outcome = Outcome.LATE
            logger.debug(f"Late {event.event_type!r} for ended session {event.session_id!r}")
        elif event_type is not None and event_type.is_terminal:
            self._terminate(db_session, event_type, event, now)
            outcome = Outcome.TERMINATED
        else:
            sessions_crud.touch_session(
                db_session, event.page, now, page_view=event_type is EventType.PAGE_VIEW
            )
            outcome = Outcome.UPDATED

        db_event = events_crud.append_event(db, db_session, event, received_at=now)
        return CorrelationResult(
            session_pk=db_session.id,
            session_id=db_session.session_id,
            event_id=db_event.id,
            outcome=outcome,
        )

    @staticmethod
    def _terminate(db_session: TrackingSession, event_type: EventType, event: NormalizedEvent, now: datetime) -> None:
        start_time = ensure_utc(db_session.start_time)
        # A client clock running ahead must not produce end_time < start_time
        end_time = max(now, start_time)
        if event_type is EventType.PAGE_EXIT:
            exit_page = event.page
        else:
            exit_page = db_session.last_page or event.page
        duration = math.floor((end_time - start_time).total_seconds())
        sessions_crud.end_session(db_session, exit_page, end_time, duration)


# Global correlator instance
session_correlator = SessionCorrelator(SessionLocal, domain_registry)
