"""Background dispatcher for beacon events.

The beacon endpoint returns its pixel as soon as an event is queued here;
correlation and persistence run on a dedicated thread pool so they never
delay the image response and never share threads with analytics queries.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional, Set

from .config import settings
from .errors import TelemetryError
from .session_correlator import session_correlator
from ..schemas import NormalizedEvent

logger = logging.getLogger(__name__)


class BeaconDispatcher:
    """Fire-and-forget executor with a bound on queued work."""

    def __init__(
        self,
        handler: Callable[[NormalizedEvent], Any],
        max_workers: int = settings.BEACON_WORKERS,
        max_pending: int = settings.BEACON_MAX_PENDING,
    ):
        self.handler = handler
        self.max_workers = max_workers
        self.max_pending = max_pending
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()
        self._pending: Set[Future] = set()
        self._stopped = False
        self.dropped = 0

    @property
    def is_running(self) -> bool:
        return self._executor is not None

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def start(self) -> None:
        """Create the worker pool. Safe to call repeatedly."""
        with self._lock:
            self._start_locked()

    def _start_locked(self) -> None:
        self._stopped = False
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="beacon"
            )
            logger.info(f"🚀 Beacon dispatcher started with {self.max_workers} workers")

    def stop(self, wait_for_pending: bool = True) -> None:
        """Shut the pool down, finishing queued beacons unless told otherwise."""
        with self._lock:
            executor, self._executor = self._executor, None
            self._stopped = True
        if executor is not None:
            executor.shutdown(wait=wait_for_pending, cancel_futures=not wait_for_pending)
            logger.info("🛑 Beacon dispatcher stopped")

    def submit(self, event: NormalizedEvent) -> bool:
        """
        Queue an event. Returns False when it was dropped instead. A dispatcher
        that was never started starts on first use; one that was stopped stays
        stopped until start() is called again.
        """
        with self._lock:
            if self._stopped:
                self.dropped += 1
                logger.warning(f"Beacon dispatcher stopped; dropping event for session {event.session_id!r}")
                return False
            if len(self._pending) >= self.max_pending:
                self.dropped += 1
                logger.warning(
                    f"Beacon queue full ({self.max_pending}); dropping {event.event_type} "
                    f"for session {event.session_id!r}"
                )
                return False
            self._start_locked()
            try:
                future = self._executor.submit(self._run, event)
            except RuntimeError:
                # Interpreter is shutting down
                self.dropped += 1
                logger.warning(f"Beacon dispatcher stopping; dropping event for session {event.session_id!r}")
                return False
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return True

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for currently queued beacons. Returns True if all finished."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _run(self, event: NormalizedEvent) -> None:
        try:
            self.handler(event)
        except TelemetryError as e:
            logger.warning(
                f"Beacon for session {event.session_id!r} on {event.domain_name!r} not stored: {e.message}"
            )
        except Exception as e:
            logger.error(f"❌ Unexpected error processing beacon for session {event.session_id!r}: {e}", exc_info=True)


# Global dispatcher instance
beacon_dispatcher = BeaconDispatcher(session_correlator.ingest)
