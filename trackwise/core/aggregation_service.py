"""Aggregation Engine - summaries, rankings and heatmaps over a domain scope.

Everything here is read-only and computed on demand. The functions at module
level are pure: they take plain session/event records and return response
schemas, so they can be tested without a database. `AggregationService`
wires them to an `AnalyticsRepository` that supplies those records for a
scope (opaque allow-list of domain ids) and a time window.
"""

import asyncio
import logging
import math
import threading
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, NamedTuple, Optional, Sequence

from .clock import ensure_utc, utcnow
from .config import settings
from ..schemas import (
    AnalyticsResponse, AnalyticsSummary, ClickHotspot, ClickPoint, EventType, EventTypeCount,
    ExitDetail, ExitHotspot, EXIT_EVENT_TYPES, HeatmapResponse, HeatmapSummary, HeatmapTimeRange,
    HourlyBucket, PageCount, SessionOut,
)

logger = logging.getLogger(__name__)

TOP_N = 10
EXIT_EVENT_LIMIT = 1000
INTERACTION_EVENT_LIMIT = 500
KNOWN_EVENT_TYPES = frozenset(member.value for member in EventType)
_EXIT_TYPE_VALUES = frozenset(t.value for t in EXIT_EVENT_TYPES)

Scope = FrozenSet[uuid.UUID]


# ====================================================================================
# --- Records read from storage ---
# ====================================================================================
@dataclass(frozen=True)
class TimeWindow:
    """Closed interval on session start time; either end may be open."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass(frozen=True)
class SessionRecord:
    id: uuid.UUID
    session_id: str
    domain_id: uuid.UUID
    domain: str
    start_time: datetime
    page_count: int
    is_active: bool
    duration: Optional[int] = None
    exit_page: Optional[str] = None


@dataclass(frozen=True)
class EventRecord:
    id: uuid.UUID
    session_pk: uuid.UUID
    domain: str
    event_type: str
    page: str
    data: Any
    timestamp: datetime
    session_duration: Optional[int] = None
    session_page_count: int = 1


class PageKey(NamedTuple):
    """Grouping key for per-page aggregates."""
    domain: str
    page: str

    def as_key(self) -> str:
        # Downstream consumers key their maps by plain concatenation
        return f"{self.domain}{self.page}"


class AnalyticsRepository(ABC):
    """Read-only snapshot interface the engine queries. Implementations never write."""

    @abstractmethod
    def list_sessions(self, scope: Scope, window: TimeWindow, domain_name: Optional[str] = None) -> List[SessionRecord]:
        """Sessions in scope whose start_time falls in the window, oldest first."""

    @abstractmethod
    def list_events(
        self,
        scope: Scope,
        window: TimeWindow,
        event_types: Iterable[str],
        domain_name: Optional[str] = None,
        page_contains: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[EventRecord]:
        """Events of the given types whose session is in scope and window, newest first."""

    @abstractmethod
    def recent_sessions(self, scope: Scope, window: TimeWindow, limit: int) -> List[SessionOut]:
        """Most recently started sessions with their events, for listing."""

    @abstractmethod
    def domain_names(self, scope: Scope) -> List[str]:
        """Names of the domains in scope."""


# ====================================================================================
# --- Payload helpers ---
# ====================================================================================
def as_number(value: Any) -> Optional[float]:
    """Return value as a finite float, or None when it is not a real number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def exit_metrics(data: Any) -> Optional[tuple]:
    """
    `(timeOnPage, engagementScore, maxScrollDepth)` from an exit payload.
    Absent metrics count as 0; a present but non-numeric metric makes the
    whole payload malformed (None).
    """
    if not isinstance(data, dict):
        return None
    values = []
    for name in ("timeOnPage", "engagementScore", "maxScrollDepth"):
        raw = data.get(name)
        if raw is None:
            values.append(0.0)
            continue
        number = as_number(raw)
        if number is None:
            return None
        values.append(number)
    return tuple(values)


def is_engaged_exit(data: Any) -> bool:
    """Exits with no engagement signal are bounce noise and stay out of the heatmap."""
    metrics = exit_metrics(data)
    if metrics is None:
        return False
    _, engagement, scroll_depth = metrics
    return engagement > 0 or scroll_depth > 10


def _round_half_up(value: float, places: int = 0) -> Decimal:
    quantum = Decimal(1).scaleb(-places)
    return Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)


# ====================================================================================
# --- Pure aggregations ---
# ====================================================================================
def summarize(sessions: Sequence[SessionRecord], total_events: int) -> AnalyticsSummary:
    durations = [s.duration for s in sessions if s.duration is not None]
    average_duration = int(_round_half_up(sum(durations) / len(durations))) if durations else 0
    average_pages = (
        float(_round_half_up(sum(s.page_count for s in sessions) / len(sessions), 2)) if sessions else 0.0
    )
    return AnalyticsSummary(
        totalSessions=len(sessions),
        averageDuration=average_duration,
        averagePageCount=average_pages,
        totalEvents=total_events,
    )


def rank_exit_pages(sessions: Iterable[SessionRecord], limit: int = TOP_N) -> List[PageCount]:
    """Terminal sessions by exit page. Counter keeps first-seen order among equal counts."""
    counts = Counter(s.exit_page for s in sessions if not s.is_active and s.exit_page is not None)
    return [PageCount(page=page, count=count) for page, count in counts.most_common(limit)]


def event_type_distribution(events: Iterable[EventRecord]) -> List[EventTypeCount]:
    counts = Counter(e.event_type for e in events if e.event_type in KNOWN_EVENT_TYPES)
    return [EventTypeCount(type=event_type, count=count) for event_type, count in counts.most_common()]


def rank_page_views(events: Iterable[EventRecord], limit: int = TOP_N) -> List[PageCount]:
    counts = Counter(e.page for e in events if e.event_type == EventType.PAGE_VIEW.value)
    return [PageCount(page=page, count=count) for page, count in counts.most_common(limit)]


def hourly_activity(sessions: Iterable[SessionRecord], now: datetime) -> List[HourlyBucket]:
    """Session starts in the 24 wall-clock hours ending with the current one, oldest first."""
    current_hour = ensure_utc(now).replace(minute=0, second=0, microsecond=0)
    first_hour = current_hour - timedelta(hours=23)
    counts = [0] * 24
    for session in sessions:
        started = ensure_utc(session.start_time)
        if started < first_hour or started >= current_hour + timedelta(hours=1):
            continue
        counts[int((started - first_hour).total_seconds() // 3600)] += 1
    buckets = []
    for offset, count in enumerate(counts):
        start = first_hour + timedelta(hours=offset)
        buckets.append(HourlyBucket(hour=start.hour, start=start, count=count))
    return buckets


def exit_heatmap(events: Iterable[EventRecord]) -> List[ExitHotspot]:
    """Engaged exit events grouped per page with simple means."""
    groups: Dict[PageKey, List[ExitDetail]] = {}
    for event in events:
        if event.event_type not in _EXIT_TYPE_VALUES or not is_engaged_exit(event.data):
            continue
        time_on_page, engagement, scroll_depth = exit_metrics(event.data)
        milestones = event.data.get("scrollMilestones")
        groups.setdefault(PageKey(event.domain, event.page), []).append(ExitDetail(
            eventType=event.event_type,
            timeOnPage=time_on_page,
            engagementScore=engagement,
            maxScrollDepth=scroll_depth,
            scrollMilestones=milestones if isinstance(milestones, list) else [],
            timestamp=event.timestamp,
            sessionDuration=event.session_duration,
            pageCount=event.session_page_count,
        ))

    hotspots = []
    for key, exits in groups.items():
        total = len(exits)
        hotspots.append(ExitHotspot(
            domain=key.domain,
            page=key.page,
            totalExits=total,
            avgTimeOnPage=sum(e.timeOnPage for e in exits) / total,
            avgEngagement=sum(e.engagementScore for e in exits) / total,
            avgScrollDepth=sum(e.maxScrollDepth for e in exits) / total,
            exits=exits,
        ))
    return hotspots


def click_density(events: Iterable[EventRecord]) -> List[ClickHotspot]:
    """Raw click points per page; binning is left to the presentation layer."""
    groups: Dict[PageKey, List[ClickPoint]] = {}
    for event in events:
        if event.event_type != EventType.INTERACTION.value or not isinstance(event.data, dict):
            continue
        x = as_number(event.data.get("viewportX"))
        y = as_number(event.data.get("viewportY"))
        if x is None or y is None:
            continue
        groups.setdefault(PageKey(event.domain, event.page), []).append(ClickPoint(
            x=x,
            y=y,
            element=event.data.get("element"),
            elementType=event.data.get("elementType"),
            elementText=event.data.get("elementText"),
        ))
    return [ClickHotspot(domain=key.domain, page=key.page, clicks=clicks) for key, clicks in groups.items()]


def conversion_attribution(events: Iterable[EventRecord]) -> Dict[str, int]:
    result: Counter = Counter()
    for event in events:
        if event.event_type == EventType.CONVERSION.value:
            result[PageKey(event.domain, event.page).as_key()] += 1
    return dict(result)


# ====================================================================================
# --- Service ---
# ====================================================================================
class AggregationService:
    """Runs the aggregations for one caller scope against a repository."""

    def __init__(self, repository: AnalyticsRepository, clock: Callable[[], datetime] = utcnow):
        self.repository = repository
        self.clock = clock

    def analytics(self, scope: Scope, window: TimeWindow, limit: int = 100) -> AnalyticsResponse:
        sessions = self.repository.list_sessions(scope, window)
        events = self.repository.list_events(scope, window, KNOWN_EVENT_TYPES)
        return AnalyticsResponse(
            sessions=self.repository.recent_sessions(scope, window, limit),
            summary=summarize(sessions, len(events)),
            exitPages=rank_exit_pages(sessions),
            eventTypes=event_type_distribution(events),
            pageViews=rank_page_views(events),
            hourlyActivity=hourly_activity(sessions, self.clock()),
        )

    def heatmap(
        self,
        scope: Scope,
        days: int = 7,
        domain_name: Optional[str] = None,
        page_filter: Optional[str] = None,
    ) -> HeatmapResponse:
        since = self.clock() - timedelta(days=days)
        window = TimeWindow(start=since)

        exit_events = self.repository.list_events(
            scope, window, _EXIT_TYPE_VALUES,
            domain_name=domain_name, page_contains=page_filter, limit=EXIT_EVENT_LIMIT,
        )
        interaction_events = self.repository.list_events(
            scope, window, [EventType.INTERACTION.value],
            domain_name=domain_name, page_contains=page_filter, limit=INTERACTION_EVENT_LIMIT,
        )
        conversion_events = self.repository.list_events(
            scope, window, [EventType.CONVERSION.value], domain_name=domain_name,
        )

        exits = exit_heatmap(exit_events)
        clicks = click_density(interaction_events)
        conversions = conversion_attribution(conversion_events)
        return HeatmapResponse(
            exitHeatmap=exits,
            clickHeatmap=clicks,
            conversions=conversions,
            summary=HeatmapSummary(
                totalExits=sum(h.totalExits for h in exits),
                totalInteractions=sum(len(h.clicks) for h in clicks),
                totalConversions=sum(conversions.values()),
                timeRange=HeatmapTimeRange(days=days, start=since),
                domains=self.repository.domain_names(scope),
            ),
        )


class AnalyticsPool:
    """Dedicated threads for aggregation queries, kept apart from ingestion."""

    def __init__(self, max_workers: int = settings.ANALYTICS_WORKERS):
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="analytics")
            return self._executor

    async def run(self, fn: Callable, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._get_executor(), lambda: fn(*args, **kwargs))

    def shutdown(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)


# Global analytics pool
analytics_pool = AnalyticsPool()
