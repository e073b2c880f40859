from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum
import uuid

# ====================================================================================
# --- Event taxonomy: the vocabulary shared by producers and the aggregation layer. ---
# ====================================================================================
class EventType(str, Enum):
    """
    Event kinds emitted by the tracking script.
    - PAGE_VIEW: a page was rendered; bumps the session page count.
    - PAGE_EXIT: the visitor left; ends the session.
    - POTENTIAL_EXIT: idle heuristic fired; the session stays open.
    - SESSION_TIMEOUT: the client gave up on the session; ends it.
    - INTERACTION: click or tap with viewport coordinates.
    - FORM_SUBMIT, SCROLL_MILESTONE, CONVERSION: engagement and attribution signals.
    - PAGE_HIDE / PAGE_SHOW: visibility changes.
    """
    PAGE_VIEW = "page_view"
    PAGE_EXIT = "page_exit"
    POTENTIAL_EXIT = "potential_exit"
    SESSION_TIMEOUT = "session_timeout"
    INTERACTION = "interaction"
    FORM_SUBMIT = "form_submit"
    SCROLL_MILESTONE = "scroll_milestone"
    CONVERSION = "conversion"
    PAGE_HIDE = "page_hide"
    PAGE_SHOW = "page_show"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["EventType"]:
        """Return the matching member, or None for types this build does not know."""
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_EVENT_TYPES


TERMINAL_EVENT_TYPES = frozenset({EventType.PAGE_EXIT, EventType.SESSION_TIMEOUT})
EXIT_EVENT_TYPES = frozenset({EventType.PAGE_EXIT, EventType.POTENTIAL_EXIT, EventType.SESSION_TIMEOUT})

# Payload fields each event type is expected to carry. Advisory only: events
# missing them are stored and simply drop out of the aggregates that need them.
EVENT_PAYLOAD_FIELDS: Dict[EventType, tuple] = {
    EventType.PAGE_VIEW: ("title", "url"),
    EventType.PAGE_EXIT: ("exitPage", "timeOnPage", "engagementScore", "maxScrollDepth", "scrollMilestones"),
    EventType.POTENTIAL_EXIT: ("timeOnPage", "engagementScore", "maxScrollDepth"),
    EventType.SESSION_TIMEOUT: (),
    EventType.INTERACTION: ("element", "elementType", "viewportX", "viewportY"),
    EventType.FORM_SUBMIT: ("formId", "fieldCount", "fields"),
    EventType.SCROLL_MILESTONE: ("depth", "timeToReach"),
    EventType.CONVERSION: ("type", "conversionPage", "timeToConvert"),
    EventType.PAGE_HIDE: (),
    EventType.PAGE_SHOW: (),
}


def missing_payload_fields(event_type: str, payload: Optional[Dict[str, Any]]) -> List[str]:
    """List the expected payload fields absent from `payload` (empty for unknown types)."""
    known = EventType.parse(event_type)
    if known is None:
        return []
    payload = payload or {}
    return [name for name in EVENT_PAYLOAD_FIELDS[known] if name not in payload]


# ====================================================================================
# --- Ingestion: the canonical record both transports normalize into. ---
# ====================================================================================
class NormalizedEvent(BaseModel):
    """
    Transport-independent telemetry record handed to the session correlator.
    `timestamp` is the client-declared time and is never used for ordering.
    """
    model_config = ConfigDict(frozen=True)

    session_id: str
    domain_name: str
    event_type: str
    page: str
    timestamp: datetime
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    element: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def known_type(self) -> Optional[EventType]:
        return EventType.parse(self.event_type)


class DomainInfo(BaseModel):
    """Registry view of a domain: `(domainId, domainName, isActive)`."""
    id: uuid.UUID
    domain: str
    is_active: bool


# ====================================================================================
# --- Summary analytics responses ---
# ====================================================================================
class EventOut(BaseModel):
    id: str
    eventType: str
    page: str
    element: Optional[str] = None
    data: Optional[Any] = None
    timestamp: datetime


class SessionOut(BaseModel):
    id: str
    sessionId: str
    domainId: str
    domain: str
    userAgent: Optional[str] = None
    referrer: Optional[str] = None
    startTime: datetime
    lastActivity: datetime
    endTime: Optional[datetime] = None
    pageCount: int
    exitPage: Optional[str] = None
    duration: Optional[int] = None
    isActive: bool
    events: List[EventOut] = []


class AnalyticsSummary(BaseModel):
    totalSessions: int
    averageDuration: int
    averagePageCount: float
    totalEvents: int


class PageCount(BaseModel):
    page: str
    count: int


class EventTypeCount(BaseModel):
    type: str
    count: int


class HourlyBucket(BaseModel):
    hour: int
    start: datetime
    count: int


class AnalyticsResponse(BaseModel):
    sessions: List[SessionOut]
    summary: AnalyticsSummary
    exitPages: List[PageCount]
    eventTypes: List[EventTypeCount]
    pageViews: List[PageCount]
    hourlyActivity: List[HourlyBucket]


# ====================================================================================
# --- Heatmap analytics responses ---
# ====================================================================================
class ExitDetail(BaseModel):
    eventType: str
    timeOnPage: float
    engagementScore: float
    maxScrollDepth: float
    scrollMilestones: List[Any] = []
    timestamp: datetime
    sessionDuration: Optional[int] = None
    pageCount: int


class ExitHotspot(BaseModel):
    domain: str
    page: str
    totalExits: int
    avgTimeOnPage: float
    avgEngagement: float
    avgScrollDepth: float
    exits: List[ExitDetail] = []


class ClickPoint(BaseModel):
    x: float
    y: float
    element: Optional[Any] = None
    elementType: Optional[Any] = None
    elementText: Optional[Any] = None


class ClickHotspot(BaseModel):
    domain: str
    page: str
    clicks: List[ClickPoint]


class HeatmapTimeRange(BaseModel):
    days: int
    start: datetime = Field(serialization_alias="from")


class HeatmapSummary(BaseModel):
    totalExits: int
    totalInteractions: int
    totalConversions: int
    timeRange: HeatmapTimeRange
    domains: List[str]


class HeatmapResponse(BaseModel):
    exitHeatmap: List[ExitHotspot]
    clickHeatmap: List[ClickHotspot]
    conversions: Dict[str, int]
    summary: HeatmapSummary


class ErrorResponse(BaseModel):
    error: str
