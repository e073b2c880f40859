"""Ingestion Gateway - turns beacon query strings and JSON bodies into NormalizedEvents.

Both transports share the same validation; they differ only in what happens
to errors. The direct transport raises them for the API layer to answer with
an explicit status. The beacon transport hands valid events to the background
dispatcher and logs everything else, because its caller is an image tag.
"""

import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from dateutil import parser as date_parser

from .clock import ensure_utc, utcnow
from .errors import TelemetryError, ValidationError
from ..schemas import NormalizedEvent, missing_payload_fields

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("sessionId", "domain", "eventType", "page")
ENVELOPE_FIELDS = frozenset(REQUIRED_FIELDS + ("timestamp", "userAgent", "referrer"))
DATA_PREFIX = "data_"

MAX_KEY_LENGTH = 255
MAX_EVENT_TYPE_LENGTH = 64


def parse_timestamp(value: Any, now: datetime) -> datetime:
    """
    Client timestamps arrive as epoch milliseconds (number or digit string)
    or ISO-8601 text. Missing values fall back to the server clock.
    """
    if value is None or value == "":
        return now
    if isinstance(value, bool):
        raise ValidationError("Invalid timestamp")
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        try:
            value = int(value.strip())
        except ValueError:
            # Non-ASCII digits such as superscripts pass isdigit() but not int()
            raise ValidationError("Invalid timestamp")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise ValidationError("Invalid timestamp")
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise ValidationError("Invalid timestamp")
    if isinstance(value, str):
        try:
            return ensure_utc(date_parser.isoparse(value.strip()))
        except (ValueError, OverflowError):
            raise ValidationError("Invalid timestamp")
    raise ValidationError("Invalid timestamp")


def _required_str(fields: Mapping[str, Any], name: str, max_length: int) -> str:
    value = fields.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Missing required fields")
    if len(value) > max_length:
        raise ValidationError(f"Field too long: {name}")
    return value


def _optional_str(fields: Mapping[str, Any], name: str) -> Optional[str]:
    value = fields.get(name)
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


def build_event(
    fields: Mapping[str, Any],
    payload: Dict[str, Any],
    now: datetime,
) -> NormalizedEvent:
    """Validate the envelope fields and assemble the canonical record."""
    session_id = _required_str(fields, "sessionId", MAX_KEY_LENGTH)
    domain = _required_str(fields, "domain", MAX_KEY_LENGTH)
    event_type = _required_str(fields, "eventType", MAX_EVENT_TYPE_LENGTH)
    page = _required_str(fields, "page", 4096)

    element = payload.get("element")
    return NormalizedEvent(
        session_id=session_id,
        domain_name=domain.strip().lower(),
        event_type=event_type,
        page=page,
        timestamp=parse_timestamp(fields.get("timestamp"), now),
        user_agent=_optional_str(fields, "userAgent"),
        referrer=_optional_str(fields, "referrer"),
        element=element if isinstance(element, str) else None,
        payload=payload,
    )


def decode_data_param(raw: str) -> Any:
    """JSON-decode a `data_*` value, keeping the raw string when it is not JSON."""
    try:
        return json.loads(raw)
    except (ValueError, TypeError):
        return raw


def parse_beacon_params(
    params: Iterable[Tuple[str, str]],
    now: datetime,
    headers: Optional[Mapping[str, str]] = None,
) -> NormalizedEvent:
    """Normalize beacon query parameters; `data_<key>` entries form the payload."""
    fields: Dict[str, Any] = {}
    payload: Dict[str, Any] = {}
    for key, value in params:
        if key.startswith(DATA_PREFIX) and len(key) > len(DATA_PREFIX):
            payload[key[len(DATA_PREFIX):]] = decode_data_param(value)
        elif key in ENVELOPE_FIELDS:
            # First occurrence wins for envelope fields
            fields.setdefault(key, value)

    if headers is not None:
        if not fields.get("userAgent") and headers.get("user-agent"):
            fields["userAgent"] = headers.get("user-agent")
        if not fields.get("referrer") and headers.get("referer"):
            fields["referrer"] = headers.get("referer")

    return build_event(fields, payload, now)


def parse_direct_body(body: Any, now: datetime) -> NormalizedEvent:
    """Normalize a POSTed JSON object; non-envelope keys form the payload."""
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    payload = {key: value for key, value in body.items() if key not in ENVELOPE_FIELDS}
    return build_event(body, payload, now)


class IngestionGateway:
    """Front door shared by the beacon and direct transports."""

    def __init__(
        self,
        correlate: Callable[[NormalizedEvent], Any],
        dispatcher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.correlate = correlate
        self.dispatcher = dispatcher
        self.clock = clock

    def accept_beacon(
        self,
        params: Iterable[Tuple[str, str]],
        headers: Optional[Mapping[str, str]] = None,
    ) -> bool:
        """
        Queue a beacon for background correlation. Never raises; returns
        whether the event was queued.
        """
        try:
            event = parse_beacon_params(params, self.clock(), headers)
        except TelemetryError as e:
            logger.info(f"Dropped beacon: {e.message}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error decoding beacon: {e}", exc_info=True)
            return False

        self._log_missing_fields(event)
        return self.dispatcher.submit(event)

    def accept_direct(self, body: Any):
        """Correlate a POSTed event synchronously; TelemetryErrors propagate."""
        event = parse_direct_body(body, self.clock())
        self._log_missing_fields(event)
        return self.correlate(event)

    @staticmethod
    def _log_missing_fields(event: NormalizedEvent) -> None:
        missing = missing_payload_fields(event.event_type, event.payload)
        if missing:
            logger.debug(f"{event.event_type} for session {event.session_id!r} is missing payload fields {missing}")
