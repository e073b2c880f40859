"""CRUD operations module."""

from .domains import (
    get_domain_by_name,
    get_domain_ids_for_owner,
    get_domains_by_ids,
)
from .sessions import (
    get_session_by_key,
    create_session,
    touch_session,
    end_session,
)
from .events import (
    append_event,
    get_events_for_session,
)

__all__ = [
    "get_domain_by_name",
    "get_domain_ids_for_owner",
    "get_domains_by_ids",
    "get_session_by_key",
    "create_session",
    "touch_session",
    "end_session",
    "append_event",
    "get_events_for_session",
]
