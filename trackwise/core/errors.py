"""Telemetry error taxonomy.

Every error carries the HTTP status the direct transport answers with. The
beacon transport catches all of them and still serves its pixel.
"""

from typing import Optional


class TelemetryError(Exception):
    """Base class for errors raised by the ingestion and analytics paths."""

    http_status = 500

    def __init__(self, message: str, *, http_status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if http_status is not None:
            self.http_status = http_status


class ValidationError(TelemetryError):
    """A required field is missing or malformed."""

    http_status = 400


class UnknownDomainError(TelemetryError):
    """The event names a domain the registry does not know."""

    http_status = 404

    def __init__(self, domain: str):
        super().__init__("Domain not found")
        self.domain = domain


class InactiveDomainError(TelemetryError):
    """The domain exists but no longer accepts events."""

    http_status = 403

    def __init__(self, domain: str):
        super().__init__("Domain is not active")
        self.domain = domain


class StorageFailure(TelemetryError):
    """Persistence failed; usually transient."""

    http_status = 500


class ScopeResolutionError(TelemetryError):
    """The caller's domain scope could not be established (401) or is empty (404)."""

    http_status = 401
