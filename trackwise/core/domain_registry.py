"""Cached access to the external domain registry.

Every inbound event needs its domain resolved, so lookups go through a TTL
cache: in-process by default, or Redis when several nodes should share it.
Unknown domains are cached too, so garbage beacons do not reach the database.
"""

import json
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

import redis
from sqlalchemy.orm import Session

from .config import settings
from .database import SessionLocal
from .errors import InactiveDomainError, UnknownDomainError
from ..crud.domains import get_domain_by_name
from ..schemas import DomainInfo

logger = logging.getLogger(__name__)

# Returned by caches on a miss; distinct from a cached "domain does not exist" (None)
MISS = object()


class InMemoryDomainCache:
    """Bounded TTL cache local to this process."""

    def __init__(self, ttl_seconds: int, max_entries: int, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, Optional[DomainInfo]]] = {}

    def get(self, name: str):
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                return MISS
            expires_at, info = entry
            if expires_at <= self._clock():
                del self._entries[name]
                return MISS
            return info

    def set(self, name: str, info: Optional[DomainInfo]) -> None:
        with self._lock:
            self._entries.pop(name, None)
            while len(self._entries) >= self.max_entries:
                # Oldest insertion goes first
                del self._entries[next(iter(self._entries))]
            self._entries[name] = (self._clock() + self.ttl_seconds, info)


class RedisDomainCache:
    """TTL cache shared between nodes, stored as JSON strings."""

    def __init__(self, client: redis.Redis, ttl_seconds: int, prefix: str = "trackwise:domain:"):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def get(self, name: str):
        raw = self.client.get(self._key(name))
        if raw is None:
            return MISS
        try:
            data = json.loads(raw)
            return DomainInfo(**data) if data is not None else None
        except (ValueError, TypeError) as e:
            logger.warning(f"Discarding unreadable cache entry for {name!r}: {e}")
            return MISS

    def set(self, name: str, info: Optional[DomainInfo]) -> None:
        value = json.dumps(info.model_dump(mode="json") if info is not None else None)
        self.client.setex(self._key(name), self.ttl_seconds, value)


def build_domain_cache():
    """Pick the cache backend from settings."""
    if settings.REDIS_URL:
        logger.info("Using Redis for the domain cache")
        return RedisDomainCache(redis.Redis.from_url(settings.REDIS_URL), settings.DOMAIN_CACHE_TTL_SECONDS)
    return InMemoryDomainCache(settings.DOMAIN_CACHE_TTL_SECONDS, settings.DOMAIN_CACHE_MAX_ENTRIES)


class DomainRegistry:
    """Resolves domain names to `(id, name, is_active)` records."""

    def __init__(self, session_factory: Callable[[], Session], cache=None):
        self._session_factory = session_factory
        self.cache = cache if cache is not None else build_domain_cache()

    def lookup(self, name: str) -> Optional[DomainInfo]:
        """Return the domain record, or None if the registry does not know it."""
        try:
            cached = self.cache.get(name)
        except redis.RedisError as e:
            logger.warning(f"Domain cache read failed for {name!r}: {e}")
            cached = MISS
        if cached is not MISS:
            return cached

        db = self._session_factory()
        try:
            row = get_domain_by_name(db, name)
            info = DomainInfo(id=row.id, domain=row.domain, is_active=bool(row.is_active)) if row else None
        finally:
            db.close()

        try:
            self.cache.set(name, info)
        except redis.RedisError as e:
            logger.warning(f"Domain cache write failed for {name!r}: {e}")
        return info

    def resolve(self, name: str) -> DomainInfo:
        """Return an active domain or raise UnknownDomainError / InactiveDomainError."""
        info = self.lookup(name)
        if info is None:
            raise UnknownDomainError(name)
        if not info.is_active:
            raise InactiveDomainError(name)
        return info


# Global registry instance
domain_registry = DomainRegistry(SessionLocal)
