import uuid

import fakeredis
import pytest

from conftest import add_domain
from trackwise.core.domain_registry import DomainRegistry, InMemoryDomainCache, MISS, RedisDomainCache
from trackwise.core.errors import InactiveDomainError, UnknownDomainError
from trackwise.schemas import DomainInfo


class CountingFactory:
    """Session factory wrapper that counts how often the database is opened."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.session_factory()


class Ticker:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_resolve_returns_active_domain(registry, domains):
    info = registry.resolve("example.com")
    assert info.id == domains["example.com"].id
    assert info.is_active is True


def test_unknown_and_inactive_domains_raise(registry, domains):
    with pytest.raises(UnknownDomainError):
        registry.resolve("nowhere.net")
    with pytest.raises(InactiveDomainError):
        registry.resolve("paused.io")


def test_lookups_are_cached_including_misses(session_factory, domains):
    factory = CountingFactory(session_factory)
    registry = DomainRegistry(factory, cache=InMemoryDomainCache(ttl_seconds=300, max_entries=10))

    registry.lookup("example.com")
    registry.lookup("example.com")
    assert registry.lookup("nowhere.net") is None
    assert registry.lookup("nowhere.net") is None

    assert factory.calls == 2


def test_cache_entries_expire(session_factory, db, domains):
    ticker = Ticker()
    factory = CountingFactory(session_factory)
    registry = DomainRegistry(factory, cache=InMemoryDomainCache(ttl_seconds=300, max_entries=10, clock=ticker))

    assert registry.lookup("late.example") is None
    add_domain(db, "late.example")
    assert registry.lookup("late.example") is None

    ticker.now += 301
    assert registry.lookup("late.example").domain == "late.example"
    assert factory.calls == 2


def test_in_memory_cache_evicts_oldest_entry():
    cache = InMemoryDomainCache(ttl_seconds=60, max_entries=2)
    cache.set("a.com", None)
    cache.set("b.com", None)
    cache.set("c.com", None)

    assert cache.get("a.com") is MISS
    assert cache.get("b.com") is None
    assert cache.get("c.com") is None


def test_redis_cache_round_trips_domain_info():
    client = fakeredis.FakeRedis()
    cache = RedisDomainCache(client, ttl_seconds=300)
    info = DomainInfo(id=uuid.uuid4(), domain="example.com", is_active=True)

    cache.set("example.com", info)
    cache.set("nowhere.net", None)

    assert cache.get("example.com") == info
    assert cache.get("nowhere.net") is None
    assert cache.get("unseen.org") is MISS
    assert 0 < client.ttl("trackwise:domain:example.com") <= 300


def test_registry_falls_back_to_database_when_redis_fails(session_factory, domains):
    server = fakeredis.FakeServer()
    server.connected = False
    cache = RedisDomainCache(fakeredis.FakeRedis(server=server), ttl_seconds=300)
    registry = DomainRegistry(session_factory, cache=cache)
    assert registry.resolve("example.com").domain == "example.com"


def test_unreadable_redis_entry_is_treated_as_a_miss(session_factory, domains):
    client = fakeredis.FakeRedis()
    client.set("trackwise:domain:example.com", b"{not json")
    client.set("trackwise:domain:shop.example.com", b"[1, 2]")
    registry = DomainRegistry(session_factory, cache=RedisDomainCache(client, ttl_seconds=300))

    assert registry.resolve("example.com").id == domains["example.com"].id
    assert registry.resolve("shop.example.com").id == domains["shop.example.com"].id
    # The database answer replaces the broken entry
    assert registry.cache.get("example.com").domain == "example.com"
