import os

# The application engine is built at import time; keep it off the working directory
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta, timezone
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from trackwise.core.beacon_dispatcher import BeaconDispatcher
from trackwise.core.database import build_engine, init_db
from trackwise.core.domain_registry import DomainRegistry, InMemoryDomainCache
from trackwise.core.ingestion_service import IngestionGateway
from trackwise.core.scope import BearerScopeResolver, create_access_token, get_scope_resolver
from trackwise.core.session_correlator import SessionCorrelator
from trackwise.core.aggregation_service import AggregationService
from trackwise.crud.analytics import SqlAnalyticsRepository
from trackwise.models import Domain

T0 = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(tmp_path):
    test_engine = build_engine(f"sqlite:///{tmp_path / 'trackwise-test.db'}")
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def add_domain(db, name: str, owner_id: str = "owner-1", is_active: bool = True) -> Domain:
    domain = Domain(id=uuid.uuid4(), domain=name, owner_id=owner_id, is_active=is_active)
    db.add(domain)
    db.commit()
    return domain


@pytest.fixture
def domains(db):
    """example.com and shop.example.com owned by owner-1, other.org by owner-2, paused.io inactive."""
    return {
        "example.com": add_domain(db, "example.com"),
        "shop.example.com": add_domain(db, "shop.example.com"),
        "other.org": add_domain(db, "other.org", owner_id="owner-2"),
        "paused.io": add_domain(db, "paused.io", is_active=False),
    }


@pytest.fixture
def registry(session_factory):
    return DomainRegistry(session_factory, cache=InMemoryDomainCache(ttl_seconds=300, max_entries=100))


@pytest.fixture
def correlator(session_factory, registry, clock):
    return SessionCorrelator(session_factory, registry, clock=clock)


@pytest.fixture
def dispatcher(correlator):
    beacon_dispatcher = BeaconDispatcher(correlator.ingest, max_workers=4, max_pending=100)
    beacon_dispatcher.start()
    yield beacon_dispatcher
    beacon_dispatcher.stop()


@pytest.fixture
def gateway(correlator, dispatcher, clock):
    return IngestionGateway(correlator.ingest, dispatcher, clock=clock)


@pytest.fixture
def aggregation(session_factory, clock):
    return AggregationService(SqlAnalyticsRepository(session_factory), clock=clock)


@pytest.fixture
def client(gateway, aggregation, session_factory):
    from trackwise.main import app
    from trackwise.api.analytics import get_aggregation_service
    from trackwise.api.tracking import get_ingestion_gateway
    from trackwise.core.database import get_db

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ingestion_gateway] = lambda: gateway
    app.dependency_overrides[get_aggregation_service] = lambda: aggregation
    app.dependency_overrides[get_scope_resolver] = lambda: BearerScopeResolver(session_factory)
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(owner_id: str = "owner-1") -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': owner_id})}"}


def ms(moment: datetime) -> int:
    """Epoch milliseconds, as the browser script sends them."""
    return int(moment.timestamp() * 1000)
