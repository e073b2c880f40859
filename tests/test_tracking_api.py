import json

from conftest import ms
from trackwise.api.tracking import PIXEL_GIF, get_ingestion_gateway
from trackwise.core.errors import StorageFailure
from trackwise.core.ingestion_service import IngestionGateway
from trackwise.main import app
from trackwise.models import TrackingEvent, TrackingSession


def assert_pixel(response):
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/gif"
    assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
    assert response.headers["pragma"] == "no-cache"
    assert response.headers["expires"] == "0"
    assert response.content == PIXEL_GIF


def sessions_for(session_factory, key):
    db = session_factory()
    try:
        return db.query(TrackingSession).filter(TrackingSession.session_id == key).all()
    finally:
        db.close()


def test_beacon_stores_event_after_answering(client, dispatcher, session_factory, clock, domains):
    response = client.get(
        "/beacon",
        params={
            "sessionId": "b1",
            "domain": "example.com",
            "eventType": "page_view",
            "page": "/",
            "timestamp": ms(clock.now),
            "data_title": "Home",
        },
        headers={"User-Agent": "pytest-browser"},
    )

    assert_pixel(response)
    assert dispatcher.drain(timeout=5)
    [session] = sessions_for(session_factory, "b1")
    assert session.user_agent == "pytest-browser"
    db = session_factory()
    try:
        stored = db.query(TrackingEvent).filter(TrackingEvent.session_pk == session.id).one()
    finally:
        db.close()
    assert stored.data == {"title": "Home"}


def test_beacon_always_returns_pixel(client, dispatcher, session_factory, domains):
    assert_pixel(client.get("/beacon"))
    assert_pixel(client.get("/beacon", params={"sessionId": "b2", "eventType": "page_view"}))
    assert_pixel(client.get("/beacon", params={
        "sessionId": "b3", "domain": "nowhere.net", "eventType": "page_view", "page": "/",
    }))
    assert_pixel(client.get("/beacon", params={
        "sessionId": "b4", "domain": "paused.io", "eventType": "page_view", "page": "/",
    }))
    assert_pixel(client.get("/beacon", params={
        "sessionId": "b5", "domain": "example.com", "eventType": "page_view", "page": "/", "timestamp": "later",
    }))

    assert dispatcher.drain(timeout=5)
    for key in ("b2", "b3", "b4", "b5"):
        assert sessions_for(session_factory, key) == []


def test_beacon_survives_a_broken_gateway(client):
    class ExplodingGateway(IngestionGateway):
        def accept_beacon(self, params, headers=None):
            raise RuntimeError("boom")

    app.dependency_overrides[get_ingestion_gateway] = lambda: ExplodingGateway(None, None)
    assert_pixel(client.get("/beacon", params={"sessionId": "x"}))


def test_simultaneous_beacons_share_one_session(client, dispatcher, session_factory, clock, domains):
    params = {"sessionId": "s2", "domain": "example.com", "eventType": "page_view", "page": "/", "timestamp": ms(clock.now)}
    assert_pixel(client.get("/beacon", params=params))
    assert_pixel(client.get("/tracking/pixel", params=params))

    assert dispatcher.drain(timeout=5)
    [session] = sessions_for(session_factory, "s2")
    assert session.page_count == 2


def test_direct_event_is_stored_synchronously(client, session_factory, clock, domains):
    response = client.post("/events", json={
        "sessionId": "d1",
        "domain": "example.com",
        "eventType": "page_view",
        "page": "/",
        "timestamp": ms(clock.now),
        "title": "Home",
    })

    assert response.status_code == 200
    assert response.text == "OK"
    [session] = sessions_for(session_factory, "d1")
    assert session.page_count == 1


def test_direct_alias_path(client, session_factory, clock, domains):
    response = client.post("/tracking/data", json={
        "sessionId": "d2", "domain": "example.com", "eventType": "interaction", "page": "/",
    })
    assert response.status_code == 200
    assert len(sessions_for(session_factory, "d2")) == 1


def test_direct_validation_errors(client, domains):
    bad_json = client.post("/events", content="{not json", headers={"Content-Type": "application/json"})
    assert bad_json.status_code == 400
    assert "error" in bad_json.json()

    missing = client.post("/events", json={"sessionId": "d3", "domain": "example.com"})
    assert missing.status_code == 400
    assert missing.json() == {"error": "Missing required fields"}

    not_object = client.post("/events", content=json.dumps([1, 2]))
    assert not_object.status_code == 400

    superscript = client.post("/events", json={
        "sessionId": "d3", "domain": "example.com", "eventType": "page_view", "page": "/", "timestamp": "²",
    })
    assert superscript.status_code == 400
    assert superscript.json() == {"error": "Invalid timestamp"}


def test_direct_domain_errors(client, domains):
    event = {"sessionId": "d4", "eventType": "page_view", "page": "/"}

    unknown = client.post("/events", json={**event, "domain": "nowhere.net"})
    assert unknown.status_code == 404
    assert unknown.json() == {"error": "Domain not found"}

    inactive = client.post("/events", json={**event, "domain": "paused.io"})
    assert inactive.status_code == 403
    assert inactive.json() == {"error": "Domain is not active"}


def test_direct_storage_failure(client, dispatcher, clock):
    def failing(event):
        raise StorageFailure("Failed to store event")

    app.dependency_overrides[get_ingestion_gateway] = lambda: IngestionGateway(failing, dispatcher, clock=clock)
    response = client.post("/events", json={
        "sessionId": "d5", "domain": "example.com", "eventType": "page_view", "page": "/",
    })
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to store event"}


def test_tracking_cors_allows_any_origin(client, domains):
    preflight = client.options("/events", headers={
        "Origin": "https://customer.example",
        "Access-Control-Request-Method": "POST",
    })
    assert preflight.status_code == 200
    assert preflight.headers["access-control-allow-origin"] == "https://customer.example"
    assert preflight.headers["access-control-allow-methods"] == "GET, POST, OPTIONS"
    assert preflight.headers["access-control-max-age"] == "86400"

    plain_options = client.options("/events")
    assert plain_options.status_code == 200
    assert plain_options.headers["access-control-allow-origin"] == "*"

    post = client.post(
        "/events",
        json={"sessionId": "c1", "domain": "example.com", "eventType": "page_view", "page": "/"},
        headers={"Origin": "https://customer.example"},
    )
    assert post.headers["access-control-allow-origin"] == "https://customer.example"


def test_dashboard_endpoints_reject_unknown_origins(client):
    response = client.get("/analytics", headers={"Origin": "https://evil.example"})
    assert response.status_code == 400


def test_diagnose_echoes_request(client):
    response = client.post("/system/diagnose", content="{\"ping\": 1}", headers={"Origin": "https://customer.example"})
    body = response.json()
    assert response.status_code == 200
    assert body["parsedBody"] == {"ping": 1}
    assert body["origin"] == "https://customer.example"
    assert response.headers["access-control-allow-origin"] == "https://customer.example"

    raw = client.get("/system/diagnose").json()
    assert raw["status"] == "OK"
    assert raw["method"] == "GET"


def test_health(client):
    response = client.get("/system/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_system_info_reports_database_and_dispatcher(client):
    body = client.get("/system/info").json()
    assert body["database"] == "connected"
    assert body["domain_cache"] == "memory"
    assert set(body["beacon_dispatcher"]) == {"running", "pending", "dropped"}
