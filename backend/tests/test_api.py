"""API route tests. Lifespan is disabled; the session runs on a fake hub transport and a manual clock."""
from __future__ import annotations

import asyncio
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from api.dependencies import init_dependencies, reset_dependencies
from conftest import FakeTimers, TransportFactory
from ingest.feed.session import LiveFeedSession
from ingest.matching.prediction_matcher import PredictionMatcher
from ingest.normalization.normalizer import parse_prediction_payload
from shared.models.enums import HubEvent
from shared.prediction_store import PredictionStore


@pytest.fixture
def store() -> PredictionStore:
    return PredictionStore()


@pytest.fixture
def session(store, factory, fake_timers, settings) -> LiveFeedSession:
    session = LiveFeedSession(store, transport_factory=factory, timers=fake_timers, settings=settings)
    asyncio.run(session.start())
    return session


@pytest.fixture
def client(session: LiveFeedSession, store: PredictionStore, settings) -> Iterator[TestClient]:
    """Test client with lifespan disabled so no hub connection is attempted."""
    init_dependencies(session, PredictionMatcher(store, settings=settings))
    app = create_app(use_lifespan=False)
    with TestClient(app) as c:
        yield c
    reset_dependencies()


@pytest.fixture
def publish(factory: TransportFactory, fake_timers: FakeTimers):
    def send(records: list, event: HubEvent = HubEvent.ALL_LIVE_MATCHES) -> None:
        factory.last.on_event(event.value, [records])
        fake_timers.advance(0.1)
    return send


# ── System ──────────────────────────────────────────────────────────────

def test_health_returns_ok(client: TestClient) -> None:
    """GET /health returns 200 and status ok."""
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data.get("status") == "ok"
    assert data.get("service") == "api"


def test_health_returns_json(client: TestClient) -> None:
    """GET /health returns application/json."""
    r = client.get("/health")
    assert r.headers.get("content-type", "").startswith("application/json")


def test_request_id_echoed(client: TestClient) -> None:
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"


def test_not_ready_before_session_is_wired() -> None:
    reset_dependencies()
    with TestClient(create_app(use_lifespan=False)) as c:
        r = c.get("/v1/live/matches")
        assert r.status_code == 503
        assert r.json()["error"] == "feed_unavailable"
        assert c.get("/v1/status").status_code == 503


def test_status_reports_feed_and_predictions(client: TestClient, store: PredictionStore, make_prediction_record) -> None:
    r = client.get("/v1/status")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ok"
    assert data["feed"] == {"state": "connected", "connected": True, "paused": False}
    assert data["predictions"]["loaded"] is False

    store.set(parse_prediction_payload([make_prediction_record("p1")]), source="http")
    data = client.get("/v1/status").json()
    assert data["predictions"]["loaded"] is True
    assert data["predictions"]["records"] == 1
    assert data["predictions"]["source"] == "http"


# ── Live matches ────────────────────────────────────────────────────────

def test_list_empty_before_first_tick(client: TestClient) -> None:
    data = client.get("/v1/live/matches").json()
    assert data["feed"] == "all"
    assert data["count"] == 0
    assert data["matches"] == []


def test_list_after_tick_uses_camel_case(client: TestClient, publish, make_live_record) -> None:
    publish([make_live_record("m1", played_time="45:30", status="2H")])

    data = client.get("/v1/live/matches").json()
    assert data["count"] == 1
    match = data["matches"][0]
    assert match["id"] == "m1"
    assert match["playedSeconds"] == 2730
    assert match["status"] == "2H"
    assert match["homeTeam"]["name"] == "Arsenal"
    assert match["markets"][0]["outcomes"][0]["isChanged"] is False


def test_list_by_feed(client: TestClient, publish, make_live_record) -> None:
    publish([make_live_record("a1")], HubEvent.ARBITRAGE_LIVE_MATCHES)

    assert client.get("/v1/live/matches", params={"feed": "arbitrage"}).json()["count"] == 1
    assert client.get("/v1/live/matches").json()["count"] == 0


def test_list_rejects_unknown_feed(client: TestClient) -> None:
    assert client.get("/v1/live/matches", params={"feed": "bogus"}).status_code == 422


def test_get_match(client: TestClient, publish, make_live_record) -> None:
    publish([make_live_record("m1"), make_live_record("m2", home="Lens", away="Nice")])

    r = client.get("/v1/live/matches/m2")
    assert r.status_code == 200
    assert r.json()["awayTeam"]["name"] == "Nice"


def test_get_unknown_match_404(client: TestClient) -> None:
    r = client.get("/v1/live/matches/nope")
    assert r.status_code == 404
    body = r.json()
    assert body["error"] == "not_found"
    assert "nope" in body["message"]


# ── Prediction lookup ───────────────────────────────────────────────────

def test_prediction_hit(client: TestClient, store: PredictionStore, publish, make_live_record, make_prediction_record) -> None:
    store.set(parse_prediction_payload([make_prediction_record("p1", home="Arsenal FC", away="Chelsea")]), source="http")
    publish([make_live_record("m1")])

    data = client.get("/v1/live/matches/m1/prediction").json()
    assert data["match_id"] == "m1"
    assert data["strategy"] == "exact"
    assert data["predictions_loaded"] is True
    assert data["prediction"]["id"] == "p1"
    assert data["prediction"]["confidenceScore"] == 72.0


def test_prediction_miss_is_not_an_error(client: TestClient, publish, make_live_record) -> None:
    publish([make_live_record("m1")])

    r = client.get("/v1/live/matches/m1/prediction")
    assert r.status_code == 200
    data = r.json()
    assert data["strategy"] == "none"
    assert data["prediction"] is None
    assert data["predictions_loaded"] is False


# ── Feed controls ───────────────────────────────────────────────────────

def test_pause_and_resume(client: TestClient, session: LiveFeedSession, publish, make_live_record) -> None:
    r = client.post("/v1/feed/pause")
    assert r.json() == {"state": "connected", "connected": True, "paused": True}

    publish([make_live_record("m1")])
    assert client.get("/v1/live/matches").json()["count"] == 0

    assert client.post("/v1/feed/resume").json()["paused"] is False
    publish([make_live_record("m1")])
    assert client.get("/v1/live/matches").json()["count"] == 1
    assert session.paused is False
