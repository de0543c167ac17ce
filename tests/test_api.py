from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from repost_guard import main
from repost_guard.api.deps import get_dispatcher, get_tracker
from repost_guard.core.config import Settings, get_settings
from repost_guard.core.errors import CorruptPersistedState
from repost_guard.main import app
from repost_guard.services.dispatch import Dispatcher, LoggingNotifier
from repost_guard.services.history_store import JsonFileHistoryStore
from repost_guard.services.oracle import HttpMessageOracle
from repost_guard.services.tracker import RepostTracker

API_HEADERS = {"X-API-Key": "bot-key"}


def _message(poster_id: str, message_id: str, text: str = "see https://example.com/post") -> dict:
    return {
        "text": text,
        "poster_id": poster_id,
        "location_id": "chan-1",
        "message_ref": {"location_id": "chan-1", "message_id": message_id, "guild_id": "g-1"},
    }


@pytest.fixture
def api_client(tmp_path: Path) -> TestClient:
    settings = Settings(repost_threshold_seconds=86400, api_key="bot-key", history_file=str(tmp_path / "h.json"))

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=200, request=request)

    oracle_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    tracker = RepostTracker.from_settings(
        settings,
        store=JsonFileHistoryStore(settings.history_file),
        oracle=HttpMessageOracle(settings.platform_api_base_url, client=oracle_client),
    )
    asyncio.run(tracker.init())
    dispatcher = Dispatcher(LoggingNotifier(), message_link_template=settings.message_link_template)

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_tracker] = lambda: tracker
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_ingest_reports_new_then_blocked(api_client: TestClient) -> None:
    first = api_client.post("/messages", json=_message("user-a", "m-1"), headers=API_HEADERS)
    assert first.status_code == 200
    assert first.json()["outcomes"][0]["kind"] == "new"
    assert first.json()["dispatch"] == []

    second = api_client.post("/messages", json=_message("user-b", "m-2"), headers=API_HEADERS)
    assert second.status_code == 200
    body = second.json()
    assert body["outcomes"][0]["kind"] == "blocked_other_user"
    assert body["outcomes"][0]["existing"]["poster_id"] == "user-a"
    assert body["outcomes"][0]["threshold_seconds"] == 86400
    assert body["dispatch"] == [
        {"canonical_url": "https://example.com/post", "reason": "blocked_other_user", "delivered": True}
    ]


def test_ingest_requires_api_key(api_client: TestClient) -> None:
    response = api_client.post("/messages", json=_message("user-a", "m-1"))
    assert response.status_code == 401


def test_admin_stats_sweep_and_history(api_client: TestClient) -> None:
    api_client.post(
        "/messages",
        json=_message("user-a", "m-1", text="https://example.com/1 https://example.com/2"),
        headers=API_HEADERS,
    )

    stats = api_client.get("/admin/stats", headers=API_HEADERS)
    assert stats.status_code == 200
    assert stats.json() == {"record_count": 2, "per_location_counts": {"chan-1": 2}}

    sweep = api_client.post("/admin/sweep", headers=API_HEADERS)
    assert sweep.status_code == 200
    assert sweep.json() == {"removed": []}

    history = api_client.get("/admin/locations/chan-1/history", headers=API_HEADERS)
    assert history.status_code == 200
    assert {record["canonical_url"] for record in history.json()["records"]} == {
        "https://example.com/1",
        "https://example.com/2",
    }


def test_backfill_endpoint_seeds_history(api_client: TestClient) -> None:
    message = _message("user-a", "m-0", text="old link https://example.com/old")
    message["posted_at"] = "2000-01-01T00:00:00Z"
    recent = _message("user-b", "m-1", text="https://example.com/recent")
    recent["posted_at"] = "2999-01-01T00:00:00Z"

    response = api_client.post("/messages/backfill", json={"messages": [message, recent]}, headers=API_HEADERS)
    assert response.status_code == 200
    assert response.json() == {"written": 1}


def test_stats_unavailable_before_tracker_starts() -> None:
    app.dependency_overrides[get_settings] = lambda: Settings(repost_threshold_seconds=60)
    try:
        response = TestClient(app).get("/admin/stats")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 503
    assert response.json() == {"detail": "tracker is not running"}


def test_failed_startup_still_shuts_down_telemetry(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    history = tmp_path / "h.json"
    history.write_text("{not json", encoding="utf-8")
    settings = Settings(repost_threshold_seconds=60, history_file=str(history), otel_enabled=False)
    shutdowns: list[object] = []

    monkeypatch.setattr(main, "get_settings", lambda: settings)
    monkeypatch.setattr(main, "shutdown_telemetry", lambda target, runtime: shutdowns.append(runtime))

    with pytest.raises(CorruptPersistedState):
        with TestClient(app):
            pass

    assert len(shutdowns) == 1
    assert app.state.tracker is None
