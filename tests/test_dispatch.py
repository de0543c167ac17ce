from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from repost_guard.schemas.records import MessageRef, UrlRecord
from repost_guard.services.dispatch import Dispatcher, WebhookNotifier, build_action, message_link
from repost_guard.services.policy import IncomingPost, Outcome, PolicyEngine, Thresholds

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
URL = "https://example.com/post"
ENGINE = PolicyEngine(Thresholds(repost_threshold=timedelta(hours=24), retention_window=timedelta(days=30)))


def _blocked_outcome() -> Outcome:
    existing = UrlRecord(
        canonical_url=URL,
        poster_id="user-a",
        location_id="chan-1",
        message_ref=MessageRef(location_id="chan-1", message_id="m-1", guild_id="g-1"),
        posted_at=T0,
    )
    incoming = IncomingPost(
        canonical_url=URL,
        poster_id="user-b",
        location_id="chan-2",
        parent_location_id=None,
        message_ref=MessageRef(location_id="chan-2", message_id="m-2", guild_id="g-1"),
        posted_at=T0 + timedelta(hours=6),
    )
    return ENGINE.decide(incoming, existing, T0 + timedelta(hours=6))


def test_build_action_for_blocked_outcome() -> None:
    action = build_action(_blocked_outcome())
    assert action is not None
    assert action.kind == "reply"
    assert action.reason == "blocked_other_user"
    assert action.reply_to == {"location_id": "chan-2", "message_id": "m-2", "guild_id": "g-1"}
    assert action.original_poster_id == "user-a"
    assert action.original_message_link == "https://discord.com/channels/g-1/chan-1/m-1"
    assert action.remaining_seconds == 18 * 3600
    assert action.age_seconds == 6 * 3600


def test_build_action_skips_non_blocked_outcomes() -> None:
    outcome = _blocked_outcome()
    new_outcome = ENGINE.decide(outcome.incoming, None, T0)
    failed_outcome = ENGINE.failed(outcome.incoming, RuntimeError("boom"))
    assert build_action(new_outcome) is None
    assert build_action(failed_outcome) is None


def test_message_link_falls_back_for_direct_messages() -> None:
    ref = MessageRef(location_id="dm-1", message_id="m-9")
    assert message_link(ref) == "https://discord.com/channels/@me/dm-1/m-9"


def test_dispatcher_posts_action_to_webhook() -> None:
    captured: list[dict[str, Any]] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        return httpx.Response(status_code=204, request=request)

    async def run() -> list[dict[str, Any]]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = Dispatcher(WebhookNotifier("https://hooks.example/notify", client=client))
            blocked = _blocked_outcome()
            return await dispatcher.dispatch([blocked, ENGINE.decide(blocked.incoming, None, T0)])

    report = asyncio.run(run())
    assert report == [{"canonical_url": URL, "reason": "blocked_other_user", "delivered": True}]
    assert captured[0]["original_poster_id"] == "user-a"
    assert captured[0]["canonical_url"] == URL


def test_dispatcher_reports_delivery_failure_without_raising() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=500, request=request)

    async def run() -> list[dict[str, Any]]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = Dispatcher(WebhookNotifier("https://hooks.example/notify", client=client))
            return await dispatcher.dispatch([_blocked_outcome()])

    report = asyncio.run(run())
    assert report[0]["delivered"] is False
    assert "500" in report[0]["error"]
