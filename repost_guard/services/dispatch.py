from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from typing import Any, Protocol

import httpx

from repost_guard.schemas.records import MessageRef
from repost_guard.services.policy import Outcome

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE_LINK_TEMPLATE = "https://discord.com/channels/{guild_id}/{location_id}/{message_id}"


@dataclass(slots=True)
class DispatchAction:
    kind: str
    reason: str
    canonical_url: str
    poster_id: str
    reply_to: dict[str, Any]
    original_poster_id: str
    original_location_id: str
    original_parent_location_id: str | None
    original_posted_at: str
    original_message_link: str
    age_seconds: float
    remaining_seconds: float
    degraded: bool

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


class Notifier(Protocol):
    async def send(self, action: DispatchAction) -> None: ...


class LoggingNotifier:
    async def send(self, action: DispatchAction) -> None:
        logger.info(
            "repost notification reason=%s url=%s poster_id=%s original_poster_id=%s link=%s",
            action.reason,
            action.canonical_url,
            action.poster_id,
            action.original_poster_id,
            action.original_message_link,
        )


class WebhookNotifier:
    def __init__(self, url: str, *, timeout_seconds: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def send(self, action: DispatchAction) -> None:
        payload = action.to_payload()
        if self._client is not None:
            response = await self._client.post(self.url, json=payload, timeout=self.timeout_seconds)
            response.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()


def message_link(message_ref: MessageRef, template: str = DEFAULT_MESSAGE_LINK_TEMPLATE) -> str:
    return template.format(
        guild_id=message_ref.guild_id or "@me",
        location_id=message_ref.location_id,
        message_id=message_ref.message_id,
    )


def build_action(outcome: Outcome, message_link_template: str = DEFAULT_MESSAGE_LINK_TEMPLATE) -> DispatchAction | None:
    """Map a blocked outcome to a reply action; other outcomes need no user-facing action."""
    if not outcome.kind.blocked:
        return None
    existing = outcome.existing
    if existing is None or outcome.age is None or outcome.remaining is None:
        return None

    incoming = outcome.incoming
    return DispatchAction(
        kind="reply",
        reason=outcome.kind.value,
        canonical_url=outcome.canonical_url,
        poster_id=incoming.poster_id,
        reply_to=incoming.message_ref.model_dump(),
        original_poster_id=existing.poster_id,
        original_location_id=existing.location_id,
        original_parent_location_id=existing.parent_location_id,
        original_posted_at=existing.posted_at.isoformat(),
        original_message_link=message_link(existing.message_ref, message_link_template),
        age_seconds=outcome.age.total_seconds(),
        remaining_seconds=outcome.remaining.total_seconds(),
        degraded=outcome.degraded,
    )


class Dispatcher:
    def __init__(self, notifier: Notifier, *, message_link_template: str = DEFAULT_MESSAGE_LINK_TEMPLATE) -> None:
        self.notifier = notifier
        self.message_link_template = message_link_template

    async def dispatch(self, outcomes: Iterable[Outcome]) -> list[dict[str, Any]]:
        report: list[dict[str, Any]] = []
        for outcome in outcomes:
            action = build_action(outcome, self.message_link_template)
            if action is None:
                continue
            entry: dict[str, Any] = {"canonical_url": action.canonical_url, "reason": action.reason, "delivered": True}
            try:
                await self.notifier.send(action)
            except httpx.HTTPError as exc:
                logger.warning("notification delivery failed url=%s reason=%s: %s", action.canonical_url, action.reason, exc)
                entry["delivered"] = False
                entry["error"] = str(exc)
            report.append(entry)
        return report
