from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timedelta

from opentelemetry import trace

from repost_guard.schemas.records import UrlRecord
from repost_guard.services.history_store import HistoryStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def retention_expired(record: UrlRecord, now: datetime, retention_window: timedelta) -> bool:
    return now - record.posted_at > retention_window


def select_expired(records: Iterable[UrlRecord], now: datetime, retention_window: timedelta) -> list[str]:
    return [record.canonical_url for record in records if retention_expired(record, now, retention_window)]


async def sweep_expired(store: HistoryStore, now: datetime, retention_window: timedelta) -> list[str]:
    with tracer.start_as_current_span("repost.sweep") as span:
        candidates = select_expired(await store.snapshot(), now, retention_window)
        removed: list[str] = []
        for url in candidates:
            async with store.key_lock(url):
                # The key may have been replaced by a fresh post since the snapshot.
                current = await store.lookup(url)
                if current is None or not retention_expired(current, now, retention_window):
                    continue
                await store.remove(url)
                removed.append(url)
        span.set_attribute("sweep.removed", len(removed))
        if removed:
            logger.info("retention sweep removed %s url records", len(removed))
        return removed


async def run_retention_sweeper(
    sweep: Callable[[], Awaitable[list[str]]],
    *,
    interval_seconds: float,
    max_backoff_seconds: float,
    stop_event: asyncio.Event,
) -> None:
    backoff = interval_seconds
    while not stop_event.is_set():
        try:
            await sweep()
            backoff = interval_seconds
            sleep_for = interval_seconds
        except Exception as exc:
            jitter = random.uniform(0.0, 0.5)
            sleep_for = min(backoff * (2.0 + jitter), max_backoff_seconds)
            logger.exception("retention sweep failed: %s; retry in %.1fs", exc, sleep_for)
            backoff = sleep_for

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=sleep_for)
        except asyncio.TimeoutError:
            continue
