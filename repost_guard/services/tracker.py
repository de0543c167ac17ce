from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from opentelemetry import trace

from repost_guard.core.config import Settings
from repost_guard.core.errors import OracleUnavailable, RepostGuardError
from repost_guard.core.urls import extract_urls
from repost_guard.jobs.retention_sweeper import retention_expired, sweep_expired
from repost_guard.schemas.messages import HistoricalMessage
from repost_guard.schemas.records import HistoryStats, MessageRef, UrlRecord
from repost_guard.services.consistency import ConsistencyChecker
from repost_guard.services.history_store import (
    HistoryStore,
    JsonFileHistoryStore,
    count_by_location,
    records_for_location,
)
from repost_guard.services.oracle import HttpMessageOracle, MessageExistenceOracle
from repost_guard.services.policy import IncomingPost, Outcome, PolicyEngine, Thresholds, utcnow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ORACLE_FAILURE_MODES = {"fail", "assume_live"}


class RepostTracker:
    """Entry point for the chat layer: ingest messages, sweep, and report stats.

    ``init()`` must complete before ``ingest``; until then every URL yields a failed
    outcome carrying ``NotInitialized``.
    """

    def __init__(
        self,
        store: HistoryStore,
        oracle: MessageExistenceOracle,
        engine: PolicyEngine,
        *,
        oracle_timeout_seconds: float = 5.0,
        oracle_failure_mode: str = "fail",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if oracle_failure_mode not in ORACLE_FAILURE_MODES:
            raise ValueError(f"unknown oracle failure mode: {oracle_failure_mode}")
        self.store = store
        self.engine = engine
        self.clock = clock
        self.oracle_failure_mode = oracle_failure_mode
        self.checker = ConsistencyChecker(
            store,
            oracle,
            engine.thresholds,
            oracle_timeout_seconds=oracle_timeout_seconds,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: HistoryStore | None = None,
        oracle: MessageExistenceOracle | None = None,
    ) -> RepostTracker:
        thresholds = Thresholds(
            repost_threshold=settings.repost_threshold,
            retention_window=settings.retention_window,
        )
        if store is None:
            store = JsonFileHistoryStore(settings.history_file, io_timeout_seconds=settings.store_io_timeout_seconds)
        if oracle is None:
            oracle = HttpMessageOracle(
                settings.platform_api_base_url,
                token=settings.platform_api_token,
                timeout_seconds=settings.oracle_timeout_seconds,
            )
        return cls(
            store,
            oracle,
            PolicyEngine(thresholds),
            oracle_timeout_seconds=settings.oracle_timeout_seconds,
            oracle_failure_mode=settings.oracle_failure_mode,
        )

    @property
    def thresholds(self) -> Thresholds:
        return self.engine.thresholds

    async def init(self) -> None:
        await self.store.init()

    async def close(self) -> None:
        await self.store.close()

    async def ingest(
        self,
        text: str,
        poster_id: str,
        location_id: str,
        parent_location_id: str | None,
        message_ref: MessageRef,
    ) -> list[Outcome]:
        urls = extract_urls(text)
        if not urls:
            return []

        now = self.clock()
        outcomes: list[Outcome] = []
        with tracer.start_as_current_span("repost.ingest") as span:
            span.set_attribute("ingest.url_count", len(urls))
            span.set_attribute("ingest.location_id", location_id)
            for url in urls:
                incoming = IncomingPost(
                    canonical_url=url,
                    poster_id=poster_id,
                    location_id=location_id,
                    parent_location_id=parent_location_id,
                    message_ref=message_ref,
                    posted_at=now,
                )
                outcomes.append(await self._evaluate(incoming, now))
        return outcomes

    async def _evaluate(self, incoming: IncomingPost, now: datetime) -> Outcome:
        url = incoming.canonical_url
        with tracer.start_as_current_span("repost.evaluate_url") as span:
            span.set_attribute("url.canonical", url)
            try:
                async with self.store.key_lock(url):
                    outcome = await self._evaluate_locked(incoming, now)
            except RepostGuardError as exc:
                logger.warning("url evaluation failed url=%s error=%s: %s", url, type(exc).__name__, exc)
                outcome = self.engine.failed(incoming, exc)
            span.set_attribute("outcome.kind", outcome.kind.value)
            return outcome

    async def _evaluate_locked(self, incoming: IncomingPost, now: datetime) -> Outcome:
        url = incoming.canonical_url
        degraded = False
        try:
            existing = await self.checker.resolve(url, now)
        except OracleUnavailable as exc:
            if self.oracle_failure_mode != "assume_live":
                raise
            logger.warning("existence check unavailable, assuming record is live url=%s: %s", url, exc)
            existing = await self.store.lookup(url)
            degraded = True

        outcome = self.engine.decide(incoming, existing, now)
        outcome.degraded = degraded
        if outcome.kind.mutates:
            await self.store.upsert(incoming.to_record())
        logger.info(
            "url evaluated url=%s outcome=%s poster_id=%s location_id=%s",
            url,
            outcome.kind.value,
            incoming.poster_id,
            incoming.location_id,
        )
        return outcome

    async def backfill(self, messages: Iterable[HistoricalMessage]) -> int:
        """Seed history from already-posted messages; the earliest sighting of a URL wins."""
        now = self.clock()
        retention_window = self.thresholds.retention_window
        written = 0
        for message in sorted(messages, key=lambda item: item.posted_at):
            for url in extract_urls(message.text):
                record = UrlRecord(
                    canonical_url=url,
                    poster_id=message.poster_id,
                    location_id=message.location_id,
                    parent_location_id=message.parent_location_id,
                    message_ref=message.message_ref,
                    posted_at=message.posted_at,
                )
                if retention_expired(record, now, retention_window):
                    continue
                async with self.store.key_lock(url):
                    existing = await self.store.lookup(url)
                    if existing is not None and existing.posted_at <= record.posted_at:
                        continue
                    await self.store.upsert(record)
                    written += 1
        logger.info("backfill wrote %s url records", written)
        return written

    async def sweep(self, now: datetime | None = None) -> list[str]:
        return await sweep_expired(self.store, now or self.clock(), self.thresholds.retention_window)

    async def stats(self) -> HistoryStats:
        records = await self.store.snapshot()
        return HistoryStats(record_count=len(records), per_location_counts=count_by_location(records))

    async def location_history(self, location_id: str) -> list[UrlRecord]:
        return records_for_location(await self.store.snapshot(), location_id)
