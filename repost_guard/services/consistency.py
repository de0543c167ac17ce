from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from repost_guard.core.errors import OracleUnavailable
from repost_guard.schemas.records import UrlRecord
from repost_guard.services.history_store import HistoryStore
from repost_guard.services.oracle import MessageExistence, MessageExistenceOracle
from repost_guard.services.policy import Thresholds

logger = logging.getLogger(__name__)


class ConsistencyChecker:
    def __init__(
        self,
        store: HistoryStore,
        oracle: MessageExistenceOracle,
        thresholds: Thresholds,
        *,
        oracle_timeout_seconds: float = 5.0,
    ) -> None:
        self.store = store
        self.oracle = oracle
        self.thresholds = thresholds
        self.oracle_timeout_seconds = oracle_timeout_seconds

    async def resolve(self, url: str, now: datetime) -> UrlRecord | None:
        """Return the stored record for ``url`` only if it is still active.

        Records past the retention window or whose message is gone are removed.
        Must run inside ``store.key_lock(url)``.

        Raises:
            OracleUnavailable: the existence check failed or timed out; the record is kept.
        """
        record = await self.store.lookup(url)
        if record is None:
            return None

        if now - record.posted_at > self.thresholds.retention_window:
            await self.store.remove(url)
            logger.info("dropped url record past retention window url=%s", url)
            return None

        try:
            existence = await asyncio.wait_for(
                self.oracle.fetch_message(record.message_ref),
                timeout=self.oracle_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise OracleUnavailable(
                f"message lookup for {record.message_ref.message_id} timed out after {self.oracle_timeout_seconds:.1f}s"
            ) from exc

        if existence is MessageExistence.ABSENT:
            await self.store.remove(url)
            logger.info(
                "deleted url record as original message no longer exists url=%s message_id=%s",
                url,
                record.message_ref.message_id,
            )
            return None
        return record
