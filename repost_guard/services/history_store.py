from __future__ import annotations

import asyncio
import logging
import os
from collections import Counter
from collections.abc import Iterable
from contextlib import AbstractAsyncContextManager, suppress
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from repost_guard.core.errors import CorruptPersistedState, NotInitialized, StorePersistenceError
from repost_guard.schemas.records import HistorySnapshot, UrlRecord
from repost_guard.services.key_locks import KeyedLocks

logger = logging.getLogger(__name__)


class HistoryStore(Protocol):
    async def init(self) -> None: ...

    async def close(self) -> None: ...

    async def lookup(self, url: str) -> UrlRecord | None: ...

    async def upsert(self, record: UrlRecord) -> None: ...

    async def remove(self, url: str) -> bool: ...

    async def snapshot(self) -> list[UrlRecord]: ...

    def key_lock(self, url: str) -> AbstractAsyncContextManager[None]: ...


class JsonFileHistoryStore:
    """History registry kept in memory and flushed as a full JSON snapshot on every mutation.

    Callers that need verify-decide-mutate atomicity hold ``key_lock(url)`` for the whole
    sequence. Mutations are applied and flushed one at a time under a store-wide write lock,
    so a snapshot never carries another key's uncommitted change.
    """

    def __init__(self, path: str | Path, *, io_timeout_seconds: float = 5.0) -> None:
        self.path = Path(path)
        self.io_timeout_seconds = io_timeout_seconds
        self._records: dict[str, UrlRecord] = {}
        self._initialized = False
        self._locks = KeyedLocks()
        self._write_lock = asyncio.Lock()
        self._pending_write: asyncio.Future[None] | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def init(self) -> None:
        if self._initialized:
            return
        try:
            raw = await asyncio.wait_for(asyncio.to_thread(self.path.read_bytes), timeout=self.io_timeout_seconds)
        except FileNotFoundError:
            logger.info("no history snapshot at %s; starting with an empty store", self.path)
            self._records = {}
        except asyncio.TimeoutError as exc:
            raise StorePersistenceError(f"reading {self.path} timed out") from exc
        else:
            self._records = parse_snapshot(raw, source=self.path)
            logger.info("loaded %s url records from %s", len(self._records), self.path)
        self._initialized = True

    async def close(self) -> None:
        if not self._initialized:
            return
        async with self._write_lock:
            await self._drain_pending_write()
        self._initialized = False
        self._records = {}

    def key_lock(self, url: str) -> AbstractAsyncContextManager[None]:
        return self._locks.hold(url)

    async def lookup(self, url: str) -> UrlRecord | None:
        self._require_initialized()
        return self._records.get(url)

    async def upsert(self, record: UrlRecord) -> None:
        self._require_initialized()
        await self._commit(record.canonical_url, record)

    async def remove(self, url: str) -> bool:
        self._require_initialized()
        if url not in self._records:
            return False
        return await self._commit(url, None)

    async def snapshot(self) -> list[UrlRecord]:
        self._require_initialized()
        return ordered_records(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitialized("history store is not initialized; call init() first")

    async def _commit(self, key: str, record: UrlRecord | None) -> bool:
        # A cancelled caller still waits for the write to commit or roll back,
        # so its key lock is never released over an unsettled record.
        task = asyncio.ensure_future(self._apply(key, record))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            with suppress(StorePersistenceError):
                await task
            raise

    async def _apply(self, key: str, record: UrlRecord | None) -> bool:
        async with self._write_lock:
            previous = self._records.get(key)
            if record is None:
                if previous is None:
                    return False
                del self._records[key]
            else:
                self._records[key] = record

            try:
                await self._flush()
            except StorePersistenceError:
                if previous is None:
                    self._records.pop(key, None)
                else:
                    self._records[key] = previous
                raise
            return previous is not None

    async def _flush(self) -> None:
        """Write the full state; caller holds ``_write_lock``."""
        await self._drain_pending_write()
        payload = HistorySnapshot(records=ordered_records(self._records.values())).model_dump_json(indent=2)
        write = asyncio.ensure_future(asyncio.to_thread(_atomic_write_text, self.path, payload))
        try:
            await asyncio.wait_for(asyncio.shield(write), timeout=self.io_timeout_seconds)
        except asyncio.TimeoutError as exc:
            self._pending_write = write
            raise StorePersistenceError(
                f"writing {self.path} timed out after {self.io_timeout_seconds:.1f}s"
            ) from exc
        except OSError as exc:
            raise StorePersistenceError(f"writing {self.path} failed: {exc}") from exc

    async def _drain_pending_write(self) -> None:
        pending = self._pending_write
        if pending is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(pending), timeout=self.io_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise StorePersistenceError(f"previous write to {self.path} is still pending") from exc
        except OSError as exc:
            # Superseded by the full rewrite that follows.
            logger.warning("previous snapshot write to %s failed: %s", self.path, exc)
        self._pending_write = None


def parse_snapshot(raw: bytes, *, source: Path | str) -> dict[str, UrlRecord]:
    try:
        snapshot = HistorySnapshot.model_validate_json(raw)
    except ValidationError as exc:
        raise CorruptPersistedState(f"history snapshot {source} is not valid: {exc}") from exc

    records: dict[str, UrlRecord] = {}
    for record in snapshot.records:
        if record.canonical_url in records:
            raise CorruptPersistedState(f"history snapshot {source} has duplicate url {record.canonical_url!r}")
        records[record.canonical_url] = record
    return records


def ordered_records(records: Iterable[UrlRecord]) -> list[UrlRecord]:
    return sorted(records, key=lambda record: (record.posted_at, record.canonical_url))


def count_by_location(records: Iterable[UrlRecord]) -> dict[str, int]:
    return dict(Counter(record.location_id for record in records))


def records_for_location(records: Iterable[UrlRecord], location_id: str) -> list[UrlRecord]:
    """Records posted in ``location_id`` or in one of its sub-threads, newest first."""
    matching = [
        record
        for record in records
        if record.location_id == location_id or record.parent_location_id == location_id
    ]
    return sorted(matching, key=lambda record: (record.posted_at, record.canonical_url), reverse=True)


def _atomic_write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, path)
