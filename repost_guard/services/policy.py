from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from repost_guard.core.errors import InvalidConfiguration
from repost_guard.schemas.records import MessageRef, UrlRecord


class OutcomeKind(str, Enum):
    NEW = "new"
    EXPIRED_REPOST = "expired_repost"
    BLOCKED_OTHER_USER = "blocked_other_user"
    BLOCKED_SAME_USER_OTHER_LOCATION = "blocked_same_user_other_location"
    BLOCKED_SAME_USER_SAME_LOCATION = "blocked_same_user_same_location"
    FAILED = "failed"

    @property
    def mutates(self) -> bool:
        return self in {OutcomeKind.NEW, OutcomeKind.EXPIRED_REPOST}

    @property
    def blocked(self) -> bool:
        return self.value.startswith("blocked_")


@dataclass(slots=True, frozen=True)
class Thresholds:
    repost_threshold: timedelta
    retention_window: timedelta

    def __post_init__(self) -> None:
        if self.repost_threshold <= timedelta(0):
            raise InvalidConfiguration(f"repost threshold must be positive, got {self.repost_threshold}")
        if self.retention_window <= timedelta(0):
            raise InvalidConfiguration(f"retention window must be positive, got {self.retention_window}")


@dataclass(slots=True, frozen=True)
class IncomingPost:
    canonical_url: str
    poster_id: str
    location_id: str
    parent_location_id: str | None
    message_ref: MessageRef
    posted_at: datetime

    def to_record(self) -> UrlRecord:
        return UrlRecord(
            canonical_url=self.canonical_url,
            poster_id=self.poster_id,
            location_id=self.location_id,
            parent_location_id=self.parent_location_id,
            message_ref=self.message_ref,
            posted_at=self.posted_at,
        )


@dataclass(slots=True)
class Outcome:
    kind: OutcomeKind
    incoming: IncomingPost
    threshold: timedelta
    existing: UrlRecord | None = None
    age: timedelta | None = None
    remaining: timedelta | None = None
    degraded: bool = False
    error_kind: str | None = None
    error: str | None = None

    @property
    def canonical_url(self) -> str:
        return self.incoming.canonical_url


class PolicyEngine:
    """Pure repost decision over a verified-live existing record.

    An age exactly equal to the threshold still counts as within the threshold.
    """

    def __init__(self, thresholds: Thresholds) -> None:
        self.thresholds = thresholds

    def decide(self, incoming: IncomingPost, existing: UrlRecord | None, now: datetime) -> Outcome:
        threshold = self.thresholds.repost_threshold
        if existing is None:
            return Outcome(kind=OutcomeKind.NEW, incoming=incoming, threshold=threshold)

        age = now - existing.posted_at
        if age > threshold:
            return Outcome(
                kind=OutcomeKind.EXPIRED_REPOST,
                incoming=incoming,
                threshold=threshold,
                existing=existing,
                age=age,
            )

        if existing.poster_id != incoming.poster_id:
            kind = OutcomeKind.BLOCKED_OTHER_USER
        elif existing.location_id != incoming.location_id:
            kind = OutcomeKind.BLOCKED_SAME_USER_OTHER_LOCATION
        else:
            kind = OutcomeKind.BLOCKED_SAME_USER_SAME_LOCATION
        return Outcome(
            kind=kind,
            incoming=incoming,
            threshold=threshold,
            existing=existing,
            age=age,
            remaining=threshold - age,
        )

    def failed(self, incoming: IncomingPost, exc: Exception) -> Outcome:
        return Outcome(
            kind=OutcomeKind.FAILED,
            incoming=incoming,
            threshold=self.thresholds.repost_threshold,
            error_kind=type(exc).__name__,
            error=str(exc),
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
