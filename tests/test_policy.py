from datetime import datetime, timedelta, timezone

import pytest

from repost_guard.core.errors import InvalidConfiguration
from repost_guard.schemas.records import MessageRef, UrlRecord
from repost_guard.services.policy import IncomingPost, OutcomeKind, PolicyEngine, Thresholds

THRESHOLD = timedelta(hours=24)
T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
URL = "https://example.com/post"


def _engine() -> PolicyEngine:
    return PolicyEngine(Thresholds(repost_threshold=THRESHOLD, retention_window=THRESHOLD * 30))


def _existing(poster_id: str = "user-a", location_id: str = "chan-1") -> UrlRecord:
    return UrlRecord(
        canonical_url=URL,
        poster_id=poster_id,
        location_id=location_id,
        message_ref=MessageRef(location_id=location_id, message_id="m-1"),
        posted_at=T0,
    )


def _incoming(poster_id: str, location_id: str, at: datetime) -> IncomingPost:
    return IncomingPost(
        canonical_url=URL,
        poster_id=poster_id,
        location_id=location_id,
        parent_location_id=None,
        message_ref=MessageRef(location_id=location_id, message_id="m-2"),
        posted_at=at,
    )


def test_decide_returns_new_without_existing_record() -> None:
    outcome = _engine().decide(_incoming("user-a", "chan-1", T0), None, T0)
    assert outcome.kind is OutcomeKind.NEW
    assert outcome.kind.mutates
    assert outcome.existing is None
    assert outcome.remaining is None


def test_decide_blocks_other_user_and_reports_remaining_time() -> None:
    now = T0 + THRESHOLD / 2
    outcome = _engine().decide(_incoming("user-b", "chan-1", now), _existing(), now)
    assert outcome.kind is OutcomeKind.BLOCKED_OTHER_USER
    assert outcome.age == THRESHOLD / 2
    assert outcome.remaining == THRESHOLD - THRESHOLD / 2
    assert outcome.existing == _existing()
    assert not outcome.kind.mutates


def test_decide_blocks_same_user_in_other_location() -> None:
    now = T0 + THRESHOLD / 2
    outcome = _engine().decide(_incoming("user-a", "chan-2", now), _existing(), now)
    assert outcome.kind is OutcomeKind.BLOCKED_SAME_USER_OTHER_LOCATION


def test_decide_blocks_same_user_in_same_location() -> None:
    now = T0 + THRESHOLD / 2
    outcome = _engine().decide(_incoming("user-a", "chan-1", now), _existing(), now)
    assert outcome.kind is OutcomeKind.BLOCKED_SAME_USER_SAME_LOCATION
    assert outcome.kind.blocked


def test_decide_allows_repost_after_threshold() -> None:
    now = T0 + THRESHOLD * 1.5
    outcome = _engine().decide(_incoming("user-b", "chan-1", now), _existing(), now)
    assert outcome.kind is OutcomeKind.EXPIRED_REPOST
    assert outcome.kind.mutates
    assert outcome.remaining is None


def test_decide_treats_age_equal_to_threshold_as_within_threshold() -> None:
    now = T0 + THRESHOLD
    outcome = _engine().decide(_incoming("user-b", "chan-1", now), _existing(), now)
    assert outcome.kind is OutcomeKind.BLOCKED_OTHER_USER
    assert outcome.remaining == timedelta(0)


@pytest.mark.parametrize(
    ("threshold", "retention"),
    [
        (timedelta(0), timedelta(days=1)),
        (timedelta(seconds=-1), timedelta(days=1)),
        (timedelta(hours=1), timedelta(0)),
    ],
)
def test_thresholds_reject_non_positive_durations(threshold: timedelta, retention: timedelta) -> None:
    with pytest.raises(InvalidConfiguration):
        Thresholds(repost_threshold=threshold, retention_window=retention)
