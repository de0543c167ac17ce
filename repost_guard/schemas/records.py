from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

SNAPSHOT_VERSION = 1


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MessageRef(BaseModel):
    location_id: str
    message_id: str
    guild_id: str | None = None


class UrlRecord(BaseModel):
    canonical_url: str
    poster_id: str
    location_id: str
    parent_location_id: str | None = None
    message_ref: MessageRef
    posted_at: datetime

    @field_validator("posted_at")
    @classmethod
    def _posted_at_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class HistorySnapshot(BaseModel):
    version: int = SNAPSHOT_VERSION
    records: list[UrlRecord] = Field(default_factory=list)


class HistoryStats(BaseModel):
    record_count: int
    per_location_counts: dict[str, int] = Field(default_factory=dict)
