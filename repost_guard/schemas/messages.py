from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from repost_guard.schemas.records import MessageRef, UrlRecord, as_utc


class IngestRequest(BaseModel):
    text: str
    poster_id: str
    location_id: str
    parent_location_id: str | None = None
    message_ref: MessageRef


class HistoricalMessage(IngestRequest):
    posted_at: datetime

    @field_validator("posted_at")
    @classmethod
    def _posted_at_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class BackfillRequest(BaseModel):
    messages: list[HistoricalMessage] = Field(default_factory=list)


class BackfillResponse(BaseModel):
    written: int


class OutcomeOut(BaseModel):
    kind: str
    canonical_url: str
    existing: UrlRecord | None = None
    age_seconds: float | None = None
    threshold_seconds: float
    remaining_seconds: float | None = None
    degraded: bool = False
    error_kind: str | None = None
    error: str | None = None


class IngestResponse(BaseModel):
    outcomes: list[OutcomeOut]
    dispatch: list[dict[str, Any]] = Field(default_factory=list)


class SweepResponse(BaseModel):
    removed: list[str]


class LocationHistoryResponse(BaseModel):
    location_id: str
    records: list[UrlRecord]
