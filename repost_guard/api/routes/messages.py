from fastapi import APIRouter, Depends, HTTPException, status

from repost_guard.api.deps import get_dispatcher, get_tracker, require_api_key
from repost_guard.core.errors import NotInitialized, StorePersistenceError
from repost_guard.schemas.messages import (
    BackfillRequest,
    BackfillResponse,
    IngestRequest,
    IngestResponse,
    OutcomeOut,
)
from repost_guard.services.dispatch import Dispatcher
from repost_guard.services.policy import Outcome
from repost_guard.services.tracker import RepostTracker

router = APIRouter(dependencies=[Depends(require_api_key)])


def to_outcome_out(outcome: Outcome) -> OutcomeOut:
    return OutcomeOut(
        kind=outcome.kind.value,
        canonical_url=outcome.canonical_url,
        existing=outcome.existing,
        age_seconds=outcome.age.total_seconds() if outcome.age is not None else None,
        threshold_seconds=outcome.threshold.total_seconds(),
        remaining_seconds=outcome.remaining.total_seconds() if outcome.remaining is not None else None,
        degraded=outcome.degraded,
        error_kind=outcome.error_kind,
        error=outcome.error,
    )


@router.post("", response_model=IngestResponse)
async def ingest_message(
    payload: IngestRequest,
    tracker: RepostTracker = Depends(get_tracker),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> IngestResponse:
    outcomes = await tracker.ingest(
        payload.text,
        payload.poster_id,
        payload.location_id,
        payload.parent_location_id,
        payload.message_ref,
    )
    report = await dispatcher.dispatch(outcomes)
    return IngestResponse(outcomes=[to_outcome_out(outcome) for outcome in outcomes], dispatch=report)


@router.post("/backfill", response_model=BackfillResponse)
async def backfill_messages(
    payload: BackfillRequest,
    tracker: RepostTracker = Depends(get_tracker),
) -> BackfillResponse:
    try:
        written = await tracker.backfill(payload.messages)
    except NotInitialized as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except StorePersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return BackfillResponse(written=written)
