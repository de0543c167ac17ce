from fastapi import APIRouter, Depends, HTTPException, status

from repost_guard.api.deps import get_tracker, require_api_key
from repost_guard.core.errors import NotInitialized
from repost_guard.schemas.messages import LocationHistoryResponse, SweepResponse
from repost_guard.schemas.records import HistoryStats
from repost_guard.services.tracker import RepostTracker

router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post("/sweep", response_model=SweepResponse)
async def run_sweep(tracker: RepostTracker = Depends(get_tracker)) -> SweepResponse:
    try:
        removed = await tracker.sweep()
    except NotInitialized as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return SweepResponse(removed=removed)


@router.get("/stats", response_model=HistoryStats)
async def get_stats(tracker: RepostTracker = Depends(get_tracker)) -> HistoryStats:
    try:
        return await tracker.stats()
    except NotInitialized as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.get("/locations/{location_id}/history", response_model=LocationHistoryResponse)
async def get_location_history(
    location_id: str,
    tracker: RepostTracker = Depends(get_tracker),
) -> LocationHistoryResponse:
    try:
        records = await tracker.location_history(location_id)
    except NotInitialized as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return LocationHistoryResponse(location_id=location_id, records=records)
