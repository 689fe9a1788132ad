import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_distance_cache
from app.core.exceptions import (
    DistanceCacheError,
    EntityNotFound,
    InvalidMode,
    ProviderUnavailable,
    StorageError,
)
from app.schemas.distance import (
    DistanceBatchRequest,
    DistanceBatchResponse,
    DistanceRead,
    DistanceResult,
)
from app.services.distance_cache import PairwiseDistanceCache
from app.services.formatters import format_distance, format_duration

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/distances", tags=["distances"])


def _http_error(exc: DistanceCacheError) -> HTTPException:
    if isinstance(exc, InvalidMode):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, EntityNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ProviderUnavailable):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Distance provider unavailable, try again later.",
        )
    if isinstance(exc, StorageError):
        logger.error("Distance storage failure: %s", exc)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Could not calculate distance.",
    )


def _read(result: DistanceResult) -> DistanceRead:
    return DistanceRead(
        entity_a_id=result.entity_a_id,
        entity_b_id=result.entity_b_id,
        mode=result.mode,
        distance_meters=result.distance_meters,
        time_seconds=result.time_seconds,
        formatted_distance=format_distance(result.distance_meters),
        formatted_time=format_duration(result.time_seconds),
        cached=result.cached,
        approximate=result.approximate,
    )


# ── Property → one POI ────────────────────────────────────────────────────────

@router.get("/property/{property_id}/poi/{poi_id}", response_model=DistanceRead)
async def get_distance(
    property_id: int,
    poi_id: int,
    mode: str = Query("walking"),
    cache: PairwiseDistanceCache = Depends(get_distance_cache),
):
    try:
        result = await cache.get_distance(property_id, poi_id, mode)
    except DistanceCacheError as exc:
        raise _http_error(exc) from exc
    return _read(result)


# ── Property → many POIs ──────────────────────────────────────────────────────

@router.post("/property/{property_id}/pois", response_model=DistanceBatchResponse)
async def get_distances_to_pois(
    property_id: int,
    payload: DistanceBatchRequest,
    mode: str = Query("walking"),
    cache: PairwiseDistanceCache = Depends(get_distance_cache),
):
    try:
        results = await cache.get_distances_to_many(property_id, payload.entity_b_ids, mode)
    except DistanceCacheError as exc:
        raise _http_error(exc) from exc

    if len(results) < len(set(payload.entity_b_ids)):
        logger.info(
            "Distance batch for property %d: %d of %d POIs returned",
            property_id, len(results), len(set(payload.entity_b_ids)),
        )
    data = [_read(r) for r in results]
    return DistanceBatchResponse(count=len(data), data=data)
