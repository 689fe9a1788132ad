from functools import lru_cache

from app.core.config import settings
from app.db.session import async_session_maker
from app.models.point_of_interest import PointOfInterest
from app.models.property import Property
from app.services.cache import distance_record_cache
from app.services.distance_cache import ComputePolicy, PairwiseDistanceCache
from app.services.distance_store import CachedDistanceStore, DistanceStore, SqlDistanceStore
from app.services.locator import SqlEntityLocator
from app.services.routing import build_routing_provider


@lru_cache(maxsize=1)
def get_distance_cache() -> PairwiseDistanceCache:
    """Process-wide cache wired from settings; override in tests via dependency_overrides."""
    store: DistanceStore = SqlDistanceStore(async_session_maker)
    if settings.DISTANCE_REDIS_CACHE_ENABLED:
        store = CachedDistanceStore(store, distance_record_cache)

    return PairwiseDistanceCache(
        store=store,
        origin_locator=SqlEntityLocator(async_session_maker, Property, "Property"),
        destination_locator=SqlEntityLocator(async_session_maker, PointOfInterest, "POI"),
        provider=build_routing_provider(settings),
        compute_policy=ComputePolicy(settings.DISTANCE_COMPUTE_POLICY),
        batch_concurrency=settings.DISTANCE_BATCH_CONCURRENCY,
        batch_timeout_seconds=settings.DISTANCE_BATCH_TIMEOUT_SECONDS,
    )
