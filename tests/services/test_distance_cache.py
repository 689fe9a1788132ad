import asyncio
import logging

import pytest
from sqlalchemy import func, select

from app.core.exceptions import EntityNotFound, InvalidMode, ProviderUnavailable
from app.models.distance_calculation import DistanceCalculation
from app.schemas.distance import Coordinate, TravelEstimate, TravelMode
from app.services.distance_cache import PairwiseDistanceCache
from app.services.routing import FallbackRoutingProvider, HaversineProvider, RoutingProvider

from conftest import (
    POI_BAD_COORDS,
    POI_MARKET,
    POI_NO_COORDS,
    POI_PARK,
    POI_SCHOOL,
    PROPERTY_BRICKELL,
    PROPERTY_WYNWOOD,
    UNKNOWN_ID,
    build_cache,
)


async def _count_rows(session_maker, **filters) -> int:
    stmt = select(func.count()).select_from(DistanceCalculation)
    for column, value in filters.items():
        stmt = stmt.where(getattr(DistanceCalculation, column) == value)
    async with session_maker() as session:
        return await session.scalar(stmt)


# ── Single pair ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_second_call_is_served_from_cache(distance_cache, provider):
    first = await distance_cache.get_distance(PROPERTY_BRICKELL, POI_PARK, TravelMode.walking)
    calls_after_first = len(provider.calls)
    second = await distance_cache.get_distance(PROPERTY_BRICKELL, POI_PARK, TravelMode.walking)

    assert (first.distance_meters, first.time_seconds) == (second.distance_meters, second.time_seconds)
    assert first.cached is False
    assert second.cached is True
    assert len(provider.calls) == calls_after_first


@pytest.mark.asyncio
async def test_miss_computes_both_modes_by_default(distance_cache, provider, store):
    result = await distance_cache.get_distance(PROPERTY_BRICKELL, POI_PARK, "walking")

    assert result.mode is TravelMode.walking
    assert sorted(m.value for _, _, m in provider.calls) == ["driving", "walking"]

    record = await store.find(PROPERTY_BRICKELL, POI_PARK)
    assert record.present_modes() == [TravelMode.walking, TravelMode.driving]

    # the other mode is now a hit
    calls = len(provider.calls)
    driving = await distance_cache.get_distance(PROPERTY_BRICKELL, POI_PARK, "driving")
    assert driving.cached is True
    assert driving.time_seconds == record.driving_time_seconds
    assert len(provider.calls) == calls


@pytest.mark.asyncio
async def test_driving_miss_leaves_cached_walking_untouched(requested_only_cache, provider, store):
    walking = await requested_only_cache.get_distance(PROPERTY_BRICKELL, POI_SCHOOL, "walking")
    record = await store.find(PROPERTY_BRICKELL, POI_SCHOOL)
    assert record.present_modes() == [TravelMode.walking]

    driving = await requested_only_cache.get_distance(PROPERTY_BRICKELL, POI_SCHOOL, "driving")
    record = await store.find(PROPERTY_BRICKELL, POI_SCHOOL)

    assert driving.cached is False
    assert [m for _, _, m in provider.calls] == [TravelMode.walking, TravelMode.driving]
    assert record.walking_distance_meters == walking.distance_meters
    assert record.walking_time_seconds == walking.time_seconds
    assert record.driving_distance_meters == driving.distance_meters
    assert record.driving_time_seconds == driving.time_seconds


@pytest.mark.asyncio
async def test_concurrent_misses_write_a_single_row(distance_cache, session_maker):
    results = await asyncio.gather(*[
        distance_cache.get_distance(PROPERTY_BRICKELL, POI_PARK, TravelMode.walking)
        for _ in range(5)
    ])

    assert len({(r.distance_meters, r.time_seconds) for r in results}) == 1
    assert await _count_rows(session_maker, property_id=PROPERTY_BRICKELL, poi_id=POI_PARK) == 1


@pytest.mark.asyncio
async def test_unknown_property_raises_and_writes_nothing(distance_cache, provider, session_maker):
    with pytest.raises(EntityNotFound) as excinfo:
        await distance_cache.get_distance(UNKNOWN_ID, POI_PARK, TravelMode.walking)

    assert excinfo.value.entity_id == UNKNOWN_ID
    assert provider.calls == []
    assert await _count_rows(session_maker, property_id=UNKNOWN_ID) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("poi_id", [UNKNOWN_ID, POI_NO_COORDS, POI_BAD_COORDS])
async def test_unresolvable_poi_raises_entity_not_found(distance_cache, provider, session_maker, poi_id):
    with pytest.raises(EntityNotFound):
        await distance_cache.get_distance(PROPERTY_BRICKELL, poi_id, TravelMode.driving)

    assert provider.calls == []
    assert await _count_rows(session_maker, poi_id=poi_id) == 0


@pytest.mark.asyncio
async def test_provider_failure_propagates_and_writes_nothing(distance_cache, provider, session_maker):
    provider.fail = True

    with pytest.raises(ProviderUnavailable):
        await distance_cache.get_distance(PROPERTY_BRICKELL, POI_PARK, TravelMode.walking)

    assert await _count_rows(session_maker) == 0

    # caller-driven retry succeeds once the provider recovers
    provider.fail = False
    result = await distance_cache.get_distance(PROPERTY_BRICKELL, POI_PARK, TravelMode.walking)
    assert result.cached is False


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", ["cycling", "", None, 3])
async def test_invalid_mode_is_rejected(distance_cache, provider, mode):
    with pytest.raises(InvalidMode):
        await distance_cache.get_distance(PROPERTY_BRICKELL, POI_PARK, mode)
    assert provider.calls == []


@pytest.mark.asyncio
async def test_mode_parsing_is_case_insensitive(distance_cache):
    result = await distance_cache.get_distance(PROPERTY_BRICKELL, POI_PARK, "Driving")
    assert result.mode is TravelMode.driving


@pytest.mark.asyncio
async def test_pairs_are_order_sensitive(distance_cache, store):
    await distance_cache.get_distance(PROPERTY_BRICKELL, POI_PARK, TravelMode.walking)

    assert await store.find(PROPERTY_BRICKELL, POI_PARK) is not None
    assert await store.find(POI_PARK, PROPERTY_BRICKELL) is None


class ExactProvider(RoutingProvider):
    """A router that always answers with a measured route."""

    name = "exact"

    async def compute(self, origin, destination, mode):
        return TravelEstimate(distance_meters=1500, time_seconds=600)


@pytest.mark.asyncio
async def test_hit_reports_same_approximate_flag_as_miss(distance_cache):
    first = await distance_cache.get_distance(PROPERTY_BRICKELL, POI_PARK, TravelMode.walking)
    second = await distance_cache.get_distance(PROPERTY_BRICKELL, POI_PARK, TravelMode.walking)

    assert second.cached is True
    assert first.approximate is True
    assert second.approximate == first.approximate


@pytest.mark.asyncio
async def test_hit_from_exact_provider_is_not_approximate(session_maker, store):
    cache = build_cache(session_maker, store, ExactProvider())

    first = await cache.get_distance(PROPERTY_BRICKELL, POI_PARK, TravelMode.driving)
    second = await cache.get_distance(PROPERTY_BRICKELL, POI_PARK, TravelMode.driving)

    assert first.approximate is False
    assert second.cached is True
    assert second.approximate is False


@pytest.mark.asyncio
async def test_hit_behind_fallback_provider_is_unknown(session_maker, store):
    provider = FallbackRoutingProvider(ExactProvider(), HaversineProvider())
    cache = build_cache(session_maker, store, provider)

    first = await cache.get_distance(PROPERTY_BRICKELL, POI_PARK, TravelMode.walking)
    second = await cache.get_distance(PROPERTY_BRICKELL, POI_PARK, TravelMode.walking)

    assert first.approximate is False
    # the row does not record whether the primary or the fallback wrote it
    assert second.cached is True
    assert second.approximate is None


@pytest.mark.asyncio
async def test_injected_logger_receives_miss_and_hit(session_maker, store, provider, caplog):
    logger = logging.getLogger("tests.distance_cache")
    cache = build_cache(session_maker, store, provider, logger=logger)

    with caplog.at_level(logging.DEBUG, logger="tests.distance_cache"):
        await cache.get_distance(PROPERTY_BRICKELL, POI_PARK, "walking")
        await cache.get_distance(PROPERTY_BRICKELL, POI_PARK, "walking")

    messages = [r.getMessage() for r in caplog.records if r.name == "tests.distance_cache"]
    assert any("MISS" in m for m in messages)
    assert any("HIT" in m for m in messages)


@pytest.mark.asyncio
async def test_batch_concurrency_must_be_positive(session_maker, store, provider):
    with pytest.raises(ValueError):
        build_cache(session_maker, store, provider, batch_concurrency=0)


# ── Fan-out ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_batch_skips_unknown_entries(distance_cache):
    results = await distance_cache.get_distances_to_many(
        PROPERTY_BRICKELL, [POI_PARK, UNKNOWN_ID, POI_SCHOOL], TravelMode.walking
    )

    assert [r.entity_b_id for r in results] == [POI_PARK, POI_SCHOOL]
    assert all(r.entity_a_id == PROPERTY_BRICKELL for r in results)


@pytest.mark.asyncio
async def test_batch_results_match_single_pair_results(distance_cache):
    batch = await distance_cache.get_distances_to_many(
        PROPERTY_WYNWOOD, [POI_MARKET, POI_PARK], "driving"
    )
    by_id = {r.entity_b_id: r for r in batch}

    for poi_id in (POI_MARKET, POI_PARK):
        single = await distance_cache.get_distance(PROPERTY_WYNWOOD, poi_id, "driving")
        assert single.cached is True
        assert by_id[poi_id].distance_meters == single.distance_meters
        assert by_id[poi_id].time_seconds == single.time_seconds


@pytest.mark.asyncio
async def test_batch_deduplicates_ids(distance_cache, provider):
    results = await distance_cache.get_distances_to_many(
        PROPERTY_BRICKELL, [POI_PARK, POI_PARK, POI_SCHOOL], TravelMode.walking
    )

    assert [r.entity_b_id for r in results] == [POI_PARK, POI_SCHOOL]
    assert len(provider.calls) == 4


@pytest.mark.asyncio
async def test_batch_survives_provider_failure(distance_cache, provider):
    provider.fail = True

    results = await distance_cache.get_distances_to_many(
        PROPERTY_BRICKELL, [POI_PARK, POI_SCHOOL], TravelMode.walking
    )

    assert results == []


@pytest.mark.asyncio
async def test_batch_with_no_ids_returns_empty(distance_cache):
    assert await distance_cache.get_distances_to_many(PROPERTY_BRICKELL, [], "walking") == []


@pytest.mark.asyncio
async def test_batch_rejects_invalid_mode_up_front(distance_cache, provider):
    with pytest.raises(InvalidMode):
        await distance_cache.get_distances_to_many(PROPERTY_BRICKELL, [POI_PARK], "teleport")
    assert provider.calls == []


@pytest.mark.asyncio
async def test_batch_timeout_drops_slow_entries_without_writing(distance_cache, provider, store):
    provider.slow_destination = Coordinate(latitude=25.7670, longitude=-80.1930)  # POI_MARKET
    provider.delay = 5.0

    results = await distance_cache.get_distances_to_many(
        PROPERTY_BRICKELL, [POI_PARK, POI_MARKET], TravelMode.walking, timeout=0.5
    )

    assert [r.entity_b_id for r in results] == [POI_PARK]
    assert await store.find(PROPERTY_BRICKELL, POI_PARK) is not None
    assert await store.find(PROPERTY_BRICKELL, POI_MARKET) is None


@pytest.mark.asyncio
async def test_batch_respects_concurrency_cap(session_maker, store):
    in_flight = 0
    peak = 0

    class TrackingProvider:
        name = "tracking"

        async def compute(self, origin, destination, mode):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return TravelEstimate(distance_meters=100, time_seconds=10)

    cache: PairwiseDistanceCache = build_cache(
        session_maker, store, TrackingProvider(), batch_concurrency=1
    )

    results = await cache.get_distances_to_many(
        PROPERTY_BRICKELL, [POI_PARK, POI_SCHOOL, POI_MARKET], TravelMode.walking
    )

    assert len(results) == 3
    # one pair at a time, each pair computes both modes concurrently
    assert peak == 2
