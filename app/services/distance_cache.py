"""
Property → POI distance cache.

Cache-first: the routing provider is only called when the stored row does
not yet hold the requested travel mode. On a miss both modes are computed by
default (one round of provider calls fills the whole row); set
DISTANCE_COMPUTE_POLICY=requested to compute only the mode asked for.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from typing import Iterable, List, Optional

from app.core.exceptions import DistanceCacheError
from app.schemas.distance import (
    Coordinate,
    DistanceRecord,
    DistanceResult,
    TravelEstimate,
    TravelMode,
)
from app.services.distance_store import DistanceStore
from app.services.locator import EntityLocator
from app.services.routing import RoutingProvider

_module_logger = logging.getLogger(__name__)


class ComputePolicy(str, enum.Enum):
    both = "both"
    requested = "requested"


class PairwiseDistanceCache:
    def __init__(
        self,
        store: DistanceStore,
        origin_locator: EntityLocator,
        destination_locator: EntityLocator,
        provider: RoutingProvider,
        *,
        compute_policy: ComputePolicy = ComputePolicy.both,
        batch_concurrency: int = 5,
        batch_timeout_seconds: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if batch_concurrency < 1:
            raise ValueError("batch_concurrency must be at least 1")
        self.store = store
        self.origin_locator = origin_locator
        self.destination_locator = destination_locator
        self.provider = provider
        self.compute_policy = ComputePolicy(compute_policy)
        self.batch_concurrency = batch_concurrency
        self.batch_timeout_seconds = batch_timeout_seconds
        self.logger = logger or _module_logger

    # ── Single pair ───────────────────────────────────────────────────────────

    async def get_distance(
        self,
        entity_a_id: int,
        entity_b_id: int,
        mode: TravelMode | str,
    ) -> DistanceResult:
        mode = TravelMode.parse(mode)

        record = await self.store.find(entity_a_id, entity_b_id)
        if record is not None:
            cached = record.estimate(mode)
            if cached is not None:
                self.logger.debug("distance HIT (%d, %d) %s", entity_a_id, entity_b_id, mode.value)
                return self._result(
                    entity_a_id, entity_b_id, mode, cached,
                    cached=True, approximate=self.provider.stored_approximate,
                )

        origin, destination = await self._resolve(entity_a_id, entity_b_id)

        modes = list(TravelMode) if self.compute_policy is ComputePolicy.both else [mode]
        estimates = await self._compute(origin, destination, modes)

        await self.store.upsert(
            DistanceRecord.from_estimates(entity_a_id, entity_b_id, estimates)
        )
        self.logger.info(
            "distance MISS (%d, %d) computed %s via %s",
            entity_a_id, entity_b_id, [m.value for m in modes], self.provider.name,
        )
        return self._result(
            entity_a_id, entity_b_id, mode, estimates[mode],
            cached=False, approximate=estimates[mode].approximate,
        )

    async def _resolve(self, entity_a_id: int, entity_b_id: int) -> tuple[Coordinate, Coordinate]:
        origin, destination = await asyncio.gather(
            self.origin_locator.resolve(entity_a_id),
            self.destination_locator.resolve(entity_b_id),
            return_exceptions=True,
        )
        for outcome in (origin, destination):
            if isinstance(outcome, BaseException):
                raise outcome
        return origin, destination

    async def _compute(
        self,
        origin: Coordinate,
        destination: Coordinate,
        modes: List[TravelMode],
    ) -> dict[TravelMode, TravelEstimate]:
        outcomes = await asyncio.gather(
            *(self.provider.compute(origin, destination, m) for m in modes),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return dict(zip(modes, outcomes))

    @staticmethod
    def _result(
        entity_a_id: int,
        entity_b_id: int,
        mode: TravelMode,
        estimate: TravelEstimate,
        cached: bool,
        approximate: Optional[bool],
    ) -> DistanceResult:
        return DistanceResult(
            entity_a_id=entity_a_id,
            entity_b_id=entity_b_id,
            mode=mode,
            distance_meters=estimate.distance_meters,
            time_seconds=estimate.time_seconds,
            cached=cached,
            approximate=approximate,
        )

    # ── Fan-out ───────────────────────────────────────────────────────────────

    async def get_distances_to_many(
        self,
        entity_a_id: int,
        entity_b_ids: Iterable[int],
        mode: TravelMode | str,
        timeout: Optional[float] = None,
    ) -> List[DistanceResult]:
        """
        Apply get_distance to every B independently.

        Failed entries, and entries still running when `timeout` expires, are
        left out of the result; nothing is raised for them. Results keep the
        input order of the ids that succeeded. Duplicate ids are computed once.
        """
        mode = TravelMode.parse(mode)
        timeout = timeout if timeout is not None else self.batch_timeout_seconds
        semaphore = asyncio.Semaphore(self.batch_concurrency)

        async def _one(entity_b_id: int) -> DistanceResult:
            async with semaphore:
                return await self.get_distance(entity_a_id, entity_b_id, mode)

        tasks = {
            entity_b_id: asyncio.create_task(_one(entity_b_id))
            for entity_b_id in dict.fromkeys(entity_b_ids)
        }
        if not tasks:
            return []

        try:
            _, pending = await asyncio.wait(tasks.values(), timeout=timeout)
        finally:
            outstanding = [t for t in tasks.values() if not t.done()]
            for task in outstanding:
                task.cancel()
            if outstanding:
                await asyncio.gather(*outstanding, return_exceptions=True)

        if pending:
            self.logger.warning(
                "distance batch for %d: %d of %d entries timed out after %.1fs",
                entity_a_id, len(pending), len(tasks), timeout,
            )

        results: List[DistanceResult] = []
        for entity_b_id, task in tasks.items():
            if task.cancelled():
                continue
            exc = task.exception()
            if exc is None:
                results.append(task.result())
            elif isinstance(exc, DistanceCacheError):
                self.logger.warning(
                    "Skipping distance (%d, %d): %s", entity_a_id, entity_b_id, exc
                )
            else:
                self.logger.error(
                    "Skipping distance (%d, %d) after unexpected error",
                    entity_a_id, entity_b_id, exc_info=exc,
                )
        return results
