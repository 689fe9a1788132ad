"""
Durable storage for DistanceRecord rows: exactly one row per
(property_id, poi_id) pair.

Writes go through a single INSERT … ON CONFLICT DO UPDATE so two concurrent
misses on the same pair cannot produce two rows, and a write that carries only
one travel mode never nulls out the other.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import StorageError
from app.models.distance_calculation import DistanceCalculation
from app.schemas.distance import DistanceRecord
from app.services.cache import RedisCache

logger = logging.getLogger(__name__)

_MODE_COLUMNS = {
    "walking": ("walking_distance_meters", "walking_time_seconds"),
    "driving": ("driving_distance_meters", "driving_time_seconds"),
}

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class DistanceStore(ABC):
    @abstractmethod
    async def find(self, entity_a_id: int, entity_b_id: int) -> Optional[DistanceRecord]:
        ...

    @abstractmethod
    async def upsert(self, record: DistanceRecord) -> DistanceRecord:
        """Merge the modes present in `record` into the stored row; return the merged row."""


def _to_record(row) -> DistanceRecord:
    return DistanceRecord(
        entity_a_id=row["property_id"],
        entity_b_id=row["poi_id"],
        walking_distance_meters=row["walking_distance_meters"],
        walking_time_seconds=row["walking_time_seconds"],
        driving_distance_meters=row["driving_distance_meters"],
        driving_time_seconds=row["driving_time_seconds"],
        calculated_at=row["calculated_at"],
    )


# ── SQL ───────────────────────────────────────────────────────────────────────

class SqlDistanceStore(DistanceStore):
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def find(self, entity_a_id: int, entity_b_id: int) -> Optional[DistanceRecord]:
        table = DistanceCalculation.__table__
        stmt = select(table).where(
            table.c.property_id == entity_a_id,
            table.c.poi_id == entity_b_id,
        )
        try:
            async with self.session_maker() as session:
                row = (await session.execute(stmt)).mappings().one_or_none()
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError(
                f"distance lookup failed for ({entity_a_id}, {entity_b_id}): {exc}"
            ) from exc
        return _to_record(row) if row is not None else None

    async def upsert(self, record: DistanceRecord) -> DistanceRecord:
        modes = record.present_modes()
        if not modes:
            raise ValueError(
                f"nothing to store for ({record.entity_a_id}, {record.entity_b_id}): no mode present"
            )

        values = {
            "property_id": record.entity_a_id,
            "poi_id": record.entity_b_id,
            "calculated_at": datetime.now(timezone.utc),
        }
        for mode in modes:
            for column in _MODE_COLUMNS[mode.value]:
                values[column] = getattr(record, column)

        try:
            async with self.session_maker() as session:
                async with session.begin():
                    stmt = self._upsert_statement(session, values)
                    row = (await session.execute(stmt)).mappings().one()
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError(
                f"distance upsert failed for ({record.entity_a_id}, {record.entity_b_id}): {exc}"
            ) from exc

        logger.debug(
            "Upserted distance (%d, %d) modes=%s",
            record.entity_a_id, record.entity_b_id, [m.value for m in modes],
        )
        return _to_record(row)

    @staticmethod
    def _upsert_statement(session: AsyncSession, values: dict):
        dialect = session.bind.dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)
        if insert is None:
            raise StorageError(f"atomic upsert is not supported on '{dialect}'")

        table = DistanceCalculation.__table__
        stmt = insert(table).values(**values)
        # Only the supplied columns are overwritten on conflict
        updated = {
            column: stmt.excluded[column]
            for column in values
            if column not in ("property_id", "poi_id")
        }
        return stmt.on_conflict_do_update(
            index_elements=[table.c.property_id, table.c.poi_id],
            set_=updated,
        ).returning(*table.c)


# ── Redis read-through ────────────────────────────────────────────────────────

class CachedDistanceStore(DistanceStore):
    """
    Redis in front of another store.
    The cached value is always the merged row the inner store returned, so a
    hit never hides a mode the database already holds.
    """

    def __init__(self, inner: DistanceStore, cache: RedisCache):
        self.inner = inner
        self.cache = cache

    @staticmethod
    def _key(entity_a_id: int, entity_b_id: int) -> str:
        return f"{entity_a_id}:{entity_b_id}"

    async def find(self, entity_a_id: int, entity_b_id: int) -> Optional[DistanceRecord]:
        key = self._key(entity_a_id, entity_b_id)
        cached = await self.cache.get(key)
        if cached is not None:
            try:
                return DistanceRecord.model_validate(cached)
            except ValidationError as exc:
                # Payload from an older schema; reload from the inner store
                logger.warning(
                    "Discarding unreadable cached distance %s (%d validation errors)",
                    key, exc.error_count(),
                )

        record = await self.inner.find(entity_a_id, entity_b_id)
        if record is not None:
            await self.cache.set(key, record.model_dump(mode="json"))
        return record

    async def upsert(self, record: DistanceRecord) -> DistanceRecord:
        merged = await self.inner.upsert(record)
        await self.cache.set(
            self._key(merged.entity_a_id, merged.entity_b_id),
            merged.model_dump(mode="json"),
        )
        return merged
