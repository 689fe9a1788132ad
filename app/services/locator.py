from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import EntityNotFound, StorageError
from app.schemas.distance import Coordinate

logger = logging.getLogger(__name__)


class EntityLocator(ABC):
    @abstractmethod
    async def resolve(self, entity_id: int) -> Coordinate:
        """Return the entity's coordinate or raise EntityNotFound."""


class SqlEntityLocator(EntityLocator):
    """
    Reads `latitude` / `longitude` off a mapped table by primary key.

    Rows without a usable coordinate are reported as not found, so the cache
    never computes against a half-imported record.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], model, kind: str):
        self.session_maker = session_maker
        self.model = model
        self.kind = kind

    async def resolve(self, entity_id: int) -> Coordinate:
        stmt = select(self.model.latitude, self.model.longitude).where(self.model.id == entity_id)
        try:
            async with self.session_maker() as session:
                row = (await session.execute(stmt)).one_or_none()
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError(f"could not load {self.kind} {entity_id}: {exc}") from exc

        if row is None or row.latitude is None or row.longitude is None:
            raise EntityNotFound(self.kind, entity_id)
        try:
            return Coordinate(latitude=row.latitude, longitude=row.longitude)
        except ValidationError:
            logger.warning(
                "%s %d has out-of-range coordinates (%s, %s)",
                self.kind, entity_id, row.latitude, row.longitude,
            )
            raise EntityNotFound(self.kind, entity_id) from None
