import asyncio
import os
import sys
from pathlib import Path
from typing import Optional

import pytest

# Settings are read at import time; point them at SQLite before `app` loads
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./propmap-test.db")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("ROUTING_PROVIDER", "haversine")

# Ensure the backend directory is importable so `app.*` modules resolve
_BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from app.core.exceptions import ProviderUnavailable  # noqa: E402
from app.db.session import Base  # noqa: E402
from app.models import PointOfInterest, Property  # noqa: E402
from app.schemas.distance import Coordinate, TravelMode  # noqa: E402
from app.services.distance_cache import ComputePolicy, PairwiseDistanceCache  # noqa: E402
from app.services.distance_store import SqlDistanceStore  # noqa: E402
from app.services.locator import SqlEntityLocator  # noqa: E402
from app.services.routing import HaversineProvider, RoutingProvider  # noqa: E402

# Miami
PROPERTY_BRICKELL = 1
PROPERTY_WYNWOOD = 2
POI_PARK = 10
POI_SCHOOL = 11
POI_MARKET = 12
POI_NO_COORDS = 13
POI_BAD_COORDS = 14
UNKNOWN_ID = 999


class CountingProvider(RoutingProvider):
    """Haversine underneath; records calls, can fail or stall on demand."""

    name = "counting"
    stored_approximate = True

    def __init__(self):
        self.inner = HaversineProvider()
        self.calls: list[tuple[Coordinate, Coordinate, TravelMode]] = []
        self.fail = False
        self.slow_destination: Optional[Coordinate] = None
        self.delay = 0.0

    async def compute(self, origin, destination, mode):
        self.calls.append((origin, destination, mode))
        if self.fail:
            raise ProviderUnavailable(self.name, "rate limited")
        if self.slow_destination is not None and destination == self.slow_destination:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        return await self.inner.compute(origin, destination, mode)


@pytest.fixture()
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'distances.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def session_maker(engine):
    maker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as session:
        session.add_all([
            Property(id=PROPERTY_BRICKELL, address="1001 Brickell Bay Dr", latitude=25.7617, longitude=-80.1918),
            Property(id=PROPERTY_WYNWOOD, address="2520 NW 2nd Ave", latitude=25.8010, longitude=-80.1995),
            PointOfInterest(id=POI_PARK, name="Simpson Park", category="park", latitude=25.7617, longitude=-80.2018),
            PointOfInterest(id=POI_SCHOOL, name="Southside Elementary", category="school", latitude=25.7650, longitude=-80.1990),
            PointOfInterest(id=POI_MARKET, name="Brickell City Centre", category="shopping", latitude=25.7670, longitude=-80.1930),
            PointOfInterest(id=POI_NO_COORDS, name="Unmapped Library", category="library"),
            PointOfInterest(id=POI_BAD_COORDS, name="Bad Import", category="park", latitude=125.0, longitude=-80.2),
        ])
        await session.commit()
    return maker


@pytest.fixture()
def provider() -> CountingProvider:
    return CountingProvider()


@pytest.fixture()
def store(session_maker) -> SqlDistanceStore:
    return SqlDistanceStore(session_maker)


def build_cache(session_maker, store, provider, **kwargs) -> PairwiseDistanceCache:
    return PairwiseDistanceCache(
        store=store,
        origin_locator=SqlEntityLocator(session_maker, Property, "Property"),
        destination_locator=SqlEntityLocator(session_maker, PointOfInterest, "POI"),
        provider=provider,
        **kwargs,
    )


@pytest.fixture()
def distance_cache(session_maker, store, provider) -> PairwiseDistanceCache:
    return build_cache(session_maker, store, provider)


@pytest.fixture()
def requested_only_cache(session_maker, store, provider) -> PairwiseDistanceCache:
    return build_cache(session_maker, store, provider, compute_policy=ComputePolicy.requested)
