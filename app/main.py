import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.v1.distances import router as distances_router
from app.core.config import settings
from app.db.session import engine
from app.services.cache import close_pool

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Distance cache starting: provider=%s policy=%s redis=%s",
        settings.ROUTING_PROVIDER,
        settings.DISTANCE_COMPUTE_POLICY,
        settings.DISTANCE_REDIS_CACHE_ENABLED,
    )
    yield
    await close_pool()
    await engine.dispose()


app = FastAPI(
    title="PropMap API",
    version="0.3.0",
    description="Property ↔ point-of-interest distances for the PropMap map.",
    lifespan=lifespan,
)

app.include_router(distances_router, prefix="/api/v1")


@app.get("/health", tags=["meta"])
async def health_check():
    return {"status": "ok", "version": app.version}
