from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings


# ── Base ───────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass


# ── Engine ─────────────────────────────────────────────────────────────────────
_database_url = str(settings.DATABASE_URL)

# SQLite (tests / local runs) does not take QueuePool sizing arguments
_pool_kwargs = (
    {}
    if _database_url.startswith("sqlite")
    else {"pool_size": 10, "max_overflow": 20}
)

engine = create_async_engine(
    _database_url,
    echo=settings.APP_ENV == "development",
    pool_pre_ping=True,
    **_pool_kwargs,
)

# ── Session factory ────────────────────────────────────────────────────────────
async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

