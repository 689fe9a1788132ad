from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    APP_ENV: str = "development"

    # Database
    DATABASE_URL: str

    # Routing
    ROUTING_PROVIDER: str = "haversine"
    ROUTING_API_KEY: str = ""
    ROUTING_TIMEOUT_SECONDS: float = 10.0
    ROUTING_FALLBACK_TO_HAVERSINE: bool = False

    # Synthetic travel speeds used by the haversine fallback (5 km/h, 30 km/h)
    WALKING_SPEED_MPS: float = 5000 / 3600
    DRIVING_SPEED_MPS: float = 30000 / 3600

    # Distance cache
    DISTANCE_COMPUTE_POLICY: Literal["both", "requested"] = "both"
    DISTANCE_BATCH_CONCURRENCY: int = 5
    DISTANCE_BATCH_TIMEOUT_SECONDS: Optional[float] = None

    # Redis read-through in front of distance_calculations
    DISTANCE_REDIS_CACHE_ENABLED: bool = False
    DISTANCE_REDIS_CACHE_TTL_SECONDS: int = 3600
    REDIS_URL: str = "redis://localhost:6379/0"


settings = Settings()
