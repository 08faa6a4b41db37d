from __future__ import annotations

from typing import Literal, Optional

from pydantic import AnyUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=False,
        extra="ignore",
    )

    SUPABASE_URL: Optional[AnyUrl] = None
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    APP_ENV: str = "local"
    FRONTEND_CORS_ORIGINS: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:8080"],
    )

    # "memory" keeps everything in process, for local development
    LEDGER_BACKEND: Literal["supabase", "memory"] = "supabase"

    PLATFORM_FEE_PERCENT: int = Field(default=15, ge=0, le=100)
    CURRENCY: str = "usd"

    # Empty AUTHORIZER_URL selects the simulated authorizer
    AUTHORIZER_URL: str = ""
    AUTHORIZER_API_KEY: str = ""
    AUTHORIZER_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    SIMULATED_AUTHORIZER_DELAY_SECONDS: float = 0.0

    PENDING_STALE_SECONDS: int = Field(default=60, gt=0)
    MAX_CLOCK_SKEW_SECONDS: int = Field(default=300, ge=0)
    DECAY_HALF_LIFE_DAYS: float = Field(default=14.0, gt=0)
    RECOMMENDATION_CACHE_TTL_SECONDS: int = Field(default=300, ge=0)

    # JSON array of recipe rows loaded into the catalog when LEDGER_BACKEND=memory
    MEMORY_RECIPES_FILE: str = ""


settings = Settings()
