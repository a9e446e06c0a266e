from __future__ import annotations

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """
    Application-level settings for the MES API service.

    This is separate from src.db.config.Settings, which focuses on the database layer.
    """

    # FastAPI metadata
    APP_NAME: str = Field(default="MES API")
    APP_DESCRIPTION: str = Field(
        default=(
            "Manufacturing execution backend: production orders, scheduling, OEE, "
            "downtime, quality execution, SPC and material consumption."
        )
    )
    APP_VERSION: str = Field(default="0.1.0")

    # CORS
    CORS_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"],
        description="Comma-separated list or JSON array of allowed origins. Default: *",
    )
    CORS_ALLOW_CREDENTIALS: bool = Field(default=True)
    CORS_ALLOW_METHODS: List[str] = Field(default_factory=lambda: ["*"])
    CORS_ALLOW_HEADERS: List[str] = Field(default_factory=lambda: ["*"])

    # Startup behavior
    RUN_MIGRATIONS_ON_STARTUP: bool = Field(
        default=True,
        description="If true, run Alembic migrations (upgrade head) at app startup.",
    )
    AUTO_SEED: bool = Field(
        default=False,
        description="If true, run demo data seeding after migrations.",
    )

    # Tenancy defaults (used by the seed utility)
    DEFAULT_TENANT_SLUG: str = Field(default="demo-plant")

    # Environment label
    ENVIRONMENT: Optional[str] = Field(
        default=None, description="Environment label (dev/test/prod)"
    )

    # JWT
    JWT_SECRET_KEY: str = Field(default="change-me-in-production")
    JWT_ALGORITHM: str = Field(default="HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=30)
    REFRESH_TOKEN_EXPIRE_MINUTES: int = Field(default=60 * 24 * 7)

    # Manufacturing defaults
    DEFAULT_SHIFT_HOURS: float = Field(
        default=8.0, description="Planned production hours per calendar day for OEE."
    )
    DEFAULT_CYCLE_TIME_SECONDS: float = Field(
        default=60.0, description="Ideal cycle time used when no equipment/work center value is set."
    )
    DEFAULT_SCHEDULE_DURATION_MINUTES: int = Field(
        default=60, description="Assumed duration of a scheduled operation without an end time."
    )
    DAILY_CAPACITY_HOURS: float = Field(default=8.0, description="Work center capacity per day.")
    SPC_MIN_SUBGROUPS: int = Field(default=20, description="Subgroups required before limits are computed.")
    SPC_MIN_CAPABILITY_SAMPLES: int = Field(default=30, description="Individual points required for Cp/Cpk.")
    SPC_RULE_WINDOW: int = Field(default=50, description="Most recent subgroups used for rule detection.")
    PLANT_TIMEZONE: str = Field(default="UTC", description="IANA timezone for shift windows and day buckets.")

    # Automatically load from .env at runtime. The orchestrator will provide these.
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """
        Accept both JSON array format and comma-separated formats for CORS origins.
        """
        if v is None:
            return ["*"]
        if isinstance(v, str):
            parts = [p.strip() for p in v.split(",") if p.strip()]
            return parts or ["*"]
        if isinstance(v, list):
            return v or ["*"]
        return ["*"]


# PUBLIC_INTERFACE
def get_app_settings() -> AppSettings:
    """
    Return a new AppSettings instance populated from environment variables.

    Note:
      For simplicity we construct a new instance each time. If caching is desired,
      we can add a module-level cache or lru_cache.
    """
    return AppSettings()
