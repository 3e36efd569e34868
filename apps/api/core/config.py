"""
Centralized configuration for the scoring engine service.

Environment variables are loaded and validated here so the API, the
Celery worker and the tests all see the same values.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)
    EXPOSE_API_DOCS: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")
    TREND_TASK_QUEUE: str = Field(default="trends")

    # Cache Configuration
    CACHE_TTL_DEFAULT: int = Field(default=300)  # 5 minutes
    TREND_CACHE_TTL_S: int = Field(default=300)
    SPARKLINE_CACHE_TTL_S: int = Field(default=300)
    # Recompute lock; longer than the worst-case recompute.
    TREND_LOCK_TTL_S: int = Field(default=120)

    # Composite calculations fail soft to the last-known-good score after this.
    SCORE_CALCULATION_TIMEOUT_S: float = Field(default=5.0, gt=0)
    SCORE_CALCULATION_WORKERS: int = Field(default=4, ge=1)
    # Per-athlete coordinators with nothing in flight are dropped after this.
    COORDINATOR_IDLE_TTL_S: float = Field(default=3600.0, gt=0)

    # Capability flag: route recovery scoring through an external learned model.
    LEARNED_RECOVERY_MODEL_ENABLED: bool = Field(default=False)

    # Athlete defaults when the profile has no value yet
    DEFAULT_ATHLETE_WEIGHT_KG: float = Field(default=75.0, gt=0)
    DEFAULT_FTP_WATTS: float = Field(default=200.0, gt=0)


# Global settings instance
settings = Settings()
