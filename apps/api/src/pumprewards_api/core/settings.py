from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./pumprewards.db"
    database_echo: bool = False

    # Points rates used until an admin saves a system configuration row
    points_fuel_per_liter: float = 1.0
    points_lubricant_per_100: float = 5.0
    points_store_per_100: float = 5.0
    points_service_per_100: float = 5.0

    # Points expiry
    points_expiry_months: int = 12
    points_expiry_notification_days: list[int] = Field(default_factory=list)
    system_config_cache_ttl_seconds: float = 30.0

    @field_validator("points_expiry_notification_days", mode="before")
    @classmethod
    def _parse_notification_days(cls, value: object) -> list[int]:
        if value is None:
            return []
        if isinstance(value, str):
            return [int(item.strip()) for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [int(item) for item in value]
        return []

    # Ledger concurrency
    points_lock_timeout_seconds: float = 5.0
    points_conflict_max_attempts: int = 3
    points_conflict_backoff_seconds: float = 0.05

    # Redemptions
    redemption_code_ttl_days: int = 30
    redemption_code_max_attempts: int = 20

    # Points job scheduler (expiry sweep stays off until operations enables it)
    points_job_scheduler_enabled: bool = False
    points_job_schedule_path: str = "config/schedules.toml"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
