from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    database_url: str = Field(..., alias="DATABASE_URL")
    user_id: str = Field(..., alias="USER_ID")
    session_path: Path = Field(Path("active_bill_session.json"), alias="SESSION_PATH")
    session_ttl_hours: int = Field(24, alias="SESSION_TTL_HOURS", gt=0)
    default_currency: str = Field("USD", alias="DEFAULT_CURRENCY", min_length=3, max_length=3)
    conflict_auto_dismiss_seconds: int = Field(10, alias="CONFLICT_AUTO_DISMISS_SECONDS", ge=0)
    auto_dismiss_low_conflicts: bool = Field(False, alias="AUTO_DISMISS_LOW_CONFLICTS")
    delete_max_attempts: int = Field(3, alias="DELETE_MAX_ATTEMPTS", ge=1)
    sweep_interval_minutes: int = Field(5, alias="SWEEP_INTERVAL_MINUTES", gt=0)
    tz: str = Field("UTC", alias="TZ")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(True, alias="LOG_JSON")

    @property
    def zoneinfo(self) -> ZoneInfo:
        return ZoneInfo(self.tz)

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(hours=self.session_ttl_hours)

    @property
    def conflict_auto_dismiss_after(self) -> timedelta:
        return timedelta(seconds=self.conflict_auto_dismiss_seconds)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]
