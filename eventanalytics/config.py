from pydantic import AnyUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    LOG_JSON: bool = True
    LOG_LEVEL: str = "INFO"

    # Store adapter selection: "memory" or "redis"
    STORE_ADAPTER: Literal["memory", "redis"] = "memory"
    REDIS_URL: AnyUrl | None = None
    REDIS_KEY_PREFIX: str = "eventanalytics"

    # Calendar week boundary for weekly summaries
    WEEK_START: Literal["monday", "sunday"] = "sunday"

    # Anomaly detection
    ANOMALY_WINDOW_HOURS: int = 24
    ANOMALY_BASELINE_DAYS: int = 7
    ANOMALY_SCAN_LOOKBACK_DAYS: int = 7
    ANOMALY_MIN_EVENTS: int = 3
    ANOMALY_RATE_THRESHOLD_PCT: float = 50.0
    ANOMALY_ENGAGEMENT_THRESHOLD_PCT: float = 60.0
    ANOMALY_ATTENDANCE_BASELINE_RATIO: float = 0.7
    ANOMALY_ATTENDANCE_THRESHOLD: float = 0.3

    # Retention (days)
    RETENTION_EVENT_DAYS: int = 365
    RETENTION_SUMMARY_DAYS: int = 730

    # Keyed pseudonyms; unset means timestamp-suffixed tokens
    PRIVACY_PSEUDONYM_KEY: str | None = None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
