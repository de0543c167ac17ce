from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RETENTION_MULTIPLIER = 30


class Settings(BaseSettings):
    app_name: str = "repost-guard"
    environment: str = "dev"
    api_key: str | None = None
    repost_threshold_seconds: float
    retention_window_seconds: float | None = None
    history_file: str = "data/url_history.json"
    store_io_timeout_seconds: float = 5.0
    platform_api_base_url: str = "https://discord.com/api/v10"
    platform_api_token: str | None = None
    oracle_timeout_seconds: float = 5.0
    oracle_failure_mode: Literal["fail", "assume_live"] = "fail"
    sweep_interval_seconds: float = 3600.0
    sweep_max_backoff_seconds: float = 900.0
    notification_webhook_url: str | None = None
    notification_timeout_seconds: float = 10.0
    message_link_template: str = "https://discord.com/channels/{guild_id}/{location_id}/{message_id}"
    otel_enabled: bool = True
    otel_service_name: str = "repost-guard"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = Field(default=1.0, ge=0.0, le=1.0)
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="RG_", extra="ignore")

    @property
    def repost_threshold(self) -> timedelta:
        return timedelta(seconds=self.repost_threshold_seconds)

    @property
    def retention_window(self) -> timedelta:
        if self.retention_window_seconds is None:
            return self.repost_threshold * DEFAULT_RETENTION_MULTIPLIER
        return timedelta(seconds=self.retention_window_seconds)


@lru_cache
def get_settings() -> Settings:
    return Settings()
