import logging
from enum import StrEnum
from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from storefront import __version__

logger = logging.getLogger(__name__)

_DEV_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"


class Environments(StrEnum):
    DEV = "dev"
    PROD = "prod"

    def is_production(self) -> bool:
        return self == self.PROD

    def is_development(self) -> bool:
        return self == self.DEV


class Settings(BaseSettings):
    """Server configuration."""

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str | None = None
    env: Environments = Environments.PROD
    host: str = "0.0.0.0"
    port: int = 8080
    debug: bool = False
    log_format: Literal["text", "json"] = "text"

    # File logging. The logging health check watches this directory.
    log_dir: str = "logs"
    log_file_enabled: bool = True
    log_file_pattern: str = "*.log"
    log_max_age_minutes: int = 30

    # CORS: explicit origins with credentials in development, any origin otherwise.
    cors_dev_origins: str = _DEV_CORS_ORIGINS

    # Authentication (bearer API keys).
    admin_api_key: str | None = None
    api_keys: str = ""

    # Health check thresholds.
    health_memory_unhealthy_mb: int = 500
    health_memory_degraded_mb: int = 250
    health_disk_path: str = "/"
    health_disk_unhealthy_pct: float = 90.0
    health_disk_degraded_pct: float = 80.0
    health_cpu_unhealthy_pct: float = 80.0
    health_cpu_degraded_pct: float = 60.0

    # Metrics recorder.
    metrics_flush_interval_seconds: float = 300.0
    metrics_slow_call_ms: int = 1000
    metrics_slow_query_ms: int = 500

    # Rate limiting. Rules use '<count>/<unit>' or '<count>/<multiplier><unit>'.
    rate_limit_enabled: bool = False
    rate_limit_login: str = "5/15m"
    rate_limit_register: str = "3/1h"
    rate_limit_refresh_token: str = "10/5m"
    rate_limit_forgot_password: str = "3/1h"
    rate_limit_reset_password: str = "5/30m"
    rate_limit_general: str = "100/m"
    rate_limit_cleanup_interval_seconds: float = 300.0

    version: str = __version__

    @field_validator("env", mode="before")
    @classmethod
    def _normalize_env_aliases(cls, value: object) -> object:
        """Allow long-form env aliases (development/production)."""
        if isinstance(value, str):
            normalized = value.strip().lower()
            aliases = {
                "development": Environments.DEV.value,
                "production": Environments.PROD.value,
            }
            return aliases.get(normalized, normalized)
        return value

    @property
    def is_production(self) -> bool:
        return self.env.is_production()

    @property
    def is_development(self) -> bool:
        return self.env.is_development()

    @property
    def effective_database_url(self) -> str:
        """Get database URL, defaulting to SQLite if not configured."""
        if self.database_url:
            return self.database_url
        return "sqlite+aiosqlite:///storefront.db"

    @property
    def cors_dev_origins_list(self) -> list[str]:
        """Parse comma-delimited development CORS origins into a list."""
        origins = [origin.strip() for origin in self.cors_dev_origins.split(",")]
        return [origin for origin in origins if origin]

    @property
    def api_keys_map(self) -> dict[str, str]:
        """Parse ``user:key`` pairs into a key -> user id mapping."""
        out: dict[str, str] = {}
        for item in self.api_keys.split(","):
            item = item.strip()
            if not item:
                continue
            user_id, sep, key = item.partition(":")
            if not sep or not user_id.strip() or not key.strip():
                logger.warning("Ignoring malformed STOREFRONT_API_KEYS entry")
                continue
            out[key.strip()] = user_id.strip()
        return out


@lru_cache
def get_settings() -> Settings:
    return Settings()
