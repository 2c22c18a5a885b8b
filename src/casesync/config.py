"""Configuration management for casesync.

Only non-credential settings live here. Remote credentials are resolved per
call by ``casesync.remote.resolver.ConfigResolver`` so that rotation takes
effect without a restart.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

# Boundary contract: these names are read verbatim from the environment.
SERVEMANAGER_BASE_URL = "SERVEMANAGER_BASE_URL"
SERVEMANAGER_API_KEY = "SERVEMANAGER_API_KEY"
STRIPE_PUBLISHABLE_KEY = "STRIPE_PUBLISHABLE_KEY"
STRIPE_SECRET_KEY = "STRIPE_SECRET_KEY"
STRIPE_WEBHOOK_SECRET = "STRIPE_WEBHOOK_SECRET"
STRIPE_ENVIRONMENT = "STRIPE_ENVIRONMENT"


def _optional_float(value: str | None) -> float | None:
    if value is None or value.strip() == "":
        return None
    return float(value)


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment."""

    database_url: str
    config_store_url: str
    host: str
    port: int
    debug: bool
    log_level: str
    sync_endpoint_url: str
    sync_interval_seconds: float
    sync_warmup_seconds: float
    sync_timeout_seconds: float
    sync_max_backoff_seconds: float | None
    background_sync_enabled: bool
    remote_http_timeout_seconds: float

    @property
    def HOST(self) -> str:
        """Alias for host."""
        return self.host

    @property
    def PORT(self) -> int:
        """Alias for port."""
        return self.port

    @property
    def DEBUG(self) -> bool:
        """Alias for debug."""
        return self.debug

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment variables."""
        load_dotenv()

        port = int(os.getenv("PORT", "8000"))
        return cls(
            database_url=os.getenv(
                "DATABASE_URL",
                "sqlite+aiosqlite:///./casesync.db",
            ),
            config_store_url=os.getenv("CONFIG_STORE_URL", ""),
            host=os.getenv("HOST", "0.0.0.0"),
            port=port,
            debug=os.getenv("DEBUG", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            sync_endpoint_url=os.getenv(
                "SYNC_ENDPOINT_URL",
                f"http://localhost:{port}/api/sync",
            ),
            sync_interval_seconds=float(os.getenv("SYNC_INTERVAL_SECONDS", "30")),
            sync_warmup_seconds=float(os.getenv("SYNC_WARMUP_SECONDS", "5")),
            sync_timeout_seconds=float(os.getenv("SYNC_TIMEOUT_SECONDS", "15")),
            sync_max_backoff_seconds=_optional_float(
                os.getenv("SYNC_MAX_BACKOFF_SECONDS")
            ),
            background_sync_enabled=(
                os.getenv("BACKGROUND_SYNC_ENABLED", "false").lower() == "true"
            ),
            remote_http_timeout_seconds=float(
                os.getenv("REMOTE_HTTP_TIMEOUT_SECONDS", "30")
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()
