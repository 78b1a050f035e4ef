"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with LIVEREPORTS_ prefix.
No YAML files, no file-based config — just env vars (12-factor app style).

Learn: The hub owns no durable state, so configuration is only about
where things live (the reporting service, Redis) and how often the
server re-pushes active groups.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All app configuration. Set via LIVEREPORTS_* env vars."""

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"

    # CORS
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # External report-computation service
    report_service_url: str = "http://localhost:8100"
    report_service_timeout: float = 10.0

    # Change feed (Redis pub/sub, optional)
    redis_url: str = "redis://localhost:6379/0"
    change_feed_enabled: bool = True
    change_channel: str = "livereports:changes"

    # Server-side periodic re-push of active groups (0 disables)
    refresh_interval_seconds: float = 30.0

    model_config = {"env_prefix": "LIVEREPORTS_"}

    @model_validator(mode="after")
    def validate_intervals(self):
        """Reject negative intervals and timeouts early, at startup."""
        if self.refresh_interval_seconds < 0:
            raise ValueError("LIVEREPORTS_REFRESH_INTERVAL_SECONDS must be >= 0")
        if self.report_service_timeout <= 0:
            raise ValueError("LIVEREPORTS_REPORT_SERVICE_TIMEOUT must be > 0")
        return self


# Singleton — import this everywhere
settings = Settings()
