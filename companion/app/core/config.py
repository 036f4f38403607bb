import json
import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        return [str(v).strip() for v in raw if str(v).strip()]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # JSON list is the documented format; a comma separated string also works.
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [str(v).strip() for v in parsed if str(v).strip()]

    parts = [p for p in re.split(r"[,\s]+", raw) if p]
    if "*" in parts:
        return ["*"]
    return list(dict.fromkeys(parts))


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # development | test | production
    environment: str = "development"

    # Debug mode - enables verbose logging
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./companion.db"

    # Redis (durable rate limit store). Empty disables it.
    redis_url: str = ""

    # Rate limiting
    rate_limit_redis_timeout: float = 0.5  # seconds per Redis call before failing open
    rate_limit_cleanup_interval_seconds: int = 300
    rate_limit_bucket_retention_seconds: int = 3600

    # Session cookie (written by the sign-in service, read here)
    session_secret_key: str = "change-me"
    session_cookie_name: str = "companion_session"
    session_max_age: int = 60 * 60 * 24 * 30

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | json

    # CORS settings
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of the known modes."""
        v = v.strip().lower()
        if v not in ("development", "test", "production"):
            raise ValueError("environment must be development, test or production")
        return v

    @field_validator("rate_limit_redis_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator(
        "rate_limit_cleanup_interval_seconds",
        "rate_limit_bucket_retention_seconds",
    )
    @classmethod
    def validate_interval_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Rate limit intervals must be at least 1 second")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
