"""Application settings loaded from environment variables.

Environment Configuration:
    REELROOM_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: SQLAlchemy connection string, Postgres or SQLite (required)
    REELROOM_INTERNAL_SECRET: Internal API secret (required in staging/prod)

Realtime Configuration:
    REDIS_URL: Redis connection string. When unset, realtime events are not published.
    REALTIME_PUBLISH_TIMEOUT_S: Socket timeout for a single publish (seconds)

Auth Configuration (required in all environments):
    SUPABASE_JWKS_URL: Full URL to Supabase JWKS endpoint
    SUPABASE_ISSUER: Expected JWT issuer (trailing slash stripped)
    SUPABASE_AUDIENCES: Comma-separated list of allowed audiences

Chat Configuration:
    MESSAGE_MAX_LENGTH: Maximum message body length in characters
    SHARE_TOKEN_BYTES: Entropy of generated share tokens (bytes)
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - DATABASE_URL is always required
    - SUPABASE_JWKS_URL, SUPABASE_ISSUER, SUPABASE_AUDIENCES are required in all environments
    - REELROOM_INTERNAL_SECRET is required in staging and prod only
    """

    reelroom_env: Environment = Field(default=Environment.LOCAL, alias="REELROOM_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    reelroom_internal_secret: str | None = Field(default=None, alias="REELROOM_INTERNAL_SECRET")

    # Realtime push (best effort)
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    realtime_publish_timeout_s: float = Field(default=2.0, alias="REALTIME_PUBLISH_TIMEOUT_S")

    # Supabase auth settings (required in all environments)
    supabase_jwks_url: str | None = Field(default=None, alias="SUPABASE_JWKS_URL")
    supabase_issuer: str | None = Field(default=None, alias="SUPABASE_ISSUER")
    supabase_audiences: str | None = Field(default=None, alias="SUPABASE_AUDIENCES")

    # Chat limits
    message_max_length: int = Field(default=10_000, alias="MESSAGE_MAX_LENGTH")
    share_token_bytes: int = Field(default=24, alias="SHARE_TOKEN_BYTES")

    log_json: bool = Field(default=True, alias="LOG_JSON")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure required settings are set for all environments."""
        missing_auth = []
        if not self.supabase_jwks_url:
            missing_auth.append("SUPABASE_JWKS_URL")
        if not self.supabase_issuer:
            missing_auth.append("SUPABASE_ISSUER")
        if not self.supabase_audiences:
            missing_auth.append("SUPABASE_AUDIENCES")

        if missing_auth:
            raise ValueError(
                f"Missing required Supabase auth settings: {', '.join(missing_auth)}. "
                "Set these environment variables or add them to .env."
            )

        if self.reelroom_env in (Environment.STAGING, Environment.PROD):
            if not self.reelroom_internal_secret:
                raise ValueError(
                    "REELROOM_INTERNAL_SECRET is required for "
                    f"REELROOM_ENV={self.reelroom_env.value}"
                )

        if self.message_max_length < 1:
            raise ValueError("MESSAGE_MAX_LENGTH must be >= 1")
        if self.realtime_publish_timeout_s <= 0:
            raise ValueError("REALTIME_PUBLISH_TIMEOUT_S must be > 0")

        return self

    @property
    def requires_internal_header(self) -> bool:
        """Whether requests must include the internal secret header."""
        return self.reelroom_env in (Environment.STAGING, Environment.PROD)

    @property
    def audience_list(self) -> list[str]:
        """Parse comma-separated audiences into a list."""
        if self.supabase_audiences:
            return [a.strip() for a in self.supabase_audiences.split(",") if a.strip()]
        return []

    @property
    def normalized_issuer(self) -> str | None:
        """Return issuer with trailing slash stripped."""
        if self.supabase_issuer:
            return self.supabase_issuer.rstrip("/")
        return None


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
