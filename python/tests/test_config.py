"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from reelroom.config import Environment, Settings

SUPABASE_VARS = ("SUPABASE_JWKS_URL", "SUPABASE_ISSUER", "SUPABASE_AUDIENCES")


def _make_settings(**overrides) -> Settings:
    """Build a Settings instance with test defaults + overrides."""
    defaults = {
        "DATABASE_URL": "postgresql+psycopg://localhost/test",
        "REELROOM_ENV": "test",
        "SUPABASE_JWKS_URL": "http://localhost:54321/auth/v1/.well-known/jwks.json",
        "SUPABASE_ISSUER": "http://localhost:54321/auth/v1/",
        "SUPABASE_AUDIENCES": "authenticated, service ,",
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


class TestSettingsDefaults:
    def test_defaults(self):
        s = _make_settings()

        assert s.reelroom_env == Environment.TEST
        assert s.redis_url is None
        assert s.message_max_length == 10_000
        assert s.share_token_bytes == 24
        assert s.requires_internal_header is False

    def test_audience_list_is_trimmed(self):
        assert _make_settings().audience_list == ["authenticated", "service"]

    def test_issuer_trailing_slash_stripped(self):
        assert _make_settings().normalized_issuer == "http://localhost:54321/auth/v1"


class TestSettingsValidation:
    @pytest.mark.parametrize("missing", SUPABASE_VARS)
    def test_supabase_settings_required(self, monkeypatch, missing):
        monkeypatch.delenv(missing, raising=False)

        with pytest.raises(ValidationError, match=missing):
            _make_settings(**{missing: None})

    @pytest.mark.parametrize("env", ["staging", "prod"])
    def test_internal_secret_required_outside_dev(self, monkeypatch, env):
        monkeypatch.delenv("REELROOM_INTERNAL_SECRET", raising=False)

        with pytest.raises(ValidationError, match="REELROOM_INTERNAL_SECRET"):
            _make_settings(REELROOM_ENV=env)

    def test_staging_with_secret_requires_header(self):
        s = _make_settings(REELROOM_ENV="staging", REELROOM_INTERNAL_SECRET="s3cret")

        assert s.requires_internal_header is True

    def test_zero_message_length_rejected(self):
        with pytest.raises(ValidationError, match="MESSAGE_MAX_LENGTH"):
            _make_settings(MESSAGE_MAX_LENGTH=0)

    def test_non_positive_publish_timeout_rejected(self):
        with pytest.raises(ValidationError, match="REALTIME_PUBLISH_TIMEOUT_S"):
            _make_settings(REALTIME_PUBLISH_TIMEOUT_S=0)
