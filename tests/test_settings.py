"""Tests for environment configuration."""

import pytest
from pydantic import ValidationError

from ncsa_hmac.common.auth import SettingsKeyResolver
from ncsa_hmac.common.settings import Settings, get_settings


def test_defaults(monkeypatch):
    """Test default settings."""
    monkeypatch.delenv("NCSA_HMAC_SIGN_WITH", raising=False)
    settings = Settings()

    assert settings.auth_mode == "hmac"
    assert settings.sign_with == "sha512"
    assert settings.accept_digests == ("sha512",)
    assert settings.hmac_ttl_seconds is None
    assert settings.legacy_empty_body_digest is False


def test_keys_from_env(monkeypatch):
    """Test settings from the environment."""
    monkeypatch.setenv("NCSA_HMAC_HMAC_KEYS", '{"widget-client": "secret123"}')
    monkeypatch.setenv("NCSA_HMAC_ACCEPT_DIGESTS", '["sha512", "sha256"]')
    monkeypatch.setenv("NCSA_HMAC_HMAC_TTL_SECONDS", "300")

    settings = Settings()

    assert SettingsKeyResolver(settings).resolve("widget-client") == "secret123"
    assert settings.accept_digests == ("sha512", "sha256")
    assert settings.hmac_ttl_seconds == 300


def test_rejects_unsupported_hash():
    """Test an unsupported signing hash."""
    with pytest.raises(ValidationError):
        Settings(sign_with="md5")


def test_get_settings_cached():
    """Test that settings are cached."""
    get_settings.cache_clear()
    assert get_settings() is get_settings()
    get_settings.cache_clear()
