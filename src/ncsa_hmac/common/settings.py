"""Configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

HashName = Literal["sha256", "sha384", "sha512"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="NCSA_HMAC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server-side auth
    auth_mode: Literal["none", "hmac"] = Field(
        default="hmac",
        description="Authentication mode for inbound requests",
    )
    auth_exempt_paths: tuple[str, ...] = Field(
        default=("/health", "/metrics"),
        description="Paths exempt from authentication",
    )
    accept_digests: tuple[HashName, ...] = Field(
        default=("sha512",),
        description="Hash algorithms accepted when verifying signatures",
    )
    hmac_keys: dict[str, str] = Field(
        default_factory=dict,
        description="Mapping of public id to shared secret (JSON)",
    )
    hmac_ttl_seconds: int | None = Field(
        default=None,
        description="Max age (seconds) of the Date header; None disables the check",
    )
    legacy_empty_body_digest: bool = Field(
        default=False,
        description="Send the MD5 of an empty body instead of an empty digest",
    )

    # Client-side signing
    sign_with: HashName = Field(
        default="sha512",
        description="Hash algorithm used when signing outbound requests",
    )
    client_base_url: str = Field(
        default="http://localhost:8080",
        description="Base URL for signed outbound requests",
    )
    client_public_id: str | None = Field(
        default=None,
        description="Public id presented by the client",
    )
    client_private_key: str | None = Field(
        default=None,
        description="Shared secret used by the client",
    )
    http_timeout: float = Field(
        default=30.0,
        description="HTTP request timeout in seconds",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Log level",
    )
    log_json: bool = Field(
        default=False,
        description="Emit JSON log lines",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
