from __future__ import annotations

import os
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sessionkeeper.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the token and session lifecycle manager."""

    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_socket_timeout_seconds: float = env_field(
        5.0,
        "REDIS_SOCKET_TIMEOUT_SECONDS",
        description="Network timeout for every Redis command; expiry surfaces as InfrastructureError",
    )
    use_memory_store: bool = env_field(
        False,
        "USE_MEMORY_STORE",
        description="Keep sessions, blacklist and rate counters in process memory (tests and local dev only)",
    )
    test_mode: bool = env_field(False, "TEST_MODE")

    jwt_access_secret: str = env_field(None, "JWT_ACCESS_SECRET", validate_default=True)
    jwt_refresh_secret: str = env_field(None, "JWT_REFRESH_SECRET", validate_default=True)
    jwt_issuer: str = env_field("sessionkeeper", "JWT_ISSUER")
    access_token_ttl_seconds: int = env_field(15 * 60, "ACCESS_TOKEN_TTL_SECONDS")
    refresh_token_ttl_seconds: int = env_field(7 * 24 * 60 * 60, "REFRESH_TOKEN_TTL_SECONDS")

    max_sessions_per_user: int = env_field(50, "MAX_SESSIONS_PER_USER")

    rate_limit_window_ms: int = env_field(15 * 60 * 1000, "RATE_LIMIT_WINDOW_MS")
    rate_limit_max_requests: int = env_field(5, "RATE_LIMIT_MAX_REQUESTS")
    global_rate_limit_window_ms: int = env_field(15 * 60 * 1000, "GLOBAL_RATE_LIMIT_WINDOW_MS")
    global_rate_limit_max_requests: int = env_field(100, "GLOBAL_RATE_LIMIT_MAX_REQUESTS")
    rate_limit_fail_open: bool = env_field(
        False,
        "RATE_LIMIT_FAIL_OPEN",
        description="Allow requests through when the rate counter store is unreachable",
    )

    cookie_secure: bool = env_field(True, "COOKIE_SECURE")
    cookie_samesite: str = env_field("strict", "COOKIE_SAMESITE")
    access_cookie_name: str = env_field("access_token", "ACCESS_COOKIE_NAME")
    refresh_cookie_name: str = env_field("refresh_token", "REFRESH_COOKIE_NAME")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("jwt_access_secret", "jwt_refresh_secret", mode="before")
    @classmethod
    def _ensure_secret(cls, value: str | None, info) -> str:
        if value:
            return value
        # Tokens signed with a generated secret do not survive a restart
        logger.warning(
            "jwt_secret_generated",
            field=info.field_name,
            message="No signing key configured; generated an ephemeral one for this process",
        )
        return secrets.token_urlsafe(64)

    @field_validator(
        "access_token_ttl_seconds",
        "refresh_token_ttl_seconds",
        "max_sessions_per_user",
        "rate_limit_window_ms",
        "global_rate_limit_window_ms",
    )
    @classmethod
    def _ensure_positive(cls, value: int, info) -> int:
        if value <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return value

    @field_validator("cookie_samesite")
    @classmethod
    def _validate_samesite(cls, value: str) -> str:
        lowered = value.lower()
        if lowered not in {"strict", "lax", "none"}:
            raise ValueError("cookie_samesite must be strict, lax, or none")
        return lowered

    @model_validator(mode="after")
    def _check_token_settings(self) -> "Settings":
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("access and refresh tokens must be signed with distinct secrets")
        if self.refresh_token_ttl_seconds < self.access_token_ttl_seconds:
            raise ValueError("refresh token lifetime must not be shorter than access token lifetime")
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
