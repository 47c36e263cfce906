from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from usersession.logging import get_logger

logger = get_logger(__name__)


class IdentityBackend(str, Enum):
    """Where login, profile and refresh calls are sent."""

    HTTP = "http"
    LOCAL = "local"


class CredentialBackend(str, Enum):
    """Durable home of the last accepted session."""

    MEMORY = "memory"
    FILE = "file"
    REDIS = "redis"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the session coordinator and its collaborators."""

    client_identity: str | None = env_field(
        None,
        "CLIENT_IDENTITY",
        description="Client id bound to the default coordinator at startup",
    )
    identity_backend: IdentityBackend = env_field(IdentityBackend.HTTP, "IDENTITY_BACKEND")
    identity_base_url: str = env_field("http://localhost:8080/", "IDENTITY_BASE_URL")
    identity_timeout_seconds: float = env_field(30.0, "IDENTITY_TIMEOUT_SECONDS")
    refresh_threshold_seconds: int = env_field(
        60 * 60,
        "REFRESH_THRESHOLD_SECONDS",
        description="Refresh once less than this many seconds of the session lifetime remain",
    )
    session_lifetime_seconds: int = env_field(
        10 * 60 * 60,
        "SESSION_LIFETIME_SECONDS",
        description="Lifetime assumed when the identity service does not report one",
    )
    credential_backend: CredentialBackend = env_field(
        CredentialBackend.FILE, "CREDENTIAL_BACKEND"
    )
    state_dir: str = env_field("~/.usersession", "STATE_DIR")
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")

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

    @field_validator("identity_backend")
    @classmethod
    def _validate_identity_backend(cls, value: IdentityBackend) -> IdentityBackend:
        return IdentityBackend(value)

    @field_validator("credential_backend")
    @classmethod
    def _validate_credential_backend(cls, value: CredentialBackend) -> CredentialBackend:
        return CredentialBackend(value)

    @field_validator("identity_base_url")
    @classmethod
    def _ensure_trailing_slash(cls, value: str) -> str:
        # httpx joins relative paths onto the last path segment otherwise
        return value if value.endswith("/") else value + "/"

    @field_validator("refresh_threshold_seconds", "session_lifetime_seconds")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir).expanduser()


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        logger.debug(
            "settings_loaded",
            identity_backend=_settings_cache.identity_backend.value,
            credential_backend=_settings_cache.credential_backend.value,
        )
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
