"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the token services and
the Graph gateway share one configuration surface, loaded once per process.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

from pydantic import AnyHttpUrl, Field, HttpUrl, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_SCOPES: tuple[str, ...] = (
    "openid",
    "profile",
    "email",
    "offline_access",
    "User.Read",
    "User.ReadBasic.All",
    "Calendars.Read",
    "Calendars.ReadWrite",
    "Mail.Read",
    "Mail.ReadWrite",
    "Mail.Send",
)


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


def _split_csv(value: str | tuple[str, ...] | list[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (tuple, list)):
        return tuple(value)
    return tuple(item.strip() for item in value.replace(" ", ",").split(",") if item.strip())


class MicrosoftSettings(BaseSettings):
    """Microsoft identity platform and Graph configuration."""

    model_config = SettingsConfigDict(populate_by_name=True)

    client_id: str = Field(..., alias="AUTH_MICROSOFT_ENTRA_ID_ID")
    client_secret: str = Field(..., alias="AUTH_MICROSOFT_ENTRA_ID_SECRET")
    tenant_id: str = Field(..., alias="TENANT_ID")
    redirect_uri: AnyHttpUrl = Field(..., alias="MICROSOFT_REDIRECT_URI")
    authority: str = Field(
        "https://login.microsoftonline.com",
        alias="MICROSOFT_AUTHORITY",
        description="Base URL of the identity platform; the tenant is appended.",
    )
    provider_id: str = Field(
        "microsoft-entra-id",
        alias="MICROSOFT_PROVIDER_ID",
        description="Stable identifier of the app registration linked to users.",
    )
    graph_base_url: str = Field(
        "https://graph.microsoft.com/v1.0", alias="GRAPH_BASE_URL"
    )
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        DEFAULT_SCOPES, alias="MICROSOFT_SCOPES"
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(cls, value):
        """Support providing scopes as a comma or space separated string."""
        return _split_csv(value)

    @property
    def token_endpoint(self) -> str:
        return f"{self.authority.rstrip('/')}/{self.tenant_id}/oauth2/v2.0/token"

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.authority.rstrip('/')}/{self.tenant_id}/oauth2/v2.0/authorize"


class SessionSettings(BaseSettings):
    """Signed session cookie configuration."""

    model_config = SettingsConfigDict(populate_by_name=True)

    secret: str = Field(..., alias="AUTH_SECRET")
    cookie_name: str = Field("portal_session", alias="SESSION_COOKIE_NAME")
    max_age_days: int = Field(30, alias="SESSION_MAX_AGE_DAYS")
    cookie_secure: bool = Field(True, alias="SESSION_COOKIE_SECURE")
    state_ttl_seconds: int = Field(900, alias="OAUTH_STATE_TTL")

    @property
    def max_age_seconds(self) -> int:
        return self.max_age_days * 24 * 60 * 60


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = SettingsConfigDict(populate_by_name=True)

    token_encryption_secret: Optional[str] = Field(
        None,
        alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    previous_token_encryption_secrets: Annotated[tuple[str, ...], NoDecode] = Field(
        (),
        alias="PREVIOUS_TOKEN_ENCRYPTION_SECRETS",
        description="Retired secrets still accepted for decryption.",
    )

    @field_validator("previous_token_encryption_secrets", mode="before")
    @classmethod
    def _split_secrets(cls, value):
        return _split_csv(value)


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    environment: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="APP_LOG_LEVEL")
    database_path: str = Field("data/portal.db", alias="PORTAL_DB_PATH")
    http_timeout_seconds: float = Field(15.0, alias="HTTP_TIMEOUT_SECONDS")
    token_refresh_buffer_seconds: int = Field(
        300, alias="TOKEN_REFRESH_BUFFER_SECONDS"
    )
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        alias="FRONTEND_BASE_URL",
        description="Optional URL for redirecting users back to the front-end.",
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    microsoft: MicrosoftSettings = Field(default_factory=MicrosoftSettings)


def _missing_variables(exc: ValidationError) -> list[str]:
    missing = []
    for error in exc.errors():
        if error.get("type") == "missing" and error.get("loc"):
            missing.append(str(error["loc"][-1]))
    return missing


def load_settings() -> AppSettings:
    """Build settings, logging loudly when required values are absent."""
    try:
        return AppSettings()  # type: ignore[call-arg]
    except ValidationError as exc:
        missing = _missing_variables(exc)
        if missing:
            logger.critical(
                "Missing required configuration: %s", ", ".join(sorted(missing))
            )
        else:
            logger.critical("Invalid configuration: %s", exc)
        raise


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return load_settings()


__all__ = [
    "AppSettings",
    "DEFAULT_SCOPES",
    "MicrosoftSettings",
    "SecuritySettings",
    "SessionSettings",
    "get_settings",
    "load_settings",
]
