"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from portal.clients import GraphClient, MicrosoftOAuthClient, OAuthStateEncoder, SQLiteStore
from portal.core.config import AppSettings, get_settings
from portal.services import (
    AccessTokenResolver,
    CredentialStore,
    SessionBridge,
    SessionCodec,
    TokenCipherService,
    UserService,
)


@lru_cache()
def get_app_settings() -> AppSettings:
    """Settings shared by every factory and route, built once per process."""
    return get_settings()


@lru_cache()
def get_oauth_state_encoder() -> OAuthStateEncoder:
    """Provide an OAuth state encoder keyed by the session secret."""
    settings = get_app_settings()
    return OAuthStateEncoder(secret_key=settings.session.secret)


@lru_cache()
def get_microsoft_oauth_client() -> MicrosoftOAuthClient:
    """Create a singleton Microsoft OAuth client."""
    settings = get_app_settings()
    return MicrosoftOAuthClient(settings.microsoft, timeout=settings.http_timeout_seconds)


@lru_cache()
def get_sqlite_store() -> SQLiteStore:
    """Provide shared SQLite record store."""
    settings = get_app_settings()
    return SQLiteStore(settings.database_path)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = get_app_settings()
    secret = settings.security.token_encryption_secret or settings.session.secret
    return TokenCipherService(
        secret=secret,
        previous_secrets=settings.security.previous_token_encryption_secrets,
    )


@lru_cache()
def get_credential_store() -> CredentialStore:
    """Provide the encrypted credential store for the configured provider."""
    settings = get_app_settings()
    return CredentialStore(
        get_sqlite_store(),
        get_token_cipher_service(),
        provider_id=settings.microsoft.provider_id,
    )


@lru_cache()
def get_user_service() -> UserService:
    return UserService(get_sqlite_store())


@lru_cache()
def get_access_token_resolver() -> AccessTokenResolver:
    """Provide the process-wide resolver so refreshes are shared per user."""
    settings = get_app_settings()
    return AccessTokenResolver(
        get_credential_store(),
        get_microsoft_oauth_client(),
        buffer_seconds=settings.token_refresh_buffer_seconds,
    )


@lru_cache()
def get_graph_client() -> GraphClient:
    """Provide the Microsoft Graph gateway."""
    settings = get_app_settings()
    return GraphClient(
        get_access_token_resolver(),
        base_url=settings.microsoft.graph_base_url,
        timeout=settings.http_timeout_seconds,
    )


@lru_cache()
def get_session_codec() -> SessionCodec:
    settings = get_app_settings()
    return SessionCodec(
        secret=settings.session.secret,
        max_age_seconds=settings.session.max_age_seconds,
    )


@lru_cache()
def get_session_bridge() -> SessionBridge:
    """Provide the cookie-to-identity bridge."""
    return SessionBridge(
        get_session_codec(),
        get_user_service(),
        get_access_token_resolver(),
    )


__all__ = [
    "get_access_token_resolver",
    "get_app_settings",
    "get_credential_store",
    "get_graph_client",
    "get_microsoft_oauth_client",
    "get_oauth_state_encoder",
    "get_session_bridge",
    "get_session_codec",
    "get_sqlite_store",
    "get_token_cipher_service",
    "get_user_service",
]
