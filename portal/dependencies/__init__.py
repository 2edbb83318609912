"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_access_token_resolver,
    get_app_settings,
    get_credential_store,
    get_graph_client,
    get_microsoft_oauth_client,
    get_oauth_state_encoder,
    get_session_bridge,
    get_session_codec,
    get_sqlite_store,
    get_token_cipher_service,
    get_user_service,
)
from .session import (
    CurrentSession,
    clear_session_cookie,
    get_current_session,
    get_optional_session,
    set_session_cookie,
)

__all__ = [
    "CurrentSession",
    "clear_session_cookie",
    "get_access_token_resolver",
    "get_app_settings",
    "get_credential_store",
    "get_current_session",
    "get_graph_client",
    "get_microsoft_oauth_client",
    "get_oauth_state_encoder",
    "get_optional_session",
    "get_session_bridge",
    "get_session_codec",
    "get_sqlite_store",
    "get_token_cipher_service",
    "get_user_service",
    "set_session_cookie",
]
