"""Expose constructed client wrappers."""

from .graph import GraphClient, InvalidCursorError
from .microsoft_auth import (
    MicrosoftOAuthClient,
    OAuthStateEncoder,
    OAuthTokenExchangeError,
    SignInResult,
)
from .sqlite_store import SQLiteStore

__all__ = [
    "GraphClient",
    "InvalidCursorError",
    "MicrosoftOAuthClient",
    "OAuthStateEncoder",
    "OAuthTokenExchangeError",
    "SQLiteStore",
    "SignInResult",
]
