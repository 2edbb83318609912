"""Service layer: credential persistence, token resolution and sessions."""

from .access_tokens import AccessTokenResolver
from .credential_store import CredentialStore
from .session import SessionBridge, SessionCodec, SessionResolution
from .token_cipher import TokenCipherService
from .users import UserService

__all__ = [
    "AccessTokenResolver",
    "CredentialStore",
    "SessionBridge",
    "SessionCodec",
    "SessionResolution",
    "TokenCipherService",
    "UserService",
]
