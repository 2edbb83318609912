"""
Domain models for Microsoft credential persistence.

``expires_at`` is always epoch milliseconds.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field, field_validator

# Anything below this is a second-based timestamp (it would be 1973 in ms).
EPOCH_MS_THRESHOLD = 10**11


def now_ms() -> int:
    return int(time.time() * 1000)


def normalize_epoch_ms(value: int | float) -> int:
    """Convert a legacy second-based timestamp to milliseconds."""
    value = int(value)
    if 0 < value < EPOCH_MS_THRESHOLD:
        return value * 1000
    return value


class Credential(BaseModel):
    """A user's linkage to the Microsoft identity platform."""

    user_id: str = Field(..., description="Owning user identifier.")
    provider_id: str = Field(..., description="App registration identifier.")
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: int = Field(..., description="Access token expiry, epoch ms.")
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    @field_validator("expires_at")
    @classmethod
    def _require_milliseconds(cls, value: int) -> int:
        if 0 < value < EPOCH_MS_THRESHOLD:
            raise ValueError("expires_at must be epoch milliseconds")
        return value

    def seconds_until_expiry(self, at_ms: int | None = None) -> int:
        reference = now_ms() if at_ms is None else at_ms
        return (self.expires_at - reference) // 1000


@dataclass(frozen=True)
class TokenSet:
    """Tokens issued by the identity platform for one grant."""

    access_token: str
    refresh_token: Optional[str]
    expires_at: int


__all__ = [
    "Credential",
    "EPOCH_MS_THRESHOLD",
    "TokenSet",
    "normalize_epoch_ms",
    "now_ms",
]
