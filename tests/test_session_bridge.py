from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import jwt
import pytest

from portal.core.errors import NoCredentialError, RefreshFailedError
from portal.models.identity import (
    REFRESH_ACCESS_TOKEN_ERROR,
    SessionIdentity,
    UserRecord,
    UserRole,
)
from portal.services.session import SessionBridge, SessionCodec
from portal.services.users import UserService

SECRET = "session-secret-long-enough-for-hs256-signing"


class FakeTokenSource:
    def __init__(self) -> None:
        self.error: Exception | None = None
        self.calls: list[str] = []

    async def resolve(self, user_id: str, *, rejected_token=None) -> str:
        self.calls.append(user_id)
        if self.error is not None:
            raise self.error
        return "access-token"


class FrozenClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def users(sqlite_store) -> UserService:
    return UserService(sqlite_store)


@pytest.fixture()
def tokens() -> FakeTokenSource:
    return FakeTokenSource()


@pytest.fixture()
def codec() -> SessionCodec:
    return SessionCodec(secret=SECRET, max_age_seconds=30 * 24 * 3600)


@pytest.fixture()
def bridge(codec, users, tokens) -> SessionBridge:
    return SessionBridge(codec, users, tokens)


def _signed_in(users: UserService) -> UserRecord:
    return users.upsert_signed_in_user(
        email="grace@example.com", name="Grace", aad_object_id="oid-1"
    )


def test_new_users_start_with_user_role(users) -> None:
    user = _signed_in(users)

    assert user.role is UserRole.USER
    assert users.get(user.id).role is UserRole.USER


def test_sign_in_keeps_existing_role(users) -> None:
    user = _signed_in(users)
    users.set_role(user.id, UserRole.MANAGER)

    again = users.upsert_signed_in_user(
        email="GRACE@example.com", name="Grace H.", aad_object_id="oid-1"
    )

    assert again.id == user.id
    assert again.role is UserRole.MANAGER
    assert again.name == "Grace H."


def test_start_session_seeds_role_from_store(bridge, users) -> None:
    user = _signed_in(users)
    users.set_role(user.id, UserRole.ADMIN)

    resolution = bridge.start_session(user)

    assert resolution.identity.role is UserRole.ADMIN
    assert resolution.changed is True


def test_start_session_defaults_to_user_for_unknown_record(bridge) -> None:
    ghost = UserRecord(id="ghost", email="ghost@example.com", role=UserRole.ADMIN)

    resolution = bridge.start_session(ghost)

    assert resolution.identity.role is UserRole.USER


def test_session_cookie_never_carries_tokens(bridge, users) -> None:
    resolution = bridge.start_session(_signed_in(users))

    claims = jwt.decode(resolution.token, SECRET, algorithms=["HS256"])

    assert set(claims) <= {"sub", "email", "name", "role", "iat", "exp", "error"}


@pytest.mark.asyncio
async def test_missing_or_invalid_cookie_resolves_to_none(bridge) -> None:
    assert await bridge.current_identity(None) is None
    assert await bridge.current_identity("garbage") is None

    forged = SessionCodec(secret="x" * 40, max_age_seconds=60).encode(
        SessionIdentity(user_id="u", email="u@example.com")
    )
    assert await bridge.current_identity(forged) is None


@pytest.mark.asyncio
async def test_expired_cookie_resolves_to_none(users, tokens) -> None:
    clock = FrozenClock(1_700_000_000)
    codec = SessionCodec(secret=SECRET, max_age_seconds=60, clock=clock)
    bridge = SessionBridge(codec, users, tokens)
    token = bridge.start_session(_signed_in(users)).token

    clock.now += 3600

    assert await bridge.current_identity(token) is None


@pytest.mark.asyncio
async def test_unchanged_session_is_not_reissued(bridge, users) -> None:
    token = bridge.start_session(_signed_in(users)).token

    resolution = await bridge.current_identity(token)

    assert resolution.changed is False
    assert resolution.token == token


@pytest.mark.asyncio
async def test_role_change_is_picked_up_on_next_request(bridge, users, codec) -> None:
    user = _signed_in(users)
    token = bridge.start_session(user).token
    _, issued_at = codec.decode(token)

    users.set_role(user.id, UserRole.MANAGER)
    resolution = await bridge.current_identity(token)

    assert resolution.changed is True
    assert resolution.identity.role is UserRole.MANAGER
    healed, healed_iat = codec.decode(resolution.token)
    assert healed.role is UserRole.MANAGER
    assert healed_iat == issued_at


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [RefreshFailedError("invalid_grant", status_code=400), NoCredentialError("u")],
)
async def test_lost_graph_access_marks_session_degraded(bridge, users, tokens, error) -> None:
    token = bridge.start_session(_signed_in(users)).token
    tokens.error = error

    resolution = await bridge.current_identity(token)

    assert resolution is not None
    assert resolution.identity.error == REFRESH_ACCESS_TOKEN_ERROR
    assert resolution.changed is True


@pytest.mark.asyncio
async def test_degraded_flag_clears_after_successful_resolution(bridge, users, tokens) -> None:
    token = bridge.start_session(_signed_in(users)).token
    tokens.error = RefreshFailedError("invalid_grant")
    degraded = await bridge.current_identity(token)

    tokens.error = None
    recovered = await bridge.current_identity(degraded.token)

    assert recovered.identity.error is None
    assert recovered.changed is True


@pytest.mark.asyncio
async def test_degraded_session_is_not_resigned_every_request(bridge, users, tokens) -> None:
    token = bridge.start_session(_signed_in(users)).token
    tokens.error = RefreshFailedError("invalid_grant")
    degraded = await bridge.current_identity(token)

    again = await bridge.current_identity(degraded.token)

    assert again.changed is False
    assert again.identity.error == REFRESH_ACCESS_TOKEN_ERROR
