try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timezone

import httpx
import pytest

from portal.clients.graph import InvalidCursorError
from portal.core.errors import (
    AuthExpiredError,
    ForbiddenError,
    GatewayError,
    NoCredentialError,
)
from portal.main import app
from portal.schemas.graph import (
    DateTimeZone,
    DownloadedContent,
    DriveItem,
    Event,
    Group,
    MessagePage,
)
from portal.services.session import SessionBridge, SessionCodec
from portal.services.users import UserService

SESSION_SECRET = "route-test-session-secret-with-enough-length"


def _event(event_id: str) -> Event:
    slot = DateTimeZone(date_time="2024-05-01T09:00:00")
    return Event(id=event_id, subject="Pipeline sync", start=slot, end=slot)


class FakeGraph:
    """Async stand-in for GraphClient; ``failures`` maps method name to error."""

    def __init__(self) -> None:
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple] = []

    def _record(self, name: str, *args, **kwargs) -> None:
        self.calls.append((name, args, kwargs))
        if name in self.failures:
            raise self.failures[name]

    async def list_events(self, user_id):
        self._record("list_events", user_id)
        return [_event("evt-1")]

    async def create_event(self, user_id, **fields):
        self._record("create_event", user_id, **fields)
        return _event("evt-new")

    async def update_event(self, user_id, event_id, **fields):
        self._record("update_event", user_id, event_id, **fields)
        return _event(event_id)

    async def delete_event(self, user_id, event_id):
        self._record("delete_event", user_id, event_id)

    async def list_my_groups(self, user_id):
        self._record("list_my_groups", user_id)
        return [Group(id="g1", display_name="Sales")]

    async def list_messages(self, user_id, **kwargs):
        self._record("list_messages", user_id, **kwargs)
        return MessagePage(messages=[], next_link=None)

    async def send_mail(self, user_id, **kwargs):
        self._record("send_mail", user_id, **kwargs)

    async def delete_message(self, user_id, message_id):
        self._record("delete_message", user_id, message_id)

    async def get_user_photo(self, user_id, target_user):
        self._record("get_user_photo", user_id, target_user)
        return DownloadedContent(content=b"\xff\xd8jpeg", content_type="image/jpeg")

    async def upload_file(self, user_id, site_id, parent_id, file_name, content):
        self._record("upload_file", user_id, site_id, parent_id, file_name, content)
        return DriveItem(id="item-1", name=file_name, size=len(content))

    async def list_all_mail_folders(self, user_id):
        self._record("list_all_mail_folders", user_id)
        return []

    async def list_mail_folders(self, user_id):
        self._record("list_mail_folders", user_id)
        return []


class FakeTokenSource:
    async def resolve(self, user_id: str, *, rejected_token=None) -> str:
        return "access-token"


@pytest.fixture()
def graph_overrides(sqlite_store):
    from portal import dependencies

    users = UserService(sqlite_store)
    user = users.upsert_signed_in_user(
        email="lin@example.com", name="Lin", aad_object_id=None
    )
    bridge = SessionBridge(
        SessionCodec(secret=SESSION_SECRET, max_age_seconds=3600), users, FakeTokenSource()
    )
    graph = FakeGraph()

    app.dependency_overrides.update(
        {
            dependencies.get_graph_client: lambda: graph,
            dependencies.get_session_bridge: lambda: bridge,
        }
    )

    yield graph, user, bridge.start_session(user).token

    app.dependency_overrides.clear()


def _client(session_token: str | None = None) -> httpx.AsyncClient:
    client = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    )
    if session_token:
        client.cookies.set("portal_session", session_token)
    return client


@pytest.mark.anyio
async def test_graph_routes_require_a_session(graph_overrides) -> None:
    graph, _, _ = graph_overrides

    async with _client() as client:
        response = await client.get("/api/calendar/events")

    assert response.status_code == 401
    assert graph.calls == []


@pytest.mark.anyio
async def test_calendar_events_use_session_user(graph_overrides) -> None:
    graph, user, token = graph_overrides

    async with _client(token) as client:
        response = await client.get("/api/calendar/events")

    assert response.status_code == 200
    assert response.json()[0]["id"] == "evt-1"
    assert graph.calls == [("list_events", (user.id,), {})]


@pytest.mark.anyio
@pytest.mark.parametrize("error", [NoCredentialError("u"), AuthExpiredError("401", status_code=401)])
async def test_lost_microsoft_access_asks_for_reauthentication(graph_overrides, error) -> None:
    graph, _, token = graph_overrides
    graph.failures["list_events"] = error

    async with _client(token) as client:
        response = await client.get("/api/calendar/events")

    assert response.status_code == 401
    assert response.json()["error"] == "reauthentication_required"
    assert response.json()["detail"] == "Please sign out and sign in again."


@pytest.mark.anyio
async def test_forbidden_and_gateway_errors_are_rendered_distinctly(graph_overrides) -> None:
    graph, _, token = graph_overrides

    async with _client(token) as client:
        graph.failures["list_messages"] = ForbiddenError("denied", status_code=403)
        forbidden = await client.get("/api/mail/messages")
        graph.failures["list_messages"] = GatewayError("boom", status_code=503)
        upstream = await client.get("/api/mail/messages")

    assert forbidden.status_code == 403
    assert upstream.status_code == 502
    assert upstream.json()["upstream_status"] == 503


@pytest.mark.anyio
async def test_foreign_cursor_is_a_bad_request(graph_overrides) -> None:
    graph, _, token = graph_overrides
    graph.failures["list_messages"] = InvalidCursorError("not graph")

    async with _client(token) as client:
        response = await client.get(
            "/api/mail/messages", params={"next_link": "https://evil.example"}
        )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_cursor"


@pytest.mark.anyio
async def test_dashboard_degrades_each_widget_independently(graph_overrides) -> None:
    graph, _, token = graph_overrides
    graph.failures["list_events"] = GatewayError("Graph 500", status_code=500)

    async with _client(token) as client:
        response = await client.get("/api/dashboard")

    body = response.json()
    assert response.status_code == 200
    assert body["events"] == {"items": [], "degraded": True, "reason": "Graph 500"}
    assert body["groups"]["degraded"] is False
    assert body["groups"]["items"][0]["id"] == "g1"


@pytest.mark.anyio
async def test_dashboard_does_not_hide_permission_errors(graph_overrides) -> None:
    graph, _, token = graph_overrides
    graph.failures["list_my_groups"] = ForbiddenError("denied", status_code=403)

    async with _client(token) as client:
        response = await client.get("/api/dashboard")

    assert response.status_code == 403


@pytest.mark.anyio
async def test_send_mail_forwards_payload(graph_overrides) -> None:
    graph, user, token = graph_overrides

    async with _client(token) as client:
        response = await client.post(
            "/api/mail/send",
            json={"subject": "Offer", "html_body": "<p>Hi</p>", "to": ["a@example.com"]},
        )

    assert response.status_code == 202
    name, args, kwargs = graph.calls[0]
    assert name == "send_mail"
    assert kwargs["to"] == ["a@example.com"]
    assert kwargs["save_to_sent_items"] is False


@pytest.mark.anyio
async def test_send_mail_requires_recipients(graph_overrides) -> None:
    graph, _, token = graph_overrides

    async with _client(token) as client:
        response = await client.post("/api/mail/send", json={"subject": "x", "to": []})

    assert response.status_code == 422
    assert graph.calls == []


@pytest.mark.anyio
async def test_mail_folders_recursive_flag(graph_overrides) -> None:
    graph, _, token = graph_overrides

    async with _client(token) as client:
        await client.get("/api/mail/folders", params={"recursive": "true"})
        await client.get("/api/mail/folders")

    assert [call[0] for call in graph.calls] == ["list_all_mail_folders", "list_mail_folders"]


@pytest.mark.anyio
async def test_avatar_streams_bytes_with_cache_header(graph_overrides) -> None:
    graph, _, token = graph_overrides

    async with _client(token) as client:
        response = await client.get("/api/users/ada@example.com/avatar")

    assert response.status_code == 200
    assert response.content == b"\xff\xd8jpeg"
    assert response.headers["content-type"] == "image/jpeg"
    assert "max-age=3600" in response.headers["cache-control"]


@pytest.mark.anyio
async def test_upload_passes_raw_body(graph_overrides) -> None:
    graph, user, token = graph_overrides

    async with _client(token) as client:
        response = await client.post(
            "/api/sharepoint/upload",
            params={"site_id": "site-1", "file_name": "deck.pptx"},
            content=b"PK\x03\x04",
        )

    assert response.status_code == 201
    assert response.json()["name"] == "deck.pptx"
    assert graph.calls[0] == (
        "upload_file",
        (user.id, "site-1", "root", "deck.pptx", b"PK\x03\x04"),
        {},
    )


@pytest.mark.anyio
async def test_empty_upload_is_rejected(graph_overrides) -> None:
    graph, _, token = graph_overrides

    async with _client(token) as client:
        response = await client.post(
            "/api/sharepoint/upload",
            params={"site_id": "site-1", "file_name": "empty.txt"},
            content=b"",
        )

    assert response.status_code == 400
    assert graph.calls == []


@pytest.mark.anyio
async def test_delete_message(graph_overrides) -> None:
    graph, user, token = graph_overrides

    async with _client(token) as client:
        response = await client.delete("/api/mail/messages/AAMk%3D%3D")

    assert response.json() == {"status": "deleted"}
    assert graph.calls == [("delete_message", (user.id, "AAMk=="), {})]


EVENT_BODY = {
    "title": "Pipeline review",
    "start": "2024-05-01T09:00:00+02:00",
    "end": "2024-05-01T10:00:00+02:00",
    "attendees": ["ada@example.com"],
    "is_online_meeting": True,
}


@pytest.mark.anyio
async def test_create_event_passes_utc_fields(graph_overrides) -> None:
    graph, user, token = graph_overrides

    async with _client(token) as client:
        response = await client.post("/api/calendar/events", json=EVENT_BODY)

    assert response.status_code == 201
    assert response.json()["id"] == "evt-new"
    name, args, fields = graph.calls[0]
    assert (name, args) == ("create_event", (user.id,))
    assert fields["subject"] == "Pipeline review"
    assert fields["start"] == datetime(2024, 5, 1, 7, 0, tzinfo=timezone.utc)
    assert fields["show_as"] == "busy"
    assert fields["is_online_meeting"] is True


@pytest.mark.anyio
async def test_event_ending_before_start_is_a_validation_error(graph_overrides) -> None:
    graph, _, token = graph_overrides
    body = {**EVENT_BODY, "end": "2024-05-01T08:00:00+02:00"}

    async with _client(token) as client:
        response = await client.post("/api/calendar/events", json=body)

    assert response.status_code == 422
    assert graph.calls == []


@pytest.mark.anyio
async def test_update_and_delete_event(graph_overrides) -> None:
    graph, user, token = graph_overrides

    async with _client(token) as client:
        updated = await client.patch("/api/calendar/events/evt-1", json=EVENT_BODY)
        deleted = await client.delete("/api/calendar/events/evt-1")

    assert updated.status_code == 200
    assert updated.json()["id"] == "evt-1"
    assert deleted.json() == {"status": "deleted"}
    assert [(name, args) for name, args, _ in graph.calls] == [
        ("update_event", (user.id, "evt-1")),
        ("delete_event", (user.id, "evt-1")),
    ]


@pytest.mark.anyio
async def test_failed_event_write_is_reported_not_degraded(graph_overrides) -> None:
    graph, _, token = graph_overrides
    graph.failures["create_event"] = GatewayError("Graph 500", status_code=500)

    async with _client(token) as client:
        response = await client.post("/api/calendar/events", json=EVENT_BODY)

    assert response.status_code == 502
    assert response.json()["error"] == "graph_error"
