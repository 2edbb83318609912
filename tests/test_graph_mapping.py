from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime

import pytest

from portal.clients.graph_mapping import (
    build_event_payload,
    is_group,
    map_drive_item,
    map_email,
    map_event,
    map_schedule,
)
from portal.core.errors import GatewayError


def test_map_event_flattens_location_and_attendees() -> None:
    event = map_event(
        {
            "id": "evt-1",
            "subject": "Quarterly review",
            "start": {"dateTime": "2024-05-01T09:00:00.0000000", "timeZone": "UTC"},
            "end": {"dateTime": "2024-05-01T10:00:00.0000000", "timeZone": "UTC"},
            "location": {"displayName": "Room 4"},
            "attendees": [
                {"type": "required", "emailAddress": {"name": "Ada", "address": "ada@example.com"}},
                {"type": "optional"},
            ],
            "isAllDay": False,
        }
    )

    assert event.location == "Room 4"
    assert [a.email.address for a in event.attendees] == ["ada@example.com"]
    assert event.start.time_zone == "UTC"


def test_map_event_without_id_is_a_gateway_error() -> None:
    with pytest.raises(GatewayError):
        map_event({"start": {"dateTime": "x"}, "end": {"dateTime": "y"}})


def test_map_email_normalizes_body_type_and_sender() -> None:
    email = map_email(
        {
            "id": "msg-1",
            "subject": None,
            "from": {"emailAddress": {"name": "Bob", "address": "bob@example.com"}},
            "toRecipients": [{"emailAddress": {"address": "ada@example.com"}}],
            "body": {"contentType": "HTML", "content": "<p>Hi</p>"},
            "isRead": True,
        }
    )

    assert email.subject == ""
    assert email.sender.address == "bob@example.com"
    assert email.body_content_type == "html"
    assert email.is_read is True
    assert email.cc_recipients == []


def test_map_schedule_accepts_string_locations_and_errors() -> None:
    schedule = map_schedule(
        {
            "scheduleId": "ada@example.com",
            "availabilityView": "0220",
            "scheduleItems": [
                {
                    "status": "busy",
                    "location": "Teams",
                    "start": {"dateTime": "2024-05-01T09:00:00", "timeZone": "UTC"},
                    "end": {"dateTime": "2024-05-01T10:00:00", "timeZone": "UTC"},
                }
            ],
            "error": {"message": "Partial data"},
        }
    )

    assert schedule.items[0].location == "Teams"
    assert schedule.error == "Partial data"


def test_map_drive_item_distinguishes_folders_from_files() -> None:
    folder = map_drive_item({"id": "f1", "name": "Contracts", "folder": {"childCount": 3}})
    document = map_drive_item(
        {
            "id": "d1",
            "name": "offer.docx",
            "size": 2048,
            "file": {"mimeType": "application/vnd.openxmlformats"},
            "parentReference": {"driveId": "drive-1", "id": "f1", "path": "/drive/root:/Contracts"},
        }
    )

    assert folder.is_folder is True and folder.child_count == 3
    assert document.is_folder is False
    assert document.parent_id == "f1"
    assert document.size == 2048


def test_is_group_filters_directory_roles() -> None:
    assert is_group({"@odata.type": "#microsoft.graph.group", "id": "g"})
    assert not is_group({"@odata.type": "#microsoft.graph.directoryRole", "id": "r"})


def test_event_payload_defaults_to_busy_plain_text_without_location() -> None:
    payload = build_event_payload(
        subject="Call",
        start=datetime(2024, 5, 1, 9, 30),
        end=datetime(2024, 5, 1, 10, 0),
    )

    assert payload["start"] == {"dateTime": "2024-05-01T09:30:00", "timeZone": "UTC"}
    assert payload["body"] == {"contentType": "text", "content": ""}
    assert payload["showAs"] == "busy"
    assert payload["isOnlineMeeting"] is False
    assert payload["attendees"] == []
    assert "location" not in payload
    assert "onlineMeetingProvider" not in payload
