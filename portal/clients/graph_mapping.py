"""
One mapping function per Microsoft Graph resource type.

Each mapper lists every field it reads; a payload missing its identifier is
treated as malformed. ``build_event_payload`` goes the other way and builds
the body Graph expects when an event is written.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from portal.core.errors import GatewayError
from portal.schemas.graph import (
    Attachment,
    Attendee,
    DateTimeZone,
    DirectoryUser,
    DriveItem,
    Email,
    EmailAddress,
    Event,
    Group,
    MailFolder,
    Schedule,
    ScheduleItem,
    SharePointSite,
)

GROUP_ODATA_TYPE = "#microsoft.graph.group"


def _require(raw: Dict[str, Any], key: str, resource: str) -> Any:
    value = raw.get(key)
    if value in (None, ""):
        raise GatewayError(f"Graph {resource} payload is missing '{key}'.")
    return value


def _nested(raw: Optional[Dict[str, Any]], *keys: str) -> Any:
    current: Any = raw
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def map_email_address(raw: Optional[Dict[str, Any]]) -> Optional[EmailAddress]:
    """Map a Graph ``recipient`` (``{"emailAddress": {...}}``)."""
    address = _nested(raw, "emailAddress")
    if not isinstance(address, dict):
        return None
    return EmailAddress(name=address.get("name"), address=address.get("address"))


def _recipients(raw: Optional[List[Dict[str, Any]]]) -> List[EmailAddress]:
    mapped = (map_email_address(item) for item in raw or [])
    return [item for item in mapped if item is not None]


def map_date_time_zone(raw: Optional[Dict[str, Any]], resource: str) -> DateTimeZone:
    if not isinstance(raw, dict) or not raw.get("dateTime"):
        raise GatewayError(f"Graph {resource} payload has no dateTime.")
    return DateTimeZone(date_time=raw["dateTime"], time_zone=raw.get("timeZone") or "UTC")


def map_event(raw: Dict[str, Any]) -> Event:
    attendees = []
    for attendee in raw.get("attendees") or []:
        email = map_email_address(attendee)
        if email is not None:
            attendees.append(Attendee(email=email, type=attendee.get("type")))
    return Event(
        id=_require(raw, "id", "event"),
        subject=raw.get("subject") or "",
        start=map_date_time_zone(raw.get("start"), "event"),
        end=map_date_time_zone(raw.get("end"), "event"),
        location=_nested(raw, "location", "displayName") or None,
        attendees=attendees,
        is_all_day=bool(raw.get("isAllDay")),
        show_as=raw.get("showAs"),
        sensitivity=raw.get("sensitivity"),
        web_link=raw.get("webLink"),
    )


def _utc_slot(value: datetime) -> Dict[str, str]:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return {"dateTime": value.isoformat(timespec="seconds"), "timeZone": "UTC"}


def build_event_payload(
    *,
    subject: str,
    start: datetime,
    end: datetime,
    location: Optional[str] = None,
    description: str = "",
    attendees: Iterable[str] = (),
    show_as: str = "busy",
    is_online_meeting: bool = False,
) -> Dict[str, Any]:
    """
    Graph ``event`` body used for both create and update.

    Naive datetimes are taken as UTC; aware ones are converted to UTC. Online
    meetings are always requested as Teams meetings.
    """
    start_slot, end_slot = _utc_slot(start), _utc_slot(end)
    if end_slot["dateTime"] <= start_slot["dateTime"]:
        raise ValueError("An event must end after it starts.")
    addresses = [address.strip() for address in attendees if address and address.strip()]
    payload: Dict[str, Any] = {
        "subject": subject,
        "start": start_slot,
        "end": end_slot,
        "body": {"contentType": "text", "content": description or ""},
        "showAs": show_as,
        "isOnlineMeeting": is_online_meeting,
        "attendees": [
            {"emailAddress": {"address": address, "name": address}, "type": "required"}
            for address in addresses
        ],
    }
    if location:
        payload["location"] = {"displayName": location}
    if is_online_meeting:
        payload["onlineMeetingProvider"] = "teamsForBusiness"
    return payload


def map_attachment(raw: Dict[str, Any]) -> Attachment:
    return Attachment(
        id=_require(raw, "id", "attachment"),
        name=raw.get("name") or "",
        content_type=raw.get("contentType"),
        size=int(raw.get("size") or 0),
    )


def map_email(raw: Dict[str, Any]) -> Email:
    body = raw.get("body") or {}
    return Email(
        id=_require(raw, "id", "message"),
        subject=raw.get("subject") or "",
        sender=map_email_address(raw.get("from")),
        to_recipients=_recipients(raw.get("toRecipients")),
        cc_recipients=_recipients(raw.get("ccRecipients")),
        body_content=body.get("content") or "",
        body_content_type=(body.get("contentType") or "text").lower(),
        received_at=raw.get("receivedDateTime"),
        is_read=bool(raw.get("isRead")),
        importance=raw.get("importance") or "normal",
        has_attachments=bool(raw.get("hasAttachments")),
        attachments=[map_attachment(item) for item in raw.get("attachments") or []],
    )


def map_mail_folder(raw: Dict[str, Any]) -> MailFolder:
    return MailFolder(
        id=_require(raw, "id", "mail folder"),
        display_name=raw.get("displayName") or "",
        parent_folder_id=raw.get("parentFolderId"),
        child_folder_count=int(raw.get("childFolderCount") or 0),
        total_item_count=int(raw.get("totalItemCount") or 0),
        unread_item_count=int(raw.get("unreadItemCount") or 0),
    )


def map_schedule_item(raw: Dict[str, Any]) -> ScheduleItem:
    location = raw.get("location")
    if isinstance(location, dict):
        location = location.get("displayName")
    return ScheduleItem(
        start=map_date_time_zone(raw.get("start"), "schedule item"),
        end=map_date_time_zone(raw.get("end"), "schedule item"),
        status=raw.get("status"),
        is_private=bool(raw.get("isPrivate")),
        subject=raw.get("subject"),
        location=location or None,
    )


def map_schedule(raw: Dict[str, Any]) -> Schedule:
    return Schedule(
        schedule_id=_require(raw, "scheduleId", "schedule"),
        availability_view=raw.get("availabilityView"),
        items=[map_schedule_item(item) for item in raw.get("scheduleItems") or []],
        error=_nested(raw, "error", "message"),
    )


def map_site(raw: Dict[str, Any]) -> SharePointSite:
    return SharePointSite(
        id=_require(raw, "id", "site"),
        display_name=raw.get("displayName") or raw.get("name") or "",
        web_url=raw.get("webUrl"),
        description=raw.get("description"),
        hostname=_nested(raw, "siteCollection", "hostname"),
        created_at=raw.get("createdDateTime"),
        last_modified_at=raw.get("lastModifiedDateTime"),
    )


def map_drive_item(raw: Dict[str, Any]) -> DriveItem:
    folder = raw.get("folder")
    return DriveItem(
        id=_require(raw, "id", "drive item"),
        name=raw.get("name") or "",
        web_url=raw.get("webUrl"),
        size=int(raw.get("size") or 0),
        created_at=raw.get("createdDateTime"),
        last_modified_at=raw.get("lastModifiedDateTime"),
        is_folder=folder is not None,
        child_count=folder.get("childCount") if isinstance(folder, dict) else None,
        mime_type=_nested(raw, "file", "mimeType"),
        drive_id=_nested(raw, "parentReference", "driveId"),
        parent_id=_nested(raw, "parentReference", "id"),
        parent_path=_nested(raw, "parentReference", "path"),
    )


def is_group(raw: Dict[str, Any]) -> bool:
    return raw.get("@odata.type") == GROUP_ODATA_TYPE


def map_group(raw: Dict[str, Any]) -> Group:
    return Group(
        id=_require(raw, "id", "group"),
        display_name=raw.get("displayName") or "",
        description=raw.get("description"),
        mail=raw.get("mail"),
        mail_enabled=bool(raw.get("mailEnabled")),
        security_enabled=bool(raw.get("securityEnabled")),
        group_types=list(raw.get("groupTypes") or []),
    )


def map_directory_user(raw: Dict[str, Any]) -> DirectoryUser:
    return DirectoryUser(
        id=_require(raw, "id", "user"),
        display_name=raw.get("displayName"),
        mail=raw.get("mail"),
        user_principal_name=raw.get("userPrincipalName"),
        job_title=raw.get("jobTitle"),
    )


__all__ = [
    "build_event_payload",
    "is_group",
    "map_attachment",
    "map_date_time_zone",
    "map_directory_user",
    "map_drive_item",
    "map_email",
    "map_email_address",
    "map_event",
    "map_group",
    "map_mail_folder",
    "map_schedule",
    "map_schedule_item",
    "map_site",
]
