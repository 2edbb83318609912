"""
Portal-side shapes for Microsoft Graph resources.

These are recreated on every call and never persisted.
"""

from __future__ import annotations

from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class EmailAddress(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None


class DateTimeZone(BaseModel):
    date_time: str
    time_zone: str = "UTC"


class Attendee(BaseModel):
    email: EmailAddress
    type: Optional[str] = None


class Event(BaseModel):
    """A calendar event of the signed-in user."""

    id: str
    subject: str = ""
    start: DateTimeZone
    end: DateTimeZone
    location: Optional[str] = None
    attendees: List[Attendee] = Field(default_factory=list)
    is_all_day: bool = False
    show_as: Optional[str] = None
    sensitivity: Optional[str] = None
    web_link: Optional[str] = None


class Attachment(BaseModel):
    id: str
    name: str
    content_type: Optional[str] = None
    size: int = 0


class Email(BaseModel):
    """A mail message."""

    id: str
    subject: str = ""
    sender: Optional[EmailAddress] = None
    to_recipients: List[EmailAddress] = Field(default_factory=list)
    cc_recipients: List[EmailAddress] = Field(default_factory=list)
    body_content: str = ""
    body_content_type: str = "text"
    received_at: Optional[str] = None
    is_read: bool = False
    importance: str = "normal"
    has_attachments: bool = False
    attachments: List[Attachment] = Field(default_factory=list)


class MessagePage(BaseModel):
    """One page of messages plus the opaque cursor for the next one."""

    messages: List[Email] = Field(default_factory=list)
    next_link: Optional[str] = None


class MailFolder(BaseModel):
    id: str
    display_name: str = ""
    parent_folder_id: Optional[str] = None
    child_folder_count: int = 0
    total_item_count: int = 0
    unread_item_count: int = 0


class ScheduleItem(BaseModel):
    start: DateTimeZone
    end: DateTimeZone
    status: Optional[str] = None
    is_private: bool = False
    subject: Optional[str] = None
    location: Optional[str] = None


class Schedule(BaseModel):
    """Free/busy information for one mailbox."""

    schedule_id: str
    availability_view: Optional[str] = None
    items: List[ScheduleItem] = Field(default_factory=list)
    error: Optional[str] = None


class SharePointSite(BaseModel):
    id: str
    display_name: str = ""
    web_url: Optional[str] = None
    description: Optional[str] = None
    hostname: Optional[str] = None
    created_at: Optional[str] = None
    last_modified_at: Optional[str] = None


class DriveItem(BaseModel):
    """A file or folder in a SharePoint document library."""

    id: str
    name: str
    web_url: Optional[str] = None
    size: int = 0
    created_at: Optional[str] = None
    last_modified_at: Optional[str] = None
    is_folder: bool = False
    child_count: Optional[int] = None
    mime_type: Optional[str] = None
    drive_id: Optional[str] = None
    parent_id: Optional[str] = None
    parent_path: Optional[str] = None


class Group(BaseModel):
    id: str
    display_name: str = ""
    description: Optional[str] = None
    mail: Optional[str] = None
    mail_enabled: bool = False
    security_enabled: bool = False
    group_types: List[str] = Field(default_factory=list)


class SharedMailbox(BaseModel):
    id: str
    display_name: str = ""
    mail: str


class DirectoryUser(BaseModel):
    """A user as seen in the tenant directory or in ``/me``."""

    id: str
    display_name: Optional[str] = None
    mail: Optional[str] = None
    user_principal_name: Optional[str] = None
    job_title: Optional[str] = None

    @property
    def primary_email(self) -> Optional[str]:
        return self.mail or self.user_principal_name


class DownloadedContent(BaseModel):
    content: bytes
    content_type: str = "application/octet-stream"


class DegradedView(BaseModel, Generic[T]):
    """
    Result of a display-only read that may have fallen back to placeholders.

    ``degraded`` is True when ``items`` are not authoritative.
    """

    items: List[T] = Field(default_factory=list)
    degraded: bool = False
    reason: Optional[str] = None


class Dashboard(BaseModel):
    """Display-only landing view; each widget degrades on its own."""

    events: DegradedView[Event]
    groups: DegradedView[Group]


__all__ = [
    "Attachment",
    "Attendee",
    "Dashboard",
    "DateTimeZone",
    "DegradedView",
    "DirectoryUser",
    "DownloadedContent",
    "DriveItem",
    "Email",
    "EmailAddress",
    "Event",
    "Group",
    "MailFolder",
    "MessagePage",
    "Schedule",
    "ScheduleItem",
    "SharePointSite",
    "SharedMailbox",
]
