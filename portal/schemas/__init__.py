"""Pydantic schemas exposed by the portal API."""

from .auth import OAuthCallbackPayload, SessionResponse, TokenStatusResponse
from .graph import (
    Dashboard,
    DegradedView,
    DirectoryUser,
    DownloadedContent,
    DriveItem,
    Email,
    Event,
    Group,
    MailFolder,
    MessagePage,
    Schedule,
    SharedMailbox,
    SharePointSite,
)
from .requests import (
    CreateFolderRequest,
    EventRequest,
    ForwardRequest,
    RenameItemRequest,
    ReplyRequest,
    ScheduleRequest,
    SendMailRequest,
)

__all__ = [
    "CreateFolderRequest",
    "Dashboard",
    "DegradedView",
    "DirectoryUser",
    "DownloadedContent",
    "DriveItem",
    "Email",
    "Event",
    "EventRequest",
    "ForwardRequest",
    "Group",
    "MailFolder",
    "MessagePage",
    "OAuthCallbackPayload",
    "RenameItemRequest",
    "ReplyRequest",
    "Schedule",
    "ScheduleRequest",
    "SendMailRequest",
    "SessionResponse",
    "SharePointSite",
    "SharedMailbox",
    "TokenStatusResponse",
]
