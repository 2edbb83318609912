"""
Request bodies accepted by the mail, calendar and SharePoint routes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class SendMailRequest(BaseModel):
    subject: str = Field(..., min_length=1)
    html_body: str = ""
    to: List[str] = Field(..., min_length=1)
    save_to_sent_items: bool = False


class ReplyRequest(BaseModel):
    comment: str = ""


class ForwardRequest(BaseModel):
    to: List[str] = Field(..., min_length=1)
    comment: str = ""


class ScheduleRequest(BaseModel):
    """Free/busy query; times are UTC ISO-8601 without offset."""

    schedules: List[str] = Field(..., min_length=1)
    start: str
    end: str
    interval_minutes: int = Field(30, ge=5, le=1440)


class EventRequest(BaseModel):
    """Body for creating or replacing a calendar event. Naive times are UTC."""

    title: str = Field(..., min_length=1)
    start: datetime
    end: datetime
    location: Optional[str] = None
    description: str = ""
    attendees: List[str] = Field(default_factory=list)
    show_as: str = "busy"
    is_online_meeting: bool = False

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _ends_after_start(self) -> "EventRequest":
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    def graph_fields(self) -> dict:
        return {
            "subject": self.title,
            "start": self.start,
            "end": self.end,
            "location": self.location,
            "description": self.description,
            "attendees": self.attendees,
            "show_as": self.show_as,
            "is_online_meeting": self.is_online_meeting,
        }


class CreateFolderRequest(BaseModel):
    site_id: str
    parent_id: str = "root"
    name: str = Field(..., min_length=1)


class RenameItemRequest(BaseModel):
    site_id: str
    name: str = Field(..., min_length=1)


__all__ = [
    "CreateFolderRequest",
    "EventRequest",
    "ForwardRequest",
    "RenameItemRequest",
    "ReplyRequest",
    "ScheduleRequest",
    "SendMailRequest",
]
