"""
Tool: Calendar MCP Models
Purpose: Normalized email and calendar records shared by every provider

Usage:
    from calendar_mcp.models import CalendarEvent, EmailMessage, ResponseStatus

Graph and Google return very different shapes. Provider services convert
them into these dataclasses so callers never see provider-specific fields.
All datetimes are timezone-aware UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any


class ResponseStatus(str, Enum):
    """The current user's response to an event invitation."""

    ACCEPTED = "accepted"
    TENTATIVE = "tentative"
    DECLINED = "declined"
    NOT_RESPONDED = "notResponded"


_RESPONSE_STATUS_MAP = {
    # Microsoft Graph
    "accepted": ResponseStatus.ACCEPTED,
    "organizer": ResponseStatus.ACCEPTED,
    "tentativelyaccepted": ResponseStatus.TENTATIVE,
    "declined": ResponseStatus.DECLINED,
    "none": ResponseStatus.NOT_RESPONDED,
    "notresponded": ResponseStatus.NOT_RESPONDED,
    # Google Calendar
    "tentative": ResponseStatus.TENTATIVE,
    "needsaction": ResponseStatus.NOT_RESPONDED,
}


def normalize_response_status(raw: str | None) -> ResponseStatus:
    """Map Graph or Google response wording onto ResponseStatus."""
    if not raw:
        return ResponseStatus.NOT_RESPONDED
    return _RESPONSE_STATUS_MAP.get(raw.strip().lower(), ResponseStatus.NOT_RESPONDED)


def to_utc(value: datetime) -> datetime:
    """Convert to aware UTC. Naive values are taken as local time."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc)


def parse_datetime(value: str | None, default_tz: timezone = timezone.utc) -> datetime | None:
    """
    Parse an ISO 8601 timestamp or a bare date into aware UTC.

    Graph returns 7 fractional digits and no offset when the UTC preference
    header is sent, so fractions are trimmed to microseconds and naive
    results are taken to be in default_tz.
    """
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")

    if len(text) == 10:
        parsed_date = date.fromisoformat(text)
        return datetime.combine(parsed_date, time.min, tzinfo=default_tz).astimezone(timezone.utc)

    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        rest = tail
        while rest and rest[0].isdigit():
            digits += rest[0]
            rest = rest[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=default_tz)
    return parsed.astimezone(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class EmailMessage:
    """Normalized email message across providers."""

    id: str
    account_id: str
    subject: str = ""
    from_address: str = ""
    from_name: str | None = None
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    body: str = ""
    body_format: str = "text"
    received_at: datetime | None = None
    is_read: bool = False
    has_attachments: bool = False
    provider: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "subject": self.subject,
            "from_address": self.from_address,
            "from_name": self.from_name,
            "to": list(self.to),
            "cc": list(self.cc),
            "body": self.body,
            "body_format": self.body_format,
            "received_at": _iso(self.received_at),
            "is_read": self.is_read,
            "has_attachments": self.has_attachments,
            "provider": self.provider,
        }


@dataclass
class CalendarInfo:
    id: str
    account_id: str
    name: str
    owner: str | None = None
    can_edit: bool = False
    is_default: bool = False
    color: str | None = None
    provider: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "name": self.name,
            "owner": self.owner,
            "can_edit": self.can_edit,
            "is_default": self.is_default,
            "color": self.color,
            "provider": self.provider,
        }


@dataclass
class Attendee:
    email: str
    name: str | None = None
    status: ResponseStatus = ResponseStatus.NOT_RESPONDED
    is_organizer: bool = False
    is_optional: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "name": self.name,
            "status": self.status.value,
            "is_organizer": self.is_organizer,
            "is_optional": self.is_optional,
        }


@dataclass
class CalendarEvent:
    """
    Normalized calendar event across providers.

    start and end are aware UTC. For all-day events they are midnight of the
    first day and midnight after the last day.
    """

    id: str
    account_id: str
    calendar_id: str
    subject: str
    start: datetime
    end: datetime
    is_all_day: bool = False
    location: str | None = None
    body: str | None = None
    organizer: str | None = None
    attendees: list[Attendee] = field(default_factory=list)
    response_status: ResponseStatus = ResponseStatus.NOT_RESPONDED
    provider: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "calendar_id": self.calendar_id,
            "subject": self.subject,
            "start": _iso(self.start),
            "end": _iso(self.end),
            "is_all_day": self.is_all_day,
            "location": self.location,
            "body": self.body,
            "organizer": self.organizer,
            "attendees": [a.to_dict() for a in self.attendees],
            "response_status": self.response_status.value,
            "provider": self.provider,
        }
