"""
Tool: Google Workspace Provider
Purpose: Gmail and Google Calendar integration via Google REST APIs

Implements the ProviderService interface for Google Workspace and
consumer Gmail accounts.

Usage:
    from calendar_mcp.providers.google_workspace import GoogleProviderService

    provider = GoogleProviderService(registry, auth_service)
    emails = await provider.get_emails("personal", count=10)
    events = await provider.get_calendar_events("personal")

Dependencies:
    - aiohttp (pip install aiohttp)
    - google-auth (pip install google-auth) [through GoogleAuthenticationService]
"""

from __future__ import annotations

import asyncio
import base64
import email.utils
import html
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from email.mime.text import MIMEText
from typing import Any
from urllib.parse import quote

from calendar_mcp.auth import GOOGLE_DEFAULT_SCOPES, parse_scopes
from calendar_mcp.auth.google import GoogleAuthenticationService
from calendar_mcp.config import AccountInfo
from calendar_mcp.errors import ProviderApiError
from calendar_mcp.models import (
    Attendee,
    CalendarEvent,
    CalendarInfo,
    EmailMessage,
    ResponseStatus,
    normalize_response_status,
    parse_datetime,
    to_utc,
)
from calendar_mcp.providers.base import ProviderService, as_recipient_list, default_event_window
from calendar_mcp.registry import AccountRegistry

logger = logging.getLogger(__name__)


# Google API endpoints
GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"
CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"

DEFAULT_CALENDAR_ID = "primary"


def _rfc3339(value: datetime) -> str:
    return to_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def _event_datetime(value: datetime) -> dict[str, str]:
    return {"dateTime": _rfc3339(value), "timeZone": "UTC"}


def _decode_body(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="ignore")


class GoogleProviderService(ProviderService):
    """Gmail and Google Calendar provider."""

    provider_name = "google"

    def __init__(self, registry: AccountRegistry, auth: GoogleAuthenticationService):
        super().__init__(registry)
        self.auth = auth

    def scopes_for(self, account: AccountInfo) -> list[str]:
        return parse_scopes(account.get_config("scopes"), GOOGLE_DEFAULT_SCOPES)

    def client_settings(self, account: AccountInfo) -> tuple[str, str]:
        """
        Get (client_id, client_secret) for an account.

        Raises:
            ConfigurationError: If clientId or clientSecret is missing
        """
        client_id, client_secret = account.require_config("clientId", "clientSecret")
        return client_id, client_secret

    async def _acquire_token(self, account: AccountInfo) -> str | None:
        client_id, client_secret = self.client_settings(account)
        return await self.auth.get_access_token(
            client_id, client_secret, self.scopes_for(account), account.id
        )

    async def enroll(
        self,
        account_id: str,
        use_device_code: bool = False,
        display: Callable[[str], Any] = print,
        cancel_event: asyncio.Event | None = None,
    ) -> bool:
        account = self._account(account_id)
        client_id, client_secret = self.client_settings(account)
        scopes = self.scopes_for(account)

        if use_device_code:
            def show_code(verification_url: str, user_code: str) -> Any:
                return display(f"To sign in, open {verification_url} and enter the code {user_code}")

            ok = await self.auth.authenticate_with_device_code(
                client_id, client_secret, scopes, account.id, show_code, cancel_event=cancel_event
            )
        else:
            ok = await self.auth.authenticate_interactive(
                client_id, client_secret, scopes, account.id, cancel_event=cancel_event
            )

        if ok:
            logger.info("Account %s signed in", account.id)
        else:
            logger.warning("Sign-in for account %s was denied or expired", account.id)
        return ok

    # =========================================================================
    # Parsing
    # =========================================================================

    def _parse_gmail_message(
        self, data: dict[str, Any], account_id: str, include_body: bool
    ) -> EmailMessage:
        """Parse Gmail API message into EmailMessage."""
        payload = data.get("payload") or {}
        headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}

        from_name, from_address = email.utils.parseaddr(headers.get("from", ""))
        to_list = [addr for _, addr in email.utils.getaddresses([headers.get("to", "")]) if addr]
        cc_list = [addr for _, addr in email.utils.getaddresses([headers.get("cc", "")]) if addr]

        received_at = None
        if data.get("internalDate"):
            received_at = datetime.fromtimestamp(int(data["internalDate"]) / 1000, tz=timezone.utc)
        elif headers.get("date"):
            try:
                received_at = to_utc(email.utils.parsedate_to_datetime(headers["date"]))
            except (TypeError, ValueError):
                received_at = None

        body = html.unescape(data.get("snippet", ""))
        body_format = "text"
        if include_body:
            html_body = self._extract_body(payload, "text/html")
            if html_body is not None:
                body, body_format = html_body, "html"
            else:
                text_body = self._extract_body(payload, "text/plain")
                if text_body is not None:
                    body = text_body

        return EmailMessage(
            id=data.get("id", ""),
            account_id=account_id,
            subject=headers.get("subject", ""),
            from_address=from_address,
            from_name=from_name or None,
            to=to_list,
            cc=cc_list,
            body=body,
            body_format=body_format,
            received_at=received_at,
            is_read="UNREAD" not in (data.get("labelIds") or []),
            has_attachments=self._has_attachments(payload),
            provider=self.provider_name,
        )

    def _extract_body(self, payload: dict[str, Any], mime_type: str) -> str | None:
        """Extract email body of specified MIME type."""
        if payload.get("mimeType") == mime_type:
            body_data = (payload.get("body") or {}).get("data")
            if body_data:
                return _decode_body(body_data)

        for part in payload.get("parts", []):
            result = self._extract_body(part, mime_type)
            if result:
                return result

        return None

    def _has_attachments(self, payload: dict[str, Any]) -> bool:
        for part in payload.get("parts", []):
            if part.get("filename") or self._has_attachments(part):
                return True
        return False

    def _parse_calendar_event(
        self, data: dict[str, Any], account_id: str, calendar_id: str
    ) -> CalendarEvent:
        """Parse Google Calendar event into CalendarEvent."""
        start_data = data.get("start") or {}
        end_data = data.get("end") or {}

        # All-day events carry a date instead of a dateTime
        all_day = "date" in start_data
        if all_day:
            start = parse_datetime(start_data.get("date"))
            end = parse_datetime(end_data.get("date"))
        else:
            start = parse_datetime(start_data.get("dateTime"))
            end = parse_datetime(end_data.get("dateTime"))

        org_data = data.get("organizer") or {}
        organizer = org_data.get("email")

        attendees = []
        own_status = None
        for att in data.get("attendees") or []:
            status = normalize_response_status(att.get("responseStatus"))
            if att.get("self"):
                own_status = status
            attendees.append(Attendee(
                email=att.get("email", ""),
                name=att.get("displayName"),
                status=status,
                is_organizer=bool(att.get("organizer", False)),
                is_optional=bool(att.get("optional", False)),
            ))

        if own_status is None:
            own_status = ResponseStatus.ACCEPTED if org_data.get("self") else ResponseStatus.NOT_RESPONDED

        return CalendarEvent(
            id=data.get("id", ""),
            account_id=account_id,
            calendar_id=calendar_id,
            subject=data.get("summary", ""),
            start=start,
            end=end,
            is_all_day=all_day,
            location=data.get("location") or None,
            body=data.get("description") or None,
            organizer=organizer,
            attendees=attendees,
            response_status=own_status,
            provider=self.provider_name,
        )

    def _parse_calendar(self, data: dict[str, Any], account_id: str) -> CalendarInfo:
        return CalendarInfo(
            id=data.get("id", ""),
            account_id=account_id,
            name=data.get("summaryOverride") or data.get("summary", ""),
            owner=data.get("id"),
            can_edit=data.get("accessRole") in ("owner", "writer"),
            is_default=bool(data.get("primary", False)),
            color=data.get("backgroundColor"),
            provider=self.provider_name,
        )

    @staticmethod
    def _events_url(calendar_id: str | None, event_id: str | None = None) -> str:
        url = f"{CALENDAR_API_BASE}/calendars/{quote(calendar_id or DEFAULT_CALENDAR_ID, safe='')}/events"
        if event_id:
            url += f"/{quote(event_id, safe='')}"
        return url

    # =========================================================================
    # Email Operations
    # =========================================================================

    async def _list_messages(
        self, account: AccountInfo, token: str, operation: str, q: str | None, count: int
    ) -> list[EmailMessage]:
        data = await self._request(
            account.id,
            operation,
            "GET",
            f"{GMAIL_API_BASE}/users/me/messages",
            token,
            params={"maxResults": count, "q": q},
        )
        refs = data.get("messages") or []
        if not refs:
            logger.info("No emails found for account %s", account.id)
            return []

        # Fetch message metadata for each id concurrently
        details = await asyncio.gather(*[
            self._request(
                account.id,
                operation,
                "GET",
                f"{GMAIL_API_BASE}/users/me/messages/{quote(ref['id'], safe='')}",
                token,
                params={"format": "metadata"},
            )
            for ref in refs
        ])
        return [self._parse_gmail_message(d, account.id, include_body=False) for d in details]

    async def get_emails(
        self, account_id: str, count: int = 20, unread_only: bool = False
    ) -> list[EmailMessage]:
        account = self._account(account_id)
        token = await self._token_for_read(account, "get_emails")
        if token is None:
            return []

        emails = await self._list_messages(
            account, token, "get_emails", "is:unread" if unread_only else None, count
        )
        logger.info("Retrieved %d emails from account %s", len(emails), account.id)
        return emails

    async def search_emails(
        self,
        account_id: str,
        query: str,
        count: int = 20,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> list[EmailMessage]:
        """Search with Gmail query syntax. Date bounds become after:/before: terms."""
        account = self._account(account_id)
        token = await self._token_for_read(account, "search_emails")
        if token is None:
            return []

        q = query.strip()
        if from_date:
            q += f" after:{to_utc(from_date).strftime('%Y/%m/%d')}"
        if to_date:
            q += f" before:{to_utc(to_date).strftime('%Y/%m/%d')}"

        emails = await self._list_messages(account, token, "search_emails", q.strip() or None, count)
        logger.info("Search returned %d emails from account %s for query %r", len(emails), account.id, query)
        return emails

    async def get_email_details(self, account_id: str, email_id: str) -> EmailMessage | None:
        account = self._account(account_id)
        token = await self._token_for_read(account, "get_email_details")
        if token is None:
            return None

        url = f"{GMAIL_API_BASE}/users/me/messages/{quote(email_id, safe='')}"
        try:
            data = await self._request(
                account.id, "get_email_details", "GET", url, token, params={"format": "full"}
            )
        except ProviderApiError as e:
            if e.status == 404:
                logger.warning("Email %s not found in account %s", email_id, account.id)
                return None
            raise
        return self._parse_gmail_message(data, account.id, include_body=True)

    async def send_email(
        self,
        account_id: str,
        to: str | list[str],
        subject: str,
        body: str,
        body_format: str = "html",
        cc: list[str] | None = None,
    ) -> str:
        account = self._account(account_id)
        token = await self._token_for_write(account, "send_email")

        recipients = as_recipient_list(to)
        message = MIMEText(body, "html" if body_format.lower() == "html" else "plain", "utf-8")
        message["To"] = ", ".join(recipients)
        message["Subject"] = subject
        if cc:
            message["Cc"] = ", ".join(as_recipient_list(cc))

        raw = base64.urlsafe_b64encode(message.as_bytes()).decode()
        data = await self._request(
            account.id,
            "send_email",
            "POST",
            f"{GMAIL_API_BASE}/users/me/messages/send",
            token,
            json={"raw": raw},
        )
        logger.info("Email sent from account %s to %s", account.id, ", ".join(recipients))
        return data.get("id", "")

    # =========================================================================
    # Calendar Operations
    # =========================================================================

    async def list_calendars(self, account_id: str) -> list[CalendarInfo]:
        account = self._account(account_id)
        token = await self._token_for_read(account, "list_calendars")
        if token is None:
            return []

        data = await self._request(
            account.id, "list_calendars", "GET", f"{CALENDAR_API_BASE}/users/me/calendarList", token
        )
        calendars = [self._parse_calendar(c, account.id) for c in data.get("items", [])]
        logger.info("Retrieved %d calendars from account %s", len(calendars), account.id)
        return calendars

    async def get_calendar_events(
        self,
        account_id: str,
        calendar_id: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        count: int = 50,
    ) -> list[CalendarEvent]:
        """Events in a window (default: today through 30 days out), recurring instances expanded."""
        account = self._account(account_id)
        token = await self._token_for_read(account, "get_calendar_events")
        if token is None:
            return []

        default_start, default_end = default_event_window()
        params = {
            "timeMin": _rfc3339(start_date) if start_date else _rfc3339(default_start),
            "timeMax": _rfc3339(end_date) if end_date else _rfc3339(default_end),
            "maxResults": count,
            "singleEvents": True,
            "orderBy": "startTime",
        }
        target = calendar_id or DEFAULT_CALENDAR_ID
        data = await self._request(
            account.id, "get_calendar_events", "GET", self._events_url(target), token, params=params
        )
        events = [self._parse_calendar_event(e, account.id, target) for e in data.get("items", [])]
        logger.info("Retrieved %d events from account %s", len(events), account.id)
        return events

    async def create_event(
        self,
        account_id: str,
        calendar_id: str | None,
        subject: str,
        start: datetime,
        end: datetime,
        location: str | None = None,
        attendees: list[str] | None = None,
        body: str | None = None,
    ) -> str:
        account = self._account(account_id)
        token = await self._token_for_write(account, "create_event")

        event: dict[str, Any] = {
            "summary": subject,
            "start": _event_datetime(start),
            "end": _event_datetime(end),
        }
        if location:
            event["location"] = location
        if body:
            event["description"] = body
        if attendees:
            event["attendees"] = [{"email": a} for a in as_recipient_list(attendees)]

        data = await self._request(
            account.id, "create_event", "POST", self._events_url(calendar_id), token, json=event
        )
        event_id = data.get("id", "")
        logger.info("Created event %s in account %s", event_id, account.id)
        return event_id

    async def update_event(
        self,
        account_id: str,
        calendar_id: str | None,
        event_id: str,
        subject: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        location: str | None = None,
        attendees: list[str] | None = None,
    ) -> None:
        """Patch only the fields that were given."""
        account = self._account(account_id)
        token = await self._token_for_write(account, "update_event")

        changes: dict[str, Any] = {}
        if subject:
            changes["summary"] = subject
        if start:
            changes["start"] = _event_datetime(start)
        if end:
            changes["end"] = _event_datetime(end)
        if location:
            changes["location"] = location
        if attendees is not None:
            changes["attendees"] = [{"email": a} for a in as_recipient_list(attendees)]

        if not changes:
            logger.info("No changes given for event %s in account %s", event_id, account.id)
            return

        await self._request(
            account.id, "update_event", "PATCH", self._events_url(calendar_id, event_id), token, json=changes
        )
        logger.info("Updated event %s in account %s", event_id, account.id)

    async def delete_event(self, account_id: str, calendar_id: str | None, event_id: str) -> None:
        account = self._account(account_id)
        token = await self._token_for_write(account, "delete_event")

        await self._request(
            account.id, "delete_event", "DELETE", self._events_url(calendar_id, event_id), token
        )
        logger.info("Deleted event %s from account %s", event_id, account.id)
