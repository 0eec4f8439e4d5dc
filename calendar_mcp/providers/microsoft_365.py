"""
Tool: Microsoft 365 Provider
Purpose: Outlook mail and calendar for Microsoft 365 and Outlook.com via Microsoft Graph

Implements the ProviderService interface on Graph v1.0. Outlook.com
(personal Microsoft accounts) uses the same endpoints with the "consumers"
tenant by default.

Usage:
    from calendar_mcp.providers.microsoft_365 import M365ProviderService

    provider = M365ProviderService(registry, auth_service)
    emails = await provider.get_emails("work-a", count=10)
    events = await provider.get_calendar_events("work-a")

Dependencies:
    - aiohttp (pip install aiohttp)
    - msal (pip install msal) [through MicrosoftAuthenticationService]
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from urllib.parse import quote

from calendar_mcp.auth import MICROSOFT_DEFAULT_SCOPES, parse_scopes
from calendar_mcp.auth.microsoft import MicrosoftAuthenticationService
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


# Microsoft Graph API endpoints
GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"

_LIST_SELECT = (
    "id,subject,from,toRecipients,ccRecipients,bodyPreview,receivedDateTime,isRead,hasAttachments"
)
_DETAIL_SELECT = _LIST_SELECT + ",body"


def _graph_datetime(value: datetime) -> dict[str, str]:
    return {"dateTime": to_utc(value).strftime("%Y-%m-%dT%H:%M:%S"), "timeZone": "UTC"}


def _recipients(addresses: list[str]) -> list[dict[str, Any]]:
    return [{"emailAddress": {"address": a}} for a in addresses]


def _addresses(recipients: list[dict[str, Any]] | None) -> list[str]:
    """Recipient addresses, skipping entries Graph returns with only a name."""
    addresses = []
    for recipient in recipients or []:
        address = (recipient.get("emailAddress") or {}).get("address")
        if address:
            addresses.append(address)
    return addresses


class M365ProviderService(ProviderService):
    """
    Microsoft Graph provider for work or school accounts.

    Every request asks Graph for UTC timestamps, so event times arrive
    without an offset and are parsed as UTC.
    """

    provider_name = "microsoft365"
    default_tenant: str | None = None

    def __init__(self, registry: AccountRegistry, auth: MicrosoftAuthenticationService):
        super().__init__(registry)
        self.auth = auth

    def _get_headers(self, token: str) -> dict[str, str]:
        headers = super()._get_headers(token)
        headers["Prefer"] = 'outlook.timezone="UTC"'
        return headers

    def scopes_for(self, account: AccountInfo) -> list[str]:
        return parse_scopes(account.get_config("scopes"), MICROSOFT_DEFAULT_SCOPES)

    def client_settings(self, account: AccountInfo) -> tuple[str, str]:
        """
        Get (tenant_id, client_id) for an account.

        Raises:
            ConfigurationError: If tenantId (when there is no default) or clientId is missing
        """
        if self.default_tenant and not account.get_config("tenantId"):
            (client_id,) = account.require_config("clientId")
            return self.default_tenant, client_id
        tenant_id, client_id = account.require_config("tenantId", "clientId")
        return tenant_id, client_id

    async def _acquire_token(self, account: AccountInfo) -> str | None:
        tenant_id, client_id = self.client_settings(account)
        return await self.auth.get_token_silently(
            tenant_id, client_id, self.scopes_for(account), account.id
        )

    async def enroll(
        self,
        account_id: str,
        use_device_code: bool = False,
        display: Callable[[str], Any] = print,
        cancel_event: asyncio.Event | None = None,
    ) -> bool:
        account = self._account(account_id)
        tenant_id, client_id = self.client_settings(account)
        scopes = self.scopes_for(account)

        if use_device_code:
            await self.auth.authenticate_with_device_code(
                tenant_id, client_id, scopes, account.id, display, cancel_event=cancel_event
            )
        else:
            await self.auth.authenticate_interactive(
                tenant_id, client_id, scopes, account.id, cancel_event=cancel_event
            )
        logger.info("Account %s signed in", account.id)
        return True

    # =========================================================================
    # Parsing
    # =========================================================================

    def _parse_message(self, data: dict[str, Any], account_id: str, include_body: bool) -> EmailMessage:
        sender = (data.get("from") or {}).get("emailAddress") or {}
        body = data.get("body") or {}

        if include_body and body:
            content = body.get("content", "")
            body_format = "html" if body.get("contentType", "").lower() == "html" else "text"
        else:
            content = data.get("bodyPreview", "")
            body_format = "text"

        return EmailMessage(
            id=data.get("id", ""),
            account_id=account_id,
            subject=data.get("subject") or "",
            from_address=sender.get("address", ""),
            from_name=sender.get("name"),
            to=_addresses(data.get("toRecipients")),
            cc=_addresses(data.get("ccRecipients")),
            body=content,
            body_format=body_format,
            received_at=parse_datetime(data.get("receivedDateTime")),
            is_read=bool(data.get("isRead", False)),
            has_attachments=bool(data.get("hasAttachments", False)),
            provider=self.provider_name,
        )

    def _parse_event(self, data: dict[str, Any], account_id: str, calendar_id: str) -> CalendarEvent:
        organizer = ((data.get("organizer") or {}).get("emailAddress") or {}).get("address")

        attendees = []
        for att in data.get("attendees") or []:
            address = att.get("emailAddress") or {}
            attendees.append(Attendee(
                email=address.get("address", ""),
                name=address.get("name"),
                status=normalize_response_status((att.get("status") or {}).get("response")),
                is_organizer=bool(organizer) and address.get("address", "").lower() == organizer.lower(),
                is_optional=att.get("type") == "optional",
            ))

        own_response = (data.get("responseStatus") or {}).get("response")
        if data.get("isOrganizer"):
            response_status = ResponseStatus.ACCEPTED
        else:
            response_status = normalize_response_status(own_response)

        return CalendarEvent(
            id=data.get("id", ""),
            account_id=account_id,
            calendar_id=calendar_id,
            subject=data.get("subject") or "",
            start=parse_datetime((data.get("start") or {}).get("dateTime")),
            end=parse_datetime((data.get("end") or {}).get("dateTime")),
            is_all_day=bool(data.get("isAllDay", False)),
            location=(data.get("location") or {}).get("displayName") or None,
            body=data.get("bodyPreview") or None,
            organizer=organizer,
            attendees=attendees,
            response_status=response_status,
            provider=self.provider_name,
        )

    def _parse_calendar(self, data: dict[str, Any], account_id: str) -> CalendarInfo:
        color = data.get("hexColor") or data.get("color")
        return CalendarInfo(
            id=data.get("id", ""),
            account_id=account_id,
            name=data.get("name", ""),
            owner=(data.get("owner") or {}).get("address"),
            can_edit=bool(data.get("canEdit", False)),
            is_default=bool(data.get("isDefaultCalendar", False)),
            color=None if color == "auto" else color,
            provider=self.provider_name,
        )

    @staticmethod
    def _events_url(calendar_id: str | None, event_id: str | None = None) -> str:
        if calendar_id:
            url = f"{GRAPH_API_BASE}/me/calendars/{quote(calendar_id, safe='')}/events"
        else:
            url = f"{GRAPH_API_BASE}/me/events"
        if event_id:
            url += f"/{quote(event_id, safe='')}"
        return url

    # =========================================================================
    # Email Operations
    # =========================================================================

    async def get_emails(
        self, account_id: str, count: int = 20, unread_only: bool = False
    ) -> list[EmailMessage]:
        """Get recent messages, newest first."""
        account = self._account(account_id)
        token = await self._token_for_read(account, "get_emails")
        if token is None:
            return []

        params = {
            "$top": count,
            "$orderby": "receivedDateTime desc",
            "$select": _LIST_SELECT,
            "$filter": "isRead eq false" if unread_only else None,
        }
        data = await self._request(
            account.id, "get_emails", "GET", f"{GRAPH_API_BASE}/me/messages", token, params=params
        )
        emails = [self._parse_message(m, account.id, include_body=False) for m in data.get("value", [])]
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
        """Search messages with KQL. Date bounds become received>= / received<= terms."""
        account = self._account(account_id)
        token = await self._token_for_read(account, "search_emails")
        if token is None:
            return []

        terms = [query.replace('"', "'").strip()] if query.strip() else []
        if from_date:
            terms.append(f"received>={to_utc(from_date).strftime('%Y-%m-%d')}")
        if to_date:
            terms.append(f"received<={to_utc(to_date).strftime('%Y-%m-%d')}")

        # $search cannot be combined with $orderby; Graph sorts by relevance/date itself
        params = {
            "$top": count,
            "$select": _LIST_SELECT,
            "$search": f'"{" ".join(terms)}"',
        }
        data = await self._request(
            account.id, "search_emails", "GET", f"{GRAPH_API_BASE}/me/messages", token, params=params
        )
        emails = [self._parse_message(m, account.id, include_body=False) for m in data.get("value", [])]
        logger.info("Search returned %d emails from account %s", len(emails), account.id)
        return emails

    async def get_email_details(self, account_id: str, email_id: str) -> EmailMessage | None:
        account = self._account(account_id)
        token = await self._token_for_read(account, "get_email_details")
        if token is None:
            return None

        url = f"{GRAPH_API_BASE}/me/messages/{quote(email_id, safe='')}"
        try:
            data = await self._request(
                account.id, "get_email_details", "GET", url, token, params={"$select": _DETAIL_SELECT}
            )
        except ProviderApiError as e:
            if e.status == 404:
                logger.warning("Email %s not found in account %s", email_id, account.id)
                return None
            raise
        return self._parse_message(data, account.id, include_body=True)

    async def send_email(
        self,
        account_id: str,
        to: str | list[str],
        subject: str,
        body: str,
        body_format: str = "html",
        cc: list[str] | None = None,
    ) -> str:
        """Create a draft, then send it. Returns the message id."""
        account = self._account(account_id)
        token = await self._token_for_write(account, "send_email")

        message = {
            "subject": subject,
            "body": {
                "contentType": "HTML" if body_format.lower() == "html" else "Text",
                "content": body,
            },
            "toRecipients": _recipients(as_recipient_list(to)),
        }
        if cc:
            message["ccRecipients"] = _recipients(as_recipient_list(cc))

        draft = await self._request(
            account.id, "send_email", "POST", f"{GRAPH_API_BASE}/me/messages", token, json=message
        )
        message_id = draft.get("id", "")
        await self._request(
            account.id,
            "send_email",
            "POST",
            f"{GRAPH_API_BASE}/me/messages/{quote(message_id, safe='')}/send",
            token,
        )
        logger.info("Email sent from account %s to %s", account.id, ", ".join(as_recipient_list(to)))
        return message_id

    # =========================================================================
    # Calendar Operations
    # =========================================================================

    async def list_calendars(self, account_id: str) -> list[CalendarInfo]:
        account = self._account(account_id)
        token = await self._token_for_read(account, "list_calendars")
        if token is None:
            return []

        data = await self._request(
            account.id, "list_calendars", "GET", f"{GRAPH_API_BASE}/me/calendars", token
        )
        calendars = [self._parse_calendar(c, account.id) for c in data.get("value", [])]
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
        start = to_utc(start_date) if start_date else default_start
        end = to_utc(end_date) if end_date else default_end

        if calendar_id:
            url = f"{GRAPH_API_BASE}/me/calendars/{quote(calendar_id, safe='')}/calendarView"
        else:
            url = f"{GRAPH_API_BASE}/me/calendarView"
        params = {
            "startDateTime": start.isoformat(),
            "endDateTime": end.isoformat(),
            "$top": count,
            "$orderby": "start/dateTime",
        }
        data = await self._request(account.id, "get_calendar_events", "GET", url, token, params=params)

        events = [
            self._parse_event(e, account.id, calendar_id or "default") for e in data.get("value", [])
        ]
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
            "subject": subject,
            "start": _graph_datetime(start),
            "end": _graph_datetime(end),
        }
        if location:
            event["location"] = {"displayName": location}
        if body:
            event["body"] = {"contentType": "HTML", "content": body}
        if attendees:
            event["attendees"] = [
                {"emailAddress": {"address": a}, "type": "required"} for a in as_recipient_list(attendees)
            ]

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
            changes["subject"] = subject
        if start:
            changes["start"] = _graph_datetime(start)
        if end:
            changes["end"] = _graph_datetime(end)
        if location:
            changes["location"] = {"displayName": location}
        if attendees is not None:
            changes["attendees"] = [
                {"emailAddress": {"address": a}, "type": "required"} for a in as_recipient_list(attendees)
            ]

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


class OutlookComProviderService(M365ProviderService):
    """Personal Microsoft accounts (outlook.com, hotmail.com, live.com)."""

    provider_name = "outlook.com"
    default_tenant = "consumers"
