"""
Tool: Provider Service Base
Purpose: Shared contract and plumbing for Graph and Google provider services

Every operation takes the account id first, looks the account up in the
registry, and obtains a token through the silent auth path only. Providers
never start an interactive sign-in.

Credential policy:
    Read operations with no usable credential log a warning and return an
    empty result. Write operations raise NoCredentialError.

Usage:
    class MyProvider(ProviderService):
        provider_name = "example"

        async def _acquire_token(self, account): ...
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, time, timedelta, timezone
from typing import Any

import aiohttp

from calendar_mcp.config import AccountInfo
from calendar_mcp.errors import AccountNotFoundError, NoCredentialError, ProviderApiError
from calendar_mcp.models import CalendarEvent, CalendarInfo, EmailMessage
from calendar_mcp.registry import AccountRegistry

logger = logging.getLogger(__name__)


REQUEST_TIMEOUT_SECONDS = 30
DEFAULT_EVENT_WINDOW_DAYS = 30


def default_event_window() -> tuple[datetime, datetime]:
    """Today 00:00 UTC through 30 days later."""
    start = datetime.combine(datetime.now(timezone.utc).date(), time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=DEFAULT_EVENT_WINDOW_DAYS)


def reenroll_hint(account: AccountInfo) -> str:
    command = f"calendar-mcp login {account.id}"
    return f"Run '{command}' (or '{command} --device-code' on a headless machine) to authenticate this account."


class ProviderService(ABC):
    """
    Abstract provider service.

    Subclasses implement _acquire_token and the nine operations. HTTP goes
    through _request, which raises ProviderApiError for any failure.
    """

    provider_name: str = ""

    def __init__(self, registry: AccountRegistry):
        self.registry = registry

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}({self.provider_name})>"

    # =========================================================================
    # Accounts and credentials
    # =========================================================================

    def _account(self, account_id: str) -> AccountInfo:
        account = self.registry.get_by_id(account_id)
        if account is None:
            logger.error("Account %s not found in registry", account_id)
            raise AccountNotFoundError(account_id)
        return account

    @abstractmethod
    async def _acquire_token(self, account: AccountInfo) -> str | None:
        """
        Get an access token without user interaction.

        Returns:
            Token, or None when the account has no usable credential

        Raises:
            ConfigurationError: If the account lacks required provider_config keys
        """
        pass

    async def check_credential(self, account_id: str) -> bool:
        """True when a token can be obtained silently for the account."""
        account = self._account(account_id)
        return await self._acquire_token(account) is not None

    @abstractmethod
    async def enroll(
        self,
        account_id: str,
        use_device_code: bool = False,
        display: Callable[[str], Any] = print,
        cancel_event: asyncio.Event | None = None,
    ) -> bool:
        """
        Run interactive or device code sign-in for an account.

        display receives the user-facing device code instructions.

        Raises:
            AuthCancelledError: If the user or caller cancels
            AuthFailedError: If sign-in fails
        """
        pass

    async def _token_for_read(self, account: AccountInfo, operation: str) -> str | None:
        token = await self._acquire_token(account)
        if token is None:
            logger.warning(
                "No valid credential for account %s, %s returns no results. %s",
                account.id,
                operation,
                reenroll_hint(account),
            )
        return token

    async def _token_for_write(self, account: AccountInfo, operation: str) -> str:
        token = await self._acquire_token(account)
        if token is None:
            logger.warning("Cannot %s for account %s: no valid credential", operation, account.id)
            raise NoCredentialError(account.id, reenroll_hint(account))
        return token

    # =========================================================================
    # HTTP
    # =========================================================================

    def _get_headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    async def _request(
        self,
        account_id: str,
        operation: str,
        method: str,
        url: str,
        token: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make an authenticated API request.

        Args:
            account_id: Account the call is made for (used in errors and logs)
            operation: Operation name reported in ProviderApiError
            method: HTTP method
            url: Full API URL
            token: Bearer token
            params: Query parameters
            json: Request body

        Returns:
            Decoded JSON body, or {} for empty responses

        Raises:
            ProviderApiError: On a non-2xx status, timeout or connection error
        """
        if params:
            params = {k: _query_value(v) for k, v in params.items() if v is not None}

        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method, url, headers=self._get_headers(token), params=params, json=json
                ) as resp:
                    return await self._handle_response(resp, account_id, operation)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("%s request failed for account %s: %r", operation, account_id, e)
            raise ProviderApiError(account_id, operation, f"request failed: {e!r}") from e

    async def _handle_response(
        self, resp: aiohttp.ClientResponse, account_id: str, operation: str
    ) -> dict[str, Any]:
        if resp.status == 204:
            return {}

        try:
            data = await resp.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            data = None
        if not isinstance(data, dict):
            data = {}

        if 200 <= resp.status < 300:
            return data

        if resp.status == 401:
            detail = "Authentication failed - token may be expired"
        elif resp.status == 403:
            detail = "Permission denied - insufficient scopes"
        elif resp.status == 404:
            detail = "Resource not found"
        else:
            error = data.get("error")
            detail = error.get("message", "") if isinstance(error, dict) else str(error or "")

        logger.error(
            "%s failed for account %s: HTTP %d %s", operation, account_id, resp.status, detail
        )
        raise ProviderApiError(account_id, operation, detail, status=resp.status)

    # =========================================================================
    # Email Operations
    # =========================================================================

    @abstractmethod
    async def get_emails(
        self, account_id: str, count: int = 20, unread_only: bool = False
    ) -> list[EmailMessage]:
        pass

    @abstractmethod
    async def search_emails(
        self,
        account_id: str,
        query: str,
        count: int = 20,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> list[EmailMessage]:
        pass

    @abstractmethod
    async def get_email_details(self, account_id: str, email_id: str) -> EmailMessage | None:
        pass

    @abstractmethod
    async def send_email(
        self,
        account_id: str,
        to: str | list[str],
        subject: str,
        body: str,
        body_format: str = "html",
        cc: list[str] | None = None,
    ) -> str:
        """
        Send an email.

        Returns:
            Provider message id
        """
        pass

    # =========================================================================
    # Calendar Operations
    # =========================================================================

    @abstractmethod
    async def list_calendars(self, account_id: str) -> list[CalendarInfo]:
        pass

    @abstractmethod
    async def get_calendar_events(
        self,
        account_id: str,
        calendar_id: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        count: int = 50,
    ) -> list[CalendarEvent]:
        pass

    @abstractmethod
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
        """
        Create an event.

        Returns:
            Provider event id
        """
        pass

    @abstractmethod
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
        pass

    @abstractmethod
    async def delete_event(self, account_id: str, calendar_id: str | None, event_id: str) -> None:
        pass


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def as_recipient_list(value: str | list[str] | None) -> list[str]:
    """Accept a comma/semicolon separated string or a list of addresses."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.replace(";", ",").split(",")
    return [v.strip() for v in value if v and v.strip()]
