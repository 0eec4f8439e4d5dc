"""
Tool: Calendar MCP Errors
Purpose: Exception hierarchy shared by the auth services, providers and factory

Every error carries the account id it concerns (when there is one) so that
log lines and user-facing messages can always say which mailbox failed.

Usage:
    from calendar_mcp.errors import NoCredentialError

    raise NoCredentialError("work-a", hint="Run 'calendar-mcp login work-a'")
"""

from __future__ import annotations


class CalendarMcpError(Exception):
    """Base class for all calendar-mcp errors."""

    def __init__(self, message: str, account_id: str | None = None):
        self.account_id = account_id
        self.message = message
        if account_id:
            message = f"[{account_id}] {message}"
        super().__init__(message)


class ConfigurationError(CalendarMcpError):
    """Settings are unreadable or an account lacks a required provider key."""


class AccountNotFoundError(CalendarMcpError):
    def __init__(self, account_id: str):
        super().__init__("Account not found", account_id)


class UnsupportedProviderError(CalendarMcpError):
    def __init__(self, account_id: str, provider: str):
        self.provider = provider
        super().__init__(f"Unsupported provider: {provider}", account_id)


class AuthCancelledError(CalendarMcpError):
    """The user aborted an enrollment flow or the caller cancelled it."""

    def __init__(self, account_id: str | None = None, message: str = "Authentication cancelled"):
        super().__init__(message, account_id)


class AuthFailedError(CalendarMcpError):
    """An enrollment flow failed for a reason other than cancellation."""


class TokenEndpointError(AuthFailedError):
    """The OAuth endpoint could not be reached (connection error or timeout)."""


class NoCredentialError(CalendarMcpError):
    """No usable credential is cached; the account must be enrolled again."""

    def __init__(self, account_id: str, hint: str | None = None):
        self.hint = hint
        message = "No valid credential available"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message, account_id)


class ProviderApiError(CalendarMcpError):
    """A provider REST call failed."""

    def __init__(
        self,
        account_id: str,
        operation: str,
        detail: str = "",
        status: int | None = None,
    ):
        self.operation = operation
        self.status = status
        self.detail = detail
        message = f"{operation} failed"
        if status is not None:
            message += f" (HTTP {status})"
        if detail:
            message += f": {detail}"
        super().__init__(message, account_id)


__all__ = [
    "AccountNotFoundError",
    "AuthCancelledError",
    "AuthFailedError",
    "CalendarMcpError",
    "ConfigurationError",
    "NoCredentialError",
    "ProviderApiError",
    "TokenEndpointError",
    "UnsupportedProviderError",
]
