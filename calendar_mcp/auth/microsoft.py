"""
Tool: Microsoft Authentication Service
Purpose: MSAL token acquisition for Microsoft 365 and Outlook.com accounts

Handles:
- One MSAL PublicClientApplication per account, created once on first use
- Per-account token cache persisted to msal_cache_<account_id>.bin
- Interactive sign-in (auth code + PKCE through a loopback redirect)
- Device code sign-in for headless machines
- Silent acquisition that never prompts and never raises

Usage:
    service = MicrosoftAuthenticationService()
    token = await service.get_token_silently(tenant_id, client_id, scopes, "work-a")
    if token is None:
        token = await service.authenticate_with_device_code(
            tenant_id, client_id, scopes, "work-a", print
        )

Dependencies:
    - msal (pip install msal)
    - aiohttp (pip install aiohttp) [loopback redirect listener]
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import msal

from calendar_mcp.auth import invoke_display_callback
from calendar_mcp.auth.credential_store import CredentialStore
from calendar_mcp.auth.loopback import LoopbackRedirectListener
from calendar_mcp.errors import AuthCancelledError, AuthFailedError

logger = logging.getLogger(__name__)


AUTHORITY_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}"

# MSAL adds these itself and rejects them when passed explicitly
RESERVED_SCOPES = frozenset({"offline_access", "openid", "profile"})


def authority_for(tenant_id: str) -> str:
    return AUTHORITY_TEMPLATE.format(tenant_id=tenant_id)


def _filter_scopes(scopes: Sequence[str]) -> list[str]:
    return [s for s in scopes if s.lower() not in RESERVED_SCOPES]


def _describe_error(result: dict[str, Any] | None) -> str:
    if not result:
        return "no result"
    return str(result.get("error_description") or result.get("error") or "unknown error")


@dataclass
class _MsalHandle:
    app: msal.PublicClientApplication
    cache: msal.SerializableTokenCache
    cache_path: Path


class MicrosoftAuthenticationService:
    """
    Token acquisition for Microsoft identity platform accounts.

    Client handles are keyed by account id (case-insensitive) and created
    single-flight: concurrent first calls for the same account build exactly
    one PublicClientApplication. All blocking MSAL calls run in a worker
    thread.
    """

    def __init__(
        self,
        store: CredentialStore | None = None,
        open_browser: Callable[[str], Any] = webbrowser.open,
    ):
        self._store = store or CredentialStore()
        self._open_browser = open_browser
        self._handles: dict[str, _MsalHandle] = {}
        self._handle_locks: dict[str, asyncio.Lock] = {}
        self._account_locks: dict[str, asyncio.Lock] = {}

    # =========================================================================
    # Client handles and cache persistence
    # =========================================================================

    @staticmethod
    def _lock(locks: dict[str, asyncio.Lock], key: str) -> asyncio.Lock:
        lock = locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            locks[key] = lock
        return lock

    async def _get_handle(self, tenant_id: str, client_id: str, account_id: str) -> _MsalHandle:
        key = account_id.casefold()
        handle = self._handles.get(key)
        if handle is not None:
            return handle

        async with self._lock(self._handle_locks, key):
            handle = self._handles.get(key)
            if handle is None:
                cache_path = self._store.msal_cache_path(account_id)
                handle = await asyncio.to_thread(
                    self._create_handle, tenant_id, client_id, account_id, cache_path
                )
                self._handles[key] = handle
        return handle

    def _create_handle(
        self, tenant_id: str, client_id: str, account_id: str, cache_path: Path
    ) -> _MsalHandle:
        cache = msal.SerializableTokenCache()
        try:
            content = self._store.read_text(cache_path)
            if content:
                cache.deserialize(content)
        except (OSError, ValueError) as e:
            # Start empty; the next successful sign-in overwrites the bad file
            logger.warning("Ignoring unreadable MSAL cache for account %s: %s", account_id, e)
            cache = msal.SerializableTokenCache()

        app = msal.PublicClientApplication(
            client_id,
            authority=authority_for(tenant_id),
            token_cache=cache,
        )
        logger.debug("Created MSAL client for account %s (cache %s)", account_id, cache_path)
        return _MsalHandle(app=app, cache=cache, cache_path=cache_path)

    def _persist(self, handle: _MsalHandle) -> None:
        if handle.cache.has_state_changed:
            self._store.write_text(handle.cache_path, handle.cache.serialize())

    async def _persist_locked(self, handle: _MsalHandle, account_id: str) -> None:
        async with self._lock(self._account_locks, account_id.casefold()):
            self._persist(handle)

    # =========================================================================
    # Silent acquisition
    # =========================================================================

    async def get_token_silently(
        self,
        tenant_id: str,
        client_id: str,
        scopes: Sequence[str],
        account_id: str,
    ) -> str | None:
        """
        Get an access token from the cache without any user interaction.

        MSAL refreshes expired tokens transparently when a refresh token is
        cached. Never raises.

        Returns:
            Access token, or None when the account must sign in again
        """
        try:
            handle = await self._get_handle(tenant_id, client_id, account_id)
            async with self._lock(self._account_locks, account_id.casefold()):
                token = await asyncio.to_thread(
                    self._acquire_silent, handle, _filter_scopes(scopes), account_id
                )
                self._persist(handle)
            return token
        except Exception as e:
            logger.error("Silent token acquisition failed for account %s: %s", account_id, e)
            return None

    @staticmethod
    def _acquire_silent(handle: _MsalHandle, scopes: list[str], account_id: str) -> str | None:
        accounts = handle.app.get_accounts()
        if not accounts:
            logger.warning("No cached sign-in for account %s", account_id)
            return None

        result = handle.app.acquire_token_silent(scopes, account=accounts[0])
        if result and "access_token" in result:
            return result["access_token"]

        logger.info(
            "Interaction required for account %s: %s", account_id, _describe_error(result)
        )
        return None

    # =========================================================================
    # Interactive and device code sign-in
    # =========================================================================

    async def authenticate_interactive(
        self,
        tenant_id: str,
        client_id: str,
        scopes: Sequence[str],
        account_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        """
        Sign in through the system browser.

        Returns:
            Access token

        Raises:
            AuthCancelledError: If the user declines consent or cancel_event is set
            AuthFailedError: For any other failure
        """
        try:
            handle = await self._get_handle(tenant_id, client_id, account_id)
            async with LoopbackRedirectListener(redirect_host="localhost") as listener:
                flow = await asyncio.to_thread(
                    handle.app.initiate_auth_code_flow,
                    _filter_scopes(scopes),
                    redirect_uri=listener.redirect_uri,
                    prompt="select_account",
                )
                if "auth_uri" not in flow:
                    raise AuthFailedError(
                        f"Could not start sign-in: {_describe_error(flow)}", account_id
                    )

                logger.info("Opening browser for Microsoft sign-in of account %s", account_id)
                self._open_browser(flow["auth_uri"])
                params = await listener.wait_for_redirect(
                    cancel_event=cancel_event, account_id=account_id
                )

            if params.get("error") == "access_denied":
                raise AuthCancelledError(account_id)

            result = await asyncio.to_thread(handle.app.acquire_token_by_auth_code_flow, flow, params)
            await self._persist_locked(handle, account_id)
            return self._token_or_raise(result, account_id)

        except AuthCancelledError:
            logger.info("Microsoft sign-in cancelled for account %s", account_id)
            raise
        except AuthFailedError as e:
            logger.error("Microsoft sign-in failed for account %s: %s", account_id, e.message)
            raise
        except Exception as e:
            logger.error("Microsoft sign-in failed for account %s: %s", account_id, e)
            raise AuthFailedError(f"Sign-in failed: {e}", account_id) from e

    async def authenticate_with_device_code(
        self,
        tenant_id: str,
        client_id: str,
        scopes: Sequence[str],
        account_id: str,
        display_callback: Callable[[str], Any],
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        """
        Sign in with a device code shown to the user.

        display_callback receives MSAL's instruction text (URL and code)
        exactly once. It may be a plain function or a coroutine function.

        Returns:
            Access token

        Raises:
            AuthCancelledError: If cancel_event is set before sign-in completes
            AuthFailedError: If the code expires, is declined or MSAL errors
        """
        try:
            handle = await self._get_handle(tenant_id, client_id, account_id)
            flow = await asyncio.to_thread(
                handle.app.initiate_device_flow, scopes=_filter_scopes(scopes)
            )
            if "user_code" not in flow:
                raise AuthFailedError(
                    f"Could not start device code flow: {_describe_error(flow)}", account_id
                )

            await invoke_display_callback(display_callback, flow["message"])
            result = await self._wait_for_device_flow(handle, flow, account_id, cancel_event)
            await self._persist_locked(handle, account_id)
            return self._token_or_raise(result, account_id)

        except AuthCancelledError:
            logger.info("Device code sign-in cancelled for account %s", account_id)
            raise
        except AuthFailedError as e:
            logger.error("Device code sign-in failed for account %s: %s", account_id, e.message)
            raise
        except Exception as e:
            logger.error("Device code sign-in failed for account %s: %s", account_id, e)
            raise AuthFailedError(f"Device code sign-in failed: {e}", account_id) from e

    async def _wait_for_device_flow(
        self,
        handle: _MsalHandle,
        flow: dict[str, Any],
        account_id: str,
        cancel_event: asyncio.Event | None,
    ) -> dict[str, Any]:
        acquire = asyncio.ensure_future(
            asyncio.to_thread(handle.app.acquire_token_by_device_flow, flow)
        )
        waiters: set[asyncio.Future] = {acquire}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            self._abandon_device_flow(flow, acquire)
            raise
        finally:
            if cancel_task is not None and not cancel_task.done():
                cancel_task.cancel()

        if acquire not in done:
            self._abandon_device_flow(flow, acquire)
            raise AuthCancelledError(account_id)
        return acquire.result()

    @staticmethod
    def _abandon_device_flow(flow: dict[str, Any], acquire: asyncio.Future) -> None:
        # MSAL's polling loop exits once expires_at is in the past
        flow["expires_at"] = 0
        acquire.add_done_callback(lambda f: f.cancelled() or f.exception())

    @staticmethod
    def _token_or_raise(result: dict[str, Any] | None, account_id: str) -> str:
        if result and "access_token" in result:
            return result["access_token"]
        raise AuthFailedError(f"Token request failed: {_describe_error(result)}", account_id)
