"""
Tool: Google Authentication Service
Purpose: OAuth 2.0 credentials for Google Workspace and Gmail accounts

Handles:
- Interactive sign-in (auth code + PKCE through a loopback redirect)
- Device authorization grant (RFC 8628) for headless machines
- Credential validity checks with refresh-token renewal
- Per-account authorized-user JSON at <data_dir>/google/<account_id>/token.json

Both sign-in paths persist the credential through google-auth's
Credentials.to_json(), so either one produces a file the other, and any
google-auth based client, can load.

Usage:
    service = GoogleAuthenticationService()
    ok = await service.authenticate_with_device_code(
        client_id, client_secret, scopes, "personal",
        lambda url, code: print(f"Visit {url} and enter {code}"),
    )
    token = await service.get_access_token(client_id, client_secret, scopes, "personal")

Dependencies:
    - aiohttp (pip install aiohttp)
    - google-auth (pip install google-auth)
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
import webbrowser
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

import aiohttp
from google.oauth2.credentials import Credentials

from calendar_mcp.auth import generate_pkce_pair, invoke_display_callback
from calendar_mcp.auth.credential_store import CredentialStore
from calendar_mcp.auth.loopback import LoopbackRedirectListener
from calendar_mcp.errors import AuthCancelledError, AuthFailedError, TokenEndpointError

logger = logging.getLogger(__name__)


# OAuth endpoints
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_DEVICE_CODE_URL = "https://oauth2.googleapis.com/device/code"

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
DEFAULT_POLL_INTERVAL = 5
SLOW_DOWN_INCREMENT = 5
DEFAULT_DEVICE_CODE_LIFETIME = 1800
REQUEST_TIMEOUT_SECONDS = 30


class CredentialStatus(str, Enum):
    VALID = "valid"
    REFRESHED = "refreshed"
    MISSING = "missing"
    CORRUPT = "corrupt"
    REFRESH_FAILED = "refresh_failed"
    ERROR = "error"


@dataclass
class CredentialCheck:
    status: CredentialStatus
    access_token: str | None = None

    @property
    def usable(self) -> bool:
        return self.status in (CredentialStatus.VALID, CredentialStatus.REFRESHED)


def build_credentials(
    token_response: dict[str, Any],
    client_id: str,
    client_secret: str,
    scopes: Sequence[str],
    refresh_token: str | None = None,
) -> Credentials:
    """
    Build google-auth Credentials from a token endpoint response.

    google-auth compares expiry against naive UTC, so expiry is stored that way.
    """
    expiry = None
    expires_in = token_response.get("expires_in")
    if expires_in:
        expiry = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(seconds=int(expires_in))

    granted = token_response.get("scope")
    return Credentials(
        token=token_response["access_token"],
        refresh_token=token_response.get("refresh_token") or refresh_token,
        token_uri=GOOGLE_TOKEN_URL,
        client_id=client_id,
        client_secret=client_secret,
        scopes=granted.split() if granted else list(scopes),
        expiry=expiry,
    )


def _poll_interval(value: Any) -> int:
    try:
        interval = int(value)
    except (TypeError, ValueError):
        return DEFAULT_POLL_INTERVAL
    return interval if interval >= 1 else DEFAULT_POLL_INTERVAL


class GoogleAuthenticationService:
    """
    Google OAuth for locally configured accounts.

    sleep and clock are injectable so device-code polling can be driven by
    tests without real delays.
    """

    def __init__(
        self,
        store: CredentialStore | None = None,
        open_browser: Callable[[str], Any] = webbrowser.open,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store or CredentialStore()
        self._open_browser = open_browser
        self._sleep = sleep
        self._clock = clock
        self._account_locks: dict[str, asyncio.Lock] = {}

    def _lock(self, account_id: str) -> asyncio.Lock:
        key = account_id.casefold()
        lock = self._account_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._account_locks[key] = lock
        return lock

    def token_path(self, account_id: str) -> Path:
        return self._store.google_token_path(account_id)

    async def _post_form(
        self, url: str, data: dict[str, str], account_id: str | None = None
    ) -> tuple[int, dict[str, Any]]:
        """
        POST a form to an OAuth endpoint.

        Returns:
            Tuple of (HTTP status, JSON body or {})

        Raises:
            TokenEndpointError: On connection failure or timeout
        """
        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, data=data, headers={"Accept": "application/json"}) as resp:
                    try:
                        body = await resp.json(content_type=None)
                    except (aiohttp.ContentTypeError, ValueError):
                        body = {}
                    return resp.status, body if isinstance(body, dict) else {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TokenEndpointError(f"Cannot reach {url}: {e!r}", account_id) from e

    async def _save(self, credentials: Credentials, account_id: str) -> None:
        path = self.token_path(account_id)
        async with self._lock(account_id):
            self._store.write_text(path, credentials.to_json())
        logger.info("Saved Google credential for account %s", account_id)

    # =========================================================================
    # Credential checks (silent path)
    # =========================================================================

    async def check_credential(
        self,
        client_id: str,
        client_secret: str,
        scopes: Sequence[str],
        account_id: str,
    ) -> CredentialCheck:
        """
        Load the stored credential and refresh it if stale.

        Never raises. A missing file is detected before any network call.
        """
        try:
            path = self.token_path(account_id)
            if not path.exists():
                logger.debug("No Google credential stored for account %s", account_id)
                return CredentialCheck(CredentialStatus.MISSING)

            async with self._lock(account_id):
                return await self._load_and_refresh(path, client_id, client_secret, scopes, account_id)
        except Exception as e:
            logger.error("Google credential check failed for account %s: %s", account_id, e)
            return CredentialCheck(CredentialStatus.ERROR)

    async def _load_and_refresh(
        self,
        path: Path,
        client_id: str,
        client_secret: str,
        scopes: Sequence[str],
        account_id: str,
    ) -> CredentialCheck:
        text = self._store.read_text(path)
        if text is None:
            return CredentialCheck(CredentialStatus.MISSING)

        try:
            credentials = Credentials.from_authorized_user_info(json.loads(text))
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Stored Google credential for account %s is unreadable: %s", account_id, e)
            return CredentialCheck(CredentialStatus.CORRUPT)

        if credentials.valid:
            return CredentialCheck(CredentialStatus.VALID, credentials.token)

        if not credentials.refresh_token:
            logger.warning("Google credential for account %s expired and has no refresh token", account_id)
            return CredentialCheck(CredentialStatus.REFRESH_FAILED)

        try:
            status, body = await self._post_form(
                GOOGLE_TOKEN_URL,
                {
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "refresh_token": credentials.refresh_token,
                    "grant_type": "refresh_token",
                },
                account_id,
            )
        except TokenEndpointError as e:
            logger.warning("Google token refresh failed for account %s: %s", account_id, e.message)
            return CredentialCheck(CredentialStatus.REFRESH_FAILED)

        if status != 200 or "access_token" not in body:
            logger.warning(
                "Google token refresh rejected for account %s: %s",
                account_id,
                body.get("error_description") or body.get("error") or f"HTTP {status}",
            )
            return CredentialCheck(CredentialStatus.REFRESH_FAILED)

        refreshed = build_credentials(
            body,
            client_id,
            client_secret,
            credentials.scopes or scopes,
            refresh_token=credentials.refresh_token,
        )
        self._store.write_text(path, refreshed.to_json())
        logger.info("Refreshed Google credential for account %s", account_id)
        return CredentialCheck(CredentialStatus.REFRESHED, refreshed.token)

    async def has_valid_credential(
        self,
        client_id: str,
        client_secret: str,
        scopes: Sequence[str],
        account_id: str,
    ) -> bool:
        check = await self.check_credential(client_id, client_secret, scopes, account_id)
        return check.usable

    async def get_access_token(
        self,
        client_id: str,
        client_secret: str,
        scopes: Sequence[str],
        account_id: str,
    ) -> str | None:
        """Access token for API calls, or None when the account must sign in again."""
        check = await self.check_credential(client_id, client_secret, scopes, account_id)
        return check.access_token if check.usable else None

    # =========================================================================
    # Interactive sign-in
    # =========================================================================

    async def authenticate_interactive(
        self,
        client_id: str,
        client_secret: str,
        scopes: Sequence[str],
        account_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> bool:
        """
        Sign in through the system browser and store the credential.

        Returns:
            True once the credential is stored

        Raises:
            AuthCancelledError: If the user declines consent or cancel_event is set
            AuthFailedError: For any other failure
        """
        try:
            self.token_path(account_id)
            code_verifier, code_challenge = generate_pkce_pair()
            state = secrets.token_urlsafe(24)

            async with LoopbackRedirectListener(host="127.0.0.1") as listener:
                redirect_uri = listener.redirect_uri
                params = {
                    "client_id": client_id,
                    "redirect_uri": redirect_uri,
                    "response_type": "code",
                    "scope": " ".join(scopes),
                    "state": state,
                    "access_type": "offline",  # Get refresh token
                    "prompt": "consent",  # Force consent to ensure refresh token
                    "code_challenge": code_challenge,
                    "code_challenge_method": "S256",
                }
                logger.info("Opening browser for Google sign-in of account %s", account_id)
                self._open_browser(f"{GOOGLE_AUTH_URL}?{urlencode(params)}")
                redirect = await listener.wait_for_redirect(
                    cancel_event=cancel_event, account_id=account_id
                )

            error = redirect.get("error")
            if error == "access_denied":
                raise AuthCancelledError(account_id)
            if error:
                raise AuthFailedError(f"Authorization failed: {error}", account_id)
            if redirect.get("state") != state:
                raise AuthFailedError("Authorization response state mismatch", account_id)

            status, body = await self._post_form(
                GOOGLE_TOKEN_URL,
                {
                    "code": redirect.get("code", ""),
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "redirect_uri": redirect_uri,
                    "grant_type": "authorization_code",
                    "code_verifier": code_verifier,
                },
                account_id,
            )
            if status != 200 or "access_token" not in body:
                raise AuthFailedError(
                    f"Code exchange failed: {body.get('error_description') or body.get('error') or status}",
                    account_id,
                )
            if not body.get("refresh_token"):
                raise AuthFailedError("Google did not return a refresh token", account_id)

            await self._save(build_credentials(body, client_id, client_secret, scopes), account_id)
            return True

        except AuthCancelledError:
            logger.info("Google sign-in cancelled for account %s", account_id)
            raise
        except AuthFailedError as e:
            logger.error("Google sign-in failed for account %s: %s", account_id, e.message)
            raise
        except Exception as e:
            logger.error("Google sign-in failed for account %s: %s", account_id, e)
            raise AuthFailedError(f"Sign-in failed: {e}", account_id) from e

    # =========================================================================
    # Device authorization grant (RFC 8628)
    # =========================================================================

    async def authenticate_with_device_code(
        self,
        client_id: str,
        client_secret: str,
        scopes: Sequence[str],
        account_id: str,
        display_callback: Callable[[str, str], Any],
        cancel_event: asyncio.Event | None = None,
    ) -> bool:
        """
        Sign in with a device code.

        display_callback(verification_url, user_code) is called exactly once.
        The token endpoint is then polled every interval seconds until the
        user approves, denies, or the code expires.

        Returns:
            True once the credential is stored; False on denial, expiry or any
            other protocol error

        Raises:
            AuthCancelledError: If cancel_event is set while waiting
            AuthFailedError: If the device code request itself is rejected
            TokenEndpointError: If the endpoint cannot be reached
        """
        self.token_path(account_id)

        status, body = await self._post_form(
            GOOGLE_DEVICE_CODE_URL,
            {"client_id": client_id, "scope": " ".join(scopes)},
            account_id,
        )
        if status != 200 or "device_code" not in body:
            message = body.get("error_description") or body.get("error") or f"HTTP {status}"
            logger.error("Device code request failed for account %s: %s", account_id, message)
            raise AuthFailedError(f"Device code request failed: {message}", account_id)

        device_code = body["device_code"]
        verification_url = body.get("verification_url") or body.get("verification_uri", "")
        interval = _poll_interval(body.get("interval"))
        try:
            lifetime = float(body.get("expires_in") or DEFAULT_DEVICE_CODE_LIFETIME)
        except (TypeError, ValueError):
            lifetime = DEFAULT_DEVICE_CODE_LIFETIME
        deadline = self._clock() + lifetime

        await invoke_display_callback(display_callback, verification_url, body.get("user_code", ""))

        while True:
            self._check_cancelled(cancel_event, account_id)

            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.warning("Device code expired for account %s", account_id)
                return False

            await self._wait(min(interval, remaining), cancel_event, account_id)
            if self._clock() >= deadline:
                logger.warning("Device code expired for account %s", account_id)
                return False

            status, body = await self._post_form(
                GOOGLE_TOKEN_URL,
                {
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "device_code": device_code,
                    "grant_type": DEVICE_CODE_GRANT_TYPE,
                },
                account_id,
            )

            if status == 200 and "access_token" in body:
                if not body.get("refresh_token"):
                    logger.error("Google did not return a refresh token for account %s", account_id)
                    return False
                await self._save(build_credentials(body, client_id, client_secret, scopes), account_id)
                return True

            error = body.get("error")
            if error == "authorization_pending":
                continue
            if error == "slow_down":
                interval += SLOW_DOWN_INCREMENT
                logger.debug("Slowing device code polling for account %s to %ds", account_id, interval)
                continue
            if error == "access_denied":
                logger.warning("Device code sign-in denied for account %s", account_id)
            elif error == "expired_token":
                logger.warning("Device code expired for account %s", account_id)
            else:
                logger.error(
                    "Device code sign-in failed for account %s: %s",
                    account_id,
                    body.get("error_description") or error or f"HTTP {status}",
                )
            return False

    @staticmethod
    def _check_cancelled(cancel_event: asyncio.Event | None, account_id: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Device code sign-in cancelled for account %s", account_id)
            raise AuthCancelledError(account_id)

    async def _wait(self, delay: float, cancel_event: asyncio.Event | None, account_id: str) -> None:
        if cancel_event is None:
            await self._sleep(delay)
            return

        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()
        self._check_cancelled(cancel_event, account_id)
