"""Authentication services and credential storage

Components:
    credential_store.py: Per-account cache file locations and atomic writes
    loopback.py: Local redirect listener for browser sign-in
    microsoft.py: MSAL-backed service for Microsoft 365 and Outlook.com
    google.py: OAuth 2.0 and device-code (RFC 8628) service for Google
"""

import base64
import hashlib
import inspect
import re
import secrets
from collections.abc import Callable, Sequence
from typing import Any


MICROSOFT_DEFAULT_SCOPES = [
    "Mail.Read",
    "Mail.Send",
    "Calendars.ReadWrite",
]

GOOGLE_DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.compose",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
]


def parse_scopes(value: str | None, default: Sequence[str]) -> list[str]:
    """Split a comma or space separated scope override, falling back to default."""
    if not value:
        return list(default)
    scopes = [s for s in re.split(r"[\s,]+", value) if s]
    return scopes or list(default)


def generate_pkce_pair() -> tuple[str, str]:
    """
    Generate PKCE code verifier and challenge pair per RFC 7636.

    Returns:
        Tuple of (code_verifier, code_challenge)
    """
    verifier_bytes = secrets.token_bytes(43)
    code_verifier = base64.urlsafe_b64encode(verifier_bytes).rstrip(b"=").decode("ascii")

    challenge_bytes = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(challenge_bytes).rstrip(b"=").decode("ascii")

    return code_verifier, code_challenge


async def invoke_display_callback(callback: Callable[..., Any], *args: Any) -> None:
    """Call a device-code display callback, awaiting it if it is a coroutine function."""
    result = callback(*args)
    if inspect.isawaitable(result):
        await result
