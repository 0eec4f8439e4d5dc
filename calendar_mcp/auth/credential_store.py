"""
Tool: Credential Store
Purpose: Per-account, per-provider credential cache locations

Every (provider, account) pair gets its own file, even when two accounts
share an OAuth client. Paths depend on the account id only.

    <data_dir>/msal_cache_<account_id>.bin          Microsoft (MSAL cache blob)
    <data_dir>/google/<account_id>/token.json       Google (authorized-user JSON)
"""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path

from calendar_mcp import get_data_directory
from calendar_mcp.errors import ConfigurationError


GOOGLE_TOKEN_FILE = "token.json"

_SAFE_ID = re.compile(r"^[A-Za-z0-9._@+-]+$")


def _safe_component(account_id: str) -> str:
    """Validate an account id for use in a file name. Lower-cased so lookups ignore case."""
    if not account_id or not _SAFE_ID.match(account_id) or account_id in (".", ".."):
        raise ConfigurationError(
            "Account id cannot be used as a file name (letters, digits, '.', '_', '-', '@', '+')",
            account_id or None,
        )
    return account_id.lower()


class CredentialStore:
    """Resolves and writes credential cache files under one data directory."""

    def __init__(self, data_dir: Path | str | None = None):
        self.data_dir = Path(data_dir) if data_dir is not None else get_data_directory()

    def msal_cache_path(self, account_id: str) -> Path:
        return self.data_dir / f"msal_cache_{_safe_component(account_id)}.bin"

    def google_credentials_dir(self, account_id: str) -> Path:
        return self.data_dir / "google" / _safe_component(account_id)

    def google_token_path(self, account_id: str) -> Path:
        return self.google_credentials_dir(account_id) / GOOGLE_TOKEN_FILE

    @staticmethod
    def read_text(path: Path) -> str | None:
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    @staticmethod
    def write_text(path: Path, content: str) -> None:
        """
        Write a credential file atomically with owner-only permissions.

        A temp file in the same directory is renamed over the target so a
        crash never leaves a truncated cache behind.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            try:
                os.chmod(tmp_name, 0o600)
            except OSError:
                pass  # Not supported on every filesystem
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
