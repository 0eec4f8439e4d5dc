"""
Tool: Account Registry
Purpose: Immutable, case-insensitive lookup of configured accounts

Usage:
    from calendar_mcp.config import load_config
    from calendar_mcp.registry import AccountRegistry

    registry = AccountRegistry.from_config(load_config())
    account = registry.get_by_id("Work-A")
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from calendar_mcp.config import AccountInfo, CalendarMcpConfig

logger = logging.getLogger(__name__)


class AccountRegistry:
    """
    Accounts keyed by id, compared case-insensitively.

    Loaded once at construction and never modified afterwards, so it can be
    shared freely between concurrent tasks. When two entries differ only in
    id casing the later one wins.
    """

    def __init__(self, accounts: Iterable[AccountInfo] = ()):
        by_id: dict[str, AccountInfo] = {}
        for account in accounts:
            key = account.id.casefold()
            if key in by_id:
                logger.warning(
                    "Duplicate account id %s (also configured as %s), keeping the later entry",
                    account.id,
                    by_id[key].id,
                )
            by_id[key] = account
        self._accounts = by_id
        self._log_summary()

    @classmethod
    def from_config(cls, config: CalendarMcpConfig) -> "AccountRegistry":
        return cls(config.accounts)

    def _log_summary(self) -> None:
        if not self._accounts:
            logger.warning(
                "No accounts configured. Add accounts to the settings file and run "
                "'calendar-mcp login <account-id>' to authenticate them."
            )
            return

        for account in self._accounts.values():
            logger.info(
                "Loaded account %s (%s): provider=%s, domains=%s, %s, priority=%d",
                account.id,
                account.display_name,
                account.provider,
                ", ".join(sorted(account.domains)) or "-",
                "enabled" if account.enabled else "disabled",
                account.priority,
            )

        enabled = len(self.get_enabled())
        logger.info(
            "Account registry loaded: %d accounts (%d enabled, %d disabled)",
            len(self._accounts),
            enabled,
            len(self._accounts) - enabled,
        )

    def get_all(self) -> list[AccountInfo]:
        return list(self._accounts.values())

    def get_by_id(self, account_id: str) -> AccountInfo | None:
        if not account_id:
            return None
        return self._accounts.get(account_id.strip().casefold())

    def get_enabled(self) -> list[AccountInfo]:
        return [a for a in self._accounts.values() if a.enabled]

    def get_by_provider(self, provider: str) -> list[AccountInfo]:
        """Accounts whose provider matches, ignoring case. Includes disabled accounts."""
        wanted = provider.strip().casefold()
        return [a for a in self._accounts.values() if a.provider.casefold() == wanted]

    def get_by_domain(self, domain: str) -> list[AccountInfo]:
        """Accounts listing the domain as a routing hint, ignoring case."""
        wanted = domain.strip().lstrip("@").casefold()
        return [a for a in self._accounts.values() if wanted in a.domains]

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, account_id: object) -> bool:
        return isinstance(account_id, str) and self.get_by_id(account_id) is not None
