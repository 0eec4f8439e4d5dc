"""
Tool: Provider Service Factory
Purpose: Resolve an account id to the provider service that serves it

This is the only place that branches on the provider kind.

Usage:
    factory = create_default_factory(registry)
    service = factory.resolve("work-a")
    emails = await service.get_emails("work-a")
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from calendar_mcp.auth.credential_store import CredentialStore
from calendar_mcp.auth.google import GoogleAuthenticationService
from calendar_mcp.auth.microsoft import MicrosoftAuthenticationService
from calendar_mcp.config import AccountInfo, ProviderKind
from calendar_mcp.errors import AccountNotFoundError, UnsupportedProviderError
from calendar_mcp.providers.base import ProviderService
from calendar_mcp.providers.google_workspace import GoogleProviderService
from calendar_mcp.providers.microsoft_365 import M365ProviderService, OutlookComProviderService
from calendar_mcp.registry import AccountRegistry

logger = logging.getLogger(__name__)


class ProviderServiceFactory:
    def __init__(self, registry: AccountRegistry, services: dict[ProviderKind, ProviderService]):
        self.registry = registry
        self._services = dict(services)

    def resolve(self, account_id: str) -> ProviderService:
        """
        Get the provider service for an account.

        Raises:
            AccountNotFoundError: If no account has this id
            UnsupportedProviderError: If the account's provider has no service
        """
        account = self.registry.get_by_id(account_id)
        if account is None:
            logger.error("Account %s not found in registry", account_id)
            raise AccountNotFoundError(account_id)
        return self._service_for(account)

    def _service_for(self, account: AccountInfo) -> ProviderService:
        kind = account.provider_kind
        service = self._services.get(kind) if kind is not None else None
        if service is None:
            logger.error("Account %s uses unsupported provider %s", account.id, account.provider)
            raise UnsupportedProviderError(account.id, account.provider)
        return service

    def resolve_many(
        self, account_ids: Iterable[str] | None = None
    ) -> list[tuple[AccountInfo, ProviderService]]:
        """
        Pair accounts with their services.

        With no ids, every enabled account is used. Unknown ids and
        unsupported providers raise just like resolve().
        """
        if account_ids is None:
            accounts = self.registry.get_enabled()
        else:
            accounts = []
            for account_id in account_ids:
                account = self.registry.get_by_id(account_id)
                if account is None:
                    logger.error("Account %s not found in registry", account_id)
                    raise AccountNotFoundError(account_id)
                accounts.append(account)
        return [(account, self._service_for(account)) for account in accounts]


def create_default_factory(
    registry: AccountRegistry, data_dir: Path | str | None = None
) -> ProviderServiceFactory:
    """Wire one auth service per provider family and the three provider services."""
    store = CredentialStore(data_dir)
    microsoft_auth = MicrosoftAuthenticationService(store)
    google_auth = GoogleAuthenticationService(store)

    return ProviderServiceFactory(
        registry,
        {
            ProviderKind.MICROSOFT365: M365ProviderService(registry, microsoft_auth),
            ProviderKind.OUTLOOK_COM: OutlookComProviderService(registry, microsoft_auth),
            ProviderKind.GOOGLE: GoogleProviderService(registry, google_auth),
        },
    )
