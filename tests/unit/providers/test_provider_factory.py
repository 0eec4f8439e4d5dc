"""Tests for calendar_mcp/providers/factory.py"""

from unittest.mock import MagicMock

import pytest

from calendar_mcp.config import AccountInfo, ProviderKind
from calendar_mcp.errors import AccountNotFoundError, UnsupportedProviderError
from calendar_mcp.providers.factory import ProviderServiceFactory, create_default_factory
from calendar_mcp.providers.google_workspace import GoogleProviderService
from calendar_mcp.providers.microsoft_365 import M365ProviderService, OutlookComProviderService
from calendar_mcp.registry import AccountRegistry


@pytest.fixture
def factory(registry, data_dir):
    return create_default_factory(registry, data_dir)


class TestResolve:
    def test_resolves_each_provider_kind(self, factory):
        assert isinstance(factory.resolve("work-a"), M365ProviderService)
        assert isinstance(factory.resolve("personal"), GoogleProviderService)
        assert isinstance(factory.resolve("hotmail"), OutlookComProviderService)

    def test_lookup_ignores_case(self, factory):
        assert factory.resolve("WORK-A") is factory.resolve("work-a")

    def test_same_kind_shares_one_service(self, factory):
        assert factory.resolve("work-a") is factory.resolve("work-b")

    def test_one_auth_service_per_family(self, factory):
        m365 = factory.resolve("work-a")
        outlook = factory.resolve("hotmail")
        assert m365.auth is outlook.auth

    def test_unknown_account(self, factory):
        with pytest.raises(AccountNotFoundError) as exc_info:
            factory.resolve("nobody")

        assert exc_info.value.account_id == "nobody"

    def test_unsupported_provider(self, data_dir):
        registry = AccountRegistry([AccountInfo(id="icloud", provider="icloud")])
        factory = create_default_factory(registry, data_dir)

        with pytest.raises(UnsupportedProviderError) as exc_info:
            factory.resolve("icloud")

        assert exc_info.value.account_id == "icloud"
        assert exc_info.value.provider == "icloud"

    def test_missing_service_is_unsupported(self, registry):
        factory = ProviderServiceFactory(registry, {ProviderKind.GOOGLE: MagicMock()})

        with pytest.raises(UnsupportedProviderError):
            factory.resolve("work-a")


class TestResolveMany:
    def test_defaults_to_enabled_accounts(self, factory):
        pairs = factory.resolve_many()

        assert [account.id for account, _ in pairs] == ["work-a", "work-b", "personal"]
        assert isinstance(pairs[2][1], GoogleProviderService)

    def test_explicit_ids(self, factory):
        pairs = factory.resolve_many(["Hotmail", "personal"])

        assert [account.id for account, _ in pairs] == ["hotmail", "personal"]

    def test_unknown_id_raises(self, factory):
        with pytest.raises(AccountNotFoundError):
            factory.resolve_many(["work-a", "ghost"])
