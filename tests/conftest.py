"""Shared test fixtures for calendar-mcp tests.

This module provides common fixtures used across all test modules:
- Data directory isolation with temporary paths
- Standard account records for every provider kind
- Registry and credential store built from those records

Usage:
    def test_something(registry, store):
        # store writes under a temporary data directory
        ...
"""

import json
from pathlib import Path

import pytest

from calendar_mcp.auth.credential_store import CredentialStore
from calendar_mcp.config import AccountInfo
from calendar_mcp.registry import AccountRegistry


# ─────────────────────────────────────────────────────────────────────────────
# Path Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point CALENDAR_MCP_CONFIG at a temporary data directory.

    Returns:
        Path to the (existing) temporary data directory
    """
    directory = tmp_path / "CalendarMcp"
    directory.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("CALENDAR_MCP_CONFIG", str(directory))
    return directory


@pytest.fixture
def store(data_dir: Path) -> CredentialStore:
    return CredentialStore(data_dir)


# ─────────────────────────────────────────────────────────────────────────────
# Account Fixtures
# ─────────────────────────────────────────────────────────────────────────────


SAMPLE_SETTINGS = {
    "CalendarMcp": {
        "Accounts": [
            {
                "Id": "work-a",
                "DisplayName": "Work A",
                "Provider": "microsoft365",
                "Enabled": True,
                "Priority": 10,
                "Domains": ["contoso.com"],
                "ProviderConfig": {"TenantId": "tenant-a", "ClientId": "client-shared"},
            },
            {
                "id": "work-b",
                "displayName": "Work B",
                "provider": "microsoft365",
                "enabled": True,
                "priority": 5,
                "domains": ["fabrikam.com"],
                "providerConfig": {"tenantId": "tenant-b", "clientId": "client-shared"},
            },
            {
                "Id": "personal",
                "DisplayName": "Personal Gmail",
                "Provider": "Google",
                "Domains": ["gmail.com"],
                "ProviderConfig": {"ClientId": "google-client", "ClientSecret": "google-secret"},
            },
            {
                "Id": "hotmail",
                "DisplayName": "Old Hotmail",
                "Provider": "outlook.com",
                "Enabled": False,
                "Domains": ["hotmail.com", "outlook.com"],
                "ProviderConfig": {"ClientId": "msa-client"},
            },
        ]
    }
}


@pytest.fixture
def sample_settings() -> dict:
    return json.loads(json.dumps(SAMPLE_SETTINGS))


@pytest.fixture
def sample_accounts(sample_settings) -> list[AccountInfo]:
    return [AccountInfo.model_validate(a) for a in sample_settings["CalendarMcp"]["Accounts"]]


@pytest.fixture
def registry(sample_accounts) -> AccountRegistry:
    return AccountRegistry(sample_accounts)


@pytest.fixture
def settings_file(data_dir: Path, sample_settings) -> Path:
    """Write the sample settings as appsettings.json in the data directory."""
    path = data_dir / "appsettings.json"
    path.write_text(json.dumps(sample_settings, indent=2), encoding="utf-8")
    return path
