"""
Tool: Account Settings
Purpose: Account records and settings file loading

Settings live in appsettings.json (or a .yaml/.yml file) in the data
directory. Keys are matched case-insensitively, so the PascalCase layout
{"CalendarMcp": {"Accounts": [...]}} and camelCase {"accounts": [...]} both
load.

Usage:
    from calendar_mcp.config import load_config

    config = load_config()
    for account in config.accounts:
        tenant_id, client_id = account.require_config("tenantId", "clientId")

Dependencies:
    - pydantic (pip install pydantic)
    - pyyaml (pip install pyyaml)
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from calendar_mcp import get_config_file_path
from calendar_mcp.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    MICROSOFT365 = "microsoft365"
    OUTLOOK_COM = "outlook.com"
    GOOGLE = "google"


def _fold(key: str) -> str:
    return key.replace("_", "").replace("-", "").casefold()


def _camel(key: str) -> str:
    """TenantId, tenant_id and tenantId all become tenantId."""
    if "_" in key:
        head, *rest = key.split("_")
        return head[:1].lower() + head[1:] + "".join(p[:1].upper() + p[1:] for p in rest)
    return key[:1].lower() + key[1:]


def _lookup(mapping: dict[str, Any], name: str) -> Any:
    """Case-insensitive key lookup, returning None when absent."""
    wanted = _fold(name)
    for key, value in mapping.items():
        if isinstance(key, str) and _fold(key) == wanted:
            return value
    return None


# =============================================================================
# AccountInfo
# =============================================================================

class AccountInfo(BaseModel):
    """
    One configured mailbox/calendar account.

    Field names are accepted in PascalCase (appsettings.json), camelCase or
    snake_case. provider_config keys are normalized to camelCase once here so
    the auth services can ask for "tenantId" and friends.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1)
    display_name: str = Field(default="")
    provider: str = Field(min_length=1)
    provider_config: dict[str, str] = Field(default_factory=dict)
    domains: frozenset[str] = Field(default_factory=frozenset)
    enabled: bool = Field(default=True)
    priority: int = Field(default=0)

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        fields = {_fold(name): name for name in cls.model_fields}
        normalized: dict[str, Any] = {}
        for key, value in data.items():
            name = fields.get(_fold(str(key)))
            if name is not None:
                normalized[name] = value
        return normalized

    @field_validator("id", "display_name", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("provider_config", mode="before")
    @classmethod
    def _normalize_provider_config(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, dict):
            return value
        return {_camel(str(k)): "" if v is None else str(v) for k, v in value.items()}

    @field_validator("domains", mode="before")
    @classmethod
    def _normalize_domains(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        return frozenset(str(d).strip().casefold() for d in value if str(d).strip())

    @property
    def provider_kind(self) -> Optional[ProviderKind]:
        try:
            return ProviderKind(self.provider)
        except ValueError:
            return None

    def get_config(self, key: str) -> Optional[str]:
        value = _lookup(self.provider_config, key)
        return value or None

    def require_config(self, *keys: str) -> tuple[str, ...]:
        """
        Get provider_config values that must be present.

        Args:
            keys: camelCase provider_config keys (e.g. "tenantId")

        Returns:
            The values in the order requested

        Raises:
            ConfigurationError: If any key is missing or empty
        """
        values = [self.get_config(key) for key in keys]
        missing = [key for key, value in zip(keys, values) if not value]
        if missing:
            raise ConfigurationError(
                f"Missing providerConfig {', '.join(missing)} for {self.provider} account",
                self.id,
            )
        return tuple(values)  # type: ignore[arg-type]


# =============================================================================
# CalendarMcpConfig (appsettings.json)
# =============================================================================

class CalendarMcpConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    accounts: list[AccountInfo] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        section = _lookup(data, "CalendarMcp")
        if isinstance(section, dict):
            data = section
        accounts = _lookup(data, "accounts")
        return {"accounts": accounts or []}


def _read_document(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    if path.suffix.lower() in (".yaml", ".yml"):
        return yaml.safe_load(text) or {}
    return json.loads(text)


def load_config(path: Path | str | None = None) -> CalendarMcpConfig:
    """
    Load account settings.

    Accepts {"CalendarMcp": {"Accounts": [...]}}, {"accounts": [...]} or the
    same shapes in YAML. A missing file is an empty configuration.

    Raises:
        ConfigurationError: If the file cannot be parsed or validated
    """
    config_path = Path(path) if path is not None else get_config_file_path()

    if not config_path.exists():
        logger.warning("Settings file %s not found, no accounts configured", config_path)
        return CalendarMcpConfig()

    try:
        raw = _read_document(config_path)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read settings file {config_path}: {e}") from e

    try:
        return CalendarMcpConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings in {config_path}: {e}") from e
