"""Calendar MCP: multi-account email and calendar for Microsoft 365, Outlook.com and Google

Philosophy:
    One process, many mailboxes. Each configured account keeps its own
    credential cache and is resolved to the right provider at call time, so
    callers only ever pass an account id.

Components:
    config.py: Account records and settings loading (JSON or YAML)
    registry.py: Immutable, case-insensitive account lookup
    errors.py: Exception hierarchy shared by every layer
    models.py: Normalized email and calendar records
    auth/: Credential store and Microsoft/Google authentication services
    providers/: Graph and Google REST provider services plus the factory
    cli.py: Enrollment and diagnostics commands
"""

import os
import sys
from pathlib import Path


# Path constants
APP_DIR_NAME = "CalendarMcp"
CONFIG_FILE_NAME = "appsettings.json"
CONFIG_ENV_VAR = "CALENDAR_MCP_CONFIG"


def get_data_directory() -> Path:
    """
    Get the directory that holds settings, credential caches and logs.

    CALENDAR_MCP_CONFIG overrides the platform default. It may point at the
    directory itself or at a .json settings file inside it.

    Returns:
        Path to the data directory (not created)
    """
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        path = Path(override).expanduser()
        if path.suffix.lower() in (".json", ".yaml", ".yml"):
            return path.parent
        return path

    if sys.platform == "win32":
        base = os.environ.get("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
    else:
        base = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / APP_DIR_NAME


def get_config_file_path() -> Path:
    """Get the settings file path, honouring an explicit file in CALENDAR_MCP_CONFIG."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        path = Path(override).expanduser()
        if path.suffix.lower() in (".json", ".yaml", ".yml"):
            return path
    return get_data_directory() / CONFIG_FILE_NAME


def get_log_directory() -> Path:
    return get_data_directory() / "logs"
