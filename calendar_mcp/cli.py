#!/usr/bin/env python3
"""
Calendar MCP Command Line Interface

Main entry point for the `calendar-mcp` command. Enrollment and
diagnostics for the accounts in the settings file.

Usage:
    calendar-mcp list-accounts                 # Show configured accounts
    calendar-mcp test-account work-a           # Check for a usable cached credential
    calendar-mcp login work-a                  # Sign in through the browser
    calendar-mcp login work-a --device-code    # Sign in on a headless machine
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from calendar_mcp import get_data_directory
from calendar_mcp.config import load_config
from calendar_mcp.errors import AuthCancelledError, CalendarMcpError
from calendar_mcp.logging_config import setup_logging
from calendar_mcp.providers.base import reenroll_hint
from calendar_mcp.providers.factory import create_default_factory
from calendar_mcp.registry import AccountRegistry

logger = logging.getLogger(__name__)


def _data_directory(args) -> Path:
    """Logs and credential caches live beside the settings file given with --config."""
    if args.config:
        return Path(args.config).expanduser().parent
    return get_data_directory()


def _load_registry(args) -> AccountRegistry:
    return AccountRegistry.from_config(load_config(args.config))


def cmd_list_accounts(args) -> int:
    """Handle list-accounts subcommand."""
    registry = _load_registry(args)
    accounts = registry.get_all()
    if not accounts:
        print("No accounts configured.")
        print("Add accounts to the settings file, then run: calendar-mcp login <account-id>")
        return 0

    rows = [("ID", "Display Name", "Provider", "Enabled", "Priority", "Domains")]
    for account in sorted(accounts, key=lambda a: (-a.priority, a.id.casefold())):
        rows.append((
            account.id,
            account.display_name,
            account.provider,
            "yes" if account.enabled else "no",
            str(account.priority),
            ", ".join(sorted(account.domains)),
        ))

    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
    for row in rows:
        print("  ".join(value.ljust(width) for value, width in zip(row, widths)).rstrip())

    print(f"\n{len(accounts)} accounts ({len(registry.get_enabled())} enabled)")
    return 0


def cmd_test_account(args) -> int:
    """Handle test-account subcommand.

    Only the silent path is tried, so this never opens a browser.
    """
    registry = _load_registry(args)
    factory = create_default_factory(registry, _data_directory(args))
    account = registry.get_by_id(args.account_id)
    service = factory.resolve(args.account_id)

    print(f"Testing account {account.id} ({account.display_name}, {account.provider})...")
    if asyncio.run(service.check_credential(account.id)):
        print("  [OK] Authenticated, token acquired silently")
        return 0

    print("  [!!] No valid credential")
    print(f"  {reenroll_hint(account)}")
    return 1


def cmd_login(args) -> int:
    """Handle login subcommand."""
    registry = _load_registry(args)
    factory = create_default_factory(registry, _data_directory(args))
    account = registry.get_by_id(args.account_id)
    service = factory.resolve(args.account_id)

    method = "device code" if args.device_code else "browser"
    print(f"Signing in account {account.id} ({account.provider}) with {method} flow...")
    if not args.device_code:
        print("A browser window will open. Complete the sign-in there.")

    ok = asyncio.run(service.enroll(account.id, use_device_code=args.device_code, display=print))
    if ok:
        print(f"  [OK] Account {account.id} is authenticated")
        return 0

    print(f"  [!!] Sign-in for {account.id} was denied or the code expired")
    return 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="calendar-mcp",
        description="Calendar MCP account enrollment and diagnostics",
    )
    parser.add_argument("--config", help="Settings file (default: appsettings.json in the data directory)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level to stderr")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("list-accounts", help="Show configured accounts")

    test_parser = subparsers.add_parser("test-account", help="Check that an account has a usable credential")
    test_parser.add_argument("account_id", help="Account ID")

    login_parser = subparsers.add_parser("login", help="Sign in an account and cache its credential")
    login_parser.add_argument("account_id", help="Account ID")
    login_parser.add_argument(
        "--device-code",
        action="store_true",
        help="Use the device code flow instead of opening a browser",
    )

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(
        level="INFO" if args.verbose else "WARNING",
        log_file=_data_directory(args) / "logs" / "calendar-mcp.log",
    )

    handlers = {
        "list-accounts": cmd_list_accounts,
        "test-account": cmd_test_account,
        "login": cmd_login,
    }

    try:
        return handlers[args.command](args)
    except AuthCancelledError:
        print("Sign-in cancelled.")
        return 130
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    except CalendarMcpError as e:
        logger.error("%s failed for account %s: %s", args.command, e.account_id, e.message)
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
