"""Provider services: platform-specific email and calendar implementations

This package contains provider services for each supported account kind:
- microsoft_365.py: Microsoft 365 and Outlook.com (via Graph API)
- google_workspace.py: Gmail, Google Calendar
- factory.py: Account id -> provider service resolution

All providers implement the ProviderService abstract base class from base.py.
"""

from calendar_mcp.providers.base import ProviderService

__all__ = ["ProviderService"]
