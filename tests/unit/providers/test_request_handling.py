"""Tests for the shared HTTP plumbing in calendar_mcp/providers/base.py"""

from datetime import timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from calendar_mcp.errors import ProviderApiError
from calendar_mcp.providers.base import (
    REQUEST_TIMEOUT_SECONDS,
    as_recipient_list,
    default_event_window,
    reenroll_hint,
)
from calendar_mcp.providers.microsoft_365 import M365ProviderService


@pytest.fixture
def provider(registry):
    return M365ProviderService(registry, MagicMock())


def fake_response(status, body=None, json_error=None):
    resp = MagicMock()
    resp.status = status
    if json_error is not None:
        resp.json = AsyncMock(side_effect=json_error)
    else:
        resp.json = AsyncMock(return_value=body)
    return resp


class TestHandleResponse:
    @pytest.mark.asyncio
    async def test_success_returns_body(self, provider):
        resp = fake_response(200, {"value": [1, 2]})

        assert await provider._handle_response(resp, "work-a", "get_emails") == {"value": [1, 2]}

    @pytest.mark.asyncio
    async def test_no_content(self, provider):
        resp = fake_response(204)

        assert await provider._handle_response(resp, "work-a", "delete_event") == {}
        resp.json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_json_success_is_empty(self, provider):
        resp = fake_response(202, json_error=ValueError("not json"))

        assert await provider._handle_response(resp, "work-a", "send_email") == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, detail",
        [
            (401, "token may be expired"),
            (403, "insufficient scopes"),
            (404, "Resource not found"),
        ],
    )
    async def test_known_statuses(self, provider, status, detail):
        resp = fake_response(status, {})

        with pytest.raises(ProviderApiError) as exc_info:
            await provider._handle_response(resp, "work-a", "list_calendars")

        error = exc_info.value
        assert error.status == status
        assert error.account_id == "work-a"
        assert error.operation == "list_calendars"
        assert detail in str(error)

    @pytest.mark.asyncio
    async def test_error_message_from_body(self, provider):
        resp = fake_response(400, {"error": {"code": "BadRequest", "message": "Invalid filter clause"}})

        with pytest.raises(ProviderApiError) as exc_info:
            await provider._handle_response(resp, "work-b", "get_emails")

        assert "Invalid filter clause" in str(exc_info.value)
        assert "work-b" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_failure_is_logged_with_account(self, provider, caplog):
        resp = fake_response(500, {"error": "server"})

        with pytest.raises(ProviderApiError):
            await provider._handle_response(resp, "work-a", "get_calendar_events")

        assert "work-a" in caplog.text
        assert "get_calendar_events" in caplog.text


class TestRequest:
    @pytest.mark.asyncio
    async def test_connection_error_becomes_api_error(self, provider):
        with patch(
            "calendar_mcp.providers.base.aiohttp.ClientSession",
            side_effect=aiohttp.ClientConnectionError("refused"),
        ):
            with pytest.raises(ProviderApiError) as exc_info:
                await provider._request("work-a", "get_emails", "GET", "https://example.invalid", "t")

        assert exc_info.value.account_id == "work-a"
        assert exc_info.value.operation == "get_emails"
        assert exc_info.value.status is None

    @pytest.mark.asyncio
    async def test_timeout_and_params(self, provider):
        session = MagicMock()
        session.__aenter__ = AsyncMock(return_value=session)
        session.__aexit__ = AsyncMock(return_value=False)
        resp = fake_response(200, {"ok": True})
        request_ctx = MagicMock()
        request_ctx.__aenter__ = AsyncMock(return_value=resp)
        request_ctx.__aexit__ = AsyncMock(return_value=False)
        session.request = MagicMock(return_value=request_ctx)

        with patch("calendar_mcp.providers.base.aiohttp.ClientSession", return_value=session) as cls:
            result = await provider._request(
                "work-a",
                "get_emails",
                "GET",
                "https://graph.example/me/messages",
                "tok",
                params={"$top": 5, "$filter": None, "flag": True},
            )

        assert result == {"ok": True}
        timeout = cls.call_args.kwargs["timeout"]
        assert timeout.total == REQUEST_TIMEOUT_SECONDS == 30

        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert (method, url) == ("GET", "https://graph.example/me/messages")
        assert kwargs["params"] == {"$top": "5", "flag": "true"}
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["headers"]["Prefer"] == 'outlook.timezone="UTC"'


class TestHelpers:
    def test_default_window(self):
        start, end = default_event_window()

        assert start.tzinfo is timezone.utc
        assert (start.hour, start.minute, start.second) == (0, 0, 0)
        assert end - start == timedelta(days=30)

    def test_reenroll_hint_names_account(self, registry):
        hint = reenroll_hint(registry.get_by_id("work-a"))

        assert "calendar-mcp login work-a" in hint
        assert "--device-code" in hint

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("a@x.com", ["a@x.com"]),
            ("a@x.com, b@x.com;c@x.com", ["a@x.com", "b@x.com", "c@x.com"]),
            (["a@x.com", " ", "b@x.com "], ["a@x.com", "b@x.com"]),
            (None, []),
        ],
    )
    def test_recipient_list(self, value, expected):
        assert as_recipient_list(value) == expected
