"""Tests for calendar_mcp/providers/microsoft_365.py"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from calendar_mcp.config import AccountInfo
from calendar_mcp.errors import ConfigurationError, NoCredentialError, ProviderApiError
from calendar_mcp.models import ResponseStatus
from calendar_mcp.providers.microsoft_365 import (
    GRAPH_API_BASE,
    M365ProviderService,
    OutlookComProviderService,
)
from calendar_mcp.registry import AccountRegistry


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def auth():
    mock = MagicMock()
    mock.get_token_silently = AsyncMock(return_value="graph-token")
    mock.authenticate_interactive = AsyncMock(return_value="graph-token")
    mock.authenticate_with_device_code = AsyncMock(return_value="graph-token")
    return mock


@pytest.fixture
def provider(registry, auth):
    return M365ProviderService(registry, auth)


GRAPH_EVENT = {
    "id": "evt-1",
    "subject": "Planning",
    "start": {"dateTime": "2024-05-01T14:00:00.0000000", "timeZone": "UTC"},
    "end": {"dateTime": "2024-05-01T15:00:00.0000000", "timeZone": "UTC"},
    "isAllDay": False,
    "location": {"displayName": "Room 4"},
    "bodyPreview": "Agenda",
    "organizer": {"emailAddress": {"address": "boss@contoso.com", "name": "Boss"}},
    "attendees": [
        {
            "emailAddress": {"address": "boss@contoso.com", "name": "Boss"},
            "status": {"response": "organizer"},
            "type": "required",
        },
        {
            "emailAddress": {"address": "me@contoso.com", "name": "Me"},
            "status": {"response": "tentativelyAccepted"},
            "type": "optional",
        },
    ],
    "responseStatus": {"response": "tentativelyAccepted"},
    "isOrganizer": False,
}

GRAPH_MESSAGE = {
    "id": "msg-1",
    "subject": "Hello",
    "from": {"emailAddress": {"address": "alice@contoso.com", "name": "Alice"}},
    "toRecipients": [{"emailAddress": {"address": "me@contoso.com"}}],
    "ccRecipients": [],
    "bodyPreview": "Hi there",
    "receivedDateTime": "2024-05-01T08:00:00Z",
    "isRead": False,
    "hasAttachments": True,
}


class TestCredentials:
    @pytest.mark.asyncio
    async def test_token_uses_account_config(self, provider, auth):
        with patch.object(provider, "_request", AsyncMock(return_value={"value": []})):
            await provider.get_emails("Work-A")

        auth.get_token_silently.assert_awaited_once_with(
            "tenant-a",
            "client-shared",
            ["Mail.Read", "Mail.Send", "Calendars.ReadWrite"],
            "work-a",
        )

    @pytest.mark.asyncio
    async def test_read_without_credential_is_empty(self, provider, auth, caplog):
        auth.get_token_silently.return_value = None
        request = AsyncMock()

        with patch.object(provider, "_request", request):
            assert await provider.get_emails("work-a") == []
            assert await provider.search_emails("work-a", "x") == []
            assert await provider.list_calendars("work-a") == []
            assert await provider.get_calendar_events("work-a") == []
            assert await provider.get_email_details("work-a", "m") is None

        request.assert_not_awaited()
        assert "calendar-mcp login work-a" in caplog.text

    @pytest.mark.asyncio
    async def test_write_without_credential_raises(self, provider, auth):
        auth.get_token_silently.return_value = None
        start = datetime(2024, 5, 1, 9, tzinfo=timezone.utc)

        with pytest.raises(NoCredentialError) as exc_info:
            await provider.send_email("work-a", "x@y.com", "s", "b")
        assert exc_info.value.account_id == "work-a"

        with pytest.raises(NoCredentialError):
            await provider.create_event("work-a", None, "s", start, start + timedelta(hours=1))
        with pytest.raises(NoCredentialError):
            await provider.update_event("work-a", None, "e", subject="x")
        with pytest.raises(NoCredentialError):
            await provider.delete_event("work-a", None, "e")

    @pytest.mark.asyncio
    async def test_missing_tenant_is_configuration_error(self, auth):
        account = AccountInfo(id="bad", provider="microsoft365", provider_config={"clientId": "c"})
        provider = M365ProviderService(AccountRegistry([account]), auth)

        with pytest.raises(ConfigurationError) as exc_info:
            await provider.check_credential("bad")

        assert exc_info.value.account_id == "bad"
        assert "tenantId" in str(exc_info.value)
        auth.get_token_silently.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_outlook_com_defaults_to_consumers(self, registry, auth):
        provider = OutlookComProviderService(registry, auth)

        assert await provider.check_credential("hotmail") is True
        auth.get_token_silently.assert_awaited_once()
        assert auth.get_token_silently.await_args.args[:2] == ("consumers", "msa-client")

    @pytest.mark.asyncio
    async def test_scopes_override(self, auth):
        account = AccountInfo(
            id="custom",
            provider="microsoft365",
            provider_config={"tenantId": "t", "clientId": "c", "scopes": "Calendars.Read Mail.Read"},
        )
        provider = M365ProviderService(AccountRegistry([account]), auth)

        await provider.check_credential("custom")

        assert auth.get_token_silently.await_args.args[2] == ["Calendars.Read", "Mail.Read"]

    @pytest.mark.asyncio
    async def test_enroll_device_code(self, provider, auth):
        display = MagicMock()

        assert await provider.enroll("work-b", use_device_code=True, display=display) is True

        auth.authenticate_with_device_code.assert_awaited_once()
        args = auth.authenticate_with_device_code.await_args.args
        assert args[:2] == ("tenant-b", "client-shared")
        assert args[3] == "work-b"
        assert args[4] is display
        auth.authenticate_interactive.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_enroll_interactive(self, provider, auth):
        assert await provider.enroll("work-a") is True
        auth.authenticate_interactive.assert_awaited_once()
        auth.authenticate_with_device_code.assert_not_awaited()


class TestEmail:
    @pytest.mark.asyncio
    async def test_get_emails(self, provider):
        request = AsyncMock(return_value={"value": [GRAPH_MESSAGE]})

        with patch.object(provider, "_request", request):
            emails = await provider.get_emails("work-a", count=5, unread_only=True)

        account_id, operation, method, url, token = request.await_args.args
        params = request.await_args.kwargs["params"]
        assert (account_id, operation, method, token) == ("work-a", "get_emails", "GET", "graph-token")
        assert url == f"{GRAPH_API_BASE}/me/messages"
        assert params["$top"] == 5
        assert params["$filter"] == "isRead eq false"

        email = emails[0]
        assert email.id == "msg-1"
        assert email.account_id == "work-a"
        assert email.from_address == "alice@contoso.com"
        assert email.from_name == "Alice"
        assert email.to == ["me@contoso.com"]
        assert email.received_at == datetime(2024, 5, 1, 8, tzinfo=timezone.utc)
        assert email.has_attachments is True
        assert email.provider == "microsoft365"

    @pytest.mark.asyncio
    async def test_recipients_without_address_are_skipped(self, provider):
        message = {
            **GRAPH_MESSAGE,
            "toRecipients": [
                {"emailAddress": {"name": "Undisclosed recipients"}},
                {"emailAddress": {"address": "me@contoso.com"}},
                {},
            ],
            "ccRecipients": [{"emailAddress": None}],
        }

        with patch.object(provider, "_request", AsyncMock(return_value={"value": [message]})):
            emails = await provider.get_emails("work-a")

        assert emails[0].to == ["me@contoso.com"]
        assert emails[0].cc == []

    @pytest.mark.asyncio
    async def test_get_emails_without_unread_filter(self, provider):
        request = AsyncMock(return_value={"value": []})

        with patch.object(provider, "_request", request):
            await provider.get_emails("work-a")

        assert request.await_args.kwargs["params"]["$filter"] is None

    @pytest.mark.asyncio
    async def test_search_builds_kql(self, provider):
        request = AsyncMock(return_value={"value": []})

        with patch.object(provider, "_request", request):
            await provider.search_emails(
                "work-a",
                'budget "q3"',
                from_date=datetime(2024, 4, 1, tzinfo=timezone.utc),
                to_date=datetime(2024, 4, 30, tzinfo=timezone.utc),
            )

        params = request.await_args.kwargs["params"]
        assert params["$search"] == "\"budget 'q3' received>=2024-04-01 received<=2024-04-30\""
        assert "$orderby" not in params

    @pytest.mark.asyncio
    async def test_email_details_include_body(self, provider):
        detail = {**GRAPH_MESSAGE, "body": {"contentType": "html", "content": "<p>Hi</p>"}}

        with patch.object(provider, "_request", AsyncMock(return_value=detail)):
            email = await provider.get_email_details("work-a", "msg-1")

        assert email.body == "<p>Hi</p>"
        assert email.body_format == "html"

    @pytest.mark.asyncio
    async def test_email_details_not_found(self, provider):
        error = ProviderApiError("work-a", "get_email_details", "Resource not found", status=404)

        with patch.object(provider, "_request", AsyncMock(side_effect=error)):
            assert await provider.get_email_details("work-a", "gone") is None

    @pytest.mark.asyncio
    async def test_email_details_other_errors_propagate(self, provider):
        error = ProviderApiError("work-a", "get_email_details", "boom", status=500)

        with patch.object(provider, "_request", AsyncMock(side_effect=error)):
            with pytest.raises(ProviderApiError):
                await provider.get_email_details("work-a", "msg-1")

    @pytest.mark.asyncio
    async def test_send_email_drafts_then_sends(self, provider):
        request = AsyncMock(side_effect=[{"id": "draft-1"}, {}])

        with patch.object(provider, "_request", request):
            message_id = await provider.send_email(
                "work-a", "a@x.com; b@x.com", "Subject", "Body", body_format="text", cc=["c@x.com"]
            )

        assert message_id == "draft-1"
        draft_call, send_call = request.await_args_list
        message = draft_call.kwargs["json"]
        assert message["body"] == {"contentType": "Text", "content": "Body"}
        assert [r["emailAddress"]["address"] for r in message["toRecipients"]] == ["a@x.com", "b@x.com"]
        assert message["ccRecipients"][0]["emailAddress"]["address"] == "c@x.com"
        assert send_call.args[3] == f"{GRAPH_API_BASE}/me/messages/draft-1/send"


class TestCalendar:
    @pytest.mark.asyncio
    async def test_list_calendars(self, provider):
        data = {
            "value": [
                {
                    "id": "cal-1",
                    "name": "Calendar",
                    "owner": {"address": "me@contoso.com"},
                    "canEdit": True,
                    "isDefaultCalendar": True,
                    "hexColor": "",
                    "color": "auto",
                }
            ]
        }

        with patch.object(provider, "_request", AsyncMock(return_value=data)):
            calendars = await provider.list_calendars("work-a")

        cal = calendars[0]
        assert cal.id == "cal-1"
        assert cal.owner == "me@contoso.com"
        assert cal.can_edit is True
        assert cal.is_default is True
        assert cal.color is None

    @pytest.mark.asyncio
    async def test_events_are_utc_with_normalized_status(self, provider):
        request = AsyncMock(return_value={"value": [GRAPH_EVENT]})

        with patch.object(provider, "_request", request):
            events = await provider.get_calendar_events("work-a")

        event = events[0]
        assert event.start == datetime(2024, 5, 1, 14, tzinfo=timezone.utc)
        assert event.start.tzinfo is not None
        assert event.end.tzinfo is not None
        assert event.is_all_day is False
        assert event.calendar_id == "default"
        assert event.location == "Room 4"
        assert event.organizer == "boss@contoso.com"
        assert event.response_status is ResponseStatus.TENTATIVE
        assert event.attendees[0].is_organizer is True
        assert event.attendees[0].status is ResponseStatus.ACCEPTED
        assert event.attendees[1].is_optional is True
        assert event.attendees[1].status is ResponseStatus.TENTATIVE

        url = request.await_args.args[3]
        assert url == f"{GRAPH_API_BASE}/me/calendarView"

    @pytest.mark.asyncio
    async def test_events_default_window(self, provider):
        request = AsyncMock(return_value={"value": []})

        with patch.object(provider, "_request", request):
            await provider.get_calendar_events("work-a", calendar_id="cal/1")

        url = request.await_args.args[3]
        params = request.await_args.kwargs["params"]
        assert url == f"{GRAPH_API_BASE}/me/calendars/cal%2F1/calendarView"
        start = datetime.fromisoformat(params["startDateTime"])
        end = datetime.fromisoformat(params["endDateTime"])
        assert (start.hour, start.minute) == (0, 0)
        assert start.utcoffset() == timedelta(0)
        assert end - start == timedelta(days=30)

    @pytest.mark.asyncio
    async def test_organizer_is_accepted(self, provider):
        data = {**GRAPH_EVENT, "isOrganizer": True, "responseStatus": {"response": "none"}}

        with patch.object(provider, "_request", AsyncMock(return_value={"value": [data]})):
            events = await provider.get_calendar_events("work-a")

        assert events[0].response_status is ResponseStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_all_day_flag(self, provider):
        data = {
            **GRAPH_EVENT,
            "isAllDay": True,
            "start": {"dateTime": "2024-05-01T00:00:00.0000000"},
            "end": {"dateTime": "2024-05-02T00:00:00.0000000"},
        }

        with patch.object(provider, "_request", AsyncMock(return_value={"value": [data]})):
            events = await provider.get_calendar_events("work-a")

        assert events[0].is_all_day is True
        assert events[0].end - events[0].start == timedelta(days=1)

    @pytest.mark.asyncio
    async def test_create_event_converts_to_utc(self, provider):
        request = AsyncMock(return_value={"id": "new-evt"})
        tz = timezone(timedelta(hours=2))

        with patch.object(provider, "_request", request):
            event_id = await provider.create_event(
                "work-a",
                None,
                "Lunch",
                datetime(2024, 5, 1, 12, tzinfo=tz),
                datetime(2024, 5, 1, 13, tzinfo=tz),
                location="Cafe",
                attendees=["a@x.com"],
            )

        assert event_id == "new-evt"
        method, url = request.await_args.args[2:4]
        body = request.await_args.kwargs["json"]
        assert (method, url) == ("POST", f"{GRAPH_API_BASE}/me/events")
        assert body["start"] == {"dateTime": "2024-05-01T10:00:00", "timeZone": "UTC"}
        assert body["location"] == {"displayName": "Cafe"}
        assert body["attendees"][0]["emailAddress"]["address"] == "a@x.com"

    @pytest.mark.asyncio
    async def test_update_event_patches_given_fields(self, provider):
        request = AsyncMock(return_value={})

        with patch.object(provider, "_request", request):
            await provider.update_event("work-a", "cal-1", "evt-1", subject="Renamed")

        method, url = request.await_args.args[2:4]
        assert method == "PATCH"
        assert url == f"{GRAPH_API_BASE}/me/calendars/cal-1/events/evt-1"
        assert request.await_args.kwargs["json"] == {"subject": "Renamed"}

    @pytest.mark.asyncio
    async def test_update_without_changes_makes_no_call(self, provider):
        request = AsyncMock()

        with patch.object(provider, "_request", request):
            await provider.update_event("work-a", None, "evt-1")

        request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_event(self, provider):
        request = AsyncMock(return_value={})

        with patch.object(provider, "_request", request):
            await provider.delete_event("work-a", None, "evt-1")

        assert request.await_args.args[2:4] == ("DELETE", f"{GRAPH_API_BASE}/me/events/evt-1")

    @pytest.mark.asyncio
    async def test_api_failure_carries_account_and_operation(self, provider):
        error = ProviderApiError("work-a", "list_calendars", "Permission denied", status=403)

        with patch.object(provider, "_request", AsyncMock(side_effect=error)):
            with pytest.raises(ProviderApiError) as exc_info:
                await provider.list_calendars("work-a")

        assert exc_info.value.account_id == "work-a"
        assert exc_info.value.operation == "list_calendars"
