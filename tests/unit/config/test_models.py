"""Tests for calendar_mcp/models.py"""

from datetime import datetime, timedelta, timezone

import pytest

from calendar_mcp.models import (
    Attendee,
    CalendarEvent,
    ResponseStatus,
    normalize_response_status,
    parse_datetime,
    to_utc,
)


class TestResponseStatus:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("accepted", ResponseStatus.ACCEPTED),
            ("organizer", ResponseStatus.ACCEPTED),
            ("tentativelyAccepted", ResponseStatus.TENTATIVE),
            ("tentative", ResponseStatus.TENTATIVE),
            ("declined", ResponseStatus.DECLINED),
            ("none", ResponseStatus.NOT_RESPONDED),
            ("notResponded", ResponseStatus.NOT_RESPONDED),
            ("needsAction", ResponseStatus.NOT_RESPONDED),
            ("somethingNew", ResponseStatus.NOT_RESPONDED),
            (None, ResponseStatus.NOT_RESPONDED),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_response_status(raw) is expected

    def test_wire_values(self):
        assert {s.value for s in ResponseStatus} == {"accepted", "tentative", "declined", "notResponded"}


class TestDatetimes:
    def test_graph_timestamp_without_offset_is_utc(self):
        parsed = parse_datetime("2024-05-01T10:30:00.0000000")
        assert parsed == datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc)

    def test_offset_is_converted_to_utc(self):
        parsed = parse_datetime("2024-05-01T10:30:00.123+02:00")
        assert parsed == datetime(2024, 5, 1, 8, 30, 0, 123000, tzinfo=timezone.utc)

    def test_zulu_suffix(self):
        parsed = parse_datetime("2024-05-01T10:30:00Z")
        assert parsed.tzinfo is not None
        assert parsed.utcoffset() == timedelta(0)

    def test_bare_date_is_midnight_utc(self):
        assert parse_datetime("2024-05-01") == datetime(2024, 5, 1, tzinfo=timezone.utc)

    def test_empty_is_none(self):
        assert parse_datetime(None) is None
        assert parse_datetime("") is None

    def test_to_utc_keeps_instant(self):
        aware = datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=-4)))
        assert to_utc(aware) == datetime(2024, 5, 1, 16, 0, tzinfo=timezone.utc)

    def test_to_utc_treats_naive_as_local(self):
        naive = datetime(2024, 5, 1, 12, 0)
        converted = to_utc(naive)
        assert converted.tzinfo is timezone.utc
        assert converted == naive.astimezone()


class TestRecords:
    def test_event_to_dict_is_serializable(self):
        event = CalendarEvent(
            id="e1",
            account_id="work-a",
            calendar_id="default",
            subject="Standup",
            start=datetime(2024, 5, 1, 9, tzinfo=timezone.utc),
            end=datetime(2024, 5, 1, 9, 15, tzinfo=timezone.utc),
            attendees=[Attendee(email="a@contoso.com", status=ResponseStatus.TENTATIVE)],
            response_status=ResponseStatus.ACCEPTED,
            provider="microsoft365",
        )

        data = event.to_dict()

        assert data["account_id"] == "work-a"
        assert data["start"] == "2024-05-01T09:00:00+00:00"
        assert data["is_all_day"] is False
        assert data["response_status"] == "accepted"
        assert data["attendees"][0]["status"] == "tentative"
