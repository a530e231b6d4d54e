"""Unit tests for IcsImporter."""
import logging
from datetime import date, time, timedelta
from unittest.mock import patch

import pytest
import responses
from requests.exceptions import RequestException, Timeout

from importer.ics_importer import IcsImporter
from processor.errors import IcsParsingError
from processor.models import Cadence, Recurrence
from storage.calendar_store import CalendarStore

FEED_URL = "https://calendar.example.com/feed.ics"


def vcalendar(*events):
    """Wrap VEVENT bodies into a VCALENDAR document."""
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//Test//EN"]
    for body in events:
        lines.append("BEGIN:VEVENT")
        lines.extend(body)
        lines.append("END:VEVENT")
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


MEETING = [
    "UID:meeting-1@example.com",
    "SUMMARY:Project Meeting",
    "DESCRIPTION:Quarterly planning",
    "LOCATION:Room 12",
    "DTSTART:20240115T100000",
    "DTEND:20240115T113000",
    "CATEGORIES:work,planning",
]

STANDUP = [
    "UID:standup-1@example.com",
    "SUMMARY:Standup",
    "DTSTART:20240101T090000",
    "DURATION:PT15M",
    "RRULE:FREQ=DAILY;COUNT=5",
]


@pytest.fixture
def importer():
    return IcsImporter(timeout=5)


class TestParseEvents:
    """Test cases for VEVENT conversion."""

    def test_parse_single_event(self, importer):
        events = importer.parse_events(vcalendar(MEETING))

        assert len(events) == 1
        event = events[0]
        assert event.title == "Project Meeting"
        assert event.description == "Quarterly planning"
        assert event.location == "Room 12"
        assert event.start_date == date(2024, 1, 15)
        assert event.start_time == time(10, 0)
        assert event.duration == timedelta(minutes=90)
        assert event.tags == {"work", "planning"}
        assert event.recurrence is None

    def test_parse_duration_and_count(self, importer):
        """Test that COUNT includes the first occurrence."""
        events = importer.parse_events(vcalendar(STANDUP))

        event = events[0]
        assert event.duration == timedelta(minutes=15)
        assert event.recurrence == Recurrence(cadence=Cadence.DAILY, repetitions=4)

    def test_parse_interval(self, importer):
        body = [
            "SUMMARY:Fortnightly",
            "DTSTART:20240101T180000",
            "RRULE:FREQ=WEEKLY;INTERVAL=2;COUNT=3",
        ]

        event = importer.parse_events(vcalendar(body))[0]

        assert event.recurrence == Recurrence(
            cadence=Cadence.WEEKLY, repetitions=2, interval=2
        )
        assert event.duration == timedelta(hours=1)

    def test_parse_until(self, importer):
        """Test that UNTIL is turned into a repetition count."""
        body = [
            "SUMMARY:Monthly report",
            "DTSTART:20240131T090000",
            "RRULE:FREQ=MONTHLY;UNTIL=20240430T090000",
        ]

        event = importer.parse_events(vcalendar(body))[0]

        assert event.recurrence == Recurrence(cadence=Cadence.MONTHLY, repetitions=3)

    def test_parse_until_at_end_of_representable_range(self, importer):
        """Test rules whose bound or next step lies beyond year 9999."""
        all_day = [
            "SUMMARY:Last days",
            "DTSTART;VALUE=DATE:99991230",
            "RRULE:FREQ=DAILY;UNTIL=99991231",
        ]
        yearly = [
            "SUMMARY:Last year",
            "DTSTART:99991231T090000",
            "RRULE:FREQ=YEARLY;UNTIL=99991231T100000",
        ]

        events = importer.parse_events(vcalendar(all_day, yearly))

        assert [e.title for e in events] == ["Last days", "Last year"]
        assert events[0].recurrence == Recurrence(cadence=Cadence.DAILY, repetitions=1)
        assert events[1].recurrence is None

    def test_parse_unbounded_rule_is_capped(self, importer, caplog):
        body = ["SUMMARY:Forever", "DTSTART:20240101T090000", "RRULE:FREQ=YEARLY"]

        with caplog.at_level(logging.WARNING):
            event = importer.parse_events(vcalendar(body))[0]

        assert event.recurrence.repetitions == IcsImporter.MAX_REPETITIONS
        assert "capped" in caplog.text

    def test_parse_all_day_event(self, importer):
        body = [
            "SUMMARY:Holiday",
            "DTSTART;VALUE=DATE:20240101",
            "DTEND;VALUE=DATE:20240102",
        ]

        event = importer.parse_events(vcalendar(body))[0]

        assert event.start_date == date(2024, 1, 1)
        assert event.start_time == time(0, 0)
        assert event.duration == timedelta(days=1)

    def test_event_without_start_is_skipped(self, importer, caplog):
        body = ["SUMMARY:No start"]

        with caplog.at_level(logging.WARNING):
            events = importer.parse_events(vcalendar(body, MEETING))

        assert [e.title for e in events] == ["Project Meeting"]
        assert "without DTSTART" in caplog.text

    def test_malformed_calendar(self, importer):
        with pytest.raises(IcsParsingError):
            importer.parse_events("this is not\nan ics file\n")


class TestFetch:
    """Test cases for reading .ics sources."""

    def test_fetch_local_file(self, importer, tmp_path):
        path = tmp_path / "calendar.ics"
        path.write_text(vcalendar(MEETING), encoding='utf-8')

        assert "Project Meeting" in importer.fetch(str(path))

    def test_fetch_missing_file(self, importer, tmp_path):
        with pytest.raises(IcsParsingError) as exc_info:
            importer.fetch(str(tmp_path / "missing.ics"))

        assert "missing.ics" in str(exc_info.value)

    @responses.activate
    def test_fetch_url(self, importer):
        responses.add(responses.GET, FEED_URL, body=vcalendar(MEETING), status=200)

        text = importer.fetch(FEED_URL)

        assert "Project Meeting" in text
        assert len(responses.calls) == 1

    @responses.activate
    def test_fetch_url_with_retry_success(self, importer):
        """Test retry logic succeeds after initial failures."""
        responses.add(responses.GET, FEED_URL, body="Server Error", status=500)
        responses.add(responses.GET, FEED_URL, body="Server Error", status=500)
        responses.add(responses.GET, FEED_URL, body=vcalendar(MEETING), status=200)

        with patch('importer.ics_importer.time.sleep') as mock_sleep:
            text = importer.fetch(FEED_URL)

        assert "Project Meeting" in text
        assert len(responses.calls) == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2]

    @responses.activate
    def test_fetch_url_all_retries_fail(self, importer):
        for _ in range(3):
            responses.add(responses.GET, FEED_URL, body="Server Error", status=500)

        with patch('importer.ics_importer.time.sleep'):
            with pytest.raises(RequestException):
                importer.fetch(FEED_URL)

        assert len(responses.calls) == 3

    @responses.activate
    def test_fetch_url_timeout(self, importer):
        for _ in range(3):
            responses.add(responses.GET, FEED_URL, body=Timeout("Request timed out"))

        with patch('importer.ics_importer.time.sleep'):
            with pytest.raises(Timeout):
                importer.fetch(FEED_URL)

        assert len(responses.calls) == 3


class TestImportInto:
    """Test cases for importing into a calendar."""

    def test_import_adds_events(self, importer, tmp_path):
        path = tmp_path / "calendar.ics"
        path.write_text(vcalendar(MEETING, STANDUP), encoding='utf-8')
        store = CalendarStore(name='test')

        result = importer.import_into(store, str(path))

        assert result.added == 2
        assert result.duplicates == 0
        assert result.errors == []
        assert len(store) == 2

    def test_reimport_is_deduplicated(self, importer, tmp_path):
        path = tmp_path / "calendar.ics"
        path.write_text(vcalendar(MEETING, STANDUP), encoding='utf-8')
        store = CalendarStore(name='test')
        importer.import_into(store, str(path))

        result = importer.import_into(store, str(path))

        assert result.added == 0
        assert result.duplicates == 2
        assert len(store) == 2

    @responses.activate
    def test_import_from_url_warns_on_overlap(self, importer, caplog):
        clash = [
            "SUMMARY:Clash",
            "DTSTART:20240115T110000",
            "DTEND:20240115T120000",
        ]
        responses.add(
            responses.GET, FEED_URL, body=vcalendar(MEETING, clash), status=200
        )
        store = CalendarStore(name='test')

        with caplog.at_level(logging.WARNING):
            result = importer.import_into(store, FEED_URL)

        assert result.added == 2
        assert "overlaps" in caplog.text
