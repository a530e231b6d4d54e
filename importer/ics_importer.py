"""Importer for .ics calendar files and feeds."""
import logging
import time
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

import requests
from icalendar import Calendar as ICalCalendar

from processor.errors import IcsParsingError
from processor.models import Cadence, Event, ImportResult, Recurrence
from processor.recurrence import shift
from storage.calendar_store import CalendarStore

logger = logging.getLogger(__name__)


class IcsImporter:
    """Reads VEVENTs from an .ics source and turns them into Events."""

    DEFAULT_DURATION = timedelta(hours=1)
    MAX_REPETITIONS = 500

    def __init__(self, timeout: int = 30, max_retries: int = 3):
        """
        Initialize the importer.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts made for URL sources (default: 3)
        """
        self.timeout = timeout
        self.max_retries = max_retries

    def import_into(self, store: CalendarStore, source: str) -> ImportResult:
        """
        Import every event of an .ics source into a calendar.

        Events go through the regular insert path, so duplicates are
        skipped and overlaps are reported exactly as for manual entries.

        Args:
            store: Target calendar
            source: File path or http(s) URL

        Returns:
            ImportResult with counts of added and duplicate events
        """
        ics_text = self.fetch(source)
        events, errors = self._parse_all(ics_text, source)

        added = 0
        duplicates = 0
        for event in events:
            if store.insert(event):
                added += 1
            else:
                duplicates += 1

        logger.info(
            f"Imported {added} events from {source} "
            f"({duplicates} duplicates skipped)"
        )
        return ImportResult(added=added, duplicates=duplicates, errors=errors)

    def fetch(self, source: str) -> str:
        """
        Read the raw VCALENDAR text of a source.

        Args:
            source: File path or http(s) URL

        Returns:
            VCALENDAR text

        Raises:
            IcsParsingError: If a local file cannot be read
            requests.RequestException: If all retry attempts fail
        """
        if source.startswith(('http://', 'https://')):
            return self._fetch_url(source)

        try:
            return Path(source).read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise IcsParsingError(source, str(e)) from e

    def _fetch_url(self, url: str) -> str:
        base_delay = 1  # seconds

        for attempt in range(self.max_retries):
            try:
                logger.info(
                    f"Fetching {url} (attempt {attempt + 1}/{self.max_retries})"
                )
                response = requests.get(
                    url,
                    timeout=self.timeout,
                    headers={'Accept': 'text/calendar'}
                )
                response.raise_for_status()
                response.encoding = 'utf-8'
                return response.text

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.max_retries}): "
                        f"{e}. Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} retry attempts failed. Last error: {e}"
                    )
                    raise

    def parse_events(self, ics_text: str, source: str = '<string>') -> List[Event]:
        """
        Parse every VEVENT of a VCALENDAR document.

        Args:
            ics_text: VCALENDAR text
            source: Name of the source, used in error messages

        Returns:
            List of Event objects

        Raises:
            IcsParsingError: If the document is not a valid calendar
        """
        events, _ = self._parse_all(ics_text, source)
        return events

    def _parse_all(self, ics_text: str, source: str) -> Tuple[List[Event], List[str]]:
        try:
            calendar = ICalCalendar.from_ical(ics_text)
        except ValueError as e:
            raise IcsParsingError(source, str(e)) from e

        events = []
        errors = []
        for component in calendar.walk('VEVENT'):
            try:
                event = self._parse_component(component)
                if event:
                    events.append(event)
            except (AttributeError, KeyError, OverflowError, TypeError, ValueError) as e:
                error_msg = (
                    f"Failed to parse event '{component.get('SUMMARY', '')}': {e}"
                )
                logger.warning(error_msg)
                errors.append(error_msg)
                continue

        logger.info(f"Parsed {len(events)} events from {source}")
        return events, errors

    def _parse_component(self, component) -> Optional[Event]:
        """
        Convert one VEVENT into an Event.

        Args:
            component: icalendar VEVENT component

        Returns:
            Event or None if the component has no start
        """
        dtstart = component.get('DTSTART')
        if dtstart is None:
            logger.warning(
                f"Skipping event '{component.get('SUMMARY', '')}' without DTSTART"
            )
            return None
        start = self._to_local_naive(dtstart.dt)

        duration = self.DEFAULT_DURATION
        if component.get('DTEND') is not None:
            duration = self._to_local_naive(component.get('DTEND').dt) - start
        elif component.get('DURATION') is not None:
            duration = component.get('DURATION').dt
        if duration < timedelta(0):
            duration = timedelta(0)

        now = datetime.now().replace(microsecond=0)
        return Event(
            title=str(component.get('SUMMARY', '')),
            description=str(component.get('DESCRIPTION', '')),
            start_date=start.date(),
            start_time=start.time().replace(microsecond=0),
            duration=timedelta(minutes=int(duration.total_seconds() // 60)),
            location=str(component.get('LOCATION', '')),
            recurrence=self._parse_rrule(component.get('RRULE'), start),
            tags=self._parse_categories(component.get('CATEGORIES')),
            created=now,
            modified=now
        )

    def _parse_rrule(self, rrule, start: datetime) -> Optional[Recurrence]:
        """
        Map an RRULE onto a Recurrence.

        COUNT includes the first occurrence, so it yields COUNT - 1
        repetitions. UNTIL is turned into the number of steps that fit
        before the bound. Rules bounded by neither are capped at
        MAX_REPETITIONS.
        """
        if not rrule or not rrule.get('FREQ'):
            return None

        try:
            cadence = Cadence(str(rrule['FREQ'][0]).lower())
        except ValueError:
            logger.warning(f"Unsupported recurrence frequency: {rrule['FREQ'][0]}")
            return None

        interval = int(rrule.get('INTERVAL', [1])[0])
        if interval < 1:
            return None

        if rrule.get('COUNT'):
            repetitions = int(rrule['COUNT'][0]) - 1
        elif rrule.get('UNTIL'):
            until = self._to_local_naive(rrule['UNTIL'][0])
            if isinstance(rrule['UNTIL'][0], date) and not isinstance(
                rrule['UNTIL'][0], datetime
            ):
                until = datetime.combine(until.date(), datetime.max.time())
            repetitions = 0
            while repetitions < self.MAX_REPETITIONS:
                try:
                    following = shift(start, cadence, (repetitions + 1) * interval)
                except (OverflowError, ValueError):
                    break
                if following > until:
                    break
                repetitions += 1
        else:
            logger.warning(
                f"Unbounded recurrence capped at {self.MAX_REPETITIONS} repetitions"
            )
            repetitions = self.MAX_REPETITIONS

        repetitions = min(repetitions, self.MAX_REPETITIONS)
        if repetitions < 1:
            return None
        return Recurrence(cadence=cadence, repetitions=repetitions, interval=interval)

    @staticmethod
    def _parse_categories(categories) -> set:
        if categories is None:
            return set()
        if not isinstance(categories, list):
            categories = [categories]

        tags = set()
        for category in categories:
            values = getattr(category, 'cats', None)
            if values is None:
                values = str(category).split(',')
            tags.update(str(value).strip() for value in values if str(value).strip())
        return tags

    @staticmethod
    def _to_local_naive(value) -> datetime:
        """Turn a DATE or DATE-TIME value into a naive local datetime."""
        if not isinstance(value, datetime):
            return datetime.combine(value, datetime.min.time())
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value
