"""Event processor for building events from text and fingerprinting them."""
import hashlib
import json
import logging
import math
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional

from processor.models import Event
from processor.recurrence import format_recurrence, parse_recurrence

logger = logging.getLogger(__name__)


class EventProcessor:
    """Processor for validating, normalizing and identifying events."""

    DATE_FORMATS = [
        '%d/%m/%Y',      # European format
        '%Y-%m-%d',      # ISO 8601
    ]
    TIME_FORMATS = [
        '%H:%M',         # 24-hour format
        '%H:%M:%S',      # 24-hour with seconds
    ]
    DEFAULT_DURATION_HOURS = 1.0

    def create_event(
        self,
        title: str,
        description: str,
        start_date: str,
        start_time: str,
        duration: str,
        location: str = '',
        recurrence: Optional[str] = None,
        tags: Optional[Iterable[str]] = None
    ) -> Event:
        """
        Build an Event from user-supplied text.

        Unparseable dates and times fall back to the current date/time and
        an unparseable duration falls back to one hour; each fallback is
        logged as a warning, never raised.

        Args:
            title: Event title
            description: Event description
            start_date: Date text ("%d/%m/%Y" or "%Y-%m-%d")
            start_time: Time text ("%H:%M" or "%H:%M:%S")
            duration: Duration in hours, e.g. "2.5"
            location: Optional location
            recurrence: Optional recurrence text, e.g. "weekly 3"
            tags: Optional tags

        Returns:
            New Event
        """
        now = datetime.now().replace(microsecond=0)
        return Event(
            title=title,
            description=description,
            start_date=self.parse_date(start_date, default=now.date()),
            start_time=self.parse_time(start_time, default=now.time()),
            duration=self.parse_duration(duration),
            location=location or '',
            recurrence=parse_recurrence(recurrence),
            tags=set(tags or []),
            created=now,
            modified=now
        )

    def parse_date(self, date_str: str, default: Optional[date] = None) -> date:
        """
        Parse a date, trying each accepted format in order.

        Args:
            date_str: Date text
            default: Value used when no format matches (today if omitted)

        Returns:
            Parsed date or the fallback
        """
        parsed = self._try_formats(date_str, self.DATE_FORMATS)
        if parsed is not None:
            return parsed.date()

        fallback = default or date.today()
        logger.warning(
            f"Could not parse date {date_str!r}, using {fallback.isoformat()}"
        )
        return fallback

    def parse_time(self, time_str: str, default: Optional[time] = None) -> time:
        """
        Parse a time of day, trying each accepted format in order.

        Args:
            time_str: Time text
            default: Value used when no format matches (now if omitted)

        Returns:
            Parsed time or the fallback
        """
        parsed = self._try_formats(time_str, self.TIME_FORMATS)
        if parsed is not None:
            return parsed.time()

        fallback = default or datetime.now().replace(microsecond=0).time()
        logger.warning(
            f"Could not parse time {time_str!r}, using {fallback.isoformat()}"
        )
        return fallback

    def parse_duration(self, duration_str) -> timedelta:
        """
        Parse a duration given in hours, rounded to whole minutes.

        Args:
            duration_str: Hours as text or number

        Returns:
            Non-negative timedelta
        """
        try:
            hours = float(duration_str)
        except (TypeError, ValueError):
            logger.warning(
                f"Could not parse duration {duration_str!r}, using "
                f"{self.DEFAULT_DURATION_HOURS} hour(s)"
            )
            hours = self.DEFAULT_DURATION_HOURS

        if not math.isfinite(hours) or hours < 0:
            logger.warning(f"Invalid duration {duration_str!r}, using 0 hours")
            hours = 0.0

        return timedelta(minutes=round(hours * 60))

    def _try_formats(self, text: str, formats: list) -> Optional[datetime]:
        if not text:
            return None
        for fmt in formats:
            try:
                return datetime.strptime(text.strip(), fmt)
            except ValueError:
                continue
        return None

    def generate_fingerprint(self, event: Event) -> str:
        """
        Generate the store key of an event from its content.

        Covers title, description, start date and time, duration, location,
        recurrence and tags. Creation and modification timestamps are left
        out, so identical content always collides. Any edit to the content
        yields a new key.

        Args:
            event: Event to fingerprint

        Returns:
            Decimal string of the first 64 bits of a SHA256 digest
        """
        # JSON keeps field boundaries unambiguous whatever the values contain
        composite = json.dumps([
            event.title,
            event.description,
            event.start_date.isoformat(),
            event.start_time.isoformat(),
            str(int(event.duration.total_seconds() // 60)),
            event.location,
            format_recurrence(event.recurrence),
            sorted(event.tags),
        ], ensure_ascii=False)

        hash_obj = hashlib.sha256(composite.encode('utf-8'))
        return str(int(hash_obj.hexdigest()[:16], 16))
