"""In-memory calendar store with deduplication and range queries."""
import calendar
import logging
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterator, List, Optional, Tuple, Union

from processor.errors import EventNotFoundError
from processor.event_processor import EventProcessor
from processor.models import Event
from processor.overlap import events_overlap
from processor.recurrence import expand_recurrence

logger = logging.getLogger(__name__)

Bound = Union[date, datetime, None]


class CalendarStore:
    """Events of one calendar, keyed by content fingerprint."""

    EDITABLE_FIELDS = (
        'title',
        'description',
        'start_date',
        'start_time',
        'duration',
        'location',
        'recurrence',
        'tags',
    )

    def __init__(
        self,
        name: str,
        owner: str = '',
        processor: Optional[EventProcessor] = None
    ):
        """
        Initialize an empty calendar.

        Args:
            name: Calendar name
            owner: Calendar owner
            processor: EventProcessor used for fingerprinting
        """
        self.name = name
        self.owner = owner
        self.processor = processor or EventProcessor()
        self.events: Dict[str, Event] = {}

    def __len__(self) -> int:
        return len(self.events)

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint in self.events

    def items(self) -> Iterator[Tuple[str, Event]]:
        return iter(list(self.events.items()))

    def fingerprint(self, event: Event) -> str:
        return self.processor.generate_fingerprint(event)

    # Write path

    def insert(self, event: Event) -> bool:
        """
        Add an event unless identical content is already stored.

        Overlaps with stored events are logged as warnings and do not
        prevent insertion.

        Args:
            event: Event to store

        Returns:
            True if stored, False if rejected as a duplicate
        """
        fingerprint = self.fingerprint(event)
        if fingerprint in self.events:
            logger.warning(
                f"Event '{event.title}' ({fingerprint}) already in calendar "
                f"'{self.name}': calendar not modified"
            )
            return False

        self._warn_overlaps(fingerprint, event)
        self.events[fingerprint] = event
        logger.info(f"Added event '{event.title}' ({fingerprint})")
        return True

    def restore(self, fingerprint: str, event: Event) -> None:
        """Put a previously persisted event back without overlap checks."""
        self.events[fingerprint] = event

    def get(self, fingerprint: str) -> Event:
        try:
            return self.events[fingerprint]
        except KeyError:
            raise EventNotFoundError(fingerprint) from None

    def remove(self, fingerprint: str) -> Event:
        """
        Remove an event by fingerprint.

        Args:
            fingerprint: Key of the event

        Returns:
            The removed Event

        Raises:
            EventNotFoundError: If no event has this fingerprint
        """
        try:
            event = self.events.pop(fingerprint)
        except KeyError:
            raise EventNotFoundError(fingerprint) from None
        logger.info(f"Removed event '{event.title}' ({fingerprint})")
        return event

    def clear(self) -> None:
        self.events.clear()

    def edit(self, fingerprint: str, **changes) -> Optional[str]:
        """
        Change fields of a stored event in place.

        The fingerprint follows the content, so the event is re-keyed and
        the old fingerprint stops resolving. Callers holding the old key
        must switch to the returned one.

        Args:
            fingerprint: Current key of the event
            **changes: New values for any of EDITABLE_FIELDS

        Returns:
            The event's new fingerprint, or None when the edited content
            matches another stored event (the calendar is left unchanged)

        Raises:
            EventNotFoundError: If no event has this fingerprint
            TypeError: If a change names a field that cannot be edited
        """
        event = self.get(fingerprint)
        unknown = set(changes) - set(self.EDITABLE_FIELDS)
        if unknown:
            raise TypeError(f"Cannot edit fields: {', '.join(sorted(unknown))}")

        edited = event.copy()
        for field_name, value in changes.items():
            if field_name == 'tags':
                value = set(value)
            setattr(edited, field_name, value)

        new_fingerprint = self.fingerprint(edited)
        if new_fingerprint == fingerprint:
            return fingerprint
        if new_fingerprint in self.events:
            logger.warning(
                f"Edited event '{edited.title}' would duplicate {new_fingerprint}: "
                f"calendar not modified"
            )
            return None

        del self.events[fingerprint]
        self._warn_overlaps(new_fingerprint, edited)

        for field_name, value in changes.items():
            setattr(event, field_name, getattr(edited, field_name))
        event.modified = datetime.now().replace(microsecond=0)
        self.events[new_fingerprint] = event
        logger.info(
            f"Edited event '{event.title}': {fingerprint} is now {new_fingerprint}"
        )
        return new_fingerprint

    def _warn_overlaps(self, fingerprint: str, event: Event) -> None:
        for other_fingerprint, other in self.events.items():
            if events_overlap(other, event):
                logger.warning(
                    f"Event '{event.title}' ({fingerprint}) overlaps with "
                    f"event '{other.title}' ({other_fingerprint})"
                )

    def occurrence_count(self) -> int:
        """Total number of occurrences, counting every recurrence."""
        return sum(
            event.recurrence.repetitions + 1 if event.recurrence else 1
            for event in self.events.values()
        )

    # Read path

    def between(self, start: Bound = None, until: Bound = None) -> List[Event]:
        """
        List occurrences starting within [start, until], both inclusive.

        Recurring events are expanded and every occurrence in range is
        returned as a projected copy. A date as lower bound means the start
        of that day, a date as upper bound means the end of that day.

        Args:
            start: Lower bound (earliest representable when None)
            until: Upper bound (latest representable when None)

        Returns:
            Events sorted by start date, then start time
        """
        lower = self._as_datetime(start, time.min, datetime.min)
        upper = self._as_datetime(until, time.max, datetime.max)

        results = []
        for event in self.events.values():
            if event.recurrence is None:
                if lower <= event.start <= upper:
                    results.append(event.copy())
                continue

            for occurrence_date, occurrence_time in expand_recurrence(
                event.recurrence, event.start_date, event.start_time
            ):
                occurrence = datetime.combine(occurrence_date, occurrence_time)
                if lower <= occurrence <= upper:
                    results.append(event.project(occurrence_date, occurrence_time))

        results.sort(key=lambda e: (e.start_date, e.start_time))
        return results

    def today(self, reference: Optional[date] = None) -> List[Event]:
        day = reference or date.today()
        return self.between(day, day)

    def this_week(self, reference: Optional[date] = None) -> List[Event]:
        """Occurrences in the ISO week (Monday to Sunday) of the reference day."""
        day = reference or date.today()
        monday = day - timedelta(days=day.isoweekday() - 1)
        return self.between(monday, monday + timedelta(days=6))

    def this_month(self, reference: Optional[date] = None) -> List[Event]:
        """Occurrences in the calendar month of the reference day."""
        day = reference or date.today()
        last_day = calendar.monthrange(day.year, day.month)[1]
        return self.between(day.replace(day=1), day.replace(day=last_day))

    def by_tag(self, tag: str) -> List[Event]:
        """
        List stored events carrying a tag (exact, case-sensitive match).

        Recurrences are not expanded.
        """
        results = [
            event.copy() for event in self.events.values() if tag in event.tags
        ]
        results.sort(key=lambda e: (e.start_date, e.start_time))
        return results

    @staticmethod
    def _as_datetime(bound: Bound, day_time: time, default: datetime) -> datetime:
        if bound is None:
            return default
        if isinstance(bound, datetime):
            return bound
        return datetime.combine(bound, day_time)
