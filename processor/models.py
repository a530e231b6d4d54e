"""Data models for the event store."""
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import List, Optional, Set


class Cadence(Enum):
    """Unit of repetition for a recurring event."""
    SECONDLY = 'secondly'
    MINUTELY = 'minutely'
    HOURLY = 'hourly'
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'
    YEARLY = 'yearly'


@dataclass(frozen=True)
class Recurrence:
    """Repeat rule: the anchor occurrence plus `repetitions` more."""
    cadence: Cadence
    repetitions: int
    interval: int = 1

    def __post_init__(self):
        if self.repetitions < 1:
            raise ValueError(
                f"repetitions must be positive, got {self.repetitions}"
            )
        if self.interval < 1:
            raise ValueError(f"interval must be positive, got {self.interval}")


@dataclass
class Event:
    """A scheduled item, optionally repeating."""
    title: str
    description: str
    start_date: date
    start_time: time
    duration: timedelta
    location: str = ''
    recurrence: Optional[Recurrence] = None
    tags: Set[str] = field(default_factory=set)
    created: datetime = field(default_factory=datetime.now, compare=False)
    modified: datetime = field(default_factory=datetime.now, compare=False)

    @property
    def start(self) -> datetime:
        """Start of the (first) occurrence."""
        return datetime.combine(self.start_date, self.start_time)

    @property
    def end(self) -> datetime:
        """End of the (first) occurrence, inclusive."""
        return self.start + self.duration

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None

    def project(self, occurrence_date: date, occurrence_time: time) -> 'Event':
        """
        Copy this event with its start moved to a concrete occurrence.

        Args:
            occurrence_date: Date of the occurrence
            occurrence_time: Time of day of the occurrence

        Returns:
            New Event; this event is left untouched
        """
        return replace(
            self,
            start_date=occurrence_date,
            start_time=occurrence_time,
            tags=set(self.tags)
        )

    def copy(self) -> 'Event':
        return self.project(self.start_date, self.start_time)


@dataclass
class ImportResult:
    """Result of importing events into a calendar."""
    added: int
    duplicates: int
    errors: List[str]
