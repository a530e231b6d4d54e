"""JSON file manager for calendar persistence."""
import json
import logging
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import List, Optional

from processor.errors import (
    CalendarAlreadyExistsError,
    CalendarNotFoundError,
    CalendarParsingError,
)
from processor.models import Cadence, Event, Recurrence
from storage.calendar_store import CalendarStore

logger = logging.getLogger(__name__)


class CalendarFileManager:
    """Manager for calendars stored as one JSON file each."""

    EXTENSION = '.json'

    def __init__(self, data_dir):
        """
        Initialize the manager and make sure the data directory exists.

        Args:
            data_dir: Directory holding the calendar files
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized CalendarFileManager for directory: {self.data_dir}")

    def path_for(self, name: str) -> Path:
        return self.data_dir / f"{name}{self.EXTENSION}"

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def list_calendars(self) -> List[str]:
        return sorted(p.stem for p in self.data_dir.glob(f"*{self.EXTENSION}"))

    def create(self, name: str, owner: str = '') -> CalendarStore:
        """
        Create a new, empty calendar file.

        Raises:
            CalendarAlreadyExistsError: If a calendar with this name exists
        """
        if self.exists(name):
            raise CalendarAlreadyExistsError(name)
        store = CalendarStore(name=name, owner=owner)
        self.save(store)
        logger.info(f"Created calendar '{name}'")
        return store

    def delete(self, name: str) -> bool:
        """
        Delete a calendar file.

        Returns:
            True if a file was deleted, False if none existed
        """
        path = self.path_for(name)
        if not path.is_file():
            return False
        path.unlink()
        logger.info(f"Deleted calendar '{name}'")
        return True

    def load(self, name: str) -> CalendarStore:
        """
        Load a calendar and all of its events.

        Items that cannot be decoded are skipped with a warning. Items
        whose stored key no longer matches their content are re-keyed.

        Args:
            name: Calendar name

        Returns:
            CalendarStore holding the stored events

        Raises:
            CalendarNotFoundError: If the calendar file does not exist
            CalendarParsingError: If the file is not a valid calendar document
        """
        path = self.path_for(name)
        if not path.is_file():
            raise CalendarNotFoundError(name)

        try:
            with path.open(encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading calendar file {path}: {e}")
            raise CalendarParsingError(f"Failed reading {path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get('events', {}), dict):
            raise CalendarParsingError(f"Unexpected calendar layout in {path}")

        store = CalendarStore(
            name=data.get('name') or name,
            owner=data.get('owner', '')
        )
        for key, item in data.get('events', {}).items():
            event = self._item_to_event(item)
            if event is None:
                continue
            fingerprint = store.fingerprint(event)
            if fingerprint != key:
                logger.warning(
                    f"Stored key {key} does not match event '{event.title}', "
                    f"re-keyed as {fingerprint}"
                )
            store.restore(fingerprint, event)

        logger.info(f"Loaded {len(store)} events from calendar '{store.name}'")
        return store

    def save(self, store: CalendarStore) -> Path:
        """
        Write a calendar to its JSON file, replacing any previous content.

        Args:
            store: Calendar to persist

        Returns:
            Path of the written file
        """
        path = self.path_for(store.name)
        document = {
            'name': store.name,
            'owner': store.owner,
            'events': {
                fingerprint: self._event_to_item(event)
                for fingerprint, event in store.items()
            }
        }
        with path.open('w', encoding='utf-8') as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        logger.info(f"Saved {len(store)} events to {path}")
        return path

    def _item_to_event(self, item: dict) -> Optional[Event]:
        """
        Convert a stored item to an Event.

        Args:
            item: Decoded JSON object

        Returns:
            Event or None if conversion fails
        """
        try:
            recurrence = None
            if item.get('recurrence'):
                rule = item['recurrence']
                recurrence = Recurrence(
                    cadence=Cadence(rule['cadence']),
                    repetitions=int(rule['repetitions']),
                    interval=int(rule.get('interval', 1))
                )
            return Event(
                title=item['title'],
                description=item.get('description', ''),
                start_date=date.fromisoformat(item['start_date']),
                start_time=time.fromisoformat(item['start_time']),
                duration=timedelta(minutes=int(item['duration'])),
                location=item.get('location', ''),
                recurrence=recurrence,
                tags=set(item.get('tags', [])),
                created=self._from_timestamp(item.get('created')),
                modified=self._from_timestamp(item.get('modified'))
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to convert item to Event: {e}")
            return None

    def _event_to_item(self, event: Event) -> dict:
        item = {
            'title': event.title,
            'description': event.description,
            'start_date': event.start_date.isoformat(),
            'start_time': event.start_time.isoformat(),
            'duration': int(event.duration.total_seconds() // 60),
            'location': event.location,
            'recurrence': None,
            'tags': sorted(event.tags),
            'created': int(event.created.timestamp()),
            'modified': int(event.modified.timestamp())
        }

        if event.recurrence:
            item['recurrence'] = {
                'cadence': event.recurrence.cadence.value,
                'repetitions': event.recurrence.repetitions,
                'interval': event.recurrence.interval
            }

        return item

    @staticmethod
    def _from_timestamp(value) -> datetime:
        if value is None:
            return datetime.now().replace(microsecond=0)
        return datetime.fromtimestamp(int(value))
