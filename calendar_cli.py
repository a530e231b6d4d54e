"""Command-line interface for the personal event store."""
import argparse
import json
import logging
import os
import sys
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import requests

from importer.ics_importer import IcsImporter
from processor.errors import CalendarError, CalendarNotFoundError
from processor.event_processor import EventProcessor
from processor.models import Event
from processor.recurrence import format_recurrence, parse_recurrence
from storage.calendar_store import CalendarStore
from storage.json_storage import CalendarFileManager

logger = logging.getLogger(__name__)


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'WARNING') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.WARNING))


def load_config() -> Dict[str, Any]:
    """Read configuration from environment variables."""
    return {
        'data_dir': os.environ.get('CALENDAR_DATA_DIR', 'data'),
        'calendar_name': os.environ.get('CALENDAR_NAME', 'calendar'),
        'owner': os.environ.get('CALENDAR_OWNER', ''),
        'log_level': os.environ.get('LOG_LEVEL', 'WARNING'),
        'ics_timeout': int(os.environ.get('ICS_TIMEOUT_SECONDS', '30')),
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='personal-calendar',
        description='Simple personal calendar'
    )
    parser.add_argument('--calendar', help='Calendar to operate on')
    parser.add_argument('--owner', help='Owner recorded on new calendars')
    parser.add_argument('-c', '--create', metavar='NAME', help='Create a calendar')
    parser.add_argument('-d', '--delete', metavar='NAME', help='Delete a calendar')

    subparsers = parser.add_subparsers(dest='command')

    add = subparsers.add_parser('add', help='Add a new event')
    add.add_argument('title')
    add.add_argument('description')
    add.add_argument('start_date', help='dd/mm/yyyy or yyyy-mm-dd')
    add.add_argument('start_time', help='HH:MM or HH:MM:SS')
    add.add_argument('duration', help='Duration in hours')
    add.add_argument('--location', default='')
    add.add_argument('--recurrence', help='e.g. "weekly 4" or "monthly 6 2"')
    add.add_argument('--tag', action='append', dest='tags', default=[])

    remove = subparsers.add_parser('remove', help='Remove an event, given its id')
    remove.add_argument('eid')

    edit = subparsers.add_parser('edit', help='Edit an event, given its id')
    edit.add_argument('eid')
    edit.add_argument('--title')
    edit.add_argument('--description')
    edit.add_argument('--date', dest='start_date')
    edit.add_argument('--time', dest='start_time')
    edit.add_argument('--duration')
    edit.add_argument('--location')
    edit.add_argument('--recurrence', help='New rule, or "none" to stop repeating')
    edit.add_argument('--tag', action='append', dest='tags')

    listing = subparsers.add_parser('list', help='List events with some filter')
    period = listing.add_mutually_exclusive_group()
    period.add_argument('-t', '--today', action='store_true')
    period.add_argument('-w', '--week', action='store_true')
    period.add_argument('-m', '--month', action='store_true')
    period.add_argument('--tag')
    period.add_argument(
        '--stored', action='store_true',
        help='List stored events with their ids, without expanding recurrences'
    )
    listing.add_argument('--from', dest='start')
    listing.add_argument('--until')

    ics = subparsers.add_parser('import', help='Import events from an .ics file or URL')
    ics.add_argument('source')

    return parser


def format_event(fingerprint: Optional[str], event: Event) -> str:
    """Render one event as a single line."""
    hours = event.duration.total_seconds() / 3600
    line = (
        f"{event.start_date.strftime('%d/%m/%Y')} "
        f"{event.start_time.strftime('%H:%M')} ({hours:g}h) {event.title}"
    )
    if event.location:
        line += f" @ {event.location}"
    if event.recurrence:
        line += f" [{format_recurrence(event.recurrence)}]"
    if event.tags:
        line += f" #{' #'.join(sorted(event.tags))}"
    if fingerprint:
        line += f"  id={fingerprint}"
    return line


def handle_add(store: CalendarStore, args, processor: EventProcessor) -> bool:
    event = processor.create_event(
        title=args.title,
        description=args.description,
        start_date=args.start_date,
        start_time=args.start_time,
        duration=args.duration,
        location=args.location,
        recurrence=args.recurrence,
        tags=args.tags
    )
    if not store.insert(event):
        print(f'Event "{event.title}" already in this calendar: calendar not modified')
        return False
    print(f"Added event {store.fingerprint(event)}")
    return True


def handle_remove(store: CalendarStore, args, processor: EventProcessor) -> bool:
    event = store.remove(args.eid)
    print(f'Event "{event.title}" removed successfully')
    return True


def handle_edit(store: CalendarStore, args, processor: EventProcessor) -> bool:
    current = store.get(args.eid)
    changes = {}
    for field_name in ('title', 'description', 'location'):
        if getattr(args, field_name) is not None:
            changes[field_name] = getattr(args, field_name)
    if args.start_date is not None:
        changes['start_date'] = processor.parse_date(
            args.start_date, default=current.start_date
        )
    if args.start_time is not None:
        changes['start_time'] = processor.parse_time(
            args.start_time, default=current.start_time
        )
    if args.duration is not None:
        changes['duration'] = processor.parse_duration(args.duration)
    if args.recurrence is not None:
        changes['recurrence'] = parse_recurrence(args.recurrence)
    if args.tags is not None:
        changes['tags'] = set(args.tags)

    new_fingerprint = store.edit(args.eid, **changes)
    if new_fingerprint is None:
        print('Edited event would duplicate an existing one: calendar not modified')
        return False
    print(f"Event updated, new id {new_fingerprint}")
    return True


def handle_list(store: CalendarStore, args, processor: EventProcessor) -> bool:
    if args.stored:
        rows = sorted(
            store.items(), key=lambda item: (item[1].start_date, item[1].start_time)
        )
    else:
        if args.today:
            events = store.today()
        elif args.week:
            events = store.this_week()
        elif args.month:
            events = store.this_month()
        elif args.tag:
            events = store.by_tag(args.tag)
        else:
            start = processor.parse_date(args.start, default=date.min) if args.start else None
            until = processor.parse_date(args.until, default=date.max) if args.until else None
            events = store.between(start, until)
        # Projected occurrences have no id of their own
        rows = [(None, event) for event in events]

    print(
        f"--- {store.name} ({store.owner}) ---\n"
        f"total events: {store.occurrence_count()}\n"
        f"{datetime.now().strftime('%A %d/%m/%Y - %H:%M')}"
    )
    for fingerprint, event in rows:
        print(format_event(fingerprint, event))
    return False


def handle_import(store: CalendarStore, args, processor: EventProcessor,
                  timeout: int = 30) -> bool:
    result = IcsImporter(timeout=timeout).import_into(store, args.source)
    print(
        f"Imported {result.added} events "
        f"({result.duplicates} duplicates skipped, {len(result.errors)} errors)"
    )
    return result.added > 0


HANDLERS = {
    'add': handle_add,
    'remove': handle_remove,
    'edit': handle_edit,
    'list': handle_list,
}


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run one calendar command.

    The calendar is loaded once, the command is applied, and the calendar
    is written back only if the command changed it.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Process exit code
    """
    config = load_config()
    setup_logging(config['log_level'])

    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == 'list' and (args.start or args.until) and (
        args.today or args.week or args.month or args.tag or args.stored
    ):
        parser.error('--from/--until cannot be combined with other list filters')
    owner = args.owner if args.owner is not None else config['owner']
    processor = EventProcessor()

    try:
        manager = CalendarFileManager(config['data_dir'])

        if args.delete:
            if not manager.delete(args.delete):
                raise CalendarNotFoundError(args.delete)
            print(f"Calendar '{args.delete}' deleted")
            return 0

        if args.create:
            store = manager.create(args.create, owner=owner)
            print(f"Calendar '{args.create}' created")
        else:
            name = args.calendar or config['calendar_name']
            if manager.exists(name):
                store = manager.load(name)
            else:
                logger.info(f"Calendar '{name}' not found, starting empty")
                store = CalendarStore(name=name, owner=owner)

        if args.command is None:
            return 0

        if args.command == 'import':
            modified = handle_import(
                store, args, processor, timeout=config['ics_timeout']
            )
        else:
            modified = HANDLERS[args.command](store, args, processor)

        if modified:
            manager.save(store)
        return 0

    except CalendarError as e:
        logger.error(f"Calendar command failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except requests.RequestException as e:
        logger.error(
            f"Failed to fetch calendar source: {e}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
