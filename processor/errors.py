"""Error types raised by the event store."""


class CalendarError(Exception):
    """Base class for calendar errors."""


class EventNotFoundError(CalendarError):
    """No event is stored under the given fingerprint."""

    def __init__(self, fingerprint: str):
        self.fingerprint = fingerprint
        super().__init__(f"Event {fingerprint} not found")


class CalendarAlreadyExistsError(CalendarError):
    """A calendar with the given name already exists."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Calendar '{name}' already exists")


class CalendarNotFoundError(CalendarError):
    """No calendar with the given name exists."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Calendar '{name}' not found")


class CalendarParsingError(CalendarError):
    """A stored calendar file could not be decoded."""


class IcsParsingError(CalendarError):
    """An .ics source could not be read or parsed."""

    def __init__(self, source: str, reason: str = ''):
        self.source = source
        message = f"Failed parsing {source}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
