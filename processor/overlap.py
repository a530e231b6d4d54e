"""Overlap detection between events."""
from datetime import datetime
from typing import List, Tuple

from processor.models import Event
from processor.recurrence import expand_recurrence


def occurrence_spans(event: Event) -> List[Tuple[datetime, datetime]]:
    """
    List the [start, end] span of every occurrence of an event.

    Args:
        event: Event, recurring or not

    Returns:
        One (start, end) pair per occurrence, in chronological order
    """
    if event.recurrence is None:
        return [(event.start, event.end)]

    spans = []
    for occurrence_date, occurrence_time in expand_recurrence(
        event.recurrence, event.start_date, event.start_time
    ):
        start = datetime.combine(occurrence_date, occurrence_time)
        spans.append((start, start + event.duration))
    return spans


def spans_overlap(
    first: Tuple[datetime, datetime],
    second: Tuple[datetime, datetime]
) -> bool:
    """Inclusive interval intersection."""
    first_start, first_end = first
    second_start, second_end = second
    return second_start <= first_end and second_end >= first_start


def events_overlap(first: Event, second: Event) -> bool:
    """
    Check whether any occurrence of one event intersects any of the other.

    Both bounds are inclusive, so an event that starts exactly when
    another ends counts as overlapping. The check is symmetric and stops
    at the first intersecting pair. For two recurring events the cost is
    the product of their occurrence counts.

    Args:
        first: Event to compare
        second: Event to compare

    Returns:
        True if the events overlap
    """
    second_spans = occurrence_spans(second)
    return any(
        spans_overlap(first_span, second_span)
        for first_span in occurrence_spans(first)
        for second_span in second_spans
    )
