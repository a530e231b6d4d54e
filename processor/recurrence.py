"""Recurrence expansion and the recurrence text grammar."""
import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from processor.models import Cadence, Recurrence

logger = logging.getLogger(__name__)

FIXED_STEPS = {
    Cadence.SECONDLY: timedelta(seconds=1),
    Cadence.MINUTELY: timedelta(minutes=1),
    Cadence.HOURLY: timedelta(hours=1),
    Cadence.DAILY: timedelta(days=1),
    Cadence.WEEKLY: timedelta(weeks=1),
}


def shift(anchor: datetime, cadence: Cadence, steps: int) -> datetime:
    """
    Move a date/time forward by a number of cadence units.

    Fixed-length cadences add an exact timedelta, carrying across day,
    month and year boundaries. Monthly and yearly cadences move the
    calendar date and keep the time of day. relativedelta clamps a
    day-of-month missing from the target month to that month's last day,
    so Jan 31 + 1 month is Feb 29 (leap year) and Feb 29 + 1 year is Feb 28.

    Args:
        anchor: Starting date/time
        cadence: Unit to move by
        steps: Number of units

    Returns:
        The shifted date/time
    """
    if cadence in FIXED_STEPS:
        return anchor + FIXED_STEPS[cadence] * steps
    if cadence is Cadence.MONTHLY:
        return anchor + relativedelta(months=steps)
    if cadence is Cadence.YEARLY:
        return anchor + relativedelta(years=steps)
    raise ValueError(f"Unsupported cadence: {cadence}")


def expand_recurrence(
    recurrence: Recurrence,
    anchor_date: date,
    anchor_time: time
) -> List[Tuple[date, time]]:
    """
    Compute every occurrence of a recurring event.

    Occurrence i is always derived from the anchor (never from occurrence
    i - 1), so month-end clamping does not drift: Jan 31 monthly gives
    Feb 29, Mar 31, Apr 30.

    Args:
        recurrence: Repeat rule
        anchor_date: Date of the first occurrence
        anchor_time: Time of day of the first occurrence

    Expansion stops early at the last occurrence before year 9999 ends;
    later occurrences cannot be represented and are dropped with a warning.

    Returns:
        List of (date, time) pairs, at most repetitions + 1 long, anchor first
    """
    anchor = datetime.combine(anchor_date, anchor_time)
    occurrences = []
    for i in range(recurrence.repetitions + 1):
        try:
            current = shift(anchor, recurrence.cadence, i * recurrence.interval)
        except (OverflowError, ValueError):
            logger.warning(
                f"Recurrence '{format_recurrence(recurrence)}' from {anchor} runs past "
                f"{datetime.max.year}: truncated to {len(occurrences)} occurrences"
            )
            break
        occurrences.append((current.date(), current.time()))
    return occurrences


def parse_recurrence(text: Optional[str]) -> Optional[Recurrence]:
    """
    Parse "<cadence> <repetitions> [interval]" into a Recurrence.

    The cadence name is case-insensitive; repetitions and interval are
    unsigned integers. Anything else, including zero repetitions or a
    zero interval, means "no recurrence".

    Args:
        text: Recurrence text, e.g. "daily 4" or "Weekly 3 2"

    Returns:
        Recurrence or None
    """
    if not text:
        return None

    parts = text.split()
    if len(parts) not in (2, 3):
        logger.debug(f"Ignoring recurrence with unexpected shape: {text!r}")
        return None

    try:
        cadence = Cadence(parts[0].lower())
    except ValueError:
        logger.debug(f"Ignoring recurrence with unknown cadence: {text!r}")
        return None

    numbers = parts[1:]
    if not all(part.isdecimal() for part in numbers):
        logger.debug(f"Ignoring recurrence with non-numeric counts: {text!r}")
        return None

    repetitions = int(numbers[0])
    interval = int(numbers[1]) if len(numbers) > 1 else 1
    if repetitions == 0 or interval == 0:
        logger.debug(f"Ignoring zero-length recurrence: {text!r}")
        return None

    return Recurrence(cadence=cadence, repetitions=repetitions, interval=interval)


def format_recurrence(recurrence: Optional[Recurrence]) -> str:
    """Render a Recurrence back into its text form ('' when absent)."""
    if recurrence is None:
        return ''
    text = f"{recurrence.cadence.value} {recurrence.repetitions}"
    if recurrence.interval != 1:
        text = f"{text} {recurrence.interval}"
    return text
