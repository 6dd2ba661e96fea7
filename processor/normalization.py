"""Normalization rules shared by the structured parser and the AI validator.

Every function here is idempotent on already-normalized input: a canonical
time range, ISO date, known event type or rendered duration passes through
unchanged.
"""
import logging
import re
from datetime import date, datetime, timedelta
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 90
DEFAULT_TIME = '09:00 - 10:30'
DEFAULT_DURATION = '1h 30m'
DEFAULT_LOCATION = 'TBD'
DEFAULT_EVENT_TYPE = 'lecture'
RANGE_SEPARATOR = ' - '

MONDAY = 0
MINUTES_PER_DAY = 24 * 60

_TWELVE_HOUR = re.compile(
    r'\b(\d{1,2})(?:[:.](\d{2}))?\s*([ap])\.?m\.?(?![a-z])',
    re.IGNORECASE
)
_CLOCK = re.compile(r'^(\d{1,2})(?:[:.](\d{2}))?(?::\d{2})?$')
_STRICT_CLOCK = re.compile(r'^(\d{1,2}):(\d{2})$')
_SEPARATOR = re.compile(r'\s*(?:-|–|—|\bto\b)\s*', re.IGNORECASE)
_WEEKDAY = re.compile(
    r'\b(monday|mon|tuesday|tues|tue|wednesday|wed|thursday|thurs|thur|thu|'
    r'friday|fri|saturday|sat|sunday|sun)\b',
    re.IGNORECASE
)
_WEEKDAY_INDEX = {
    'mon': 0, 'tue': 1, 'wed': 2, 'thu': 3, 'fri': 4, 'sat': 5, 'sun': 6
}
_HOURS = re.compile(r'(\d+(?:\.\d+)?)\s*h(?:ours?|rs?)?(?![a-z])', re.IGNORECASE)
_MINUTES = re.compile(r'(\d+)\s*m(?:in(?:ute)?s?)?(?![a-z])', re.IGNORECASE)
_BARE_NUMBER = re.compile(r'^\d+$')

DATE_FORMATS = [
    '%Y-%m-%d',      # ISO 8601
    '%m/%d/%Y',      # US format
    '%m-%d-%Y',      # US format with dashes
    '%B %d, %Y',     # Full month name
    '%b %d, %Y',     # Abbreviated month name
    '%d %B %Y',      # Day first, full month name
    '%d %b %Y',      # Day first, abbreviated month name
    '%d/%m/%Y',      # European format
    '%d.%m.%Y',      # European format with dots
    '%Y/%m/%d',      # Alternative ISO format
]

EVENT_TYPE_KEYWORDS = [
    ('lab', ('lab',)),
    ('tutorial', ('tutorial', 'seminar')),
    ('meeting', ('meeting',)),
    ('break', ('break',)),
]


def clean_title(title: str) -> str:
    """Trim a title and collapse internal whitespace."""
    return ' '.join(title.split())


def convert_12_to_24(value: str) -> str:
    """Rewrite every `h[:mm] AM/PM` occurrence in value as 24-hour `HH:MM`."""
    def _replace(match):
        hours = int(match.group(1))
        minutes = match.group(2) or '00'
        period = match.group(3).lower()
        if period == 'p' and hours != 12:
            hours += 12
        if period == 'a' and hours == 12:
            hours = 0
        return f"{hours:02d}:{minutes}"

    return _TWELVE_HOUR.sub(_replace, value)


def parse_clock(value: str) -> Optional[str]:
    """
    Parse a single clock value into zero-padded `HH:MM`.

    Accepts `9`, `9:00`, `09.00`, `09:00:00` and 12-hour forms.

    Returns:
        Normalized clock string or None if the value is not a time
    """
    text = convert_12_to_24(value.strip())
    match = _CLOCK.match(text)
    if not match:
        return None
    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    if hours > 23 or minutes > 59:
        return None
    return f"{hours:02d}:{minutes:02d}"


def clock_to_minutes(value: str) -> int:
    """Convert a strict `HH:MM` clock into minutes after midnight."""
    match = _STRICT_CLOCK.match(value.strip())
    if not match:
        raise ValueError(f"Invalid clock time: {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid clock time: {value!r}")
    return hours * 60 + minutes


def add_minutes(clock: str, minutes: int) -> str:
    """Add minutes to an `HH:MM` clock, wrapping past midnight."""
    total = (clock_to_minutes(clock) + minutes) % MINUTES_PER_DAY
    return f"{total // 60:02d}:{total % 60:02d}"


def parse_duration_minutes(value: Optional[str]) -> Optional[int]:
    """
    Parse a human duration such as `2h`, `45m`, `1h 15m`, `1.5 hours` or `90`.

    Returns:
        Duration in minutes, or None when nothing usable is found
    """
    if not value:
        return None
    text = value.strip()
    if _BARE_NUMBER.match(text):
        minutes = int(text)
        return minutes or None

    total = 0.0
    hours_match = _HOURS.search(text)
    if hours_match:
        total += float(hours_match.group(1)) * 60
    minutes_match = _MINUTES.search(text)
    if minutes_match:
        total += int(minutes_match.group(1))

    return int(round(total)) or None


def normalize_time(value: Optional[str],
                   default_minutes: int = DEFAULT_DURATION_MINUTES) -> str:
    """
    Normalize a time value into a 24-hour `HH:MM - HH:MM` range.

    A value with no end time is treated as a start time and given an end
    `default_minutes` later. A value with no recognizable start time yields
    the default range.
    """
    text = (value or '').strip()
    if not text:
        return DEFAULT_TIME

    parts = _SEPARATOR.split(convert_12_to_24(text), maxsplit=1)
    start = parse_clock(parts[0])
    if not start:
        logger.debug(f"Unrecognized time '{text}', using default range")
        return DEFAULT_TIME

    end = parse_clock(parts[1]) if len(parts) > 1 else None
    if not end:
        end = add_minutes(start, default_minutes)

    return f"{start}{RANGE_SEPARATOR}{end}"


def find_weekday(value: str) -> Optional[int]:
    """Return the weekday (Monday=0) first named in value, if any."""
    match = _WEEKDAY.search(value)
    if not match:
        return None
    return _WEEKDAY_INDEX[match.group(1).lower()[:3]]


def next_weekday(weekday: int, today: Optional[date] = None) -> date:
    """
    Get the next occurrence of weekday, strictly after today.

    The result is always 1-7 days ahead; asking for today's weekday
    yields the same weekday next week.
    """
    today = today or date.today()
    days_ahead = (weekday - today.weekday()) % 7 or 7
    return today + timedelta(days=days_ahead)


def parse_calendar_date(value: str) -> Optional[str]:
    """
    Parse a calendar date in one of the supported formats.

    Returns:
        ISO 8601 date string or None if parsing fails
    """
    text = value.strip()
    # Drop the time component of ISO datetimes
    if re.match(r'^\d{4}-\d{2}-\d{2}[T ]', text):
        text = text[:10]

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime('%Y-%m-%d')
        except ValueError:
            continue

    return None


def normalize_date(value: Optional[str], today: Optional[date] = None) -> str:
    """
    Normalize a date value into an ISO 8601 date.

    Weekday names resolve to their next future occurrence; other values are
    parsed as calendar dates; anything else defaults to next Monday.
    """
    text = (value or '').strip()
    if text:
        weekday = find_weekday(text)
        if weekday is not None:
            return next_weekday(weekday, today).isoformat()

        parsed = parse_calendar_date(text)
        if parsed:
            return parsed

        logger.debug(f"Unrecognized date '{text}', defaulting to next Monday")

    return next_weekday(MONDAY, today).isoformat()


def normalize_event_type(value: Optional[str]) -> str:
    """Map a free-text type onto one of the known event types."""
    normalized = (value or '').strip().lower()

    for event_type, keywords in EVENT_TYPE_KEYWORDS:
        if any(keyword in normalized for keyword in keywords):
            return event_type

    return DEFAULT_EVENT_TYPE


def calculate_duration(time_range: Optional[str]) -> str:
    """
    Render the length of an `HH:MM - HH:MM` range as `Xh Ym`, `Xh` or `Ym`.

    Ranges that end before they start are taken to cross midnight. A
    malformed range yields the default duration.
    """
    try:
        start, end = time_range.split(RANGE_SEPARATOR)
        minutes = clock_to_minutes(end) - clock_to_minutes(start)
    except (AttributeError, ValueError):
        return DEFAULT_DURATION

    if minutes < 0:
        minutes += MINUTES_PER_DAY

    hours, minutes = divmod(minutes, 60)
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    return f"{minutes}m"


def parse_location(location: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a location into (room, building).

    `Room 101, CS Building` gives both parts; a single part mentioning
    "room" is a room; any other single part is a building.
    """
    parts = [part.strip() for part in location.split(',')]

    if len(parts) >= 2:
        return parts[0] or None, parts[1] or None
    if 'room' in location.lower():
        return location.strip() or None, None
    return None, location.strip() or None
