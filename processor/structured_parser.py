"""Structured parser turning header-keyed rows into timetable events."""
import logging
import time
from datetime import date
from typing import Callable, Dict, List, Optional

from processor.models import TimetableEvent
from processor.normalization import (
    DEFAULT_DURATION_MINUTES,
    DEFAULT_LOCATION,
    calculate_duration,
    clean_title,
    normalize_date,
    normalize_event_type,
    normalize_time,
    parse_duration_minutes,
    parse_location,
)

logger = logging.getLogger(__name__)


class StructuredParser:
    """Parser for CSV and spreadsheet rows using header-name heuristics."""

    ID_PREFIX = 'local-parsed'

    # Acceptable header aliases per field, in priority order
    FIELD_MAPPINGS = {
        'title': ['title', 'course', 'subject', 'event', 'name', 'course name', 'event name'],
        'time': ['time', 'schedule', 'period', 'hours', 'timing'],
        'date': ['date', 'day', 'when'],
        'location': ['location', 'room', 'venue', 'place', 'where'],
        'type': ['type', 'category', 'kind'],
        'instructor': ['instructor', 'teacher', 'professor', 'lecturer', 'prof'],
        'course_code': ['code', 'course code', 'subject code', 'id'],
        'duration': ['duration', 'length'],
    }

    def __init__(self, today: Optional[Callable[[], date]] = None):
        """
        Initialize the structured parser.

        Args:
            today: Callable returning the reference date for weekday resolution
        """
        self.today = today or date.today

    def parse_rows(self, rows: List[Dict[str, str]]) -> List[TimetableEvent]:
        """
        Convert rows into normalized timetable events.

        Rows without a resolvable title are dropped.

        Args:
            rows: Header-keyed rows with lower-cased, trimmed headers

        Returns:
            List of TimetableEvent objects
        """
        session = int(time.time() * 1000)
        reference_date = self.today()
        events = []

        for index, row in enumerate(rows):
            try:
                event = self._map_row_to_event(row, index, session, reference_date)
                if event:
                    events.append(event)
            except Exception as e:
                logger.warning(f"Failed to convert row {index}: {e}")
                continue

        logger.info(
            f"Parsed {len(events)} events out of {len(rows)} rows"
        )
        return events

    def resolve_fields(self, row: Dict[str, str]) -> Dict[str, str]:
        """Resolve each semantic field to the first matching non-empty column."""
        fields = {}
        for field_name, aliases in self.FIELD_MAPPINGS.items():
            value = self._find_value(row, aliases)
            if value:
                fields[field_name] = value
        return fields

    def _map_row_to_event(self, row: Dict[str, str], index: int,
                          session: int, reference_date: date) -> Optional[TimetableEvent]:
        fields = self.resolve_fields(row)

        if not fields.get('title'):
            logger.debug(f"Dropping row {index}: no title")
            return None

        duration_minutes = (
            parse_duration_minutes(fields.get('duration'))
            or DEFAULT_DURATION_MINUTES
        )
        time_range = normalize_time(fields.get('time'), duration_minutes)

        location = fields.get('location')
        room, building = parse_location(location) if location else (None, None)

        return TimetableEvent(
            id=f"{self.ID_PREFIX}-{session}-{index}",
            title=clean_title(fields['title']),
            time=time_range,
            date=normalize_date(fields.get('date'), reference_date),
            location=location or DEFAULT_LOCATION,
            event_type=normalize_event_type(fields.get('type')),
            duration=calculate_duration(time_range),
            instructor=fields.get('instructor'),
            course_code=fields.get('course_code'),
            room=room,
            building=building
        )

    @staticmethod
    def _find_value(row: Dict[str, str], keys: List[str]) -> Optional[str]:
        """Find the first non-empty value among keys and their variants."""
        for key in keys:
            for variant in (key, key.replace(' ', ''), key.replace(' ', '_')):
                value = row.get(variant)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return None
