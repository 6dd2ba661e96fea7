"""Conversion of timetable events into Google Calendar event payloads."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from processor.errors import InvalidTimeRange
from processor.models import CalendarEventPayload, TimetableEvent
from processor.normalization import RANGE_SEPARATOR, clock_to_minutes

logger = logging.getLogger(__name__)

DEFAULT_TIME_ZONE = 'UTC'
ATTRIBUTION = 'Created by Timetable Sync'

EVENT_COLORS = {
    'lecture': '1',
    'lab': '2',
    'tutorial': '3',
    'exam': '4',
    'meeting': '5',
    'break': '6',
}

DEFAULT_REMINDERS = [
    {'method': 'email', 'minutes': 24 * 60},
    {'method': 'popup', 'minutes': 10},
]


class CalendarEventMapper:
    """Maps TimetableEvent objects to CalendarEventPayload objects."""

    def __init__(self, time_zone: str = DEFAULT_TIME_ZONE,
                 reminders: Optional[List[Dict[str, Any]]] = None):
        """
        Initialize the mapper.

        Args:
            time_zone: IANA time zone the clock times are expressed in
            reminders: Reminder overrides replacing the default set
        """
        self.time_zone = time_zone
        self.tz = timezone.utc if time_zone == 'UTC' else ZoneInfo(time_zone)
        self.reminders = reminders if reminders is not None else DEFAULT_REMINDERS

    def to_payload(self, event: TimetableEvent,
                   reminders: Optional[List[Dict[str, Any]]] = None) -> CalendarEventPayload:
        """
        Convert a timetable event into a calendar event payload.

        Args:
            event: Normalized timetable event
            reminders: Per-call reminder overrides

        Returns:
            CalendarEventPayload

        Raises:
            InvalidTimeRange: If the event time or date cannot be resolved
        """
        start, end = self.resolve_times(event.time, event.date)

        return CalendarEventPayload(
            event_id=event.id,
            summary=event.title,
            description=self.build_description(event),
            start=start,
            end=end,
            time_zone=self.time_zone,
            location=event.location,
            color_id=EVENT_COLORS.get(event.event_type, EVENT_COLORS['lecture']),
            reminders=[dict(r) for r in (reminders if reminders is not None else self.reminders)]
        )

    def resolve_times(self, time_range: str, event_date: str) -> Tuple[datetime, datetime]:
        """
        Combine an `HH:MM - HH:MM` range with a date into aware datetimes.

        An end time earlier than the start time falls on the following day.
        """
        parts = time_range.split(RANGE_SEPARATOR) if time_range else []
        if len(parts) != 2:
            raise InvalidTimeRange(f"Invalid time range: {time_range!r}")

        try:
            start_minutes = clock_to_minutes(parts[0])
            end_minutes = clock_to_minutes(parts[1])
            base = datetime.strptime(event_date, '%Y-%m-%d')
        except (TypeError, ValueError) as e:
            raise InvalidTimeRange(
                f"Invalid time range {time_range!r} on {event_date!r}: {e}"
            ) from e

        start = (base + timedelta(minutes=start_minutes)).replace(tzinfo=self.tz)
        end = (base + timedelta(minutes=end_minutes)).replace(tzinfo=self.tz)
        if end < start:
            end += timedelta(days=1)
        return start, end

    def date_and_time(self, payload: CalendarEventPayload) -> Tuple[str, str]:
        """Recover the (date, time range) pair a payload was built from."""
        start = payload.start.astimezone(self.tz)
        end = payload.end.astimezone(self.tz)
        return (
            start.date().isoformat(),
            f"{start.strftime('%H:%M')}{RANGE_SEPARATOR}{end.strftime('%H:%M')}"
        )

    @staticmethod
    def build_description(event: TimetableEvent) -> str:
        """Build the multi-line event description."""
        parts = [
            f"Course: {event.title}",
            f"Type: {event.event_type.capitalize()}",
            f"Duration: {event.duration}"
        ]

        if event.course_code:
            parts.append(f"Course Code: {event.course_code}")
        if event.instructor:
            parts.append(f"Instructor: {event.instructor}")
        if event.room:
            parts.append(f"Room: {event.room}")
        if event.building:
            parts.append(f"Building: {event.building}")

        parts.extend(['', ATTRIBUTION])
        return '\n'.join(parts)
