"""Unit tests for CalendarEventMapper."""
from datetime import datetime, timedelta, timezone

import pytest

from calendar_sync.event_mapper import ATTRIBUTION, CalendarEventMapper
from processor.errors import InvalidTimeRange
from processor.models import TimetableEvent


def make_event(**overrides):
    data = dict(
        id='evt-1',
        title='Advanced Algorithms',
        time='09:00 - 10:30',
        date='2024-01-15',
        location='Room 101, CS Building',
        event_type='lecture',
        duration='1h 30m',
        instructor='Dr. Smith',
        course_code='CS401',
        room='Room 101',
        building='CS Building'
    )
    data.update(overrides)
    return TimetableEvent(**data)


class TestCalendarEventMapper:
    """Test cases for CalendarEventMapper."""

    def test_payload_fields(self):
        """Test the basic payload mapping."""
        payload = CalendarEventMapper().to_payload(make_event())

        assert payload.event_id == 'evt-1'
        assert payload.summary == 'Advanced Algorithms'
        assert payload.location == 'Room 101, CS Building'
        assert payload.color_id == '1'
        assert payload.time_zone == 'UTC'
        assert payload.start == datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)
        assert payload.end == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize('event_type,color', [
        ('lecture', '1'), ('lab', '2'), ('tutorial', '3'),
        ('exam', '4'), ('meeting', '5'), ('break', '6'), ('unknown', '1'),
    ])
    def test_colors(self, event_type, color):
        """Test each event type maps to its color id."""
        payload = CalendarEventMapper().to_payload(make_event(event_type=event_type))

        assert payload.color_id == color

    def test_default_reminders(self):
        """Test default email and popup reminders."""
        payload = CalendarEventMapper().to_payload(make_event())

        assert payload.reminders == [
            {'method': 'email', 'minutes': 1440},
            {'method': 'popup', 'minutes': 10},
        ]

    def test_reminder_overrides(self):
        """Test per-call reminders replace the defaults."""
        mapper = CalendarEventMapper()
        reminders = [{'method': 'popup', 'minutes': 30}]

        payload = mapper.to_payload(make_event(), reminders=reminders)

        assert payload.reminders == reminders
        assert mapper.to_payload(make_event()).reminders[0]['method'] == 'email'

    def test_description(self):
        """Test the description lists details and ends with the attribution."""
        payload = CalendarEventMapper().to_payload(make_event())

        assert payload.description == '\n'.join([
            'Course: Advanced Algorithms',
            'Type: Lecture',
            'Duration: 1h 30m',
            'Course Code: CS401',
            'Instructor: Dr. Smith',
            'Room: Room 101',
            'Building: CS Building',
            '',
            ATTRIBUTION,
        ])

    def test_description_omits_absent_fields(self):
        """Test optional lines are left out when empty."""
        event = make_event(instructor=None, course_code=None, room=None, building=None)

        description = CalendarEventMapper.build_description(event)

        assert description == (
            'Course: Advanced Algorithms\nType: Lecture\nDuration: 1h 30m\n\n'
            + ATTRIBUTION
        )

    def test_time_zone(self):
        """Test clock times are interpreted in the configured zone."""
        mapper = CalendarEventMapper(time_zone='America/New_York')

        payload = mapper.to_payload(make_event())

        assert payload.time_zone == 'America/New_York'
        assert payload.start.utcoffset() == timedelta(hours=-5)
        assert payload.start.astimezone(timezone.utc).hour == 14

    def test_end_before_start_crosses_midnight(self):
        """Test an end time earlier than the start falls on the next day."""
        payload = CalendarEventMapper().to_payload(make_event(time='23:00 - 00:30'))

        assert payload.end - payload.start == timedelta(minutes=90)
        assert payload.end.date().isoformat() == '2024-01-16'

    @pytest.mark.parametrize('time_range', [
        '09:00', '9am - 10am', '25:00 - 26:00', '', '09:00 - 10:00 - 11:00'
    ])
    def test_invalid_time_range(self, time_range):
        """Test malformed ranges are rejected."""
        with pytest.raises(InvalidTimeRange):
            CalendarEventMapper().to_payload(make_event(time=time_range))

    def test_invalid_date(self):
        """Test an unparseable date is rejected."""
        with pytest.raises(InvalidTimeRange):
            CalendarEventMapper().to_payload(make_event(date='next week'))

    @pytest.mark.parametrize('time_range', ['09:00 - 10:30', '23:15 - 00:45', '00:00 - 23:59'])
    def test_date_and_time_recovered(self, time_range):
        """Test the source date and range can be read back from a payload."""
        mapper = CalendarEventMapper(time_zone='Europe/Berlin')

        payload = mapper.to_payload(make_event(time=time_range))

        assert mapper.date_and_time(payload) == ('2024-01-15', time_range)

    def test_request_body(self):
        """Test the Calendar API request body."""
        body = CalendarEventMapper().to_payload(make_event()).to_request_body()

        assert body['start'] == {'dateTime': '2024-01-15T09:00:00+00:00', 'timeZone': 'UTC'}
        assert body['end'] == {'dateTime': '2024-01-15T10:30:00+00:00', 'timeZone': 'UTC'}
        assert body['reminders']['useDefault'] is False
        assert body['colorId'] == '1'
        assert body['visibility'] == 'default'
        assert 'attendees' not in body
        assert 'recurrence' not in body
