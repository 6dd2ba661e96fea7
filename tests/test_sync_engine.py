"""Unit tests for SyncEngine."""
import asyncio
from collections import Counter
from unittest.mock import AsyncMock, Mock, patch

import pytest

from calendar_sync.event_mapper import CalendarEventMapper
from calendar_sync.sync_engine import SyncEngine
from processor.errors import AuthRequired, CalendarAPIError
from processor.models import SyncError, TimetableEvent


def make_events(count, date='2024-01-15'):
    return [
        TimetableEvent(
            id=f"evt-{i}",
            title=f"Event {i}",
            time=f"{8 + i:02d}:00 - {9 + i:02d}:00",
            date=date
        )
        for i in range(1, count + 1)
    ]


def make_client(fail_titles=(), error=None):
    """Mock calendar client failing for the given event titles."""
    client = Mock()

    async def create_event(calendar_id, payload):
        if payload.summary in fail_titles:
            raise error or CalendarAPIError(
                f"Failed to create event \"{payload.summary}\": Invalid start time",
                status_code=400
            )
        return f"google-{payload.event_id}"

    client.create_event = AsyncMock(side_effect=create_event)
    client.list_events = AsyncMock(return_value=[])
    client.delete_event = AsyncMock(return_value=None)
    return client


def make_engine(client, **kwargs):
    kwargs.setdefault('request_delay', 0)
    kwargs.setdefault('batch_delay', 0)
    return SyncEngine(client, CalendarEventMapper(), **kwargs)


class TestSync:
    """Test cases for SyncEngine.sync."""

    def test_all_events_created(self):
        """Test a clean sync."""
        client = make_client()
        engine = make_engine(client)

        result = asyncio.run(engine.sync('primary', make_events(3)))

        assert result.success is True
        assert result.events_created == 3
        assert result.events_failed == 0
        assert result.events_updated == 0
        assert result.errors == ()
        assert result.calendar_id == 'primary'
        assert client.create_event.await_count == 3

    def test_one_failure_does_not_stop_others(self):
        """Test seven events with the fourth failing."""
        client = make_client(fail_titles=('Event 4',))
        engine = make_engine(client)

        result = asyncio.run(engine.sync('primary', make_events(7)))

        assert result.success is False
        assert result.events_created == 6
        assert result.events_failed == 1
        assert result.errors == (SyncError(
            event_id='evt-4',
            error='Failed to create event "Event 4": Invalid start time'
        ),)
        assert client.create_event.await_count == 7

    def test_progress_reports(self):
        """Test progress is reported before each call and at the end."""
        engine = make_engine(make_client(fail_titles=('Event 4',)))
        progress = []

        asyncio.run(engine.sync('primary', make_events(7), progress.append))

        assert [(p.completed, p.total) for p in progress] == [
            (0, 7), (1, 7), (2, 7), (3, 7), (4, 7), (5, 7), (6, 7), (7, 7)
        ]
        assert progress[0].current_event == 'Event 1'
        assert progress[-1].current_event == 'Sync completed'

    def test_batches_run_sequentially(self):
        """Test a batch finishes before the next one starts."""
        log = []
        client = Mock()

        async def create_event(calendar_id, payload):
            log.append(('start', payload.event_id))
            await asyncio.sleep(0)
            log.append(('end', payload.event_id))
            return payload.event_id

        client.create_event = AsyncMock(side_effect=create_event)
        engine = make_engine(client, batch_size=3)

        asyncio.run(engine.sync('primary', make_events(7)))

        def position(entry):
            return log.index(entry)

        first_batch_ends = [position(('end', f"evt-{i}")) for i in (1, 2, 3)]
        second_batch_starts = [position(('start', f"evt-{i}")) for i in (4, 5, 6)]
        assert max(first_batch_ends) < min(second_batch_starts)
        assert max(position(('end', f"evt-{i}")) for i in (4, 5, 6)) < position(('start', 'evt-7'))

    def test_calls_within_batch_overlap(self):
        """Test calls of one batch are in flight together."""
        log = []
        client = Mock()

        async def create_event(calendar_id, payload):
            log.append(('start', payload.event_id))
            for _ in range(3):
                await asyncio.sleep(0)
            log.append(('end', payload.event_id))
            return payload.event_id

        client.create_event = AsyncMock(side_effect=create_event)
        engine = make_engine(client, batch_size=5)

        asyncio.run(engine.sync('primary', make_events(2)))

        assert log.index(('start', 'evt-2')) < log.index(('end', 'evt-1'))

    def test_pacing_delays(self):
        """Test staggered call delays and pauses between batches."""
        engine = SyncEngine(make_client(), CalendarEventMapper(),
                            batch_size=5, request_delay=0.2, batch_delay=1.0)

        with patch('calendar_sync.sync_engine.asyncio.sleep', new=AsyncMock()) as mock_sleep:
            asyncio.run(engine.sync('primary', make_events(7)))

        delays = Counter(c.args[0] for c in mock_sleep.await_args_list)
        assert delays == Counter({0.2: 5, 1.0: 1})

    def test_auth_required_aborts(self):
        """Test an authentication failure propagates."""
        client = make_client(fail_titles=('Event 2',), error=AuthRequired('sign in'))
        engine = make_engine(client, batch_size=2)

        with pytest.raises(AuthRequired):
            asyncio.run(engine.sync('primary', make_events(5)))

        assert client.create_event.await_count == 2

    def test_unmappable_events_recorded_as_failures(self):
        """Test events with invalid times fail individually."""
        events = make_events(2)
        events.append(TimetableEvent(id='bad', title='Bad', time='soon', date='2024-01-15'))
        client = make_client()
        engine = make_engine(client)
        progress = []

        result = asyncio.run(engine.sync('primary', events, progress.append))

        assert result.events_created == 2
        assert result.events_failed == 1
        assert result.errors[0].event_id == 'bad'
        assert progress[-1].total == 2
        assert client.create_event.await_count == 2

    def test_empty_sync(self):
        """Test syncing nothing succeeds."""
        progress = []

        result = asyncio.run(make_engine(make_client()).sync('primary', [], progress.append))

        assert result.success is True
        assert result.events_created == 0
        assert [(p.completed, p.total) for p in progress] == [(0, 0)]

    def test_result_is_immutable(self):
        """Test the sync result cannot be modified."""
        result = asyncio.run(make_engine(make_client()).sync('primary', make_events(1)))

        with pytest.raises(AttributeError):
            result.events_created = 5

    def test_result_to_dict(self):
        """Test serialized result keys."""
        engine = make_engine(make_client(fail_titles=('Event 1',)))

        data = asyncio.run(engine.sync('cal-1', make_events(1))).to_dict()

        assert data == {
            'success': False,
            'eventsCreated': 0,
            'eventsUpdated': 0,
            'eventsFailed': 1,
            'errors': [{
                'eventId': 'evt-1',
                'error': 'Failed to create event "Event 1": Invalid start time'
            }],
            'calendarId': 'cal-1',
        }


class TestCheckExistingEvents:
    """Test cases for SyncEngine.check_existing_events."""

    def test_matches_title_and_start(self):
        """Test duplicates need the same title and start time."""
        client = make_client()
        client.list_events.return_value = [
            {'summary': 'Event 1', 'start': {'dateTime': '2024-01-15T09:00:00Z'}},
            {'summary': 'Event 2', 'start': {'dateTime': '2024-01-15T12:00:00+00:00'}},
            {'summary': 'Event 3', 'start': {'dateTime': '2024-01-15T11:00:00+00:00'}},
            {'summary': 'Holiday', 'start': {'date': '2024-01-15'}},
        ]
        engine = make_engine(client)

        duplicates = asyncio.run(engine.check_existing_events('primary', make_events(3)))

        assert duplicates == ['evt-1', 'evt-3']
        calendar_id, time_min, time_max = client.list_events.call_args[0]
        assert calendar_id == 'primary'
        assert time_min.isoformat() == '2024-01-15T09:00:00+00:00'
        assert time_max.isoformat() == '2024-01-15T12:00:00+00:00'

    def test_offsets_compare_as_instants(self):
        """Test equal instants match across different UTC offsets."""
        client = make_client()
        client.list_events.return_value = [
            {'summary': 'Event 1', 'start': {'dateTime': '2024-01-15T10:00:00+01:00'}},
        ]
        engine = make_engine(client)

        duplicates = asyncio.run(engine.check_existing_events('primary', make_events(1)))

        assert duplicates == ['evt-1']

    def test_failure_means_no_duplicates(self):
        """Test lookup failures are treated as no duplicates."""
        client = make_client()
        client.list_events.side_effect = CalendarAPIError('Failed to fetch existing events')
        engine = make_engine(client)

        assert asyncio.run(engine.check_existing_events('primary', make_events(2))) == []

    def test_no_valid_events(self):
        """Test nothing is fetched when no event can be mapped."""
        client = make_client()
        engine = make_engine(client)
        events = [TimetableEvent(id='bad', title='Bad', time='soon', date='2024-01-15')]

        assert asyncio.run(engine.check_existing_events('primary', events)) == []
        client.list_events.assert_not_awaited()


def test_delete_event_delegates():
    """Test deletion is forwarded to the client."""
    client = make_client()

    asyncio.run(make_engine(client).delete_event('primary', 'google-1'))

    client.delete_event.assert_awaited_once_with('primary', 'google-1')
