"""Batch synchronization of timetable events to Google Calendar."""
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from calendar_sync.event_mapper import CalendarEventMapper
from calendar_sync.google_calendar import GoogleCalendarClient
from processor.errors import AuthRequired, InvalidTimeRange
from processor.models import (
    CalendarEventPayload,
    SyncError,
    SyncProgress,
    SyncResult,
    TimetableEvent,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SyncProgress], None]


class SyncEngine:
    """Pushes timetable events to a calendar in rate-limited batches."""

    BATCH_SIZE = 5
    REQUEST_DELAY = 0.2  # seconds between staggered calls within a batch
    BATCH_DELAY = 1.0  # seconds between batches
    COMPLETED_MESSAGE = 'Sync completed'

    def __init__(self, client: GoogleCalendarClient, mapper: CalendarEventMapper,
                 batch_size: int = BATCH_SIZE, request_delay: float = REQUEST_DELAY,
                 batch_delay: float = BATCH_DELAY):
        """
        Initialize the sync engine.

        Args:
            client: Authenticated calendar client
            mapper: Converts timetable events into calendar payloads
            batch_size: Number of events created concurrently
            request_delay: Stagger applied to all but the first call of a batch
            batch_delay: Pause between consecutive batches
        """
        self.client = client
        self.mapper = mapper
        self.batch_size = batch_size
        self.request_delay = request_delay
        self.batch_delay = batch_delay

    async def sync(self, calendar_id: str, events: List[TimetableEvent],
                   on_progress: Optional[ProgressCallback] = None) -> SyncResult:
        """
        Create events in a calendar.

        Each event succeeds or fails on its own; a failure is recorded in
        the result without affecting other events.

        Args:
            calendar_id: Target calendar
            events: Events to create
            on_progress: Called before each create call and once at the end

        Returns:
            SyncResult with per-event failures

        Raises:
            AuthRequired: If the user is not (or no longer) signed in
        """
        logger.info(f"Starting sync of {len(events)} events to calendar {calendar_id}")
        created = 0
        errors: List[SyncError] = []

        payloads = []
        for event in events:
            try:
                payloads.append(self.mapper.to_payload(event))
            except InvalidTimeRange as e:
                logger.warning(f"Skipping event {event.id}: {e}")
                errors.append(SyncError(event_id=event.id, error=str(e)))

        total = len(payloads)
        batches = [
            payloads[i:i + self.batch_size]
            for i in range(0, total, self.batch_size)
        ]

        for batch_index, batch in enumerate(batches):
            offset = batch_index * self.batch_size
            tasks = [
                self._create(calendar_id, payload, offset + index, total,
                             index > 0, on_progress)
                for index, payload in enumerate(batch)
            ]
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)

            for payload, outcome in zip(batch, outcomes):
                if isinstance(outcome, AuthRequired):
                    raise outcome
                if isinstance(outcome, BaseException):
                    logger.warning(f"Failed to create event {payload.event_id}: {outcome}")
                    errors.append(SyncError(event_id=payload.event_id, error=str(outcome)))
                else:
                    created += 1

            logger.info(f"Batch {batch_index + 1}/{len(batches)} complete")
            if batch_index < len(batches) - 1:
                await asyncio.sleep(self.batch_delay)

        if on_progress:
            on_progress(SyncProgress(
                completed=total, total=total, current_event=self.COMPLETED_MESSAGE
            ))

        result = SyncResult(
            success=not errors,
            events_created=created,
            events_updated=0,
            events_failed=len(errors),
            errors=tuple(errors),
            calendar_id=calendar_id
        )
        logger.info(
            f"Sync complete: {result.events_created} created, "
            f"{result.events_failed} failed"
        )
        return result

    async def check_existing_events(self, calendar_id: str,
                                    events: List[TimetableEvent]) -> List[str]:
        """
        Find events already present in the calendar.

        An event is a duplicate when an existing event has the same title
        and start time. Any failure is treated as "no duplicates".

        Returns:
            Ids of the given events that already exist
        """
        try:
            payloads = []
            for event in events:
                try:
                    payloads.append(self.mapper.to_payload(event))
                except InvalidTimeRange:
                    continue
            if not payloads:
                return []

            existing = await self.client.list_events(
                calendar_id,
                min(payload.start for payload in payloads),
                max(payload.end for payload in payloads)
            )
            existing_keys = {
                (item.get('summary'), _parse_start(item)) for item in existing
            }

            duplicates = [
                payload.event_id for payload in payloads
                if (payload.summary, payload.start) in existing_keys
            ]
            logger.info(f"Found {len(duplicates)} events already in calendar")
            return duplicates

        except Exception as e:
            logger.warning(f"Error checking existing events, assuming none: {e}")
            return []

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event; deleting a missing event succeeds."""
        await self.client.delete_event(calendar_id, event_id)

    async def _create(self, calendar_id: str, payload: CalendarEventPayload,
                      position: int, total: int, stagger: bool,
                      on_progress: Optional[ProgressCallback]) -> str:
        if on_progress:
            on_progress(SyncProgress(
                completed=position, total=total, current_event=payload.summary
            ))
        if stagger:
            await asyncio.sleep(self.request_delay)
        return await self.client.create_event(calendar_id, payload)


def _parse_start(item: Dict[str, Any]) -> Optional[datetime]:
    """Parse the start dateTime of an API event; all-day events yield None."""
    value = (item.get('start') or {}).get('dateTime')
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
