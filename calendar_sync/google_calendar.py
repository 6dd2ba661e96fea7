"""Google Calendar REST client."""
import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from auth.token_provider import TokenProvider
from processor.errors import AuthRequired, CalendarAPIError, response_error_message
from processor.models import CalendarEventPayload, CalendarListItem

logger = logging.getLogger(__name__)


class GoogleCalendarClient:
    """Authenticated client for the Google Calendar v3 API."""

    BASE_URL = 'https://www.googleapis.com/calendar/v3'
    CALENDAR_LIST_URL = f"{BASE_URL}/users/me/calendarList"
    CALENDARS_URL = f"{BASE_URL}/calendars"
    RETRY_STATUSES = (429, 500, 502, 503, 504)

    def __init__(self, token_provider: TokenProvider, timeout: int = 30,
                 max_retries: int = 3, base_delay: float = 1.0):
        """
        Initialize the calendar client.

        Args:
            token_provider: Source of valid access tokens
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts per request for retryable failures
            base_delay: Initial backoff delay in seconds, doubled per attempt
        """
        self.token_provider = token_provider
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay

    @classmethod
    def events_url(cls, calendar_id: str) -> str:
        return f"{cls.CALENDARS_URL}/{quote(calendar_id, safe='')}/events"

    async def get_calendar_list(self) -> List[CalendarListItem]:
        """
        Fetch the user's calendars.

        Raises:
            AuthRequired: If the user is not signed in
            CalendarAPIError: If the list cannot be fetched
        """
        items = await self._paginate(self.CALENDAR_LIST_URL, {}, 'Failed to fetch calendars')
        logger.info(f"Fetched {len(items)} calendars")
        return [CalendarListItem.from_api(item) for item in items]

    async def create_calendar(self, name: str = 'Timetable Sync',
                              time_zone: str = 'UTC',
                              description: str = 'Calendar created by Timetable Sync for timetable events') -> str:
        """Create a secondary calendar and return its id."""
        body = {
            'summary': name,
            'description': description,
            'timeZone': time_zone
        }
        response = await self._request(
            'POST', self.CALENDARS_URL, 'Failed to create calendar', json=body
        )
        calendar_id = response.json()['id']
        logger.info(f"Created calendar {calendar_id}")
        return calendar_id

    async def create_event(self, calendar_id: str, payload: CalendarEventPayload) -> str:
        """
        Create one event and return the id assigned by the API.

        Raises:
            CalendarAPIError: If the API rejects the event
        """
        response = await self._request(
            'POST',
            self.events_url(calendar_id),
            f"Failed to create event \"{payload.summary}\"",
            json=payload.to_request_body()
        )
        return response.json()['id']

    async def list_events(self, calendar_id: str, time_min: datetime,
                          time_max: datetime) -> List[Dict[str, Any]]:
        """List single events starting inside [time_min, time_max]."""
        params = {
            'timeMin': time_min.isoformat(),
            'timeMax': time_max.isoformat(),
            'singleEvents': 'true',
            'orderBy': 'startTime'
        }
        return await self._paginate(
            self.events_url(calendar_id), params, 'Failed to fetch existing events'
        )

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event; an already-deleted event counts as success."""
        response = await self._request(
            'DELETE',
            f"{self.events_url(calendar_id)}/{quote(event_id, safe='')}",
            'Failed to delete event',
            allow_statuses=(404,)
        )
        if response.status_code == 404:
            logger.info(f"Event {event_id} was already deleted")

    async def _paginate(self, url: str, params: Dict[str, str],
                        context: str) -> List[Dict[str, Any]]:
        items = []
        page_token = None

        while True:
            page_params = dict(params)
            if page_token:
                page_params['pageToken'] = page_token
            response = await self._request('GET', url, context, params=page_params)
            data = response.json()
            items.extend(data.get('items', []))
            page_token = data.get('nextPageToken')
            if not page_token:
                return items

    async def _request(self, method: str, url: str, context: str,
                       json: Optional[Dict[str, Any]] = None,
                       params: Optional[Dict[str, str]] = None,
                       allow_statuses: Tuple[int, ...] = ()) -> requests.Response:
        access_token = await self.token_provider.get_valid_access_token()
        headers = {
            'Authorization': f"Bearer {access_token}",
            'Content-Type': 'application/json'
        }
        response = await asyncio.to_thread(
            self._send, method, url, headers, json, params, context
        )

        if response.ok or response.status_code in allow_statuses:
            return response

        message = response_error_message(response) or response.reason
        if response.status_code == 401:
            raise AuthRequired(f"{context}: authentication expired. Please sign in again.")
        if response.status_code == 429:
            message = f"Rate limit exceeded ({message})"
        raise CalendarAPIError(f"{context}: {message}", status_code=response.status_code)

    def _send(self, method: str, url: str, headers: Dict[str, str],
              json: Optional[Dict[str, Any]], params: Optional[Dict[str, str]],
              context: str) -> requests.Response:
        """Send a request, retrying throttling, server and transport errors."""
        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            try:
                response = requests.request(
                    method,
                    url,
                    headers=headers,
                    json=json,
                    params=params,
                    timeout=self.timeout
                )
            except requests.RequestException as e:
                if last_attempt:
                    logger.error(
                        f"All {self.max_retries} attempts failed for {method} {url}: {e}"
                    )
                    raise CalendarAPIError(f"{context}: {e}") from e
                reason = str(e)
            else:
                if response.status_code not in self.RETRY_STATUSES or last_attempt:
                    return response
                reason = f"HTTP {response.status_code}"

            # Calculate exponential backoff delay
            delay = self.base_delay * (2 ** attempt)
            logger.warning(
                f"Request failed (attempt {attempt + 1}/{self.max_retries}): {reason}. "
                f"Retrying in {delay} seconds..."
            )
            time.sleep(delay)

        raise CalendarAPIError(f"{context}: no attempts made")
