"""AWS Lambda handler for Timetable Sync."""
import asyncio
import base64
import binascii
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict

from auth.token_provider import TokenProvider
from calendar_sync.event_mapper import CalendarEventMapper
from calendar_sync.google_calendar import GoogleCalendarClient
from calendar_sync.sync_engine import SyncEngine
from extractor.content_extractor import ContentExtractor, UploadedFile
from processor.ai_parser import AITimetableParser
from processor.errors import (
    AuthRequired,
    InvalidTimeRange,
    ProviderError,
    UnsupportedFormat,
)
from processor.models import AuthTokens, SyncProgress, TimetableEvent
from processor.orchestrator import ParseOrchestrator, ParseState
from processor.providers import create_ai_provider
from processor.structured_parser import StructuredParser
from storage.token_store import DynamoDBTokenStore, InMemoryTokenStore, TokenStore

logger = logging.getLogger(__name__)


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


class BadRequest(Exception):
    """Malformed request payload."""


@dataclass
class AppComponents:
    """Collaborators wired together for one invocation."""
    token_provider: TokenProvider
    orchestrator: ParseOrchestrator
    calendar_client: GoogleCalendarClient
    sync_engine: SyncEngine


def build_components(env: Dict[str, str], session_id: str) -> AppComponents:
    """
    Construct every component from environment configuration.

    Args:
        env: Environment variables
        session_id: Session whose tokens are used for calendar calls
    """
    timeout = int(env.get('TIMEOUT_SECONDS', '30'))
    time_zone = env.get('CALENDAR_TIME_ZONE', 'UTC')

    table_name = env.get('TOKEN_TABLE_NAME')
    store: TokenStore
    if table_name:
        store = DynamoDBTokenStore(table_name=table_name, session_id=session_id)
    else:
        store = InMemoryTokenStore()

    token_provider = TokenProvider(
        store,
        client_id=env.get('GOOGLE_CLIENT_ID'),
        client_secret=env.get('GOOGLE_CLIENT_SECRET'),
        timeout=timeout
    )

    provider = create_ai_provider(
        openai_api_key=env.get('OPENAI_API_KEY'),
        gemini_api_key=env.get('GEMINI_API_KEY'),
        openai_model=env.get('OPENAI_MODEL'),
        gemini_model=env.get('GEMINI_MODEL'),
        timeout=timeout
    )
    orchestrator = ParseOrchestrator(
        extractor=ContentExtractor(),
        structured_parser=StructuredParser(),
        ai_parser=AITimetableParser(provider) if provider else None
    )

    calendar_client = GoogleCalendarClient(token_provider, timeout=timeout)
    sync_engine = SyncEngine(
        calendar_client,
        CalendarEventMapper(time_zone=time_zone),
        batch_size=int(env.get('SYNC_BATCH_SIZE', SyncEngine.BATCH_SIZE)),
        request_delay=int(env.get('SYNC_REQUEST_DELAY_MS', '200')) / 1000,
        batch_delay=int(env.get('SYNC_BATCH_DELAY_MS', '1000')) / 1000
    )

    return AppComponents(
        token_provider=token_provider,
        orchestrator=orchestrator,
        calendar_client=calendar_client,
        sync_engine=sync_engine
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for Timetable Sync.

    Args:
        event: Invocation payload with an `action` and its parameters,
            either at the top level or JSON-encoded under `body`
        context: Lambda context object

    Returns:
        Response dict with statusCode and JSON body
    """
    setup_logging(os.environ.get('LOG_LEVEL', 'INFO'))
    start_time = time.time()

    try:
        payload = _request_payload(event)
        action = payload.get('action', 'parse')
        logger.info("Lambda execution started", extra={'action': action})

        components = build_components(
            dict(os.environ), str(payload.get('session_id') or 'default')
        )
        if payload.get('tokens'):
            components.token_provider.set_tokens(AuthTokens.from_dict(payload['tokens']))

        status_code, body = asyncio.run(_dispatch(action, payload, components))

    except AuthRequired as e:
        return _error_response(401, 'Authentication required', e, start_time)
    except (BadRequest, UnsupportedFormat, InvalidTimeRange) as e:
        return _error_response(400, 'Invalid request', e, start_time)
    except ProviderError as e:
        return _error_response(502, 'Calendar provider error', e, start_time)
    except Exception as e:
        return _error_response(500, 'Request failed', e, start_time)

    duration = time.time() - start_time
    body['duration_seconds'] = round(duration, 2)
    logger.info(
        "Lambda execution completed",
        extra={'action': action, 'status_code': status_code,
               'duration_seconds': round(duration, 2)}
    )
    return {'statusCode': status_code, 'body': json.dumps(body)}


async def _dispatch(action: str, payload: Dict[str, Any],
                    components: AppComponents):
    if action == 'parse':
        return await _parse(payload, components)

    if action == 'calendars':
        calendars = await components.calendar_client.get_calendar_list()
        return 200, {'calendars': [item.to_dict() for item in calendars]}

    if action == 'create_calendar':
        calendar_id = await components.calendar_client.create_calendar(
            name=payload.get('name') or 'Timetable Sync'
        )
        return 200, {'calendarId': calendar_id}

    if action == 'check_duplicates':
        duplicate_ids = await components.sync_engine.check_existing_events(
            _required(payload, 'calendar_id'), _events(payload)
        )
        return 200, {'duplicateIds': duplicate_ids}

    if action == 'sync':
        return await _sync(payload, components)

    if action == 'delete_event':
        await components.sync_engine.delete_event(
            _required(payload, 'calendar_id'), _required(payload, 'event_id')
        )
        return 200, {'message': 'Event deleted'}

    if action == 'sign_out':
        await components.token_provider.sign_out()
        return 200, {'message': 'Signed out'}

    raise BadRequest(f"Unknown action: {action}")


async def _parse(payload: Dict[str, Any], components: AppComponents):
    content = payload.get('content')
    if content is None:
        raise BadRequest('Missing required field: content')
    try:
        content = base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as e:
        raise BadRequest(f"Invalid base64 file content: {e}") from e

    upload = UploadedFile(
        name=_required(payload, 'filename'),
        content=content,
        content_type=payload.get('content_type') or ''
    )

    def on_update(state: ParseState, events) -> None:
        logger.debug(f"Parse state {state.value} with {len(events)} events")

    outcome = await components.orchestrator.process(
        upload, payload.get('format'), on_update=on_update
    )
    if outcome.state == ParseState.ERROR:
        body = outcome.to_dict()
        body['message'] = 'Failed to process file'
        return 400, body
    return 200, outcome.to_dict()


async def _sync(payload: Dict[str, Any], components: AppComponents):
    calendar_id = _required(payload, 'calendar_id')
    events = _events(payload)

    skipped = []
    if payload.get('skip_duplicates'):
        skipped = await components.sync_engine.check_existing_events(calendar_id, events)
        skipped_ids = set(skipped)
        events = [event for event in events if event.id not in skipped_ids]

    def on_progress(progress: SyncProgress) -> None:
        logger.debug(
            f"Sync progress {progress.completed}/{progress.total}: {progress.current_event}"
        )

    result = await components.sync_engine.sync(calendar_id, events, on_progress)
    body = result.to_dict()
    body['skippedDuplicates'] = skipped
    return 200, body


def _request_payload(event: Dict[str, Any]) -> Dict[str, Any]:
    body = event.get('body')
    if body is None:
        return dict(event)
    if isinstance(body, dict):
        return body
    try:
        if event.get('isBase64Encoded'):
            body = base64.b64decode(body).decode('utf-8')
        payload = json.loads(body)
    except (ValueError, binascii.Error) as e:
        raise BadRequest(f"Request body is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise BadRequest('Request body must be a JSON object')
    return payload


def _required(payload: Dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if not value:
        raise BadRequest(f"Missing required field: {key}")
    return value


def _events(payload: Dict[str, Any]):
    raw_events = payload.get('events')
    if not isinstance(raw_events, list):
        raise BadRequest('Missing required field: events')
    try:
        events = [TimetableEvent.from_dict(item) for item in raw_events]
    except (KeyError, TypeError, AttributeError) as e:
        raise BadRequest(f"Invalid event: {e}") from e

    seen = set()
    for event in events:
        if event.id in seen:
            raise BadRequest(f"Duplicate event id: {event.id}")
        seen.add(event.id)
    return events


def _error_response(status_code: int, message: str, error: Exception,
                    start_time: float) -> Dict[str, Any]:
    duration = time.time() - start_time
    log = logger.error if status_code >= 500 else logger.warning
    log(
        f"{message}: {str(error)}",
        extra={'error_type': type(error).__name__},
        exc_info=status_code >= 500
    )
    return {
        'statusCode': status_code,
        'body': json.dumps({
            'message': message,
            'error': str(error),
            'error_type': type(error).__name__,
            'duration_seconds': round(duration, 2)
        })
    }
