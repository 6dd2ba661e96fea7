"""AI-assisted timetable parsing and enhancement."""
import json
import logging
import re
import time
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Set

from processor.models import TimetableEvent, ParseResult
from processor.normalization import (
    DEFAULT_LOCATION,
    calculate_duration,
    clean_title,
    normalize_date,
    normalize_event_type,
    normalize_time,
    parse_location,
)
from processor.providers import AIProvider

logger = logging.getLogger(__name__)

PARSE_SYSTEM_PROMPT = 'You are an expert timetable parser. Always return valid JSON.'
ENHANCE_SYSTEM_PROMPT = (
    'You are an expert data enhancer. Always return valid JSON with enhanced timetable data.'
)

EVENT_SCHEMA = """{
      "id": "unique_id",
      "title": "Course/Event Name",
      "time": "HH:MM - HH:MM",
      "date": "YYYY-MM-DD",
      "location": "Full location",
      "type": "lecture|lab|tutorial|meeting|break",
      "duration": "Xh Ym",
      "instructor": "Name (if available)",
      "courseCode": "Code (if available)",
      "room": "Room number/name",
      "building": "Building name"
    }"""

PARSE_PROMPT = """
You are an expert timetable parser. Extract structured schedule information from the following {file_type} content.

CONTENT TO PARSE:
{content}

INSTRUCTIONS:
1. Extract all schedule/timetable events
2. Handle various formats and convert to standard structure
3. Generate unique IDs for each event
4. Convert dates/times to standard formats
5. Classify event types intelligently

OUTPUT FORMAT (JSON):
{{
  "events": [
    {schema}
  ],
  "confidence": 85
}}

Parse now:
"""

ENHANCE_PROMPT = """
You are an expert timetable data enhancer. Review and improve the following parsed timetable events.

CURRENT EVENTS:
{events}
{raw_section}
ENHANCEMENT TASKS:
1. Clean and standardize titles: remove redundant words, fix capitalization
2. Detect duplicates: identify and merge similar events
3. Enhance missing data: infer missing instructors, course codes, or room details
4. Standardize locations: ensure consistent "Room X, Building Y" format
5. Validate event types: ensure correct classification (lecture/lab/tutorial/meeting)
6. Fix time formats: ensure all times are in HH:MM - HH:MM format

RULES:
- Keep all original event IDs unchanged
- Only enhance/clean existing data, don't add completely new events
- List which fields were enhanced

OUTPUT FORMAT (JSON):
{{
  "enhancedEvents": [
    {schema}
  ],
  "duplicates": [
    {{"duplicateIds": ["id1", "id2"], "mergedEvent": {{}}}}
  ],
  "enhancedFields": ["title", "location", "instructor"],
  "confidence": 85
}}

Enhance the events now:
"""

_CODE_FENCE = re.compile(r'```(?:json)?\s*', re.IGNORECASE)


class AITimetableParser:
    """Parses and enhances timetables through a language-model provider."""

    ID_PREFIX = 'llm-parsed'
    UNTITLED = 'Untitled Event'
    DEFAULT_PARSE_CONFIDENCE = 75
    DEFAULT_ENHANCE_CONFIDENCE = 80
    FALLBACK_CONFIDENCE = 70
    RAW_SAMPLE_ROWS = 5

    def __init__(self, provider: AIProvider,
                 today: Optional[Callable[[], date]] = None):
        """
        Initialize the AI parser.

        Args:
            provider: Language-model provider
            today: Callable returning the reference date for weekday resolution
        """
        self.provider = provider
        self.today = today or date.today

    async def parse_from_text(self, text: str, file_type: str = 'text') -> ParseResult:
        """
        Extract events from raw text.

        Never raises; provider and JSON failures are reported in the result.

        Args:
            text: Extracted file content
            file_type: Source format, mentioned in the prompt

        Returns:
            ParseResult with validated events
        """
        prompt = PARSE_PROMPT.format(
            file_type=file_type, content=text, schema=EVENT_SCHEMA
        )

        try:
            content = await self.provider.complete(prompt, PARSE_SYSTEM_PROMPT)
        except Exception as e:
            logger.warning(f"AI parsing request failed: {e}")
            return ParseResult(
                success=False, events=[], confidence=0, errors=[str(e)], source='ai'
            )

        try:
            parsed = self._load_json(content)
            raw_events = parsed.get('events') or []
            if not isinstance(raw_events, list):
                raise ValueError('Events is not an array')
        except ValueError as e:
            logger.warning(f"AI parsing returned invalid JSON: {e}")
            return ParseResult(
                success=False,
                events=[],
                confidence=0,
                errors=[f"JSON parsing failed: {e}"],
                raw_response=content,
                source='ai'
            )

        events = self.validate_events(raw_events)
        logger.info(f"AI parser extracted {len(events)} events")

        return ParseResult(
            success=True,
            events=events,
            confidence=self._confidence(parsed, self.DEFAULT_PARSE_CONFIDENCE),
            raw_response=content,
            source='ai'
        )

    async def enhance(self, events: List[TimetableEvent],
                      raw_data: Optional[List[Dict[str, Any]]] = None) -> ParseResult:
        """
        Clean up already-parsed events.

        On any failure the original events are returned untouched with a
        reduced confidence.

        Args:
            events: Events produced by the structured parser
            raw_data: Source rows; a short sample is included in the prompt

        Returns:
            ParseResult with enhanced events, or the originals on failure
        """
        summary = [
            {
                'id': event.id,
                'title': event.title,
                'time': event.time,
                'date': event.date,
                'location': event.location,
                'type': event.event_type,
                'instructor': event.instructor,
                'courseCode': event.course_code,
            }
            for event in events
        ]
        raw_section = ''
        if raw_data:
            sample = json.dumps(raw_data[:self.RAW_SAMPLE_ROWS], indent=2, default=str)
            raw_section = f"\nORIGINAL RAW DATA:\n{sample}\n"

        prompt = ENHANCE_PROMPT.format(
            events=json.dumps(summary, indent=2),
            raw_section=raw_section,
            schema=EVENT_SCHEMA
        )

        content = None
        try:
            content = await self.provider.complete(prompt, ENHANCE_SYSTEM_PROMPT)
            parsed = self._load_json(content)
            enhanced = self._reconcile(parsed.get('enhancedEvents'), events)
        except Exception as e:
            logger.warning(f"AI enhancement failed, keeping original events: {e}")
            return ParseResult(
                success=False,
                events=events,
                confidence=self.FALLBACK_CONFIDENCE,
                errors=[f"Enhancement failed: {e}"],
                raw_response=content,
                source='local'
            )

        enhanced_fields = parsed.get('enhancedFields') or []
        duplicates = parsed.get('duplicates') or []

        return ParseResult(
            success=True,
            events=enhanced,
            confidence=self._confidence(parsed, self.DEFAULT_ENHANCE_CONFIDENCE),
            raw_response=content,
            enhanced_fields=[str(name) for name in enhanced_fields] if isinstance(enhanced_fields, list) else [],
            duplicates=[d for d in duplicates if isinstance(d, dict)] if isinstance(duplicates, list) else [],
            source='ai_enhanced'
        )

    def validate_events(self, raw_events: List[Any]) -> List[TimetableEvent]:
        """Validate model output, assigning fresh ids to missing or repeated ones."""
        session = int(time.time() * 1000)
        reference_date = self.today()
        seen: Set[str] = set()
        events = []

        for index, raw in enumerate(raw_events):
            if not isinstance(raw, dict):
                logger.warning(f"Skipping non-object event at index {index}")
                continue
            event_id = _text(raw.get('id'))
            if not event_id or event_id in seen:
                event_id = f"{self.ID_PREFIX}-{session}-{index}"
            seen.add(event_id)
            events.append(self.validate_event(raw, event_id, reference_date))

        return events

    def validate_event(self, raw: Dict[str, Any], event_id: str,
                       reference_date: Optional[date] = None) -> TimetableEvent:
        """Apply the normalization and defaulting rules to one model event."""
        time_range = normalize_time(_text(raw.get('time')))
        location = _text(raw.get('location'))
        room, building = parse_location(location) if location else (None, None)

        return TimetableEvent(
            id=event_id,
            title=clean_title(_text(raw.get('title')) or self.UNTITLED),
            time=time_range,
            date=normalize_date(_text(raw.get('date')), reference_date or self.today()),
            location=location or DEFAULT_LOCATION,
            event_type=normalize_event_type(_text(raw.get('type'))),
            duration=calculate_duration(time_range),
            instructor=_text(raw.get('instructor')),
            course_code=_text(raw.get('courseCode')),
            room=_text(raw.get('room')) or room,
            building=_text(raw.get('building')) or building
        )

    def _reconcile(self, enhanced: Any,
                   originals: List[TimetableEvent]) -> List[TimetableEvent]:
        """Replace originals whole by the enhanced events sharing their ids."""
        if not isinstance(enhanced, list):
            raise ValueError('enhancedEvents is not an array')

        original_ids = {event.id for event in originals}
        reference_date = self.today()
        seen: Set[str] = set()
        events = []

        for raw in enhanced:
            if not isinstance(raw, dict):
                continue
            event_id = _text(raw.get('id'))
            if event_id not in original_ids or event_id in seen:
                logger.debug(f"Ignoring enhanced event with unknown id {event_id!r}")
                continue
            seen.add(event_id)
            events.append(self.validate_event(raw, event_id, reference_date))

        if not events:
            raise ValueError('Enhancement returned no matching events')
        return events

    @staticmethod
    def _load_json(content: str) -> Dict[str, Any]:
        """Strip code fences and decode the model's JSON object."""
        cleaned = _CODE_FENCE.sub('', content).strip()
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ValueError(str(e)) from e
        if not isinstance(parsed, dict):
            raise ValueError('Response is not a JSON object')
        return parsed

    @staticmethod
    def _confidence(parsed: Dict[str, Any], default: int) -> int:
        try:
            value = int(parsed.get('confidence') or default)
        except (TypeError, ValueError):
            value = default
        return max(0, min(100, value))


def _text(value: Any) -> Optional[str]:
    """Return value as a stripped string, or None when empty."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None
