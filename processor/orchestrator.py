"""Parse orchestration: structured parse, AI enhancement and fallbacks."""
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from extractor.content_extractor import ContentExtractor, UploadedFile
from processor.ai_parser import AITimetableParser
from processor.models import ParseResult, TimetableEvent
from processor.structured_parser import StructuredParser

logger = logging.getLogger(__name__)


class ParseState(Enum):
    """Processing states of an upload."""
    LOCAL = 'local'
    AI_ENHANCE = 'ai_enhance'
    AI_FALLBACK = 'ai_fallback'
    COMPLETE = 'complete'
    ERROR = 'error'


LOCAL_CONFIDENCE = 90
DEMO_CONFIDENCE = 85

_DEMO_EVENTS = [
    {
        'id': 'demo-1', 'title': 'Advanced Algorithms', 'time': '09:00 - 10:30',
        'date': '2024-01-15', 'location': 'Room 101, Computer Science Building',
        'type': 'lecture', 'duration': '1h 30m', 'instructor': 'Dr. Smith',
        'courseCode': 'CS401', 'room': '101', 'building': 'Computer Science Building'
    },
    {
        'id': 'demo-2', 'title': 'Database Systems Lab', 'time': '11:00 - 12:30',
        'date': '2024-01-15', 'location': 'Lab 205, Engineering Building',
        'type': 'lab', 'duration': '1h 30m', 'instructor': 'Prof. Johnson',
        'courseCode': 'CS302', 'room': '205', 'building': 'Engineering Building'
    },
    {
        'id': 'demo-3', 'title': 'Machine Learning', 'time': '14:00 - 15:30',
        'date': '2024-01-16', 'location': 'Lecture Hall A',
        'type': 'lecture', 'duration': '1h 30m', 'instructor': 'Dr. Williams',
        'courseCode': 'CS501', 'room': 'Hall A', 'building': 'Main Building'
    },
    {
        'id': 'demo-4', 'title': 'Software Engineering', 'time': '10:00 - 11:30',
        'date': '2024-01-17', 'location': 'Room 303, CS Building',
        'type': 'tutorial', 'duration': '1h 30m', 'instructor': 'Dr. Brown',
        'courseCode': 'CS301', 'room': '303', 'building': 'CS Building'
    },
]


def demo_events() -> List[TimetableEvent]:
    """Fresh copy of the demonstration dataset."""
    return [TimetableEvent.from_dict(data) for data in _DEMO_EVENTS]


@dataclass
class OrchestrationResult:
    """Final outcome of processing one upload."""
    state: ParseState
    result: ParseResult
    file_format: Optional[str] = None
    raw_data: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def events(self) -> List[TimetableEvent]:
        return self.result.events

    def to_dict(self) -> Dict[str, Any]:
        data = self.result.to_dict()
        data['state'] = self.state.value
        data['format'] = self.file_format
        return data


UpdateCallback = Callable[[ParseState, List[TimetableEvent]], None]


class ParseOrchestrator:
    """
    Chooses the processing path for an uploaded file.

    The structured parser runs first. Its events are enhanced by the AI
    parser when one is configured; when it yields nothing the AI parser
    handles the raw content alone; when that fails too the demonstration
    dataset is returned so the user always has something to review.
    """

    def __init__(self, extractor: ContentExtractor,
                 structured_parser: StructuredParser,
                 ai_parser: Optional[AITimetableParser] = None):
        """
        Initialize the orchestrator.

        Args:
            extractor: Content extractor for uploads
            structured_parser: Parser for header-keyed rows
            ai_parser: AI parser, or None when no provider is configured
        """
        self.extractor = extractor
        self.structured_parser = structured_parser
        self.ai_parser = ai_parser

    async def process(self, file: UploadedFile,
                      declared_format: Optional[str] = None,
                      on_update: Optional[UpdateCallback] = None) -> OrchestrationResult:
        """
        Process an uploaded file into a reviewable event set.

        Args:
            file: Uploaded file
            declared_format: Optional format name or MIME type
            on_update: Called with each state change and the current events,
                including provisional structured-parse results

        Returns:
            OrchestrationResult in COMPLETE or ERROR state
        """
        def notify(state: ParseState, events: List[TimetableEvent]) -> None:
            if on_update:
                on_update(state, events)

        notify(ParseState.LOCAL, [])

        try:
            content = await self.extractor.extract(file, declared_format)
            events = self.structured_parser.parse_rows(content.rows)
        except Exception as e:
            logger.error(f"Failed to extract '{file.name}': {e}", exc_info=True)
            notify(ParseState.ERROR, [])
            return OrchestrationResult(
                state=ParseState.ERROR,
                result=ParseResult(
                    success=False, events=[], confidence=0, errors=[str(e)]
                )
            )

        if events:
            result = await self._enhance(events, content.rows, notify)
        else:
            result = await self._fallback(self._content_text(content), content.format, notify)

        notify(ParseState.COMPLETE, result.events)
        logger.info(
            f"Processed '{file.name}': {len(result.events)} events from {result.source}"
        )
        return OrchestrationResult(
            state=ParseState.COMPLETE,
            result=result,
            file_format=content.format,
            raw_data=content.rows
        )

    async def _enhance(self, events: List[TimetableEvent],
                       rows: List[Dict[str, Any]], notify) -> ParseResult:
        local_result = ParseResult(
            success=True, events=events, confidence=LOCAL_CONFIDENCE, source='local'
        )
        # Local events are usable before enhancement finishes
        notify(ParseState.AI_ENHANCE, events)

        if not self.ai_parser:
            return local_result

        try:
            enhanced = await self.ai_parser.enhance(events, rows)
        except Exception as e:
            logger.warning(f"AI enhancement failed, using local results: {e}")
            return local_result

        if enhanced.success:
            return enhanced

        logger.info(f"Keeping local results: {'; '.join(enhanced.errors)}")
        return local_result

    async def _fallback(self, text: str, file_format: str, notify) -> ParseResult:
        notify(ParseState.AI_FALLBACK, [])
        errors = []

        if not self.ai_parser:
            errors.append('No AI key configured; showing demonstration data')
        elif not text.strip():
            errors.append('No content to parse; showing demonstration data')
        else:
            ai_result = await self.ai_parser.parse_from_text(text, file_format)
            if ai_result.success and ai_result.events:
                return ai_result
            errors.extend(ai_result.errors)
            errors.append('AI parsing failed; showing demonstration data')

        logger.warning(f"Falling back to demonstration data: {errors[-1]}")
        return ParseResult(
            success=True,
            events=demo_events(),
            confidence=DEMO_CONFIDENCE,
            errors=errors,
            source='demo'
        )

    @staticmethod
    def _content_text(content) -> str:
        if content.text:
            return content.text
        if content.rows:
            return json.dumps(content.rows, indent=2, default=str)
        return ''
