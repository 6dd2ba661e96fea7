"""Data models for timetable parsing and calendar sync."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


EVENT_TYPES = ('lecture', 'lab', 'tutorial', 'meeting', 'break')

# Optional fields and their wire (camelCase) names
OPTIONAL_FIELDS = {
    'instructor': 'instructor',
    'course_code': 'courseCode',
    'room': 'room',
    'building': 'building',
}


@dataclass
class TimetableEvent:
    """Normalized timetable event."""
    id: str
    title: str
    time: str
    date: str
    location: str = 'TBD'
    event_type: str = 'lecture'
    duration: str = '1h 30m'
    instructor: Optional[str] = None
    course_code: Optional[str] = None
    room: Optional[str] = None
    building: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the camelCase keys of the JSON wire format."""
        data = {
            'id': self.id,
            'title': self.title,
            'time': self.time,
            'date': self.date,
            'location': self.location,
            'type': self.event_type,
            'duration': self.duration,
        }
        for attr, key in OPTIONAL_FIELDS.items():
            value = getattr(self, attr)
            if value:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TimetableEvent':
        """Build an event from an already-normalized wire dictionary."""
        return cls(
            id=str(data['id']),
            title=data['title'],
            time=data['time'],
            date=data['date'],
            location=data.get('location') or 'TBD',
            event_type=data.get('type') or 'lecture',
            duration=data.get('duration') or '1h 30m',
            **{attr: data.get(key) or None for attr, key in OPTIONAL_FIELDS.items()}
        )


@dataclass
class ExtractedContent:
    """Raw content produced by the content extractor."""
    format: str
    rows: List[Dict[str, str]] = field(default_factory=list)
    text: Optional[str] = None


@dataclass
class ParseResult:
    """Outcome of a structured, AI or fallback parse."""
    success: bool
    events: List[TimetableEvent]
    confidence: int
    errors: List[str] = field(default_factory=list)
    raw_response: Optional[str] = None
    enhanced_fields: List[str] = field(default_factory=list)
    duplicates: List[Dict[str, Any]] = field(default_factory=list)
    source: str = 'local'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'events': [event.to_dict() for event in self.events],
            'confidence': self.confidence,
            'errors': list(self.errors),
            'enhancedFields': list(self.enhanced_fields),
            'duplicates': list(self.duplicates),
            'source': self.source,
        }


@dataclass
class CalendarEventPayload:
    """Calendar API event derived from a TimetableEvent."""
    event_id: str
    summary: str
    description: str
    start: datetime
    end: datetime
    time_zone: str
    location: Optional[str] = None
    color_id: Optional[str] = None
    reminders: List[Dict[str, Any]] = field(default_factory=list)
    visibility: str = 'default'
    attendees: List[str] = field(default_factory=list)
    recurrence: List[str] = field(default_factory=list)

    def to_request_body(self) -> Dict[str, Any]:
        """Build the JSON body for the Calendar API events.insert call."""
        body = {
            'summary': self.summary,
            'description': self.description,
            'start': {
                'dateTime': self.start.isoformat(),
                'timeZone': self.time_zone
            },
            'end': {
                'dateTime': self.end.isoformat(),
                'timeZone': self.time_zone
            },
            'reminders': {
                'useDefault': False,
                'overrides': list(self.reminders)
            },
            'visibility': self.visibility
        }

        # Add optional fields if present
        if self.location:
            body['location'] = self.location
        if self.color_id:
            body['colorId'] = self.color_id
        if self.attendees:
            body['attendees'] = [{'email': email} for email in self.attendees]
        if self.recurrence:
            body['recurrence'] = list(self.recurrence)

        return body


@dataclass(frozen=True)
class SyncError:
    """Failure to create a single event."""
    event_id: str
    error: str


@dataclass(frozen=True)
class SyncResult:
    """Result of a sync operation."""
    success: bool
    events_created: int
    events_updated: int
    events_failed: int
    errors: Tuple[SyncError, ...]
    calendar_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'eventsCreated': self.events_created,
            'eventsUpdated': self.events_updated,
            'eventsFailed': self.events_failed,
            'errors': [
                {'eventId': err.event_id, 'error': err.error}
                for err in self.errors
            ],
            'calendarId': self.calendar_id,
        }


@dataclass(frozen=True)
class SyncProgress:
    """Progress notification emitted by the sync engine."""
    completed: int
    total: int
    current_event: str


@dataclass
class CalendarListItem:
    """Entry of the user's calendar list."""
    id: str
    summary: str
    access_role: str
    description: Optional[str] = None
    primary: bool = False
    background_color: Optional[str] = None
    foreground_color: Optional[str] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> 'CalendarListItem':
        return cls(
            id=item['id'],
            summary=item.get('summary', ''),
            access_role=item.get('accessRole', ''),
            description=item.get('description'),
            primary=bool(item.get('primary', False)),
            background_color=item.get('backgroundColor'),
            foreground_color=item.get('foregroundColor')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'summary': self.summary,
            'description': self.description,
            'primary': self.primary,
            'accessRole': self.access_role,
            'backgroundColor': self.background_color,
            'foregroundColor': self.foreground_color,
        }


@dataclass
class AuthTokens:
    """OAuth tokens for the Google Calendar API."""
    access_token: str
    token_type: str = 'Bearer'
    scope: str = ''
    expiry_date: Optional[float] = None
    refresh_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'access_token': self.access_token,
            'token_type': self.token_type,
            'scope': self.scope,
        }
        if self.expiry_date is not None:
            data['expiry_date'] = self.expiry_date
        if self.refresh_token:
            data['refresh_token'] = self.refresh_token
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuthTokens':
        expiry = data.get('expiry_date')
        return cls(
            access_token=data['access_token'],
            token_type=data.get('token_type') or 'Bearer',
            scope=data.get('scope') or '',
            expiry_date=float(expiry) if expiry is not None else None,
            refresh_token=data.get('refresh_token')
        )
