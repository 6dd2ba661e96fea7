"""Exception types shared by the parsing and calendar sync components."""
from typing import Optional


class TimetableSyncError(Exception):
    """Base class for all timetable sync errors."""


class UnsupportedFormat(TimetableSyncError):
    """Raised when an uploaded file cannot be classified."""


class InvalidTimeRange(TimetableSyncError):
    """Raised when an event time is not a valid `HH:MM - HH:MM` range."""


class AuthRequired(TimetableSyncError):
    """Raised when no valid access token is available."""


class ProviderError(TimetableSyncError):
    """Non-2xx or malformed response from an AI or calendar provider."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CalendarAPIError(ProviderError):
    """Error returned by the Google Calendar API."""


def response_error_message(response) -> Optional[str]:
    """Extract a provider's embedded `error.message` from an HTTP response."""
    try:
        error = response.json().get('error')
    except (ValueError, AttributeError):
        return None
    if isinstance(error, dict):
        return error.get('message')
    if isinstance(error, str):
        return error
    return None
