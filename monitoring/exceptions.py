"""Exception handling for the Command Center backend."""

import asyncio
import logging
import traceback
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from functools import wraps
from enum import Enum


class ErrorCode(Enum):
    """Standard error codes for the application."""

    # Configuration errors
    CONFIG_INVALID = "CONFIG_INVALID"

    # Caller input errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_PROJECT_ID = "INVALID_PROJECT_ID"
    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"

    # Scanner / git errors
    SCAN_ROOT_ERROR = "SCAN_ROOT_ERROR"
    GIT_COMMAND_ERROR = "GIT_COMMAND_ERROR"
    GIT_TIMEOUT = "GIT_TIMEOUT"

    # CalDAV errors
    CALDAV_ERROR = "CALDAV_ERROR"
    CALDAV_CONNECTION_ERROR = "CALDAV_CONNECTION_ERROR"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    NOT_CONNECTED = "NOT_CONNECTED"
    CALENDAR_NOT_FOUND = "CALENDAR_NOT_FOUND"
    EVENT_CONFLICT = "EVENT_CONFLICT"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"

    # Data processing errors
    ICAL_PARSE_ERROR = "ICAL_PARSE_ERROR"

    # Internal errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class CommandCenterError(Exception):
    """Base exception for the Command Center backend."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/monitoring."""
        return {
            'error_code': self.error_code.value,
            'message': self.message,
            'details': self.details,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'traceback': traceback.format_exc() if self.cause else None
        }


class ConfigurationError(CommandCenterError):
    """Configuration related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.CONFIG_INVALID, details)


class ValidationError(CommandCenterError):
    """Missing or malformed caller input; rejected before anything is attempted."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)


class InvalidProjectIdError(ValidationError):
    """Project id that does not decode to a path."""

    def __init__(self, project_id: str):
        super().__init__(
            f"Invalid project id: {project_id!r}",
            ErrorCode.INVALID_PROJECT_ID,
            {'project_id': project_id}
        )


class ProjectNotFoundError(CommandCenterError):
    """Project id decodes to a path outside the scan roots or not on disk."""

    def __init__(self, path: str):
        super().__init__(f"Project not found: {path}", ErrorCode.PROJECT_NOT_FOUND, {'path': path})


class ScanRootError(CommandCenterError):
    """A configured scan root could not be listed."""

    def __init__(self, root: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Cannot scan root {root}: {cause}",
            ErrorCode.SCAN_ROOT_ERROR,
            {'root': root},
            cause
        )
        self.root = root


class GitCommandError(CommandCenterError):
    """A git invocation exited non-zero or could not be started."""

    def __init__(
        self,
        message: str,
        command: Optional[list] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
        error_code: ErrorCode = ErrorCode.GIT_COMMAND_ERROR
    ):
        super().__init__(
            message,
            error_code,
            {'command': command or [], 'returncode': returncode, 'stderr': stderr}
        )
        self.returncode = returncode
        self.stderr = stderr


class GitTimeoutError(GitCommandError):
    """A git invocation exceeded its timeout and was killed."""

    def __init__(self, command: list, timeout: float):
        super().__init__(
            f"git {' '.join(command)} timed out after {timeout}s",
            command=command,
            error_code=ErrorCode.GIT_TIMEOUT
        )
        self.timeout = timeout


class CalDAVError(CommandCenterError):
    """CalDAV server related errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CALDAV_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message, error_code, details, cause)


class CalDAVConnectionError(CalDAVError):
    """Transport level failure talking to the CalDAV server."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message, ErrorCode.CALDAV_CONNECTION_ERROR, cause=cause)


class InvalidCredentialsError(CalDAVError):
    """The server rejected the account identifier / app-specific password."""

    def __init__(self, message: str = "Invalid credentials. Make sure you use an app-specific password."):
        super().__init__(message, ErrorCode.INVALID_CREDENTIALS)


class NotConnectedError(CalDAVError):
    """No CalDAV credentials are stored."""

    def __init__(self, message: str = "Not connected to iCloud"):
        super().__init__(message, ErrorCode.NOT_CONNECTED)


class CalendarNotFoundError(CalDAVError):
    """Requested calendar does not exist, or the account has none."""

    def __init__(self, calendar_url: Optional[str] = None):
        super().__init__(
            "No calendar found",
            ErrorCode.CALENDAR_NOT_FOUND,
            {'calendar_url': calendar_url}
        )


class EventConflictError(CalDAVError):
    """The event changed or vanished remotely since its etag was read."""

    def __init__(self, url: str, etag: str):
        super().__init__(
            f"Event {url} was modified on the server (stale etag {etag})",
            ErrorCode.EVENT_CONFLICT,
            {'url': url, 'etag': etag}
        )


class EventNotFoundError(CalDAVError):
    """The event URL does not exist on the server."""

    def __init__(self, url: str):
        super().__init__(f"Event not found: {url}", ErrorCode.EVENT_NOT_FOUND, {'url': url})


class ICalParseError(CommandCenterError):
    """Unrecognized iCalendar value."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.ICAL_PARSE_ERROR, details)


# Rejected caller input or remote state the caller must act on; not server faults
CALLER_ERROR_CODES = frozenset({
    ErrorCode.VALIDATION_ERROR,
    ErrorCode.INVALID_PROJECT_ID,
    ErrorCode.PROJECT_NOT_FOUND,
    ErrorCode.INVALID_CREDENTIALS,
    ErrorCode.NOT_CONNECTED,
    ErrorCode.CALENDAR_NOT_FOUND,
    ErrorCode.EVENT_CONFLICT,
    ErrorCode.EVENT_NOT_FOUND,
})


class ErrorHandler:
    """Converts, logs and counts errors raised behind the API.

    Caller errors log at INFO, degraded external failures (git, CalDAV,
    unreadable roots) at WARNING, anything unexpected at ERROR with a
    traceback.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._error_counts: Dict[str, int] = {}
        self._last_errors: Dict[str, Dict[str, Any]] = {}

    def handle_error(
        self,
        error: Exception,
        context: str = "unknown",
        extra_details: Optional[Dict[str, Any]] = None
    ) -> CommandCenterError:
        """Record ``error`` under ``context`` and return it as a CommandCenterError."""
        if isinstance(error, CommandCenterError):
            app_error = error
        else:
            app_error = CommandCenterError(str(error), ErrorCode.INTERNAL_ERROR, cause=error)

        app_error.details['context'] = context
        if extra_details:
            app_error.details.update(extra_details)

        error_key = f"{context}:{app_error.error_code.value}"
        count = self._error_counts.get(error_key, 0) + 1
        self._error_counts[error_key] = count
        self._last_errors[error_key] = app_error.to_dict()

        extra = {'error_code': app_error.error_code.value, 'details': app_error.details, 'error_count': count}
        if app_error.error_code in CALLER_ERROR_CODES:
            self.logger.info(f"[{context}] {app_error.message}", extra=extra)
        elif app_error.error_code == ErrorCode.INTERNAL_ERROR:
            self.logger.error(f"[{context}] {app_error.message}", extra=extra, exc_info=app_error.cause)
        else:
            self.logger.warning(f"[{context}] {app_error.message}", extra=extra)

        return app_error

    def get_error_stats(self) -> Dict[str, Any]:
        """Counts per ``context:code`` plus the latest error of each."""
        return {
            'error_counts': dict(self._error_counts),
            'last_errors': dict(self._last_errors),
            'total_errors': sum(self._error_counts.values())
        }

    def reset_stats(self):
        self._error_counts.clear()
        self._last_errors.clear()


error_handler = ErrorHandler()


def handle_exceptions(context: str = "unknown", reraise: bool = True):
    """Route exceptions from the wrapped callable through ``error_handler``.

    Works for plain and ``async def`` functions. With ``reraise=False`` the
    call returns None after the error is recorded.
    """

    def decorator(func):
        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    handled_error = error_handler.handle_error(e, context)
                    if reraise:
                        raise handled_error
                    return None
            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                handled_error = error_handler.handle_error(e, context)
                if reraise:
                    raise handled_error
                return None
        return wrapper

    return decorator
