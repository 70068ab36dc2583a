"""Monitoring and error handling for the Command Center backend."""

from .exceptions import (
    ErrorCode, CommandCenterError, ConfigurationError, ValidationError,
    InvalidProjectIdError, ProjectNotFoundError, ScanRootError,
    GitCommandError, GitTimeoutError, CalDAVError, CalDAVConnectionError,
    InvalidCredentialsError, NotConnectedError, CalendarNotFoundError,
    EventConflictError, EventNotFoundError, ICalParseError,
    ErrorHandler, error_handler, handle_exceptions
)
from .health import HealthStatus, HealthChecker

__all__ = [
    'ErrorCode', 'CommandCenterError', 'ConfigurationError', 'ValidationError',
    'InvalidProjectIdError', 'ProjectNotFoundError', 'ScanRootError',
    'GitCommandError', 'GitTimeoutError', 'CalDAVError', 'CalDAVConnectionError',
    'InvalidCredentialsError', 'NotConnectedError', 'CalendarNotFoundError',
    'EventConflictError', 'EventNotFoundError', 'ICalParseError',
    'ErrorHandler', 'error_handler', 'handle_exceptions',
    'HealthStatus', 'HealthChecker'
]
