"""Application services for the Command Center backend."""

from .services import ProjectService, GitActionService, CalendarService

__all__ = [
    'ProjectService', 'GitActionService', 'CalendarService'
]
