"""Infrastructure implementations for the Command Center backend."""

from .git import GitCommandRunner, GitInspector
from .scanner import ProjectScanner, detect_project_type
from .caldav import CalDAVClient, CalDAVEventBridge
from .repositories import JsonProjectMetadataRepository, JsonCredentialsRepository

__all__ = [
    'GitCommandRunner', 'GitInspector',
    'ProjectScanner', 'detect_project_type',
    'CalDAVClient', 'CalDAVEventBridge',
    'JsonProjectMetadataRepository', 'JsonCredentialsRepository'
]
