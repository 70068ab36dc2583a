"""Domain layer for the Command Center backend."""

from .entities import (
    ProjectType, ProjectRecord, GitState, GitChange, GitCommit, ScanReport,
    ProjectMetadata, CalDAVCredentials, CalendarInfo, CalendarObject,
    CalendarEvent, format_timestamp
)
from .identifiers import encode_project_id, decode_project_id
from .interfaces import CommandRunner, ProjectMetadataRepository, CredentialsRepository

__all__ = [
    'ProjectType', 'ProjectRecord', 'GitState', 'GitChange', 'GitCommit', 'ScanReport',
    'ProjectMetadata', 'CalDAVCredentials', 'CalendarInfo', 'CalendarObject',
    'CalendarEvent', 'format_timestamp',
    'encode_project_id', 'decode_project_id',
    'CommandRunner', 'ProjectMetadataRepository', 'CredentialsRepository'
]
