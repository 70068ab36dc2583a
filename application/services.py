"""Application services for the Command Center backend."""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from domain import (
    ProjectRecord, CalDAVCredentials, CalendarInfo, CalendarEvent,
    ProjectMetadataRepository, CredentialsRepository, CommandRunner,
    decode_project_id
)
from infrastructure.scanner import ProjectScanner
from infrastructure.caldav import CalDAVEventBridge, CalDAVClient
from monitoring.exceptions import (
    CommandCenterError, ValidationError, ProjectNotFoundError, NotConnectedError,
    handle_exceptions
)


MAX_SEARCH_RESULTS = 20


def parse_iso_datetime(value: Any, field_name: str) -> Optional[datetime]:
    """Parse an ISO 8601 string (``Z`` suffix allowed) into an aware datetime."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"Invalid {field_name}: {value!r}", details={'field': field_name})
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def _optional_text(value: Any, field_name: str) -> Optional[str]:
    """Reject non-string JSON values (numbers, lists, objects) for a text field."""
    if value is None or isinstance(value, str):
        return value
    raise ValidationError(f"{field_name} must be a string", details={'field': field_name})


def _file_list(files: Any) -> List[str]:
    """Normalize a ``files`` body value; None or empty means every path."""
    if files is None:
        return ['.']
    if not isinstance(files, list) or not all(isinstance(f, str) and f for f in files):
        raise ValidationError("files must be a list of paths", details={'field': 'files'})
    return files or ['.']


class ProjectService:
    """Scans project roots and merges the persisted pin/notes overlay."""

    def __init__(
        self,
        scanner: ProjectScanner,
        metadata_repository: ProjectMetadataRepository,
        roots: Sequence[str]
    ):
        self.scanner = scanner
        self.metadata_repository = metadata_repository
        self.roots = list(roots)
        self.logger = logging.getLogger(__name__)

    async def list_projects(self) -> Tuple[List[ProjectRecord], Dict[str, str]]:
        """Return (projects, root_errors); pinned first, then most recently modified."""
        report = await self.scanner.scan_report(self.roots)
        metadata = self.metadata_repository.load()

        projects = [metadata.apply(project) for project in report.projects]
        projects.sort(key=lambda p: p.modified.timestamp() if p.modified else 0.0, reverse=True)
        projects.sort(key=lambda p: not p.pinned)
        return projects, report.root_errors

    async def get_project(self, project_id: str) -> ProjectRecord:
        path = self.resolve_path(project_id)
        record = await self.scanner.build_record(os.path.basename(path), path)
        return self.metadata_repository.load().apply(record)

    def update_project(self, project_id: str, changes: Dict[str, Any]) -> None:
        """Update notes, status and pin state for a project id."""
        decode_project_id(project_id)
        metadata = self.metadata_repository.load()
        entry = dict(metadata.projects.get(project_id) or {})

        if 'notes' in changes:
            notes = changes['notes']
            if notes is not None and not isinstance(notes, str):
                raise ValidationError("notes must be a string")
            entry['notes'] = notes
        if 'status' in changes:
            status = changes['status']
            if status is not None and not isinstance(status, str):
                raise ValidationError("status must be a string")
            entry['status'] = status
        metadata.projects[project_id] = entry

        if 'pinned' in changes:
            pinned = changes['pinned']
            if not isinstance(pinned, bool):
                raise ValidationError("pinned must be a boolean")
            if pinned and project_id not in metadata.pinned:
                metadata.pinned.append(project_id)
            elif not pinned:
                metadata.pinned = [p for p in metadata.pinned if p != project_id]

        self.metadata_repository.save(metadata)

    def resolve_path(self, project_id: str) -> str:
        """Decode a project id to a directory directly under a scan root.

        Raises InvalidProjectIdError for undecodable ids and
        ProjectNotFoundError for paths outside the roots.
        """
        path = decode_project_id(project_id)
        if not os.path.isdir(path) or not self._is_root_child(path):
            raise ProjectNotFoundError(path)
        return path

    def _is_root_child(self, path: str) -> bool:
        canonical_roots = {os.path.realpath(root) for root in self.roots}
        if os.path.dirname(path) in canonical_roots:
            return True
        # Symlinked projects resolve outside their root
        for root in canonical_roots:
            try:
                names = os.listdir(root)
            except OSError:
                continue
            if any(os.path.realpath(os.path.join(root, name)) == path for name in names):
                return True
        return False

    async def search(self, query: str) -> List[Dict[str, Any]]:
        query = (query or '').strip().lower()
        if not query:
            return []
        projects = await self.scanner.scan(self.roots)
        results = [
            {'type': 'project', 'id': p.id, 'title': p.name, 'subtitle': p.type.value}
            for p in projects if query in p.name.lower()
        ]
        return results[:MAX_SEARCH_RESULTS]


class GitActionService:
    """Mutating git commands on scanned projects."""

    def __init__(self, runner: CommandRunner, project_service: ProjectService, timeout: float = 30.0):
        self.runner = runner
        self.project_service = project_service
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    @handle_exceptions(context="git_action")
    async def _git(self, project_id: str, args: List[str]) -> str:
        path = self.project_service.resolve_path(project_id)
        self.logger.info(f"git {' '.join(args)} in {path}")
        return await self.runner.run(path, args, self.timeout)

    async def diff(self, project_id: str, file: Optional[str] = None) -> str:
        file = _optional_text(file, 'file')
        suffix = ['--', file] if file else []
        unstaged = await self._git(project_id, ['diff'] + suffix)
        if unstaged:
            return unstaged
        staged = await self._git(project_id, ['diff', '--cached'] + suffix)
        return staged or 'No changes to display'

    async def stage(self, project_id: str, files: Optional[List[str]] = None) -> None:
        await self._git(project_id, ['add', '--'] + _file_list(files))

    async def unstage(self, project_id: str, files: Optional[List[str]] = None) -> None:
        await self._git(project_id, ['reset', '-q', 'HEAD', '--'] + _file_list(files))

    async def commit(self, project_id: str, message: str) -> None:
        """Commit staged changes; with nothing staged, stage everything first."""
        message = _optional_text(message, 'message')
        if not message or not message.strip():
            raise ValidationError("Commit message required")
        staged = await self._git(project_id, ['diff', '--cached', '--name-only'])
        if not staged.strip():
            await self._git(project_id, ['add', '-A'])
        await self._git(project_id, ['commit', '-m', message])

    async def push(self, project_id: str) -> str:
        return await self._git(project_id, ['push'])

    async def pull(self, project_id: str) -> str:
        return await self._git(project_id, ['pull'])

    async def discard(self, project_id: str, file: str) -> None:
        if not _optional_text(file, 'file'):
            raise ValidationError("File required")
        await self._git(project_id, ['checkout', '--', file])


class CalendarService:
    """iCloud calendar access with verify-before-persist credentials."""

    def __init__(self, bridge: CalDAVEventBridge, credentials_repository: CredentialsRepository):
        self.bridge = bridge
        self.credentials_repository = credentials_repository
        self.logger = logging.getLogger(__name__)

    def _client(self) -> CalDAVClient:
        credentials = self.credentials_repository.load()
        if credentials is None:
            raise NotConnectedError()
        return self.bridge.open(credentials)

    def status(self) -> Dict[str, Any]:
        credentials = self.credentials_repository.load()
        if credentials is None:
            return {'connected': False, 'hasCredentials': False}
        try:
            self.bridge.connect(credentials)
        except CommandCenterError as e:
            self.logger.warning(f"iCloud status check failed for {credentials.email}: {e.message}")
            return {'connected': False, 'hasCredentials': True, 'error': e.message}
        return {'connected': True, 'hasCredentials': True, 'email': credentials.email}

    def save_credentials(self, email: Optional[str], app_password: Optional[str]) -> None:
        """Verify credentials against the server, then persist them."""
        email = _optional_text(email, 'email')
        app_password = _optional_text(app_password, 'appPassword')
        credentials = CalDAVCredentials(email=(email or '').strip(), app_password=app_password or '')
        self.bridge.connect(credentials)
        self.credentials_repository.save(credentials)
        self.logger.info(f"Saved iCloud credentials for {credentials.email}")

    def disconnect(self) -> None:
        self.credentials_repository.clear()

    def list_calendars(self) -> List[CalendarInfo]:
        return self.bridge.list_calendars(self._client())

    @handle_exceptions(context="icloud_events")
    def list_events(self, start: Any = None, end: Any = None) -> List[CalendarEvent]:
        start_dt = parse_iso_datetime(start, 'start')
        end_dt = parse_iso_datetime(end, 'end')
        return self.bridge.list_events(self._client(), start_dt, end_dt)

    @handle_exceptions(context="icloud_create_event")
    def create_event(
        self,
        title: Optional[str],
        start: Any,
        end: Any = None,
        description: Optional[str] = None,
        calendar_url: Optional[str] = None
    ) -> str:
        title = _optional_text(title, 'title')
        description = _optional_text(description, 'description')
        calendar_url = _optional_text(calendar_url, 'calendarUrl')
        start_dt = parse_iso_datetime(start, 'start')
        end_dt = parse_iso_datetime(end, 'end')
        if not title or start_dt is None:
            raise ValidationError("Event title and start are required")
        return self.bridge.create_event(
            self._client(), title, start_dt, end_dt, description, calendar_url
        )

    @handle_exceptions(context="icloud_delete_event")
    def delete_event(self, url: Optional[str], etag: Optional[str]) -> None:
        url = _optional_text(url, 'url')
        etag = _optional_text(etag, 'etag')
        if not url:
            raise ValidationError("Event URL required")
        if not etag:
            raise ValidationError("Event etag required")
        self.bridge.delete_event(self._client(), url, etag)
