"""Domain entities for the Command Center backend."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, List, Any
from enum import Enum


class ProjectType(Enum):
    """Project type inferred from marker files."""
    REACT = "react"
    VITE = "vite"
    NODE = "node"
    PYTHON = "python"
    EXTENSION = "extension"
    UNKNOWN = "unknown"


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Render an aware datetime as ISO 8601 UTC with a ``Z`` suffix."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.astimezone()
    utc_value = value.astimezone(timezone.utc)
    return utc_value.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


@dataclass
class GitChange:
    """One line of porcelain status output."""

    status: str
    file: str

    def to_dict(self) -> Dict[str, Any]:
        return {'status': self.status, 'file': self.file}


@dataclass
class GitCommit:
    """Summary of a recent commit."""

    hash: str
    message: str
    time: str
    author: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hash': self.hash,
            'message': self.message,
            'time': self.time,
            'author': self.author
        }


@dataclass
class GitState:
    """Working tree and history state of a git repository."""

    branch: str
    changes: List[GitChange] = field(default_factory=list)
    commits: List[GitCommit] = field(default_factory=list)
    ahead: int = 0
    behind: int = 0
    has_remote: bool = False
    upstream: Optional[str] = None

    @property
    def is_clean(self) -> bool:
        """True iff the working tree has no changes."""
        return len(self.changes) == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'branch': self.branch,
            'changes': [change.to_dict() for change in self.changes],
            'commits': [commit.to_dict() for commit in self.commits],
            'ahead': self.ahead,
            'behind': self.behind,
            'hasRemote': self.has_remote,
            'upstream': self.upstream,
            'isClean': self.is_clean
        }


@dataclass
class ProjectRecord:
    """A discovered local project directory.

    ``pinned``, ``notes`` and ``status`` are overlay fields owned by the
    metadata store; the scanner leaves them at their defaults.
    """

    id: str
    name: str
    path: str
    type: ProjectType = ProjectType.UNKNOWN
    scripts: List[str] = field(default_factory=list)
    modified: Optional[datetime] = None
    git: Optional[GitState] = None
    pinned: bool = False
    notes: Optional[str] = None
    status: str = "active"
    has_node_modules: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'path': self.path,
            'type': self.type.value,
            'scripts': list(self.scripts),
            'modified': format_timestamp(self.modified),
            'git': self.git.to_dict() if self.git else None,
            'pinned': self.pinned,
            'notes': self.notes,
            'status': self.status,
            'hasNodeModules': self.has_node_modules
        }


@dataclass
class ScanReport:
    """Projects found by a scan plus the roots that could not be listed."""

    projects: List[ProjectRecord] = field(default_factory=list)
    root_errors: Dict[str, str] = field(default_factory=dict)


@dataclass
class ProjectMetadata:
    """Persisted pin/notes overlay for all projects."""

    pinned: List[str] = field(default_factory=list)
    projects: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProjectMetadata':
        pinned = data.get('pinned') or []
        projects = data.get('projects') or {}
        if not isinstance(pinned, list):
            pinned = []
        if not isinstance(projects, dict):
            projects = {}
        return cls(pinned=[str(p) for p in pinned], projects=projects)

    def to_dict(self) -> Dict[str, Any]:
        return {'pinned': list(self.pinned), 'projects': dict(self.projects)}

    def apply(self, project: ProjectRecord) -> ProjectRecord:
        """Copy overlay fields for ``project.id`` onto the record."""
        entry = self.projects.get(project.id) or {}
        project.pinned = project.id in self.pinned
        project.notes = entry.get('notes')
        project.status = entry.get('status') or 'active'
        return project


@dataclass
class CalDAVCredentials:
    """Account identifier and app-specific password."""

    email: str
    app_password: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional['CalDAVCredentials']:
        email = data.get('email')
        app_password = data.get('appPassword')
        if not email or not app_password:
            return None
        return cls(email=email, app_password=app_password)

    def to_dict(self) -> Dict[str, Any]:
        return {'email': self.email, 'appPassword': self.app_password}


@dataclass
class CalendarInfo:
    """A remote calendar collection."""

    url: str
    display_name: str
    color: Optional[str] = None
    ctag: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'displayName': self.display_name,
            'color': self.color
        }


@dataclass
class CalendarObject:
    """Raw calendar object as returned by the server."""

    url: str
    etag: Optional[str]
    data: str


@dataclass
class CalendarEvent:
    """Event parsed from a CalDAV calendar object."""

    id: str
    title: str
    start: datetime
    end: datetime
    calendar: str
    calendar_url: str
    url: str
    etag: Optional[str] = None
    description: Optional[str] = None
    color: str = "blue"
    source: str = "icloud"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'start': format_timestamp(self.start),
            'end': format_timestamp(self.end),
            'description': self.description or '',
            'calendar': self.calendar,
            'calendarUrl': self.calendar_url,
            'color': self.color,
            'source': self.source,
            'url': self.url,
            'etag': self.etag
        }
