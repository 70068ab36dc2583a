"""JSON file implementations of the metadata and credential stores."""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from domain import (
    ProjectMetadata, CalDAVCredentials, ProjectMetadataRepository, CredentialsRepository
)


def load_json(path: Path, default: Any) -> Any:
    """Read JSON from ``path``; a missing or corrupt file yields ``default``."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        return default
    except (OSError, ValueError) as e:
        logging.getLogger(__name__).warning(f"Ignoring unreadable {path}: {e}")
        return default


def save_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


class JsonProjectMetadataRepository(ProjectMetadataRepository):
    """Pin/notes overlay stored as ``{pinned: [...], projects: {id: {...}}}``.

    Read-then-rewrite without locking; concurrent writers lose updates.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.logger = logging.getLogger(__name__)

    def load(self) -> ProjectMetadata:
        data = load_json(self.path, {})
        if not isinstance(data, dict):
            self.logger.warning(f"Unexpected content in {self.path}, starting empty")
            data = {}
        return ProjectMetadata.from_dict(data)

    def save(self, metadata: ProjectMetadata) -> None:
        save_json(self.path, metadata.to_dict())


class JsonCredentialsRepository(CredentialsRepository):
    """CalDAV credentials stored as ``{email, appPassword}``."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[CalDAVCredentials]:
        data = load_json(self.path, {})
        if not isinstance(data, dict):
            return None
        return CalDAVCredentials.from_dict(data)

    def save(self, credentials: CalDAVCredentials) -> None:
        save_json(self.path, credentials.to_dict())

    def clear(self) -> None:
        save_json(self.path, {})
