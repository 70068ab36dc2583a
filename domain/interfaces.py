"""Domain interfaces for the Command Center backend."""

from abc import ABC, abstractmethod
from typing import List, Optional

from .entities import ProjectMetadata, CalDAVCredentials


class CommandRunner(ABC):
    """Runs a git command in a directory and returns its stdout."""

    @abstractmethod
    async def run(self, cwd: str, args: List[str], timeout: Optional[float] = None) -> str:
        """Run ``git *args`` in ``cwd``.

        Raises GitCommandError on non-zero exit, GitTimeoutError on timeout.
        """
        pass


class ProjectMetadataRepository(ABC):
    """Abstract store for the pin/notes overlay."""

    @abstractmethod
    def load(self) -> ProjectMetadata:
        """Load the overlay; missing storage yields an empty overlay."""
        pass

    @abstractmethod
    def save(self, metadata: ProjectMetadata) -> None:
        """Replace the stored overlay."""
        pass


class CredentialsRepository(ABC):
    """Abstract store for CalDAV credentials."""

    @abstractmethod
    def load(self) -> Optional[CalDAVCredentials]:
        """Get stored credentials, if any."""
        pass

    @abstractmethod
    def save(self, credentials: CalDAVCredentials) -> None:
        """Persist verified credentials."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Forget stored credentials."""
        pass
