"""Local project discovery."""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from config import DEFAULT_SKIP_DIRECTORIES, DEFAULT_PROJECT_MARKERS
from domain import ProjectRecord, ProjectType, ScanReport, encode_project_id
from monitoring.exceptions import ScanRootError
from .git import GitInspector


VITE_CONFIG_FILES = (
    'vite.config.js', 'vite.config.ts', 'vite.config.mjs',
    'vite.config.mts', 'vite.config.cjs'
)
PYTHON_MARKERS = ('requirements.txt', 'main.py', 'pyproject.toml', 'setup.py')


def detect_project_type(directory: str, files: Iterable[str]) -> Tuple[ProjectType, List[str]]:
    """Infer the project type and runnable scripts from marker files.

    First match wins: package manifest, then Python markers, then an
    extension manifest. Anything else is ``unknown``.
    """
    files = set(files)

    if 'package.json' in files:
        project_type = ProjectType.NODE
        scripts: List[str] = []
        try:
            with open(os.path.join(directory, 'package.json'), 'r', encoding='utf-8') as f:
                manifest = json.load(f)
            scripts = list((manifest.get('scripts') or {}).keys())
            if 'react' in (manifest.get('dependencies') or {}):
                project_type = ProjectType.REACT
        except (OSError, ValueError, AttributeError) as e:
            logging.getLogger(__name__).warning(f"Unreadable package.json in {directory}: {e}")

        if any(name in files for name in VITE_CONFIG_FILES):
            project_type = ProjectType.VITE
        return project_type, scripts

    if any(name in files for name in PYTHON_MARKERS):
        return ProjectType.PYTHON, ['run']

    if 'manifest.json' in files:
        return ProjectType.EXTENSION, []

    return ProjectType.UNKNOWN, []


class ProjectScanner:
    """Finds project directories directly below a set of roots.

    Nothing on disk is modified. A single bad directory never fails the
    scan; an unreadable root contributes zero projects and is reported in
    ``ScanReport.root_errors``.
    """

    def __init__(
        self,
        git_inspector: GitInspector,
        skip_directories: Sequence[str] = DEFAULT_SKIP_DIRECTORIES,
        project_markers: Sequence[str] = DEFAULT_PROJECT_MARKERS,
        max_concurrent_projects: int = 8
    ):
        self.git_inspector = git_inspector
        self.skip_directories = set(skip_directories)
        self.project_markers = set(project_markers)
        self.max_concurrent_projects = max_concurrent_projects
        self.logger = logging.getLogger(__name__)

    async def scan(self, roots: Sequence[str]) -> List[ProjectRecord]:
        """Scan ``roots`` and return projects, most recently modified first."""
        report = await self.scan_report(roots)
        return report.projects

    async def scan_report(self, roots: Sequence[str]) -> ScanReport:
        report = ScanReport()
        # Directory listings block; keep them off the event loop
        candidates = await asyncio.to_thread(self._collect_candidates, roots, report.root_errors)

        semaphore = asyncio.Semaphore(self.max_concurrent_projects)

        async def bounded(name: str, path: str, files: List[str]) -> ProjectRecord:
            async with semaphore:
                return await self.build_record(name, path, files)

        report.projects = list(await asyncio.gather(
            *(bounded(name, path, files) for name, path, files in candidates)
        ))
        report.projects.sort(key=_modified_sort_key, reverse=True)

        self.logger.info(
            f"Scan complete. Found {len(report.projects)} projects in {len(roots)} roots"
            f" ({len(report.root_errors)} unreadable)"
        )
        return report

    def _collect_candidates(
        self,
        roots: Sequence[str],
        root_errors: Dict[str, str]
    ) -> List[Tuple[str, str, List[str]]]:
        """Return (name, realpath, files) for marked directories, deduplicated by realpath."""
        candidates = []
        seen = set()
        for root in roots:
            try:
                entries = self._list_root(root)
            except ScanRootError as e:
                self.logger.warning(e.message)
                root_errors[root] = e.message
                continue

            for name, path in entries:
                canonical = os.path.realpath(path)
                if canonical in seen:
                    continue
                seen.add(canonical)

                files = self._list_files(canonical)
                if files is None or not self.project_markers.intersection(files):
                    continue
                candidates.append((name, canonical, files))
        return candidates

    async def build_record(self, name: str, path: str, files: Optional[List[str]] = None) -> ProjectRecord:
        """Build a fully populated record for one project directory."""
        if files is None:
            files = await asyncio.to_thread(self._list_files, path) or []

        git_result, type_result, modified = await asyncio.gather(
            self.git_inspector.git_state(path),
            asyncio.to_thread(detect_project_type, path, files),
            asyncio.to_thread(self._modified, path),
            return_exceptions=True
        )

        if isinstance(git_result, Exception):
            self.logger.warning(f"Git inspection failed for {path}: {git_result}")
            git_result = None
        if isinstance(type_result, Exception):
            self.logger.warning(f"Type detection failed for {path}: {type_result}")
            type_result = (ProjectType.UNKNOWN, [])
        if isinstance(modified, Exception):
            modified = None

        project_type, scripts = type_result
        return ProjectRecord(
            id=encode_project_id(path),
            name=name,
            path=path,
            type=project_type,
            scripts=scripts,
            modified=modified,
            git=git_result,
            has_node_modules='node_modules' in files
        )

    def _list_root(self, root: str) -> List[Tuple[str, str]]:
        """Return (name, path) of candidate subdirectories of ``root``."""
        try:
            with os.scandir(root) as it:
                entries = []
                for entry in it:
                    if entry.name.startswith('.') or entry.name in self.skip_directories:
                        continue
                    try:
                        if not entry.is_dir():
                            continue
                    except OSError:
                        continue
                    entries.append((entry.name, os.path.abspath(entry.path)))
        except OSError as e:
            raise ScanRootError(root, e)
        return sorted(entries)

    def _list_files(self, directory: str) -> Optional[List[str]]:
        try:
            return os.listdir(directory)
        except OSError as e:
            self.logger.debug(f"Skipping unreadable directory {directory}: {e}")
            return None

    def _modified(self, path: str) -> Optional[datetime]:
        try:
            return datetime.fromtimestamp(os.stat(path).st_mtime, tz=timezone.utc)
        except OSError:
            return None


def _modified_sort_key(project: ProjectRecord):
    if project.modified is None:
        return (0, 0.0)
    return (1, project.modified.timestamp())
