"""Read-only git inspection for project directories."""

import asyncio
import logging
import os
import signal
from typing import List, Optional, Tuple

from domain import CommandRunner, GitState, GitChange, GitCommit
from monitoring.exceptions import GitCommandError, GitTimeoutError

# Unit separator; commit subjects may contain any printable character
LOG_FIELD_SEPARATOR = '\x1f'
LOG_FORMAT = '%h%x1f%s%x1f%cr%x1f%an'
MAX_COMMITS = 5


class GitCommandRunner(CommandRunner):
    """Runs git as a subprocess on the current event loop.

    Each git runs in its own session so a timeout can kill the whole process
    group, including hooks and helpers that inherited its pipes.
    """

    def __init__(self, executable: str = 'git', default_timeout: float = 10.0):
        self.executable = executable
        self.default_timeout = default_timeout

    async def run(self, cwd: str, args: List[str], timeout: Optional[float] = None) -> str:
        timeout = timeout or self.default_timeout
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable, *args,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True
            )
        except OSError as e:
            raise GitCommandError(f"Failed to start git: {e}", command=args)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            await process.wait()
            raise GitTimeoutError(args, timeout)

        if process.returncode != 0:
            error_text = stderr.decode('utf-8', 'replace').strip()
            raise GitCommandError(
                f"git {' '.join(args)} failed: {error_text}",
                command=args,
                returncode=process.returncode,
                stderr=error_text
            )
        return stdout.decode('utf-8', 'replace')


def parse_porcelain_status(output: str) -> List[GitChange]:
    """Parse ``git status --porcelain`` output.

    Each line is ``XY <path>``; the two status columns may contain spaces,
    so only trailing newlines are stripped.
    """
    changes = []
    for line in output.splitlines():
        if len(line) < 4:
            continue
        changes.append(GitChange(status=line[:2].strip(), file=line[3:]))
    return changes


def parse_log(output: str) -> List[GitCommit]:
    """Parse log output produced with LOG_FORMAT."""
    commits = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split(LOG_FIELD_SEPARATOR)
        parts += [''] * (4 - len(parts))
        commit_hash, message, time, author = parts[:4]
        commits.append(GitCommit(hash=commit_hash, message=message, time=time, author=author))
    return commits[:MAX_COMMITS]


def parse_ahead_behind(output: str) -> Tuple[int, int]:
    """Parse ``rev-list --left-right --count HEAD...@{upstream}``."""
    fields = output.split()
    if len(fields) != 2:
        raise ValueError(f"Unexpected rev-list output: {output!r}")
    return int(fields[0]), int(fields[1])


def has_origin_remote(output: str) -> bool:
    return 'origin' in (line.strip() for line in output.splitlines())


class GitInspector:
    """Computes GitState for a directory via parallel read-only queries."""

    def __init__(self, runner: CommandRunner, timeout: Optional[float] = None):
        self.runner = runner
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    async def _query(self, directory: str, args: List[str]):
        """Run one query; failures come back as the exception instance."""
        try:
            return await self.runner.run(directory, args, self.timeout)
        except GitCommandError as e:
            return e

    async def git_state(self, directory: str) -> Optional[GitState]:
        """Return the git state of ``directory``, or None if it is not a repository."""
        branch_out, status_out, log_out, remote_out, upstream_out = await asyncio.gather(
            self._query(directory, ['rev-parse', '--abbrev-ref', 'HEAD']),
            self._query(directory, ['status', '--porcelain']),
            self._query(directory, ['log', f'-{MAX_COMMITS}', f'--pretty=format:{LOG_FORMAT}']),
            self._query(directory, ['remote']),
            self._query(directory, ['rev-parse', '--abbrev-ref', '--symbolic-full-name', '@{upstream}'])
        )

        # A timed-out status would otherwise be reported as a clean tree
        for result in (branch_out, status_out):
            if isinstance(result, GitTimeoutError):
                self.logger.warning(f"Git state unavailable for {directory}: {result.message}")
                return None

        if isinstance(branch_out, Exception):
            # Unborn branch in a fresh repository has no HEAD commit yet
            branch_out = await self._query(directory, ['symbolic-ref', '--short', 'HEAD'])
        if isinstance(branch_out, Exception) or not branch_out.strip():
            return None
        branch = branch_out.strip()

        changes = [] if isinstance(status_out, Exception) else parse_porcelain_status(status_out)
        commits = [] if isinstance(log_out, Exception) else parse_log(log_out)
        has_remote = False if isinstance(remote_out, Exception) else has_origin_remote(remote_out)

        upstream = None
        if not isinstance(upstream_out, Exception) and upstream_out.strip():
            upstream = upstream_out.strip()

        ahead, behind = 0, 0
        if upstream:
            ahead, behind = await self._ahead_behind(directory, upstream)

        return GitState(
            branch=branch,
            changes=changes,
            commits=commits,
            ahead=ahead,
            behind=behind,
            has_remote=has_remote,
            upstream=upstream
        )

    async def _ahead_behind(self, directory: str, upstream: str) -> Tuple[int, int]:
        try:
            output = await self.runner.run(
                directory,
                ['rev-list', '--left-right', '--count', 'HEAD...@{upstream}'],
                self.timeout
            )
            return parse_ahead_behind(output)
        except (GitCommandError, ValueError) as e:
            self.logger.warning(f"Could not compare {directory} with upstream {upstream}: {e}")
            return 0, 0
