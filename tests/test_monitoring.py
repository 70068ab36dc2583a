"""Tests for error handling and health reporting."""

import asyncio
import shutil

import pytest

from domain import CalDAVCredentials
from monitoring import (
    ErrorCode, CommandCenterError, EventConflictError, HealthChecker,
    error_handler, handle_exceptions
)


class FakeCredentialsRepository:
    def __init__(self, credentials=None):
        self.credentials = credentials

    def load(self):
        return self.credentials


class TestErrorHandler:
    """Test error conversion and statistics."""

    def test_unexpected_error_wrapped(self):
        error = error_handler.handle_error(KeyError('x'), 'scan')

        assert isinstance(error, CommandCenterError)
        assert error.error_code == ErrorCode.INTERNAL_ERROR
        assert error.details['context'] == 'scan'
        assert error_handler.get_error_stats()['error_counts'] == {'scan:INTERNAL_ERROR': 1}

    def test_domain_error_kept(self):
        original = EventConflictError('https://x/e.ics', '"1"')
        assert error_handler.handle_error(original, 'delete') is original

    def test_decorator_reraises_converted(self):
        @handle_exceptions(context='job')
        def job():
            raise RuntimeError('boom')

        with pytest.raises(CommandCenterError) as exc_info:
            job()
        assert exc_info.value.message == 'boom'

    def test_decorator_async_without_reraise(self):
        @handle_exceptions(context='job', reraise=False)
        async def job():
            raise RuntimeError('boom')

        assert asyncio.run(job()) is None
        assert error_handler.get_error_stats()['total_errors'] == 1


class TestHealthChecker:
    """Test the health summary."""

    def test_healthy_roots(self, tmp_path):
        summary = HealthChecker([str(tmp_path)]).get_health_summary()

        assert summary['services']['scan_roots'] is True
        assert summary['unreadableRoots'] == []
        assert summary['healthy'] == (shutil.which('git') is not None)

    def test_unreadable_root_degrades(self, tmp_path):
        missing = str(tmp_path / 'missing')
        summary = HealthChecker([str(tmp_path), missing]).get_health_summary()

        assert summary['status'] == 'degraded'
        assert summary['unreadableRoots'] == [missing]

    def test_icloud_is_informational(self, tmp_path):
        repo = FakeCredentialsRepository(CalDAVCredentials(email='a@b.c', app_password='pw'))
        checker = HealthChecker([str(tmp_path)], repo, git_executable='sh')

        summary = checker.get_health_summary()

        assert summary['services']['icloud_configured'] is True
        assert summary['healthy'] is (shutil.which('sh') is not None)

        repo.credentials = None
        assert checker.get_health_summary()['healthy'] is (shutil.which('sh') is not None)

    def test_last_error_reported(self, tmp_path):
        error_handler.handle_error(ValueError('bad'), 'scan')
        summary = HealthChecker([str(tmp_path)]).get_health_summary()

        assert summary['error_count'] == 1
        assert summary['last_error']['message'] == 'bad'
