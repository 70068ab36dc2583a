"""Flask application factory for the Command Center backend."""

import asyncio
import logging
import threading
import time
from typing import Optional

from flask import Flask, jsonify

from config import Config
from application import ProjectService, GitActionService, CalendarService
from infrastructure import (
    GitCommandRunner, GitInspector, ProjectScanner, CalDAVEventBridge,
    JsonProjectMetadataRepository, JsonCredentialsRepository
)
from monitoring import HealthChecker, CommandCenterError, ErrorCode, error_handler
from .routes import register_project_routes, register_git_routes, register_icloud_routes


ERROR_STATUS = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_PROJECT_ID: 400,
    ErrorCode.CALENDAR_NOT_FOUND: 400,
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.NOT_CONNECTED: 401,
    ErrorCode.PROJECT_NOT_FOUND: 404,
    ErrorCode.EVENT_NOT_FOUND: 404,
    ErrorCode.EVENT_CONFLICT: 409,
    ErrorCode.CALDAV_CONNECTION_ERROR: 502,
    ErrorCode.CALDAV_ERROR: 502,
    ErrorCode.GIT_TIMEOUT: 504,
}


class AsyncExecutor:
    """Helper to run async functions in Flask (sync) context."""

    def __init__(self, timeout: float = 60.0):
        self.timeout = timeout
        self.loop = None
        self._setup_event_loop()

    def _setup_event_loop(self):
        """Set up event loop in background thread."""
        def run_loop():
            self.loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self.loop)
            self.loop.run_forever()

        thread = threading.Thread(target=run_loop, daemon=True)
        thread.start()

        # Wait for loop to be ready
        while self.loop is None:
            time.sleep(0.01)

    def run_async(self, coro):
        """Run async coroutine in background loop."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout=self.timeout)


def create_app(
    config: Config,
    project_service: Optional[ProjectService] = None,
    git_service: Optional[GitActionService] = None,
    calendar_service: Optional[CalendarService] = None,
    health_checker: Optional[HealthChecker] = None
) -> Flask:
    """Create Flask application with dependency injection."""
    app = Flask(__name__)
    app.config['CONFIG'] = config
    logger = logging.getLogger(__name__)

    async_executor = AsyncExecutor(timeout=config.server.request_timeout)

    runner = GitCommandRunner(default_timeout=config.scanner.git_timeout_seconds)
    credentials_repo = JsonCredentialsRepository(config.storage.icloud_credentials_file)

    if project_service is None:
        scanner = ProjectScanner(
            GitInspector(runner, timeout=config.scanner.git_timeout_seconds),
            skip_directories=config.scanner.skip_directories,
            project_markers=config.scanner.project_markers,
            max_concurrent_projects=config.scanner.max_concurrent_projects
        )
        project_service = ProjectService(
            scanner,
            JsonProjectMetadataRepository(config.storage.projects_file),
            config.scanner.roots
        )

    if git_service is None:
        git_service = GitActionService(runner, project_service, config.git.action_timeout_seconds)

    if calendar_service is None:
        bridge = CalDAVEventBridge(config.caldav.server_url, config.caldav.timeout)
        calendar_service = CalendarService(bridge, credentials_repo)

    if health_checker is None:
        health_checker = HealthChecker(config.scanner.roots, credentials_repo)

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        return jsonify(health_checker.get_health_summary())

    register_project_routes(app, project_service, async_executor)
    register_git_routes(app, git_service, async_executor)
    register_icloud_routes(app, calendar_service)

    # Error handlers
    @app.errorhandler(CommandCenterError)
    def handle_app_error(error: CommandCenterError):
        status = ERROR_STATUS.get(error.error_code, 500)
        if status >= 500:
            logger.error(f"{error.error_code.value}: {error.message}")
        return jsonify({'error': error.message, 'code': error.error_code.value}), status

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        original = getattr(error, 'original_exception', None) or error
        error_handler.handle_error(original, "http")
        return jsonify({'error': 'Internal server error'}), 500

    logger.info(f"Scanning roots: {', '.join(config.scanner.roots)}")
    return app
