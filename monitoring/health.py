"""Health monitoring for the Command Center backend."""

import logging
import os
import shutil
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Sequence
from dataclasses import dataclass, field

from .exceptions import error_handler


@dataclass
class HealthStatus:
    """Health status information."""

    healthy: bool
    timestamp: datetime
    services: Dict[str, bool]
    unreadable_roots: list = field(default_factory=list)
    last_error: Optional[Dict[str, Any]] = None
    error_count: int = 0


class HealthChecker:
    """Health monitoring for the application."""

    def __init__(self, scan_roots: Sequence[str], credentials_repository=None, git_executable: str = 'git'):
        self.scan_roots = list(scan_roots)
        self.credentials_repository = credentials_repository
        self.git_executable = git_executable
        self.logger = logging.getLogger(__name__)

    def check_health(self) -> HealthStatus:
        """Check scan roots and git; iCloud is reported but never fails health."""
        timestamp = datetime.now(timezone.utc)
        services = {}

        unreadable = [
            root for root in self.scan_roots
            if not (os.path.isdir(root) and os.access(root, os.R_OK | os.X_OK))
        ]
        if unreadable:
            self.logger.warning(f"Unreadable scan roots: {', '.join(unreadable)}")
        services['scan_roots'] = not unreadable
        services['git'] = shutil.which(self.git_executable) is not None

        overall_healthy = all(services.values())

        if self.credentials_repository is not None:
            try:
                services['icloud_configured'] = self.credentials_repository.load() is not None
            except OSError as e:
                services['icloud_configured'] = False
                error_handler.handle_error(e, "health_check:icloud")

        error_stats = error_handler.get_error_stats()
        last_error = None
        if error_stats['last_errors']:
            latest_key = max(error_stats['last_errors'].keys(),
                             key=lambda k: error_stats['last_errors'][k]['timestamp'])
            last_error = error_stats['last_errors'][latest_key]

        return HealthStatus(
            healthy=overall_healthy,
            timestamp=timestamp,
            services=services,
            unreadable_roots=unreadable,
            last_error=last_error,
            error_count=error_stats['total_errors']
        )

    def get_health_summary(self) -> Dict[str, Any]:
        """Get health summary for API responses."""
        health_status = self.check_health()
        return {
            'status': 'healthy' if health_status.healthy else 'degraded',
            'healthy': health_status.healthy,
            'timestamp': health_status.timestamp.isoformat(),
            'services': health_status.services,
            'unreadableRoots': health_status.unreadable_roots,
            'last_error': health_status.last_error,
            'error_count': health_status.error_count
        }
