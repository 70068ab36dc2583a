"""Configuration management for the Command Center backend."""

import os
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List
from urllib.parse import urlparse


DEFAULT_SKIP_DIRECTORIES = ['node_modules', '__pycache__', 'venv', '.venv']

DEFAULT_PROJECT_MARKERS = [
    'package.json', 'requirements.txt', '.git', 'manifest.json',
    'Cargo.toml', 'go.mod', 'pyproject.toml', 'setup.py'
]


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


@dataclass
class ScannerConfig:
    """Project scanner configuration."""
    roots: List[str] = field(default_factory=lambda: [str(Path.home())])
    skip_directories: List[str] = field(default_factory=lambda: list(DEFAULT_SKIP_DIRECTORIES))
    project_markers: List[str] = field(default_factory=lambda: list(DEFAULT_PROJECT_MARKERS))
    git_timeout_seconds: float = 10.0
    max_concurrent_projects: int = 8

    def __post_init__(self):
        """Validate configuration."""
        if not self.roots:
            raise ValueError("At least one scan root is required")
        if self.git_timeout_seconds <= 0:
            raise ValueError("git_timeout_seconds must be positive")
        if self.max_concurrent_projects < 1:
            raise ValueError("max_concurrent_projects must be at least 1")
        self.roots = [os.path.expanduser(root) for root in self.roots]


@dataclass
class GitConfig:
    """Git action configuration."""
    action_timeout_seconds: float = 30.0


@dataclass
class CalDAVConfig:
    """CalDAV client configuration."""
    server_url: str = "https://caldav.icloud.com"
    timeout: int = 30

    def __post_init__(self):
        """Validate configuration."""
        self.server_url = self.server_url.rstrip('/')
        parsed = urlparse(self.server_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"Invalid CalDAV server_url format: {self.server_url}")


@dataclass
class StorageConfig:
    """JSON metadata storage configuration."""
    data_dir: str = "data"

    @property
    def projects_file(self) -> Path:
        return Path(self.data_dir) / 'projects.json'

    @property
    def icloud_credentials_file(self) -> Path:
        return Path(self.data_dir) / 'icloud-credentials.json'


@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = "127.0.0.1"
    port: int = 3847
    debug: bool = False
    request_timeout: float = 60.0


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5


@dataclass
class Config:
    """Main application configuration."""
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    git: GitConfig = field(default_factory=GitConfig)
    caldav: CalDAVConfig = field(default_factory=CalDAVConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> 'Config':
        """Create configuration from environment variables."""
        scan_dirs = os.getenv('SCAN_DIRS')
        skip_dirs = os.getenv('SCAN_SKIP_DIRS')

        scanner_config = ScannerConfig(
            roots=_split_list(scan_dirs) if scan_dirs else [str(Path.home())],
            skip_directories=_split_list(skip_dirs) if skip_dirs else list(DEFAULT_SKIP_DIRECTORIES),
            git_timeout_seconds=float(os.getenv('GIT_TIMEOUT', '10')),
            max_concurrent_projects=int(os.getenv('SCAN_MAX_CONCURRENCY', '8'))
        )

        git_config = GitConfig(
            action_timeout_seconds=float(os.getenv('GIT_ACTION_TIMEOUT', '30'))
        )

        caldav_config = CalDAVConfig(
            server_url=os.getenv('CALDAV_SERVER_URL', CalDAVConfig.server_url),
            timeout=int(os.getenv('CALDAV_TIMEOUT', '30'))
        )

        storage_config = StorageConfig(
            data_dir=os.getenv('DATA_DIR', StorageConfig.data_dir)
        )

        server_config = ServerConfig(
            host=os.getenv('SERVER_HOST', ServerConfig.host),
            port=int(os.getenv('SERVER_PORT', os.getenv('PORT', '3847'))),
            debug=os.getenv('SERVER_DEBUG', '').lower() in ('true', '1', 'yes'),
            request_timeout=float(os.getenv('REQUEST_TIMEOUT', '60'))
        )

        logging_config = LoggingConfig(
            level=os.getenv('LOG_LEVEL', 'INFO').upper(),
            format=os.getenv('LOG_FORMAT', LoggingConfig.format),
            file_path=os.getenv('LOG_FILE'),
            max_bytes=int(os.getenv('LOG_MAX_BYTES', str(LoggingConfig.max_bytes))),
            backup_count=int(os.getenv('LOG_BACKUP_COUNT', str(LoggingConfig.backup_count)))
        )

        return cls(
            scanner=scanner_config,
            git=git_config,
            caldav=caldav_config,
            storage=storage_config,
            server=server_config,
            logging=logging_config
        )

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """Create configuration from JSON file."""
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            scanner_data = data.get('scanner', {})
            scanner_config = ScannerConfig(
                roots=scanner_data.get('roots') or [str(Path.home())],
                skip_directories=scanner_data.get('skip_directories', list(DEFAULT_SKIP_DIRECTORIES)),
                project_markers=scanner_data.get('project_markers', list(DEFAULT_PROJECT_MARKERS)),
                git_timeout_seconds=scanner_data.get('git_timeout_seconds', 10.0),
                max_concurrent_projects=scanner_data.get('max_concurrent_projects', 8)
            )

            git_data = data.get('git', {})
            git_config = GitConfig(
                action_timeout_seconds=git_data.get('action_timeout_seconds', 30.0)
            )

            caldav_data = data.get('caldav', {})
            caldav_config = CalDAVConfig(
                server_url=caldav_data.get('server_url', CalDAVConfig.server_url),
                timeout=caldav_data.get('timeout', 30)
            )

            storage_data = data.get('storage', {})
            storage_config = StorageConfig(
                data_dir=storage_data.get('data_dir', StorageConfig.data_dir)
            )

            server_data = data.get('server', {})
            server_config = ServerConfig(
                host=server_data.get('host', ServerConfig.host),
                port=server_data.get('port', 3847),
                debug=server_data.get('debug', False),
                request_timeout=server_data.get('request_timeout', 60.0)
            )

            logging_data = data.get('logging', {})
            logging_config = LoggingConfig(
                level=logging_data.get('level', 'INFO').upper(),
                format=logging_data.get('format', LoggingConfig.format),
                file_path=logging_data.get('file_path'),
                max_bytes=logging_data.get('max_bytes', LoggingConfig.max_bytes),
                backup_count=logging_data.get('backup_count', LoggingConfig.backup_count)
            )

            return cls(
                scanner=scanner_config,
                git=git_config,
                caldav=caldav_config,
                storage=storage_config,
                server=server_config,
                logging=logging_config
            )

        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Invalid configuration file format: {e}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            'scanner': {
                'roots': list(self.scanner.roots),
                'skip_directories': list(self.scanner.skip_directories),
                'project_markers': list(self.scanner.project_markers),
                'git_timeout_seconds': self.scanner.git_timeout_seconds,
                'max_concurrent_projects': self.scanner.max_concurrent_projects
            },
            'git': {
                'action_timeout_seconds': self.git.action_timeout_seconds
            },
            'caldav': {
                'server_url': self.caldav.server_url,
                'timeout': self.caldav.timeout
            },
            'storage': {
                'data_dir': self.storage.data_dir
            },
            'server': {
                'host': self.server.host,
                'port': self.server.port,
                'debug': self.server.debug,
                'request_timeout': self.server.request_timeout
            },
            'logging': {
                'level': self.logging.level,
                'format': self.logging.format,
                'file_path': self.logging.file_path,
                'max_bytes': self.logging.max_bytes,
                'backup_count': self.logging.backup_count
            }
        }

    def setup_logging(self) -> None:
        """Configure logging based on configuration."""
        log_level = getattr(logging, self.logging.level, logging.INFO)

        formatter = logging.Formatter(self.logging.format)

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)

        # Clear existing handlers
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        if self.logging.file_path:
            from logging.handlers import RotatingFileHandler
            file_handler = RotatingFileHandler(
                self.logging.file_path,
                maxBytes=self.logging.max_bytes,
                backupCount=self.logging.backup_count,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)


def load_config() -> Config:
    """Load configuration from file or environment variables."""
    config_files = [
        'config.json',
        'config/config.json',
        '/etc/command-center/config.json'
    ]

    for config_file in config_files:
        if os.path.exists(config_file):
            try:
                return Config.from_file(config_file)
            except (OSError, ValueError) as e:
                logging.warning(f"Failed to load config from {config_file}: {e}")

    return Config.from_env()
