"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

import yaml

logger = logging.getLogger(__name__)

VALID_DATA_SOURCES = ("Local", "UN", "Both")
VALID_SEARCH_BACKENDS = ("elasticsearch", "memory")


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "blocklist_user"
    password: str = "blocklist_password"
    name: str = "blocklist_database"


@dataclass
class DataConfig:
    """Remote feed configuration"""
    un_url: str = "https://scsanctions.un.org/resources/xml/en/consolidated.xml"
    request_timeout_seconds: int = 120
    sync_interval_hours: float = 15


@dataclass
class SearchConfig:
    """Search index and ranking configuration"""
    backend: str = "elasticsearch"
    elasticsearch_url: str = "http://localhost:9200"
    index_name: str = "blocklist"
    username: Optional[str] = None
    password: Optional[str] = None
    request_timeout: int = 30
    max_candidates: int = 1000
    max_query_length: int = 200
    data_source: str = "Both"


@dataclass
class IngestionConfig:
    """Bulk upload configuration"""
    index_batch_size: int = 100
    max_upload_size_mb: int = 10
    max_files: int = 5
    upload_directory: str = "uploads/imports"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.database: DatabaseConfig = DatabaseConfig()
        self.data: DataConfig = DataConfig()
        self.search: SearchConfig = SearchConfig()
        self.ingestion: IngestionConfig = IngestionConfig()
        self.logging: LoggingConfig = LoggingConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(os.getenv("CONFIG_PATH", "config.yaml")),
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        self._apply()

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'ConfigManager':
        """Build a configuration from an in-memory mapping (tests, embedding)"""
        manager = cls.__new__(cls)
        manager.config_path = None
        manager._raw_config = raw or {}
        manager.database = DatabaseConfig()
        manager.data = DataConfig()
        manager.search = SearchConfig()
        manager.ingestion = IngestionConfig()
        manager.logging = LoggingConfig()
        manager._apply()
        return manager

    def _apply(self) -> None:
        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at top level")

        self._parse_database()
        self._parse_data()
        self._parse_search()
        self._parse_ingestion()
        self._parse_logging()
        self._validate()

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._raw_config.get('database', {})
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name)
        )

    def _parse_data(self) -> None:
        """Parse remote feed configuration"""
        cfg = self._raw_config.get('data', {})
        self.data = DataConfig(
            un_url=cfg.get('un_url', self.data.un_url),
            request_timeout_seconds=cfg.get('request_timeout_seconds', 120),
            sync_interval_hours=cfg.get('sync_interval_hours', 15)
        )

    def _parse_search(self) -> None:
        """Parse search configuration"""
        cfg = self._raw_config.get('search', {})
        # Environment wins over the file for connection values
        self.search = SearchConfig(
            backend=os.getenv('SEARCH_BACKEND') or cfg.get('backend', self.search.backend),
            elasticsearch_url=os.getenv('ELASTICSEARCH_URL') or cfg.get(
                'elasticsearch_url', self.search.elasticsearch_url
            ),
            index_name=os.getenv('ELASTICSEARCH_INDEX') or cfg.get('index_name', self.search.index_name),
            username=os.getenv('ELASTICSEARCH_USERNAME') or cfg.get('username'),
            password=os.getenv('ELASTICSEARCH_PASSWORD') or cfg.get('password'),
            request_timeout=cfg.get('request_timeout', 30),
            max_candidates=cfg.get('max_candidates', 1000),
            max_query_length=cfg.get('max_query_length', 200),
            data_source=cfg.get('data_source', 'Both')
        )

    def _parse_ingestion(self) -> None:
        """Parse bulk upload configuration"""
        cfg = self._raw_config.get('ingestion', {})
        self.ingestion = IngestionConfig(
            index_batch_size=cfg.get('index_batch_size', 100),
            max_upload_size_mb=cfg.get('max_upload_size_mb', 10),
            max_files=cfg.get('max_files', 5),
            upload_directory=cfg.get('upload_directory', self.ingestion.upload_directory)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {})
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (secrets excluded)"""
        return {
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'name': self.database.name
            },
            'data': {
                'un_url': self.data.un_url,
                'request_timeout_seconds': self.data.request_timeout_seconds,
                'sync_interval_hours': self.data.sync_interval_hours
            },
            'search': {
                'backend': self.search.backend,
                'elasticsearch_url': self.search.elasticsearch_url,
                'index_name': self.search.index_name,
                'request_timeout': self.search.request_timeout,
                'max_candidates': self.search.max_candidates,
                'data_source': self.search.data_source
            },
            'ingestion': {
                'index_batch_size': self.ingestion.index_batch_size,
                'max_upload_size_mb': self.ingestion.max_upload_size_mb,
                'max_files': self.ingestion.max_files,
                'upload_directory': self.ingestion.upload_directory
            }
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        errors: List[str] = []

        if self.search.data_source not in VALID_DATA_SOURCES:
            errors.append(
                f"search.data_source must be one of {', '.join(VALID_DATA_SOURCES)}, "
                f"got {self.search.data_source!r}"
            )
        if self.search.backend not in VALID_SEARCH_BACKENDS:
            errors.append(
                f"search.backend must be one of {', '.join(VALID_SEARCH_BACKENDS)}, "
                f"got {self.search.backend!r}"
            )
        if self.search.max_candidates <= 0:
            errors.append("search.max_candidates must be positive")
        if self.ingestion.index_batch_size <= 0:
            errors.append("ingestion.index_batch_size must be positive")
        if self.ingestion.max_upload_size_mb <= 0:
            errors.append("ingestion.max_upload_size_mb must be positive")
        if self.ingestion.max_files <= 0:
            errors.append("ingestion.max_files must be positive")
        if self.data.sync_interval_hours <= 0:
            errors.append("data.sync_interval_hours must be positive")
        if self.data.request_timeout_seconds <= 0:
            errors.append("data.request_timeout_seconds must be positive")

        if errors:
            raise ConfigurationError("; ".join(errors))


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)


def setup_logging(config: Optional[ConfigManager] = None) -> None:
    """Configure root logging from the logging section"""
    cfg = (config or get_config()).logging
    handlers: List[logging.Handler] = []

    if cfg.console:
        handlers.append(logging.StreamHandler())
    if cfg.file:
        log_path = Path(cfg.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, cfg.level.upper(), logging.INFO),
        format=cfg.format,
        handlers=handlers or None,
        force=True
    )
