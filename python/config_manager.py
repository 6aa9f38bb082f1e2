"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

import yaml

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "verification_user"
    password: str = "verification_password"
    name: str = "identity_verification"


@dataclass
class VerificationConfig:
    """Which directory users may hold a verification record"""
    eligible_subject_types: List[str] = field(default_factory=lambda: ["servicemen"])


@dataclass
class SnapshotConfig:
    """Event window used when assembling snapshots"""
    event_limit: int = 50
    max_event_limit: int = 500


@dataclass
class AuditConfig:
    """Audit trail behaviour"""
    # Emit a note event when profile fields change without a status change
    record_profile_field_changes: bool = False
    log_mutations: bool = True
    log_validation_failures: bool = True
    log_file: Optional[str] = None


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = "logs/verification.log"
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
        self.verification: VerificationConfig = VerificationConfig()
        self.snapshot: SnapshotConfig = SnapshotConfig()
        self.audit: AuditConfig = AuditConfig()
        self.logging: LoggingConfig = LoggingConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    @classmethod
    def create(
        cls,
        config_path: Optional[str] = None,
        raw: Optional[Dict[str, Any]] = None
    ) -> 'ConfigManager':
        """Build a standalone (non-singleton) instance, optionally from an in-memory mapping"""
        manager = cls(config_path)
        if raw is not None:
            manager.apply(raw)
        return manager

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(raw, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {self.config_path}")
        self.apply(raw)

    def apply(self, raw: Dict[str, Any]) -> None:
        """Parse and validate a raw configuration mapping"""
        self._raw_config = raw
        self._parse_database()
        self._parse_verification()
        self._parse_snapshot()
        self._parse_audit()
        self._parse_logging()
        self._validate()

    def _section(self, name: str) -> Dict[str, Any]:
        cfg = self._raw_config.get(name) or {}
        if not isinstance(cfg, dict):
            raise ConfigurationError(f"Section '{name}' must be a mapping")
        return cfg

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._section('database')
        defaults = DatabaseConfig()
        self.database = DatabaseConfig(
            host=cfg.get('host', defaults.host),
            port=cfg.get('port', defaults.port),
            user=cfg.get('user', defaults.user),
            password=cfg.get('password', defaults.password),
            name=cfg.get('name', defaults.name)
        )

    def _parse_verification(self) -> None:
        cfg = self._section('verification')
        types = cfg.get('eligible_subject_types', VerificationConfig().eligible_subject_types)
        if isinstance(types, str):
            types = [types]
        self.verification = VerificationConfig(eligible_subject_types=list(types or []))

    def _parse_snapshot(self) -> None:
        cfg = self._section('snapshot')
        self.snapshot = SnapshotConfig(
            event_limit=cfg.get('event_limit', 50),
            max_event_limit=cfg.get('max_event_limit', 500)
        )

    def _parse_audit(self) -> None:
        """Parse audit trail configuration"""
        cfg = self._section('audit')
        self.audit = AuditConfig(
            record_profile_field_changes=cfg.get('record_profile_field_changes', False),
            log_mutations=cfg.get('log_mutations', True),
            log_validation_failures=cfg.get('log_validation_failures', True),
            log_file=cfg.get('log_file')
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._section('logging')
        defaults = LoggingConfig()
        self.logging = LoggingConfig(
            level=str(cfg.get('level', defaults.level)).upper(),
            file=cfg.get('file', defaults.file),
            console=cfg.get('console', True),
            format=cfg.get('format', defaults.format)
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
        """Export configuration as dictionary (password masked)"""
        return {
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'password': '***' if self.database.password else '',
                'name': self.database.name
            },
            'verification': {
                'eligible_subject_types': list(self.verification.eligible_subject_types)
            },
            'snapshot': {
                'event_limit': self.snapshot.event_limit,
                'max_event_limit': self.snapshot.max_event_limit
            },
            'audit': {
                'record_profile_field_changes': self.audit.record_profile_field_changes,
                'log_mutations': self.audit.log_mutations,
                'log_validation_failures': self.audit.log_validation_failures,
                'log_file': self.audit.log_file
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'console': self.logging.console,
                'format': self.logging.format
            }
        }

    def _validate(self) -> None:
        """Validate configuration values

        Raises:
            ConfigurationError: on the first invalid value
        """
        snapshot = self.snapshot
        if not isinstance(snapshot.max_event_limit, int) or snapshot.max_event_limit < 1:
            raise ConfigurationError("snapshot.max_event_limit must be a positive integer")
        if not isinstance(snapshot.event_limit, int) or not 1 <= snapshot.event_limit <= snapshot.max_event_limit:
            raise ConfigurationError(
                f"snapshot.event_limit must be between 1 and {snapshot.max_event_limit}"
            )

        types = self.verification.eligible_subject_types
        if not types or not all(isinstance(t, str) and t.strip() for t in types):
            raise ConfigurationError("verification.eligible_subject_types must list at least one type")

        if self.logging.level not in LOG_LEVELS:
            raise ConfigurationError(
                f"logging.level must be one of {', '.join(LOG_LEVELS)}, got {self.logging.level}"
            )

        if not isinstance(self.database.port, int) or not 0 < self.database.port < 65536:
            raise ConfigurationError("database.port must be a valid TCP port")


def configure_logging(config: Optional[ConfigManager] = None) -> logging.Logger:
    """Apply LoggingConfig to the root logger and return it"""
    config = config or get_config()
    log_config = config.logging

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_config.level))
    formatter = logging.Formatter(log_config.format)

    for handler in list(root.handlers):
        if getattr(handler, "_verification_handler", False):
            root.removeHandler(handler)
            handler.close()

    handlers: List[logging.Handler] = []
    if log_config.console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_config.file:
        log_path = Path(log_config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler._verification_handler = True
        root.addHandler(handler)

    return root


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
