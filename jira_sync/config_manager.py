"""
Configuration Manager Module
Loads configuration from YAML files and environment variables and builds the
immutable SyncConfig that is passed to every component of a run.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import pytz
import yaml
from dotenv import load_dotenv

from jira_sync.exceptions import ConfigurationError


@dataclass(frozen=True)
class JiraSettings:
    """Jira connection settings. Credentials are opaque and never logged."""
    url: str
    username: str
    api_token: str
    jql_filter: str = ''
    timezone: str = 'UTC'
    page_size: int = 100
    requests_per_second: float = 5
    request_timeout: float = 30

    def __repr__(self) -> str:
        return f"JiraSettings(page_size={self.page_size}, jql_filter={self.jql_filter!r})"


@dataclass(frozen=True)
class RetrySettings:
    """Per-page retry policy for transient HTTP failures."""
    max_attempts: int = 5
    backoff_base: float = 1.0
    backoff_max: float = 30.0


@dataclass(frozen=True)
class DatabaseSettings:
    """Analytical store settings."""
    url: str
    target_table: str = 'jira_issues'
    stage_table: str = 'jira_issues_stage'
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30

    def __repr__(self) -> str:
        return f"DatabaseSettings(target_table={self.target_table!r}, stage_table={self.stage_table!r})"


@dataclass(frozen=True)
class FieldMap:
    """
    Maps Jira custom field ids to normalized columns.

    Team and filiale are collections; their kind says how the raw value is
    shaped (multi_select, select or cascading_select).
    """
    team: str = 'customfield_10001'
    filiale: str = 'customfield_10100'
    time_to_resolution: str = 'customfield_10030'
    time_to_first_response: str = 'customfield_10031'
    team_kind: str = 'multi_select'
    filiale_kind: str = 'multi_select'


@dataclass(frozen=True)
class SyncSettings:
    """Window and run-level settings."""
    default_lookback_minutes: int = 60
    clock_skew_seconds: int = 300
    run_timeout_seconds: Optional[float] = None


@dataclass(frozen=True)
class SyncConfig:
    """Everything a run needs, constructed once at run start."""
    jira: JiraSettings
    database: DatabaseSettings
    retry: RetrySettings = field(default_factory=RetrySettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    fields: FieldMap = field(default_factory=FieldMap)
    trigger_secret: str = ''


class ConfigManager:
    """Manages application configuration from YAML files and environment variables."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Load configuration from the given directory or the first one found."""
        self._config_dir = Path(config_dir) if config_dir else None
        self._config: Dict = {}
        self._load_configuration()

    def _load_configuration(self) -> None:
        """Load all configuration files."""
        # Load environment variables from .env file
        load_dotenv()

        if self._config_dir is None:
            self._config_dir = self._find_config_dir()

        config_path = self._config_dir / 'config.yaml'
        self._config = self._load_yaml_with_env(config_path)

    def _find_config_dir(self) -> Path:
        """Find the configuration directory."""
        env_config_dir = os.getenv('CONFIG_DIR')
        if env_config_dir:
            return Path(env_config_dir)

        possible_paths = [
            Path(__file__).parent.parent / 'config',  # Relative to the package
            Path.cwd() / 'config',
            Path('/app/config'),  # Container
        ]

        for path in possible_paths:
            if path.exists():
                return path

        raise ConfigurationError("Configuration directory not found")

    def _load_yaml_with_env(self, file_path: Path) -> Dict:
        """
        Load YAML file with environment variable substitution.

        Supports ${VAR_NAME} and ${VAR_NAME:-default} syntax.
        """
        if not file_path.exists():
            return {}

        with open(file_path, 'r', encoding='utf-8') as f:
            content = f.read()

        content = substitute_env_vars(content)

        return yaml.safe_load(content) or {}

    # ========================================
    # Configuration Getters
    # ========================================

    def get_jira_config(self) -> Dict:
        """Get Jira API configuration."""
        return self._config.get('jira') or {}

    def get_database_config(self) -> Dict:
        """Get database configuration."""
        return self._config.get('database') or {}

    def get_sync_config(self) -> Dict:
        """Get sync window and retry configuration."""
        return self._config.get('sync') or {}

    def get_fields_config(self) -> Dict:
        """Get custom field mapping."""
        return self._config.get('fields') or {}

    def get_logging_config(self) -> Dict:
        """Get logging configuration."""
        return self._config.get('logging') or {}

    def get_trigger_config(self) -> Dict:
        """Get manual trigger configuration."""
        return self._config.get('trigger') or {}

    def build_sync_config(self) -> SyncConfig:
        """
        Build the immutable run configuration.

        Raises:
            ConfigurationError: If credentials or the database URL are missing
        """
        jira = self.get_jira_config()
        missing = [name for name in ('url', 'username', 'api_token') if not _resolved(jira.get(name))]
        if missing:
            raise ConfigurationError("Missing Jira credentials", missing=missing)

        db = self.get_database_config()
        db_url = db.get('url') or build_database_url(db)
        if not _resolved(db_url):
            raise ConfigurationError("Missing database URL")

        timezone = jira.get('timezone') or 'UTC'
        if timezone not in pytz.all_timezones_set:
            raise ConfigurationError("Unknown Jira timezone", timezone=timezone)

        sync = self.get_sync_config()
        retry = sync.get('retry') or {}
        fields = self.get_fields_config()

        page_size = min(max(int(jira.get('page_size', 100)), 1), 100)

        return SyncConfig(
            jira=JiraSettings(
                url=str(jira['url']).rstrip('/'),
                username=str(jira['username']),
                api_token=str(jira['api_token']),
                jql_filter=jira.get('jql_filter') or '',
                timezone=timezone,
                page_size=page_size,
                requests_per_second=float(jira.get('requests_per_second', 5)),
                request_timeout=float(jira.get('request_timeout', 30))
            ),
            database=DatabaseSettings(
                url=db_url,
                target_table=db.get('target_table', 'jira_issues'),
                stage_table=db.get('stage_table', 'jira_issues_stage'),
                pool_size=int(db.get('pool_size', 5)),
                max_overflow=int(db.get('max_overflow', 10)),
                pool_timeout=int(db.get('pool_timeout', 30))
            ),
            retry=RetrySettings(
                max_attempts=int(retry.get('max_attempts', 5)),
                backoff_base=float(retry.get('backoff_base', 1.0)),
                backoff_max=float(retry.get('backoff_max', 30.0))
            ),
            sync=SyncSettings(
                default_lookback_minutes=int(sync.get('default_lookback_minutes', 60)),
                clock_skew_seconds=int(sync.get('clock_skew_seconds', 300)),
                run_timeout_seconds=_optional_float(sync.get('run_timeout_seconds'))
            ),
            fields=FieldMap(**{k: v for k, v in fields.items() if k in FieldMap.__dataclass_fields__}),
            trigger_secret=str(self.get_trigger_config().get('secret') or '')
        )


def substitute_env_vars(content: str) -> str:
    """
    Substitute environment variables in string.

    Supports:
    - ${VAR_NAME} - Required variable
    - ${VAR_NAME:-default} - Variable with default value
    """
    pattern = r'\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}'

    def replacer(match):
        var_name = match.group(1)
        default_value = match.group(2)

        value = os.getenv(var_name)
        if value is not None:
            return value
        elif default_value is not None:
            return default_value
        else:
            return match.group(0)  # Return original if not found

    return re.sub(pattern, replacer, content)


def build_database_url(db_config: Dict) -> str:
    """Build PostgreSQL connection URL from config."""
    host = db_config.get('host', 'localhost')
    port = db_config.get('port', 5432)
    name = db_config.get('name', 'jira_analytics')
    user = db_config.get('user', 'jira_sync')
    password = db_config.get('password', '')

    return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{name}"


def _resolved(value) -> bool:
    """True if a value is set and not an unsubstituted ${VAR} placeholder."""
    return bool(value) and '${' not in str(value)


def _optional_float(value) -> Optional[float]:
    if value in (None, ''):
        return None
    return float(value)
