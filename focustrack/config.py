"""Configuration management for focustrack.

This module provides a hierarchical configuration system using YAML files and
Python dataclasses. It supports loading, saving, and updating configuration
values at runtime with defaults for every setting.

Key Features:
- YAML-based configuration file
- Dataclass-based type safety
- Default values for all settings
- Live updates with automatic save
- Backward compatibility with missing or unknown fields

Configuration Sections:
- tracking: Sampling interval, break reminders, ignored applications
- storage: Session log location and cache size
- textgen: Text-generation endpoint and model
- focus: Focus block defaults and evaluation thresholds
- inspector: Context enrichment settings
- notifications: Desktop notification settings
- logging: Log level and file logging

Example:
    >>> from focustrack.config import ConfigManager
    >>> config_mgr = ConfigManager()
    >>> print(config_mgr.config.tracking.tick_interval_seconds)
    1.0
    >>> config_mgr.update('focus', 'min_evaluation_seconds', 120)
"""

import dataclasses
import logging
from dataclasses import dataclass, field, asdict
from datetime import timedelta
from pathlib import Path
from typing import Optional

import yaml

from .inspector import BROWSER_APPS, EDITOR_APPS
from .llm import DEFAULT_API_KEY_ENV, DEFAULT_ENDPOINT, DEFAULT_MODEL

logger = logging.getLogger(__name__)


@dataclass
class TrackingConfig:
    """Session tracking configuration.

    Attributes:
        tick_interval_seconds: How often the frontmost app is re-sampled (default: 1.0)
        watcher_poll_seconds: How often the watcher checks for app switches (default: 0.5)
        break_reminder_minutes: Continuous focus before a break reminder, 0 disables (default: 50)
        daily_goal_hours: Focused hours per day the progress query measures against (default: 4)
        own_identifiers: App identifiers never tracked (our own windows)
        excluded_apps: App identifiers treated as "nothing focused" for privacy
    """
    tick_interval_seconds: float = 1.0
    watcher_poll_seconds: float = 0.5
    break_reminder_minutes: float = 50
    daily_goal_hours: float = 4
    own_identifiers: list[str] = field(default_factory=lambda: ["focustrack"])
    excluded_apps: list[str] = field(default_factory=lambda: [
        "1password",
        "keepassxc",
        "bitwarden",
    ])

    @property
    def break_reminder_after(self) -> Optional[timedelta]:
        if not self.break_reminder_minutes or self.break_reminder_minutes <= 0:
            return None
        return timedelta(minutes=self.break_reminder_minutes)


@dataclass
class StorageConfig:
    """Session log configuration.

    Attributes:
        data_dir: Directory for the session log and log files (default: ~/focustrack-data)
        log_filename: Session log file name (default: sessions.jsonl)
        cache_limit: Recent sessions kept in memory (default: 500)
    """
    data_dir: str = "~/focustrack-data"
    log_filename: str = "sessions.jsonl"
    cache_limit: int = 500

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def session_log_path(self) -> Path:
        return self.data_path / self.log_filename


@dataclass
class TextGenConfig:
    """Text-generation API configuration.

    Attributes:
        endpoint: Chat completions URL
        model: Model identifier (default: green-l)
        api_key_env: Environment variable holding the API key
        timeout_seconds: Request timeout (default: 60)
        reasoning_level: concise, balanced or deep (default: concise)
    """
    endpoint: str = DEFAULT_ENDPOINT
    model: str = DEFAULT_MODEL
    api_key_env: str = DEFAULT_API_KEY_ENV
    timeout_seconds: float = 60
    reasoning_level: str = "concise"


@dataclass
class FocusConfig:
    """Focus block configuration.

    Attributes:
        default_target_minutes: Length of a focus block when not given (default: 25)
        min_evaluation_seconds: Sessions no longer than this are never evaluated (default: 60)
        history_limit: Finished focus blocks kept in memory (default: 20)
        max_workers: Concurrent evaluation calls (default: 2)
    """
    default_target_minutes: float = 25
    min_evaluation_seconds: float = 60
    history_limit: int = 20
    max_workers: int = 2


@dataclass
class InspectorConfig:
    """Context enrichment configuration.

    Attributes:
        snippet_limit: Characters of document content captured (max 400)
        devtools_port: Chromium remote debugging port (default: 9222)
        browser_apps: App identifiers queried through DevTools
        editor_apps: App identifiers whose document path is resolved
    """
    snippet_limit: int = 400
    devtools_port: int = 9222
    browser_apps: list[str] = field(default_factory=lambda: sorted(BROWSER_APPS))
    editor_apps: list[str] = field(default_factory=lambda: sorted(EDITOR_APPS))


@dataclass
class NotificationConfig:
    """Desktop notification configuration.

    Attributes:
        enabled: Send notifications through notify-send (default: True)
        app_name: Application name shown by the notification daemon
    """
    enabled: bool = True
    app_name: str = "focustrack"


@dataclass
class LoggingConfig:
    """Logging configuration.

    Attributes:
        level: Root log level (default: INFO)
        log_to_file: Also write a rotating log file in data_dir (default: True)
    """
    level: str = "INFO"
    log_to_file: bool = True


@dataclass
class Config:
    """Top-level configuration container."""
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    textgen: TextGenConfig = field(default_factory=TextGenConfig)
    focus: FocusConfig = field(default_factory=FocusConfig)
    inspector: InspectorConfig = field(default_factory=InspectorConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


class ConfigManager:
    """Manages configuration loading, saving, and updates.

    Attributes:
        DEFAULT_PATH: Default configuration file location
        path: Actual configuration file path being used
        config: Current configuration object

    Example:
        >>> config_mgr = ConfigManager()
        >>> config_mgr.config.tracking.break_reminder_minutes = 45
        >>> config_mgr.save()
    """

    DEFAULT_PATH = Path("~/.config/focustrack/config.yaml").expanduser()

    def __init__(self, path: Optional[Path] = None):
        """Initialize ConfigManager.

        Args:
            path: Custom config file path (uses DEFAULT_PATH if None)
        """
        self.path = Path(path).expanduser() if path else self.DEFAULT_PATH
        self.config = self._load()

    def _load(self) -> Config:
        """Load configuration from YAML file.

        Missing fields use dataclass defaults; invalid YAML returns defaults.
        """
        if self.path.exists():
            try:
                with open(self.path) as f:
                    data = yaml.safe_load(f) or {}
                if not isinstance(data, dict):
                    raise yaml.YAMLError("top level must be a mapping")
                logger.info(f"Loaded configuration from {self.path}")
                return self._dict_to_config(data)
            except (yaml.YAMLError, OSError, TypeError) as e:
                logger.warning(f"Failed to load config from {self.path}: {e}")
                logger.info("Using default configuration")
                return Config()
        else:
            logger.info(f"No config file at {self.path}, using defaults")
            return Config()

    def _dict_to_config(self, data: dict) -> Config:
        """Construct Config from a dictionary, ignoring unknown keys."""
        def section(name: str, dataclass_type):
            raw = data.get(name) or {}
            if not isinstance(raw, dict):
                logger.warning(f"Config section {name} is not a mapping, using defaults")
                raw = {}
            known_fields = {f.name for f in dataclasses.fields(dataclass_type)}
            unknown = set(raw.keys()) - known_fields
            if unknown:
                logger.debug(f"Ignoring unknown config fields in {name}: {unknown}")
            return dataclass_type(**{k: v for k, v in raw.items() if k in known_fields})

        return Config(**{
            f.name: section(f.name, f.default_factory)
            for f in dataclasses.fields(Config)
        })

    def save(self) -> None:
        """Save current configuration to YAML file.

        Raises:
            OSError: If file write fails
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                yaml.dump(
                    asdict(self.config),
                    f,
                    default_flow_style=False,
                    sort_keys=False,
                    indent=2
                )
            logger.info(f"Saved configuration to {self.path}")
        except OSError as e:
            logger.error(f"Failed to save config to {self.path}: {e}")
            raise

    def update(self, section: str, key: str, value) -> bool:
        """Update a single configuration value and save.

        Returns:
            True if value was changed and saved, False if unchanged or invalid
        """
        section_obj = getattr(self.config, section, None)
        if section_obj is None:
            logger.warning(f"Invalid config section: {section}")
            return False

        if key not in {f.name for f in dataclasses.fields(section_obj)}:
            logger.warning(f"Invalid config key: {section}.{key}")
            return False

        old_value = getattr(section_obj, key)
        if old_value != value:
            setattr(section_obj, key, value)
            self.save()
            logger.info(f"Updated {section}.{key}: {old_value} -> {value}")
            return True

        logger.debug(f"No change for {section}.{key} (already {value})")
        return False

    def reload(self) -> None:
        """Reload configuration from file."""
        self.config = self._load()
        logger.info("Configuration reloaded")

