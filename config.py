#!/usr/bin/env python3
"""
Configuration management for Feed Sync.

This module centralizes configuration loading and validation. It reads
environment variables (optionally from a .env file), sets up the unified
logger and exposes a single `config` instance for the rest of the application.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any, List
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv

def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    All modules should use get_logger() to create module-specific loggers that
    inherit this configuration.
    """
    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"

    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True  # Force reconfiguration if already configured
    )

    return getLogger("FeedSync")

def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "fetcher", "sync", "scheduler")

    Returns:
        A logger named "FeedSync.{name}"
    """
    return getLogger(f"FeedSync.{name}")

# Create single global logger instance
logger = _setup_global_logger()

# Fixed HTTP request timeout for feed fetches (not configurable)
REQUEST_TIMEOUT_MS = 10000

class Config:
    """Configuration manager for Feed Sync.

    Values come from, in increasing priority:
    1. Built-in defaults
    2. System environment variables
    3. .env file next to this module (if present)

    The optional feeds.yaml file only seeds feed URLs for the `import` command:
    ```yaml
    feeds:
      example:
        url: "https://example.com/feed.xml"
      other: "https://other.example/atom.xml"
    ```
    """

    def __init__(self):
        """Initialize configuration with environment variables and validation."""
        self._load_environment()
        self._validate_and_set_config()

    def _load_environment(self):
        """Load environment variables from .env file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        self.DATABASE_PATH = environ.get("DATABASE_PATH", "feeds.db")
        self.USER_AGENT = environ.get("USER_AGENT", "feed-sync/1.0")

        # HTTP request configuration
        self.REQUEST_TIMEOUT_MS = REQUEST_TIMEOUT_MS
        self.FETCH_CONCURRENCY = self._validate_positive_int("FETCH_CONCURRENCY", 5, 1)

        # Scheduling
        self.UPDATE_INTERVAL_MINUTES = self._validate_positive_int("UPDATE_INTERVAL_MINUTES", 30, 1)
        self.SCHEDULER_RUN_IMMEDIATELY = environ.get("SCHEDULER_RUN_IMMEDIATELY", "false").lower() == "true"

        # Data management
        self.RETENTION_DAYS = self._validate_positive_int("RETENTION_DAYS", 30, 1)

        # File paths
        base_dir = path.dirname(path.abspath(__file__))
        self.SCHEMA_FILE_PATH = path.join(base_dir, "schema.sql")
        self.SCHEMA_FILE_SIZE_LIMIT_MB = self._validate_positive_int("SCHEMA_FILE_SIZE_LIMIT_MB", 1, 1)
        self.FEEDS_CONFIG_PATH = environ.get("FEEDS_CONFIG_PATH", path.join(base_dir, "feeds.yaml"))

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Returns:
            Parsed YAML or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.warning(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def load_feed_urls(self, feeds_path: str | None = None) -> List[str]:
        """Return the feed URLs listed in feeds.yaml (empty list on any failure).

        Each entry under `feeds` may be a mapping with a `url` key or a bare URL string.
        """
        feeds_path = feeds_path or self.FEEDS_CONFIG_PATH
        config_data = self._safe_read_yaml(feeds_path, 5 * 1024 * 1024, 'feeds')
        if not config_data:
            return []

        feeds_section = config_data.get('feeds') if isinstance(config_data, dict) else None
        if not isinstance(feeds_section, dict):
            logger.warning(f"No valid feeds found in {feeds_path}")
            return []

        urls: List[str] = []
        for feed_slug, feed_cfg in feeds_section.items():
            if isinstance(feed_cfg, dict) and 'url' in feed_cfg:
                urls.append(str(feed_cfg['url']))
            elif isinstance(feed_cfg, str):
                urls.append(feed_cfg)
            else:
                logger.warning(f"Skipping invalid feed configuration for '{feed_slug}': {feed_cfg}")

        logger.info(f"Loaded {len(urls)} feed URLs from {feeds_path}")
        return urls

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "database_path": self.DATABASE_PATH,
            "request_timeout_ms": self.REQUEST_TIMEOUT_MS,
            "fetch_concurrency": self.FETCH_CONCURRENCY,
            "update_interval_minutes": self.UPDATE_INTERVAL_MINUTES,
            "retention_days": self.RETENTION_DAYS,
            "scheduler_run_immediately": self.SCHEDULER_RUN_IMMEDIATELY,
        }

# Global configuration instance
config = Config()
