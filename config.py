#!/usr/bin/env python3
"""
Configuration management for FeedWatch.

This module centralizes logging setup, environment loading and validation,
and the channel list that is re-read at the start of every poll cycle.
"""

from os import environ, path, access, R_OK
from typing import Any, Dict, List, Optional, Tuple
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv

from errors import ConfigError
from models import Source

DEFAULT_FEED_URL_TEMPLATE = "https://www.youtube.com/feeds/videos.xml?channel_id={id}"


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    All modules should use get_logger() to create module-specific loggers
    that inherit this configuration.
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
        force=True
    )

    # Hosted platforms buffer stdout unless told otherwise
    sys.stdout.reconfigure(line_buffering=True)
    sys.stderr.reconfigure(line_buffering=True)

    getLogger("aiohttp.access").setLevel(WARNING)

    return getLogger("FeedWatch")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "fetcher", "watcher", "notifier")

    Returns:
        A logger named "FeedWatch.{name}"
    """
    return getLogger(f"FeedWatch.{name}")


logger = _setup_global_logger()


def _read_channels_document(file_path: str, max_size: int = 1024 * 1024) -> Any:
    """Read the channels file, raising ConfigError on anything unusable.

    YAML is a superset of JSON, so a plain ``channels.json`` array loads too.
    """
    if not path.isfile(file_path):
        raise ConfigError(f"Channels file not found at {file_path}")
    if not access(file_path, R_OK):
        raise ConfigError(f"No read permission for channels file at {file_path}")
    size = path.getsize(file_path)
    if size > max_size:
        raise ConfigError(f"Channels file too large: {size} bytes (limit: {max_size} bytes)")
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing channels file {file_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Error reading channels file {file_path}: {e}") from e


def _split_document(data: Any) -> Tuple[Any, Any]:
    """Return (channels, routes) from either a bare list or a mapping."""
    if data is None:
        return [], []
    if isinstance(data, list):
        return data, []
    if isinstance(data, dict):
        return data.get('channels') or [], data.get('routes') or []
    raise ConfigError(f"Channels file must be a list or a mapping, got {type(data).__name__}")


def parse_channels(raw_channels: Any, url_template: str = DEFAULT_FEED_URL_TEMPLATE) -> List[Source]:
    """Build Source records from raw entries, skipping the invalid ones."""
    if not isinstance(raw_channels, list):
        raise ConfigError("'channels' must be a list")

    sources: List[Source] = []
    for entry in raw_channels:
        if not isinstance(entry, dict):
            logger.warning(f"Skipping channel entry that is not a mapping: {entry!r}")
            continue
        channel_id = str(entry.get('id') or '').strip()
        name = str(entry.get('name') or '').strip()
        if not channel_id or not name:
            logger.warning(f"Skipping channel (missing id or name): {entry!r}")
            continue
        if not channel_id.startswith("UC") or len(channel_id) != 24:
            # Kept anyway; the feed endpoint will answer 404 for a bad id
            logger.warning(f"Channel '{name}': id '{channel_id}' does not look like UC + 22 characters")
        sources.append(Source(id=channel_id, name=name, url=url_template.format(id=channel_id)))
    return sources


def parse_routes(raw_routes: Any) -> List[Dict[str, str]]:
    """Validate fallback route definitions.

    Each route is a mapping with a ``name`` and either ``proxy`` (an HTTP
    proxy URL used for the same feed URL) or ``template`` (a URL pattern
    where ``{url}`` is the quoted feed URL and ``{id}`` the channel id).
    """
    if not isinstance(raw_routes, list):
        logger.warning("'routes' must be a list; ignoring fallback routes")
        return []

    routes: List[Dict[str, str]] = []
    for index, entry in enumerate(raw_routes):
        if not isinstance(entry, dict):
            logger.warning(f"Skipping fallback route #{index}: not a mapping")
            continue
        name = str(entry.get('name') or f"route-{index + 1}")
        proxy = entry.get('proxy')
        template = entry.get('template')
        if isinstance(proxy, str) and proxy.strip():
            routes.append({'name': name, 'proxy': proxy.strip()})
        elif isinstance(template, str) and ('{url}' in template or '{id}' in template):
            routes.append({'name': name, 'template': template.strip()})
        else:
            logger.warning(f"Skipping fallback route '{name}': needs a proxy URL or a template with {{url}} or {{id}}")
    return routes


class Config:
    """Configuration manager for FeedWatch.

    Values come from, in increasing priority:
    1. Environment variables
    2. .env file next to this module (if present)
    3. YAML secrets file (if SECRETS_FILE is set)

    The channel list lives in a separate YAML/JSON file and is reloaded by
    load_channels() at the start of every cycle, so channels can be added
    or removed without restarting the process.
    """

    def __init__(self):
        self._load_environment()
        self._validate_and_set_config()
        self.ROUTES: List[Dict[str, str]] = []

    def _load_environment(self):
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")
        self._load_secrets_file()

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

    def _validate_positive_float(self, env_var: str, default: float, min_val: float = 0.1) -> float:
        """Validate and parse a positive float environment variable."""
        try:
            value = float(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        base_dir = path.dirname(path.abspath(__file__))

        # Notification delivery
        self.RESEND_API_KEY = environ.get("RESEND_API_KEY", "")
        self.RESEND_API_URL = environ.get("RESEND_API_URL", "https://api.resend.com/emails")
        self.NOTIFY_EMAIL = environ.get("NOTIFY_EMAIL", "")
        self.FROM_EMAIL = environ.get("FROM_EMAIL", "onboarding@resend.dev")
        self.NOTIFY_TIMEOUT = self._validate_positive_int("NOTIFY_TIMEOUT", 20, 1)

        # Timing configuration
        self.CHECK_INTERVAL_MIN = self._validate_positive_int("CHECK_INTERVAL_MIN", 15, 5)
        self.FIRST_CHECK_DELAY_SECONDS = self._validate_positive_float("FIRST_CHECK_DELAY_SECONDS", 10.0, 0.0)
        self.COURTESY_DELAY_SECONDS = self._validate_positive_float("COURTESY_DELAY_SECONDS", 0.5, 0.0)

        # HTTP request configuration
        self.USER_AGENT = environ.get("USER_AGENT", "Mozilla/5.0 (compatible; FeedWatch/1.0)")
        self.FEED_URL_TEMPLATE = environ.get("FEED_URL_TEMPLATE", DEFAULT_FEED_URL_TEMPLATE)
        self.HTTP_TIMEOUT = self._validate_positive_int("HTTP_TIMEOUT", 15, 1)
        self.MAX_RETRIES = self._validate_positive_int("MAX_RETRIES", 3, 1)
        self.RETRY_DELAY_BASE = self._validate_positive_float("RETRY_DELAY_BASE", 3.0, 0.0)
        self.MAX_REDIRECTS = self._validate_positive_int("MAX_REDIRECTS", 5, 0)
        self.MIN_FEED_BODY_BYTES = self._validate_positive_int("MIN_FEED_BODY_BYTES", 200, 0)

        # State and bookkeeping
        self.SEEN_CAP_PER_SOURCE = self._validate_positive_int("SEEN_CAP_PER_SOURCE", 100, 1)
        self.ACTIVITY_LOG_SIZE = self._validate_positive_int("ACTIVITY_LOG_SIZE", 100, 1)

        # Status API and keep-alive
        self.HOST = environ.get("HOST", "0.0.0.0")
        self.PORT = self._validate_positive_int("PORT", 3000, 1)
        self.RENDER_EXTERNAL_URL = environ.get("RENDER_EXTERNAL_URL", "").rstrip("/")
        self.KEEPALIVE_MINUTES = self._validate_positive_int("KEEPALIVE_MINUTES", 10, 1)

        # File paths
        self.DATA_PATH = environ.get("DATA_PATH", path.join(base_dir, "data"))
        self.STATE_FILE = environ.get("STATE_FILE", path.join(self.DATA_PATH, "state.json"))
        self.CHANNELS_FILE = environ.get("CHANNELS_FILE", path.join(base_dir, "channels.yaml"))
        self.TEMPLATES_DIR = environ.get("TEMPLATES_DIR", path.join(base_dir, "templates"))

    def _load_secrets_file(self):
        """Load environment variable overrides from a YAML secrets file.

        Expected format is a top-level mapping, optionally nested under
        ``environment``:

        ```yaml
        RESEND_API_KEY: "re_..."
        NOTIFY_EMAIL: "me@example.com"
        ```
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            return

        try:
            if not path.isfile(secrets_file_path):
                logger.warning(f"Secrets file not found at {secrets_file_path}")
                return
            if not access(secrets_file_path, R_OK):
                logger.error(f"No read permission for secrets file at {secrets_file_path}")
                return

            with open(secrets_file_path, 'r') as f:
                secrets_config = yaml.safe_load(f)

            if not isinstance(secrets_config, dict):
                logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
                return
            env_vars = secrets_config.get('environment') if isinstance(secrets_config.get('environment'), dict) else secrets_config

            secrets_loaded = 0
            for key, value in env_vars.items():
                if isinstance(key, str) and value is not None:
                    environ[key] = str(value)
                    secrets_loaded += 1
                else:
                    logger.warning(f"Skipping invalid environment variable in secrets file: {key}")
            logger.info(f"Loaded {secrets_loaded} environment variables from secrets file {secrets_file_path}")

        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in secrets file {secrets_file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading secrets file {secrets_file_path}: {e}")

    def load_channels(self, file_path: Optional[str] = None) -> List[Source]:
        """Reload the channel list (and fallback routes) from disk.

        Never raises: an unreadable or invalid file degrades to an empty list.
        """
        file_path = file_path or self.CHANNELS_FILE
        try:
            raw_channels, raw_routes = _split_document(_read_channels_document(file_path))
            sources = parse_channels(raw_channels, self.FEED_URL_TEMPLATE)
            self.ROUTES = parse_routes(raw_routes)
        except ConfigError as e:
            logger.error(f"[Config] {e}")
            return []
        logger.info(f"[Config] {len(sources)} channel(s) loaded")
        return sources

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "channels_file": self.CHANNELS_FILE,
            "state_file": self.STATE_FILE,
            "check_interval_min": self.CHECK_INTERVAL_MIN,
            "http_timeout": self.HTTP_TIMEOUT,
            "max_retries": self.MAX_RETRIES,
            "seen_cap_per_source": self.SEEN_CAP_PER_SOURCE,
            "fallback_routes": [route['name'] for route in self.ROUTES],
            "has_resend_key": bool(self.RESEND_API_KEY),
            "notify_email_configured": bool(self.NOTIFY_EMAIL),
            "from_email": self.FROM_EMAIL,
            "keepalive_url": self.RENDER_EXTERNAL_URL or None,
        }


# Global configuration instance
config = Config()
