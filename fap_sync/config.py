"""Configuration management for FAP Sync."""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

from platformdirs import user_config_dir, user_data_dir, user_log_dir

__all__ = [
    "Config",
    "SyncSettings",
    "BackendSettings",
    "StorageKeys",
    "setup_logging",
    "DEFAULT_BACKEND_URL",
    "QUEUE_TTL_MINUTES",
]

logger = logging.getLogger(__name__)

APP_NAME = "FAP Sync"
APP_AUTHOR = "FAP"

# Backend defaults
DEFAULT_BACKEND_URL = "http://127.0.0.1:54321"
ENV_BACKEND_URL = "FAP_BACKEND_URL"
ENV_BACKEND_KEY = "FAP_BACKEND_KEY"

# Sync settings
DEFAULT_SYNC_INTERVAL = 300  # seconds
MIN_SYNC_INTERVAL = 30
DEFAULT_MAX_SYNC_ATTEMPTS = 5
QUEUE_TTL_MINUTES = 1440  # 24 hours
CACHE_TTL_MINUTES = 30
DEFAULT_REQUEST_TIMEOUT = 30  # seconds


@dataclass(frozen=True)
class StorageKeys:
    """Well-known keys in the local key/value store."""

    user_data: str = "user_data"
    savings_cache: str = "savings_cache"
    loans_cache: str = "loans_cache"
    meetings_cache: str = "meetings_cache"
    attendance_cache: str = "attendance_cache"
    statements_cache: str = "statements_cache"
    sync_status: str = "sync_status"
    last_sync: str = "last_sync"
    sync_attempts: str = "sync_attempts"
    dead_letter: str = "dead_letter_cache"

    def offline_caches(self) -> list[str]:
        """Keys wiped by clear_offline_data()."""
        return [
            self.savings_cache,
            self.loans_cache,
            self.meetings_cache,
            self.attendance_cache,
            self.statements_cache,
        ]


@dataclass
class SyncSettings:
    """Sync configuration."""

    interval_seconds: int = DEFAULT_SYNC_INTERVAL
    max_sync_attempts: int = DEFAULT_MAX_SYNC_ATTEMPTS  # passes before dead-lettering
    queue_ttl_minutes: int = QUEUE_TTL_MINUTES
    cache_ttl_minutes: int = CACHE_TTL_MINUTES
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT


@dataclass
class BackendSettings:
    """Hosted backend connection settings."""

    url: str = DEFAULT_BACKEND_URL
    api_key: str = ""

    @property
    def rest_url(self) -> str:
        return f"{self.url.rstrip('/')}/rest/v1"

    @property
    def auth_url(self) -> str:
        return f"{self.url.rstrip('/')}/auth/v1"


@dataclass
class Config:
    """Main configuration object.

    Built once at startup and handed to every component that needs it.
    """

    backend: BackendSettings = field(default_factory=BackendSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    keys: StorageKeys = field(default_factory=StorageKeys)
    store_path: Optional[str] = None
    debug_mode: bool = False

    @classmethod
    def get_config_dir(cls) -> Path:
        """Get the configuration directory path."""
        return Path(user_config_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_data_dir(cls) -> Path:
        """Get the data directory path (for the SQLite store)."""
        return Path(user_data_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_log_dir(cls) -> Path:
        """Get the log directory path."""
        return Path(user_log_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_config_file(cls) -> Path:
        """Get the config file path."""
        return cls.get_config_dir() / "config.json"

    def get_store_path(self) -> Path:
        """Location of the local key/value store."""
        if self.store_path:
            return Path(self.store_path)
        return self.get_data_dir() / "local_store.db"

    @classmethod
    def load(cls, config_file: Optional[Path] = None) -> "Config":
        """Load config from file, or return defaults.

        Backend URL and key can be overridden from the environment.
        """
        config_file = config_file or cls.get_config_file()
        config = cls()
        if config_file.exists():
            try:
                with open(config_file, "r") as f:
                    data = json.load(f)
                config = cls._from_dict(data)
            except Exception as e:
                logger.warning(f"Failed to load config: {e}, using defaults")

        env_url = os.getenv(ENV_BACKEND_URL)
        if env_url:
            config.backend.url = env_url
        env_key = os.getenv(ENV_BACKEND_KEY)
        if env_key:
            config.backend.api_key = env_key
        return config

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary, ignoring unknown keys."""
        backend_data = data.pop("backend", {}) or {}
        sync_data = data.pop("sync", {}) or {}
        # Store keys are fixed; a saved "keys" section is ignored.
        data.pop("keys", None)

        sync = SyncSettings(
            **{k: v for k, v in sync_data.items() if k in SyncSettings.__dataclass_fields__}
        )
        sync.interval_seconds = max(MIN_SYNC_INTERVAL, sync.interval_seconds)
        sync.max_sync_attempts = max(1, sync.max_sync_attempts)

        return cls(
            backend=BackendSettings(
                **{
                    k: v
                    for k, v in backend_data.items()
                    if k in BackendSettings.__dataclass_fields__
                }
            ),
            sync=sync,
            **{k: v for k, v in data.items() if k in ("store_path", "debug_mode")},
        )

    def save(self, config_file: Optional[Path] = None) -> None:
        """Save config to file."""
        config_file = config_file or self.get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        data.pop("keys")
        with open(config_file, "w") as f:
            json.dump(data, f, indent=2)
        logger.info(f"Config saved to {config_file}")


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    log_dir = Config.get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "fap-sync.log"

    level = logging.DEBUG if debug else logging.INFO
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(),
        ],
    )

    # Reduce noise from libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
