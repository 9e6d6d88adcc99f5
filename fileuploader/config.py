"""Configuration management for fileuploader"""

import json
import os
import tomllib
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Base directory for the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
ENV_FILE = BASE_DIR / ".env"
load_dotenv(ENV_FILE)

# Settings file paths
SETTINGS_FILE = BASE_DIR / "settings.json"
SETTINGS_DEFAULT_FILE = BASE_DIR / "settings.default.json"
PYPROJECT_FILE = BASE_DIR / "pyproject.toml"

# Environment variable names for configuration
ENV_QUEUE_DB_PATH = "FILEUPLOADER_QUEUE_DB_PATH"
ENV_LOG_DIRECTORY = "FILEUPLOADER_LOG_DIRECTORY"
ENV_MAX_WORKERS = "FILEUPLOADER_MAX_WORKERS"
ENV_REQUEST_TIMEOUT = "FILEUPLOADER_REQUEST_TIMEOUT"
ENV_RESCHEDULE_DELAY = "FILEUPLOADER_RESCHEDULE_DELAY"
ENV_AWS_PROFILE = "FILEUPLOADER_AWS_PROFILE"
ENV_AWS_REGION = "FILEUPLOADER_AWS_REGION"

# Keys that may be changed at runtime through the settings API
EDITABLE_KEYS = {
    "max_workers",
    "request_timeout",
    "reschedule_delay",
    "cleanup_shutdown_timeout",
    "aws_profile",
    "aws_region",
    "log_directory",
}


def get_package_version() -> str:
    """Get the package version from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("version", "0.0.0"))
    except Exception:
        return "0.0.0"


class Settings:
    """Manages application settings stored in JSON format."""

    _instance: "Settings | None" = None
    _settings: dict[str, Any]

    def __new__(cls) -> "Settings":
        """Singleton pattern to ensure only one settings instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_settings()
        return cls._instance

    def _load_settings(self) -> None:
        """Load settings from file, with environment variables taking precedence.

        Priority order (highest to lowest):
        1. Environment variables (from .env file or system)
        2. settings.json (user-saved settings)
        3. settings.default.json (template defaults)
        4. Hardcoded defaults
        """
        defaults: dict[str, Any] = {
            "queue_db_path": str(BASE_DIR / "upload_queue.db"),
            "log_directory": str(BASE_DIR / "logs"),
            "max_workers": 4,
            "request_timeout": 60.0,
            "reschedule_delay": 30.0,
            "cleanup_shutdown_timeout": 5.0,
            "aws_profile": "default",
            "aws_region": "us-west-2",
        }

        if SETTINGS_DEFAULT_FILE.exists():
            with open(SETTINGS_DEFAULT_FILE, encoding="utf-8") as f:
                defaults.update(json.load(f))

        if SETTINGS_FILE.exists():
            with open(SETTINGS_FILE, encoding="utf-8") as f:
                defaults.update(json.load(f))

        env_overrides = {
            "queue_db_path": os.environ.get(ENV_QUEUE_DB_PATH),
            "log_directory": os.environ.get(ENV_LOG_DIRECTORY),
            "max_workers": os.environ.get(ENV_MAX_WORKERS),
            "request_timeout": os.environ.get(ENV_REQUEST_TIMEOUT),
            "reschedule_delay": os.environ.get(ENV_RESCHEDULE_DELAY),
            "aws_profile": os.environ.get(ENV_AWS_PROFILE),
            "aws_region": os.environ.get(ENV_AWS_REGION),
        }

        # Only apply non-None environment values
        for key, value in env_overrides.items():
            if value is not None:
                defaults[key] = value

        self._settings = defaults

        # Save settings.json if it doesn't exist
        if not SETTINGS_FILE.exists():
            self._save_settings()

    def _save_settings(self) -> None:
        """Save current settings to file."""
        with open(SETTINGS_FILE, "w", encoding="utf-8") as f:
            json.dump(self._settings, f, indent=4)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value by key."""
        return self._settings.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a setting value and save to file."""
        self._settings[key] = value
        self._save_settings()

    def update(self, data: dict[str, Any]) -> None:
        """Update multiple settings at once."""
        self._settings.update(data)
        self._save_settings()

    def all(self) -> dict[str, Any]:
        """Get all settings as a dictionary."""
        return self._settings.copy()

    def reload(self) -> None:
        """Reload settings from file."""
        self._load_settings()

    @property
    def queue_db_path(self) -> Path:
        """Get the path of the durable upload queue database."""
        return Path(self._settings.get("queue_db_path", BASE_DIR / "upload_queue.db"))

    @property
    def log_directory(self) -> Path:
        """Get the JSONL log directory."""
        return Path(self._settings.get("log_directory", BASE_DIR / "logs"))

    @property
    def max_workers(self) -> int:
        """Get the number of concurrent transport workers."""
        return int(self._settings.get("max_workers", 4))

    @property
    def request_timeout(self) -> float:
        """Get the per-request transport timeout in seconds."""
        return float(self._settings.get("request_timeout", 60.0))

    @property
    def reschedule_delay(self) -> float:
        """Get the delay in seconds before a rescheduled job runs again."""
        return float(self._settings.get("reschedule_delay", 30.0))

    @property
    def cleanup_shutdown_timeout(self) -> float:
        """Get how long teardown waits for queued file deletions."""
        return float(self._settings.get("cleanup_shutdown_timeout", 5.0))

    @property
    def aws_profile(self) -> str:
        """Get the AWS profile name used for s3:// upload URLs."""
        return str(self._settings.get("aws_profile", "default"))

    @property
    def aws_region(self) -> str:
        """Get the AWS region used for s3:// upload URLs."""
        return str(self._settings.get("aws_region", "us-west-2"))


def get_settings() -> Settings:
    """Get the singleton Settings instance."""
    return Settings()
