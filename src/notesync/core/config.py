"""Configuration management for notesync.

This module handles loading and saving application configuration to/from
a JSON file. The config directory can be customized via CLI argument or
the NOTESYNC_CONFIG_DIR environment variable.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .validation import ValidationError

__all__ = ["Config", "DEFAULT_SERVER_URL"]

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://127.0.0.1:8787"

DEFAULT_SYNC_CONFIG: Dict[str, Any] = {
    "refresh_interval": 30,
    "probe_interval": 5,
    "conflict_window_seconds": 1.0,
    "propagate_remote_deletes": True,
}


class Config:
    """Manages application configuration stored in JSON format.

    Attributes:
        config_dir: Path to the configuration directory
        config_data: The loaded configuration
    """

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        """Initialize configuration manager.

        Args:
            config_dir: Custom config directory path. If None, uses
                $NOTESYNC_CONFIG_DIR or ~/.config/notesync/
        """
        if config_dir is None:
            env_dir = os.environ.get("NOTESYNC_CONFIG_DIR")
            config_dir = Path(env_dir) if env_dir else Path.home() / ".config" / "notesync"
        self.config_dir = Path(config_dir)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_data = self.load_config()

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.json"

    def _default_config(self) -> Dict[str, Any]:
        return {
            "database_file": str(self.config_dir / "notes.db"),
            "server_url": DEFAULT_SERVER_URL,
            "request_timeout": 10,
            "sync": copy.deepcopy(DEFAULT_SYNC_CONFIG),
            "server": {
                "host": "127.0.0.1",
                "port": 8787,
                "database_file": str(self.config_dir / "server.db"),
            },
        }

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file, creating defaults if missing.

        Missing keys are filled from the defaults so older config files keep
        working after new settings are added.
        """
        defaults = self._default_config()
        if not self.config_file.exists():
            self.save_config(defaults)
            return defaults

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Could not read {self.config_file}: {e}. Using defaults.")
            return defaults

        for key, value in defaults.items():
            if key not in loaded:
                loaded[key] = value
            elif isinstance(value, dict) and isinstance(loaded[key], dict):
                for sub_key, sub_value in value.items():
                    loaded[key].setdefault(sub_key, sub_value)
        return loaded

    def save_config(self, config: Dict[str, Any]) -> None:
        """Write configuration to the JSON file."""
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        return self.config_data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value and save to file."""
        self.config_data[key] = value
        self.save_config(self.config_data)

    def get_config_dir(self) -> Path:
        return self.config_dir

    def get_database_file(self) -> Path:
        return Path(self.get("database_file"))

    # ===== Remote Configuration =====

    def get_server_url(self) -> str:
        """Get the Remote Store base URL, honouring NOTESYNC_SERVER_URL."""
        url = os.environ.get("NOTESYNC_SERVER_URL") or self.get("server_url")
        return str(url).rstrip("/")

    def set_server_url(self, url: str) -> None:
        if not url.startswith(("http://", "https://")):
            raise ValidationError("server_url", "must start with http:// or https://")
        self.set("server_url", url.rstrip("/"))

    def get_request_timeout(self) -> float:
        return float(self.get("request_timeout", 10))

    def get_server_config(self) -> Dict[str, Any]:
        """Get settings for the reference server."""
        return self.config_data["server"]

    # ===== Sync Configuration =====

    def get_sync_config(self) -> Dict[str, Any]:
        return self.config_data["sync"]

    def _set_sync_value(self, key: str, value: Any) -> None:
        self.config_data["sync"][key] = value
        self.save_config(self.config_data)

    def get_refresh_interval(self) -> float:
        """Seconds between background refreshes while online."""
        return float(self.get_sync_config()["refresh_interval"])

    def get_probe_interval(self) -> float:
        """Seconds between connectivity checks."""
        return float(self.get_sync_config()["probe_interval"])

    def get_conflict_window(self) -> float:
        """Timestamp proximity, in seconds, that flags a conflicting edit."""
        return float(self.get_sync_config()["conflict_window_seconds"])

    def set_conflict_window(self, seconds: float) -> None:
        if seconds < 0:
            raise ValidationError("conflict_window_seconds", "cannot be negative")
        self._set_sync_value("conflict_window_seconds", float(seconds))

    def propagate_remote_deletes(self) -> bool:
        """Whether notes removed on the server are removed locally on refresh."""
        return bool(self.get_sync_config()["propagate_remote_deletes"])

    def set_propagate_remote_deletes(self, enabled: bool) -> None:
        self._set_sync_value("propagate_remote_deletes", bool(enabled))
