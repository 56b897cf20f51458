"""Settings file for the script orderer."""
from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Dict, Optional

from sql_script_orderer.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULTS: Dict[str, Any] = {
    "app": {
        "name": "SQL Script Orderer",
        "version": "1.0.0",
    },
    "database": {
        "driver": "ODBC Driver 17 for SQL Server",
        "connection_timeout": 30,
        "command_timeout": 300,
        "default_auth_type": "Windows",
    },
    "scripting": {
        "include_ddl": True,
        "include_data": False,
        "include_associations": False,
        "include_owner": False,
        "include_permissions": False,
        "behavior": "create",
        "filestream_column": True,
    },
    "logging": {
        "level": "INFO",
        "console_level": "WARNING",
        "log_dir": "logs",
    },
}


class Config:
    """JSON settings with defaults filled in for missing sections and keys."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_path: Path to the settings file. Defaults to
                ``config/settings.json`` in the project root.
        """
        if config_path is None:
            self.config_path = Path(__file__).parent.parent.parent / "config" / "settings.json"
        else:
            self.config_path = Path(config_path)

        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    loaded = json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Error loading config {self.config_path}: {e}. Using defaults.")
                loaded = {}
            self._config = self._merge_defaults(loaded if isinstance(loaded, dict) else {})
        else:
            self._config = copy.deepcopy(DEFAULTS)
            self._save_config()

    def _save_config(self) -> None:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(self._config, f, indent=2)

    @staticmethod
    def _merge_defaults(loaded: Dict[str, Any]) -> Dict[str, Any]:
        merged = copy.deepcopy(DEFAULTS)
        for section, values in loaded.items():
            if isinstance(values, dict) and isinstance(merged.get(section), dict):
                merged[section].update(values)
            else:
                merged[section] = values
        return merged

    def get(self, section: str, key: Optional[str] = None, default: Any = None) -> Any:
        """Get a section, or one key of a section.

        Args:
            section: Configuration section name
            key: Optional key within section. If None, returns entire section.
            default: Value returned when the section or key is missing
        """
        if section not in self._config:
            return default

        if key is None:
            return self._config[section]

        return self._config[section].get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """Set a value and write the file."""
        if section not in self._config:
            self._config[section] = {}

        self._config[section][key] = value
        self._save_config()

    def get_section(self, section: str) -> Dict[str, Any]:
        return self._config.get(section, {})

    def reload(self) -> None:
        self._load_config()
