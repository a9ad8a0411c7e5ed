"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from craftkit.exceptions import ConfigurationError
from craftkit.models.config import LauncherConfig

log = logging.getLogger(__name__)

SECTION = "craftkit"


def _to_ini(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(map(str, value))
    return str(value)


class ConfigManager:
    """Handles all operations related to the launcher's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: dict[str, Any] | None = None) -> LauncherConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.
        A missing file is created with default values.

        Args:
            cli_options: A dictionary of options provided via the command line.

        Returns:
            A validated LauncherConfig object.

        Raises:
            ConfigurationError: If the config file is invalid or validation fails.
        """
        if not self.config_file_path.is_file():
            log.info(
                f"Creating default configuration at [dim]{self.config_file_path}[/dim]"
            )
            self.save_config({})

        try:
            self._parser.read(self.config_file_path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"Error parsing configuration file: {e}") from e

        if not self._parser.has_section(SECTION):
            self._parser.add_section(SECTION)

        if self._migrate_if_needed():
            log.info(
                "[yellow]Configuration file was updated with new default values."
                "[/yellow]"
            )

        settings = self._get_config_as_dict()
        if cli_options:
            settings.update({k: v for k, v in cli_options.items() if v is not None})

        try:
            return LauncherConfig(
                **settings, config_path=str(self.config_file_path.parent)
            )
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_config(self, settings: dict[str, Any]) -> None:
        """
        Writes a complete configuration file: given settings first, model
        defaults for everything else.
        """
        config = configparser.ConfigParser(interpolation=None)
        config[SECTION] = {}
        defaults = LauncherConfig.model_construct()
        for key in sorted(LauncherConfig.get_ini_keys()):
            value = settings.get(key, getattr(defaults, key, None))
            if value is not None:
                config[SECTION][key] = _to_ini(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the config section, converting values to the model's types."""
        section = self._parser[SECTION]
        result: dict[str, Any] = {}
        try:
            for key, info in LauncherConfig.model_fields.items():
                if key not in section or key == "config_path":
                    continue
                if info.annotation is int:
                    result[key] = section.getint(key)
                elif info.annotation is float:
                    result[key] = section.getfloat(key)
                elif info.annotation is bool:
                    result[key] = section.getboolean(key)
                elif key == "retryable_statuses":
                    result[key] = [
                        int(s) for s in section.get(key, "").split(",") if s.strip()
                    ]
                else:
                    result[key] = section.get(key)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value in configuration file: {e}") from e
        return result

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = LauncherConfig.model_construct()
        section = self._parser[SECTION]
        needs_saving = False

        for key in sorted(LauncherConfig.get_ini_keys()):
            if key in section:
                continue
            section[key] = _to_ini(getattr(defaults, key))
            needs_saving = True
            log.debug(
                f"Migrating config: added missing key '{key}' with "
                f"value '{section[key]}'."
            )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving
