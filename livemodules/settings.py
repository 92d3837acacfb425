"""Settings manager for livemodules settings.yaml files.

Manages three-scope settings system:
- User global (~/.livemodules/settings.yaml)
- Project (.livemodules/settings.yaml)
- Local (.livemodules/settings.local.yaml)

Later scopes win. Environment variables (LIVEMODULES_LOG_LEVEL,
LIVEMODULES_LOG_PATH, LIVEMODULES_LOAD_TIMEOUT) override all files.
"""

import logging
import os
from pathlib import Path
from typing import Any
from typing import Literal

import yaml
from pydantic import BaseModel
from pydantic import Field
from pydantic import ValidationError

logger = logging.getLogger(__name__)

Scope = Literal["user", "project", "local"]

ENV_OVERRIDES = {
    "LIVEMODULES_LOG_LEVEL": "log_level",
    "LIVEMODULES_LOG_PATH": "log_path",
    "LIVEMODULES_LOAD_TIMEOUT": "load_timeout",
}


class LiveModulesSettings(BaseModel):
    """Effective settings of one module system environment."""

    base_url: str | None = Field(default=None, description="Url that relative module ids resolve against")
    package_base_dirs: list[str] = Field(
        default_factory=list, description="Collection directories: <dir>/<name>/<version>/package.json"
    )
    individual_package_dirs: list[str] = Field(default_factory=list, description="Single package directories")
    dev_package_dirs: list[str] = Field(default_factory=list, description="Packages under development")
    load_timeout: float = Field(default=1.0, gt=0, description="Seconds to wait for load confirmation")
    log_path: str | None = Field(default=None, description="JSONL log file")
    log_level: str = Field(default="INFO", description="Root log level")


def deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dicts (overlay takes precedence).

    Nested dicts merge recursively; every other value, lists included,
    is replaced by the overlay's.
    """
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class SettingsManager:
    """Manages settings across user/project/local scopes."""

    def __init__(self, settings_dir: Path | None = None, user_settings_file: Path | None = None):
        """Initialize settings manager with standard paths.

        Args:
            settings_dir: Base directory for project/local settings (for testing).
                          If None, uses .livemodules in current directory.
            user_settings_file: Override for the user scope file (for testing).
        """
        if settings_dir is None:
            settings_dir = Path(".livemodules")

        self.user_settings_file = user_settings_file or Path.home() / ".livemodules" / "settings.yaml"
        self.project_settings_file = settings_dir / "settings.yaml"
        self.local_settings_file = settings_dir / "settings.local.yaml"

    def scope_file(self, scope: Scope) -> Path:
        return {
            "user": self.user_settings_file,
            "project": self.project_settings_file,
            "local": self.local_settings_file,
        }[scope]

    def get_merged_settings(self) -> dict[str, Any]:
        """Merge all scopes, user first and local last.

        Returns:
            Merged settings dict
        """
        merged: dict[str, Any] = {}
        for path in (self.user_settings_file, self.project_settings_file, self.local_settings_file):
            data = self._read_settings(path)
            if data:
                merged = deep_merge(merged, data)
        return merged

    def load(self, **overrides: Any) -> LiveModulesSettings:
        """Build effective settings from the scope files, environment and ``overrides``.

        Raises:
            ValueError: If the merged settings do not validate
        """
        data = self.get_merged_settings()
        for env_name, key in ENV_OVERRIDES.items():
            if env_name in os.environ:
                data[key] = os.environ[env_name]
        data = deep_merge(data, {k: v for k, v in overrides.items() if v is not None})
        try:
            return LiveModulesSettings.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"Invalid livemodules settings: {e}") from e

    def set_value(self, scope: Scope, key: str, value: Any) -> None:
        """Write ``value`` under a dotted ``key`` into one scope file.

        Args:
            scope: Which settings file to update
            key: Dotted key, e.g. ``load_timeout``
            value: Value to store
        """
        updates: dict[str, Any] = {}
        node = updates
        parts = key.split(".")
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
        self._update_settings(self.scope_file(scope), updates)
        logger.info(f"Set {key} in {scope} settings")

    def _read_settings(self, path: Path) -> dict[str, Any] | None:
        """Read settings from YAML file.

        Args:
            path: Path to settings file

        Returns:
            Settings dict or None if file doesn't exist or can't be parsed
        """
        if not path.exists():
            return None

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to read settings from {path}: {e}")
            return None
        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring settings in {path}: expected a mapping")
            return None
        return data

    def _write_settings(self, path: Path, settings: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(path, "w") as f:
                yaml.dump(settings, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            logger.error(f"Failed to write settings to {path}: {e}")
            raise

    def _update_settings(self, path: Path, updates: dict[str, Any]) -> None:
        existing = self._read_settings(path) or {}
        self._write_settings(path, deep_merge(existing, updates))
