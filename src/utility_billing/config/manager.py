"""YAML configuration: shipped defaults with user overrides merged on top."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from utility_billing.config.schema import AppConfig

logger = logging.getLogger(__name__)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested sections merge key by key."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping of config sections, got {type(data).__name__}")
    return data


class ConfigManager:
    """Owns the effective ``AppConfig`` and the user override file."""

    def __init__(
        self,
        defaults_path: Path | None = None,
        user_path: Path | None = None,
    ) -> None:
        self._defaults_path = defaults_path or Path("config.defaults.yaml")
        self._user_path = user_path or Path("config.yaml")
        self._config: AppConfig | None = None
        self._raw: dict[str, Any] = {}
        self._sources: list[Path] = []

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            raise RuntimeError("Config not loaded. Call load() first.")
        return self._config

    @property
    def sources(self) -> list[Path]:
        """Files that contributed to the loaded config, defaults first."""
        return list(self._sources)

    @property
    def raw(self) -> dict[str, Any]:
        return dict(self._raw)

    def load(self) -> AppConfig:
        sources = [p for p in (self._defaults_path, self._user_path) if p.exists()]
        merged = deep_merge(_read_yaml(self._defaults_path), _read_yaml(self._user_path))
        config = AppConfig.model_validate(merged)
        self._raw, self._config, self._sources = merged, config, sources
        logger.info(
            "Configuration loaded from %s",
            ", ".join(str(p) for p in sources) or "built-in defaults",
        )
        return config

    def save_user_config(self, updates: dict[str, Any]) -> AppConfig:
        """Merge ``updates`` into the user file and reload.

        The full result is validated first; an invalid update raises
        ``ValidationError`` and leaves the file untouched.
        """
        user = deep_merge(_read_yaml(self._user_path), updates)
        AppConfig.model_validate(deep_merge(_read_yaml(self._defaults_path), user))
        with open(self._user_path, "w") as f:
            yaml.safe_dump(user, f, default_flow_style=False, sort_keys=False)
        logger.info("Saved config overrides for %s to %s", ", ".join(sorted(updates)), self._user_path)
        return self.load()

    def to_json(self) -> str:
        return self.config.model_dump_json(indent=2)
