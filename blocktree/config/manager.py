from __future__ import annotations

"""Configuration loading and access helpers.

This module centralises the tunable values of the editing core (pointer zone
ratios, column widths, canvas sizing, logging setup). It loads YAML files
packaged with *blocktree* and optionally merges them with user overrides.

Override directory, first match wins:
``$BLOCKTREE_CONFIG_DIR``
On Windows: ``%LOCALAPPDATA%\\BlockTree\\config\\*.yml``
On Unix: ``~/.blocktree/*.yml``

Loading never raises: a missing or invalid file is logged and its section
keeps whatever could be loaded.
"""

import importlib.resources as pkg_resources
import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

from blocktree.core.models import LayoutSettings

logger = logging.getLogger(__name__)

__all__ = ["ConfigManager"]


def _get_user_config_dir() -> Path:
    """Get the user configuration directory."""
    override = os.environ.get("BLOCKTREE_CONFIG_DIR")
    if override:
        return Path(override)
    if os.name == 'nt':  # Windows
        local_appdata = os.environ.get('LOCALAPPDATA')
        if local_appdata:
            return Path(local_appdata) / "BlockTree" / "config"
        return Path.home() / "AppData" / "Local" / "BlockTree" / "config"
    return Path.home() / ".blocktree"


class _Singleton(type):
    _instance: "ConfigManager" | None = None

    def __call__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super().__call__(*args, **kwargs)
        return cls._instance

    def reset(cls) -> None:
        """Forget the loaded instance so the next call reloads from disk."""
        cls._instance = None


class ConfigManager(metaclass=_Singleton):
    """Lazy-loads and exposes configuration sections as dictionaries."""

    _DEFAULT_FILENAMES = {
        "layout": "layout.yml",
        "logging": "logging.yml",
    }

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}
        self._ensure_loaded()

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def get_layout_config(self) -> Dict[str, Any]:
        return self._data.get("layout", {})

    def get_logging_config(self) -> Dict[str, Any]:
        return self._data.get("logging", {})

    def get_layout_settings(self) -> LayoutSettings:
        """Layout section as typed settings; defaults if the section is unusable."""
        try:
            return LayoutSettings.from_config(self.get_layout_config())
        except (TypeError, ValueError) as exc:
            logger.error("Invalid layout config, using defaults: %s", exc)
            return LayoutSettings()

    # ------------------------------------------------------------------
    # Internal loading logic
    # ------------------------------------------------------------------
    def _ensure_loaded(self) -> None:
        if self._data:
            return  # already loaded

        startup_summary = []
        user_config_dir = _get_user_config_dir()

        for key, filename in self._DEFAULT_FILENAMES.items():
            merged_cfg: Dict[str, Any] = {}
            status = "missing"

            # 1. load packaged default
            try:
                packaged = pkg_resources.files(__package__).joinpath(filename)
                with packaged.open("r", encoding="utf-8") as fh:
                    packaged_data = yaml.safe_load(fh) or {}
                merged_cfg.update(packaged_data)
                status = "loaded"
            except (FileNotFoundError, OSError):
                logger.error("Missing packaged config for %s (%s)", key, filename)
                status = "missing"
            except yaml.YAMLError as exc:
                logger.error("Invalid packaged config for %s (%s): %s", key, filename, exc)
                status = "invalid"

            # 2. load user overrides
            user_path = user_config_dir / filename
            if user_path.exists():
                try:
                    user_data = yaml.safe_load(user_path.read_text(encoding="utf-8")) or {}
                    if not isinstance(user_data, dict):
                        raise ValueError("top-level value must be a mapping")
                    merged_cfg.update(user_data)
                    if status == "loaded":
                        status = "loaded+overrides"
                except (OSError, ValueError, yaml.YAMLError) as exc:
                    logger.error("Could not parse user config %s: %s", user_path, exc)

            self._data[key] = merged_cfg
            startup_summary.append(f"{key}: {status}")

        logger.info("Config startup: %s", " | ".join(startup_summary))
