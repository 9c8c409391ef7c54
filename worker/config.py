"""Locate and read the optional JSON settings file."""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger("llamahost.settings")

CONFIG_DIR_NAME = "config"
DEFAULT_SETTINGS_FILE = "settings.json"


def settings_path() -> Path:
    """Return the settings file location.

    ``LLAMAHOST_SETTINGS_PATH`` wins outright; otherwise the file named by
    ``LLAMAHOST_SETTINGS_FILE`` is looked up in ``./config``, relative to the
    working directory like the install directory it configures.
    """
    explicit = os.getenv("LLAMAHOST_SETTINGS_PATH")
    if explicit:
        return Path(explicit).expanduser().absolute()
    file_name = os.getenv("LLAMAHOST_SETTINGS_FILE") or DEFAULT_SETTINGS_FILE
    return Path.cwd() / CONFIG_DIR_NAME / file_name


@lru_cache(maxsize=1)
def load_settings() -> Dict[str, Any]:
    """Return the settings file as a dict, or ``{}`` when absent or unusable."""
    path = settings_path()
    if not path.is_file():
        logger.debug("No settings file at %s; using environment and defaults", path)
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring settings file %s: expected a JSON object, got %s", path, type(data).__name__)
        return {}
    logger.debug("Loaded %s settings keys from %s", len(data), path)
    return data


__all__ = ["load_settings", "settings_path"]
