"""Configuration file for the ``peergroups`` console script.

The file is JSON. Unknown keys are preserved so hand edits survive a save;
known keys that are missing or malformed fall back to their defaults.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".peergroups"
DEFAULT_CONFIG_FILE = "config.json"
CONFIG_ENV_VAR = "PEERGROUPS_CONFIG"
MAX_CONFIG_FILE_SIZE = 1024 * 1024

_PATH_KEYS = ("identity_path", "configdir")
_LIST_KEYS = ("banned_words", "banned_peers")
_BOOL_KEYS = ("auto_approve", "announce")


def get_default_config() -> dict[str, Any]:
    """Default settings, shared by every role.

    ``admin_secret`` and the two ban lists only matter when hosting.
    """
    return {
        "identity_path": str(DEFAULT_CONFIG_DIR / "identity"),
        "dest_name": "peergroups.group",
        "configdir": None,
        "nickname": "",
        "host_id": "",
        "admin_secret": "",
        "banned_words": [],
        "banned_peers": [],
        "auto_approve": False,
        "announce": True,
    }


def expand_path(path: str) -> str:
    """Expand ``~`` and return an absolute path."""
    return str(Path(path).expanduser().resolve())


def get_config_path() -> str:
    """Config file location: ``$PEERGROUPS_CONFIG`` or ``~/.peergroups/config.json``."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return expand_path(env_path)
    return str(DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE)


def _read_config_file(config_path: Path) -> dict[str, Any] | None:
    """Parse the file, or return None when it cannot be used."""
    try:
        size = config_path.stat().st_size
        if size > MAX_CONFIG_FILE_SIZE:
            logger.error("Config file too large: %d bytes (max %d)", size, MAX_CONFIG_FILE_SIZE)
            return None
        with open(config_path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.exception("Failed to load config from %s: %s", config_path, e)
        return None

    if not isinstance(data, dict):
        logger.error("Config file %s must contain a JSON object", config_path)
        return None
    return data


def _normalize(config: dict[str, Any]) -> dict[str, Any]:
    defaults = get_default_config()
    for key, value in defaults.items():
        config.setdefault(key, value)

    for key in _PATH_KEYS:
        if isinstance(config[key], str) and config[key]:
            config[key] = expand_path(config[key])

    for key in _LIST_KEYS:
        value = config[key]
        if not isinstance(value, list):
            logger.warning("Ignoring %s: expected a list", key)
            config[key] = []
        else:
            config[key] = [item for item in value if isinstance(item, str)]

    for key in _BOOL_KEYS:
        if not isinstance(config[key], bool):
            logger.warning("Ignoring %s: expected true or false", key)
            config[key] = defaults[key]

    if not isinstance(config["dest_name"], str) or "." not in config["dest_name"]:
        logger.warning("Ignoring dest_name %r: expected 'app.aspect'", config["dest_name"])
        config["dest_name"] = defaults["dest_name"]

    return config


def load_config() -> dict[str, Any]:
    """Load settings, creating the file with defaults on first run.

    Returns:
        Configuration dictionary; defaults when the file is unusable
    """
    config_path = Path(get_config_path())

    if not config_path.is_file():
        logger.info("Config file not found, creating default at %s", config_path)
        config = get_default_config()
        save_config(config)
        return config

    data = _read_config_file(config_path)
    if data is None:
        return get_default_config()

    logger.info("Loaded config from %s", config_path)
    return _normalize(data)


def save_config(config: dict[str, Any]) -> None:
    """Write settings as indented JSON. Failures are logged, not raised."""
    config_path = Path(get_config_path())

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)
    except OSError as e:
        logger.exception("Failed to save config to %s: %s", config_path, e)
        return
    logger.info("Saved config to %s", config_path)
