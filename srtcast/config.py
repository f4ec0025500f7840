# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, ClassVar

import tomllib
import yaml


DEFAULT_CONFIG: dict[str, Any] = {
    "engine": {
        "path": None,  # explicit ffmpeg path, probed before the platform list
        "extra_candidates": [],
        "version_timeout_s": 3.0,
        "protocols_timeout_s": 3.0,
        "check_timeout_s": 10.0,  # endpoint test push
    },
    "session": {
        # Downgrade srt:// to udp:// when the engine lacks SRT
        "allow_protocol_fallback": True,
        "stop_grace_s": 5.0,
        "kill_wait_s": 2.0,
        "connected_markers": ["Connection established", "Opening"],
        "failure_markers": ["Connection failed", "Error"],
    },
    "capture": {
        "x11_display": ":0.0",
        "avfoundation_device": "2",  # screen index in avfoundation's device list
        "gdigrab_input": "desktop",
    },
    "events": {
        "queue_size": 1024,  # per subscriber, oldest dropped when full
    },
    "log": {
        "level": "info",
        "engine_output": False,  # log engine stderr lines at info instead of debug
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8790,
    },
    # Capture sources known to the registry, besides the virtual preview
    "sources": [],
    "profiles": [],
    "servers": [
        {
            "id": "default-test-server",
            "name": "Test SRT Server",
            "description": "Local test server for development",
            "host": "localhost",
            "port": 9999,
            "mode": "caller",
            "latency": 120,
            "maxbw": "10000k",
        },
    ],
}

# Used when --config is not given
CONFIG_ENV_VAR = "SRTCAST_CONFIG"


def _read_yaml(path: Path) -> Any:
    with path.open(encoding="utf-8") as f:
        return yaml.safe_load(f)


def _read_toml(path: Path) -> Any:
    with path.open("rb") as f:
        return tomllib.load(f)


def _read_json(path: Path) -> Any:
    with path.open(encoding="utf-8") as f:
        return json.load(f)


_READERS = {
    ".yaml": _read_yaml,
    ".yml": _read_yaml,
    ".toml": _read_toml,
    ".json": _read_json,
}


def load_config_file(path: str) -> dict[str, Any]:
    """Read overrides from a YAML, TOML or JSON file.

    A missing or unreadable file yields no overrides; the service then runs on
    the built-in defaults.
    """
    logger = logging.getLogger("config")
    file_path = Path(path).expanduser()

    reader = _READERS.get(file_path.suffix.lower())
    if reader is None:
        logger.warning(f"Unknown config extension: {file_path.suffix}")
        return {}
    if not file_path.exists():
        logger.warning(f"Config file {file_path} not found, using defaults")
        return {}

    try:
        data = reader(file_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load {file_path}: {e}")
        return {}

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {file_path}: top level must be a mapping")
        return {}
    logger.info(f"loaded overrides from {file_path}")
    return data


def deep_update(dst: dict[str, Any], src: dict[str, Any]) -> dict[str, Any]:
    """Merge ``src`` into ``dst``; nested mappings merge, everything else replaces."""
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            deep_update(dst[k], v)
        else:
            dst[k] = v
    return dst


def load_config(path: str | None = None) -> dict[str, Any]:
    """Defaults merged with the file at ``path`` (or $SRTCAST_CONFIG)."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if path:
        deep_update(cfg, load_config_file(path))
    return cfg


class Config:
    """Process-wide configuration singleton with dotted-key access."""

    _instance: ClassVar["Config | None"] = None
    _config: ClassVar[dict[str, Any]] = copy.deepcopy(DEFAULT_CONFIG)

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def load(cls, path: str | None = None) -> None:
        """Replace the active configuration with defaults plus ``path``."""
        cls._config = load_config(path)

    @classmethod
    def get(cls, key: str | None = None, default: Any = KeyError) -> Any:
        """Look up 'section.name'; raises KeyError unless a default is given."""
        if key is None:
            return cls._config

        node: Any = cls._config
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                if default is KeyError:
                    raise KeyError(f"Configuration key not found: {key}")
                return default
            node = node[part]
        return node

    @classmethod
    def set(cls, key: str, value: Any) -> None:
        """Set 'section.name', creating intermediate sections."""
        *parents, leaf = key.split(".")
        node = cls._config
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
