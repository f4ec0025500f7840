# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Named encoding profiles and SRT servers.

Persistence is somebody else's job: the catalog reads and writes through a
SettingsStore, which by default is the process configuration.
"""

import copy
from abc import ABC, abstractmethod
from typing import Any

from .config import Config
from .endpoint import validate_endpoint
from .errors import ValidationError
from .models import EncodingProfile, SrtMode, TransportEndpoint


QUALITY_PRESETS: dict[str, dict[str, Any]] = {
    "ultra-low": {
        "name": "Ultra Low (480p)",
        "resolution": "854x480",
        "bitrate": "1000k",
        "preset": "ultrafast",
        "profile": "baseline",
    },
    "low": {
        "name": "Low (720p)",
        "resolution": "1280x720",
        "bitrate": "2500k",
        "preset": "veryfast",
        "profile": "main",
    },
    "medium": {
        "name": "Medium (1080p)",
        "resolution": "1920x1080",
        "bitrate": "5000k",
        "preset": "veryfast",
        "profile": "high",
    },
    "high": {
        "name": "High (1080p)",
        "resolution": "1920x1080",
        "bitrate": "8000k",
        "preset": "fast",
        "profile": "high",
    },
    "ultra-high": {
        "name": "Ultra High (1080p)",
        "resolution": "1920x1080",
        "bitrate": "12000k",
        "preset": "medium",
        "profile": "high",
    },
}


class SettingsStore(ABC):
    """Key-value persistence for profiles and servers."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass


class ConfigSettingsStore(SettingsStore):
    """Store backed by the process-wide Config (not written back to disk)."""

    def get(self, key: str, default: Any = None) -> Any:
        return Config().get(key, default)

    def set(self, key: str, value: Any) -> None:
        Config().set(key, value)


class MemorySettingsStore(SettingsStore):
    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class ProfileCatalog:
    """Looks up saved profiles and servers by id."""

    def __init__(self, store: SettingsStore | None = None):
        self.store = store or ConfigSettingsStore()

    def get_profiles(self) -> list[dict[str, Any]]:
        return list(self.store.get("profiles", []) or [])

    def get_servers(self) -> list[dict[str, Any]]:
        return list(self.store.get("servers", []) or [])

    def save_profiles(self, profiles: list[dict[str, Any]]) -> None:
        self.store.set("profiles", list(profiles))

    def save_servers(self, servers: list[dict[str, Any]]) -> None:
        self.store.set("servers", list(servers))

    def get_profile(self, profile_id: str) -> EncodingProfile | None:
        """Saved profile with this id, else the quality preset of that name."""
        for entry in self.get_profiles():
            if entry.get("id") == profile_id:
                return EncodingProfile.from_dict(entry)
        preset = QUALITY_PRESETS.get(profile_id)
        if preset is not None:
            return EncodingProfile.from_dict(preset)
        return None

    def get_server(self, server_id: str) -> TransportEndpoint | None:
        for entry in self.get_servers():
            if entry.get("id") == server_id:
                return TransportEndpoint.from_dict(entry)
        return None

    @staticmethod
    def quality_presets() -> dict[str, dict[str, Any]]:
        return copy.deepcopy(QUALITY_PRESETS)

    @staticmethod
    def default_profile() -> EncodingProfile:
        return EncodingProfile(name="Default Profile")

    @staticmethod
    def default_server() -> TransportEndpoint:
        return TransportEndpoint(
            host="localhost",
            port=9999,
            mode=SrtMode.CALLER,
            latency_ms=120,
            max_bandwidth_kbps=10000,
            name="Local SRT Server",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "profiles": self.get_profiles(),
            "servers": [TransportEndpoint.from_dict(s).to_dict() for s in self.get_servers()],
            "presets": self.quality_presets(),
        }

    # -- import --------------------------------------------------------------

    def validate_import(self, data: Any) -> list[str]:
        """Check an exported catalog file; returns the problems found (empty if valid)."""
        if not isinstance(data, dict):
            return ["Invalid configuration file: expected an object"]

        errors = []
        if not data.get("version"):
            errors.append("Invalid configuration file: missing version")
        profiles = data.get("profiles")
        servers = data.get("srtServers")
        if not isinstance(profiles, list):
            errors.append("Invalid configuration file: profiles must be an array")
            profiles = []
        if not isinstance(servers, list):
            errors.append("Invalid configuration file: srtServers must be an array")
            servers = []

        for index, profile in enumerate(profiles, start=1):
            problems = self._profile_problems(profile)
            if problems:
                errors.append(f"Profile {index}: {', '.join(problems)}")

        for index, server in enumerate(servers, start=1):
            problems = self._server_problems(server)
            if problems:
                errors.append(f"SRT Server {index}: {', '.join(problems)}")

        return errors

    def import_catalog(self, data: Any) -> list[str]:
        """Replace saved profiles and servers with an exported catalog if it validates."""
        errors = self.validate_import(data)
        if not errors:
            self.save_profiles(data["profiles"])
            self.save_servers(data["srtServers"])
        return errors

    @staticmethod
    def _profile_problems(profile: Any) -> list[str]:
        if not isinstance(profile, dict):
            return ["Profile must be an object"]
        capture = profile.get("captureSettings") or {}
        encoding = profile.get("encodingSettings") or {}
        srt = profile.get("srtSettings") or {}

        problems = []
        if _blank(profile.get("name")):
            problems.append("Profile name is required")
        if _blank(capture.get("resolution", profile.get("resolution"))):
            problems.append("Resolution is required")
        if _blank(encoding.get("bitrate", profile.get("bitrate"))):
            problems.append("Bitrate is required")
        if _blank(srt.get("serverId", profile.get("serverId"))):
            problems.append("SRT server is required")
        if problems:
            return problems

        try:
            EncodingProfile.from_dict(profile)
        except ValidationError as e:
            problems.extend(err.message for err in (e.errors or [e]))
        return problems

    @staticmethod
    def _server_problems(server: Any) -> list[str]:
        if not isinstance(server, dict):
            return ["Server must be an object"]

        problems = []
        if _blank(server.get("name")):
            problems.append("Server name is required")
        problems.extend(err.message for err in validate_endpoint(TransportEndpoint.from_dict(server)))
        return problems
