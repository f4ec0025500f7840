# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import logging
import os
import re
import shutil
import sys
from collections.abc import Awaitable, Callable

from ..config import Config
from ..errors import CapabilityUnavailable, ProbeTimeout
from ..models import EngineCapability
from .probe import ProbeResult, run_probe


Runner = Callable[[list[str], float], Awaitable[ProbeResult]]

_VERSION_RE = re.compile(r"ffmpeg version (\S+)")


def platform_candidates(platform: str | None = None) -> list[str]:
    """Well-known install locations for the platform, then plain PATH lookup."""
    plat = platform or sys.platform
    if plat == "win32":
        return [
            "C:\\ffmpeg\\bin\\ffmpeg.exe",
            "C:\\Program Files\\ffmpeg\\bin\\ffmpeg.exe",
            "C:\\Program Files (x86)\\ffmpeg\\bin\\ffmpeg.exe",
            "ffmpeg",
        ]
    if plat == "darwin":
        return ["/usr/local/bin/ffmpeg", "/opt/homebrew/bin/ffmpeg", "ffmpeg"]
    return ["/usr/local/bin/ffmpeg", "/usr/bin/ffmpeg", "ffmpeg"]


def locate(candidate: str) -> str | None:
    """Explicit paths pass through; a bare command name is looked up on PATH."""
    if os.path.dirname(candidate):
        return candidate
    return shutil.which(candidate)


def bundled_ffmpeg_path() -> str | None:
    """Find the ffmpeg binary shipped with imageio-ffmpeg."""
    try:
        import imageio_ffmpeg  # type: ignore[import]  # imageio-ffmpeg has no type stubs
        return imageio_ffmpeg.get_ffmpeg_exe()
    except Exception as e:
        logging.getLogger("detector").warning(f"bundled ffmpeg unavailable: {e}")
        return None


def parse_version(output: str) -> str:
    m = _VERSION_RE.search(output)
    return m.group(1) if m else "unknown"


def parse_protocols(output: str) -> tuple[set[str], set[str]]:
    """Split `ffmpeg -protocols` output into (input, output) protocol names.

    Output without Input:/Output: headers is returned as both sets.
    """
    inputs: set[str] = set()
    outputs: set[str] = set()
    section: set[str] | None = None
    loose: set[str] = set()
    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            continue
        low = line.lower()
        if low.startswith("input:"):
            section = inputs
            continue
        if low.startswith("output:"):
            section = outputs
            continue
        if low.startswith("supported file protocols"):
            continue
        name = low.split()[0]
        (section if section is not None else loose).add(name)
    if not inputs and not outputs:
        return loose, loose
    return inputs, outputs


class CapabilityDetector:
    """Finds a usable encoding engine and whether it can push SRT.

    Probing runs once per process lifetime; concurrent detect() calls share the
    same probe. invalidate() forces the next detect() to probe again.
    """

    def __init__(
        self,
        candidates: list[str] | None = None,
        runner: Runner = run_probe,
        bundled: Callable[[], str | None] = bundled_ffmpeg_path,
        version_timeout: float | None = None,
        protocols_timeout: float | None = None,
    ):
        config = Config()
        self._candidates = candidates
        self._runner = runner
        self._bundled = bundled
        self.version_timeout = float(
            version_timeout if version_timeout is not None else config.get("engine.version_timeout_s", 3.0)
        )
        self.protocols_timeout = float(
            protocols_timeout if protocols_timeout is not None else config.get("engine.protocols_timeout_s", 3.0)
        )
        self._lock = asyncio.Lock()
        self._cached: EngineCapability | None = None
        self.logger = logging.getLogger("detector")

    @property
    def cached(self) -> EngineCapability | None:
        return self._cached

    def candidates(self) -> list[str]:
        """Ordered, de-duplicated candidate list."""
        if self._candidates is not None:
            ordered = list(self._candidates)
        else:
            config = Config()
            ordered = []
            override = config.get("engine.path", None)
            if override:
                ordered.append(str(override))
            ordered.extend(str(c) for c in config.get("engine.extra_candidates", []) or [])
            ordered.extend(platform_candidates())

        seen: set[str] = set()
        unique = []
        for cand in ordered:
            if cand not in seen:
                seen.add(cand)
                unique.append(cand)
        return unique

    def invalidate(self) -> None:
        self.logger.info("capability cache invalidated")
        self._cached = None

    async def detect(self) -> EngineCapability:
        """Return the cached capability, probing the engine on first use."""
        if self._cached is not None:
            return self._cached
        async with self._lock:
            if self._cached is None:
                self._cached = await self._probe()
            return self._cached

    async def _probe(self) -> EngineCapability:
        self.logger.info("detecting encoding engine...")
        tried: set[str] = set()
        for candidate in self.candidates():
            exe = locate(candidate)
            if exe is None:
                self.logger.debug(f"{candidate} not found on PATH")
                continue
            if exe in tried:
                continue
            tried.add(exe)
            version = await self._probe_version(exe)
            if version is None:
                continue
            supports_srt = await self._probe_srt(exe)
            self.logger.info(f"{exe} found version={version} srt={supports_srt}")
            return EngineCapability(
                executable_path=exe,
                version_string=version,
                supports_srt=supports_srt,
                is_system_installed=True,
            )

        bundled = self._bundled()
        if not bundled:
            raise CapabilityUnavailable("No encoding engine found (no system ffmpeg and no bundled binary)")

        version = await self._probe_version(bundled) or "unknown"
        self.logger.warning(f"no system ffmpeg found, using bundled {bundled} (no SRT support)")
        return EngineCapability(
            executable_path=bundled,
            version_string=version,
            supports_srt=False,
            is_system_installed=False,
        )

    async def _probe_version(self, exe: str) -> str | None:
        """Version string if ``exe -version`` succeeds, None otherwise."""
        try:
            result = await self._runner([exe, "-version"], self.version_timeout)
        except (OSError, ProbeTimeout) as e:
            # One candidate failing must not stop the scan
            self.logger.debug(f"{exe} not available: {e}")
            return None
        if not result.ok:
            self.logger.debug(f"{exe} -version exited with {result.returncode}")
            return None
        return parse_version(result.stdout)

    async def _probe_srt(self, exe: str) -> bool:
        try:
            result = await self._runner([exe, "-hide_banner", "-protocols"], self.protocols_timeout)
        except (OSError, ProbeTimeout) as e:
            self.logger.warning(f"{exe} -protocols failed: {e}")
            return False
        if not result.ok:
            return False
        _, outputs = parse_protocols(result.stdout)
        return "srt" in outputs
