# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import contextlib
import logging
from dataclasses import dataclass

from ..errors import ProbeTimeout


@dataclass(frozen=True)
class ProbeResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_probe(args: list[str], timeout: float) -> ProbeResult:
    """Run a short-lived engine command and collect its output.

    Raises ProbeTimeout if it does not finish within ``timeout`` seconds (the
    child is killed), and OSError if it cannot be spawned at all.
    """
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        with contextlib.suppress(Exception):
            await proc.wait()
        raise ProbeTimeout(f"{args[0]} did not answer within {timeout:g}s", timeout_s=timeout) from None

    return ProbeResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
    )


# Diagnostics that mean the far end did not take the test push
_CHECK_FAILURE_MARKERS = ("Connection refused", "failed")


async def check_endpoint(executable: str, url: str, timeout: float = 10.0, runner=run_probe) -> bool:
    """Push a one second test pattern to ``url`` and report whether it was accepted."""
    args = [
        executable,
        "-hide_banner",
        "-f", "lavfi",
        "-i", "testsrc=duration=1:size=640x480:rate=30",
        "-c:v", "libx264",
        "-preset", "ultrafast",
        "-t", "1",
        "-f", "mpegts",
        url,
    ]
    logger = logging.getLogger("probe")
    try:
        result = await runner(args, timeout)
    except ProbeTimeout:
        logger.warning(f"endpoint check timed out after {timeout:g}s: {url}")
        return False
    except OSError as e:
        logger.warning(f"endpoint check could not start {executable}: {e}")
        return False

    failed = any(marker in result.stderr for marker in _CHECK_FAILURE_MARKERS)
    logger.info(f"endpoint check {url}: rc={result.returncode} failed_marker={failed}")
    return result.ok and not failed
