"""Shared pytest configuration and fixtures for the srtcast test suite."""

import asyncio
import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from srtcast.config import Config  # noqa: E402
from srtcast.models import (  # noqa: E402
    PROTOCOL_DOWNGRADED,
    CaptureSource,
    EncodingProfile,
    EngineCapability,
    InvocationPlan,
    PlanWarning,
    SourceKind,
)


# =============================================================================
# Fake engine scripts (run with the Python interpreter in place of ffmpeg)
# =============================================================================

CONNECTS_THEN_RUNS = (
    "import sys, time\n"
    "sys.stderr.write(\"Opening 'srt://example.com:9999' for writing\\n\")\n"
    "sys.stderr.flush()\n"
    "for i in range(3):\n"
    "    sys.stderr.write('frame=%5d fps= 30 q=28.0 size=  512kB time=00:00:0%d.00 bitrate=2000.0kbits/s speed=1x\\r' % (i * 30, i))\n"
    "    sys.stderr.flush()\n"
    "    time.sleep(0.05)\n"
    "time.sleep(30)\n"
)

FAILS_BEFORE_CONNECT = (
    "import sys, time\n"
    "sys.stderr.write('Connection failed: peer rejected\\n')\n"
    "sys.stderr.write('Connection established\\n')\n"
    "sys.stderr.flush()\n"
    "time.sleep(30)\n"
)

EXITS_WITH_CODE_3 = (
    "import sys\n"
    "sys.stderr.write('muxing stopped\\n')\n"
    "sys.stderr.flush()\n"
    "sys.exit(3)\n"
)

IGNORES_SIGTERM = (
    "import signal, sys, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "sys.stderr.write('Opening output\\n')\n"
    "sys.stderr.flush()\n"
    "time.sleep(30)\n"
)

FAILS_AND_IGNORES_SIGTERM = (
    "import signal, sys, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "sys.stderr.write('Error opening output srt://example.com:9999\\n')\n"
    "sys.stderr.flush()\n"
    "time.sleep(30)\n"
)

CONNECTS_THEN_EXITS_7 = (
    "import sys, time\n"
    "sys.stderr.write(\"Opening 'srt://example.com:9999' for writing\\n\")\n"
    "sys.stderr.flush()\n"
    "time.sleep(0.5)\n"
    "sys.stderr.write('Conversion failed!\\n')\n"
    "sys.stderr.flush()\n"
    "sys.exit(7)\n"
)

SILENT = "import time\ntime.sleep(30)\n"


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def reset_config():
    """Give every test a fresh copy of the default configuration."""
    Config.load(None)
    yield
    Config.load(None)


@pytest.fixture
def source() -> CaptureSource:
    return CaptureSource("win-1", "Terminal", SourceKind.WINDOW)


@pytest.fixture
def profile() -> EncodingProfile:
    return EncodingProfile()


@pytest.fixture
def srt_capability() -> EngineCapability:
    return EngineCapability("/usr/bin/ffmpeg", "6.1", supports_srt=True, is_system_installed=True)


@pytest.fixture
def plain_capability() -> EngineCapability:
    return EngineCapability("/usr/bin/ffmpeg", "4.4", supports_srt=False, is_system_installed=True)


def make_plan(script: str, downgraded: bool = False) -> InvocationPlan:
    """Plan whose command runs ``script`` with the current interpreter."""
    warnings = ()
    output_url = "srt://example.com:9999?mode=caller"
    if downgraded:
        warnings = (PlanWarning(PROTOCOL_DOWNGRADED, "no srt", output_url, "udp://example.com:9999"),)
        output_url = "udp://example.com:9999"
    return InvocationPlan(
        executable=sys.executable,
        args=("-c", script),
        output_url=output_url,
        requested_url="srt://example.com:9999?mode=caller",
        platform=sys.platform,
        source=CaptureSource("win-1", "Terminal"),
        profile=EncodingProfile(),
        warnings=warnings,
    )


async def wait_for_state(supervisor, state, timeout: float = 10.0) -> None:
    """Poll until the supervisor reaches ``state``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while supervisor.state != state:
        if loop.time() > deadline:
            raise AssertionError(f"state is {supervisor.state}, expected {state}")
        await asyncio.sleep(0.02)


def drain(subscription) -> list:
    """All events queued on a subscription so far."""
    events = []
    while True:
        event = subscription.get_nowait()
        if event is None:
            return events
        events.append(event)
