"""Tests for SessionSupervisor, driving real child processes."""

import asyncio
import sys

import pytest

from conftest import (
    CONNECTS_THEN_EXITS_7,
    CONNECTS_THEN_RUNS,
    EXITS_WITH_CODE_3,
    FAILS_AND_IGNORES_SIGTERM,
    FAILS_BEFORE_CONNECT,
    IGNORES_SIGTERM,
    SILENT,
    drain,
    make_plan,
    wait_for_state,
)
from srtcast.errors import ErrorKind, ProcessFailure
from srtcast.session import EventBus, EventType, SessionState, SessionSupervisor


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def supervisor(bus):
    return SessionSupervisor(bus, stop_grace=3.0, kill_wait=2.0)


class TestSupervisorStart:
    """Starting sessions."""

    @pytest.mark.asyncio
    async def test_connects_and_stops(self, supervisor, bus):
        events = bus.subscribe()

        result = await supervisor.start(make_plan(CONNECTS_THEN_RUNS))
        assert result.ok
        assert result.value["state"] == "awaiting_connection"

        await wait_for_state(supervisor, SessionState.STREAMING)

        stopped = await supervisor.stop()
        assert stopped.ok
        assert supervisor.state == SessionState.STOPPED

        types = [e.type for e in drain(events)]
        assert types[0] == EventType.STARTED
        assert EventType.CONNECTED in types
        assert types[-1] == EventType.ENDED
        assert types.index(EventType.STARTED) < types.index(EventType.CONNECTED)

    @pytest.mark.asyncio
    async def test_progress_lines_update_stats(self, supervisor):
        await supervisor.start(make_plan(CONNECTS_THEN_RUNS))
        await wait_for_state(supervisor, SessionState.STREAMING)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + 5
        while supervisor.session.stats.get("frame") != "60" and loop.time() < deadline:
            await asyncio.sleep(0.02)

        assert supervisor.session.stats["frame"] == "60"
        assert supervisor.session.stats["bitrate"] == "2000.0kbits/s"
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_second_start_is_busy_and_spawns_once(self, bus):
        spawned = []

        async def counting_spawn(*cmd, **kwargs):
            spawned.append(cmd)
            return await asyncio.create_subprocess_exec(*cmd, **kwargs)

        supervisor = SessionSupervisor(bus, spawn=counting_spawn, stop_grace=3.0)
        first, second = await asyncio.gather(
            supervisor.start(make_plan(SILENT)),
            supervisor.start(make_plan(SILENT)),
        )

        assert first.ok
        assert not second.ok
        assert second.kind == ErrorKind.SESSION_BUSY
        assert len(spawned) == 1
        assert supervisor.state == SessionState.AWAITING_CONNECTION

        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_downgraded_plan_refused_without_fallback(self, bus):
        spawned = []

        async def counting_spawn(*cmd, **kwargs):
            spawned.append(cmd)
            return await asyncio.create_subprocess_exec(*cmd, **kwargs)

        supervisor = SessionSupervisor(bus, spawn=counting_spawn)
        events = bus.subscribe()

        result = await supervisor.start(make_plan(SILENT, downgraded=True))

        assert result.kind == ErrorKind.PROTOCOL_UNSUPPORTED
        assert spawned == []
        assert supervisor.session is None
        assert [e.type for e in drain(events)] == [EventType.WARNING, EventType.ERROR]

    @pytest.mark.asyncio
    async def test_downgraded_plan_runs_with_fallback(self, supervisor):
        result = await supervisor.start(make_plan(SILENT, downgraded=True), allow_fallback=True)
        assert result.ok
        assert result.value["output_url"] == "udp://example.com:9999"
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_spawn_failure_errors_session(self, bus):
        async def broken_spawn(*cmd, **kwargs):
            raise FileNotFoundError(2, "No such file or directory", cmd[0])

        supervisor = SessionSupervisor(bus, spawn=broken_spawn)
        result = await supervisor.start(make_plan(SILENT))

        assert result.kind == ErrorKind.PROCESS_FAILURE
        assert supervisor.state == SessionState.ERRORED

    @pytest.mark.asyncio
    async def test_new_session_after_terminal(self, supervisor):
        await supervisor.start(make_plan(EXITS_WITH_CODE_3))
        await supervisor.wait_closed(timeout=10)
        first_id = supervisor.session.id

        result = await supervisor.start(make_plan(SILENT))
        assert result.ok
        assert supervisor.session.id != first_id
        await supervisor.stop()


class TestSupervisorFailures:
    """Failure markers and unexpected exits."""

    @pytest.mark.asyncio
    async def test_failure_marker_before_connect(self, supervisor, bus):
        events = bus.subscribe()

        await supervisor.start(make_plan(FAILS_BEFORE_CONNECT))
        state = await supervisor.wait_closed(timeout=10)

        assert state == SessionState.ERRORED
        seen = drain(events)
        assert EventType.CONNECTED not in [e.type for e in seen]
        errors = [e for e in seen if e.type == EventType.ERROR]
        assert len(errors) == 1
        assert "Connection failed" in errors[0].payload["message"]
        assert supervisor.session.error.last_line.startswith("Connection failed")

    @pytest.mark.asyncio
    async def test_unexpected_exit_reports_code(self, supervisor, bus):
        events = bus.subscribe()

        await supervisor.start(make_plan(EXITS_WITH_CODE_3))
        state = await supervisor.wait_closed(timeout=10)

        assert state == SessionState.ERRORED
        error = supervisor.session.error
        assert error.kind == ErrorKind.PROCESS_FAILURE
        assert error.exit_code == 3
        assert error.last_line == "muxing stopped"

        seen = drain(events)
        assert seen[-1].type == EventType.ENDED
        assert seen[-1].payload == {"state": "errored", "exit_code": 3}
        assert any(e.type == EventType.LOG and e.payload == "muxing stopped" for e in seen)

    @pytest.mark.asyncio
    async def test_exit_while_streaming_reports_code(self, supervisor, bus):
        events = bus.subscribe()

        await supervisor.start(make_plan(CONNECTS_THEN_EXITS_7))
        await wait_for_state(supervisor, SessionState.STREAMING)
        state = await supervisor.wait_closed(timeout=10)

        assert state == SessionState.ERRORED
        error = supervisor.session.error
        assert error.kind == ErrorKind.PROCESS_FAILURE
        assert error.exit_code == 7
        assert error.last_line == "Conversion failed!"

        types = [e.type for e in drain(events)]
        assert types.index(EventType.CONNECTED) < types.index(EventType.ERROR) < types.index(EventType.ENDED)

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="SIGTERM cannot be ignored on Windows")
    async def test_next_start_waits_for_failed_engine_to_exit(self, bus):
        supervisor = SessionSupervisor(bus, stop_grace=0.5, kill_wait=2.0)
        await supervisor.start(make_plan(FAILS_AND_IGNORES_SIGTERM))
        await wait_for_state(supervisor, SessionState.ERRORED)
        failed = supervisor.session

        result = await supervisor.start(make_plan(SILENT))

        assert result.ok
        assert failed.closed
        assert failed.process.returncode is not None
        assert supervisor.session is not failed
        assert failed.state == SessionState.ERRORED
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_start_busy_while_failed_engine_cannot_be_reaped(self, bus):
        supervisor = SessionSupervisor(bus, stop_grace=0.1, kill_wait=0.1)
        await supervisor.start(make_plan(SILENT))
        stuck = supervisor.session
        # Errored, but the process is still counted as alive
        supervisor._fail(stuck, ProcessFailure("Engine reported failure: Error"))

        result = await supervisor.start(make_plan(SILENT))

        assert result.kind == ErrorKind.SESSION_BUSY
        assert supervisor.session is stuck

        stuck.process.kill()
        await supervisor.wait_closed(timeout=10)


class TestSupervisorStop:
    """Stopping sessions."""

    @pytest.mark.asyncio
    async def test_stop_without_session(self, supervisor):
        result = await supervisor.stop()
        assert result.kind == ErrorKind.INVALID_TRANSITION

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, supervisor):
        await supervisor.start(make_plan(SILENT))
        first = await supervisor.stop()
        second = await supervisor.stop()

        assert first.ok
        assert second.ok
        assert supervisor.state == SessionState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_after_error_is_invalid(self, supervisor):
        await supervisor.start(make_plan(EXITS_WITH_CODE_3))
        await supervisor.wait_closed(timeout=10)

        result = await supervisor.stop()
        assert result.kind == ErrorKind.INVALID_TRANSITION
        assert supervisor.state == SessionState.ERRORED

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="SIGTERM cannot be ignored on Windows")
    async def test_stop_kills_after_grace(self, bus):
        supervisor = SessionSupervisor(bus, stop_grace=0.5, kill_wait=2.0)
        await supervisor.start(make_plan(IGNORES_SIGTERM))
        await wait_for_state(supervisor, SessionState.STREAMING)

        result = await supervisor.stop()

        assert result.ok
        assert supervisor.state == SessionState.STOPPED
        assert supervisor.session.process.returncode is not None

    @pytest.mark.asyncio
    async def test_shutdown_stops_live_session(self, supervisor):
        await supervisor.start(make_plan(SILENT))
        await supervisor.shutdown()
        assert supervisor.state == SessionState.STOPPED

    @pytest.mark.asyncio
    async def test_status_snapshot(self, supervisor):
        assert supervisor.status()["state"] == "idle"

        await supervisor.start(make_plan(SILENT))
        status = supervisor.status()

        assert status["state"] == "awaiting_connection"
        assert status["source"]["id"] == "win-1"
        assert status["profile"]["resolution"] == "1920x1080"
        assert status["session"]["pid"] is not None
        await supervisor.stop()
