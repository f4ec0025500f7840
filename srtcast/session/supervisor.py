# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import codecs
import contextlib
import logging
import time
import uuid
from enum import Enum
from typing import Any

from ..config import Config
from ..errors import (
    InvalidTransition,
    OrchestratorError,
    ProbeTimeout,
    ProcessFailure,
    ProtocolUnsupported,
    Result,
    SessionBusy,
)
from ..models import InvocationPlan
from .classifier import DiagnosticClassifier, LineKind, split_lines
from .events import EventBus, EventType


class SessionState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    AWAITING_CONNECTION = "awaiting_connection"
    STREAMING = "streaming"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERRORED = "errored"


TERMINAL_STATES = frozenset({SessionState.STOPPED, SessionState.ERRORED})

_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.STARTING, SessionState.ERRORED}),
    SessionState.STARTING: frozenset(
        {SessionState.AWAITING_CONNECTION, SessionState.STREAMING, SessionState.STOPPING, SessionState.ERRORED}
    ),
    SessionState.AWAITING_CONNECTION: frozenset(
        {SessionState.STREAMING, SessionState.STOPPING, SessionState.ERRORED}
    ),
    SessionState.STREAMING: frozenset({SessionState.STOPPING, SessionState.ERRORED}),
    SessionState.STOPPING: frozenset({SessionState.STOPPED, SessionState.ERRORED}),
    SessionState.STOPPED: frozenset(),
    SessionState.ERRORED: frozenset(),
}

_READ_CHUNK = 4096


class StreamingSession:
    """One engine run. Created on start, never restarted in place."""

    def __init__(self, plan: InvocationPlan):
        self.id = uuid.uuid4().hex[:12]
        self.plan = plan
        self.state = SessionState.IDLE
        self.process: asyncio.subprocess.Process | None = None
        self.monitor_task: asyncio.Task | None = None
        self.started_at: float | None = None
        self.last_activity_at: float | None = None
        self.exit_code: int | None = None
        self.error: OrchestratorError | None = None
        self.last_line: str | None = None
        self.stats: dict[str, Any] = {}
        self._closed = asyncio.Event()

    def __repr__(self):
        return f"StreamingSession(id={self.id}, state={self.state.value})"

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def transition(self, new_state: SessionState) -> SessionState:
        """Move to ``new_state``; raises InvalidTransition if the move is not allowed."""
        old = self.state
        if new_state not in _TRANSITIONS[old]:
            raise InvalidTransition(
                f"Cannot go from {old.value} to {new_state.value}",
                {"session_id": self.id, "state": old.value},
            )
        self.state = new_state
        logging.getLogger("session").debug(f"{self.id}: {old.value} -> {new_state.value}")
        return old

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def mark_closed(self) -> None:
        self._closed.set()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "source": self.plan.source.to_dict(),
            "profile": self.plan.profile.to_dict(),
            "output_url": self.plan.output_url,
            "requested_url": self.plan.requested_url,
            "downgraded": self.plan.downgraded,
            "pid": self.process.pid if self.process else None,
            "started_at": self.started_at,
            "last_activity_at": self.last_activity_at,
            "exit_code": self.exit_code,
            "error": self.error.to_dict() if self.error else None,
            "stats": dict(self.stats),
        }


class SessionSupervisor:
    """Owns the only streaming session and its engine process.

    start() and stop() are serialised by a lock, and a new session is only
    spawned once the previous engine process has been reaped, so at most one
    engine runs at a time. A background monitor task reads the engine's diagnostic
    stream, drives the state machine in line order and reaps the process.
    No exception escapes start() or stop(); outcomes come back as Results and
    failures also go out on the event bus.
    """

    def __init__(
        self,
        bus: EventBus,
        classifier: DiagnosticClassifier | None = None,
        spawn=None,
        stop_grace: float | None = None,
        kill_wait: float | None = None,
    ):
        config = Config()
        self.bus = bus
        self.classifier = classifier or DiagnosticClassifier.from_config(config)
        self._spawn = spawn or asyncio.create_subprocess_exec
        self.stop_grace = float(stop_grace if stop_grace is not None else config.get("session.stop_grace_s", 5.0))
        self.kill_wait = float(kill_wait if kill_wait is not None else config.get("session.kill_wait_s", 2.0))
        self.log_engine_output = bool(config.get("log.engine_output", False))
        self._lock = asyncio.Lock()
        self._session: StreamingSession | None = None
        self._tasks: set[asyncio.Task] = set()
        self.logger = logging.getLogger("session")

    @property
    def session(self) -> StreamingSession | None:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state if self._session else SessionState.IDLE

    def status(self) -> dict[str, Any]:
        session = self._session
        if session is None:
            return {"state": SessionState.IDLE.value, "source": None, "profile": None, "session": None}
        return {
            "state": session.state.value,
            "source": session.plan.source.to_dict(),
            "profile": session.plan.profile.to_dict(),
            "session": session.to_dict(),
        }

    async def start(self, plan: InvocationPlan, allow_fallback: bool = False) -> Result:
        """Launch the engine for ``plan`` as the one active session."""
        async with self._lock:
            current = self._session
            if current is not None and current.is_terminal and not current.closed:
                # A failed engine is still being reaped
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(current.wait_closed(), timeout=self.stop_grace + self.kill_wait)
            if current is not None and not current.closed:
                err = SessionBusy(
                    f"Session {current.id} is still {current.state.value}",
                    {"session_id": current.id, "state": current.state.value},
                )
                self.logger.warning(err.message)
                self.bus.emit(EventType.ERROR, err.to_dict(), current.id)
                return Result.failure(err)

            for warning in plan.warnings:
                self.logger.warning(f"{warning.kind}: {warning.detail}")
                self.bus.emit(EventType.WARNING, warning.to_dict())
            if plan.downgraded and not allow_fallback:
                err = ProtocolUnsupported(
                    f"SRT requested for {plan.requested_url} but {plan.executable} cannot push SRT "
                    f"and fallback was declined",
                    {"requested_url": plan.requested_url},
                )
                self.logger.warning(err.message)
                self.bus.emit(EventType.ERROR, err.to_dict())
                return Result.failure(err)

            session = StreamingSession(plan)
            self._session = session
            session.transition(SessionState.STARTING)
            self.logger.info(
                f"start {session.id}: src={plan.source.id} out={plan.output_url} "
                f"size={plan.profile.resolution} fps={plan.profile.frame_rate} bitrate={plan.profile.bitrate_kbps}k"
            )
            self.logger.debug(f"{session.id} command: {' '.join(plan.command)}")

            try:
                process = await self._spawn(
                    *plan.command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
            except (OSError, ValueError) as e:
                err = ProcessFailure(f"Could not start {plan.executable}: {e}")
                self._fail(session, err)
                session.mark_closed()
                return Result.failure(err)

            session.process = process
            session.started_at = session.last_activity_at = time.time()
            self.bus.emit(
                EventType.STARTED,
                {"pid": process.pid, "output_url": plan.output_url, "source": plan.source.to_dict()},
                session.id,
            )
            session.transition(SessionState.AWAITING_CONNECTION)
            session.monitor_task = asyncio.create_task(self._monitor(session))
            return Result.success(session.to_dict())

    async def stop(self) -> Result:
        """Stop the active session: terminate, wait out the grace period, then kill."""
        async with self._lock:
            session = self._session
            if session is None or session.state == SessionState.IDLE:
                err = InvalidTransition("No active session to stop")
                return Result.failure(err)
            if session.state in (SessionState.STOPPING, SessionState.STOPPED):
                return Result.success(session.to_dict())
            if session.state == SessionState.ERRORED:
                err = InvalidTransition(
                    f"Session {session.id} already ended in error", {"session_id": session.id, "state": "errored"}
                )
                return Result.failure(err)

            session.transition(SessionState.STOPPING)
            self.logger.info(f"stopping {session.id}")
            self._signal(session, kill=False)

            try:
                await asyncio.wait_for(session.wait_closed(), timeout=self.stop_grace)
            except asyncio.TimeoutError:
                self.logger.warning(f"{session.id} did not exit within {self.stop_grace:g}s, killing")
                self._signal(session, kill=True)
                try:
                    await asyncio.wait_for(session.wait_closed(), timeout=self.kill_wait)
                except asyncio.TimeoutError:
                    err = ProbeTimeout(f"Engine for session {session.id} did not exit after kill", self.kill_wait)
                    await self._abandon(session, err)
                    return Result.failure(err)

            if session.state == SessionState.STOPPED:
                return Result.success(session.to_dict())
            return Result.failure(session.error or ProcessFailure("Session did not stop cleanly"))

    async def wait_closed(self, timeout: float | None = None) -> SessionState:
        """Wait until the current session has fully ended (process reaped)."""
        session = self._session
        if session is None:
            return SessionState.IDLE
        await asyncio.wait_for(session.wait_closed(), timeout=timeout)
        return session.state

    async def shutdown(self) -> None:
        """Stop whatever is running; used when the service exits."""
        session = self._session
        if session is not None and not session.is_terminal:
            await self.stop()
        elif session is not None and not session.closed:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(session.wait_closed(), timeout=self.stop_grace + self.kill_wait)

    # -- monitor -------------------------------------------------------------

    async def _monitor(self, session: StreamingSession) -> None:
        process = session.process
        assert process is not None
        try:
            if process.stderr is not None:
                await self._read_diagnostics(session, process.stderr)
            exit_code = await process.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"{session.id} monitor error: {e!r}")
            self._fail(session, ProcessFailure(f"Lost track of engine process: {e}", last_line=session.last_line))
            self._signal(session, kill=True)
            exit_code = await process.wait()
        self._on_exit(session, exit_code)

    async def _read_diagnostics(self, session: StreamingSession, stream: asyncio.StreamReader) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            pending += decoder.decode(chunk)
            lines, pending = split_lines(pending)
            for line in lines:
                self._handle_line(session, line)
        pending += decoder.decode(b"", final=True)
        if pending.strip():
            self._handle_line(session, pending)

    def _handle_line(self, session: StreamingSession, raw: str) -> None:
        line = raw.strip()
        if not line:
            return
        session.last_activity_at = time.time()
        session.last_line = line

        engine_logger = logging.getLogger("engine")
        if self.log_engine_output:
            engine_logger.info(f"{session.id}: {line}")
        else:
            engine_logger.debug(f"{session.id}: {line}")
        self.bus.emit(EventType.LOG, line, session.id)

        kind = self.classifier.classify(line)
        if session.is_terminal or session.state == SessionState.STOPPING:
            return

        if kind is LineKind.FAILURE:
            err = ProcessFailure(f"Engine reported failure: {line}", last_line=line)
            self._fail(session, err)
            self._signal(session, kill=False)
            task = asyncio.create_task(self._reap(session))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        elif kind is LineKind.CONNECTED:
            if session.state in (SessionState.STARTING, SessionState.AWAITING_CONNECTION):
                session.transition(SessionState.STREAMING)
                self.logger.info(f"{session.id} connected: {session.plan.output_url}")
                self.bus.emit(EventType.CONNECTED, {"output_url": session.plan.output_url}, session.id)
        elif kind is LineKind.PROGRESS:
            session.stats.update(self.classifier.progress(line))

    def _on_exit(self, session: StreamingSession, exit_code: int | None) -> None:
        session.exit_code = exit_code
        if session.state == SessionState.STOPPING:
            session.transition(SessionState.STOPPED)
            self.logger.info(f"{session.id} stopped (exit code {exit_code})")
        elif not session.is_terminal:
            err = ProcessFailure(
                f"Engine exited unexpectedly with code {exit_code}",
                exit_code=exit_code,
                last_line=session.last_line,
            )
            self._fail(session, err)
        elif isinstance(session.error, ProcessFailure) and session.error.exit_code is None:
            session.error.exit_code = exit_code
            session.error.detail["exit_code"] = exit_code

        self.bus.emit(EventType.ENDED, {"state": session.state.value, "exit_code": exit_code}, session.id)
        session.mark_closed()

    # -- helpers -------------------------------------------------------------

    def _fail(self, session: StreamingSession, err: OrchestratorError) -> None:
        if session.is_terminal:
            return
        session.error = err
        session.transition(SessionState.ERRORED)
        self.logger.error(f"{session.id} errored: {err.message}")
        self.bus.emit(EventType.ERROR, err.to_dict(), session.id)

    def _signal(self, session: StreamingSession, kill: bool) -> None:
        process = session.process
        if process is None or process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            if kill:
                process.kill()
            else:
                process.terminate()

    async def _reap(self, session: StreamingSession) -> None:
        """Make sure a failed session's process goes away."""
        try:
            await asyncio.wait_for(session.wait_closed(), timeout=self.stop_grace)
        except asyncio.TimeoutError:
            self.logger.warning(f"{session.id} still running after failure, killing")
            self._signal(session, kill=True)

    async def _abandon(self, session: StreamingSession, err: OrchestratorError) -> None:
        self.logger.error(f"{session.id}: {err.message}")
        self._fail(session, err)
        task = session.monitor_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.bus.emit(EventType.ENDED, {"state": session.state.value, "exit_code": None}, session.id)
        session.mark_closed()
