# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from typing import Any

from ..errors import OrchestratorError, Result, ValidationError
from ..orchestrator import StreamingOrchestrator
from ..session import SessionEvent, Subscription
from ..utils.fields import ControlFields


def to_payload(value: Any) -> Any:
    """Make a Result value JSON-serialisable."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [to_payload(v) for v in value]
    return value


class ControlSession:
    """Represents a client control session."""

    def __init__(self, client_id: str, client_ip: str, websocket=None):
        self.client_id = client_id
        self.client_ip = client_ip
        self.websocket = websocket
        self.device_id: str | None = None
        self.subscription: Subscription | None = None
        self.forward_task: asyncio.Task | None = None
        self.created_at = asyncio.get_running_loop().time()

    def __repr__(self):
        return f"ControlSession(id={self.client_id}, ip={self.client_ip}, device={self.device_id})"


class ControlProtocol(ABC):
    """Abstract base class for control protocols (WebSocket, HTTP, etc.).

    Requests map one-to-one onto orchestrator operations. Session events are
    forwarded to every client that completed the handshake.
    """

    def __init__(self, orchestrator: StreamingOrchestrator):
        self.orchestrator = orchestrator
        self.sessions: dict[str, ControlSession] = {}
        self.logger = logging.getLogger("protocol")
        self._handlers = {
            "start_session": self.handle_start_session,
            "stop_session": self.handle_stop_session,
            "status": self.handle_status,
            "resolve_endpoint": self.handle_resolve_endpoint,
            "capability": self.handle_capability,
            "ping": self.handle_ping,
        }

    @abstractmethod
    async def send_response(self, session: ControlSession, response: dict[str, Any]) -> bool:
        """Send a response back to the client. Returns True if successful."""
        pass

    @abstractmethod
    async def send_error(self, session: ControlSession, code: str, message: str) -> bool:
        """Send an error response to the client."""
        pass

    async def dispatch(self, session: ControlSession, params: dict[str, Any]) -> None:
        """Route one request to its handler; errors go back to the client."""
        msg_type = params.get("type")
        handler = self._handlers.get(msg_type)
        if handler is None:
            await self.send_error(session, "bad_type", f"unknown type {msg_type}")
            return
        try:
            await handler(session, params)
        except OrchestratorError as e:
            await self.send_error(session, e.kind.value, e.message)

    async def send_result(self, session: ControlSession, op: str, result: Result) -> bool:
        if result.ok:
            return await self.send_response(session, {"type": "ack", "op": op, "result": to_payload(result.value)})
        assert result.error is not None
        return await self.send_error(session, result.error.kind.value, result.error.message)

    async def handle_start_session(self, session: ControlSession, params: dict[str, Any]) -> None:
        """Handle start_session request."""
        ControlFields.validate_fields(params, "start_session")
        self.logger.info(f"start_session request: source={params['source_id']} from {session.client_id}")

        result = await self.orchestrator.start_session(
            params["source_id"],
            params.get("profile"),
            params["server"],
            stream_key=params.get("stream_key", "") or "",
            allow_fallback=params.get("allow_fallback"),
        )
        await self.send_result(session, "start_session", result)

    async def handle_stop_session(self, session: ControlSession, params: dict[str, Any]) -> None:
        self.logger.info(f"stop_session request from {session.client_id}")
        result = await self.orchestrator.stop_session()
        await self.send_result(session, "stop_session", result)

    async def handle_status(self, session: ControlSession, params: dict[str, Any]) -> None:
        await self.send_response(
            session, {"type": "status", "status": self.orchestrator.get_session_status()}
        )

    async def handle_resolve_endpoint(self, session: ControlSession, params: dict[str, Any]) -> None:
        ControlFields.validate_fields(params, "resolve_endpoint")
        result = self.orchestrator.resolve_endpoint(params["server"], params.get("stream_key", "") or "")
        if not result.ok and isinstance(result.error, ValidationError):
            await self.send_response(
                session,
                {"type": "error", "code": result.error.kind.value, "message": result.error.message,
                 "errors": [{"field": e.field, "message": e.message} for e in result.error.errors]},
            )
            return
        await self.send_result(session, "resolve_endpoint", result)

    async def handle_capability(self, session: ControlSession, params: dict[str, Any]) -> None:
        result = await self.orchestrator.get_capability(refresh=bool(params.get("refresh", False)))
        await self.send_result(session, "capability", result)

    async def handle_ping(self, session: ControlSession, params: dict[str, Any]) -> None:
        """Handle ping request."""
        await self.send_response(session, {"type": "pong", "t": params.get("t")})

    def start_event_forwarding(self, session: ControlSession) -> None:
        """Subscribe the client to session events."""
        session.subscription = self.orchestrator.subscribe()
        session.forward_task = asyncio.create_task(self._forward_events(session, session.subscription))

    async def _forward_events(self, session: ControlSession, subscription: Subscription) -> None:
        event: SessionEvent
        async for event in subscription:
            sent = await self.send_response(
                session,
                {
                    "type": "event",
                    "event": event.type.value,
                    "payload": event.payload,
                    "session_id": event.session_id,
                    "timestamp": event.timestamp,
                },
            )
            if not sent:
                break

    async def cleanup_session(self, session: ControlSession) -> None:
        """Drop the client's event subscription. A running stream is left alone."""
        if session.subscription is not None:
            session.subscription.close()
        task = session.forward_task
        if task and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.sessions.pop(session.client_id, None)
