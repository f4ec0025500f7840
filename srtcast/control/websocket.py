# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import json
import logging
from typing import Any

from aiohttp import WSCloseCode, WSMsgType, web
from aiohttp.web_ws import WebSocketResponse

from .. import __version__
from .protocol import ControlProtocol, ControlSession


# Close code for clients that break the handshake
PROTOCOL_CLOSE = 4001
HEARTBEAT_S = 20.0


def is_benign_disconnect(exc: BaseException) -> bool:
    """Connection resets and the Windows 'network name no longer available' family."""
    if isinstance(exc, ConnectionResetError):
        return True
    return isinstance(exc, OSError) and getattr(exc, "winerror", None) in (64, 121)


def decode_message(raw: str) -> dict[str, Any]:
    """Parse one text frame; raises ValueError unless it is a JSON object."""
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("message must be a JSON object")
    return data


class WebSocketControlProtocol(ControlProtocol):
    """Control protocol spoken over an aiohttp WebSocket.

    A client must open with ``{"type": "hello"}``; after ``hello_ack`` it may
    send requests and receives every session event as it happens.
    """

    def __init__(self, orchestrator):
        super().__init__(orchestrator)
        self.ws_logger = logging.getLogger("websocket")

    async def send_response(self, session: ControlSession, response: dict[str, Any]) -> bool:
        ws: WebSocketResponse | None = session.websocket
        if ws is None or ws.closed:
            return False
        try:
            await ws.send_str(json.dumps(response, separators=(",", ":")))
        except (ConnectionResetError, OSError):
            return False
        return True

    async def send_error(self, session: ControlSession, code: str, message: str) -> bool:
        return await self.send_response(session, {"type": "error", "code": code, "message": message})

    async def serve(self, ws: WebSocketResponse, request: web.Request) -> None:
        """Run one client connection to completion."""
        session = ControlSession(f"ws-{id(ws)}", request.remote or "unknown", websocket=ws)
        try:
            if await self._accept(session):
                self.ws_logger.info(f"hello from {session.client_ip} dev={session.device_id}")
                self.start_event_forwarding(session)
                await self._serve_requests(session)
        except Exception as exc:
            if not is_benign_disconnect(exc):
                self.ws_logger.warning(f"websocket error from {session.client_ip}: {exc!r}")
            else:
                self.ws_logger.info(f"disconnect {session.client_ip} ({type(exc).__name__})")
        finally:
            await self.cleanup_session(session)

    async def _reject(self, session: ControlSession, message: str) -> bool:
        await self.send_error(session, "proto", message)
        if not session.websocket.closed:
            await session.websocket.close(code=PROTOCOL_CLOSE, message=b"protocol")
        return False

    async def _accept(self, session: ControlSession) -> bool:
        """Wait for hello and answer it; False if the client was turned away."""
        msg = await session.websocket.receive()
        if msg.type != WSMsgType.TEXT:
            return await self._reject(session, "expected text message")
        try:
            hello = decode_message(msg.data)
        except ValueError as e:
            return await self._reject(session, f"invalid hello: {e}")
        if hello.get("type") != "hello":
            return await self._reject(session, "expect 'hello' first")

        session.device_id = hello.get("device_id", "unknown")
        self.sessions[session.client_id] = session
        await self.send_response(session, {
            "type": "hello_ack",
            "server_version": f"srtcast/{__version__}",
            "status": self.orchestrator.get_session_status(),
        })
        return True

    async def _serve_requests(self, session: ControlSession) -> None:
        ws = session.websocket
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._on_text(session, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    self.ws_logger.warning(f"WebSocket error from {session.client_ip}: {ws.exception()}")
                    break
        except asyncio.TimeoutError:
            self.ws_logger.info(f"no traffic from {session.client_ip}, closing")
            await ws.close(code=WSCloseCode.GOING_AWAY)
        self.ws_logger.info(f"connection from {session.client_ip} closed")

    async def _on_text(self, session: ControlSession, raw: str) -> None:
        try:
            request = decode_message(raw)
        except ValueError as e:
            await self.send_error(session, "bad_request", str(e))
            return
        self.ws_logger.debug(f"{session.client_ip} -> {request.get('type')}")
        try:
            await self.dispatch(session, request)
        except (KeyError, TypeError, ValueError) as e:
            await self.send_error(session, "bad_request", str(e))


CONTROL_KEY = web.AppKey("control", WebSocketControlProtocol)


async def websocket_handler(request: web.Request) -> WebSocketResponse:
    """Upgrade /control requests and hand them to the app's control protocol."""
    ws = WebSocketResponse(heartbeat=HEARTBEAT_S, autoping=True)
    await ws.prepare(request)
    logging.getLogger("websocket").info(f"WebSocket connection from {request.remote or 'unknown'}")

    await request.app[CONTROL_KEY].serve(ws, request)
    return ws
