# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import json
import logging
from typing import Any

from aiohttp import web

from .. import __version__
from ..control.protocol import to_payload
from ..control.websocket import CONTROL_KEY, WebSocketControlProtocol, websocket_handler
from ..errors import ErrorKind, Result, ValidationError
from ..orchestrator import StreamingOrchestrator
from ..utils.fields import ControlFields


ORCHESTRATOR_KEY = web.AppKey("orchestrator", StreamingOrchestrator)

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.CAPABILITY_UNAVAILABLE: 503,
    ErrorKind.PROTOCOL_UNSUPPORTED: 422,
    ErrorKind.SESSION_BUSY: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.PROCESS_FAILURE: 500,
    ErrorKind.TIMEOUT: 504,
}


def result_response(result: Result) -> web.Response:
    """JSON response for a Result, with an HTTP status matching the error kind."""
    if result.ok:
        return web.json_response({"ok": True, "value": to_payload(result.value)})
    assert result.error is not None
    return web.json_response(result.to_dict(), status=_STATUS_BY_KIND.get(result.error.kind, 500))


async def read_json(request: web.Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Request body is not valid JSON: {e}") from None
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _orchestrator(request: web.Request) -> StreamingOrchestrator:
    return request.app[ORCHESTRATOR_KEY]


async def health_check_handler(request: web.Request) -> web.Response:
    """Simple health check endpoint."""
    return web.json_response({"status": "ok", "service": "srtcast", "version": __version__})


async def capability_handler(request: web.Request) -> web.Response:
    refresh = request.query.get("refresh", "").lower() in ("1", "true", "yes")
    return result_response(await _orchestrator(request).get_capability(refresh=refresh))


async def sources_handler(request: web.Request) -> web.Response:
    sources = _orchestrator(request).list_sources()
    return web.json_response({"sources": [s.to_dict() for s in sources]})


async def session_status_handler(request: web.Request) -> web.Response:
    return web.json_response(_orchestrator(request).get_session_status())


async def session_start_handler(request: web.Request) -> web.Response:
    try:
        params = await read_json(request)
        ControlFields.validate_fields(params, "start_session")
    except ValidationError as e:
        return result_response(Result.failure(e))

    result = await _orchestrator(request).start_session(
        params["source_id"],
        params.get("profile"),
        params["server"],
        stream_key=params.get("stream_key", "") or "",
        allow_fallback=params.get("allow_fallback"),
    )
    return result_response(result)


async def session_stop_handler(request: web.Request) -> web.Response:
    return result_response(await _orchestrator(request).stop_session())


async def endpoint_resolve_handler(request: web.Request) -> web.Response:
    try:
        params = await read_json(request)
        ControlFields.validate_fields(params, "resolve_endpoint")
    except ValidationError as e:
        return result_response(Result.failure(e))
    result = _orchestrator(request).resolve_endpoint(params["server"], params.get("stream_key", "") or "")
    return result_response(result)


async def endpoint_check_handler(request: web.Request) -> web.Response:
    try:
        params = await read_json(request)
        ControlFields.validate_fields(params, "check_endpoint")
    except ValidationError as e:
        return result_response(Result.failure(e))
    return result_response(await _orchestrator(request).check_endpoint(params["url"]))


async def catalog_handler(request: web.Request) -> web.Response:
    return web.json_response(_orchestrator(request).catalog.to_dict())


async def catalog_import_handler(request: web.Request) -> web.Response:
    """Replace saved profiles and servers with an exported catalog."""
    try:
        data = await read_json(request)
    except ValidationError as e:
        return result_response(Result.failure(e))

    catalog = _orchestrator(request).catalog
    problems = catalog.import_catalog(data)
    if problems:
        err = ValidationError("; ".join(problems), errors=[ValidationError(p) for p in problems])
        return result_response(Result.failure(err))
    logging.getLogger("server").info(
        f"imported {len(data['profiles'])} profiles and {len(data['srtServers'])} servers"
    )
    return result_response(Result.success(catalog.to_dict()))


def create_app(orchestrator: StreamingOrchestrator | None = None) -> web.Application:
    """Create and configure the HTTP/WebSocket application."""
    orchestrator = orchestrator or StreamingOrchestrator()

    app = web.Application()
    app[ORCHESTRATOR_KEY] = orchestrator
    app[CONTROL_KEY] = WebSocketControlProtocol(orchestrator)

    app.router.add_get('/control', websocket_handler)

    app.router.add_get('/api/system/health', health_check_handler)
    app.router.add_get('/api/capability', capability_handler)
    app.router.add_get('/api/sources', sources_handler)
    app.router.add_get('/api/session', session_status_handler)
    app.router.add_post('/api/session/start', session_start_handler)
    app.router.add_post('/api/session/stop', session_stop_handler)
    app.router.add_post('/api/endpoint/resolve', endpoint_resolve_handler)
    app.router.add_post('/api/endpoint/check', endpoint_check_handler)
    app.router.add_get('/api/catalog', catalog_handler)
    app.router.add_post('/api/catalog/import', catalog_import_handler)

    async def _shutdown(app: web.Application) -> None:
        await app[ORCHESTRATOR_KEY].shutdown()

    app.on_shutdown.append(_shutdown)
    return app


async def start_server(
    orchestrator: StreamingOrchestrator, host: str = "127.0.0.1", port: int = 8790
) -> web.AppRunner:
    """Start the HTTP/WebSocket server; returns the runner for cleanup."""
    app = create_app(orchestrator)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logging.getLogger('server').info(f"Server on http://{host}:{port}/ (WebSocket: /control, API: /api/)")

    return runner
