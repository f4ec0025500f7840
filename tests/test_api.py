"""Tests for the aiohttp HTTP API and WebSocket control endpoint."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from srtcast.api.server import create_app
from srtcast.catalog import MemorySettingsStore, ProfileCatalog
from srtcast.errors import CapabilityUnavailable
from srtcast.orchestrator import StreamingOrchestrator
from srtcast.session import EventBus, EventType, SessionSupervisor
from srtcast.sources import StaticSourceRegistry


def make_app(capability=None, error=None):
    detector = MagicMock()
    detector.detect = AsyncMock(return_value=capability, side_effect=error)
    spawn = AsyncMock(side_effect=AssertionError("no engine should be spawned in API tests"))
    bus = EventBus()
    orchestrator = StreamingOrchestrator(
        sources=StaticSourceRegistry([]),
        catalog=ProfileCatalog(MemorySettingsStore()),
        detector=detector,
        bus=bus,
        supervisor=SessionSupervisor(bus, spawn=spawn),
        platform="linux",
    )
    return create_app(orchestrator), orchestrator


class TestHttpApi:
    """JSON endpoints."""

    @pytest.mark.asyncio
    async def test_health(self):
        app, _ = make_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/api/system/health")
            assert resp.status == 200
            assert (await resp.json())["status"] == "ok"

    @pytest.mark.asyncio
    async def test_capability(self, plain_capability):
        app, orchestrator = make_app(plain_capability)
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/api/capability?refresh=1")
            body = await resp.json()

        assert resp.status == 200
        assert body["value"]["supports_srt"] is False
        assert body["value"]["message"].startswith("SRT not supported")
        orchestrator.detector.invalidate.assert_called_once()

    @pytest.mark.asyncio
    async def test_capability_unavailable(self):
        app, _ = make_app(error=CapabilityUnavailable("no ffmpeg"))
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/api/capability")
            body = await resp.json()

        assert resp.status == 503
        assert body == {"ok": False, "error": {"kind": "capability_unavailable", "message": "no ffmpeg"}}

    @pytest.mark.asyncio
    async def test_sources_and_catalog(self):
        app, _ = make_app()
        async with TestClient(TestServer(app)) as client:
            sources = await (await client.get("/api/sources")).json()
            catalog = await (await client.get("/api/catalog")).json()

        assert [s["id"] for s in sources["sources"]] == ["virtual-preview"]
        assert "medium" in catalog["presets"]

    @pytest.mark.asyncio
    async def test_catalog_import(self):
        app, orchestrator = make_app()
        server = {"id": "s9", "name": "Studio", "host": "studio.example.com", "port": 7001, "mode": "listener"}
        async with TestClient(TestServer(app)) as client:
            bad = await client.post("/api/catalog/import", json={"profiles": [], "srtServers": [dict(server, port=0)]})
            good = await client.post(
                "/api/catalog/import", json={"version": "1.0", "profiles": [], "srtServers": [server]}
            )
            bad_body, good_body = await bad.json(), await good.json()

        assert bad.status == 400
        messages = [e["message"] for e in bad_body["error"]["detail"]["errors"]]
        assert messages == [
            "Invalid configuration file: missing version",
            "SRT Server 1: Valid port number is required (1-65535)",
        ]
        assert good.status == 200
        assert [s["id"] for s in good_body["value"]["servers"]] == ["s9"]
        assert orchestrator.catalog.get_server("s9").port == 7001

    @pytest.mark.asyncio
    async def test_resolve_endpoint(self):
        app, _ = make_app()
        async with TestClient(TestServer(app)) as client:
            ok = await client.post("/api/endpoint/resolve", json={"server": {"host": "h", "port": 9999}})
            bad = await client.post("/api/endpoint/resolve", json={"server": {"host": "h", "port": 0}})
            ok_body, bad_body = await ok.json(), await bad.json()

        assert ok.status == 200
        assert ok_body["value"] == "srt://h:9999?mode=caller&latency=120"
        assert bad.status == 400
        assert bad_body["error"]["detail"]["errors"][0]["field"] == "port"

    @pytest.mark.asyncio
    async def test_start_requires_fields(self):
        app, _ = make_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/api/session/start", json={"server": "s1"})
            body = await resp.json()

        assert resp.status == 400
        assert body["error"]["detail"]["field"] == "source_id"

    @pytest.mark.asyncio
    async def test_start_rejects_non_json(self):
        app, _ = make_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/api/session/start", data="not json")
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_stop_without_session(self):
        app, _ = make_app()
        async with TestClient(TestServer(app)) as client:
            resp = await client.post("/api/session/stop")
            body = await resp.json()
            status = await (await client.get("/api/session")).json()

        assert resp.status == 409
        assert body["error"]["kind"] == "invalid_transition"
        assert status["state"] == "idle"


class TestWebSocketControl:
    """Control protocol over /control."""

    @pytest.mark.asyncio
    async def test_handshake_and_ping(self):
        app, _ = make_app()
        async with TestClient(TestServer(app)) as client:
            ws = await client.ws_connect("/control")
            await ws.send_str(json.dumps({"type": "hello", "device_id": "panel-1"}))
            ack = await ws.receive_json(timeout=5)

            await ws.send_str(json.dumps({"type": "ping", "t": 42}))
            pong = await ws.receive_json(timeout=5)
            await ws.close()

        assert ack["type"] == "hello_ack"
        assert ack["status"]["state"] == "idle"
        assert pong == {"type": "pong", "t": 42}

    @pytest.mark.asyncio
    async def test_hello_required_first(self):
        app, _ = make_app()
        async with TestClient(TestServer(app)) as client:
            ws = await client.ws_connect("/control")
            await ws.send_str(json.dumps({"type": "ping"}))
            reply = await ws.receive_json(timeout=5)
            await ws.close()

        assert reply["type"] == "error"
        assert reply["code"] == "proto"

    @pytest.mark.asyncio
    async def test_errors_and_events(self):
        app, orchestrator = make_app()
        async with TestClient(TestServer(app)) as client:
            ws = await client.ws_connect("/control")
            await ws.send_str(json.dumps({"type": "hello"}))
            await ws.receive_json(timeout=5)

            await ws.send_str(json.dumps({"type": "launch"}))
            unknown = await ws.receive_json(timeout=5)

            await ws.send_str(json.dumps({"type": "start_session", "source_id": "nope", "server": {"host": "h"}}))
            # The failed start is published as an event and answered with an error
            replies = [await ws.receive_json(timeout=5), await ws.receive_json(timeout=5)]

            orchestrator.bus.emit(EventType.LOG, "hello from engine", "abc")
            log_event = await ws.receive_json(timeout=5)
            await ws.close()

        assert unknown["code"] == "bad_type"
        by_type = {r["type"]: r for r in replies}
        assert by_type["error"]["code"] == "validation"
        assert by_type["event"]["event"] == "error"
        assert log_event["type"] == "event"
        assert log_event["event"] == "log"
        assert log_event["payload"] == "hello from engine"
        assert log_event["session_id"] == "abc"
