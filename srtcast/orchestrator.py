# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import logging
import sys
from typing import Any

from .catalog import ProfileCatalog
from .config import Config
from .endpoint import resolve
from .engine import CapabilityDetector, check_endpoint
from .errors import (
    CapabilityUnavailable,
    OrchestratorError,
    ProbeTimeout,
    Result,
    ValidationError,
)
from .models import CaptureSource, EncodingProfile, EngineCapability, InvocationPlan, TransportEndpoint
from .pipeline import PipelineBuilder, capture_options_from_config
from .session import EventBus, EventType, SessionSupervisor, Subscription
from .sources import SourceRegistry, StaticSourceRegistry


class StreamingOrchestrator:
    """The operations an operator-facing surface calls.

    Wires the detector, resolver, builder and supervisor together. Every
    operation returns a Result; failures from its own steps are also published
    as ``error`` events (the supervisor publishes its own).
    """

    def __init__(
        self,
        sources: SourceRegistry | None = None,
        catalog: ProfileCatalog | None = None,
        detector: CapabilityDetector | None = None,
        builder: PipelineBuilder | None = None,
        bus: EventBus | None = None,
        supervisor: SessionSupervisor | None = None,
        platform: str | None = None,
    ):
        config = Config()
        self.sources = sources or StaticSourceRegistry()
        self.catalog = catalog or ProfileCatalog()
        self.detector = detector or CapabilityDetector()
        self.builder = builder or PipelineBuilder(capture_options_from_config(config))
        self.bus = bus or EventBus(int(config.get("events.queue_size", 0)))
        self.supervisor = supervisor or SessionSupervisor(self.bus)
        self.platform = platform or sys.platform
        self.logger = logging.getLogger("orchestrator")

    # -- sessions ------------------------------------------------------------

    async def start_session(
        self,
        source_id: str,
        profile: EncodingProfile | dict[str, Any] | str | None,
        server: TransportEndpoint | dict[str, Any] | str,
        stream_key: str = "",
        allow_fallback: bool | None = None,
    ) -> Result:
        """Resolve everything needed for one session and hand it to the supervisor."""
        try:
            plan = await self.plan_session(source_id, profile, server, stream_key)
        except OrchestratorError as e:
            return self._failed(e)

        if allow_fallback is None:
            allow_fallback = bool(Config().get("session.allow_protocol_fallback", True))
        # The supervisor announces plan warnings once the session is not busy
        return await self.supervisor.start(plan, allow_fallback=allow_fallback)

    async def plan_session(
        self,
        source_id: str,
        profile: EncodingProfile | dict[str, Any] | str | None,
        server: TransportEndpoint | dict[str, Any] | str,
        stream_key: str = "",
    ) -> InvocationPlan:
        """Build the invocation plan for a session without starting anything."""
        source = self._lookup_source(source_id)
        encoding = self._lookup_profile(profile)
        endpoint = self._lookup_server(server)

        url, errors = resolve(endpoint, stream_key)
        if errors:
            raise ValidationError(
                "Invalid SRT server: " + "; ".join(e.message for e in errors),
                field=errors[0].field,
                errors=errors,
            )

        capability = await self.detector.detect()
        plan = self.builder.build(self.platform, source, encoding, capability, url)
        self.logger.debug(f"plan for {source.id}: {' '.join(plan.command)}")
        return plan

    async def stop_session(self) -> Result:
        return await self.supervisor.stop()

    def get_session_status(self) -> dict[str, Any]:
        return self.supervisor.status()

    # -- endpoints -----------------------------------------------------------

    def resolve_endpoint(self, server: TransportEndpoint | dict[str, Any] | str, stream_key: str = "") -> Result:
        try:
            endpoint = self._lookup_server(server)
        except ValidationError as e:
            return self._failed(e)
        url, errors = resolve(endpoint, stream_key)
        if errors:
            return Result.failure(
                ValidationError(
                    "; ".join(e.message for e in errors),
                    field=errors[0].field,
                    errors=errors,
                )
            )
        return Result.success(url)

    async def check_endpoint(self, url: str) -> Result:
        """Push a short test pattern to ``url`` with the detected engine."""
        try:
            capability = await self.detector.detect()
        except CapabilityUnavailable as e:
            return self._failed(e)
        timeout = float(Config().get("engine.check_timeout_s", 10.0))
        ok = await check_endpoint(capability.executable_path, url, timeout=timeout)
        return Result.success({"url": url, "reachable": ok})

    # -- capability / sources ------------------------------------------------

    async def get_capability(self, refresh: bool = False) -> Result:
        if refresh:
            self.detector.invalidate()
        try:
            capability: EngineCapability = await self.detector.detect()
        except (CapabilityUnavailable, ProbeTimeout) as e:
            return self._failed(e)
        return Result.success(capability)

    def list_sources(self) -> list[CaptureSource]:
        return self.sources.list_sources()

    # -- events / lifecycle --------------------------------------------------

    def subscribe(self, maxsize: int | None = None) -> Subscription:
        return self.bus.subscribe(maxsize)

    async def shutdown(self) -> None:
        self.logger.info("shutting down")
        await self.supervisor.shutdown()
        self.bus.close()

    # -- helpers -------------------------------------------------------------

    def _failed(self, error: OrchestratorError) -> Result:
        self.logger.warning(f"{error.kind.value}: {error.message}")
        self.bus.emit(EventType.ERROR, error.to_dict())
        return Result.failure(error)

    def _lookup_source(self, source_id: str) -> CaptureSource:
        source = self.sources.get(source_id)
        if source is None:
            raise ValidationError(f"Unknown capture source: {source_id}", field="source_id")
        return source

    def _lookup_profile(self, profile) -> EncodingProfile:
        if profile is None:
            return self.catalog.default_profile()
        if isinstance(profile, EncodingProfile):
            return profile
        if isinstance(profile, str):
            found = self.catalog.get_profile(profile)
            if found is None:
                raise ValidationError(f"Unknown profile: {profile}", field="profile")
            return found
        if isinstance(profile, dict):
            return EncodingProfile.from_dict(profile)
        raise ValidationError(f"Invalid profile: {profile!r}", field="profile")

    def _lookup_server(self, server) -> TransportEndpoint:
        if isinstance(server, TransportEndpoint):
            return server
        if isinstance(server, str):
            found = self.catalog.get_server(server)
            if found is None:
                raise ValidationError(f"Unknown SRT server: {server}", field="server")
            return found
        if isinstance(server, dict):
            return TransportEndpoint.from_dict(server)
        raise ValidationError(f"Invalid SRT server: {server!r}", field="server")
