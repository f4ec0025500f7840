# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from .errors import ValidationError
from .utils.fields import EndpointFields, ProfileFields, collect_fields, parse_kbps


VIRTUAL_PREVIEW_ID = "virtual-preview"


class SourceKind(str, Enum):
    WINDOW = "window"
    SCREEN = "screen"
    VIRTUAL = "virtual"


class SrtMode(str, Enum):
    CALLER = "caller"
    LISTENER = "listener"


@dataclass(frozen=True)
class CaptureSource:
    """What will be captured. Referenced, not owned, by a session."""

    id: str
    display_name: str
    kind: SourceKind = SourceKind.WINDOW

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CaptureSource":
        source_id = str(data.get("id", "")).strip()
        if not source_id:
            raise ValidationError("Capture source requires an id", field="id")
        kind_raw = str(data.get("kind", SourceKind.WINDOW.value)).lower()
        try:
            kind = SourceKind(kind_raw)
        except ValueError:
            raise ValidationError(f"Invalid source kind: {kind_raw}", field="kind") from None
        name = data.get("display_name") or data.get("name") or source_id
        return cls(id=source_id, display_name=str(name), kind=kind)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "display_name": self.display_name, "kind": self.kind.value}


VIRTUAL_PREVIEW = CaptureSource(VIRTUAL_PREVIEW_ID, "Embedded Browser", SourceKind.VIRTUAL)


@dataclass(frozen=True)
class EncodingProfile:
    """Validated encoding settings for one session."""

    resolution: str = "1920x1080"
    frame_rate: int = 30
    bitrate_kbps: int = 5000
    preset: str = "veryfast"
    h264_profile: str = "high"
    keyframe_interval_frames: int = 60
    name: str | None = None

    def __post_init__(self):
        errors = self.validate()
        if errors:
            raise ValidationError(
                "; ".join(e.message for e in errors),
                field=errors[0].field,
                errors=errors,
            )

    def validate(self) -> list[ValidationError]:
        _, errors = collect_fields(
            {
                "resolution": self.resolution,
                "frame_rate": self.frame_rate,
                "bitrate_kbps": self.bitrate_kbps,
                "preset": self.preset,
                "h264_profile": self.h264_profile,
                "keyframe_interval_frames": self.keyframe_interval_frames,
            },
            ProfileFields.ALL,
        )
        return errors

    @property
    def size(self) -> tuple[int, int]:
        """Get resolution as (width, height) tuple."""
        w, h = self.resolution.split("x")
        return (int(w), int(h))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EncodingProfile":
        """Create a profile from stored or control-protocol data.

        Accepts flat dicts as well as the nested captureSettings/encodingSettings
        layout of saved profiles; missing values take their defaults.
        """
        flat: dict[str, Any] = {}
        flat.update(data.get("captureSettings") or {})
        flat.update(data.get("encodingSettings") or {})
        flat.update({k: v for k, v in data.items() if not isinstance(v, dict)})

        values, errors = collect_fields(flat, ProfileFields.ALL)
        if errors:
            raise ValidationError(
                "; ".join(e.message for e in errors),
                field=errors[0].field,
                errors=errors,
            )
        return cls(name=data.get("name"), **values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TransportEndpoint:
    """SRT server descriptor. Not validated on construction; see resolve()."""

    host: str
    port: Any = 9999
    mode: Any = SrtMode.CALLER
    latency_ms: int | None = 120
    max_bandwidth_kbps: int | None = None
    passphrase: str | None = None
    pb_key_len: int | None = None
    stream_id: str | None = None
    name: str | None = None
    id: str | None = None

    @property
    def mode_value(self) -> str:
        return self.mode.value if isinstance(self.mode, SrtMode) else str(self.mode)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransportEndpoint":
        """Coerce a stored server entry into an endpoint.

        Unparseable numbers are kept as given so that resolve() reports them as
        structured errors instead of failing here.
        """

        def pick(fdef):
            present, raw = fdef.lookup(data)
            return raw if present else fdef.get_default()

        def as_int(value, parse=int):
            if value is None or value == "":
                return None
            try:
                return parse(value)
            except (TypeError, ValueError):
                return value

        mode_raw = pick(EndpointFields.MODE)
        try:
            mode: Any = SrtMode(str(mode_raw).lower())
        except ValueError:
            mode = mode_raw

        return cls(
            host=str(pick(EndpointFields.HOST)),
            port=as_int(pick(EndpointFields.PORT)),
            mode=mode,
            latency_ms=as_int(pick(EndpointFields.LATENCY)),
            max_bandwidth_kbps=as_int(pick(EndpointFields.MAX_BANDWIDTH), parse_kbps),
            passphrase=pick(EndpointFields.PASSPHRASE) or None,
            pb_key_len=as_int(pick(EndpointFields.PB_KEY_LEN)),
            stream_id=pick(EndpointFields.STREAM_ID) or None,
            name=data.get("name"),
            id=data.get("id"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["mode"] = self.mode_value
        if self.passphrase:
            data["passphrase"] = "***"
        return data


@dataclass(frozen=True)
class EngineCapability:
    """What the local encoding engine can do. Cached for the process lifetime."""

    executable_path: str
    version_string: str
    supports_srt: bool
    is_system_installed: bool

    @property
    def requirements_message(self) -> str:
        if self.supports_srt:
            return "SRT streaming available"
        return "SRT not supported - please install FFmpeg with SRT support for streaming"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["message"] = self.requirements_message
        return data


@dataclass(frozen=True)
class PlanWarning:
    kind: str
    detail: str
    from_url: str | None = None
    to_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


PROTOCOL_DOWNGRADED = "protocol_downgraded"


@dataclass(frozen=True)
class InvocationPlan:
    """Fully resolved, side-effect free description of one engine launch."""

    executable: str
    args: tuple[str, ...]
    output_url: str
    requested_url: str
    platform: str
    source: CaptureSource
    profile: EncodingProfile
    warnings: tuple[PlanWarning, ...] = field(default=())

    @property
    def command(self) -> list[str]:
        return [self.executable, *self.args]

    @property
    def downgraded(self) -> bool:
        return any(w.kind == PROTOCOL_DOWNGRADED for w in self.warnings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "executable": self.executable,
            "args": list(self.args),
            "output_url": self.output_url,
            "requested_url": self.requested_url,
            "platform": self.platform,
            "source": self.source.to_dict(),
            "profile": self.profile.to_dict(),
            "warnings": [w.to_dict() for w in self.warnings],
        }
