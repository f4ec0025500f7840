# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar

from ..errors import ValidationError


RESOLUTION_RE = re.compile(r"^\d+x\d+$")

PRESETS = ("ultrafast", "superfast", "veryfast", "faster", "fast", "medium")
H264_PROFILES = ("baseline", "main", "high")
SRT_MODES = ("caller", "listener")
PB_KEY_LENS = (16, 24, 32)


def parse_kbps(value: Any) -> int:
    """Parse a bitrate given as 5000, "5000" or "5000k" into kbps."""
    if isinstance(value, bool):
        raise ValueError(f"not a bitrate: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip().lower()
    if text.endswith("k"):
        text = text[:-1]
    return int(text)


def _is_positive_int(x: Any) -> bool:
    return not isinstance(x, bool) and int(x) > 0


def _is_int_between(x: Any, low: int, high: int | None = None) -> bool:
    if isinstance(x, bool):
        return False
    value = int(x)
    return value >= low and (high is None or value <= high)


@dataclass
class FieldDef:
    """One named request/config field: how to find, check, default and convert it."""

    name: str
    field_type: type
    validator: Callable[[Any], bool] | None = None
    default_factory: Callable[[], Any] | None = None
    transformer: Callable[[Any], Any] | None = None
    description: str = ""
    aliases: tuple[str, ...] = field(default=())

    def validate(self, value: Any) -> bool:
        """True if ``value`` passes the validator; conversion errors count as failures."""
        if self.validator is None:
            return True
        try:
            return bool(self.validator(value))
        except (ValueError, TypeError):
            return False

    def get_default(self) -> Any:
        return self.default_factory() if self.default_factory else None

    def transform(self, value: Any) -> Any:
        return self.transformer(value) if self.transformer else value

    def lookup(self, params: dict[str, Any]) -> tuple[bool, Any]:
        """Find this field in params under its name or one of its aliases."""
        for key in (self.name, *self.aliases):
            if key in params and params[key] is not None:
                return True, params[key]
        return False, None


class ProfileFields:
    """Fields of an encoding profile."""

    RESOLUTION = FieldDef(
        "resolution",
        str,
        lambda x: RESOLUTION_RE.match(str(x)) is not None,
        default_factory=lambda: "1920x1080",
        description="Output resolution (WxH)",
    )
    FRAME_RATE = FieldDef(
        "frame_rate",
        int,
        _is_positive_int,
        default_factory=lambda: 30,
        transformer=int,
        description="Capture frame rate",
        aliases=("frameRate", "framerate", "fps"),
    )
    BITRATE = FieldDef(
        "bitrate_kbps",
        int,
        lambda x: parse_kbps(x) > 0,
        default_factory=lambda: 5000,
        transformer=parse_kbps,
        description="Video bitrate in kbps",
        aliases=("bitrate", "bitrateKbps"),
    )
    PRESET = FieldDef(
        "preset",
        str,
        lambda x: str(x) in PRESETS,
        default_factory=lambda: "veryfast",
        description="x264 speed preset",
    )
    H264_PROFILE = FieldDef(
        "h264_profile",
        str,
        lambda x: str(x) in H264_PROFILES,
        default_factory=lambda: "high",
        description="H.264 profile",
        aliases=("h264Profile", "profile"),
    )
    KEYFRAME_INTERVAL = FieldDef(
        "keyframe_interval_frames",
        int,
        _is_positive_int,
        default_factory=lambda: 60,
        transformer=int,
        description="Keyframe interval in frames",
        aliases=("keyframeIntervalFrames", "keyFrameInterval"),
    )

    ALL: ClassVar[tuple[FieldDef, ...]] = (RESOLUTION, FRAME_RATE, BITRATE, PRESET, H264_PROFILE, KEYFRAME_INTERVAL)


class EndpointFields:
    """Fields of an SRT server descriptor."""

    HOST = FieldDef(
        "host",
        str,
        lambda x: bool(str(x or "").strip()),
        default_factory=lambda: "",
        description="Server host",
    )
    PORT = FieldDef(
        "port",
        int,
        lambda x: _is_int_between(x, 1, 65535),
        default_factory=lambda: 9999,
        description="Server port (1-65535)",
    )
    MODE = FieldDef(
        "mode",
        str,
        lambda x: str(x) in SRT_MODES,
        default_factory=lambda: "caller",
        description='Connection mode ("caller" or "listener")',
    )
    LATENCY = FieldDef(
        "latency_ms",
        int,
        lambda x: _is_int_between(x, 0),
        default_factory=lambda: 120,
        description="SRT latency in milliseconds",
        aliases=("latency", "latencyMs"),
    )
    MAX_BANDWIDTH = FieldDef(
        "max_bandwidth_kbps",
        int,
        lambda x: not isinstance(x, bool) and parse_kbps(x) >= 0,
        transformer=parse_kbps,
        description="Maximum bandwidth in kbps",
        aliases=("maxbw", "maxBandwidthKbps", "maxBandwidth"),
    )
    PASSPHRASE = FieldDef("passphrase", str, description="Encryption passphrase")
    PB_KEY_LEN = FieldDef(
        "pb_key_len",
        int,
        lambda x: not isinstance(x, bool) and int(x) in PB_KEY_LENS,
        description="Encryption key length (16, 24 or 32)",
        aliases=("pbkeylen", "pbKeyLen"),
    )
    STREAM_ID = FieldDef("stream_id", str, description="SRT stream id", aliases=("streamid", "streamId"))


class ControlFields:
    """Required fields for control protocol operations."""

    TYPE = FieldDef("type", str, description="Message type")
    TIMESTAMP = FieldDef("t", int, description="Timestamp for ping/pong")
    DEVICE_ID = FieldDef("device_id", str, description="Client device identifier")
    SOURCE_ID = FieldDef(
        "source_id", str, validator=lambda x: len(str(x).strip()) > 0, description="Capture source id"
    )
    PROFILE = FieldDef(
        "profile", dict, validator=lambda x: isinstance(x, (dict, str)), description="Encoding profile or profile id"
    )
    SERVER = FieldDef(
        "server", dict, validator=lambda x: isinstance(x, (dict, str)), description="SRT server or server id"
    )
    STREAM_KEY = FieldDef("stream_key", str, description="Stream key")
    ALLOW_FALLBACK = FieldDef(
        "allow_fallback", bool, validator=lambda x: isinstance(x, bool), description="Allow SRT to UDP fallback"
    )
    URL = FieldDef("url", str, validator=lambda x: len(str(x).strip()) > 0, description="Transport URL")

    ALL_FIELDS: ClassVar[dict[str, FieldDef]] = {
        f.name: f
        for f in (TYPE, TIMESTAMP, DEVICE_ID, SOURCE_ID, PROFILE, SERVER, STREAM_KEY, ALLOW_FALLBACK, URL)
    }

    REQUIRED_FOR_START_SESSION: ClassVar[set[str]] = {"source_id", "server"}
    REQUIRED_FOR_RESOLVE_ENDPOINT: ClassVar[set[str]] = {"server"}
    REQUIRED_FOR_CHECK_ENDPOINT: ClassVar[set[str]] = {"url"}

    @classmethod
    def validate_fields(cls, params: dict[str, Any], operation: str) -> None:
        """Raise ValidationError if ``operation`` is missing a required field or gets a bad one."""
        required: set[str] = getattr(cls, f"REQUIRED_FOR_{operation.upper()}", set())

        missing = sorted(required - params.keys())
        if missing:
            described = ", ".join(cls.ALL_FIELDS[f].description for f in missing)
            raise ValidationError(
                f"{operation} requires {described} (missing: {', '.join(missing)})",
                field=missing[0],
            )

        for name, value in params.items():
            field_def = cls.ALL_FIELDS.get(name)
            if field_def is not None and value is not None and not field_def.validate(value):
                raise ValidationError(f"Invalid {name}: {value!r}", field=name)


def collect_fields(params: dict[str, Any], defs: tuple[FieldDef, ...]) -> tuple[dict[str, Any], list[ValidationError]]:
    """Read, default, validate and transform a group of fields.

    Returns the collected values keyed by canonical field name together with a
    ValidationError per bad field; bad fields are left out of the values.
    """
    values: dict[str, Any] = {}
    errors: list[ValidationError] = []
    for field_def in defs:
        present, raw = field_def.lookup(params)
        if not present:
            raw = field_def.get_default()
            if raw is None:
                continue
        if not field_def.validate(raw):
            errors.append(ValidationError(f"Invalid {field_def.description.lower()}: {raw!r}", field=field_def.name))
            continue
        values[field_def.name] = field_def.transform(raw)
    return values, errors
