# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from ..config import Config
from ..errors import ValidationError
from ..models import (
    PROTOCOL_DOWNGRADED,
    CaptureSource,
    EncodingProfile,
    EngineCapability,
    InvocationPlan,
    PlanWarning,
)
from ..utils.helpers import is_srt_url, replace_scheme
from .capture import CaptureInputFactory, CaptureOptions


VIDEO_CODEC = "libx264"
PIXEL_FORMAT = "yuv420p"
CONTAINER = "mpegts"
FALLBACK_SCHEME = "udp"


def capture_options_from_config(config: Config | None = None) -> CaptureOptions:
    config = config or Config()
    return CaptureOptions(
        x11_display=str(config.get("capture.x11_display", ":0.0")),
        avfoundation_device=str(config.get("capture.avfoundation_device", "2")),
        gdigrab_input=str(config.get("capture.gdigrab_input", "desktop")),
    )


def downgrade_destination(endpoint_url: str, capability: EngineCapability) -> tuple[str, tuple[PlanWarning, ...]]:
    """Swap srt:// for udp:// when the engine cannot push SRT."""
    if not is_srt_url(endpoint_url) or capability.supports_srt:
        return endpoint_url, ()
    try:
        fallback = replace_scheme(endpoint_url, FALLBACK_SCHEME)
    except ValueError as e:
        raise ValidationError(f"Invalid endpoint URL: {endpoint_url} ({e})", field="url") from e
    warning = PlanWarning(
        kind=PROTOCOL_DOWNGRADED,
        detail=f"{capability.executable_path} has no SRT support, streaming over plain UDP instead",
        from_url=endpoint_url,
        to_url=fallback,
    )
    return fallback, (warning,)


class PipelineBuilder:
    """Composes engine invocation plans.

    build() is a pure function of its arguments and the options given here:
    identical inputs give equal plans and nothing is read or spawned.
    """

    def __init__(self, options: CaptureOptions | None = None):
        self.options = options or CaptureOptions()

    def build(
        self,
        platform: str,
        source: CaptureSource,
        profile: EncodingProfile,
        capability: EngineCapability,
        endpoint_url: str,
    ) -> InvocationPlan:
        capture = CaptureInputFactory.create(platform, self.options)
        destination, warnings = downgrade_destination(endpoint_url, capability)

        args = ["-hide_banner"]
        args += capture.input_args(source, profile)
        args += self._encoding_args(profile, scale=not capture.sizes_grab)
        args += ["-f", CONTAINER, destination]

        return InvocationPlan(
            executable=capability.executable_path,
            args=tuple(args),
            output_url=destination,
            requested_url=endpoint_url,
            platform=platform,
            source=source,
            profile=profile,
            warnings=warnings,
        )

    @staticmethod
    def _encoding_args(profile: EncodingProfile, scale: bool) -> list[str]:
        bitrate = f"{profile.bitrate_kbps}k"
        args = [
            "-c:v", VIDEO_CODEC,
            "-preset", profile.preset,
            "-profile:v", profile.h264_profile,
            "-b:v", bitrate,
            "-maxrate", bitrate,
            "-bufsize", f"{profile.bitrate_kbps * 2}k",
            "-pix_fmt", PIXEL_FORMAT,
        ]
        if scale:
            width, height = profile.size
            args += ["-vf", f"scale={width}:{height}"]
        keyint = str(profile.keyframe_interval_frames)
        args += ["-g", keyint, "-keyint_min", keyint]
        return args
