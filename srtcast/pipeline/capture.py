# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Platform capture stanzas for the encoding engine.

Every stanza grabs the whole primary display. The selected capture source,
window or virtual preview alike, is carried on the plan as a label only: the
backends are not pointed at individual windows.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar

from ..models import CaptureSource, EncodingProfile


@dataclass(frozen=True)
class CaptureOptions:
    """Per-installation capture settings (normally from the capture config section)."""

    x11_display: str = ":0.0"
    avfoundation_device: str = "2"
    gdigrab_input: str = "desktop"


class CaptureInput(ABC):
    """Builds the input part of the engine arguments for one OS backend."""

    # Whether the backend can size the grab itself (else a scale filter is needed)
    sizes_grab: ClassVar[bool] = True

    def __init__(self, options: CaptureOptions):
        self.options = options

    @abstractmethod
    def input_args(self, source: CaptureSource, profile: EncodingProfile) -> list[str]:
        """Arguments that open the capture device."""
        pass


class GdiGrabInput(CaptureInput):
    def input_args(self, source: CaptureSource, profile: EncodingProfile) -> list[str]:
        return [
            "-f", "gdigrab",
            "-framerate", str(profile.frame_rate),
            "-video_size", profile.resolution,
            "-i", self.options.gdigrab_input,
        ]


class AvFoundationInput(CaptureInput):
    sizes_grab = False

    def input_args(self, source: CaptureSource, profile: EncodingProfile) -> list[str]:
        return [
            "-f", "avfoundation",
            "-framerate", str(profile.frame_rate),
            "-pixel_format", "uyvy422",
            "-i", f"{self.options.avfoundation_device}:none",
        ]


class X11GrabInput(CaptureInput):
    def input_args(self, source: CaptureSource, profile: EncodingProfile) -> list[str]:
        return [
            "-f", "x11grab",
            "-framerate", str(profile.frame_rate),
            "-video_size", profile.resolution,
            "-i", self.options.x11_display,
        ]


class CaptureInputFactory:
    """Picks the capture backend for a platform."""

    _inputs: ClassVar[dict[str, type[CaptureInput]]] = {
        "win32": GdiGrabInput,
        "darwin": AvFoundationInput,
    }
    _default: ClassVar[type[CaptureInput]] = X11GrabInput

    @classmethod
    def create(cls, platform: str, options: CaptureOptions) -> CaptureInput:
        return cls._inputs.get(platform, cls._default)(options)
