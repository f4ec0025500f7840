# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Engine invocation planning: capture input, encoding and output stanzas."""

from .builder import PipelineBuilder, capture_options_from_config, downgrade_destination
from .capture import CaptureInput, CaptureInputFactory, CaptureOptions


__all__ = [
    "CaptureInput",
    "CaptureInputFactory",
    "CaptureOptions",
    "PipelineBuilder",
    "capture_options_from_config",
    "downgrade_destination",
]
