# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""SRT endpoint URL resolution."""

from .resolver import EndpointResolution, resolve, validate_endpoint


__all__ = ["EndpointResolution", "resolve", "validate_endpoint"]
