# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Field definitions and URL helpers."""

from .fields import ControlFields, EndpointFields, FieldDef, ProfileFields, collect_fields, parse_kbps
from .helpers import encode_component, format_host, is_srt_url, replace_scheme, url_scheme


__all__ = [
    "ControlFields",
    "EndpointFields",
    "FieldDef",
    "ProfileFields",
    "collect_fields",
    "encode_component",
    "format_host",
    "is_srt_url",
    "parse_kbps",
    "replace_scheme",
    "url_scheme",
]
