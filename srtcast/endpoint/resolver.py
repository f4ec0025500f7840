# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from typing import Any, NamedTuple

from ..errors import ValidationError
from ..models import TransportEndpoint
from ..utils.fields import EndpointFields
from ..utils.helpers import encode_component, format_host


class EndpointResolution(NamedTuple):
    url: str | None
    errors: list[ValidationError]

    @property
    def ok(self) -> bool:
        return not self.errors


# Checked in this order; an absent optional value (None) is not checked
_ENDPOINT_CHECKS = (
    (EndpointFields.HOST, "host", True, "Host is required"),
    (EndpointFields.PORT, "port", True, "Valid port number is required (1-65535)"),
    (EndpointFields.MODE, "mode_value", True, 'Mode must be either "caller" or "listener"'),
    (EndpointFields.LATENCY, "latency_ms", False, "Latency must be a non-negative integer"),
    (EndpointFields.MAX_BANDWIDTH, "max_bandwidth_kbps", False, "Max bandwidth must be a non-negative integer"),
    (EndpointFields.PB_KEY_LEN, "pb_key_len", False, "Key length must be 16, 24 or 32"),
)


def validate_endpoint(server: TransportEndpoint) -> list[ValidationError]:
    """Check an endpoint descriptor; returns one error per problem found."""
    errors: list[ValidationError] = []
    for field_def, attr, required, message in _ENDPOINT_CHECKS:
        value = getattr(server, attr)
        if (required or value is not None) and not field_def.validate(value):
            errors.append(ValidationError(message, field=field_def.name))

    if server.passphrase and server.pb_key_len is None:
        errors.append(ValidationError("A passphrase requires a key length", field="pb_key_len"))
    return errors


def resolve(server: TransportEndpoint, stream_key: str = "") -> EndpointResolution:
    """Build the srt:// URL for a server and stream key.

    Parameters always appear in the order mode, latency, maxbw,
    passphrase+pbkeylen, streamid; absent values are left out. The URL is only
    returned when validation found nothing wrong.
    """
    errors = validate_endpoint(server)
    if errors:
        return EndpointResolution(None, errors)

    params: list[tuple[str, Any]] = [("mode", server.mode_value)]
    if server.latency_ms is not None:
        params.append(("latency", int(server.latency_ms)))
    if server.max_bandwidth_kbps is not None:
        params.append(("maxbw", f"{EndpointFields.MAX_BANDWIDTH.transform(server.max_bandwidth_kbps)}k"))
    if server.passphrase:
        params.append(("passphrase", server.passphrase))
        params.append(("pbkeylen", int(server.pb_key_len)))
    stream_id = server.stream_id or stream_key
    if stream_id:
        params.append(("streamid", stream_id))

    query = "&".join(f"{k}={encode_component(v)}" for k, v in params)
    url = f"srt://{format_host(server.host)}:{int(server.port)}?{query}"
    return EndpointResolution(url, [])
