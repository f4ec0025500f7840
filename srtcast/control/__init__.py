# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Control protocol implementations for driving the streaming session."""

from ..utils.fields import ControlFields
from .protocol import ControlProtocol, ControlSession, to_payload
from .websocket import WebSocketControlProtocol, websocket_handler


__all__ = [
    "ControlFields",
    "ControlProtocol",
    "ControlSession",
    "WebSocketControlProtocol",
    "to_payload",
    "websocket_handler",
]
