# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""HTTP API and WebSocket control endpoint."""

from .server import create_app, start_server


__all__ = ["create_app", "start_server"]
