# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import ipaddress
from urllib.parse import quote, urlsplit


# Characters encodeURIComponent leaves alone besides [A-Za-z0-9_.-~]
_COMPONENT_SAFE = "!~*'()"


def encode_component(value) -> str:
    """Percent-encode a URL query value the way encodeURIComponent does."""
    return quote(str(value), safe=_COMPONENT_SAFE)


def url_scheme(url: str) -> str:
    """Return the lowercased scheme of a URL ('' if none)."""
    try:
        return (urlsplit(url).scheme or "").lower()
    except ValueError:
        return ""


def is_srt_url(url: str) -> bool:
    """Check if a URL uses the SRT protocol."""
    return url_scheme(url) == "srt"


def format_host(host: str) -> str:
    """Bracket IPv6 literals so they can sit in front of a :port."""
    host = host.strip()
    if host.startswith("["):
        return host
    try:
        if isinstance(ipaddress.ip_address(host), ipaddress.IPv6Address):
            return f"[{host}]"
    except ValueError:
        pass
    return host


def replace_scheme(url: str, scheme: str) -> str:
    """Rewrite a transport URL to scheme://host:port, dropping path and query."""
    parts = urlsplit(url)
    host = format_host(parts.hostname or "")
    netloc = f"{host}:{parts.port}" if parts.port is not None else host
    return f"{scheme}://{netloc}"
