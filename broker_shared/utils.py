from __future__ import annotations
from typing import Optional
from urllib.parse import urlsplit

# ========================================
#           TRANSPORT URL HELPERS
# ========================================
"""
Helpers the client session uses to decide which WebSocket URL to dial.
An explicit URL always wins; otherwise the URL is derived from the origin
of the page (or host) the client was served from.
"""

WS_PATH = "/ws"
_WS_SCHEMES = {"ws", "wss"}


def is_ws_url(s: Optional[str]) -> bool:
    """
    returns True if ``s`` is a ws:// or wss:// URL with a host, otherwise False.
    """
    if not s:
        return False
    try:
        parts = urlsplit(s)
    except ValueError:
        return False
    return parts.scheme in _WS_SCHEMES and bool(parts.netloc)


def ws_url_from_origin(origin: Optional[str]) -> Optional[str]:
    """
    Derive the broker URL from a page origin such as 'https://example.com:8443'.

    - https origin -> wss://<host>/ws
    - any other origin with a host -> ws://<host>/ws
    - a bare 'host:port' -> ws://host:port/ws
    - no origin, or an origin without a host -> None
    """
    if not origin:
        return None
    if is_hostport(origin):
        return f"ws://{origin}{WS_PATH}"
    try:
        parts = urlsplit(origin)
    except ValueError:
        return None
    if not parts.netloc:
        return None
    scheme = "wss" if parts.scheme == "https" else "ws"
    return f"{scheme}://{parts.netloc}{WS_PATH}"


def resolve_ws_url(url: Optional[str] = None, origin: Optional[str] = None) -> Optional[str]:
    """
    Pick the URL the session connects to.

    Examples: resolve_ws_url("ws://localhost:8080/ws") -> "ws://localhost:8080/ws"
              resolve_ws_url(origin="http://localhost:8080") -> "ws://localhost:8080/ws"
    """
    if url:
        return url if is_ws_url(url) else None
    return ws_url_from_origin(origin)


def is_hostport(s: str) -> bool:
    """
    Accepts 'hostname:port' or 'A.B.C.D:port'.

    Examples: "localhost:8080", "192.168.1.5:8080", "example.com:443"
    """
    try:
        if ':' not in s:
            return False
        host, port_s = s.rsplit(':', 1)
        if not host or '/' in host:
            return False
        port = int(port_s)
        return 0 < port <= 65535
    except ValueError:
        return False
