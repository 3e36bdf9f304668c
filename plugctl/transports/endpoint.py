"""Resolve received socket addresses into host/port endpoints."""

from __future__ import annotations

import socket
import struct
import sys
from typing import Any

from plugctl.core.model import EndPoint
from plugctl.transports.byteorder import ntoh16

# BSD-derived stacks prefix sockaddr with a length byte and use a one-byte family.
_BSD_SOCKADDR = sys.platform == "darwin" or sys.platform.startswith(("freebsd", "openbsd", "netbsd"))

_SOCKADDR_IN_SIZE = 16
_SOCKADDR_IN6_SIZE = 28


def _sockaddr_family(raw: bytes) -> int:
    if _BSD_SOCKADDR:
        return raw[1]
    return struct.unpack_from("=H", raw, 0)[0]


def endpoint_from_sockaddr(raw: bytes) -> EndPoint | None:
    """Convert a raw ``sockaddr_in``/``sockaddr_in6`` structure into an endpoint.

    The port field is stored in network byte order and converted to host
    order. Returns ``None`` for unsupported families or truncated input.
    """
    try:
        family = _sockaddr_family(raw)
        if family == socket.AF_INET and len(raw) >= _SOCKADDR_IN_SIZE:
            (port,) = struct.unpack_from("=H", raw, 2)
            host = socket.inet_ntop(socket.AF_INET, raw[4:8])
            return EndPoint(host=host, port=ntoh16(port))
        if family == socket.AF_INET6 and len(raw) >= _SOCKADDR_IN6_SIZE:
            (port,) = struct.unpack_from("=H", raw, 2)
            host = socket.inet_ntop(socket.AF_INET6, raw[8:24])
            return EndPoint(host=host, port=ntoh16(port))
    except (IndexError, OSError, ValueError, struct.error):
        return None
    return None


def endpoint_for(family: int, address: Any) -> EndPoint | None:
    """Convert an address as returned by ``socket.recvfrom`` into an endpoint.

    IPv4 addresses are ``(host, port)``, IPv6 ones ``(host, port, flowinfo,
    scope_id)``. The host text is normalized through its binary form, so a
    sender that cannot be represented yields ``None``.
    """
    if family not in (socket.AF_INET, socket.AF_INET6):
        return None
    try:
        host, port = address[0], int(address[1])
        if family == socket.AF_INET6:
            host = host.split("%", 1)[0]
        packed = socket.inet_pton(family, host)
        return EndPoint(host=socket.inet_ntop(family, packed), port=port)
    except (IndexError, OSError, TypeError, ValueError):
        return None
