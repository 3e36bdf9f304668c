"""Host/network byte order conversion for ports and IPv4 addresses."""

from __future__ import annotations

import struct

# Network order is big endian; the host is big endian iff a native 16-bit
# pack of 1 matches the big-endian pack.
BIG_ENDIAN_HOST = struct.pack("=H", 1) == struct.pack(">H", 1)


def _swap16(value: int) -> int:
    return int.from_bytes((value & 0xFFFF).to_bytes(2, "little"), "big")


def _swap32(value: int) -> int:
    return int.from_bytes((value & 0xFFFFFFFF).to_bytes(4, "little"), "big")


def hton16(port: int) -> int:
    """Convert a 16-bit port from host to network byte order."""
    return port & 0xFFFF if BIG_ENDIAN_HOST else _swap16(port)


def ntoh16(port: int) -> int:
    """Convert a 16-bit port from network to host byte order."""
    return port & 0xFFFF if BIG_ENDIAN_HOST else _swap16(port)


def hton32(addr: int) -> int:
    """Convert a 32-bit IPv4 address from host to network byte order."""
    return addr & 0xFFFFFFFF if BIG_ENDIAN_HOST else _swap32(addr)


def ntoh32(addr: int) -> int:
    """Convert a 32-bit IPv4 address from network to host byte order."""
    return addr & 0xFFFFFFFF if BIG_ENDIAN_HOST else _swap32(addr)
