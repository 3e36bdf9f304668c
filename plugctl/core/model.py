"""Core data models used across sockets, sessions, and CLI."""

from __future__ import annotations

import enum
from dataclasses import dataclass, fields, replace
from typing import Any


class Stage(enum.Enum):
    """Position of a device session in its discovery/subscription lifecycle."""

    INITIAL = "initial"
    DISCOVERING = "discovering"
    DISCOVERED = "discovered"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBING = "unsubscribing"
    DESTROYED = "destroyed"


class PowerState(enum.Enum):
    UNKNOWN = "unknown"
    OFF = "off"
    ON = "on"


class DeviceEvent(enum.IntEnum):
    """Event tags delivered by the device engine."""

    DISCOVER = 0
    SUBSCRIBE = 1
    UNSUBSCRIBE = 2
    OFF = 3
    ON = 4


@dataclass(frozen=True)
class EndPoint:
    host: str
    port: int


@dataclass(frozen=True)
class CommandResult:
    response: str | None
    done: bool


@dataclass(frozen=True)
class Settings:
    broadcast_port: int | None = None
    listen_port: int | None = None
    timeout_s: float | None = None
    library: str | None = None
    datagram_size: int = 4096
    teardown_delay_s: float = 0.1

    def with_overrides(self, **overrides: Any) -> Settings:
        """Return a copy with every non-``None`` override applied."""
        known = {f.name for f in fields(self)}
        applied = {k: v for k, v in overrides.items() if k in known and v is not None}
        return replace(self, **applied)
