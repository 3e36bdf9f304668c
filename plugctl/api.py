"""Stable public API for building tooling on top of plugctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

import asyncio

from plugctl.core.command import CommandInterpreter
from plugctl.core.device_id import normalize_device_id
from plugctl.core.errors import (
    AddressParseError,
    BindError,
    ConfigLoadError,
    ConfigValidationError,
    DeviceIdError,
    DuplicateHandleError,
    EngineLoadError,
    EventError,
    OrphanEventError,
    PlugctlError,
    SessionCreationError,
    SessionError,
    SocketClosedError,
    SocketCreationError,
    SocketError,
    UnrecognizedEventError,
)
from plugctl.core.model import CommandResult, DeviceEvent, EndPoint, PowerState, Settings, Stage
from plugctl.core.service import PowerSwitchService
from plugctl.core.session import DeviceSession, EventDispatcher, SessionRegistry
from plugctl.engines.base import DeviceEngine
from plugctl.engines.liborvibo import LibOrviboEngine
from plugctl.transports.udp import ReadRegistration, UDPSocket

__all__ = [
    "PlugctlError",
    "AddressParseError",
    "SocketError",
    "SocketCreationError",
    "BindError",
    "SocketClosedError",
    "SessionError",
    "SessionCreationError",
    "DuplicateHandleError",
    "EventError",
    "OrphanEventError",
    "UnrecognizedEventError",
    "EngineLoadError",
    "ConfigLoadError",
    "ConfigValidationError",
    "DeviceIdError",
    "CommandResult",
    "DeviceEvent",
    "EndPoint",
    "PowerState",
    "Settings",
    "Stage",
    "CommandInterpreter",
    "DeviceEngine",
    "DeviceSession",
    "EventDispatcher",
    "LibOrviboEngine",
    "PowerSwitchService",
    "ReadRegistration",
    "SessionRegistry",
    "UDPSocket",
    "Client",
]


class Client:
    """Public client for controlling power switches.

    A `Client` owns one device engine and the handle registry its events are
    routed through, so several sessions can share a single engine. Pass the
    asyncio loop the sessions live on to have engine events applied on that
    loop (see :meth:`run_events`); without a loop events are applied on
    whichever thread the engine reports them from.
    """

    def __init__(
        self,
        *,
        engine: DeviceEngine | None = None,
        library: str | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.engine = engine or LibOrviboEngine(library)
        self.registry = SessionRegistry()
        self._dispatcher = EventDispatcher(self.registry, self.engine, loop=loop)
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        self.engine.start(self._dispatcher.post)
        self._started = True

    def open_session(self, identifier: str) -> DeviceSession:
        """Create a session for a hardware address; the caller owns it."""
        normalized = normalize_device_id(identifier)
        self.start()
        return DeviceSession(normalized, engine=self.engine, registry=self.registry)

    def interpreter(self, session: DeviceSession) -> CommandInterpreter:
        return CommandInterpreter(session)

    async def run_events(self) -> None:
        """Apply queued engine events until cancelled."""
        await self._dispatcher.run()

    def close(self) -> None:
        if not self._started:
            return
        self.engine.stop()
        self._started = False

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *_exc) -> None:
        self.close()
