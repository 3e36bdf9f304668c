"""Device engine interface."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from plugctl.core.model import PowerState

Handle = Any
EventCallback = Callable[[Handle, int], None]


class DeviceEngine(Protocol):
    """Black-box engine owning the device's discovery/subscription protocol.

    Handles are opaque and hashable; events are reported through the single
    callback passed to :meth:`start` as ``(handle, event_tag)``.
    """

    def create_handle(self, identifier: str) -> Handle | None: ...

    def start(self, callback: EventCallback) -> None: ...

    def stop(self) -> None: ...

    def discover(self, handle: Handle) -> bool: ...

    def subscribe(self, handle: Handle) -> bool:
        """Toggle the subscription; also used to unsubscribe."""

    def query_state(self, handle: Handle) -> PowerState: ...

    def turn_on(self, handle: Handle) -> bool: ...

    def turn_off(self, handle: Handle) -> bool: ...

    def destroy_handle(self, handle: Handle) -> None: ...

    def lookup_address(self, handle: Handle) -> str: ...

    def event_name(self, event: int) -> str: ...
