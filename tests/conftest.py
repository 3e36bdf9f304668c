from __future__ import annotations

import pytest

from plugctl.core.model import DeviceEvent, PowerState


class FakeEngine:
    """Scripted device engine; ``auto_events`` answers requests like a live device."""

    def __init__(self, *, auto_events: bool = False, accept_switch: bool = True, resolvable: bool = True) -> None:
        self.auto_events = auto_events
        self.accept_switch = accept_switch
        self.resolvable = resolvable
        self.callback = None
        self.started = False
        self.stopped = False
        self.calls: list[tuple[str, object]] = []
        self.states: dict[int, PowerState] = {}
        self.subscribed: set[int] = set()
        self.destroyed: list[int] = []
        self._next_handle = 0x1000

    def create_handle(self, identifier: str) -> int | None:
        self.calls.append(("create_handle", identifier))
        if not self.resolvable:
            return None
        self._next_handle += 1
        self.states[self._next_handle] = PowerState.OFF
        return self._next_handle

    def start(self, callback) -> None:
        self.started = True
        self.callback = callback

    def stop(self) -> None:
        self.stopped = True

    def emit(self, handle, event) -> None:
        assert self.callback is not None, "engine not started"
        self.callback(handle, int(event))

    def discover(self, handle: int) -> bool:
        self.calls.append(("discover", handle))
        if self.auto_events:
            self.emit(handle, DeviceEvent.DISCOVER)
        return True

    def subscribe(self, handle: int) -> bool:
        self.calls.append(("subscribe", handle))
        if handle in self.subscribed:
            self.subscribed.discard(handle)
            event = DeviceEvent.UNSUBSCRIBE
        else:
            self.subscribed.add(handle)
            event = DeviceEvent.SUBSCRIBE
        if self.auto_events:
            self.emit(handle, event)
        return True

    def query_state(self, handle: int) -> PowerState:
        self.calls.append(("query_state", handle))
        return self.states[handle]

    def turn_on(self, handle: int) -> bool:
        self.calls.append(("turn_on", handle))
        if not self.accept_switch:
            return False
        self.states[handle] = PowerState.ON
        return True

    def turn_off(self, handle: int) -> bool:
        self.calls.append(("turn_off", handle))
        if not self.accept_switch:
            return False
        self.states[handle] = PowerState.OFF
        return True

    def destroy_handle(self, handle: int) -> None:
        self.destroyed.append(handle)

    def lookup_address(self, handle: int) -> str:
        return "192.168.1.50"

    def event_name(self, event: int) -> str:
        try:
            return DeviceEvent(event).name.lower()
        except ValueError:
            return "unknown"

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def live_engine() -> FakeEngine:
    return FakeEngine(auto_events=True)
