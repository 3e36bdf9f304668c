"""Per-device session state machine and engine event routing.

Every :class:`DeviceSession` owns one engine handle. Events from the engine
arrive through a single :class:`EventDispatcher`, which looks the handle up
in a :class:`SessionRegistry` and hands the event to the matching session.
The registry only indexes sessions; it never keeps one alive.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import weakref
from collections.abc import Callable

from plugctl.core.errors import (
    DuplicateHandleError,
    EventError,
    OrphanEventError,
    SessionCreationError,
    UnrecognizedEventError,
)
from plugctl.core.model import DeviceEvent, PowerState, Stage
from plugctl.engines.base import DeviceEngine, Handle

LOGGER = logging.getLogger(__name__)

DiscoveryCallback = Callable[["DeviceSession"], None]
SubscriptionCallback = Callable[["DeviceSession", bool], None]
UnsubscriptionCallback = Callable[["DeviceSession"], None]
StateChangeCallback = Callable[["DeviceSession", bool], None]


class SessionRegistry:
    """Non-owning handle to session index."""

    def __init__(self) -> None:
        self._sessions: weakref.WeakValueDictionary[Handle, DeviceSession] = weakref.WeakValueDictionary()
        # Reentrant: collecting a session runs its finalizer, which unregisters.
        self._lock = threading.RLock()

    def register(self, handle: Handle, session: DeviceSession) -> None:
        with self._lock:
            existing = self._sessions.get(handle)
            if existing is not None and existing is not session:
                raise DuplicateHandleError(f"Handle {handle!r} already has a live session")
            self._sessions[handle] = session

    def unregister(self, handle: Handle) -> None:
        with self._lock:
            self._sessions.pop(handle, None)

    def lookup(self, handle: Handle) -> DeviceSession | None:
        with self._lock:
            return self._sessions.get(handle)

    def __contains__(self, handle: object) -> bool:
        return self.lookup(handle) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


def _release(engine: DeviceEngine, registry: SessionRegistry, handle: Handle) -> None:
    registry.unregister(handle)
    engine.destroy_handle(handle)


class DeviceSession:
    """Stateful wrapper around one engine handle.

    The stage only moves through :meth:`discover`, :meth:`subscribe`,
    :meth:`unsubscribe`, :meth:`destroy` and :meth:`handle_event`. Operations
    requested from the wrong stage return ``False`` and change nothing.

    Raises:
        SessionCreationError: if the engine cannot resolve ``identifier``.
    """

    def __init__(self, identifier: str, *, engine: DeviceEngine, registry: SessionRegistry) -> None:
        handle = engine.create_handle(identifier)
        if handle is None:
            raise SessionCreationError(f"Cannot create session for {identifier}")
        registry.register(handle, self)

        self.identifier = identifier
        self._handle = handle
        self._engine = engine
        self._stage = Stage.INITIAL
        self._state = PowerState.UNKNOWN
        self._notify_discovery: DiscoveryCallback = lambda _session: None
        self._notify_subscription: SubscriptionCallback = lambda _session, _on: None
        self._notify_unsubscription: UnsubscriptionCallback = lambda _session: None
        self._notify_state_change: StateChangeCallback = lambda _session, _on: None
        # Runs exactly once: on destroy() or when the session is collected.
        self._finalizer = weakref.finalize(self, _release, engine, registry, handle)

    def __repr__(self) -> str:
        return f"DeviceSession({self.identifier!r}, stage={self._stage.value})"

    @property
    def handle(self) -> Handle:
        return self._handle

    @property
    def stage(self) -> Stage:
        return self._stage

    @property
    def state(self) -> PowerState:
        return self._state

    @property
    def ip(self) -> str:
        return self._engine.lookup_address(self._handle)

    @property
    def on(self) -> bool:
        return self._state is PowerState.ON

    @on.setter
    def on(self, value: bool) -> None:
        self.set_state(value)

    def on_discovery(self, callback: DiscoveryCallback) -> None:
        self._notify_discovery = callback

    def on_subscription(self, callback: SubscriptionCallback) -> None:
        self._notify_subscription = callback

    def on_unsubscription(self, callback: UnsubscriptionCallback) -> None:
        self._notify_unsubscription = callback

    def on_state_change(self, callback: StateChangeCallback) -> None:
        self._notify_state_change = callback

    def set_state(self, on: bool) -> bool:
        """Ask the engine to switch on/off unless the cached state already matches.

        The cache is updated as soon as the engine accepts the request.
        """
        if self._stage is Stage.DESTROYED:
            return False
        target = PowerState.ON if on else PowerState.OFF
        if self._state is target:
            return True
        request = self._engine.turn_on if on else self._engine.turn_off
        if not request(self._handle):
            LOGGER.warning("Engine rejected switching %s %s", self.identifier, target.value)
            return False
        self._state = target
        return True

    def query_state(self) -> bool:
        """Re-read the state from the engine; returns ``True`` iff on."""
        if self._stage is not Stage.DESTROYED:
            self._state = self._engine.query_state(self._handle)
        return self.on

    def discover(self) -> bool:
        """Broadcast discovery. Must be called before anything else."""
        if self._stage is not Stage.INITIAL:
            return False
        self._stage = Stage.DISCOVERING
        return self._engine.discover(self._handle)

    def subscribe(self) -> bool:
        if self._stage is not Stage.DISCOVERED:
            return False
        self._stage = Stage.SUBSCRIBING
        return self._engine.subscribe(self._handle)

    def unsubscribe(self) -> bool:
        if self._stage is not Stage.SUBSCRIBED:
            return False
        self._stage = Stage.UNSUBSCRIBING
        # The subscription request toggles, so the same call unsubscribes.
        return self._engine.subscribe(self._handle)

    def destroy(self) -> None:
        if self._stage is Stage.DESTROYED:
            return
        self._stage = Stage.DESTROYED
        self._finalizer()

    def handle_event(self, event: DeviceEvent) -> None:
        if self._stage is Stage.DESTROYED:
            LOGGER.debug("Ignoring %s event for destroyed session %s", event.name, self.identifier)
            return

        if event is DeviceEvent.DISCOVER:
            previous = self._stage
            if previous in (Stage.INITIAL, Stage.DISCOVERING):
                self._stage = Stage.DISCOVERED
            if previous is Stage.DISCOVERING:
                self._notify_discovery(self)
            else:
                LOGGER.debug("Late discover event for %s in stage %s", self.identifier, previous.value)
        elif event is DeviceEvent.SUBSCRIBE:
            if self._stage is not Stage.SUBSCRIBING:
                LOGGER.debug("Ignoring subscribe event for %s in stage %s", self.identifier, self._stage.value)
                return
            self._stage = Stage.SUBSCRIBED
            self._notify_subscription(self, self.query_state())
        elif event is DeviceEvent.UNSUBSCRIBE:
            if self._stage is not Stage.UNSUBSCRIBING:
                LOGGER.debug("Ignoring unsubscribe event for %s in stage %s", self.identifier, self._stage.value)
                return
            self._stage = Stage.DISCOVERED
            self._notify_unsubscription(self)
        elif event is DeviceEvent.ON:
            self._update_state(PowerState.ON)
        elif event is DeviceEvent.OFF:
            self._update_state(PowerState.OFF)

    def _update_state(self, state: PowerState) -> None:
        if self._state is state:
            return
        self._state = state
        self._notify_state_change(self, state is PowerState.ON)


class EventDispatcher:
    """Routes engine events to sessions on the owning event loop.

    :meth:`post` is the callback handed to the engine and may be called from
    any thread. With a loop, events are queued and :meth:`run` applies them
    in arrival order on that loop; without one they are dispatched inline.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        engine: DeviceEngine | None = None,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._registry = registry
        self._engine = engine
        self._loop = loop
        self._queue: asyncio.Queue[tuple[Handle, int]] = asyncio.Queue()

    def _event_name(self, event: int) -> str:
        if self._engine is None:
            return str(event)
        return self._engine.event_name(event)

    def route(self, handle: Handle, event: int) -> DeviceSession:
        if handle is None:
            raise OrphanEventError(f"Spurious {self._event_name(event)} event from null handle")
        session = self._registry.lookup(handle)
        if session is None:
            raise OrphanEventError(f"{self._event_name(event)} event from unassociated handle {handle!r}")
        try:
            tag = DeviceEvent(event)
        except ValueError:
            raise UnrecognizedEventError(
                f"Handle {handle!r} sent unknown event {event}: {self._event_name(event)}"
            ) from None
        session.handle_event(tag)
        return session

    def dispatch(self, handle: Handle, event: int) -> bool:
        """Route one event; orphan and unknown events are logged and dropped."""
        try:
            self.route(handle, event)
        except EventError as exc:
            LOGGER.warning("%s", exc)
            return False
        return True

    def post(self, handle: Handle, event: int) -> None:
        if self._loop is None:
            self.dispatch(handle, event)
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, (handle, event))

    async def run(self) -> None:
        while True:
            handle, event = await self._queue.get()
            try:
                self.dispatch(handle, event)
            except Exception:
                LOGGER.exception("Handling event %s for %r failed", event, handle)
            finally:
                self._queue.task_done()
