"""Device engine backed by the liborvibo C library via ctypes."""

from __future__ import annotations

import ctypes
import ctypes.util
import logging

from plugctl.core.errors import EngineLoadError
from plugctl.core.model import PowerState
from plugctl.engines.base import EventCallback

LOGGER = logging.getLogger(__name__)

_EVENT_CALLBACK = ctypes.CFUNCTYPE(None, ctypes.c_void_p, ctypes.c_int)

_STATES = {
    0: PowerState.UNKNOWN,
    1: PowerState.OFF,
    2: PowerState.ON,
}

_BOOL_CALLS = (
    "orvibo_socket_discover",
    "orvibo_socket_subscribe",
    "orvibo_socket_on",
    "orvibo_socket_off",
)


def _declare(lib: ctypes.CDLL) -> None:
    lib.orvibo_socket_create.argtypes = [ctypes.c_char_p]
    lib.orvibo_socket_create.restype = ctypes.c_void_p
    lib.orvibo_start.argtypes = [_EVENT_CALLBACK]
    lib.orvibo_start.restype = None
    lib.orvibo_stop.argtypes = []
    lib.orvibo_stop.restype = None
    for name in _BOOL_CALLS:
        func = getattr(lib, name)
        func.argtypes = [ctypes.c_void_p]
        func.restype = ctypes.c_bool
    lib.orvibo_socket_state.argtypes = [ctypes.c_void_p]
    lib.orvibo_socket_state.restype = ctypes.c_int
    lib.orvibo_socket_destroy.argtypes = [ctypes.c_void_p]
    lib.orvibo_socket_destroy.restype = None
    lib.orvibo_socket_ip.argtypes = [ctypes.c_void_p]
    lib.orvibo_socket_ip.restype = ctypes.c_char_p
    lib.orvibo_event_string.argtypes = [ctypes.c_int]
    lib.orvibo_event_string.restype = ctypes.c_char_p


class LibOrviboEngine:
    """Engine calls map one-to-one onto liborvibo's socket API.

    Handles are the integer values of ``orvibo_socket *`` pointers.
    """

    def __init__(self, library: str | None = None) -> None:
        path = library or ctypes.util.find_library("orvibo")
        if not path:
            raise EngineLoadError(
                "Could not find liborvibo. Install it or point --library/PLUGCTL_LIBRARY at the shared object."
            )
        try:
            lib = ctypes.CDLL(path)
        except OSError as exc:
            raise EngineLoadError(f"Could not load device engine library {path}: {exc}") from exc
        try:
            _declare(lib)
        except AttributeError as exc:
            raise EngineLoadError(f"Device engine library {path} is missing a symbol: {exc}") from exc
        self._lib = lib
        self._callback = None

    def create_handle(self, identifier: str) -> int | None:
        try:
            encoded = identifier.encode("ascii")
        except UnicodeEncodeError:
            return None
        return self._lib.orvibo_socket_create(encoded) or None

    def start(self, callback: EventCallback) -> None:
        def _trampoline(handle: int | None, event: int) -> None:
            callback(handle, event)

        # The library keeps the function pointer; the wrapper must outlive it.
        self._callback = _EVENT_CALLBACK(_trampoline)
        self._lib.orvibo_start(self._callback)

    def stop(self) -> None:
        self._lib.orvibo_stop()
        self._callback = None

    def discover(self, handle: int) -> bool:
        return bool(self._lib.orvibo_socket_discover(handle))

    def subscribe(self, handle: int) -> bool:
        return bool(self._lib.orvibo_socket_subscribe(handle))

    def query_state(self, handle: int) -> PowerState:
        raw = self._lib.orvibo_socket_state(handle)
        state = _STATES.get(raw)
        if state is None:
            LOGGER.debug("Unknown state value %d for socket %#x", raw, handle)
            return PowerState.UNKNOWN
        return state

    def turn_on(self, handle: int) -> bool:
        return bool(self._lib.orvibo_socket_on(handle))

    def turn_off(self, handle: int) -> bool:
        return bool(self._lib.orvibo_socket_off(handle))

    def destroy_handle(self, handle: int) -> None:
        self._lib.orvibo_socket_destroy(handle)

    def lookup_address(self, handle: int) -> str:
        raw = self._lib.orvibo_socket_ip(handle)
        return raw.decode("ascii", errors="replace") if raw else ""

    def event_name(self, event: int) -> str:
        raw = self._lib.orvibo_event_string(event)
        return raw.decode("ascii", errors="replace") if raw else f"event {event}"
