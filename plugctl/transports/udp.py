"""Raw UDP socket transport with asynchronous reads and synchronous sends."""

from __future__ import annotations

import asyncio
import logging
import socket
import threading
from collections import deque
from collections.abc import Callable
from concurrent.futures import Executor

from plugctl.core.errors import AddressParseError, BindError, SocketClosedError, SocketCreationError
from plugctl.core.model import EndPoint
from plugctl.transports.byteorder import hton16, ntoh16
from plugctl.transports.endpoint import endpoint_for

BROADCAST_ADDRESS = "255.255.255.255"
DEFAULT_DATAGRAM_SIZE = 4096
LOGGER = logging.getLogger(__name__)

ReadHandler = Callable[[bytes | None, EndPoint | None], None]


def _parse_ipv4(address: str) -> bytes | None:
    try:
        return socket.inet_aton(address)
    except (OSError, TypeError, ValueError):
        return None


def datagram_lines(payload: bytes) -> list[str]:
    """Split a listen-path datagram into command lines.

    Lines are separated by byte 10 and empty lines are dropped. If any line
    is not valid UTF-8 the whole frame is dropped and an empty list returned.
    """
    lines: list[str] = []
    for raw in payload.split(b"\n"):
        if not raw:
            continue
        try:
            lines.append(raw.decode("utf-8"))
        except UnicodeDecodeError:
            LOGGER.debug("Dropping undecodable frame of %d bytes", len(payload))
            return []
    return lines


class ReadRegistration:
    """Active read notification on a UDP socket.

    Cancelling shuts down and closes the socket; no handler invocation starts
    after :meth:`cancel` returns. Off the loop thread the socket is released
    on the loop, shortly after :meth:`cancel` returns.
    """

    def __init__(
        self,
        sock: socket.socket,
        loop: asyncio.AbstractEventLoop,
        handler: ReadHandler,
        *,
        datagram_size: int,
        executor: Executor | None = None,
    ) -> None:
        self._sock = sock
        self._loop = loop
        self._handler = handler
        self._datagram_size = datagram_size
        self._executor = executor
        self._lock = threading.Lock()
        self._backlog: deque[tuple[bytes | None, EndPoint | None]] = deque()
        self._draining = False
        self._cancelled = False
        self._fd = sock.fileno()
        loop.add_reader(self._fd, self._on_readable)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _on_readable(self) -> None:
        if self._cancelled:
            return
        try:
            data, address = self._sock.recvfrom(self._datagram_size)
        except OSError as exc:
            LOGGER.debug("recvfrom failed on fd %d: %s", self._fd, exc)
            self._deliver(None, None)
            return
        self._deliver(data, endpoint_for(self._sock.family, address))

    def _deliver(self, payload: bytes | None, endpoint: EndPoint | None) -> None:
        if self._executor is None:
            self._handler(payload, endpoint)
            return
        with self._lock:
            self._backlog.append((payload, endpoint))
            if self._draining:
                return
            self._draining = True
        self._executor.submit(self._drain)

    def _drain(self) -> None:
        while True:
            with self._lock:
                if self._cancelled or not self._backlog:
                    self._backlog.clear()
                    self._draining = False
                    return
                payload, endpoint = self._backlog.popleft()
            try:
                self._handler(payload, endpoint)
            except Exception:
                LOGGER.exception("Read handler failed on fd %d", self._fd)

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            self._backlog.clear()
        if self._loop.is_running() and not self._on_loop_thread():
            # Reader bookkeeping belongs to the loop; close once it is released.
            try:
                self._loop.call_soon_threadsafe(self._release)
                return
            except RuntimeError:
                LOGGER.debug("Event loop closed; releasing fd %d directly", self._fd)
        self._release()

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _release(self) -> None:
        self._loop.remove_reader(self._fd)
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError as exc:
            LOGGER.debug("shutdown on fd %d: %s", self._fd, exc)
        self._sock.close()


class UDPSocket:
    """A low-level IPv4 UDP socket.

    Args:
        source: IPv4 address to bind to ("0.0.0.0" for any). ``None`` leaves
            the socket unbound for broadcast sending only.
        port: port in host byte order; used for binding and as the default
            destination port.
        reuse: set ``SO_REUSEADDR``.
        broadcast: set ``SO_BROADCAST``.

    Raises:
        AddressParseError: if ``source`` is not a dotted-quad address.
        SocketCreationError: if the socket cannot be created.
        BindError: if binding to ``(source, port)`` fails.
    """

    def __init__(
        self,
        source: str | None = None,
        port: int = 0,
        *,
        reuse: bool = True,
        broadcast: bool = True,
    ) -> None:
        if not 0 <= port <= 0xFFFF:
            raise ValueError(f"UDP port {port} out of range")
        if source is not None and _parse_ipv4(source) is None:
            raise AddressParseError(f"Invalid IPv4 source address '{source}'")
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        except OSError as exc:
            raise SocketCreationError(f"Could not create UDP socket: {exc}", exc.errno) from exc

        self._sock = sock
        self._port = hton16(port)
        self._source = source
        self._registration: ReadRegistration | None = None
        self._closed = False

        if reuse:
            self._set_option(socket.SO_REUSEADDR)
        if broadcast:
            self._set_option(socket.SO_BROADCAST)

        if source is None:
            return
        try:
            sock.bind((source, port))
        except OSError as exc:
            sock.close()
            self._closed = True
            raise BindError(f"Could not bind UDP socket to {source}:{port}: {exc}", exc.errno) from exc

    def _set_option(self, option: int) -> None:
        try:
            self._sock.setsockopt(socket.SOL_SOCKET, option, 1)
        except OSError as exc:
            LOGGER.warning("Could not set socket option %d: %s", option, exc)

    @property
    def port(self) -> int:
        """Configured port in host byte order."""
        return ntoh16(self._port)

    @property
    def closed(self) -> bool:
        if self._registration is not None and self._registration.cancelled:
            return True
        return self._closed

    @property
    def bound(self) -> bool:
        return self._source is not None

    def fileno(self) -> int:
        return self._sock.fileno()

    def local_endpoint(self) -> EndPoint | None:
        if self.closed:
            return None
        return endpoint_for(self._sock.family, self._sock.getsockname())

    def on_read(
        self,
        handler: ReadHandler,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        datagram_size: int = DEFAULT_DATAGRAM_SIZE,
        executor: Executor | None = None,
    ) -> ReadRegistration:
        """Call ``handler(payload, sender)`` for every received datagram.

        The handler runs on ``loop`` (default: the running loop) or, when an
        executor is given, on that executor; invocations never overlap and
        keep arrival order. A failed receive is reported as ``(None, None)``
        and an unresolvable sender as ``None``.
        """
        if self.closed:
            raise SocketClosedError("UDP socket is closed")
        if self._registration is not None:
            raise SocketClosedError("UDP socket already has a read registration")
        self._sock.setblocking(False)
        registration = ReadRegistration(
            self._sock,
            loop or asyncio.get_running_loop(),
            handler,
            datagram_size=datagram_size,
            executor=executor,
        )
        self._registration = registration
        return registration

    def send(self, data: bytes, to: str | None = None, port: int | None = None) -> bool:
        """Send ``data`` to ``to`` (default: broadcast) on ``port`` (default: own port).

        Returns ``True`` iff the whole payload was accepted by the transport.
        """
        if self.closed:
            return False
        host = BROADCAST_ADDRESS if to is None else to
        if _parse_ipv4(host) is None:
            LOGGER.debug("Not sending to unparsable address '%s'", host)
            return False
        destination_port = self.port if port is None else port
        try:
            sent = self._sock.sendto(data, (host, destination_port))
        except (OSError, OverflowError) as exc:
            LOGGER.debug("sendto %s:%d failed: %s", host, destination_port, exc)
            return False
        return sent == len(data)

    def send_text(
        self,
        text: str,
        encoding: str = "utf-8",
        to: str | None = None,
        port: int | None = None,
    ) -> bool:
        try:
            data = text.encode(encoding)
        except (LookupError, UnicodeError):
            return False
        return self.send(data, to=to, port=port)

    def close(self) -> None:
        """Release the descriptor, cancelling any active read registration."""
        if self._closed:
            return
        self._closed = True
        if self._registration is not None:
            self._registration.cancel()
            return
        self._sock.close()

    def __enter__(self) -> UDPSocket:
        return self

    def __exit__(self, *_exc) -> None:
        self.close()
