from __future__ import annotations

import asyncio
import errno
import socket
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from plugctl.core.errors import AddressParseError, BindError, SocketClosedError
from plugctl.core.model import EndPoint
from plugctl.transports.udp import ReadRegistration, UDPSocket, datagram_lines


class FakeLoop:
    def __init__(self, running: bool = False) -> None:
        self.readers: dict[int, object] = {}
        self.running = running
        self.scheduled: list = []

    def is_running(self) -> bool:
        return self.running

    def call_soon_threadsafe(self, callback, *args) -> None:
        self.scheduled.append((callback, args))

    def add_reader(self, fd: int, callback) -> None:
        self.readers[fd] = callback

    def remove_reader(self, fd: int) -> bool:
        return self.readers.pop(fd, None) is not None


class FakeSocket:
    family = socket.AF_INET

    def __init__(self, datagrams: list[tuple[bytes, tuple[str, int]]] | None = None) -> None:
        self.datagrams = list(datagrams or [])
        self.closed = False
        self.shutdown_calls: list[int] = []

    def fileno(self) -> int:
        return 99

    def recvfrom(self, size: int):
        if not self.datagrams:
            raise OSError(errno.ECONNREFUSED, "Connection refused")
        data, address = self.datagrams.pop(0)
        return data[:size], address

    def shutdown(self, how: int) -> None:
        self.shutdown_calls.append(how)

    def close(self) -> None:
        self.closed = True


def test_invalid_source_address_rejected() -> None:
    with pytest.raises(AddressParseError):
        UDPSocket("999.1.1.1", 10000)
    with pytest.raises(AddressParseError):
        UDPSocket("not-an-ip")


def test_bind_failure_carries_errno() -> None:
    with pytest.raises(BindError) as exc:
        UDPSocket("203.0.113.7", 0)
    assert exc.value.code is not None
    assert not exc.value.eof


def test_unbound_socket_keeps_configured_port() -> None:
    with UDPSocket(port=10000) as sock:
        assert sock.port == 10000
        assert not sock.bound


def test_receive_failure_reports_nothing() -> None:
    loop = FakeLoop()
    received: list[tuple[object, object]] = []
    registration = ReadRegistration(FakeSocket(), loop, lambda p, e: received.append((p, e)), datagram_size=16)

    loop.readers[99]()
    assert received == [(None, None)]
    registration.cancel()


def test_received_payload_is_trimmed_and_sender_resolved() -> None:
    loop = FakeLoop()
    received: list[tuple[object, object]] = []
    sock = FakeSocket([(b"0123456789abcdef-overflow", ("192.168.1.50", 10000))])
    ReadRegistration(sock, loop, lambda p, e: received.append((p, e)), datagram_size=16)

    loop.readers[99]()
    assert received == [(b"0123456789abcdef", EndPoint("192.168.1.50", 10000))]


def test_unresolvable_sender_is_none() -> None:
    loop = FakeLoop()
    received: list[tuple[object, object]] = []
    sock = FakeSocket([(b"on", ("bogus", 1))])
    ReadRegistration(sock, loop, lambda p, e: received.append((p, e)), datagram_size=16)

    loop.readers[99]()
    assert received == [(b"on", None)]


def test_cancel_closes_and_silences_handler() -> None:
    loop = FakeLoop()
    received: list[tuple[object, object]] = []
    sock = FakeSocket([(b"late", ("10.0.0.1", 1))])
    registration = ReadRegistration(sock, loop, lambda p, e: received.append((p, e)), datagram_size=16)
    readable = loop.readers[99]

    registration.cancel()
    assert registration.cancelled
    assert 99 not in loop.readers
    assert sock.shutdown_calls == [socket.SHUT_RDWR]
    assert sock.closed

    # A readiness notification that was already in flight delivers nothing.
    readable()
    assert received == []

    registration.cancel()
    assert sock.shutdown_calls == [socket.SHUT_RDWR]


def test_cancel_off_loop_thread_releases_on_the_loop() -> None:
    loop = FakeLoop(running=True)
    received: list[tuple[object, object]] = []
    sock = FakeSocket([(b"late", ("10.0.0.1", 1))])
    registration = ReadRegistration(sock, loop, lambda p, e: received.append((p, e)), datagram_size=16)

    registration.cancel()
    assert registration.cancelled
    assert 99 in loop.readers
    assert not sock.closed

    loop.readers[99]()
    assert received == []

    (callback, args), = loop.scheduled
    callback(*args)
    assert 99 not in loop.readers
    assert sock.shutdown_calls == [socket.SHUT_RDWR]
    assert sock.closed

    registration.cancel()
    assert len(loop.scheduled) == 1


def test_handler_cancelling_its_own_registration_from_executor() -> None:
    async def scenario():
        receiver = UDPSocket("127.0.0.1", 0, broadcast=False)
        port = receiver.local_endpoint().port
        done = asyncio.Event()
        loop = asyncio.get_running_loop()
        executor = ThreadPoolExecutor(max_workers=1)
        registrations: list[ReadRegistration] = []

        def handler(payload, sender) -> None:
            registrations[0].cancel()
            loop.call_soon_threadsafe(done.set)

        registrations.append(receiver.on_read(handler, datagram_size=64, executor=executor))
        with UDPSocket("127.0.0.1", 0, broadcast=False) as sender:
            assert sender.send(b"stop", to="127.0.0.1", port=port)
        await asyncio.wait_for(done.wait(), timeout=2)
        for _ in range(100):
            if receiver._sock.fileno() == -1:
                break
            await asyncio.sleep(0.01)
        executor.shutdown(wait=True)
        return receiver

    receiver = asyncio.run(scenario())
    assert receiver.closed
    assert receiver._sock.fileno() == -1


def test_loopback_datagram_is_delivered() -> None:
    async def scenario():
        receiver = UDPSocket("127.0.0.1", 0, broadcast=False)
        port = receiver.local_endpoint().port
        received: list[tuple[bytes | None, EndPoint | None]] = []
        got = asyncio.Event()

        def handler(payload, sender) -> None:
            received.append((payload, sender))
            got.set()

        registration = receiver.on_read(handler, datagram_size=64)
        sender = UDPSocket("127.0.0.1", 0, broadcast=False)
        sender_port = sender.local_endpoint().port
        assert sender.send(b"hello", to="127.0.0.1", port=port) is True
        await asyncio.wait_for(got.wait(), timeout=2)
        registration.cancel()
        sender.close()
        return received, sender_port, receiver

    received, sender_port, receiver = asyncio.run(scenario())
    assert received == [(b"hello", EndPoint("127.0.0.1", sender_port))]
    assert receiver.closed
    assert receiver.fileno() == -1


def test_no_callback_after_cancel_with_live_socket() -> None:
    async def scenario() -> list[bytes | None]:
        receiver = UDPSocket("127.0.0.1", 0, broadcast=False)
        port = receiver.local_endpoint().port
        received: list[bytes | None] = []
        registration = receiver.on_read(lambda payload, _sender: received.append(payload))
        registration.cancel()

        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as injector:
            injector.sendto(b"after cancel", ("127.0.0.1", port))
        await asyncio.sleep(0.05)
        return received

    assert asyncio.run(scenario()) == []


def test_executor_handler_runs_serially_in_order() -> None:
    async def scenario() -> tuple[list[bytes], set[str]]:
        receiver = UDPSocket("127.0.0.1", 0, broadcast=False)
        port = receiver.local_endpoint().port
        received: list[bytes] = []
        threads: set[str] = set()
        done = threading.Event()

        def handler(payload, _sender) -> None:
            received.append(payload)
            threads.add(threading.current_thread().name)
            if len(received) == 3:
                done.set()

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="reader") as executor:
            registration = receiver.on_read(handler, executor=executor)
            with UDPSocket(port=port, broadcast=False) as sender:
                for payload in (b"one", b"two", b"three"):
                    assert sender.send(payload, to="127.0.0.1")
            for _ in range(200):
                if done.is_set():
                    break
                await asyncio.sleep(0.01)
            registration.cancel()
        return received, threads

    received, threads = asyncio.run(scenario())
    assert received == [b"one", b"two", b"three"]
    assert all(name.startswith("reader") for name in threads)


def test_send_rejects_bad_destination_and_encoding() -> None:
    with UDPSocket(port=10000, broadcast=False) as sock:
        assert sock.send(b"x", to="not-an-address") is False
        assert sock.send_text("x", encoding="no-such-codec", to="127.0.0.1") is False
        assert sock.send_text("é", encoding="ascii", to="127.0.0.1") is False


def test_closed_socket_refuses_use() -> None:
    sock = UDPSocket(port=10000, broadcast=False)
    sock.close()
    sock.close()
    assert sock.send(b"x", to="127.0.0.1") is False
    with pytest.raises(SocketClosedError):
        sock.on_read(lambda payload, sender: None, loop=FakeLoop())


def test_datagram_lines_framing() -> None:
    assert datagram_lines(b"on\n\np\n") == ["on", "p"]
    assert datagram_lines(b"quit") == ["quit"]
    assert datagram_lines(b"\n\n") == []
    assert datagram_lines(b"on\n\xff\xfe\n") == []
