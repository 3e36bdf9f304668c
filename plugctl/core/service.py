"""Service layer used by CLI and future UI frontends.

Runs one device session on an asyncio loop: discovery, subscription,
operator commands from stdin (and optionally a UDP listen port), output
relay, watchdog and teardown. All session mutations happen on the loop;
the stdin reader thread and the listen executor only post work to it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TextIO

from plugctl.core.command import CommandInterpreter
from plugctl.core.config_loader import check_settings
from plugctl.core.model import EndPoint, Settings, Stage
from plugctl.core.session import DeviceSession, EventDispatcher, SessionRegistry
from plugctl.engines.base import DeviceEngine
from plugctl.engines.liborvibo import LibOrviboEngine
from plugctl.transports.udp import ReadRegistration, UDPSocket, datagram_lines

LOGGER = logging.getLogger(__name__)

Echo = Callable[[str, bool], None]


def _echo(text: str, err: bool) -> None:
    print(text, file=sys.stderr if err else sys.stdout, flush=True)


class PowerSwitchService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        engine: DeviceEngine | None = None,
        stdin: TextIO | None = None,
        echo: Echo | None = None,
    ) -> None:
        self.settings = settings or Settings()
        check_settings(self.settings)
        self.engine = engine or LibOrviboEngine(self.settings.library)
        self.session: DeviceSession | None = None
        self._stdin = stdin
        self._echo = echo or _echo
        self._loop: asyncio.AbstractEventLoop | None = None
        self._done: asyncio.Event | None = None
        self._interpreter: CommandInterpreter | None = None
        self._relay: UDPSocket | None = None
        self._listener: UDPSocket | None = None
        self._listen_registration: ReadRegistration | None = None
        self._listen_executor: ThreadPoolExecutor | None = None
        self._watchdog: asyncio.TimerHandle | None = None
        self._input_thread: threading.Thread | None = None
        self._finishing = False

    def run(self, identifier: str) -> int:
        """Control ``identifier`` until the operator quits or the watchdog fires."""
        return asyncio.run(self.run_async(identifier))

    async def run_async(self, identifier: str) -> int:
        loop = asyncio.get_running_loop()
        self._loop = loop
        self._done = asyncio.Event()
        registry = SessionRegistry()
        dispatcher = EventDispatcher(registry, self.engine, loop=loop)
        dispatch_task = loop.create_task(dispatcher.run())
        self.engine.start(dispatcher.post)
        try:
            session = DeviceSession(identifier, engine=self.engine, registry=registry)
            self.session = session
            self._interpreter = CommandInterpreter(session)
            session.on_discovery(self._on_discovery)
            session.on_subscription(self._on_subscription)
            session.on_unsubscription(self._on_unsubscription)
            session.on_state_change(self._on_state_change)
            self._open_relay()
            self._open_listener()
            if self.settings.timeout_s is not None:
                self._watchdog = loop.call_later(self.settings.timeout_s, self._on_watchdog)
            if not session.discover():
                LOGGER.warning("Discovery broadcast for %s was not sent", identifier)
            await self._done.wait()
        finally:
            self._teardown()
            dispatch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await dispatch_task
            self.engine.stop()
        return 0

    def output(self, text: str, *, err: bool = False) -> None:
        """Print a status line and relay it when a broadcast port is set."""
        self._echo(text, err)
        if self._relay is not None and not self._relay.send_text(f"{text}\n"):
            LOGGER.debug("Relaying %r failed", text)

    def submit(self, line: str) -> None:
        """Handle one operator command on the owning loop."""
        command = line.strip()
        if self._finishing or not command or self.session is None or self._interpreter is None:
            return
        if self.session.stage is not Stage.SUBSCRIBED:
            LOGGER.info("Ignoring command %r while %s", command, self.session.stage.value)
            return
        result = self._interpreter.handle(command)
        if result.response is not None:
            self.output(result.response)
        if result.done:
            self.finish()

    def finish(self) -> None:
        """Unsubscribe, then destroy the session after the teardown delay."""
        if self._finishing or self._loop is None:
            return
        self._finishing = True
        if self._watchdog is not None:
            self._watchdog.cancel()
        if self.session is not None:
            self.session.unsubscribe()
        self._loop.call_later(self.settings.teardown_delay_s, self._finalize)

    def _finalize(self) -> None:
        if self.session is not None:
            self.session.unsubscribe()
            self.session.destroy()
        if self._done is not None:
            self._done.set()

    def _post(self, callback: Callable[..., Any], *args: Any) -> None:
        if self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            LOGGER.debug("Event loop closed; dropping %s", getattr(callback, "__name__", callback))

    def _on_discovery(self, session: DeviceSession) -> None:
        self.output(f"Discovered {session.identifier} at {session.ip}")
        session.subscribe()

    def _on_subscription(self, session: DeviceSession, on: bool) -> None:
        self.output(f"Subscribed, state = {session.state.value}")
        if not self._finishing:
            self._start_input()

    def _on_unsubscription(self, session: DeviceSession) -> None:
        self.output(f"Unsubscribed from {session.identifier}.")

    def _on_state_change(self, session: DeviceSession, on: bool) -> None:
        if self._interpreter is not None:
            self.output(self._interpreter.status(on))

    def _on_watchdog(self) -> None:
        self._watchdog = None
        if self.session is None or self.session.stage is Stage.SUBSCRIBED:
            return
        self.output("Connection timeout!", err=True)
        self.finish()

    def _start_input(self) -> None:
        if self._input_thread is not None:
            return
        self._input_thread = threading.Thread(target=self._read_input, name="plugctl-stdin", daemon=True)
        self._input_thread.start()

    def _read_input(self) -> None:
        stream = self._stdin if self._stdin is not None else sys.stdin
        for line in stream:
            self._post(self.submit, line)
        self._post(self.finish)

    def _open_relay(self) -> None:
        if self.settings.broadcast_port is None:
            return
        self._relay = UDPSocket(port=self.settings.broadcast_port, broadcast=True)

    def _open_listener(self) -> None:
        if self.settings.listen_port is None:
            return
        self._listener = UDPSocket(source="0.0.0.0", port=self.settings.listen_port, reuse=True, broadcast=True)
        self._listen_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="plugctl-listen")
        self._listen_registration = self._listener.on_read(
            self._on_datagram,
            loop=self._loop,
            datagram_size=self.settings.datagram_size,
            executor=self._listen_executor,
        )

    def _on_datagram(self, payload: bytes | None, sender: EndPoint | None) -> None:
        # Runs on the listen executor; commands are applied on the loop.
        if payload is None:
            LOGGER.debug("Receive on listen socket failed")
            return
        lines = datagram_lines(payload)
        if sender is not None:
            LOGGER.debug("%d command line(s) from %s:%d", len(lines), sender.host, sender.port)
        for line in lines:
            self._post(self.submit, line)

    def _teardown(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        if self._listen_registration is not None:
            self._listen_registration.cancel()
        if self._listener is not None:
            self._listener.close()
        if self._listen_executor is not None:
            self._listen_executor.shutdown(wait=False)
        if self._relay is not None:
            self._relay.close()
        if self.session is not None:
            self.session.destroy()
