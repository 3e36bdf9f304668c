"""Line-oriented operator commands."""

from __future__ import annotations

from plugctl.core.model import CommandResult
from plugctl.core.session import DeviceSession


class CommandInterpreter:
    """Map single-line commands onto a device session.

    ``q``/``quit`` end the session, ``on``/``off`` switch the device,
    ``p``/``ping`` report its state. Matching is case-insensitive.
    """

    def __init__(self, session: DeviceSession) -> None:
        self.session = session

    def handle(self, command: str) -> CommandResult:
        keyword = command.lower()
        if keyword in ("q", "quit"):
            return CommandResult(response=None, done=True)
        if keyword in ("on", "off"):
            if self.session.set_state(keyword == "on"):
                return CommandResult(response=command, done=False)
        elif keyword in ("p", "ping"):
            return CommandResult(response=self.status(), done=False)
        # A rejected on/off lands here as well.
        return CommandResult(response=f"Unknown command '{command}'", done=False)

    def status(self, known: bool | None = None) -> str:
        """Return "On" or "Off", querying the device unless ``known`` is given."""
        on = self.session.query_state() if known is None else known
        return "On" if on else "Off"
