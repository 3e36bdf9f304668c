"""Domain-specific errors for plugctl."""

from __future__ import annotations


class PlugctlError(Exception):
    """Base error for plugctl."""


class AddressParseError(PlugctlError):
    """Raised when an IPv4 address string cannot be parsed."""


class SocketError(PlugctlError):
    """Base socket error.

    ``code`` carries the ``errno`` of the failed system call; ``None`` means
    the remote end closed the stream.
    """

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code

    @property
    def eof(self) -> bool:
        return self.code is None


class SocketCreationError(SocketError):
    """Raised when the datagram socket cannot be created."""


class BindError(SocketError):
    """Raised when binding a socket to its source address fails."""


class SocketClosedError(SocketError):
    """Raised when a cancelled or closed socket is used again."""


class SessionError(PlugctlError):
    """Base device session error."""


class SessionCreationError(SessionError):
    """Raised when the device engine cannot resolve an identifier to a handle."""


class DuplicateHandleError(SessionError):
    """Raised when a second live session is registered for the same handle."""


class EventError(PlugctlError):
    """Base error for events delivered by the device engine."""


class OrphanEventError(EventError):
    """Raised when an event carries a handle with no registered session."""


class UnrecognizedEventError(EventError):
    """Raised when an event tag is not one of the known device events."""


class EngineLoadError(PlugctlError):
    """Raised when the device engine library cannot be loaded."""


class ConfigLoadError(PlugctlError):
    """Raised when reading the settings file fails."""


class ConfigValidationError(PlugctlError):
    """Raised when the settings file does not conform to schema."""


class DeviceIdError(PlugctlError):
    """Raised when a device identifier is not a valid hardware address."""
