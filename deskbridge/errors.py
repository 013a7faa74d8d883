"""Custom exceptions for the deskbridge package."""

from __future__ import annotations

from typing import Optional


class DeskBridgeError(Exception):
    """Base class for all deskbridge related errors."""


class ConfigError(DeskBridgeError):
    """Invalid or incomplete configuration."""


class TransportError(DeskBridgeError):
    """Serial link failure: port closed, unplugged or write failed."""


class TransactionError(DeskBridgeError):
    """A single request/response exchange did not yield a valid frame."""


class TimeoutError(TransactionError):
    """Raised when no valid response frame arrives before the deadline."""


class GarbageError(TransactionError):
    """Raised when too many foreign bytes were discarded while hunting a frame."""

    def __init__(self, discarded: int) -> None:
        super().__init__(f"discarded {discarded} bytes without finding a valid frame")
        self.discarded = discarded


class DeviceExceptionError(TransactionError):
    """The controller answered with a Modbus exception response."""

    def __init__(self, code: int, name: Optional[str] = None) -> None:
        super().__init__(f"device exception 0x{code:02X} ({name or 'unknown'})")
        self.code = code
        self.name = name
