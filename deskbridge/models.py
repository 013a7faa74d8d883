"""Data models for the deskbridge API."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from . import registers as REG


class OperationKind(str, Enum):
    """Kinds of exchange the desk model can ask the engine for."""

    READ_HEIGHT = "read_height"
    TRIGGER_PRESET = "trigger_preset"
    MOVE_CONTINUOUS = "move_continuous"
    STOP = "stop"
    WAKE = "wake"


class Direction(str, Enum):
    UP = "up"
    DOWN = "down"


@dataclass(frozen=True)
class DeskOperation:
    """Something the desk should do, independent of its wire encoding."""

    kind: OperationKind
    preset: Optional[int] = None
    direction: Optional[Direction] = None

    @classmethod
    def height_query(cls) -> "DeskOperation":
        return cls(OperationKind.READ_HEIGHT)

    @classmethod
    def move_to_preset(cls, number: int) -> "DeskOperation":
        return cls(OperationKind.TRIGGER_PRESET, preset=number)

    @classmethod
    def move(cls, direction: Direction) -> "DeskOperation":
        return cls(OperationKind.MOVE_CONTINUOUS, direction=Direction(direction))

    @classmethod
    def stop(cls) -> "DeskOperation":
        return cls(OperationKind.STOP)


@dataclass(frozen=True)
class Transaction:
    """A single read/write-multiple-registers exchange.

    ``timeout`` is the hard deadline in seconds, counted from the moment the
    engine starts executing the transaction.
    """

    kind: OperationKind
    write_values: tuple[int, ...]
    timeout: float
    read_address: int = REG.STATUS_ADDRESS
    read_count: int = REG.STATUS_COUNT
    write_address: int = REG.PANEL_ADDRESS
    preset: Optional[int] = None


@dataclass(frozen=True)
class Response:
    """Decoded answer to a transaction."""

    transaction: Transaction
    registers: tuple[int, ...]
    received_at: float

    @property
    def raw_height(self) -> int:
        return self.registers[REG.HEIGHT_INDEX]


@dataclass
class DeskState:
    """Last known state of the desk. Height is in inches."""

    height: Optional[float] = None
    moving: bool = False
    last_preset: Optional[int] = None
    last_updated: Optional[float] = None

    def published(self) -> tuple:
        """The fields that are visible on the bus."""
        return (self.height, self.moving, self.last_preset)


@dataclass
class ConnectivityState:
    bus_connected: bool = False
    serial_connected: bool = False

    @property
    def live(self) -> bool:
        return self.bus_connected and self.serial_connected


@dataclass(frozen=True)
class Preset:
    number: int
    name: str
    button: int = 0
