"""Modbus desk controller to MQTT bridge."""

from importlib import metadata as _metadata

try:
    __version__ = _metadata.version("deskbridge")
except _metadata.PackageNotFoundError:  # pragma: no cover - package not installed
    __version__ = "0.0.0"

from .config import Config
from .desk import DeskModel
from .engine import TransactionEngine
from .models import ConnectivityState, DeskOperation, DeskState, Direction
from .supervisor import ConnectionSupervisor
__all__ = [
    "Config",
    "ConnectionSupervisor",
    "ConnectivityState",
    "DeskModel",
    "DeskOperation",
    "DeskState",
    "Direction",
    "TransactionEngine",
    "__version__",
]
