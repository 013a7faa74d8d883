"""Byte transport for the shared RS-485 line."""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Iterable, Optional

import serial

from . import protocol
from . import registers as REG
from .config import SerialConfig
from .errors import TransportError

logger = logging.getLogger(__name__)


class Transport:
    """Abstract base class for transport implementations.

    A transport moves raw bytes only; it knows nothing about frames.
    """

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    def open(self) -> None:
        raise NotImplementedError

    def send(self, data: bytes) -> None:
        raise NotImplementedError

    def receive(self, size: int, timeout: float) -> bytes:
        raise NotImplementedError

    def discard_input(self) -> int:
        return 0

    def close(self) -> None:  # pragma: no cover - default
        """Close transport resources."""


class SerialTransport(Transport):
    """RS-485 transport based on pyserial."""

    def __init__(self, cfg: SerialConfig) -> None:
        self._cfg = cfg
        self._port: Optional[serial.Serial] = None

    @property
    def is_open(self) -> bool:
        return self._port is not None and self._port.is_open

    def open(self) -> None:
        if self.is_open:
            return
        try:
            self._port = serial.Serial(
                port=self._cfg.port,
                baudrate=self._cfg.baudrate,
                parity=self._cfg.parity,
                stopbits=self._cfg.stopbits,
                bytesize=self._cfg.bytesize,
                timeout=self._cfg.timeout,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            self._port = None
            raise TransportError(f"Serial connection failed on {self._cfg.port}: {exc}") from exc
        logger.info("serial port %s opened at %s baud", self._cfg.port, self._cfg.baudrate)

    def _ensure_port(self) -> serial.Serial:
        port = self._port
        if port is None or not port.is_open:
            raise TransportError(f"serial port {self._cfg.port} is not open")
        return port

    def send(self, data: bytes) -> None:
        port = self._ensure_port()
        try:
            port.write(data)
            port.flush()
        except (serial.SerialException, OSError) as exc:
            raise TransportError(f"serial write failed: {exc}") from exc

    def receive(self, size: int, timeout: float) -> bytes:
        port = self._ensure_port()
        try:
            port.timeout = max(0.0, timeout)
            return bytes(port.read(size))
        except (serial.SerialException, OSError) as exc:
            raise TransportError(f"serial read failed: {exc}") from exc

    def discard_input(self) -> int:
        port = self._ensure_port()
        try:
            waiting = port.in_waiting
            if waiting:
                port.reset_input_buffer()
        except (serial.SerialException, OSError) as exc:
            raise TransportError(f"serial flush failed: {exc}") from exc
        return waiting

    def close(self) -> None:
        if self._port is not None:
            try:
                self._port.close()
            except (serial.SerialException, OSError) as exc:
                logger.debug("error while closing %s: %s", self._cfg.port, exc)
            finally:
                self._port = None
            logger.info("serial port %s closed", self._cfg.port)


class SimulatedTransport(Transport):
    """In-memory desk controller used for simulations and tests.

    Answers function 0x17 requests with the status block. While a movement
    button is held the height changes by ``step`` per exchange; a held
    preset button drives it towards that preset's target. ``noise`` bytes are
    queued ahead of every reply to mimic button-panel traffic.
    """

    def __init__(
        self,
        height: int = 300,
        step: int = 10,
        slave_id: int = 1,
        targets: Optional[dict[int, int]] = None,
        noise: bytes = b"",
    ) -> None:
        self.height = height
        self.step = step
        self.slave_id = slave_id
        self.targets = dict(targets or {})
        self.noise = noise
        self.requests: list[tuple[int, ...]] = []
        self._rx = bytearray()
        self._open = False
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self._open = True

    def _check_open(self) -> None:
        if not self._open:
            raise TransportError("simulated port is not open")

    def _move(self, button: int, held: bool) -> None:
        if not held:
            return
        if button == REG.BUTTON_UP:
            self.height += self.step
        elif button == REG.BUTTON_DOWN:
            self.height -= self.step
        elif button in self.targets:
            target = self.targets[button]
            delta = max(-self.step, min(self.step, target - self.height))
            self.height += delta

    def send(self, data: bytes) -> None:
        self._check_open()
        try:
            slave, _, read_count, _, values = protocol.decode_read_write_request(data)
        except ValueError:
            logger.debug("simulator ignored malformed request")
            return
        if slave != self.slave_id:
            return
        with self._lock:
            self.requests.append(values)
            button = values[REG.BUTTON_INDEX]
            self._move(button, values[REG.HOLD_INDEX] == button and button != REG.BUTTON_IDLE)
            regs = [0] * read_count
            if read_count > REG.HEIGHT_INDEX:
                regs[REG.HEIGHT_INDEX] = self.height
            self._rx += self.noise
            self._rx += protocol.encode_read_write_response(self.slave_id, regs)

    def receive(self, size: int, timeout: float) -> bytes:
        self._check_open()
        with self._lock:
            if self._rx:
                chunk = bytes(self._rx[:size])
                del self._rx[:size]
                return chunk
        time.sleep(min(max(timeout, 0.0), 0.01))
        return b""

    def discard_input(self) -> int:
        self._check_open()
        with self._lock:
            count = len(self._rx)
            self._rx.clear()
        return count

    def close(self) -> None:
        self._open = False


def make_transport(cfg: SerialConfig, preset_buttons: Iterable[int] = ()) -> Transport:
    """Return the serial transport, or the simulator when DESKBRIDGE_SIM is set."""
    if os.getenv("DESKBRIDGE_SIM"):
        logger.info("using simulated desk controller")
        targets = {button: 250 + 50 * i for i, button in enumerate(preset_buttons)}
        return SimulatedTransport(slave_id=cfg.slave_id, targets=targets)
    return SerialTransport(cfg)
