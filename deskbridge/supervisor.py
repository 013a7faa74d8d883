"""Lifecycle and recovery of the bus and serial connections."""

from __future__ import annotations

import dataclasses
import logging
import signal
import threading
from typing import Callable, Optional

from .adapter import CommandAdapter
from .config import Config
from .desk import DeskModel
from .discovery import discovery_messages
from .engine import TransactionEngine
from .errors import TransportError
from .models import ConnectivityState
from .mqtt import MqttBus
from .transport import Transport, make_transport

logger = logging.getLogger(__name__)

BusFactory = Callable[..., MqttBus]


class ConnectionSupervisor:
    """Owns connectivity state and the liveness indicator.

    Liveness is ON iff both the bus and the serial link are up. A serial link
    that keeps failing transactions counts as down until it recovers.
    """

    def __init__(
        self,
        cfg: Config,
        transport: Optional[Transport] = None,
        bus_factory: BusFactory = MqttBus,
    ) -> None:
        self.cfg = cfg
        self.transport = transport or make_transport(
            cfg.serial, [p.button for p in cfg.presets]
        )
        self.engine = TransactionEngine(self.transport, cfg.serial.slave_id, cfg.max_discard)
        self.desk = DeskModel(self.engine, cfg)
        self.adapter = CommandAdapter(cfg, self.desk, discovery=lambda: discovery_messages(cfg))
        self.bus = bus_factory(
            cfg,
            on_connect=self._bus_connected,
            on_disconnect=self._bus_disconnected,
            on_message=self.adapter.handle_message,
            will_topic=self.adapter.topics.connected,
        )
        self._state = ConnectivityState()
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._serial_retry = threading.Event()
        self._reconnect_thread: Optional[threading.Thread] = None
        self.desk.add_link_failure_listener(self._serial_failed)
        self.desk.add_health_listener(self._serial_health)

    @property
    def state(self) -> ConnectivityState:
        with self._lock:
            return dataclasses.replace(self._state)

    def _update(self, **changes: bool) -> None:
        """Apply a connectivity transition and publish liveness with it."""
        with self._lock:
            before = self._state.live
            self._state = dataclasses.replace(self._state, **changes)
            if self._state.live != before:
                logger.info("desk %s", "online" if self._state.live else "offline")
            self.adapter.connectivity_changed(dataclasses.replace(self._state))

    # ---- Bus ----
    def _bus_connected(self, bus: MqttBus) -> None:
        with self._lock:
            self._update(bus_connected=True)
            self.adapter.bus_connected(bus)

    def _bus_disconnected(self) -> None:
        with self._lock:
            self.adapter.bus_disconnected()
            self._update(bus_connected=False)

    # ---- Serial ----
    def _open_serial(self) -> bool:
        try:
            self.transport.open()
        except TransportError as exc:
            logger.warning("%s", exc)
            return False
        self._update(serial_connected=True)
        return True

    def _serial_failed(self, exc: TransportError) -> None:
        with self._lock:
            self._update(serial_connected=False)
            self.transport.close()
        self._serial_retry.set()

    def _serial_health(self, healthy: bool) -> None:
        if not self.transport.is_open:
            return
        self._update(serial_connected=healthy)

    def _reconnect_loop(self) -> None:
        while not self._stop.is_set():
            self._serial_retry.wait()
            self._serial_retry.clear()
            if self._stop.is_set():
                break
            delay = self.cfg.serial_backoff_initial
            while not self._stop.is_set() and not self.transport.is_open:
                logger.info("reopening serial port in %.0fs", delay)
                if self._stop.wait(delay):
                    return
                if self._open_serial():
                    self.desk.refresh()
                    break
                delay = min(delay * 2, self.cfg.serial_backoff_max)

    # ---- Lifecycle ----
    def start(self) -> None:
        self._stop.clear()
        self._reconnect_thread = threading.Thread(
            target=self._reconnect_loop, name="serial-reconnect", daemon=True
        )
        self._reconnect_thread.start()
        if self._open_serial():
            self.desk.refresh()
        else:
            self._serial_retry.set()
        self.bus.start()
        self.desk.start_polling()

    def stop(self) -> None:
        self._stop.set()
        self._serial_retry.set()
        self._update(serial_connected=False)
        self.desk.close()
        self.bus.stop()
        if self._reconnect_thread is not None:
            self._reconnect_thread.join(timeout=5)
        self.transport.close()

    def run_forever(self) -> None:
        """Run until SIGINT or SIGTERM."""
        finished = threading.Event()

        def _handle(signum, frame):
            logger.info("received signal %s, shutting down", signum)
            finished.set()

        signal.signal(signal.SIGINT, _handle)
        signal.signal(signal.SIGTERM, _handle)
        self.start()
        try:
            finished.wait()
        finally:
            self.stop()
