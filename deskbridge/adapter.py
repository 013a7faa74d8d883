"""Mapping between bus topics and desk model operations."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from .config import Config
from .desk import DeskModel
from .errors import DeskBridgeError
from .models import ConnectivityState, DeskState

logger = logging.getLogger(__name__)

ON = "ON"
OFF = "OFF"


class BusClient(Protocol):
    def publish(self, topic: str, payload: str, retain: bool = True) -> None: ...

    def subscribe(self, topics: list[str]) -> None: ...


@dataclass(frozen=True)
class Topics:
    base: str
    preset_numbers: tuple[int, ...]

    @classmethod
    def from_config(cls, cfg: Config) -> "Topics":
        return cls(cfg.topic_base, tuple(sorted(p.number for p in cfg.presets)))

    @property
    def connected(self) -> str:
        return f"{self.base}/connected"

    @property
    def height(self) -> str:
        return f"{self.base}/height"

    @property
    def moving(self) -> str:
        return f"{self.base}/moving"

    @property
    def refresh(self) -> str:
        return f"{self.base}/refresh"

    @property
    def command(self) -> str:
        return f"{self.base}/command"

    def preset(self, number: int) -> str:
        return f"{self.base}/preset/{number}"

    def subscriptions(self) -> list[str]:
        return [self.preset(n) for n in self.preset_numbers] + [self.refresh, self.command]


class StatePublisher:
    """Last-value-wins publication per topic.

    Values equal to the last one sent are dropped. While the bus is down only
    the newest value per topic is kept; ``connected()`` flushes them.
    """

    def __init__(self) -> None:
        self._bus: Optional[BusClient] = None
        self._sent: dict[str, str] = {}
        self._pending: dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def pending(self) -> dict[str, str]:
        with self._lock:
            return dict(self._pending)

    def publish(self, topic: str, payload: str) -> bool:
        """Queue ``payload`` for ``topic``; returns True if it was sent now."""
        with self._lock:
            bus = self._bus
            if bus is None:
                self._pending[topic] = payload
                return False
            if self._sent.get(topic) == payload:
                return False
            self._send(bus, topic, payload)
            return True

    def _send(self, bus: BusClient, topic: str, payload: str) -> None:
        logger.debug("publish %s = %s", topic, payload)
        bus.publish(topic, payload, retain=True)
        self._sent[topic] = payload

    def connected(self, bus: BusClient, current: Optional[dict[str, str]] = None) -> None:
        """Attach ``bus`` and send everything that is pending.

        The retained state on the broker may be gone after a reconnect, so the
        sent-cache is reset and ``current`` values are sent once more.
        """
        with self._lock:
            self._bus = bus
            self._sent.clear()
            outgoing = dict(current or {})
            outgoing.update(self._pending)
            self._pending.clear()
            for topic, payload in outgoing.items():
                self._send(bus, topic, payload)

    def disconnected(self) -> None:
        with self._lock:
            self._bus = None


def format_height(height: float) -> str:
    return f"{height:.1f}"


class CommandAdapter:
    """Turns inbound messages into desk operations and state into messages."""

    def __init__(
        self,
        cfg: Config,
        desk: DeskModel,
        publisher: Optional[StatePublisher] = None,
        discovery: Optional[Callable[[], dict[str, str]]] = None,
    ) -> None:
        self.cfg = cfg
        self.desk = desk
        self.topics = Topics.from_config(cfg)
        self.publisher = publisher or StatePublisher()
        self._discovery = discovery
        self._last_state = DeskState()
        self._last_connectivity = ConnectivityState()
        desk.add_state_listener(self.desk_changed)

    # ---- Inbound ----
    def handle_message(self, topic: str, payload: bytes = b"") -> bool:
        """Dispatch one inbound message. Returns True if it was understood."""
        try:
            if topic == self.topics.refresh:
                self.desk.refresh()
                return True
            if topic == self.topics.command:
                return self._handle_command(payload.decode("utf-8", "replace").strip())
            for number in self.topics.preset_numbers:
                if topic == self.topics.preset(number):
                    self.desk.press_preset(number)
                    return True
        except DeskBridgeError as exc:
            logger.warning("rejected command on %s: %s", topic, exc)
            return False
        except RuntimeError as exc:
            # executor already shut down
            logger.debug("dropped command on %s: %s", topic, exc)
            return False
        logger.debug("ignoring message on %s", topic)
        return False

    def _handle_command(self, text: str) -> bool:
        if text.upper() == "REFRESH":
            self.desk.refresh()
            return True
        if text.isdigit() and int(text) in self.topics.preset_numbers:
            self.desk.press_preset(int(text))
            return True
        logger.debug("ignoring command payload %r", text)
        return False

    # ---- Outbound ----
    def _state_messages(self, state: DeskState) -> dict[str, str]:
        messages = {self.topics.moving: ON if state.moving else OFF}
        if state.height is not None:
            messages[self.topics.height] = format_height(state.height)
        return messages

    def desk_changed(self, state: DeskState) -> None:
        self._last_state = state
        for topic, payload in self._state_messages(state).items():
            self.publisher.publish(topic, payload)

    def connectivity_changed(self, state: ConnectivityState) -> None:
        self._last_connectivity = state
        self.publisher.publish(self.topics.connected, ON if state.live else OFF)

    def bus_connected(self, bus: BusClient) -> None:
        """Subscribe, announce discovery and resend current state."""
        bus.subscribe(self.topics.subscriptions())
        if self._discovery is not None:
            for topic, payload in self._discovery().items():
                bus.publish(topic, payload, retain=True)
        current = self._state_messages(self._last_state)
        current[self.topics.connected] = ON if self._last_connectivity.live else OFF
        self.publisher.connected(bus, current)

    def bus_disconnected(self) -> None:
        self.publisher.disconnected()
