"""Desk model: the only writer of desk state.

Every operation is funnelled through a single worker thread, so exchanges on
the serial line happen strictly one at a time and in submission order.

The ``moving`` flag is inferred, not observed: the controller has no reliable
motor-state register. A movement command sets it; the height staying the same
over ``stable_reads`` consecutive polls, ``max_move_seconds`` elapsing, or an
explicit stop clears it. Treat it as a UI hint.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from . import registers as REG
from .config import Config
from .engine import TransactionEngine
from .errors import ConfigError, DeskBridgeError, TransactionError, TransportError
from .models import DeskOperation, DeskState, Direction, OperationKind, Response, Transaction

logger = logging.getLogger(__name__)

StateListener = Callable[[DeskState], None]
HealthListener = Callable[[bool], None]
LinkFailureListener = Callable[[TransportError], None]


class DeskModel:
    """Authoritative in-memory desk state and the rules for updating it."""

    def __init__(
        self,
        engine: TransactionEngine,
        cfg: Optional[Config] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.engine = engine
        self.cfg = cfg or Config()
        self._clock = clock
        self._state = DeskState()
        self._button: Optional[int] = None
        self._move_started: Optional[float] = None
        self._stable = 0
        self._failures = 0
        self._healthy = True
        self._state_listeners: list[StateListener] = []
        self._health_listeners: list[HealthListener] = []
        self._link_listeners: list[LinkFailureListener] = []
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="desk-worker")
        self._stop = threading.Event()
        self._wakeup = threading.Event()
        self._poll_thread: Optional[threading.Thread] = None

    # ---- Listeners ----
    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def add_health_listener(self, listener: HealthListener) -> None:
        self._health_listeners.append(listener)

    def add_link_failure_listener(self, listener: LinkFailureListener) -> None:
        self._link_listeners.append(listener)

    @property
    def state(self) -> DeskState:
        """A snapshot of the current state."""
        return dataclasses.replace(self._state)

    # ---- Public operations ----
    def request(self, op: DeskOperation) -> "Future[Optional[DeskState]]":
        """Queue ``op`` for the serial line.

        The future resolves to the new state, or None when the exchange failed
        and the state was left unchanged. Serial link failures are raised
        through the future.
        """
        if op.kind == OperationKind.TRIGGER_PRESET:
            self.cfg.preset(op.preset)  # type: ignore[arg-type]
        return self._executor.submit(self._run, op)

    def refresh(self) -> "Future[Optional[DeskState]]":
        return self.request(DeskOperation.height_query())

    def press_preset(self, number: int) -> "Future[Optional[DeskState]]":
        return self.request(DeskOperation.move_to_preset(number))

    def move(self, direction: Direction) -> "Future[Optional[DeskState]]":
        return self.request(DeskOperation.move(direction))

    def stop(self) -> "Future[Optional[DeskState]]":
        return self.request(DeskOperation.stop())

    # ---- Transactions ----
    def _transaction(self, kind: OperationKind, words: tuple[int, ...], preset: Optional[int] = None) -> Transaction:
        return Transaction(kind=kind, write_values=words, timeout=self.cfg.serial.timeout, preset=preset)

    def _button_for(self, op: DeskOperation) -> int:
        if op.kind == OperationKind.TRIGGER_PRESET:
            return self.cfg.preset(op.preset).button  # type: ignore[arg-type]
        if op.direction == Direction.UP:
            return REG.BUTTON_UP
        if op.direction == Direction.DOWN:
            return REG.BUTTON_DOWN
        raise ConfigError(f"operation {op} has no button")

    def _height_query(self) -> Transaction:
        if self._state.moving and self._button is not None:
            words = REG.panel_frame(self._button, hold=True)
        else:
            words = REG.panel_frame()
        return self._transaction(OperationKind.READ_HEIGHT, words)

    def _run(self, op: DeskOperation) -> Optional[DeskState]:
        try:
            if op.kind == OperationKind.READ_HEIGHT:
                was_moving = self._state.moving
                self.apply(self.engine.execute_with_retry(self._height_query(), self.cfg.poll_retries))
                if was_moving and not self._state.moving:
                    self._release()
            elif op.kind == OperationKind.STOP:
                self._release()
            else:
                self._start_movement(op)
        except TransactionError as exc:
            self._record_failure(op, exc)
            return None
        except TransportError as exc:
            logger.error("serial link failure during %s: %s", op.kind.value, exc)
            before = self._state.published()
            self._settle()
            self._notify(before)
            for listener in list(self._link_listeners):
                listener(exc)
            raise
        self._record_success()
        return self.state

    def _start_movement(self, op: DeskOperation) -> None:
        button = self._button_for(op)
        attempts = self.cfg.poll_retries
        self.apply(self.engine.execute_with_retry(
            self._transaction(OperationKind.WAKE, REG.panel_frame(REG.BUTTON_WAKE)), attempts
        ))
        self.apply(self.engine.execute_with_retry(
            self._transaction(OperationKind.STOP, REG.panel_frame()), attempts
        ))
        self._button = button
        self.apply(self.engine.execute_with_retry(
            self._transaction(op.kind, REG.panel_frame(button), preset=op.preset), attempts
        ))
        self._wakeup.set()

    def _release(self) -> None:
        """Let go of any held button."""
        self.apply(self.engine.execute_with_retry(
            self._transaction(OperationKind.STOP, REG.panel_frame()), self.cfg.poll_retries
        ))

    def apply(self, response: Response) -> bool:
        """Update the state from a successful response.

        Returns True when a published field (height, moving, last preset)
        changed.
        """
        before = self._state.published()
        kind = response.transaction.kind
        height = round(response.raw_height * self.cfg.height_scale + self.cfg.height_offset, 2)
        state = self._state
        previous = state.height
        state.height = height
        state.last_updated = response.received_at

        if kind in (OperationKind.TRIGGER_PRESET, OperationKind.MOVE_CONTINUOUS):
            state.moving = True
            state.last_preset = response.transaction.preset if kind == OperationKind.TRIGGER_PRESET else None
            self._move_started = self._clock()
            self._stable = 0
        elif kind == OperationKind.STOP:
            self._settle()
        elif kind == OperationKind.READ_HEIGHT and state.moving:
            self._stable = self._stable + 1 if height == previous else 0
            elapsed = self._clock() - (self._move_started or self._clock())
            if self._stable >= self.cfg.stable_reads:
                logger.info("desk settled at %.1f", height)
                self._settle()
            elif elapsed >= self.cfg.max_move_seconds:
                logger.warning("desk still moving after %.0fs, assuming stopped", elapsed)
                self._settle()

        return self._notify(before)

    def _notify(self, before: tuple) -> bool:
        if self._state.published() == before:
            return False
        snapshot = self.state
        for listener in list(self._state_listeners):
            listener(snapshot)
        return True

    def _settle(self) -> None:
        self._state.moving = False
        self._button = None
        self._move_started = None
        self._stable = 0

    # ---- Failure accounting ----
    def _record_failure(self, op: DeskOperation, exc: TransactionError) -> None:
        self._failures += 1
        log = logger.warning if self._failures > 1 else logger.debug
        log("%s failed, state unchanged (%s consecutive): %s", op.kind.value, self._failures, exc)
        if self._healthy and self._failures >= self.cfg.unhealthy_threshold:
            self._healthy = False
            logger.warning("serial link unhealthy after %s failed operations", self._failures)
            for listener in list(self._health_listeners):
                listener(False)

    def _record_success(self) -> None:
        self._failures = 0
        if not self._healthy:
            self._healthy = True
            logger.info("serial link healthy again")
            for listener in list(self._health_listeners):
                listener(True)

    # ---- Polling ----
    def start_polling(self) -> None:
        if self._poll_thread is not None:
            return
        self._stop.clear()
        self._poll_thread = threading.Thread(target=self._poll_loop, name="desk-poller", daemon=True)
        self._poll_thread.start()

    def _poll_loop(self) -> None:
        while not self._stop.is_set():
            interval = self.cfg.move_poll_interval if self._state.moving else self.cfg.poll_interval
            self._wakeup.wait(interval)
            self._wakeup.clear()
            if self._stop.is_set():
                break
            if not self.engine.ready:
                continue
            try:
                self.refresh().result()
            except DeskBridgeError as exc:
                logger.debug("poll failed: %s", exc)

    def close(self) -> None:
        self._stop.set()
        self._wakeup.set()
        if self._poll_thread is not None:
            self._poll_thread.join(timeout=5)
            self._poll_thread = None
        self._executor.shutdown(wait=True)
