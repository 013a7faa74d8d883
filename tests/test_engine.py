from __future__ import annotations

import time
from typing import Optional

import pytest

from deskbridge import protocol
from deskbridge import registers as REG
from deskbridge.config import SerialConfig
from deskbridge.engine import TransactionEngine
from deskbridge.errors import (
    DeviceExceptionError,
    GarbageError,
    TimeoutError,
    TransactionError,
    TransportError,
)
from deskbridge.models import OperationKind, Transaction
from deskbridge.transport import SerialTransport, Transport


class ScriptedTransport(Transport):
    """Answers each send with the next scripted reply (None = stay silent)."""

    def __init__(self, replies: list[Optional[bytes]], leftover: bytes = b"") -> None:
        self.replies = list(replies)
        self.rx = bytearray(leftover)
        self.sent: list[bytes] = []
        self.dropped = 0

    @property
    def is_open(self) -> bool:
        return True

    def open(self) -> None:
        pass

    def send(self, data: bytes) -> None:
        self.sent.append(data)
        reply = self.replies.pop(0) if self.replies else None
        if reply:
            self.rx += reply

    def receive(self, size: int, timeout: float) -> bytes:
        if self.rx:
            chunk = bytes(self.rx[:size])
            del self.rx[:size]
            return chunk
        time.sleep(min(timeout, 0.005))
        return b""

    def discard_input(self) -> int:
        count = len(self.rx)
        self.dropped += count
        self.rx.clear()
        return count

    def close(self) -> None:
        pass


class BrokenTransport(ScriptedTransport):
    def send(self, data: bytes) -> None:
        self.sent.append(data)
        raise TransportError("device unplugged")


def _tx(timeout: float = 0.2) -> Transaction:
    return Transaction(kind=OperationKind.READ_HEIGHT, write_values=REG.panel_frame(), timeout=timeout)


def _reply(height: int = 300, slave: int = 1, count: int = 20) -> bytes:
    regs = [0] * count
    regs[REG.HEIGHT_INDEX] = height
    return protocol.encode_read_write_response(slave, regs)


def test_valid_frame_is_parsed() -> None:
    transport = ScriptedTransport([_reply(412)])
    response = TransactionEngine(transport).execute(_tx())
    assert response.raw_height == 412
    assert len(response.registers) == REG.STATUS_COUNT
    assert transport.sent[0] == protocol.encode_read_write_request(
        1, REG.STATUS_ADDRESS, REG.STATUS_COUNT, REG.PANEL_ADDRESS, REG.panel_frame()
    )


def test_bad_crc_frame_is_never_returned() -> None:
    broken = bytearray(_reply(412))
    broken[-2] ^= 0x01
    transport = ScriptedTransport([bytes(broken)])
    with pytest.raises(TimeoutError):
        TransactionEngine(transport).execute(_tx(0.1))


def test_bad_crc_frame_followed_by_good_frame() -> None:
    broken = bytearray(_reply(999))
    broken[20] ^= 0x01
    transport = ScriptedTransport([bytes(broken) + _reply(301)])
    assert TransactionEngine(transport).execute(_tx()).raw_height == 301


@pytest.mark.parametrize("noise", [b"\xff" * 50, b"\x00\xaa\x55" * 10, b"\x01\x03\x02\x00\x00"])
def test_garbage_below_limit_is_skipped(noise: bytes) -> None:
    transport = ScriptedTransport([noise + _reply(305)])
    engine = TransactionEngine(transport, max_discard=64)
    assert engine.execute(_tx()).raw_height == 305


def test_garbage_above_limit() -> None:
    transport = ScriptedTransport([b"\xff" * 100 + _reply(305)])
    engine = TransactionEngine(transport, max_discard=64)
    with pytest.raises(GarbageError) as info:
        engine.execute(_tx())
    assert info.value.discarded > 64


def test_discard_limit_boundary() -> None:
    at_limit = ScriptedTransport([b"\xff" * 64 + _reply(305)])
    assert TransactionEngine(at_limit, max_discard=64).execute(_tx()).raw_height == 305

    over_limit = ScriptedTransport([b"\xff" * 65 + _reply(305)])
    with pytest.raises(GarbageError) as info:
        TransactionEngine(over_limit, max_discard=64).execute(_tx())
    assert info.value.discarded == 65


def test_frames_from_other_slaves_and_shapes_are_discarded() -> None:
    foreign = _reply(111, slave=2) + _reply(222, count=10)
    transport = ScriptedTransport([foreign + _reply(333)])
    assert TransactionEngine(transport).execute(_tx()).raw_height == 333


def test_timeout_is_bounded_by_deadline() -> None:
    transport = ScriptedTransport([None])
    engine = TransactionEngine(transport)
    start = time.monotonic()
    with pytest.raises(TimeoutError):
        engine.execute(_tx(0.2))
    elapsed = time.monotonic() - start
    assert 0.2 <= elapsed < 0.5


def test_stale_bytes_are_dropped_before_sending() -> None:
    transport = ScriptedTransport([_reply(320)], leftover=_reply(100))
    assert TransactionEngine(transport).execute(_tx()).raw_height == 320
    assert transport.dropped == 45


def test_exception_response() -> None:
    reply = protocol.encode_exception_response(1, protocol.FUNCTION_READ_WRITE_MULTIPLE, 0x02)
    transport = ScriptedTransport([reply])
    with pytest.raises(DeviceExceptionError) as info:
        TransactionEngine(transport).execute(_tx())
    assert info.value.code == 0x02
    assert isinstance(info.value, TransactionError)


def test_retry_recovers_from_noise() -> None:
    transport = ScriptedTransport([None, b"\xff" * 100, _reply(310)])
    engine = TransactionEngine(transport, max_discard=64)
    response = engine.execute_with_retry(_tx(0.05), attempts=3)
    assert response.raw_height == 310
    assert len(transport.sent) == 3


def test_retry_gives_up() -> None:
    transport = ScriptedTransport([None, None, None, _reply(310)])
    with pytest.raises(TimeoutError):
        TransactionEngine(transport).execute_with_retry(_tx(0.02), attempts=3)
    assert len(transport.sent) == 3


def test_transport_error_is_not_retried() -> None:
    transport = BrokenTransport([])
    with pytest.raises(TransportError):
        TransactionEngine(transport).execute_with_retry(_tx(), attempts=3)
    assert len(transport.sent) == 1


def test_serial_transport_requires_open_port() -> None:
    transport = SerialTransport(SerialConfig(port="/dev/null-desk"))
    assert not transport.is_open
    with pytest.raises(TransportError):
        transport.send(b"\x01")
    with pytest.raises(TransportError):
        transport.receive(1, 0.01)
    with pytest.raises(TransportError):
        transport.discard_input()
