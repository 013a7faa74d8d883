"""Request/response engine for the shared serial line.

The line is shared with the desk's own button panel, so anything in the
receive buffer may be foreign traffic. The engine hunts for a frame that
matches the pending request (slave id, function code, byte count and CRC)
and discards everything else one byte at a time, within a hard deadline and a
bounded discard budget. A misparsed frame is never returned.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from pymodbus.utilities import hexlify_packets

from . import protocol
from .errors import DeviceExceptionError, GarbageError, TimeoutError, TransactionError
from .models import Response, Transaction
from .transport import Transport

logger = logging.getLogger(__name__)


class TransactionEngine:
    """Executes exactly one exchange per call, one call at a time."""

    def __init__(
        self,
        transport: Transport,
        slave_id: int = 1,
        max_discard: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.slave_id = slave_id
        self.max_discard = max_discard
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def ready(self) -> bool:
        return self.transport.is_open

    def execute(self, transaction: Transaction) -> Response:
        """Run ``transaction`` and return its parsed response.

        Raises ``TimeoutError``, ``GarbageError`` or ``DeviceExceptionError``
        for failed exchanges and ``TransportError`` when the line itself fails.
        """
        with self._lock:
            return self._execute(transaction)

    def execute_with_retry(self, transaction: Transaction, attempts: int = 3) -> Response:
        """Retry transaction failures immediately; buffered noise is purged by reading."""
        for attempt in range(1, attempts + 1):
            try:
                return self.execute(transaction)
            except TransactionError as exc:
                logger.debug(
                    "%s failed (attempt %s/%s): %s", transaction.kind.value, attempt, attempts, exc
                )
                if attempt == attempts:
                    raise
        raise TransactionError("no attempts made")

    def _execute(self, transaction: Transaction) -> Response:
        request = protocol.encode_read_write_request(
            self.slave_id,
            transaction.read_address,
            transaction.read_count,
            transaction.write_address,
            transaction.write_values,
        )
        stale = self.transport.discard_input()
        if stale:
            logger.debug("dropped %s stale bytes before %s", stale, transaction.kind.value)
        logger.debug("TX %s", hexlify_packets(request))
        self.transport.send(request)

        deadline = self._clock() + transaction.timeout
        expected = protocol.response_length(transaction.read_count)
        scanner = _FrameScanner(self.slave_id, transaction.read_count, self.max_discard)
        while True:
            frame = scanner.take()
            if frame is not None:
                logger.debug("RX %s", hexlify_packets(frame))
                return Response(
                    transaction=transaction,
                    registers=protocol.decode_registers(frame),
                    received_at=self._clock(),
                )
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise TimeoutError(
                    f"no valid response within {transaction.timeout}s "
                    f"({scanner.discarded} bytes discarded)"
                )
            chunk = self.transport.receive(max(1, expected - len(scanner.buffer)), remaining)
            if chunk:
                scanner.feed(chunk)


class _FrameScanner:
    """Aligns a byte stream on the next valid response frame."""

    def __init__(self, slave_id: int, read_count: int, max_discard: int) -> None:
        self.slave_id = slave_id
        self.byte_count = 2 * read_count
        self.length = protocol.response_length(read_count)
        self.max_discard = max_discard
        self.buffer = bytearray()
        self.discarded = 0

    def feed(self, data: bytes) -> None:
        self.buffer += data

    def _drop(self, count: int = 1) -> None:
        del self.buffer[:count]
        self.discarded += count
        if self.discarded > self.max_discard:
            raise GarbageError(self.discarded)

    def take(self) -> Optional[bytes]:
        """Return the next valid frame, or None if more bytes are needed."""
        buf = self.buffer
        while buf:
            if buf[0] != self.slave_id:
                self._drop()
                continue
            if len(buf) < 2:
                return None
            function = buf[1]
            if function == protocol.FUNCTION_READ_WRITE_MULTIPLE | protocol.EXCEPTION_BIT:
                if len(buf) < protocol.EXCEPTION_FRAME_LENGTH:
                    return None
                candidate = bytes(buf[: protocol.EXCEPTION_FRAME_LENGTH])
                if protocol.crc_ok(candidate):
                    del buf[: protocol.EXCEPTION_FRAME_LENGTH]
                    code = candidate[2]
                    raise DeviceExceptionError(code, protocol.exception_name(code))
                self._drop()
                continue
            if function != protocol.FUNCTION_READ_WRITE_MULTIPLE:
                self._drop()
                continue
            if len(buf) < 3:
                return None
            if buf[2] != self.byte_count:
                self._drop()
                continue
            if len(buf) < self.length:
                return None
            candidate = bytes(buf[: self.length])
            if protocol.crc_ok(candidate):
                del buf[: self.length]
                return candidate
            logger.debug("CRC mismatch at frame boundary, realigning")
            self._drop()
        return None
