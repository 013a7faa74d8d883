"""Modbus RTU framing for the read/write-multiple-registers exchange.

PDU bodies are built and parsed by pymodbus' message classes; this module
only adds the slave address and CRC that make an RTU frame of them.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from pymodbus.pdu import ExceptionResponse, ModbusExceptions, ModbusPDU
from pymodbus.register_read_message import (
    ReadWriteMultipleRegistersRequest,
    ReadWriteMultipleRegistersResponse,
)
from pymodbus.utilities import checkCRC, computeCRC

FUNCTION_READ_WRITE_MULTIPLE = ReadWriteMultipleRegistersRequest.function_code
EXCEPTION_BIT = 0x80
EXCEPTION_FRAME_LENGTH = 5
HEADER_LENGTH = 3
CRC_LENGTH = 2
# slave, function, read address/count, write address/count, byte count
REQUEST_HEADER_LENGTH = 11


def append_crc(body: bytes) -> bytes:
    """Return ``body`` followed by its CRC-16/Modbus (low byte first)."""
    return body + computeCRC(body).to_bytes(2, "big")


def crc_ok(frame: bytes | bytearray) -> bool:
    if len(frame) < CRC_LENGTH + 1:
        return False
    check = int.from_bytes(frame[-CRC_LENGTH:], "big")
    return bool(checkCRC(bytes(frame[:-CRC_LENGTH]), check))


def _rtu_frame(slave_id: int, pdu: ModbusPDU) -> bytes:
    return append_crc(bytes([slave_id, pdu.function_code]) + pdu.encode())


def _words(values: Iterable[int]) -> list[int]:
    return [int(v) & 0xFFFF for v in values]


def encode_read_write_request(
    slave_id: int,
    read_address: int,
    read_count: int,
    write_address: int,
    values: Sequence[int],
) -> bytes:
    """Build a complete function 0x17 request frame."""
    request = ReadWriteMultipleRegistersRequest(
        read_address=read_address,
        read_count=read_count,
        write_address=write_address,
        write_registers=_words(values),
    )
    return _rtu_frame(slave_id, request)


def encode_read_write_response(slave_id: int, registers: Iterable[int]) -> bytes:
    """Build the controller's answer; used by the simulator and in tests."""
    return _rtu_frame(slave_id, ReadWriteMultipleRegistersResponse(_words(registers)))


def encode_exception_response(slave_id: int, function: int, code: int) -> bytes:
    return _rtu_frame(slave_id, ExceptionResponse(function, code))


def decode_read_write_request(frame: bytes) -> tuple[int, int, int, int, tuple[int, ...]]:
    """Split a request frame into (slave, read_address, read_count, write_address, values).

    Raises ``ValueError`` for frames that are not well formed function 0x17
    requests.
    """
    if len(frame) < REQUEST_HEADER_LENGTH + CRC_LENGTH or not crc_ok(frame):
        raise ValueError("malformed request frame")
    if frame[1] != FUNCTION_READ_WRITE_MULTIPLE:
        raise ValueError("unexpected function")
    if len(frame) != REQUEST_HEADER_LENGTH + frame[REQUEST_HEADER_LENGTH - 1] + CRC_LENGTH:
        raise ValueError("request length mismatch")
    request = ReadWriteMultipleRegistersRequest()
    request.decode(bytes(frame[2:-CRC_LENGTH]))
    if request.write_byte_count != 2 * request.write_count:
        raise ValueError("unexpected byte count")
    return (
        frame[0],
        request.read_address,
        request.read_count,
        request.write_address,
        tuple(request.write_registers),
    )


def response_length(read_count: int) -> int:
    return HEADER_LENGTH + 2 * read_count + CRC_LENGTH


def decode_registers(frame: bytes) -> tuple[int, ...]:
    """Extract the register words of a validated response frame."""
    response = ReadWriteMultipleRegistersResponse()
    response.decode(bytes(frame[2:-CRC_LENGTH]))
    return tuple(response.registers)


def exception_name(code: int) -> str | None:
    return ModbusExceptions.decode(code)
