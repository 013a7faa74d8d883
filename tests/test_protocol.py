from __future__ import annotations

import pytest
from pymodbus.register_read_message import (
    ReadWriteMultipleRegistersRequest,
    ReadWriteMultipleRegistersResponse,
)

from deskbridge import protocol
from deskbridge import registers as REG


def test_crc_matches_reference_frame() -> None:
    # read 10 holding registers from slave 1, a commonly published example
    assert protocol.append_crc(bytes.fromhex("01030000000A")) == bytes.fromhex("01030000000AC5CD")


def test_crc_ok_rejects_corruption() -> None:
    frame = protocol.encode_read_write_response(1, range(20))
    assert protocol.crc_ok(frame)
    broken = bytearray(frame)
    broken[10] ^= 0x40
    assert not protocol.crc_ok(broken)


def test_request_layout() -> None:
    frame = protocol.encode_read_write_request(
        1, REG.STATUS_ADDRESS, REG.STATUS_COUNT, REG.PANEL_ADDRESS, REG.panel_frame(REG.BUTTON_WAKE)
    )
    assert len(frame) == 11 + 2 * REG.PANEL_COUNT + 2
    assert frame[:11] == bytes.fromhex("01 17 09C4 0014 0A8C 000E 1C")
    # button word sits at index 2 of the written block
    assert frame[11 + 4 : 11 + 6] == b"\x00\x09"
    assert protocol.crc_ok(frame)


def test_request_matches_pymodbus_encoder() -> None:
    values = list(REG.panel_frame(REG.BUTTON_UP, hold=True))
    request = ReadWriteMultipleRegistersRequest(
        read_address=REG.STATUS_ADDRESS,
        read_count=REG.STATUS_COUNT,
        write_address=REG.PANEL_ADDRESS,
        write_registers=values,
    )
    ours = protocol.encode_read_write_request(
        1, REG.STATUS_ADDRESS, REG.STATUS_COUNT, REG.PANEL_ADDRESS, values
    )
    assert ours[1] == request.function_code
    assert ours[2:-2] == request.encode()


def test_decode_request() -> None:
    frame = protocol.encode_read_write_request(1, 0x09C4, 20, 0x0A8C, REG.panel_frame())
    slave, read_address, read_count, write_address, values = protocol.decode_read_write_request(frame)
    assert (slave, read_address, read_count, write_address) == (1, 0x09C4, 20, 0x0A8C)
    assert values == REG.panel_frame()


def test_decode_request_rejects_bad_crc() -> None:
    frame = bytearray(protocol.encode_read_write_request(1, 0x09C4, 20, 0x0A8C, REG.panel_frame()))
    frame[-1] ^= 0xFF
    with pytest.raises(ValueError):
        protocol.decode_read_write_request(bytes(frame))


def test_response_length_and_registers() -> None:
    regs = [0] * 20
    regs[REG.HEIGHT_INDEX] = 412
    frame = protocol.encode_read_write_response(1, regs)
    assert len(frame) == protocol.response_length(20) == 45
    assert protocol.decode_registers(frame)[REG.HEIGHT_INDEX] == 412


def test_response_body_is_pymodbus_compatible() -> None:
    frame = protocol.encode_read_write_response(1, [1, 2])
    assert frame[:3] == bytes([1, protocol.FUNCTION_READ_WRITE_MULTIPLE, 4])
    response = ReadWriteMultipleRegistersResponse()
    response.decode(frame[2:-2])
    assert response.registers == [1, 2]
    assert protocol.decode_registers(frame) == (1, 2)


def test_decode_request_rejects_truncated_frame() -> None:
    frame = protocol.encode_read_write_request(1, 0x09C4, 20, 0x0A8C, REG.panel_frame())
    with pytest.raises(ValueError):
        protocol.decode_read_write_request(protocol.append_crc(frame[:-6]))


def test_exception_frame() -> None:
    frame = protocol.encode_exception_response(1, protocol.FUNCTION_READ_WRITE_MULTIPLE, 0x02)
    assert len(frame) == protocol.EXCEPTION_FRAME_LENGTH
    assert frame[:3] == bytes([1, 0x97, 0x02])
    assert protocol.crc_ok(frame)


def test_panel_frames_match_controller_captures() -> None:
    assert REG.panel_frame(REG.BUTTON_WAKE)[:4] == (0, 0, 0x0009, 0)
    assert REG.panel_frame(REG.BUTTON_UP, hold=True)[:4] == (0, 0, 1, 1)
    assert REG.panel_frame(REG.BUTTON_DOWN)[:4] == (0, 0, 2, 0)
    assert REG.panel_frame()[4:] == REG.PANEL_TEMPLATE[4:]


def test_exception_name() -> None:
    assert protocol.exception_name(0x02) == "IllegalAddress"
