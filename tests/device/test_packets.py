"""Tests for packet framing and packed device timestamps."""

import struct
from datetime import datetime

import pytest

from src.zkfleet.device.constants import CMD_ACK_OK, CMD_CONNECT, TCP_MAGIC_1, TCP_MAGIC_2
from src.zkfleet.device.packets import (
    build_packet,
    checksum,
    decode_time,
    decode_time_bytes,
    encode_time,
    parse_packet,
    parse_tcp_top,
    wrap_tcp,
)
from src.zkfleet.exceptions import ProtocolError


class TestFraming:
    """Tests for header construction and parsing."""

    def test_connect_header_bytes(self):
        """First CONNECT of a session: session 0, reply 0."""
        assert build_packet(CMD_CONNECT, 0, 0).hex() == "e80316fc00000000"

    def test_checksum_matches_zeroed_header(self):
        packet = build_packet(1501, 0x1234, 17, b"hello world")
        stored = struct.unpack_from("<H", packet, 2)[0]
        zeroed = packet[:2] + b"\x00\x00" + packet[4:]
        assert stored == checksum(zeroed)

    def test_checksum_handles_odd_length(self):
        # Trailing byte is added as a single byte
        assert checksum(b"\x01") == 65535 - 1 - 1

    def test_parse_round_trip(self):
        packet = parse_packet(build_packet(CMD_ACK_OK, 42, 7, b"\x01\x02"))
        assert packet.command == CMD_ACK_OK
        assert packet.session_id == 42
        assert packet.reply_id == 7
        assert packet.payload == b"\x01\x02"
        assert packet.is_ack

    def test_parse_short_buffer_raises(self):
        with pytest.raises(ProtocolError):
            parse_packet(b"\x00\x01\x02")

    def test_tcp_top_header(self):
        inner = build_packet(CMD_CONNECT, 0, 0)
        framed = wrap_tcp(inner)
        assert framed[:8] == struct.pack("<HHI", TCP_MAGIC_1, TCP_MAGIC_2, len(inner))
        assert parse_tcp_top(framed[:8]) == len(inner)

    def test_tcp_top_bad_magic(self):
        with pytest.raises(ProtocolError):
            parse_tcp_top(struct.pack("<HHI", 0x1111, TCP_MAGIC_2, 8))

    def test_tcp_top_truncated(self):
        with pytest.raises(ProtocolError):
            parse_tcp_top(b"\x50\x50")


class TestPackedTime:
    """Tests for the device's packed u32 timestamp format."""

    def test_known_value(self):
        assert encode_time(datetime(2024, 3, 15, 8, 30, 0)) == 777976200

    def test_round_trip(self):
        moment = datetime(2031, 12, 31, 23, 59, 58)
        assert decode_time(encode_time(moment)) == moment

    def test_decode_from_bytes(self):
        moment = datetime(2024, 3, 15, 8, 30, 0)
        assert decode_time_bytes(struct.pack("<I", encode_time(moment)) + b"\xff") == moment

    def test_impossible_date_raises(self):
        # The wire format allows a 30th of February
        packed = ((24 * 12 + 1) * 31 + 29) * 86400
        with pytest.raises(ValueError):
            decode_time(packed)
