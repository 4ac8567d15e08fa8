"""
Packet Tests for reliudp.

Tests wire encoding, decoding and malformed input handling.
"""

import struct

import pytest

from reliudp.protocol.packet import (
    ACK_PACKET_ID,
    Ack,
    AddressedPacket,
    DecodingError,
    EncodingError,
    MAX_PHRASE_SIZE,
    Packet,
    PacketFormatError,
    Talk,
    decode_packet,
    encode_packet,
    packet_summary,
)


class TestRoundTrip:
    """Test encode/decode symmetry."""

    @pytest.mark.parametrize("packet", [
        Packet(0, Talk("hi")),
        Packet(42, Talk("")),
        Packet(0xFFFFFFFF, Talk("Hello, 世界! 🌍")),
        Packet(ACK_PACKET_ID, Ack(0)),
        Packet(3, Ack(0xFFFFFFFF)),
    ])
    def test_roundtrip(self, packet):
        """Decoding an encoded packet gives back an equal packet."""
        assert decode_packet(encode_packet(packet)) == packet

    def test_method_aliases(self):
        """Packet.to_bytes / from_bytes match the module functions."""
        packet = Packet(9, Talk("alias"))
        assert packet.to_bytes() == encode_packet(packet)
        assert Packet.from_bytes(packet.to_bytes()) == packet

    def test_encoding_is_deterministic(self):
        """The same packet always encodes to the same bytes."""
        packet = Packet(5, Talk("same"))
        assert encode_packet(packet) == encode_packet(Packet(5, Talk("same")))

    def test_large_phrase(self):
        """A phrase that fills a datagram still round-trips."""
        packet = Packet(1, Talk("x" * MAX_PHRASE_SIZE))
        assert decode_packet(encode_packet(packet)) == packet


class TestWireLayout:
    """Test the exact byte layout."""

    def test_talk_layout(self):
        """Talk is id, tag 0x01, length, utf-8 bytes."""
        assert encode_packet(Packet(0, Talk("hi"))) == (
            b"\x00\x00\x00\x00" b"\x01" b"\x00\x00\x00\x02" b"hi"
        )

    def test_ack_layout(self):
        """Ack is id, tag 0x02, acked id."""
        assert encode_packet(Packet(1, Ack(7))) == (
            b"\x00\x00\x00\x01" b"\x02" b"\x00\x00\x00\x07"
        )

    def test_variant_decided_by_tag(self):
        """The same trailing field decodes differently depending on the tag."""
        talk = decode_packet(struct.pack("!IBI", 1, 0x01, 0))
        ack = decode_packet(struct.pack("!IBI", 1, 0x02, 0))
        assert talk.payload == Talk("")
        assert ack.payload == Ack(0)
        assert ack.is_ack and not talk.is_ack


class TestDecodingErrors:
    """Test rejection of malformed datagrams."""

    @pytest.mark.parametrize("data", [
        b"",
        b"\x00\x00\x00",
        b"\x00\x00\x00\x01\x02\x00\x00",
    ])
    def test_truncated(self, data):
        with pytest.raises(DecodingError):
            decode_packet(data)

    def test_unknown_tag(self):
        with pytest.raises(DecodingError, match="Unknown payload tag"):
            decode_packet(struct.pack("!IBI", 1, 0x7F, 0))

    def test_ack_with_trailing_bytes(self):
        with pytest.raises(DecodingError):
            decode_packet(encode_packet(Packet(1, Ack(2))) + b"\x00")

    def test_talk_length_mismatch(self):
        data = encode_packet(Packet(1, Talk("hello")))
        with pytest.raises(DecodingError):
            decode_packet(data[:-1])
        with pytest.raises(DecodingError):
            decode_packet(data + b"!")

    def test_invalid_utf8(self):
        data = struct.pack("!IBI", 1, 0x01, 2) + b"\xff\xfe"
        with pytest.raises(DecodingError):
            decode_packet(data)

    def test_errors_share_base_class(self):
        """Both error kinds can be caught as PacketFormatError."""
        assert issubclass(DecodingError, PacketFormatError)
        assert issubclass(EncodingError, PacketFormatError)


class TestEncodingErrors:
    """Test rejection of packets that cannot be represented."""

    @pytest.mark.parametrize("packet_id", [-1, 0x100000000])
    def test_id_out_of_range(self, packet_id):
        with pytest.raises(EncodingError):
            encode_packet(Packet(packet_id, Talk("x")))

    def test_acked_id_out_of_range(self):
        with pytest.raises(EncodingError):
            encode_packet(Packet(0, Ack(-5)))

    def test_phrase_not_a_string(self):
        with pytest.raises(EncodingError):
            encode_packet(Packet(0, Talk(b"bytes")))

    def test_phrase_too_large(self):
        with pytest.raises(EncodingError, match="too large"):
            encode_packet(Packet(0, Talk("x" * (MAX_PHRASE_SIZE + 1))))

    def test_lone_surrogate(self):
        with pytest.raises(EncodingError):
            encode_packet(Packet(0, Talk("\ud800")))

    def test_unknown_payload(self):
        with pytest.raises(EncodingError, match="Unsupported payload"):
            encode_packet(Packet(0, "raw"))


class TestModel:
    """Test value semantics of the message model."""

    def test_packets_are_immutable(self):
        packet = Packet(1, Talk("x"))
        with pytest.raises(AttributeError):
            packet.id = 2

    def test_addressed_packet_equality(self):
        a = AddressedPacket(Packet(1, Ack(1)), ("127.0.0.1", 1))
        b = AddressedPacket(Packet(1, Ack(1)), ("127.0.0.1", 1))
        assert a == b

    def test_summary(self):
        assert packet_summary(Packet(3, Talk("hey"))) == "Packet #3 Talk('hey')"
        assert packet_summary(Packet(0, Ack(3))) == "Packet #0 Ack(3)"
