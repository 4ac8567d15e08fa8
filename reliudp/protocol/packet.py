"""
Packet structure and parsing for the reliudp transport.

This module defines the packet format and provides functions to build and parse
datagrams:

packet = id (4B) || tag (1B) || fields
Talk fields = length (4B) || utf-8 phrase
Ack fields  = acked_id (4B)
"""

import struct
from dataclasses import dataclass
from typing import Tuple, Union


class PacketFormatError(Exception):
    """Raised when packet format is invalid."""
    pass


class EncodingError(PacketFormatError):
    """Raised when a packet cannot be serialized."""
    pass


class DecodingError(PacketFormatError):
    """Raised when bytes cannot be parsed into a packet."""
    pass


# Constants
U32_MAX = 0xFFFFFFFF
TAG_TALK = 0x01
TAG_ACK = 0x02
HEADER_FORMAT = '!IB'
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)  # 4 + 1 bytes
FIELD_SIZE = 4
MAX_DATAGRAM_SIZE = 65507  # Largest UDP payload over IPv4
MAX_PHRASE_SIZE = MAX_DATAGRAM_SIZE - HEADER_SIZE - FIELD_SIZE

# Acks are never retransmitted, so they carry a fixed id instead of a sequence number
ACK_PACKET_ID = 0

Address = Tuple[str, int]


@dataclass(frozen=True)
class Talk:
    """A user-facing text message."""
    phrase: str


@dataclass(frozen=True)
class Ack:
    """Acknowledges receipt of the packet with id ``acked_id``."""
    acked_id: int


Payload = Union[Talk, Ack]


@dataclass(frozen=True)
class Packet:
    """
    A single datagram on the wire.

    Fields:
        id: 32-bit id, unique per sender and destination
        payload: Talk or Ack
    """
    id: int
    payload: Payload

    @property
    def is_ack(self) -> bool:
        """Check if this packet acknowledges another one."""
        return isinstance(self.payload, Ack)

    def to_bytes(self) -> bytes:
        """Serialize packet to bytes."""
        return encode_packet(self)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Packet':
        """Deserialize packet from bytes."""
        return decode_packet(data)


@dataclass(frozen=True)
class AddressedPacket:
    """
    A packet together with a network address.

    For outbound packets the address is the destination, for inbound
    packets it is the origin.
    """
    packet: Packet
    address: Address


def _check_u32(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"{name} must be an integer, got {type(value).__name__}")
    if not (0 <= value <= U32_MAX):
        raise EncodingError(f"{name} must be 32-bit unsigned integer, got {value}")


def encode_packet(packet: Packet) -> bytes:
    """
    Serialize a packet for transmission.

    Args:
        packet: Packet to serialize

    Returns:
        Wire bytes

    Raises:
        EncodingError: If the packet cannot be represented on the wire
    """
    _check_u32(packet.id, "Packet id")
    payload = packet.payload

    if isinstance(payload, Talk):
        if not isinstance(payload.phrase, str):
            raise EncodingError("Talk phrase must be a string")
        try:
            phrase_bytes = payload.phrase.encode('utf-8')
        except UnicodeEncodeError as e:
            raise EncodingError(f"Talk phrase is not valid UTF-8: {e}") from e
        if len(phrase_bytes) > MAX_PHRASE_SIZE:
            raise EncodingError(f"Talk phrase too large: {len(phrase_bytes)} bytes")
        return (struct.pack(HEADER_FORMAT, packet.id, TAG_TALK)
                + struct.pack('!I', len(phrase_bytes))
                + phrase_bytes)

    if isinstance(payload, Ack):
        _check_u32(payload.acked_id, "Acked id")
        return struct.pack(HEADER_FORMAT + 'I', packet.id, TAG_ACK, payload.acked_id)

    raise EncodingError(f"Unsupported payload type: {type(payload).__name__}")


def decode_packet(data: bytes) -> Packet:
    """
    Parse raw datagram bytes into a packet.

    Args:
        data: Raw datagram

    Returns:
        Parsed Packet

    Raises:
        DecodingError: If the bytes are truncated, malformed or carry an unknown tag
    """
    if len(data) < HEADER_SIZE + FIELD_SIZE:
        raise DecodingError(f"Packet too short: {len(data)} bytes")

    packet_id, tag = struct.unpack_from(HEADER_FORMAT, data)
    (field,) = struct.unpack_from('!I', data, HEADER_SIZE)
    body_start = HEADER_SIZE + FIELD_SIZE

    if tag == TAG_ACK:
        if len(data) != body_start:
            raise DecodingError(f"Ack packet has {len(data) - body_start} trailing bytes")
        return Packet(id=packet_id, payload=Ack(acked_id=field))

    if tag == TAG_TALK:
        body = data[body_start:]
        if len(body) != field:
            raise DecodingError(f"Talk length mismatch: header says {field}, got {len(body)}")
        try:
            phrase = bytes(body).decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecodingError("Talk phrase is not valid UTF-8") from e
        return Packet(id=packet_id, payload=Talk(phrase=phrase))

    raise DecodingError(f"Unknown payload tag: 0x{tag:02x}")


def packet_summary(packet: Packet) -> str:
    """
    Create a human-readable summary of a packet.

    Args:
        packet: Packet to summarize

    Returns:
        Summary string
    """
    payload = packet.payload
    if isinstance(payload, Ack):
        return f"Packet #{packet.id} Ack({payload.acked_id})"
    return f"Packet #{packet.id} Talk({payload.phrase!r})"
