"""
reliudp: reliable message delivery over UDP.

Guarantees eventual at-least-once delivery of discrete messages using only
best-effort datagrams: every message is acknowledged by the receiver and
retransmitted by the sender until its Ack arrives. No handshake, no ordering.

Basic Usage:
    >>> from reliudp import create_service, shutdown_service, Talk
    >>>
    >>> alice = create_service(port=5000, address="127.0.0.1")
    >>> bob = create_service(port=5001, address="127.0.0.1")
    >>>
    >>> alice.enqueue_outbound(Talk("hi"), ("127.0.0.1", 5001))
    >>> alice.wait_for_delivery(timeout=2.0)
    True
    >>> [item.packet.payload.phrase for item in bob.drain_inbound()]
    ['hi']
"""

__version__ = "0.1.0"

from .config import ConfigError, ServiceConfig
from .protocol.packet import (
    ACK_PACKET_ID,
    Ack,
    AddressedPacket,
    DecodingError,
    EncodingError,
    Packet,
    PacketFormatError,
    Talk,
    decode_packet,
    encode_packet,
)
from .protocol.reliability import DeliveryError, QueueFullError, SentRecord
from .transport.udp import DatagramSocket, NullSocket, TransportError, UDPSocket
from .channel.service import ReliableDeliveryService
from .channel.io import create_service, create_udp_endpoint, shutdown_service

__all__ = [
    '__version__',

    # Configuration
    'ConfigError',
    'ServiceConfig',

    # Message model
    'ACK_PACKET_ID',
    'Ack',
    'AddressedPacket',
    'DecodingError',
    'EncodingError',
    'Packet',
    'PacketFormatError',
    'Talk',
    'decode_packet',
    'encode_packet',

    # Delivery
    'DeliveryError',
    'QueueFullError',
    'SentRecord',
    'ReliableDeliveryService',

    # Transport
    'DatagramSocket',
    'NullSocket',
    'TransportError',
    'UDPSocket',
    'create_service',
    'create_udp_endpoint',
    'shutdown_service',
]
