"""
Protocol layer components for reliudp.

This module provides the core protocol functionality including:
- Packet framing and parsing
- Per-destination sequence numbering
- Acknowledgment tracking
"""

from .packet import (
    Ack,
    AddressedPacket,
    DecodingError,
    EncodingError,
    Packet,
    PacketFormatError,
    Talk,
)
from .reliability import DeliveryError, QueueFullError, SentRecord, UnackedRegistry
from .sequence import SequenceCounters

__all__ = [
    'Ack',
    'AddressedPacket',
    'DecodingError',
    'EncodingError',
    'Packet',
    'PacketFormatError',
    'Talk',
    'DeliveryError',
    'QueueFullError',
    'SentRecord',
    'UnackedRegistry',
    'SequenceCounters',
]
