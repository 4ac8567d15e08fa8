"""
Channel layer for reliudp.

This module provides the reliable delivery service and the helpers that bind
it to a UDP socket.
"""

from .service import ReliableDeliveryService
from .io import create_udp_endpoint, create_service, shutdown_service

__all__ = [
    'ReliableDeliveryService',
    'create_udp_endpoint',
    'create_service',
    'shutdown_service',
]
