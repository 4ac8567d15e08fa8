"""
Transport layer for reliudp.
"""

from .udp import DatagramSocket, NullSocket, TransportError, UDPSocket

__all__ = ['DatagramSocket', 'NullSocket', 'TransportError', 'UDPSocket']
