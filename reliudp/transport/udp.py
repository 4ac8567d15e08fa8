"""
UDP Transport for reliudp.

Provides the datagram socket interface the delivery service depends on, a
concrete UDP implementation and a deterministic in-memory double for tests.
"""

import queue
import socket
import threading
from typing import List, Optional, Protocol, Tuple

from ..protocol.packet import Address

DEFAULT_BUFFER_SIZE = 65535


class TransportError(Exception):
    """Raised when transport operations fail."""
    pass


class DatagramSocket(Protocol):
    """
    Minimal capability surface of a datagram socket.

    Implementations must tolerate one thread receiving while another thread
    sends.
    """

    def send_to(self, data: bytes, address: Address) -> int:
        """Send one datagram, returning the number of bytes sent."""
        ...

    def receive_from(self, bufsize: int = DEFAULT_BUFFER_SIZE) -> Tuple[bytes, Address]:
        """Block until one whole datagram arrives and return it with its origin."""
        ...


class UDPSocket:
    """
    UDP socket implementation for reliudp.

    A receive timeout keeps ``receive_from`` from blocking forever so that
    the receive loop can notice shutdown.
    """

    def __init__(self, local_host: str = "0.0.0.0", local_port: int = 0,
                 receive_timeout: Optional[float] = None):
        """
        Initialize UDP socket.

        Args:
            local_host: Local interface to bind to
            local_port: Local port to bind to (0 = auto-assign)
            receive_timeout: Seconds a receive may block (None = forever)
        """
        self.local_host = local_host
        self.local_port = local_port
        self.receive_timeout = receive_timeout
        self._socket: Optional[socket.socket] = None
        self._is_bound = False

    def bind(self) -> None:
        """
        Bind the UDP socket to local address.

        Raises:
            TransportError: If binding fails
        """
        try:
            self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self._socket.bind((self.local_host, self.local_port))
            self._socket.settimeout(self.receive_timeout)

            # Update local_port if auto-assigned
            if self.local_port == 0:
                self.local_port = self._socket.getsockname()[1]

            self._is_bound = True

        except OSError as e:
            self.close()
            raise TransportError(f"Failed to bind UDP socket: {e}") from e

    def send_to(self, data: bytes, address: Address) -> int:
        """
        Send a datagram to a remote address.

        Args:
            data: Datagram payload
            address: Destination (host, port)

        Returns:
            Number of bytes sent

        Raises:
            TransportError: If sending fails
        """
        if not self._is_bound:
            self.bind()

        try:
            return self._socket.sendto(data, address)
        except OSError as e:
            raise TransportError(f"Failed to send datagram to {address}: {e}") from e

    def receive_from(self, bufsize: int = DEFAULT_BUFFER_SIZE) -> Tuple[bytes, Address]:
        """
        Receive one datagram from the network.

        Args:
            bufsize: Largest datagram accepted

        Returns:
            Tuple of (data, (sender_host, sender_port))

        Raises:
            TransportError: If receiving fails
            TimeoutError: If the receive timeout expires
        """
        if not self._is_bound:
            self.bind()

        sock = self._socket
        if sock is None:
            raise TransportError("Socket closed")

        try:
            data, addr = sock.recvfrom(bufsize)
            return data, (addr[0], addr[1])
        except socket.timeout:
            raise TimeoutError("Receive timeout expired")
        except OSError as e:
            raise TransportError(f"Failed to receive datagram: {e}") from e

    def close(self) -> None:
        """Close the UDP socket."""
        if self._socket:
            self._socket.close()
            self._socket = None
        self._is_bound = False

    def get_local_address(self) -> Address:
        """
        Get the local bound address.

        Returns:
            Tuple of (host, port)
        """
        if not self._is_bound:
            raise TransportError("Socket not bound")

        host, port = self._socket.getsockname()[:2]
        return (host, port)

    def __repr__(self):
        status = "bound" if self._is_bound else "unbound"
        return f"UDPSocket({self.local_host}:{self.local_port}, {status})"

    def __enter__(self):
        """Context manager entry."""
        if not self._is_bound:
            self.bind()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


class NullSocket:
    """
    In-memory datagram socket for deterministic tests.

    Sent datagrams are recorded in ``sent``; inbound datagrams are scripted
    with ``inject``.
    """

    def __init__(self, address: Address = ("127.0.0.1", 9000),
                 send_result: Optional[int] = None,
                 send_error: Optional[Exception] = None,
                 receive_wait: float = 0.0):
        """
        Initialize the null socket.

        Args:
            address: Address this socket pretends to be bound to
            send_result: Value returned by ``send_to`` (None = len(data))
            send_error: Exception raised by every ``send_to`` call
            receive_wait: Seconds ``receive_from`` waits for an injected datagram
        """
        self.address = address
        self.send_result = send_result
        self.send_error = send_error
        self.receive_wait = receive_wait
        self.sent: List[Tuple[bytes, Address]] = []
        self.send_attempts = 0
        self._inbound: "queue.Queue[Tuple[bytes, Address]]" = queue.Queue()
        self._lock = threading.Lock()

    def send_to(self, data: bytes, address: Address) -> int:
        with self._lock:
            self.send_attempts += 1
            if self.send_error is not None:
                raise self.send_error
            self.sent.append((bytes(data), address))
        return len(data) if self.send_result is None else self.send_result

    def receive_from(self, bufsize: int = DEFAULT_BUFFER_SIZE) -> Tuple[bytes, Address]:
        try:
            if self.receive_wait > 0:
                data, origin = self._inbound.get(timeout=self.receive_wait)
            else:
                data, origin = self._inbound.get_nowait()
        except queue.Empty:
            raise TimeoutError("No datagram available")
        return data[:bufsize], origin

    def inject(self, data: bytes, origin: Address) -> None:
        """Queue a datagram to be returned by the next receive."""
        self._inbound.put((data, origin))

    def take_sent(self) -> List[Tuple[bytes, Address]]:
        """Return and forget every datagram sent so far."""
        with self._lock:
            sent, self.sent = self.sent, []
        return sent

    def get_local_address(self) -> Address:
        return self.address
