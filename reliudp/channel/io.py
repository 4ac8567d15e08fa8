"""
Socket setup helpers for reliudp.

Binds UDP endpoints and wires them to a delivery service.
"""

import logging
from typing import Optional

from ..config import ServiceConfig
from ..transport.udp import UDPSocket
from .service import ReliableDeliveryService

logger = logging.getLogger(__name__)


def create_udp_endpoint(port: int = 0, address: str = "0.0.0.0",
                        receive_timeout: Optional[float] = None) -> UDPSocket:
    """
    Create and bind a UDP endpoint.

    Args:
        port: Port to bind to (0 for random)
        address: Address to bind to
        receive_timeout: Seconds a receive may block (None = forever)

    Returns:
        Bound UDPSocket

    Raises:
        TransportError: If the socket cannot be bound
    """
    endpoint = UDPSocket(local_host=address, local_port=port, receive_timeout=receive_timeout)
    endpoint.bind()
    logger.info(f"UDP endpoint bound on {address}:{endpoint.local_port}")
    return endpoint


def create_service(port: int = 0, address: str = "0.0.0.0",
                   config: Optional[ServiceConfig] = None,
                   start: bool = True) -> ReliableDeliveryService:
    """
    Bind a UDP endpoint and build a delivery service on top of it.

    The socket's receive timeout comes from ``config.receive_timeout`` so
    the receive loop notices ``stop()``.

    Args:
        port: Port to bind to (0 for random)
        address: Address to bind to
        config: Service settings (defaults to ServiceConfig())
        start: Whether to start the background loops immediately

    Returns:
        ReliableDeliveryService owning the bound socket
    """
    config = config or ServiceConfig()
    endpoint = create_udp_endpoint(port, address, receive_timeout=config.receive_timeout)
    service = ReliableDeliveryService(endpoint, config)
    if start:
        service.start()
    return service


def shutdown_service(service: ReliableDeliveryService) -> None:
    """Stop a service built by create_service and close its socket."""
    service.stop(timeout=service.config.receive_timeout + 1.0)
    close = getattr(service.socket, "close", None)
    if close is not None:
        close()
