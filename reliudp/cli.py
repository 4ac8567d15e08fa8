"""
Command-line entry points for reliudp.

Examples:
  # Terminal 1: print every message received on port 1337
  reliudp server --port 1337

  # Terminal 2: deliver "hello" to it
  reliudp client --host 127.0.0.1 --port 1337 --message hello
"""

import argparse
import logging
import socket
import sys
import time
from typing import List, Optional, TextIO

from .channel.io import create_service, shutdown_service
from .channel.service import ReliableDeliveryService
from .config import ConfigError, ServiceConfig
from .protocol.packet import Address, Talk
from .transport.udp import TransportError

logger = logging.getLogger(__name__)


def resolve_address(host: str, port: int) -> Address:
    """
    Resolve a host name to the numeric form peers report as their origin.

    Acks are matched on the exact (host, port) they come from, so
    destinations must use the same numeric address.
    """
    try:
        return (socket.gethostbyname(host), port)
    except OSError as e:
        raise TransportError(f"Cannot resolve {host}: {e}") from e


def serve(service: ReliableDeliveryService, duration: Optional[float] = None,
          poll_interval: float = 0.05, output: TextIO = sys.stdout) -> int:
    """
    Print received messages until interrupted or ``duration`` elapses.

    Args:
        service: Running delivery service
        duration: Seconds to serve (None = until KeyboardInterrupt)
        poll_interval: Seconds between drains
        output: Stream messages are written to

    Returns:
        Number of messages printed
    """
    deadline = None if duration is None else time.monotonic() + duration
    printed = 0
    try:
        while deadline is None or time.monotonic() < deadline:
            for item in service.drain_inbound():
                payload = item.packet.payload
                host, port = item.address
                output.write(f"[{host}:{port} #{item.packet.id}] {payload.phrase}\n")
                output.flush()
                printed += 1
            time.sleep(poll_interval)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return printed


def send_messages(service: ReliableDeliveryService, destination: Address,
                  messages: List[str], wait: float) -> bool:
    """
    Queue messages to ``destination`` and wait for all of them to be acknowledged.

    Returns:
        True if every message was acknowledged within ``wait`` seconds
    """
    for message in messages:
        service.enqueue_outbound(Talk(phrase=message), destination)
    delivered = service.wait_for_delivery(timeout=wait)
    if delivered:
        logger.info(f"{len(messages)} message(s) acknowledged by {destination[0]}:{destination[1]}")
    else:
        logger.warning(f"Gave up after {wait}s with {service.pending_count()} message(s) unacknowledged")
    return delivered


def _load_config(args: argparse.Namespace) -> ServiceConfig:
    return ServiceConfig.from_env().with_overrides(
        retransmit_timeout=args.retransmit_timeout,
        send_interval=args.send_interval,
    )


def cmd_server(args: argparse.Namespace) -> int:
    service = create_service(args.port, args.host, config=_load_config(args))
    try:
        host, port = service.socket.get_local_address()
        print(f"Listening on {host}:{port}")
        serve(service, duration=args.duration)
    finally:
        shutdown_service(service)
    return 0


def cmd_client(args: argparse.Namespace) -> int:
    destination = resolve_address(args.host, args.port)
    service = create_service(args.bind_port, args.bind_host, config=_load_config(args))
    try:
        messages = [args.message] * args.count
        delivered = send_messages(service, destination, messages, args.wait)
    finally:
        shutdown_service(service)
    return 0 if delivered else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reliudp",
        description="Reliable message delivery over UDP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'])
    parser.add_argument('--retransmit-timeout', type=float, default=None,
                        help='Seconds before an unacknowledged message is resent')
    parser.add_argument('--send-interval', type=float, default=None,
                        help='Seconds between send loop cycles')
    sub = parser.add_subparsers(dest='cmd', required=True)

    server = sub.add_parser('server', help='print messages received on a port')
    server.add_argument('--host', default='127.0.0.1', help='Address to bind (default: 127.0.0.1)')
    server.add_argument('--port', type=int, default=1337, help='Port to bind (default: 1337)')
    server.add_argument('--duration', type=float, default=None,
                        help='Seconds to run (default: until Ctrl-C)')
    server.set_defaults(func=cmd_server)

    client = sub.add_parser('client', help='deliver a message to a server')
    client.add_argument('--host', default='127.0.0.1', help='Server host (default: 127.0.0.1)')
    client.add_argument('--port', type=int, default=1337, help='Server port (default: 1337)')
    client.add_argument('--message', default='hello', help='Text to send (default: hello)')
    client.add_argument('--count', type=int, default=1, help='Times to send the message')
    client.add_argument('--wait', type=float, default=5.0,
                        help='Seconds to wait for acknowledgment (default: 5)')
    client.add_argument('--bind-host', default='0.0.0.0')
    client.add_argument('--bind-port', type=int, default=0)
    client.set_defaults(func=cmd_client)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the reliudp command."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    try:
        return int(args.func(args))
    except (ConfigError, TransportError) as e:
        logger.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
