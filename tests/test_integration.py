"""
Integration Tests for reliudp.

Tests end-to-end delivery between services bound to loopback UDP sockets,
including simulated packet loss, and the command-line drivers.
"""

import io
import threading
import time

import pytest

from reliudp.channel.io import create_service, create_udp_endpoint, shutdown_service
from reliudp.channel.service import ReliableDeliveryService
from reliudp.cli import build_parser, main, send_messages, serve
from reliudp.config import ServiceConfig
from reliudp.protocol.packet import Packet, Talk, decode_packet, encode_packet
from reliudp.transport.udp import TransportError, UDPSocket

FAST = ServiceConfig(retransmit_timeout=0.1, receive_timeout=0.05)


def collect_phrases(service, expected, timeout=3.0):
    """Drain ``service`` until ``expected`` distinct phrases arrived."""
    phrases = set()
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline and not expected <= phrases:
        phrases.update(item.packet.payload.phrase for item in service.drain_inbound())
        time.sleep(0.01)
    return phrases


class LossySocket:
    """Wraps a UDPSocket and drops the first ``drops`` outgoing datagrams."""

    def __init__(self, inner: UDPSocket, drops: int):
        self.inner = inner
        self.drops = drops
        self.dropped = 0
        self._lock = threading.Lock()

    def send_to(self, data, address):
        with self._lock:
            if self.dropped < self.drops:
                self.dropped += 1
                return len(data)
        return self.inner.send_to(data, address)

    def receive_from(self, bufsize=65535):
        return self.inner.receive_from(bufsize)

    def close(self):
        self.inner.close()

    def get_local_address(self):
        return self.inner.get_local_address()


@pytest.fixture
def pair():
    alice = create_service(0, "127.0.0.1", config=FAST)
    bob = create_service(0, "127.0.0.1", config=FAST)
    yield alice, bob
    shutdown_service(alice)
    shutdown_service(bob)


class TestUDPSocket:
    """Test the concrete socket."""

    def test_send_and_receive(self):
        with UDPSocket("127.0.0.1", 0, receive_timeout=1.0) as a, \
                UDPSocket("127.0.0.1", 0, receive_timeout=1.0) as b:
            data = encode_packet(Packet(1, Talk("raw")))
            assert a.send_to(data, b.get_local_address()) == len(data)

            received, origin = b.receive_from()
            assert decode_packet(received) == Packet(1, Talk("raw"))
            assert origin == a.get_local_address()

    def test_receive_timeout(self):
        with UDPSocket("127.0.0.1", 0, receive_timeout=0.01) as sock:
            with pytest.raises(TimeoutError):
                sock.receive_from()

    def test_unbound_address(self):
        with pytest.raises(TransportError):
            UDPSocket().get_local_address()

    def test_bind_conflict(self):
        endpoint = create_udp_endpoint(0, "127.0.0.1")
        try:
            with pytest.raises(TransportError):
                create_udp_endpoint(endpoint.local_port, "127.0.0.1")
        finally:
            endpoint.close()

    def test_closed_socket_has_no_address(self):
        sock = create_udp_endpoint(0, "127.0.0.1")
        sock.close()
        with pytest.raises(TransportError):
            sock.get_local_address()


class TestLoopbackDelivery:
    """Test delivery between two real services."""

    def test_single_message(self, pair):
        alice, bob = pair
        alice.enqueue_outbound(Talk("hi"), bob.socket.get_local_address())

        assert alice.wait_for_delivery(timeout=3.0)
        assert collect_phrases(bob, {"hi"}) == {"hi"}
        assert alice.pending_count() == 0

    def test_both_directions(self, pair):
        alice, bob = pair
        alice.enqueue_outbound(Talk("ping"), bob.socket.get_local_address())
        bob.enqueue_outbound(Talk("pong"), alice.socket.get_local_address())

        assert alice.wait_for_delivery(timeout=3.0)
        assert bob.wait_for_delivery(timeout=3.0)
        assert collect_phrases(bob, {"ping"}) == {"ping"}
        assert collect_phrases(alice, {"pong"}) == {"pong"}

    def test_many_messages(self, pair):
        alice, bob = pair
        expected = {f"message {i}" for i in range(50)}
        for phrase in sorted(expected):
            alice.enqueue_outbound(Talk(phrase), bob.socket.get_local_address())

        assert alice.wait_for_delivery(timeout=5.0)
        assert collect_phrases(bob, expected) == expected

    def test_delivery_survives_loss(self):
        """Dropped datagrams are recovered by retransmission."""
        lossy = LossySocket(create_udp_endpoint(0, "127.0.0.1", receive_timeout=0.05), drops=3)
        alice = ReliableDeliveryService(lossy, FAST)
        bob = create_service(0, "127.0.0.1", config=FAST)
        alice.start()
        try:
            alice.enqueue_outbound(Talk("lost"), bob.socket.get_local_address())
            alice.enqueue_outbound(Talk("found"), bob.socket.get_local_address())

            assert alice.wait_for_delivery(timeout=5.0)
            assert collect_phrases(bob, {"lost", "found"}) == {"lost", "found"}
            assert lossy.dropped == 3
            assert alice.get_stats()['retransmissions'] >= 1
        finally:
            shutdown_service(alice)
            shutdown_service(bob)


class TestCLI:
    """Test the command-line drivers."""

    def test_parser(self):
        args = build_parser().parse_args(["client", "--port", "4000", "--message", "yo", "--count", "3"])
        assert args.cmd == "client"
        assert args.port == 4000
        assert args.message == "yo"
        assert args.count == 3

    def test_serve_prints_messages(self, pair):
        alice, bob = pair
        output = io.StringIO()
        alice.enqueue_outbound(Talk("printed"), bob.socket.get_local_address())

        assert alice.wait_for_delivery(timeout=3.0)
        assert serve(bob, duration=0.2, poll_interval=0.01, output=output) >= 1
        assert "printed" in output.getvalue()

    def test_send_messages(self, pair):
        alice, bob = pair
        assert send_messages(alice, bob.socket.get_local_address(), ["a", "b"], wait=3.0)
        assert collect_phrases(bob, {"a", "b"}) == {"a", "b"}

    def test_send_messages_without_peer(self):
        endpoint = create_udp_endpoint(0, "127.0.0.1")
        silent = endpoint.get_local_address()
        alice = create_service(0, "127.0.0.1", config=FAST)
        try:
            assert send_messages(alice, silent, ["anyone?"], wait=0.3) is False
        finally:
            shutdown_service(alice)
            endpoint.close()

    def test_invalid_config_exit_code(self):
        assert main(["--retransmit-timeout", "-1", "client"]) == 2
