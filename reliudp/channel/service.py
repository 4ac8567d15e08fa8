"""
Reliable delivery service for reliudp.

Turns a best-effort datagram socket into at-least-once delivery of discrete
messages. Two background threads drive it:

- the receive loop decodes incoming datagrams, answers every message with an
  Ack and clears acknowledged packets from the unacked registry
- the send loop requeues packets whose Ack is overdue and flushes the
  outbound queue to the socket

Callers only touch ``enqueue_outbound`` and ``drain_inbound``.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from ..config import ServiceConfig
from ..protocol.packet import (
    ACK_PACKET_ID,
    Ack,
    Address,
    AddressedPacket,
    DecodingError,
    EncodingError,
    Packet,
    Payload,
    decode_packet,
    encode_packet,
    packet_summary,
)
from ..protocol.reliability import QueueFullError, SentRecord, UnackedRegistry
from ..protocol.sequence import SequenceCounters
from ..transport.udp import DatagramSocket, TransportError


class ReliableDeliveryService:
    """
    Reliable delivery engine over an unreliable datagram socket.

    All mutable state lives here behind one lock per structure. Where two
    locks are held together they nest in a fixed order: the unacked registry
    before the outbound queue (requeue phase, has_pending), and the outbound
    queue before the sequence counters (enqueue_outbound).
    """

    def __init__(self, sock: DatagramSocket, config: Optional[ServiceConfig] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize the delivery service.

        Args:
            sock: Datagram socket to send and receive through
            config: Timing and capacity settings (defaults to ServiceConfig())
            clock: Monotonic clock used to age unacknowledged packets
        """
        self.socket = sock
        self.config = config or ServiceConfig()
        self._clock = clock

        self._outbound: List[AddressedPacket] = []
        self._outbound_lock = threading.Lock()
        # Non-Ack packets taken off the queue by a flush that is still running
        self._in_flight = 0
        self._inbound: List[AddressedPacket] = []
        self._inbound_lock = threading.Lock()
        self._unacked = UnackedRegistry()
        self._sequences = SequenceCounters()

        self._stop_event = threading.Event()
        self._receive_thread: Optional[threading.Thread] = None
        self._send_thread: Optional[threading.Thread] = None

        self._stats_lock = threading.Lock()
        self._stats = {
            'packets_sent': 0,
            'packets_received': 0,
            'acks_sent': 0,
            'acks_received': 0,
            'retransmissions': 0,
            'send_failures': 0,
            'receive_failures': 0,
            'decode_failures': 0,
            'encode_failures': 0,
            'duplicate_acks': 0,
        }

        self.logger = logging.getLogger(__name__)

    # Caller API

    def enqueue_outbound(self, payload: Payload, destination: Address) -> None:
        """
        Queue a payload for reliable delivery.

        The packet gets the next sequence id for ``destination``. Ack payloads
        carry ACK_PACKET_ID and do not consume an id.

        Args:
            payload: Talk or Ack payload
            destination: (host, port) to deliver to

        Raises:
            QueueFullError: If ``max_outbound`` is configured and reached
        """
        destination = tuple(destination)
        limit = self.config.max_outbound

        with self._outbound_lock:
            if limit is not None and len(self._outbound) >= limit:
                raise QueueFullError(f"Outbound queue full ({limit} packets)")

            if isinstance(payload, Ack):
                packet_id = ACK_PACKET_ID
            else:
                packet_id = self._sequences.next_id(destination)
            self._outbound.append(AddressedPacket(Packet(packet_id, payload), destination))

    def drain_inbound(self) -> List[AddressedPacket]:
        """
        Take every message received since the last call.

        Returns:
            Received messages in arrival order (empty if none)
        """
        with self._inbound_lock:
            drained, self._inbound = self._inbound, []
        return drained

    # Single steps, driven by the loops

    def handle_datagram(self, data: bytes, origin: Address) -> None:
        """
        Process one received datagram.

        Acks clear the matching unacked record; any other message is
        acknowledged back to ``origin`` and made available to drain_inbound.

        Args:
            data: Raw datagram
            origin: (host, port) it came from
        """
        origin = tuple(origin)
        try:
            packet = decode_packet(data)
        except DecodingError as e:
            self._count('decode_failures')
            self.logger.warning(f"Discarding malformed datagram from {origin}: {e}")
            return

        if isinstance(packet.payload, Ack):
            if self._unacked.acknowledge(packet.payload.acked_id, origin):
                self._count('acks_received')
                self.logger.debug(f"Packet #{packet.payload.acked_id} acknowledged by {origin}")
            else:
                self._count('duplicate_acks')
                self.logger.debug(f"Ignoring stale ack for #{packet.payload.acked_id} from {origin}")
            return

        ack = Packet(ACK_PACKET_ID, Ack(acked_id=packet.id))
        self._append_outbound([AddressedPacket(ack, origin)])

        with self._inbound_lock:
            self._inbound.append(AddressedPacket(packet, origin))
        self._count('packets_received')
        self.logger.debug(f"Received {packet_summary(packet)} from {origin}")

    def receive_once(self) -> bool:
        """
        Receive and process a single datagram.

        Returns:
            True if a datagram was received, False on timeout or transport error
        """
        try:
            data, origin = self.socket.receive_from(self.config.buffer_size)
        except TimeoutError:
            return False
        except (TransportError, OSError) as e:
            self._count('receive_failures')
            if not self._stop_event.is_set():
                self.logger.error(f"Receive failed: {e}")
            return False

        self.handle_datagram(data, origin)
        return True

    def requeue_expired(self, now: Optional[float] = None) -> int:
        """
        Move packets whose Ack is overdue back onto the outbound queue.

        Requeued packets keep their original id.

        Args:
            now: Clock reading to age records against (defaults to the clock)

        Returns:
            Number of packets requeued
        """
        if now is None:
            now = self._clock()

        # Lock order: unacked registry, then outbound queue
        expired = self._unacked.pop_expired(
            now, self.config.retransmit_timeout,
            on_expired=lambda records: self._append_outbound([r.item for r in records]))
        if not expired:
            return 0

        self._count('retransmissions', len(expired))
        self.logger.debug(f"Requeued {len(expired)} unacknowledged packet(s)")
        return len(expired)

    def flush_outbound(self, now: Optional[float] = None) -> int:
        """
        Transmit everything on the outbound queue.

        Non-Ack packets are tracked for retransmission even if the send
        failed; Acks are fire-and-forget.

        Args:
            now: Send time recorded for tracked packets (defaults to the clock)

        Returns:
            Number of datagrams handed to the socket successfully
        """
        with self._outbound_lock:
            batch, self._outbound = self._outbound, []
            self._in_flight = sum(1 for item in batch if not item.packet.is_ack)
        if not batch:
            return 0

        if now is None:
            now = self._clock()

        sent = 0
        deferred: List[AddressedPacket] = []
        limit = self.config.max_unacked

        try:
            for item in batch:
                is_ack = item.packet.is_ack
                if not is_ack and limit is not None and len(self._unacked) >= limit:
                    deferred.append(item)
                    continue

                try:
                    data = encode_packet(item.packet)
                except EncodingError as e:
                    self._count('encode_failures')
                    self.logger.error(f"Dropping {packet_summary(item.packet)} for {item.address}: {e}")
                    continue

                try:
                    self.socket.send_to(data, item.address)
                    sent += 1
                    self._count('acks_sent' if is_ack else 'packets_sent')
                except (TransportError, OSError) as e:
                    self._count('send_failures')
                    self.logger.error(f"Failed to send {packet_summary(item.packet)} to {item.address}: {e}")

                if not is_ack:
                    self._unacked.add(SentRecord(item=item, sent_at=now))
        finally:
            with self._outbound_lock:
                if deferred:
                    self._outbound[:0] = deferred
                self._in_flight = 0

        return sent

    def run_send_cycle(self, now: Optional[float] = None) -> int:
        """
        Run one requeue phase followed by one flush phase.

        Args:
            now: Clock reading shared by both phases (defaults to the clock)

        Returns:
            Number of datagrams sent
        """
        if now is None:
            now = self._clock()
        self.requeue_expired(now)
        return self.flush_outbound(now)

    # Lifecycle

    def start(self) -> None:
        """Start the receive and send threads."""
        if self.is_running:
            self.logger.warning("Delivery service already running")
            return

        self._stop_event.clear()
        self._receive_thread = threading.Thread(
            target=self._receive_loop, name="reliudp-receive", daemon=True)
        self._send_thread = threading.Thread(
            target=self._send_loop, name="reliudp-send", daemon=True)
        self._receive_thread.start()
        self._send_thread.start()
        self.logger.info("Delivery service started")

    def stop(self, timeout: float = 1.0) -> None:
        """
        Signal both loops to stop and wait for them to exit.

        Args:
            timeout: Seconds to wait for each thread
        """
        self._stop_event.set()
        for thread in (self._receive_thread, self._send_thread):
            if thread and thread.is_alive() and thread is not threading.current_thread():
                thread.join(timeout=timeout)

        # A thread that outlived the join keeps its reference so start() refuses
        if self._receive_thread is not None and not self._receive_thread.is_alive():
            self._receive_thread = None
        if self._send_thread is not None and not self._send_thread.is_alive():
            self._send_thread = None

        if self.is_running:
            self.logger.warning(f"Delivery service threads did not exit within {timeout}s")
        else:
            self.logger.info("Delivery service stopped")

    @property
    def is_running(self) -> bool:
        return any(t is not None and t.is_alive()
                   for t in (self._receive_thread, self._send_thread))

    def _receive_loop(self) -> None:
        """Main receive loop (runs in background thread)."""
        while not self._stop_event.is_set():
            try:
                self.receive_once()
            except Exception:
                self.logger.exception("Error in receive loop")
            self._stop_event.wait(self.config.receive_yield)

    def _send_loop(self) -> None:
        """Main send/retransmit loop (runs in background thread)."""
        while not self._stop_event.is_set():
            try:
                self.run_send_cycle()
            except Exception:
                self.logger.exception("Error in send loop")
            self._stop_event.wait(self.config.send_interval)

    # Inspection

    def has_pending(self) -> bool:
        """Check if any user message is still queued or awaiting its Ack."""
        # Both structures are read under the registry lock so no record can
        # move between them mid-check
        return self._unacked.inspect(lambda count: count > 0 or self._outbound_has_messages())

    def wait_for_delivery(self, timeout: float, poll_interval: float = 0.01) -> bool:
        """
        Block until every queued message has been acknowledged.

        Args:
            timeout: Seconds to wait at most
            poll_interval: Seconds between checks

        Returns:
            True if nothing is pending, False if the timeout expired first
        """
        deadline = time.monotonic() + timeout
        while self.has_pending():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(poll_interval, remaining))
        return True

    def outbound_snapshot(self) -> List[AddressedPacket]:
        """Get a copy of the outbound queue."""
        with self._outbound_lock:
            return list(self._outbound)

    def unacked_snapshot(self) -> List[SentRecord]:
        """Get a copy of the unacknowledged packet records."""
        return self._unacked.snapshot()

    def pending_count(self) -> int:
        """Get number of packets awaiting acknowledgment."""
        return len(self._unacked)

    def next_sequence_id(self, destination: Address) -> int:
        """Get the id the next message to ``destination`` would be given."""
        return self._sequences.peek(tuple(destination))

    def get_stats(self) -> Dict[str, int]:
        """
        Get delivery statistics.

        Returns:
            Dictionary with counters and current queue sizes
        """
        with self._stats_lock:
            stats = dict(self._stats)
        with self._outbound_lock:
            stats['outbound_queued'] = len(self._outbound)
        with self._inbound_lock:
            stats['inbound_queued'] = len(self._inbound)
        stats['pending_acks'] = len(self._unacked)
        return stats

    def _outbound_has_messages(self) -> bool:
        with self._outbound_lock:
            return self._in_flight > 0 or any(not item.packet.is_ack for item in self._outbound)

    def _append_outbound(self, items: List[AddressedPacket]) -> None:
        with self._outbound_lock:
            self._outbound.extend(items)

    def _count(self, name: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[name] += amount

    def __enter__(self):
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.stop()
