"""
Acknowledgment bookkeeping for reliudp.

Tracks packets that were transmitted but not yet acknowledged so that the
send loop can requeue them once the retransmission timeout elapses.
"""

import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from .packet import Address, AddressedPacket

T = TypeVar("T")


class DeliveryError(Exception):
    """Raised when delivery operations fail."""
    pass


class QueueFullError(DeliveryError):
    """Raised when a bounded queue has reached its capacity."""
    pass


@dataclass(frozen=True)
class SentRecord:
    """Represents a transmitted packet awaiting acknowledgment."""
    item: AddressedPacket
    sent_at: float

    @property
    def key(self) -> Tuple[Address, int]:
        return (self.item.address, self.item.packet.id)

    def age(self, now: float) -> float:
        return now - self.sent_at


class UnackedRegistry:
    """
    Registry of sent-but-unacknowledged packets.

    Entries are keyed by (destination, packet id) because ids are only
    unique per destination.
    """

    def __init__(self):
        self._records: Dict[Tuple[Address, int], SentRecord] = {}
        self._lock = threading.Lock()

    def add(self, record: SentRecord) -> None:
        """
        Start tracking a transmitted packet.

        Args:
            record: Record for the packet that was just sent
        """
        with self._lock:
            self._records[record.key] = record

    def acknowledge(self, acked_id: int, origin: Address) -> bool:
        """
        Remove the record matched by an incoming Ack.

        Args:
            acked_id: Id carried by the Ack
            origin: Address the Ack came from

        Returns:
            True if a pending record was removed, False for stale or duplicate acks
        """
        with self._lock:
            return self._records.pop((origin, acked_id), None) is not None

    def pop_expired(self, now: float, timeout: float,
                    on_expired: Optional[Callable[[List[SentRecord]], None]] = None) -> List[SentRecord]:
        """
        Remove and return every record older than ``timeout``.

        ``on_expired`` runs before the registry lock is released, so a
        record is never missing from both the registry and its destination.

        Args:
            now: Current clock reading
            timeout: Retransmission timeout in seconds
            on_expired: Called with the expired records, oldest first

        Returns:
            Expired records, oldest first
        """
        with self._lock:
            expired = sorted((r for r in self._records.values() if r.age(now) > timeout),
                             key=lambda r: r.sent_at)
            for record in expired:
                del self._records[record.key]
            if expired and on_expired is not None:
                on_expired(expired)
        return expired

    def inspect(self, callback: Callable[[int], T]) -> T:
        """
        Run ``callback`` with the number of pending records, under the lock.

        Records cannot be added or removed until the callback returns, so it
        can read another structure and see both in a consistent state.

        Args:
            callback: Called with the current record count

        Returns:
            Whatever ``callback`` returns
        """
        with self._lock:
            return callback(len(self._records))

    def snapshot(self) -> List[SentRecord]:
        """Get a copy of all pending records."""
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
