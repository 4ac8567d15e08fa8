"""
Per-destination sequence numbering.

Each destination gets its own counter starting at 0. Ids are only unique
per (sender, destination) pair.
"""

import threading
from typing import Dict

from .packet import Address, U32_MAX


class SequenceCounters:
    """
    Thread-safe map of destination address to the next id to assign.
    """

    def __init__(self):
        self._next_ids: Dict[Address, int] = {}
        self._lock = threading.Lock()

    def next_id(self, destination: Address) -> int:
        """
        Take the next id for a destination and advance its counter.

        Args:
            destination: (host, port) the packet is addressed to

        Returns:
            Id to stamp on the packet
        """
        with self._lock:
            current = self._next_ids.get(destination, 0)
            # Ids are 32-bit on the wire
            self._next_ids[destination] = (current + 1) & U32_MAX
            return current

    def peek(self, destination: Address) -> int:
        """Get the id the next packet to ``destination`` would receive."""
        with self._lock:
            return self._next_ids.get(destination, 0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._next_ids)
