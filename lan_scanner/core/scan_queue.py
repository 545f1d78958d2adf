"""
Priority queue and address prioritization for breadth-first scanning.

Addresses where infrastructure usually lives (gateways at .1 and .254, the
low DHCP pool, common static ranges) are probed first so that devices are
found early; detections then pull their neighbors forward.
"""

import heapq
import threading
from typing import List, Optional, Tuple

from .data_models import ScanPriority, ScanTask
from ..utils.network_utils import last_octet

IMMEDIATE_OCTETS = frozenset({1, 254, 253, 252})
HIGH_PRIORITY_RANGES = (range(2, 21), range(100, 121), range(200, 221))


def classify_priority(address: str) -> ScanPriority:
    """
    Assign the initial breadth-first priority of an address.

    Args:
        address: Target address

    Returns:
        IMMEDIATE for last octets 1, 252-254; HIGH for 2-20, 100-120 and
        200-220; NORMAL otherwise (including every IPv6 address)
    """
    octet = last_octet(address)
    if octet is None:
        return ScanPriority.NORMAL
    if octet in IMMEDIATE_OCTETS:
        return ScanPriority.IMMEDIATE
    if any(octet in octet_range for octet_range in HIGH_PRIORITY_RANGES):
        return ScanPriority.HIGH
    return ScanPriority.NORMAL


class TaskPriorityQueue:
    """
    Thread-safe binary-heap queue of ScanTask objects.

    Tasks are removed highest priority first; tasks of equal priority come
    out in creation order (timestamp, then sequence number).
    """

    def __init__(self):
        self._heap: List[Tuple[Tuple[int, float, int], ScanTask]] = []
        self._lock = threading.Lock()

    def add(self, task: ScanTask) -> None:
        with self._lock:
            heapq.heappush(self._heap, (task.sort_key, task))

    def pop_first(self) -> ScanTask:
        """
        Remove and return the first task.

        Raises:
            IndexError: If the queue is empty
        """
        with self._lock:
            if not self._heap:
                raise IndexError("pop from an empty TaskPriorityQueue")
            return heapq.heappop(self._heap)[1]

    def try_pop(self) -> Optional[ScanTask]:
        with self._lock:
            if not self._heap:
                return None
            return heapq.heappop(self._heap)[1]

    def peek(self) -> Optional[ScanTask]:
        with self._lock:
            return self._heap[0][1] if self._heap else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)

    def __bool__(self) -> bool:
        return len(self) > 0
