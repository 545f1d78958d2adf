"""
Admission control for concurrent probing.

``FifoSemaphore`` is a counting semaphore whose blocked acquirers are served
strictly in arrival order: when a permit is released it is handed directly
to the longest-waiting thread, so a late arrival can never overtake a thread
that is already queued.
"""

import threading
from collections import deque
from typing import Deque, Optional


class FifoSemaphore:
    """
    Counting semaphore with first-in first-out wakeup order.

    The number of holders never exceeds the initial permit count. Permits
    released while threads are waiting are transferred to the head of the
    wait queue instead of being returned to the pool.
    """

    def __init__(self, permits: int):
        """
        Initialize the semaphore.

        Args:
            permits: Maximum number of simultaneous holders

        Raises:
            ValueError: If permits is smaller than 1
        """
        if permits < 1:
            raise ValueError(f"permits must be at least 1, got {permits}")
        self._permits = permits
        self._available = permits
        self._lock = threading.Lock()
        self._waiters: Deque[threading.Event] = deque()

    @property
    def permits(self) -> int:
        return self._permits

    @property
    def available(self) -> int:
        with self._lock:
            return self._available

    @property
    def waiting(self) -> int:
        """Number of threads currently blocked in acquire()."""
        with self._lock:
            return len(self._waiters)

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Take a permit, blocking until one is handed over.

        Args:
            timeout: Maximum seconds to wait; None waits indefinitely

        Returns:
            bool: True if a permit was obtained, False on timeout
        """
        with self._lock:
            if self._available > 0 and not self._waiters:
                self._available -= 1
                return True
            waiter = threading.Event()
            self._waiters.append(waiter)

        if waiter.wait(timeout):
            return True

        with self._lock:
            # A release may have handed us the permit after the wait expired
            if waiter.is_set():
                return True
            self._waiters.remove(waiter)
            return False

    def release(self) -> None:
        """
        Return a permit, waking the longest-waiting thread if any.

        Raises:
            RuntimeError: If more permits are released than were acquired
        """
        with self._lock:
            if self._waiters:
                self._waiters.popleft().set()
                return
            if self._available >= self._permits:
                raise RuntimeError("FifoSemaphore released too many times")
            self._available += 1

    def __enter__(self) -> "FifoSemaphore":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.release()
