"""
BusMetrics: Tracks simple statistics for EventBus message flow.
"""

import threading


class BusMetrics:
    """
    Tracks counters for published messages and subscriber deliveries.

    Attributes:
        published (int): Total number of messages published.
        delivered (int): Number of successful subscriber callbacks.
        failed (int): Number of subscriber callbacks that raised.
    """

    def __init__(self):
        """Initialize all counters to zero."""
        self._lock = threading.Lock()
        self.published = 0
        self.delivered = 0
        self.failed = 0

    def incr(self, counter: str, amount: int = 1):
        """
        Increase one counter atomically.

        Args:
            counter (str): One of 'published', 'delivered', 'failed'.
            amount (int): Increment.
        """
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def report(self) -> dict:
        """
        Return a snapshot of current metrics.

        Returns:
            dict: Dictionary containing 'published', 'delivered' and 'failed' counters.
        """
        with self._lock:
            return {
                "published": self.published,
                "delivered": self.delivered,
                "failed": self.failed,
            }
