"""
EventBus: In-memory pub/sub system for intersection events and snapshots.

Supports:
    - Topic-based messaging with bounded per-topic history
    - Push delivery to subscribers on a background dispatcher thread
    - Failure isolation: a raising subscriber is logged and counted, never
      propagated to the publisher
    - Logging of events

Intended usage:
    - The phase controller publishes to 'intersection.events' and
      'intersection.snapshot' from its tick thread
    - Notification sinks and displays subscribe, or poll the history
"""

import logging
import queue
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from .message import EventMessage
from .metrics import BusMetrics
from .utils import new_msg_id

log = logging.getLogger(__name__)

EVENTS_TOPIC = "intersection.events"
SNAPSHOT_TOPIC = "intersection.snapshot"

Subscriber = Callable[[EventMessage], None]

_STOP = object()


class EventBus:
    """
    Transport layer between the phase controller and its observers.

    ``publish`` never blocks on a subscriber: messages are handed to a
    daemon dispatcher thread, so a slow or failing sink cannot stall the
    tick that produced them.

    Attributes:
        history (int): Maximum number of messages retained per topic for poll().
        metrics (BusMetrics): Published / delivered / failed counters.
    """

    def __init__(self, history: int = 200):
        """
        Initialize an EventBus instance and start its dispatcher.

        Args:
            history (int): Per-topic history length kept for poll().
        """
        self.history = history
        self.metrics = BusMetrics()
        self._topics: Dict[str, Deque[EventMessage]] = {}
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._lock = threading.Lock()
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._closed = False
        self._worker = threading.Thread(
            target=self._dispatch_loop, daemon=True, name="EventBus"
        )
        self._worker.start()

    def publish(self, topic: str, sender: str, payload: dict) -> Optional[str]:
        """
        Publish a message to a specific topic.

        Args:
            topic (str): The topic name (e.g., 'intersection.events').
            sender (str): ID of the sender (e.g., 'phase_controller').
            payload (dict): Arbitrary data dictionary representing the message contents.

        Returns:
            Optional[str]: The unique message ID, or None if the bus is closed.
        """
        if self._closed:
            log.warning("publish_after_close topic=%s sender=%s", topic, sender)
            return None

        msg = EventMessage(
            id=new_msg_id(),
            topic=topic,
            sender=sender,
            payload=payload,
            ts=time.time(),
        )
        with self._lock:
            history = self._topics.get(topic)
            if history is None:
                history = self._topics[topic] = deque(maxlen=self.history)
            history.append(msg)
            has_subscribers = bool(self._subscribers.get(topic))

        self.metrics.incr("published")
        if has_subscribers:
            self._queue.put(msg)
        log.debug("publish topic=%s sender=%s id=%s", topic, sender, msg.id)
        return msg.id

    def subscribe(self, topic: str, callback: Subscriber):
        """
        Register *callback* for every future message on *topic*.

        Args:
            topic (str): The topic name to listen on.
            callback (Callable[[EventMessage], None]): Called on the dispatcher thread.
        """
        with self._lock:
            self._subscribers.setdefault(topic, []).append(callback)

    def unsubscribe(self, topic: str, callback: Subscriber):
        """
        Remove a previously registered callback; unknown callbacks are ignored.

        Args:
            topic (str): The topic the callback was registered on.
            callback (Callable[[EventMessage], None]): The callback to remove.
        """
        with self._lock:
            callbacks = self._subscribers.get(topic, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def poll(self, topic: str) -> List[EventMessage]:
        """
        Retrieve and clear the retained history of a given topic.

        Args:
            topic (str): The topic name to poll messages from.

        Returns:
            List[EventMessage]: Messages published to the topic since the last poll
            (at most ``history`` of them).
        """
        with self._lock:
            history = self._topics.get(topic)
            if not history:
                return []
            msgs = list(history)
            history.clear()
            return msgs

    def flush(self, timeout_s: float = 2.0) -> bool:
        """
        Wait until every queued message has been handed to its subscribers.

        Args:
            timeout_s (float): Maximum time to wait.

        Returns:
            bool: True if the dispatcher caught up, False on timeout.
        """
        deadline = time.monotonic() + timeout_s
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)
        return True

    def close(self, timeout_s: float = 2.0):
        """
        Stop accepting messages and let the dispatcher drain and exit.

        Args:
            timeout_s (float): How long to wait for the dispatcher thread.
        """
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        self._worker.join(timeout=timeout_s)
        log.info("EventBus closed metrics=%s", self.metrics.report())

    def _dispatch_loop(self):
        """
        Deliver queued messages to subscribers until close() is called.

        Note:
            Runs on the dispatcher thread. Subscriber exceptions are logged
            and counted, never re-raised.
        """
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._deliver(item)
            finally:
                self._queue.task_done()

    def _deliver(self, msg: EventMessage):
        with self._lock:
            callbacks = list(self._subscribers.get(msg.topic, []))
        for callback in callbacks:
            try:
                callback(msg)
            except Exception:
                self.metrics.incr("failed")
                log.exception("subscriber_failed topic=%s id=%s", msg.topic, msg.id)
            else:
                self.metrics.incr("delivered")
