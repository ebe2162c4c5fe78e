"""
bus — In-memory event transport
===============================

Provides a lightweight pub/sub layer between the phase controller and
its observers (displays, notification sinks), without a real network
stack.  Publishing never blocks the publisher.

Modules
-------
message
    :class:`EventMessage` dataclass.
event_bus
    :class:`EventBus` publish / subscribe / poll transport.
metrics
    :class:`BusMetrics` counter snapshot.
notifiers
    :class:`LogNotifier` and :class:`TelegramNotifier` sinks.
utils
    ID generation, event payload helper.
"""

from .message import EventMessage
from .event_bus import EVENTS_TOPIC, SNAPSHOT_TOPIC, EventBus
from .metrics import BusMetrics
from .notifiers import (
    LogNotifier,
    NotificationDeliveryError,
    TelegramNotifier,
    attach_notifier,
)
from .utils import event_payload, new_msg_id

__all__ = [
    "EventMessage",
    "EventBus",
    "EVENTS_TOPIC",
    "SNAPSHOT_TOPIC",
    "BusMetrics",
    "LogNotifier",
    "NotificationDeliveryError",
    "TelegramNotifier",
    "attach_notifier",
    "event_payload",
    "new_msg_id",
]
