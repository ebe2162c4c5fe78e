"""
EventMessage: Data structure representing a message carried by the EventBus.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class EventMessage:
    """
    Represents a single message published on the EventBus.

    Attributes:
        id (str): Unique identifier for the message.
        topic (str): The topic of the message (e.g., 'intersection.events', 'intersection.snapshot').
        sender (str): ID of the sender (e.g., 'phase_controller', 'api').
        payload (dict): Arbitrary dictionary containing message contents.
        ts (float): Wall-clock timestamp (in seconds) when the message was created.
    """
    id: str
    topic: str
    sender: str
    payload: dict
    ts: float
