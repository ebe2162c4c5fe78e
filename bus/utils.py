"""
Utility helpers for the EventBus:
    - ID generation
    - event payload construction
"""

import uuid


# ---------- ID Helpers ----------
def new_msg_id() -> str:
    """
    Generate a globally unique message ID.

    Returns:
        str: UUID string for a new message.
    """
    return str(uuid.uuid4())


# ---------- Payload Helpers ----------
def event_payload(kind: str, text: str, **details) -> dict:
    """
    Build the payload of a human-readable notification event.

    Args:
        kind (str): Machine-readable event kind (e.g., 'emergency_detected').
        text (str): Human-readable message for notification sinks.
        **details: Extra JSON-friendly fields (direction, pair, ...).

    Returns:
        dict: Payload with 'kind', 'text' and the extra fields.
    """
    payload = {"kind": kind, "text": text}
    payload.update(details)
    return payload
