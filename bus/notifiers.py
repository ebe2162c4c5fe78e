"""
Notification sinks for human-readable intersection events.

Sinks are plain callables taking an EventMessage from the
'intersection.events' topic.  They run on the EventBus dispatcher thread,
so a sink that blocks or raises never reaches the phase controller.

    - LogNotifier: writes the event text to the log
    - TelegramNotifier: posts the event text to a Telegram chat
"""

import logging
from typing import Callable, Optional

import requests

from config import TELEGRAM_API_URL, TELEGRAM_TIMEOUT_S

from .event_bus import EVENTS_TOPIC, EventBus
from .message import EventMessage

log = logging.getLogger(__name__)


class NotificationDeliveryError(RuntimeError):
    """Raised by a sink when an event could not be delivered."""


def event_text(msg: EventMessage) -> str:
    """
    Extract the human-readable text of an event message.

    Args:
        msg (EventMessage): Message from the events topic.

    Returns:
        str: The 'text' field, or a generic fallback built from 'kind'.
    """
    payload = msg.payload if isinstance(msg.payload, dict) else {}
    return str(payload.get("text") or payload.get("kind") or "event")


class LogNotifier:
    """
    Sink that logs every event at INFO level.

    Args:
        logger_name (str): Name of the logger events are written to.
    """

    def __init__(self, logger_name: str = "notifications"):
        self._log = logging.getLogger(logger_name)

    def __call__(self, msg: EventMessage):
        self._log.info("%s", event_text(msg))


class TelegramNotifier:
    """
    Sink that forwards event text to a Telegram chat via the Bot API.

    Args:
        token (str): Bot token issued by BotFather.
        chat_id (str): Target chat identifier.
        session (Optional[requests.Session]): HTTP session; a new one is created if omitted.
        timeout_s (float): Per-request timeout in seconds.
        api_url (str): Base URL of the Bot API.
    """

    def __init__(
        self,
        token: str,
        chat_id: str,
        session: Optional[requests.Session] = None,
        timeout_s: float = TELEGRAM_TIMEOUT_S,
        api_url: str = TELEGRAM_API_URL,
    ):
        if not token or not chat_id:
            raise ValueError("Telegram token and chat_id are required")
        self.chat_id = chat_id
        self.timeout_s = timeout_s
        self._url = f"{api_url.rstrip('/')}/bot{token}/sendMessage"
        self._session = session or requests.Session()

    def send(self, text: str):
        """
        Send one message to the configured chat.

        Args:
            text (str): Message body.

        Raises:
            NotificationDeliveryError: On transport errors or a non-OK reply.
        """
        try:
            response = self._session.post(
                self._url,
                json={"chat_id": self.chat_id, "text": text},
                timeout=self.timeout_s,
            )
        except requests.exceptions.RequestException as exc:
            raise NotificationDeliveryError(f"Telegram unreachable: {exc}") from exc

        if not response.ok:
            raise NotificationDeliveryError(
                f"Telegram rejected message: HTTP {response.status_code}"
            )
        log.debug("telegram_sent chat=%s", self.chat_id)

    def __call__(self, msg: EventMessage):
        self.send(event_text(msg))


def attach_notifier(bus: EventBus, notifier: Callable[[EventMessage], None]):
    """
    Subscribe a sink to the events topic of *bus*.

    Args:
        bus (EventBus): Bus the phase controller publishes on.
        notifier (Callable[[EventMessage], None]): Sink to register.
    """
    bus.subscribe(EVENTS_TOPIC, notifier)
    log.info("notifier_attached %s", type(notifier).__name__)
