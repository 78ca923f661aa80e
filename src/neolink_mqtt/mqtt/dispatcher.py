"""Exact-topic routing of inbound broker messages to handlers."""

from __future__ import annotations

from collections.abc import Callable

from neolink_mqtt import metrics
from neolink_mqtt.correlation import correlation_context
from neolink_mqtt.logging_abstraction import get_logger

logger = get_logger(__name__)

MessageHandler = Callable[[str], None]


class TopicDispatcher:
    """Registry of topic -> handlers, invoked synchronously per message."""

    lp: str = "dispatcher:"

    def __init__(self) -> None:
        self._handlers: dict[str, list[MessageHandler]] = {}

    def __contains__(self, topic: object) -> bool:
        return topic in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    @property
    def topics(self) -> list[str]:
        return list(self._handlers)

    def register(self, topic: str, handler: MessageHandler, *, replace: bool = True) -> None:
        """Register a handler for an exact topic.

        With replace=True (the session default) the handler becomes the only
        one for that topic; otherwise it is appended after existing ones.
        """
        if replace or topic not in self._handlers:
            self._handlers[topic] = [handler]
        else:
            self._handlers[topic].append(handler)

    def remove(self, topic: str) -> bool:
        """Drop all handlers for a topic. Returns whether any were registered."""
        return self._handlers.pop(topic, None) is not None

    def clear(self) -> None:
        self._handlers.clear()

    def dispatch(self, topic: str, payload: bytes | bytearray | str | None) -> int:
        """Run every handler registered for topic with the payload as text.

        Returns:
            Number of handlers invoked

        """
        lp = f"{self.lp}dispatch:"
        handlers = self._handlers.get(topic)
        metrics.record_message(bool(handlers))
        if not handlers:
            logger.debug("%s No handler for topic %s, skipping...", lp, topic)
            return 0

        if payload is None:
            text = ""
        elif isinstance(payload, (bytes, bytearray)):
            text = bytes(payload).decode("utf-8", errors="replace")
        else:
            text = str(payload)

        invoked = 0
        with correlation_context():
            # copy: a handler may (un)register topics while we iterate
            for handler in list(handlers):
                invoked += 1
                try:
                    handler(text)
                except Exception:
                    logger.exception(
                        "%s Handler %s failed for topic %s",
                        lp,
                        getattr(handler, "__qualname__", repr(handler)),
                        topic,
                    )
        return invoked
