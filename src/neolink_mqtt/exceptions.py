"""Exception hierarchy for broker and payload errors.

Everything raised by the session and adapters derives from NeolinkError so
callers that only want best-effort behaviour can catch one type.
"""

from __future__ import annotations


class NeolinkError(Exception):
    """Base class for neolink adapter errors."""


class MqttConnectionError(NeolinkError):
    """Broker unreachable, refused the credentials, or dropped mid-operation.

    Named MqttConnectionError to avoid shadowing Python's built-in ConnectionError.

    Attributes:
        broker: Normalized broker URI the attempt targeted
        reason: Specific failure reason

    """

    def __init__(self, reason: str, broker: str = "unknown") -> None:
        self.reason: str = reason
        self.broker: str = broker
        super().__init__(f"MQTT connection error: {reason} (broker: {broker})")


class SerializationError(NeolinkError):
    """A publish value could not be rendered to a payload."""

    def __init__(self, topic: str, value: object) -> None:
        self.topic: str = topic
        self.value: object = value
        super().__init__(f"Cannot render payload for {topic}: {value!r}")


class PublishError(NeolinkError):
    """A publish failed, was retried once after a forced reconnect, and failed again.

    Attributes:
        topic: Topic the payload was meant for
        reason: Failure reason of the final attempt

    """

    def __init__(self, topic: str, reason: str) -> None:
        self.topic: str = topic
        self.reason: str = reason
        super().__init__(f"Publish to {topic} failed after reconnect retry: {reason}")


class DecodeError(NeolinkError):
    """A status payload could not be decoded."""

    def __init__(self, topic: str, payload: str, reason: str) -> None:
        self.topic: str = topic
        self.payload: str = payload
        self.reason: str = reason
        super().__init__(f"Cannot decode payload on {topic}: {reason}")
