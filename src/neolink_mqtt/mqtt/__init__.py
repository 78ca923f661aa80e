"""MQTT package for the neolink adapter.

- topics.py: neolink topic naming
- session.py: broker connection, publish de-duplication, reconnect
- dispatcher.py: exact-topic routing of inbound messages
"""

from .dispatcher import MessageHandler, TopicDispatcher
from .session import BrokerEndpoint, MqttSession, normalize_broker_uri, parse_broker_uri, render_payload
from .topics import TopicSet, topics_for

__all__ = [
    "BrokerEndpoint",
    "MessageHandler",
    "MqttSession",
    "TopicDispatcher",
    "TopicSet",
    "normalize_broker_uri",
    "parse_broker_uri",
    "render_payload",
    "topics_for",
]
