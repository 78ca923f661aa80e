"""MQTT broker session.

Owns at most one aiomqtt client and provides publish/subscribe with lazy
connect, retained-value de-duplication, a single reconnect-and-retry on
publish failure and a background reconnect after the broker drops us.
"""

from __future__ import annotations

import asyncio
import json
import ssl
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

import aiomqtt

from neolink_mqtt import const, metrics
from neolink_mqtt.exceptions import MqttConnectionError, PublishError, SerializationError
from neolink_mqtt.instrumentation import timed_async
from neolink_mqtt.logging_abstraction import get_logger
from neolink_mqtt.mqtt.dispatcher import MessageHandler, TopicDispatcher
from neolink_mqtt.structs import BrokerCredentials, ConnectionStatus

logger = get_logger(__name__)

ReconnectListener = Callable[[], Awaitable[None]]

_TLS_SCHEMES = frozenset({"mqtts", "ssl", "tls", "wss"})
_WS_SCHEMES = frozenset({"ws", "wss"})


@dataclass(frozen=True, slots=True)
class BrokerEndpoint:
    """Broker address parsed from a normalized URI."""

    uri: str
    hostname: str
    port: int
    tls: bool
    transport: str


def normalize_broker_uri(host: str) -> str:
    """Strip any path/query from a broker URI and end it with a slash.

    A bare ``host[:port]`` is treated as ``mqtt://host[:port]/``.
    """
    host = host.strip()
    if "://" not in host:
        host = f"mqtt://{host}"
    parts = urlsplit(host)
    uri = urlunsplit((parts.scheme, parts.netloc, "", "", ""))
    if not uri.endswith("/"):
        uri = f"{uri}/"
    return uri


def parse_broker_uri(host: str) -> BrokerEndpoint:
    """Normalize host and split it into what aiomqtt.Client needs.

    Raises:
        ValueError: no hostname, or an invalid port

    """
    uri = normalize_broker_uri(host)
    parts = urlsplit(uri)
    if not parts.hostname:
        msg = f"broker URI has no hostname: {host!r}"
        raise ValueError(msg)
    scheme = parts.scheme.casefold()
    tls = scheme in _TLS_SCHEMES
    port = parts.port or (8883 if tls else 1883)
    return BrokerEndpoint(
        uri=uri,
        hostname=parts.hostname,
        port=port,
        tls=tls,
        transport="websockets" if scheme in _WS_SCHEMES else "tcp",
    )


def render_payload(topic: str, value: object) -> str | bytes:
    """Render a publish value to the payload sent on the wire.

    bytes and str pass through; bools, mappings and sequences become JSON;
    anything else uses its string form.

    Raises:
        SerializationError: value is None or cannot be rendered

    """
    if value is None:
        raise SerializationError(topic, value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return value
    try:
        if isinstance(value, (bool, Mapping, list, tuple)):
            return json.dumps(value)
        return str(value)
    except (TypeError, ValueError) as err:
        raise SerializationError(topic, value) from err


class MqttSession:
    """One broker connection shared by any number of camera adapters."""

    lp: str = "mqtt:"

    def __init__(self, credentials: BrokerCredentials, identifier: str | None = None) -> None:
        self.credentials: BrokerCredentials = credentials
        self.identifier: str = identifier or f"{const.NEOLINK_MQTT_CLIENT_ID}_{uuid.uuid4().hex[:8]}"
        self.client: aiomqtt.Client | None = None
        self.dispatcher: TopicDispatcher = TopicDispatcher()
        self._status: ConnectionStatus = ConnectionStatus.DISCONNECTED
        self._connect_task: asyncio.Task[aiomqtt.Client] | None = None
        self._receiver_task: asyncio.Task[None] | None = None
        self._retained: dict[str, str | bytes] = {}
        self._connections: int = 0
        # set by a failed attempt: whoever tried to subscribe then still needs to
        self._listeners_owed: bool = False
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reconnect_listeners: list[ReconnectListener] = []
        self._background: set[asyncio.Task[None]] = set()

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED and self.client is not None

    def retained_value(self, topic: str) -> str | bytes | None:
        """Last payload published retained to topic by this session."""
        return self._retained.get(topic)

    def _set_status(self, status: ConnectionStatus) -> None:
        self._status = status
        metrics.record_connection_state(status.value)

    def add_reconnect_listener(self, listener: ReconnectListener) -> None:
        """Schedule listener after every connection that replaced an earlier one
        or followed a failed attempt."""
        self._reconnect_listeners.append(listener)

    async def connect(self, force_reconnect: bool = False) -> aiomqtt.Client:
        """Return a connected client, establishing one when needed.

        Concurrent callers share a single in-flight attempt.

        Raises:
            MqttConnectionError: the broker refused or could not be reached

        """
        lp = f"{self.lp}connect:"
        pending = self._connect_task
        if pending is not None and not pending.done():
            logger.debug("%s Connection attempt already in flight, waiting on it", lp)
            return await asyncio.shield(pending)

        if not force_reconnect and self.is_connected:
            assert self.client is not None
            return self.client

        if force_reconnect:
            reason = "forced"
        elif self._connections == 0:
            reason = "initial"
        else:
            reason = "lost"
        task = asyncio.create_task(self._establish(reason), name=f"{self.identifier}_connect")
        task.add_done_callback(_consume_exception)
        self._connect_task = task
        return await asyncio.shield(task)

    @timed_async("mqtt_connect")
    async def _establish(self, reason: str) -> aiomqtt.Client:
        lp = f"{self.lp}connect:"
        await self._teardown()
        self._set_status(ConnectionStatus.CONNECTING)
        metrics.record_reconnect(reason)

        try:
            endpoint = parse_broker_uri(self.credentials.host)
        except ValueError as err:
            self._set_status(ConnectionStatus.DISCONNECTED)
            self._listeners_owed = True
            logger.error("%s Invalid broker address: %s", lp, err)
            raise MqttConnectionError(str(err), self.credentials.host) from err

        logger.info(
            "%s Starting MQTT connection",
            lp,
            extra={"broker": endpoint.uri, "username": self.credentials.username, "reason": reason},
        )
        tls_context: ssl.SSLContext | None = None
        if endpoint.tls:
            # neolink setups commonly run brokers with self-signed certificates
            tls_context = ssl.create_default_context()
            tls_context.check_hostname = False
            tls_context.verify_mode = ssl.CERT_NONE
        client = aiomqtt.Client(
            hostname=endpoint.hostname,
            port=endpoint.port,
            username=self.credentials.username,
            password=self.credentials.password,
            identifier=self.identifier,
            transport=endpoint.transport,
            tls_context=tls_context,
            tls_insecure=True if endpoint.tls else None,
        )
        try:
            _ = await client.__aenter__()
        except aiomqtt.MqttError as mqtt_err:
            # -> [Errno 111] Connection refused
            # [code:134] Bad user name or password
            self._set_status(ConnectionStatus.DISCONNECTED)
            self._listeners_owed = True
            self._schedule_reconnect()
            logger.warning(
                "%s Error connecting to MQTT: %s",
                lp,
                mqtt_err,
                extra={"broker": endpoint.uri, "username": self.credentials.username},
            )
            raise MqttConnectionError(str(mqtt_err), endpoint.uri) from mqtt_err

        self.client = client
        self._set_status(ConnectionStatus.CONNECTED)
        self._connections += 1
        self._receiver_task = asyncio.create_task(self._receive(client), name=f"{self.identifier}_receiver")
        logger.info("%s Connected to MQTT broker: %s", lp, endpoint.uri)
        if self._connections > 1 or self._listeners_owed:
            self._listeners_owed = False
            self._notify_reconnect()
        return client

    async def _receive(self, client: aiomqtt.Client) -> None:
        lp = f"{self.lp}rcv:"
        try:
            async for message in client.messages:
                self.dispatcher.dispatch(message.topic.value, message.payload)
        except asyncio.CancelledError:
            raise
        except aiomqtt.MqttError as msg_err:
            logger.warning("%s MQTT connection lost: %s", lp, msg_err)
            if client is self.client:
                self._set_status(ConnectionStatus.DISCONNECTED)
                self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        pending = self._reconnect_task
        if pending is not None and not pending.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect(), name=f"{self.identifier}_reconnect")

    async def _reconnect(self) -> None:
        """Retry the connection with a growing delay until it is back."""
        lp = f"{self.lp}reconnect:"
        delay = const.NEOLINK_MQTT_CONN_DELAY
        if delay <= 0:
            logger.debug("%s MQTT connection delay is less than or equal to 0, setting to 5...", lp)
            delay = 5.0
        while not self.is_connected:
            logger.info("%s Reconnecting to MQTT broker in %s seconds...", lp, delay)
            await asyncio.sleep(delay)
            if self.is_connected:
                break
            try:
                _ = await self.connect()
            except MqttConnectionError as err:
                logger.warning("%s Reconnect failed: %s", lp, err)
                delay = min(delay * 2, max(const.NEOLINK_MQTT_CONN_DELAY_MAX, delay))

    async def _teardown(self) -> None:
        """Stop the receiver and close the transport, logging any close error."""
        lp = f"{self.lp}teardown:"
        receiver, self._receiver_task = self._receiver_task, None
        if receiver is not None and not receiver.done():
            _ = receiver.cancel()
            _ = await asyncio.wait([receiver])

        client, self.client = self.client, None
        if client is None:
            return
        try:
            await client.__aexit__(None, None, None)
        except aiomqtt.MqttError as ce:
            logger.warning("%s Error closing MQTT connection: %s", lp, ce)
        except Exception as e:
            logger.warning("%s Error closing MQTT connection: %s", lp, e)
        else:
            logger.debug("%s Closed MQTT connection", lp)

    def _notify_reconnect(self) -> None:
        for listener in list(self._reconnect_listeners):
            task = asyncio.create_task(self._run_listener(listener))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _run_listener(self, listener: ReconnectListener) -> None:
        try:
            await listener()
        except Exception:
            logger.exception("%s Reconnect listener failed", self.lp)

    @timed_async("mqtt_publish")
    async def publish(self, topic: str, value: object, retain: bool = True) -> bool:
        """Publish value to topic.

        Returns:
            True if written to the broker, False if suppressed as a duplicate
            retained value

        Raises:
            SerializationError: value cannot be rendered
            MqttConnectionError: no connection could be established
            PublishError: the write failed again after one forced reconnect

        """
        lp = f"{self.lp}publish:"
        try:
            payload = render_payload(topic, value)
        except SerializationError:
            logger.warning("%s Error rendering publish value", lp, extra={"topic": topic, "value": repr(value)})
            raise

        previous = self._retained.get(topic)
        if retain and previous == payload:
            logger.debug("%s Skipping publish, same as previous value", lp, extra={"topic": topic})
            metrics.record_publish_suppressed()
            return False

        logger.debug("%s Publishing", lp, extra={"topic": topic, "retain": retain})
        if retain:
            # claimed before the first await; overlapping duplicates are suppressed
            self._retained[topic] = payload
        written = False
        try:
            await self._write(topic, payload, retain)
            written = True
        finally:
            if retain and not written and self._retained.get(topic) == payload:
                if previous is None:
                    _ = self._retained.pop(topic, None)
                else:
                    self._retained[topic] = previous

        metrics.record_publish("ok")
        return True

    async def _write(self, topic: str, payload: str | bytes, retain: bool) -> None:
        lp = f"{self.lp}publish:"
        client = await self.connect()
        try:
            await client.publish(topic, payload, qos=0, retain=retain)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s Error publishing to MQTT, reconnecting: %s", lp, mqtt_err, extra={"topic": topic})
            metrics.record_publish("retried")
            try:
                client = await self.connect(force_reconnect=True)
                await client.publish(topic, payload, qos=0, retain=retain)
            except (aiomqtt.MqttError, MqttConnectionError) as retry_err:
                metrics.record_publish("failed")
                logger.error("%s Publish failed after reconnect: %s", lp, retry_err, extra={"topic": topic})
                raise PublishError(topic, str(retry_err)) from retry_err

    async def subscribe(self, topic: str, handler: MessageHandler) -> None:
        """(Re-)subscribe to topic and make handler its only handler.

        Raises:
            MqttConnectionError: broker unreachable or the subscribe failed

        """
        lp = f"{self.lp}subscribe:"
        client = await self.connect()
        # register first: retained messages can arrive before SUBACK is processed
        self.dispatcher.register(topic, handler)
        try:
            await client.unsubscribe(topic)
            await client.subscribe(topic)
        except aiomqtt.MqttError as mqtt_err:
            _ = self.dispatcher.remove(topic)
            self._set_status(ConnectionStatus.DISCONNECTED)
            self._schedule_reconnect()
            logger.warning("%s Subscribe to %s failed: %s", lp, topic, mqtt_err)
            raise MqttConnectionError(f"subscribe to {topic} failed: {mqtt_err}", self.credentials.host) from mqtt_err
        logger.debug("%s Subscribed to %s", lp, topic)

    async def unsubscribe(self, topic: str) -> None:
        """Stop delivering topic. A topic without a subscription is a no-op."""
        lp = f"{self.lp}unsubscribe:"
        if not self.dispatcher.remove(topic):
            logger.debug("%s No active subscription for %s", lp, topic)
            return
        client = await self.connect()
        try:
            await client.unsubscribe(topic)
        except aiomqtt.MqttError as mqtt_err:
            self._set_status(ConnectionStatus.DISCONNECTED)
            self._schedule_reconnect()
            logger.warning("%s Unsubscribe from %s failed: %s", lp, topic, mqtt_err)
            raise MqttConnectionError(
                f"unsubscribe from {topic} failed: {mqtt_err}", self.credentials.host
            ) from mqtt_err

    async def disconnect(self) -> None:
        """Close the transport and forget the retained cache and subscriptions."""
        # a failing connect can schedule a retry and a retry can start a connect
        while True:
            reconnect = self._reconnect_task
            busy = [t for t in (self._connect_task, reconnect) if t is not None and not t.done()]
            if not busy:
                break
            if reconnect is not None and reconnect in busy:
                _ = reconnect.cancel()
            _ = await asyncio.wait(busy)
        self._reconnect_task = None
        await self._teardown()
        self._set_status(ConnectionStatus.DISCONNECTED)
        self._retained.clear()
        self.dispatcher.clear()
        self._connections = 0
        self._listeners_owed = False
        logger.info("%s Disconnected from MQTT broker", self.lp)

    async def reconfigure(self, credentials: BrokerCredentials) -> None:
        """Drop the current connection; the next operation connects with credentials."""
        await self.disconnect()
        self.credentials = credentials


def _consume_exception(task: asyncio.Task[aiomqtt.Client]) -> None:
    # the awaiting caller may have been cancelled; keep asyncio from warning
    if not task.cancelled():
        _ = task.exception()
