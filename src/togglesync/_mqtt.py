"""MQTT client port and adapters.

Provides MqttPort (Protocol) and two implementations:

- MqttClient — real aiomqtt-based client with reconnection backoff
- MockMqttClient — test double that records calls

The port is the "client library" the rest of the engine talks to.  It
exposes the classic surface — connect, disconnect, subscribe, publish,
is_connected — plus three callbacks:

- ``on_message(topic, payload)`` for every inbound message
- ``on_connection_lost(cause)`` when an established connection drops
- ``on_connect_complete(reconnect)`` when a reconnect succeeds

Design decisions:

- aiomqtt imported lazily inside MqttClient.connect() so the mock works
  without aiomqtt installed
- Reconnection after a lost connection belongs to the adapter (the
  library's own backoff); the connection manager only observes it
- The adapter never tracks subscriptions: the connection manager
  re-issues them after each reconnect
- ConnectOptions abstracts the connection parameters without leaking
  aiomqtt types
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import ssl
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from togglesync._errors import ConnectError, NotConnectedError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

MessageCallback = Callable[[str, str], Awaitable[None]]
"""Async callback receiving (topic, payload) for each inbound message."""

ConnectionLostCallback = Callable[[str], Awaitable[None]]
"""Async callback receiving a human-readable cause."""

ConnectCompleteCallback = Callable[[bool], Awaitable[None]]
"""Async callback receiving ``reconnect=True`` after a reconnect."""

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConnectOptions:
    """Resolved connection parameters for one connect call."""

    host: str
    port: int
    client_id: str
    tls: bool = False
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    clean_session: bool = True
    keep_alive: int = 60
    connect_timeout: float = 10.0
    auto_reconnect: bool = True
    reconnect_interval: float = 1.0
    reconnect_max_interval: float = 120.0

    @property
    def uri(self) -> str:
        scheme = "ssl" if self.tls else "tcp"
        return f"{scheme}://{self.host}:{self.port}"


@dataclass
class MqttCallbacks:
    """Callbacks registered on an adapter via ``set_callbacks``."""

    on_message: MessageCallback
    on_connection_lost: ConnectionLostCallback
    on_connect_complete: ConnectCompleteCallback


# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Port contract for the MQTT client library.

    ``connect`` returns once the first connection is established and
    raises on failure.  Everything after that is reported through the
    callbacks.
    """

    @property
    def is_connected(self) -> bool: ...

    def set_callbacks(
        self,
        *,
        on_message: MessageCallback,
        on_connection_lost: ConnectionLostCallback,
        on_connect_complete: ConnectCompleteCallback,
    ) -> None: ...

    async def connect(self, options: ConnectOptions) -> None: ...

    async def disconnect(self) -> None: ...

    async def subscribe(self, topic: str, qos: int = 1) -> None: ...

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        qos: int = 1,
        retain: bool = False,
    ) -> None: ...


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """In-memory test double that records MQTT interactions.

    Records connects, publishes and subscriptions for assertion.
    Failures are injected by setting ``connect_error``,
    ``publish_error``, ``subscribe_error`` or ``disconnect_error``.
    ``deliver()``, ``lose_connection()`` and ``complete_reconnect()``
    drive the registered callbacks the way the real library would.
    """

    connects: list[ConnectOptions] = field(default_factory=list)
    published: list[tuple[str, str, int, bool]] = field(default_factory=list)
    subscriptions: list[tuple[str, int]] = field(default_factory=list)
    disconnect_count: int = 0
    connect_error: Exception | None = None
    publish_error: Exception | None = None
    subscribe_error: Exception | None = None
    disconnect_error: Exception | None = None
    _connected: bool = field(default=False, init=False, repr=False)
    _callbacks: MqttCallbacks | None = field(default=None, init=False, repr=False)

    # -- MqttPort methods --------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._connected

    def set_callbacks(
        self,
        *,
        on_message: MessageCallback,
        on_connection_lost: ConnectionLostCallback,
        on_connect_complete: ConnectCompleteCallback,
    ) -> None:
        self._callbacks = MqttCallbacks(
            on_message=on_message,
            on_connection_lost=on_connection_lost,
            on_connect_complete=on_connect_complete,
        )

    async def connect(self, options: ConnectOptions) -> None:
        """Record a connect call, or raise ``connect_error``."""
        self.connects.append(options)
        if self.connect_error is not None:
            raise self.connect_error
        self._connected = True

    async def disconnect(self) -> None:
        self.disconnect_count += 1
        self._connected = False
        if self.disconnect_error is not None:
            raise self.disconnect_error

    async def subscribe(self, topic: str, qos: int = 1) -> None:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscriptions.append((topic, qos))

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        qos: int = 1,
        retain: bool = False,
    ) -> None:
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((topic, payload, qos, retain))

    # -- Test helpers -------------------------------------------------------

    async def deliver(self, topic: str, payload: str) -> None:
        """Simulate an inbound message."""
        await self._require_callbacks().on_message(topic, payload)

    async def lose_connection(self, cause: str = "connection reset") -> None:
        """Simulate the broker dropping an established connection."""
        self._connected = False
        await self._require_callbacks().on_connection_lost(cause)

    async def complete_reconnect(self) -> None:
        """Simulate the library's backoff succeeding."""
        self._connected = True
        await self._require_callbacks().on_connect_complete(True)

    @property
    def publish_count(self) -> int:
        return len(self.published)

    @property
    def subscribe_count(self) -> int:
        return len(self.subscriptions)

    def get_messages_for(self, topic: str) -> list[tuple[str, int, bool]]:
        """Return ``(payload, qos, retain)`` tuples for *topic*."""
        return [
            (payload, qos, retain)
            for t, payload, qos, retain in self.published
            if t == topic
        ]

    def reset(self) -> None:
        """Clear recorded calls; callbacks stay registered."""
        self.connects.clear()
        self.published.clear()
        self.subscriptions.clear()
        self.disconnect_count = 0

    def _require_callbacks(self) -> MqttCallbacks:
        if self._callbacks is None:
            msg = "No callbacks registered; call set_callbacks() first"
            raise RuntimeError(msg)
        return self._callbacks


# ---------------------------------------------------------------------------
# Real adapter
# ---------------------------------------------------------------------------


def _backoff(delay: float, ceiling: float) -> float:
    """Double *delay* up to *ceiling*, with up to 10% jitter."""
    doubled = min(delay * 2, ceiling)
    return doubled * random.uniform(0.9, 1.0)  # noqa: S311


@dataclass
class MqttClient:
    """Production MQTT adapter backed by *aiomqtt*.

    ``connect()`` starts a background task that owns the aiomqtt
    connection and iterates inbound messages.  The call returns once
    that task reports the first successful connection, or raises
    :class:`ConnectError` if it failed.  A failed first attempt is not
    retried.

    After a connection has been established, a drop is reported via
    ``on_connection_lost``.  With ``auto_reconnect`` the task then
    retries with exponential backoff and reports success through
    ``on_connect_complete(True)``; without it the task ends.
    """

    _callbacks: MqttCallbacks | None = field(default=None, init=False, repr=False)
    _client: Any = field(default=None, init=False, repr=False)
    _listen_task: asyncio.Task[None] | None = field(
        default=None,
        init=False,
        repr=False,
    )
    _connected: asyncio.Event = field(
        default_factory=asyncio.Event,
        init=False,
        repr=False,
    )
    _stopping: bool = field(default=False, init=False, repr=False)

    # -- MqttPort methods --------------------------------------------------

    @property
    def is_connected(self) -> bool:
        """Whether the client is currently connected to the broker."""
        return self._connected.is_set()

    def set_callbacks(
        self,
        *,
        on_message: MessageCallback,
        on_connection_lost: ConnectionLostCallback,
        on_connect_complete: ConnectCompleteCallback,
    ) -> None:
        self._callbacks = MqttCallbacks(
            on_message=on_message,
            on_connection_lost=on_connection_lost,
            on_connect_complete=on_connect_complete,
        )

    async def connect(self, options: ConnectOptions) -> None:
        """Connect to the broker and start the listen loop.

        Raises:
            ConnectError: If aiomqtt is missing, a connection is already
                running, or the broker refused the first attempt.
        """
        try:
            import aiomqtt  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "aiomqtt is required to use MqttClient"
            raise ConnectError(msg) from exc

        if self._listen_task is not None and not self._listen_task.done():
            msg = "MqttClient is already connecting or connected"
            raise ConnectError(msg)

        self._stopping = False
        first_attempt: asyncio.Future[None] = (
            asyncio.get_running_loop().create_future()
        )
        self._listen_task = asyncio.create_task(
            self._connection_loop(aiomqtt, options, first_attempt),
        )
        try:
            await first_attempt
        except asyncio.CancelledError:
            await self.disconnect()
            raise
        except Exception as exc:
            raise ConnectError(str(exc) or type(exc).__name__) from exc

    async def disconnect(self) -> None:
        """Stop the listen loop and close the connection.

        Idempotent — safe to call multiple times.
        """
        self._stopping = True
        if self._listen_task is not None:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None
        self._client = None
        self._connected.clear()

    async def subscribe(self, topic: str, qos: int = 1) -> None:
        """Subscribe to *topic*.

        Raises:
            NotConnectedError: If there is no live connection.
        """
        client = self._require_client()
        await client.subscribe(topic, qos=qos)
        logger.debug("Subscribed to %s (qos=%d)", topic, qos)

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        qos: int = 1,
        retain: bool = False,
    ) -> None:
        """Publish a message to the broker.

        Raises:
            NotConnectedError: If there is no live connection.
        """
        client = self._require_client()
        await client.publish(topic, payload, qos=qos, retain=retain)
        logger.debug(
            "Published to %s (qos=%d, retain=%s)",
            topic,
            qos,
            retain,
        )

    # -- Internal -----------------------------------------------------------

    def _require_client(self) -> Any:
        if self._client is None:
            msg = "MqttClient is not connected"
            raise NotConnectedError(msg)
        return self._client

    def _build_client(self, aiomqtt: Any, options: ConnectOptions) -> Any:
        tls_context = ssl.create_default_context() if options.tls else None
        return aiomqtt.Client(
            hostname=options.host,
            port=options.port,
            identifier=options.client_id,
            username=options.username,
            password=options.password,
            clean_session=options.clean_session,
            keepalive=options.keep_alive,
            timeout=options.connect_timeout,
            tls_context=tls_context,
        )

    async def _connection_loop(
        self,
        aiomqtt: Any,
        options: ConnectOptions,
        first_attempt: asyncio.Future[None],
    ) -> None:
        """Own the aiomqtt connection for its whole lifetime."""
        delay = options.reconnect_interval
        while not self._stopping:
            try:
                async with self._build_client(aiomqtt, options) as client:
                    self._client = client
                    self._connected.set()
                    delay = options.reconnect_interval
                    try:
                        if first_attempt.done():
                            logger.info("MQTT reconnected to %s", options.uri)
                            await self._notify_connect_complete()
                        else:
                            logger.info("MQTT connected to %s", options.uri)
                            first_attempt.set_result(None)

                        async for message in client.messages:
                            await self._dispatch(message)
                    finally:
                        self._connected.clear()
                        self._client = None
                msg = "message stream ended"
                raise aiomqtt.MqttError(msg)

            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if not first_attempt.done():
                    first_attempt.set_exception(exc)
                    return
                if self._stopping:
                    return
                cause = str(exc) or type(exc).__name__
                logger.warning("MQTT connection lost: %s", cause)
                await self._notify_connection_lost(cause)
                if not options.auto_reconnect:
                    return
                logger.info("Reconnecting to %s in %.1fs", options.uri, delay)
                await asyncio.sleep(delay)
                delay = _backoff(delay, options.reconnect_max_interval)

    async def _dispatch(self, message: Any) -> None:
        """Decode an inbound message and hand it to the callback."""
        topic = str(message.topic)

        if message.payload is None:
            logger.debug(
                "Skipping message with None payload on %s",
                topic,
            )
            return

        payload = (
            message.payload.decode("utf-8", errors="replace")
            if isinstance(message.payload, (bytes, bytearray))
            else str(message.payload)
        )

        if self._callbacks is None:
            return
        try:
            await self._callbacks.on_message(topic, payload)
        except Exception:
            logger.exception(
                "Error in message callback for %s",
                topic,
            )

    async def _notify_connection_lost(self, cause: str) -> None:
        if self._callbacks is None:
            return
        try:
            await self._callbacks.on_connection_lost(cause)
        except Exception:
            logger.exception("Error in connection-lost callback")

    async def _notify_connect_complete(self) -> None:
        if self._callbacks is None:
            return
        try:
            await self._callbacks.on_connect_complete(True)
        except Exception:
            logger.exception("Error in connect-complete callback")
