"""Broker connection lifecycle.

:class:`ConnectionManager` owns one :class:`MqttPort` and drives the
connection state machine::

    DISCONNECTED ──connect()──▶ CONNECTING ──ok──▶ CONNECTED
         ▲                          │                 │
         └───────── failure ────────┘        lost     │ disconnect()
         ▲                                    ▼       ▼
         └──── no auto-reconnect ──────────  LOST   DISCONNECTED
                                              │
                                              └──auto-reconnect──▶ CONNECTING

Two execution contexts meet here.  The adapter's listen task (I/O)
only *enqueues* events onto a bounded inbox.  A drain task running on
the control side takes them off in arrival order and is the only place
where inbound messages reach the message handlers and where
lost/reconnected events move the state machine.  Per-topic ordering
is therefore the broker's delivery order.

``connect()`` never blocks its caller: it moves to CONNECTING and runs
the attempt as a background task.  Outcomes surface as state
transitions and event log lines.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import urlsplit

from togglesync._errors import (
    ConnectError,
    EmptyConfigError,
    NotConnectedError,
    PublishError,
    SubscribeError,
)
from togglesync._events import Direction, EventLog
from togglesync._mqtt import ConnectOptions, MqttPort
from togglesync._settings import BrokerSettings

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"tcp": 1883, "ssl": 8883}


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    LOST = "lost"


StateListener = Callable[[ConnectionState], None]
MessageHandler = Callable[[str, str], object]

# ---------------------------------------------------------------------------
# URI handling
# ---------------------------------------------------------------------------


def normalize_broker_uri(uri: str) -> str:
    """Canonicalize a user-supplied broker URI.

    ``tcp://`` and ``ssl://`` pass through, ``mqtt://`` becomes
    ``tcp://`` and a bare ``host:port`` gets ``tcp://`` prepended.
    Scheme matching is case-insensitive.

    Raises:
        EmptyConfigError: If *uri* is blank.
    """
    trimmed = uri.strip()
    if not trimmed:
        msg = "Broker URI is empty"
        raise EmptyConfigError(msg)
    lowered = trimmed.lower()
    if lowered.startswith(("tcp://", "ssl://")):
        return trimmed
    if lowered.startswith("mqtt://"):
        return "tcp://" + trimmed[len("mqtt://") :]
    return f"tcp://{trimmed}"


def generate_client_id() -> str:
    """Return ``togglesync-`` plus 12 hex chars (23 chars, the MQTT 3.1 limit)."""
    return f"togglesync-{uuid.uuid4().hex[:12]}"


def build_connect_options(settings: BrokerSettings) -> ConnectOptions:
    """Resolve *settings* into adapter-level :class:`ConnectOptions`.

    Raises:
        EmptyConfigError: If the URI is blank.
        ConnectError: If the URI has no host or an invalid port.
    """
    uri = normalize_broker_uri(settings.uri)
    parts = urlsplit(uri)
    scheme = parts.scheme.lower()
    try:
        port = parts.port or _DEFAULT_PORTS[scheme]
    except ValueError as exc:
        msg = f"Invalid port in broker URI {uri!r}"
        raise ConnectError(msg) from exc
    if not parts.hostname:
        msg = f"Broker URI {uri!r} has no host"
        raise ConnectError(msg)

    password = (
        settings.password.get_secret_value() if settings.password is not None else None
    )
    return ConnectOptions(
        host=parts.hostname,
        port=port,
        client_id=settings.client_id.strip() or generate_client_id(),
        tls=scheme == "ssl",
        username=settings.username,
        password=password,
        clean_session=settings.clean_session,
        keep_alive=settings.keep_alive,
        connect_timeout=float(settings.connect_timeout),
        auto_reconnect=settings.auto_reconnect,
        reconnect_interval=settings.reconnect_interval,
        reconnect_max_interval=settings.reconnect_max_interval,
    )


# ---------------------------------------------------------------------------
# Inbox events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _InboundMessage:
    topic: str
    payload: str


@dataclass(frozen=True, slots=True)
class _ConnectionLost:
    cause: str


@dataclass(frozen=True, slots=True)
class _ConnectComplete:
    reconnect: bool


_InboxEvent = _InboundMessage | _ConnectionLost | _ConnectComplete

# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class ConnectionManager:
    """Owns the broker connection and its state machine.

    Args:
        client: The MQTT adapter.  The manager registers its own
            callbacks on it.
        event_log: Receives one line per connection event.
        subscriptions: Topics (re-)subscribed after every successful
            connect; usually a single root wildcard like ``home/#``.
        qos: QoS used for subscriptions.
        inbox_size: Capacity of the inbound event queue.  A full queue
            applies backpressure to the adapter's listen loop.
    """

    def __init__(
        self,
        client: MqttPort,
        event_log: EventLog,
        *,
        subscriptions: Sequence[str] = ("home/#",),
        qos: int = 1,
        inbox_size: int = 256,
    ) -> None:
        self._client = client
        self._event_log = event_log
        self._subscriptions = list(subscriptions)
        self._qos = qos
        self._state = ConnectionState.DISCONNECTED
        self._state_listeners: list[StateListener] = []
        self._message_handlers: list[MessageHandler] = []
        self._inbox: asyncio.Queue[_InboxEvent] = asyncio.Queue(maxsize=inbox_size)
        self._drain_task: asyncio.Task[None] | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._pending_subscribes: set[asyncio.Task[None]] = set()
        self._options: ConnectOptions | None = None

        client.set_callbacks(
            on_message=self._on_message,
            on_connection_lost=self._on_connection_lost,
            on_connect_complete=self._on_connect_complete,
        )

    # -- Observable state ----------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def options(self) -> ConnectOptions | None:
        """Options of the most recent connection attempt."""
        return self._options

    @property
    def subscriptions(self) -> list[str]:
        return list(self._subscriptions)

    @subscriptions.setter
    def subscriptions(self, topics: Sequence[str]) -> None:
        """Replace the topic list; applied on the next (re)connect."""
        self._subscriptions = list(topics)

    def update_subscriptions(self, topics: Sequence[str]) -> asyncio.Task[None] | None:
        """Replace the topic list and subscribe to added topics right away.

        Returns the subscribe task when connected and something was
        added, otherwise ``None``.  Topics dropped from the list stay
        subscribed until the next reconnect.
        """
        added = [topic for topic in topics if topic not in self._subscriptions]
        self._subscriptions = list(topics)
        if not added or self._state is not ConnectionState.CONNECTED:
            return None
        task = asyncio.create_task(self._subscribe_topics(added))
        self._pending_subscribes.add(task)
        task.add_done_callback(self._pending_subscribes.discard)
        return task

    def add_state_listener(self, listener: StateListener) -> None:
        """Call *listener* with the new state after every transition."""
        self._state_listeners.append(listener)

    def add_message_handler(self, handler: MessageHandler) -> None:
        """Call *handler(topic, payload)* for each inbound message.

        Handlers run on the drain task, one message at a time.
        """
        self._message_handlers.append(handler)

    async def wait_for(
        self,
        state: ConnectionState,
        timeout: float | None = None,
    ) -> None:
        """Block until the manager reaches *state*.

        Raises:
            TimeoutError: If *timeout* elapses first.
        """
        if self._state is state:
            return
        reached = asyncio.Event()

        def _check(new_state: ConnectionState) -> None:
            if new_state is state:
                reached.set()

        self._state_listeners.append(_check)
        try:
            async with asyncio.timeout(timeout):
                await reached.wait()
        finally:
            self._state_listeners.remove(_check)

    # -- Lifecycle -----------------------------------------------------------

    def connect(self, config: BrokerSettings) -> asyncio.Task[None] | None:
        """Start a connection attempt in the background.

        Returns the attempt task (await it to wait for the outcome), or
        ``None`` when a connection is already active or in progress.

        Raises:
            EmptyConfigError: If the broker URI is blank.
        """
        try:
            options = build_connect_options(config)
        except (EmptyConfigError, ConnectError) as exc:
            self._report(exc)
            raise

        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.warning("connect() ignored: already %s", self._state)
            self._event_log.add(Direction.SYSTEM, f"Already {self._state}")
            return None

        self._options = options
        self._ensure_drain_task()
        self._transition(ConnectionState.CONNECTING)
        self._connect_task = asyncio.create_task(self._attempt(options))
        return self._connect_task

    async def disconnect(self) -> None:
        """Close the connection.

        No-op when already disconnected.  Errors from the adapter are
        logged; the state still ends up DISCONNECTED.  Safe to call
        repeatedly.
        """
        in_flight = self._connect_task
        if self._state is ConnectionState.DISCONNECTED and (
            in_flight is None or in_flight.done()
        ):
            return

        self._event_log.add(Direction.SYSTEM, "Disconnecting...")
        if in_flight is not None and not in_flight.done():
            in_flight.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await in_flight
        self._connect_task = None

        try:
            await self._client.disconnect()
        except Exception as exc:
            logger.warning("Disconnect failed: %s", exc)
            self._event_log.add(Direction.SYSTEM, f"Disconnect exception: {exc}")
        else:
            self._event_log.add(Direction.SYSTEM, "Disconnected")
        self._transition(ConnectionState.DISCONNECTED)

    async def close(self) -> None:
        """Disconnect and stop the drain task."""
        for task in list(self._pending_subscribes):
            task.cancel()
        await self.disconnect()
        if self._drain_task is not None:
            self._drain_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._drain_task
            self._drain_task = None

    async def join(self) -> None:
        """Wait until every queued inbound event and pending subscribe is handled."""
        await self._inbox.join()
        if self._pending_subscribes:
            await asyncio.gather(*self._pending_subscribes, return_exceptions=True)

    # -- Publish -------------------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: str,
        qos: int = 1,
        retained: bool = False,
    ) -> None:
        """Publish through the adapter.

        Raises:
            NotConnectedError: If the state is not CONNECTED.
            PublishError: If the adapter failed to publish.
        """
        if self._state is not ConnectionState.CONNECTED:
            error = NotConnectedError("Cannot publish, not connected")
            self._report(error)
            raise error
        try:
            await self._client.publish(topic, payload, qos=qos, retain=retained)
        except Exception as exc:
            error = PublishError(f"Publish failed: {exc}")
            self._report(error)
            raise error from exc
        self._event_log.add(Direction.OUT, f"-> {topic} : {payload}")

    # -- Internal: connect / subscribe --------------------------------------

    async def _attempt(self, options: ConnectOptions) -> None:
        self._event_log.add(
            Direction.SYSTEM,
            f"Connecting to {options.uri} as {options.client_id} ...",
        )
        try:
            await self._client.connect(options)
        except asyncio.CancelledError:
            self._transition(ConnectionState.DISCONNECTED)
            raise
        except Exception as exc:
            error = ConnectError(f"Connect exception: {exc}")
            self._report(error)
            self._transition(ConnectionState.DISCONNECTED)
            return
        self._transition(ConnectionState.CONNECTED)
        await self._subscribe_all()

    async def _subscribe_all(self) -> None:
        await self._subscribe_topics(self._subscriptions)

    async def _subscribe_topics(self, topics: Sequence[str]) -> None:
        for topic in list(topics):
            try:
                await self._client.subscribe(topic, self._qos)
            except Exception as exc:
                self._report(SubscribeError(f"Subscribe failed: {exc}"))
                continue
            self._event_log.add(Direction.SYSTEM, f"Subscribed to {topic}")

    # -- Internal: adapter callbacks (I/O side) ------------------------------

    async def _on_message(self, topic: str, payload: str) -> None:
        await self._inbox.put(_InboundMessage(topic, payload))

    async def _on_connection_lost(self, cause: str) -> None:
        await self._inbox.put(_ConnectionLost(cause))

    async def _on_connect_complete(self, reconnect: bool) -> None:
        await self._inbox.put(_ConnectComplete(reconnect))

    # -- Internal: control side ----------------------------------------------

    def _ensure_drain_task(self) -> None:
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        while True:
            event = await self._inbox.get()
            try:
                await self._handle(event)
            except Exception:
                logger.exception("Failed to handle inbound event %r", event)
            finally:
                self._inbox.task_done()

    async def _handle(self, event: _InboxEvent) -> None:
        match event:
            case _InboundMessage(topic=topic, payload=payload):
                self._event_log.add(Direction.IN, f"<- {topic} : {payload}")
                for handler in self._message_handlers:
                    try:
                        handler(topic, payload)
                    except Exception:
                        logger.exception(
                            "Message handler failed for %s",
                            topic,
                            extra={"topic": topic},
                        )
            case _ConnectionLost(cause=cause):
                self._handle_lost(cause)
            case _ConnectComplete():
                if self._state is ConnectionState.DISCONNECTED:
                    return
                self._transition(ConnectionState.CONNECTED)
                self._event_log.add(Direction.SYSTEM, "Reconnected")
                await self._subscribe_all()

    def _handle_lost(self, cause: str) -> None:
        if self._state is not ConnectionState.CONNECTED:
            return
        logger.warning("Connection lost: %s", cause)
        self._event_log.add(Direction.SYSTEM, f"Connection lost: {cause}")
        self._transition(ConnectionState.LOST)
        if self._options is not None and self._options.auto_reconnect:
            self._event_log.add(Direction.SYSTEM, "Reconnecting...")
            self._transition(ConnectionState.CONNECTING)
        else:
            self._transition(ConnectionState.DISCONNECTED)

    def _transition(self, new_state: ConnectionState) -> None:
        if new_state is self._state:
            return
        logger.info("Connection state: %s -> %s", self._state, new_state)
        self._state = new_state
        for listener in list(self._state_listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("Connection state listener failed")

    def _report(self, error: Exception) -> None:
        logger.warning("%s", error)
        self._event_log.add(Direction.SYSTEM, str(error))
