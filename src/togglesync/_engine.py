"""Composition root.

:class:`Engine` builds and wires every component from
:class:`~togglesync._settings.Settings`::

    EventLog ◀── ConnectionManager ◀── MqttPort (aiomqtt or mock)
       ▲              │   ▲
       │    messages  ▼   │ publish
       └──────── StateReconciler ◀── CommandDispatcher ◀── UI / CLI

There are no module-level singletons: each engine owns exactly one
connection manager, and the reconciler and dispatcher receive it
explicitly.  A UI holds on to the engine and uses its attributes.

Usage::

    async with Engine(settings) as engine:
        engine.connect()
        await engine.connection.wait_for(ConnectionState.CONNECTED, timeout=10)
        result = await engine.set_device("light", True)
"""

from __future__ import annotations

import asyncio
import logging
import signal
from types import TracebackType
from typing import Self

from togglesync._clock import ClockPort, SystemClock
from togglesync._connection import ConnectionManager
from togglesync._dispatcher import CommandDispatcher, DispatchResult
from togglesync._events import Direction, EventLog
from togglesync._mqtt import MqttClient, MqttPort
from togglesync._settings import BrokerSettings, Settings
from togglesync._state import DeviceChannel, StateReconciler
from togglesync._topics import topic_matches

logger = logging.getLogger(__name__)


class Engine:
    """Device-state synchronization engine.

    Args:
        settings: Configuration; loaded from the environment when
            ``None``.
        mqtt: Override the MQTT adapter (e.g. ``MockMqttClient`` for
            tests).  A real :class:`MqttClient` is used otherwise.
        clock: Override the timestamp source.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        mqtt: MqttPort | None = None,
        clock: ClockPort | None = None,
    ) -> None:
        self.settings = settings if settings is not None else Settings()
        self.clock = clock if clock is not None else SystemClock()
        self.mqtt = mqtt if mqtt is not None else MqttClient()

        broker = self.settings.broker
        self.event_log = EventLog(
            capacity=self.settings.event_log.capacity,
            clock=self.clock,
        )
        channels = [
            DeviceChannel(name=device.name, topic_base=device.topic_base)
            for device in self.settings.devices
        ]
        self.connection = ConnectionManager(
            self.mqtt,
            self.event_log,
            qos=broker.qos,
            inbox_size=broker.inbox_size,
        )
        self.reconciler = StateReconciler(
            self.connection,
            self.event_log,
            channels,
            qos=self.settings.reconciler.qos,
            publish_policy=self.settings.reconciler.publish_policy,
            clock=self.clock,
        )
        self.connection.subscriptions = self._subscriptions()
        self.connection.add_message_handler(self.reconciler.apply_remote_status)
        self.dispatcher = CommandDispatcher(self.reconciler, self.event_log)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # -- Convenience facade --------------------------------------------------

    @property
    def channels(self) -> list[DeviceChannel]:
        return list(self.reconciler)

    def connect(self, broker: BrokerSettings | None = None) -> asyncio.Task[None] | None:
        """Start connecting in the background; see :meth:`ConnectionManager.connect`."""
        return self.connection.connect(broker if broker is not None else self.settings.broker)

    async def disconnect(self) -> None:
        await self.connection.disconnect()

    async def set_device(self, name: str, on: bool) -> DispatchResult:
        """Dispatch an intent and wait for its outcome."""
        task = self.dispatcher.set_device(name, on)
        if task is None:
            return DispatchResult.REJECTED
        return await task

    def reconfigure(self, name: str, topic_base: str) -> DeviceChannel:
        """Replace a channel's topic base.

        When the new status topic needs its own subscription and the
        engine is connected, it is subscribed right away.
        """
        channel = self.reconciler.reconfigure(name, topic_base)
        self.connection.update_subscriptions(self._subscriptions())
        return channel

    async def close(self) -> None:
        """Finish pending dispatches, disconnect and stop background tasks."""
        await self.dispatcher.drain()
        await self.connection.close()

    # -- Long-running mode ---------------------------------------------------

    async def run(self, *, shutdown_event: asyncio.Event | None = None) -> None:
        """Connect and keep the engine running until shutdown.

        Without an explicit *shutdown_event*, SIGTERM and SIGINT end
        the run.
        """
        shutdown_event = self._install_signal_handlers(shutdown_event)
        self.connect()
        try:
            await shutdown_event.wait()
        finally:
            await self.close()
            logger.info("Shutdown complete")

    # -- Internal ------------------------------------------------------------

    def _subscriptions(self) -> list[str]:
        """Root filter plus every status topic it does not cover.

        Without a root filter each status topic is subscribed on its own.
        """
        root = self.settings.broker.subscription
        if not root:
            return self.reconciler.status_topics
        topics = [root]
        known = self.connection.subscriptions
        for channel in self.reconciler:
            status = channel.status_topic
            if topic_matches(root, status):
                continue
            topics.append(status)
            if status not in known:
                logger.warning(
                    "%s: %s is not covered by %s; subscribing to it separately",
                    channel.name,
                    status,
                    root,
                )
                self.event_log.add(
                    Direction.SYSTEM,
                    f"{channel.name}: {status} not covered by {root}, "
                    "subscribing separately",
                )
        return topics

    @staticmethod
    def _install_signal_handlers(
        shutdown_event: asyncio.Event | None,
    ) -> asyncio.Event:
        if shutdown_event is not None:
            return shutdown_event
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, event.set)
        return event
