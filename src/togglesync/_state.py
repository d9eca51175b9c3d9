"""Intended vs reported device state.

Every :class:`DeviceChannel` tracks two independent booleans:

- ``intended_state`` — the last state a user or automation asked for.
  Written only by :meth:`StateReconciler.apply_local_intent`, and every
  write publishes one ``ON``/``OFF`` command.
- ``reported_state`` — the last state the device confirmed on its
  status topic.  Written only by
  :meth:`StateReconciler.apply_remote_status`, which has no access to
  the publish path at all.

Because the two entry points touch disjoint fields, a status update
can never echo back out as a command: there is no shared toggle whose
change handler would need a "currently updating from status" flag.
What a UI shows is decided by :attr:`DeviceChannel.displayed_state`,
which follows whichever side wrote last.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Literal

from togglesync._clock import ClockPort, SystemClock
from togglesync._connection import ConnectionManager
from togglesync._errors import InvalidTopicError, NotConnectedError
from togglesync._events import Direction, EventLog
from togglesync._topics import derive_topics

logger = logging.getLogger(__name__)

PAYLOAD_ON = "ON"
PAYLOAD_OFF = "OFF"
_TRUTHY = frozenset({"ON", "1", "TRUE"})

PublishPolicy = Literal["always", "on_change"]


def parse_switch_payload(payload: str) -> bool:
    """Map a status payload to a boolean.

    ``ON``, ``1`` and ``TRUE`` (any case, surrounding whitespace
    ignored) are true; everything else is false.
    """
    return payload.strip().upper() in _TRUTHY


def format_switch_payload(on: bool) -> str:
    """Return the canonical command payload, ``"ON"`` or ``"OFF"``."""
    return PAYLOAD_ON if on else PAYLOAD_OFF


class StateSource(StrEnum):
    """Which field last changed, and therefore drives the display."""

    INTENDED = "intended"
    REPORTED = "reported"


@dataclass
class DeviceChannel:
    """One controllable on/off device and its topic pair.

    ``reported_state`` is ``None`` until the device reports, and again
    after the topic base is replaced.
    """

    name: str
    topic_base: str
    command_topic: str = field(init=False)
    status_topic: str = field(init=False)
    intended_state: bool = False
    reported_state: bool | None = None
    last_updated: datetime | None = None
    display_source: StateSource = StateSource.INTENDED

    def __post_init__(self) -> None:
        self._apply_base(self.topic_base)

    @property
    def displayed_state(self) -> bool:
        """State a toggle should show.

        After a local action this is the intended state; after an
        inbound status it is the reported one, until the next write
        from the other side.
        """
        if self.display_source is StateSource.REPORTED and self.reported_state is not None:
            return self.reported_state
        return self.intended_state

    def _apply_base(self, raw: str) -> None:
        topics = derive_topics(raw)
        self.topic_base = topics.base
        self.command_topic = topics.command
        self.status_topic = topics.status


ChannelListener = Callable[[DeviceChannel], None]


class StateReconciler:
    """Applies local intents and remote status updates to channels.

    Args:
        connection: Publishes commands; also gates intents on the
            connection being up.
        event_log: Receives a line for every state change.
        channels: Initial channel set.  Status topics must be unique.
        qos: QoS for command publishes.
        publish_policy: ``"always"`` publishes every intent,
            ``"on_change"`` skips intents equal to the current
            intended state.
        clock: Source of ``last_updated`` timestamps.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        event_log: EventLog,
        channels: Iterable[DeviceChannel] = (),
        *,
        qos: int = 1,
        publish_policy: PublishPolicy = "always",
        clock: ClockPort | None = None,
    ) -> None:
        self._connection = connection
        self._event_log = event_log
        self._qos = qos
        self._publish_policy = publish_policy
        self._clock = clock if clock is not None else SystemClock()
        self._channels: dict[str, DeviceChannel] = {}
        self._listeners: list[ChannelListener] = []
        for channel in channels:
            self.add_channel(channel)

    # -- Channel registry ----------------------------------------------------

    def add_channel(self, channel: DeviceChannel) -> None:
        """Register *channel*.

        Raises:
            ValueError: If the name is already taken.
            InvalidTopicError: If another channel uses the same status topic.
        """
        if channel.name in self._channels:
            msg = f"Channel '{channel.name}' already registered"
            raise ValueError(msg)
        self._check_unique_status(channel.status_topic, exclude=None)
        self._channels[channel.name] = channel

    def get(self, name: str) -> DeviceChannel:
        """Return the channel called *name*.

        Raises:
            KeyError: If there is no such channel.
        """
        return self._channels[name]

    def __iter__(self) -> Iterator[DeviceChannel]:
        return iter(self._channels.values())

    def __len__(self) -> int:
        return len(self._channels)

    @property
    def status_topics(self) -> list[str]:
        return [channel.status_topic for channel in self._channels.values()]

    def add_listener(self, listener: ChannelListener) -> None:
        """Call *listener* with the channel after every state change."""
        self._listeners.append(listener)

    def reconfigure(self, name: str, topic_base: str) -> DeviceChannel:
        """Point channel *name* at a new topic base.

        The reported state becomes unknown: whatever the old topic said
        says nothing about the new one.

        Raises:
            KeyError: If there is no such channel.
            InvalidTopicError: If the base is empty or its status topic
                belongs to another channel.
        """
        channel = self._channels[name]
        topics = derive_topics(topic_base)
        self._check_unique_status(topics.status, exclude=name)
        channel._apply_base(topics.base)
        channel.reported_state = None
        channel.display_source = StateSource.INTENDED
        self._event_log.add(
            Direction.SYSTEM,
            f"{name}: topic base set to {channel.topic_base}",
        )
        self._notify(channel)
        return channel

    # -- Local side ----------------------------------------------------------

    async def apply_local_intent(
        self,
        channel: DeviceChannel | str,
        desired: bool,
    ) -> bool:
        """Record a user intent and publish it.

        Returns ``True`` if a command was published, ``False`` if the
        ``on_change`` policy dropped a repeated intent.

        Raises:
            KeyError: If *channel* names an unknown channel.
            NotConnectedError: If the connection is not up; nothing is
                changed or published.
            PublishError: If the publish itself failed.  The intended
                state has already been updated.
        """
        target = self._resolve(channel)
        if not self._connection.is_connected:
            error = NotConnectedError(
                f"Cannot set {target.name}: not connected",
            )
            logger.warning("%s", error, extra={"device": target.name})
            self._event_log.add(Direction.SYSTEM, str(error))
            raise error

        if self._publish_policy == "on_change" and target.intended_state == desired:
            logger.debug(
                "%s already intended %s; not publishing",
                target.name,
                desired,
                extra={"device": target.name},
            )
            return False

        target.intended_state = desired
        target.last_updated = self._clock.now()
        target.display_source = StateSource.INTENDED
        self._notify(target)

        await self._connection.publish(
            target.command_topic,
            format_switch_payload(desired),
            qos=self._qos,
            retained=False,
        )
        return True

    # -- Remote side ---------------------------------------------------------

    def apply_remote_status(self, topic: str, payload: str) -> list[DeviceChannel]:
        """Apply an inbound status message to matching channels.

        Matching is an exact, case-sensitive comparison with each
        channel's status topic.  Returns the updated channels; empty
        when nothing matched.
        """
        matched = [ch for ch in self._channels.values() if ch.status_topic == topic]
        if not matched:
            return matched

        reported = parse_switch_payload(payload)
        now = self._clock.now()
        for channel in matched:
            channel.reported_state = reported
            channel.last_updated = now
            channel.display_source = StateSource.REPORTED
            self._event_log.add(
                Direction.SYSTEM,
                f"{channel.name} reported {format_switch_payload(reported)}",
            )
            self._notify(channel)
        return matched

    # -- Internal ------------------------------------------------------------

    def _resolve(self, channel: DeviceChannel | str) -> DeviceChannel:
        if isinstance(channel, DeviceChannel):
            return channel
        return self._channels[channel]

    def _check_unique_status(self, status_topic: str, *, exclude: str | None) -> None:
        for other in self._channels.values():
            if other.name != exclude and other.status_topic == status_topic:
                msg = f"Status topic {status_topic} is already used by '{other.name}'"
                raise InvalidTopicError(msg)

    def _notify(self, channel: DeviceChannel) -> None:
        for listener in self._listeners:
            try:
                listener(channel)
            except Exception:
                logger.exception(
                    "Channel listener failed for %s",
                    channel.name,
                    extra={"device": channel.name},
                )
