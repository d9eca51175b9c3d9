"""Unit tests for togglesync._state — intended vs reported device state.

Test Techniques Used:
    - Decision Table: status payload normalization
    - Property-based Reasoning: remote updates never publish
    - State Transition Testing: display source follows the last writer
    - Error Guessing: intents while disconnected, duplicate topics
"""

from __future__ import annotations

import pytest

from togglesync._connection import ConnectionManager
from togglesync._errors import InvalidTopicError, NotConnectedError
from togglesync._events import EventLog
from togglesync._mqtt import MockMqttClient
from togglesync._settings import BrokerSettings
from togglesync._state import (
    DeviceChannel,
    StateReconciler,
    StateSource,
    format_switch_payload,
    parse_switch_payload,
)
from togglesync.testing import FakeClock


@pytest.fixture
def connection(mock_mqtt: MockMqttClient, event_log: EventLog) -> ConnectionManager:
    return ConnectionManager(mock_mqtt, event_log)


@pytest.fixture
def reconciler(
    connection: ConnectionManager,
    event_log: EventLog,
    fake_clock: FakeClock,
) -> StateReconciler:
    return StateReconciler(
        connection,
        event_log,
        [DeviceChannel("a", "home/a"), DeviceChannel("b", "home/b")],
        clock=fake_clock,
    )


async def _connect(connection: ConnectionManager) -> None:
    task = connection.connect(BrokerSettings(client_id="t1"))
    assert task is not None
    await task


class TestPayloads:
    """Technique: Decision Table."""

    @pytest.mark.parametrize(
        ("payload", "expected"),
        [
            ("ON", True),
            ("on", True),
            (" On ", True),
            ("1", True),
            ("true", True),
            ("TRUE", True),
            ("OFF", False),
            ("0", False),
            ("false", False),
            ("", False),
            ("garbage", False),
        ],
    )
    def test_parse(self, payload: str, expected: bool) -> None:
        assert parse_switch_payload(payload) is expected

    def test_format(self) -> None:
        assert format_switch_payload(True) == "ON"
        assert format_switch_payload(False) == "OFF"


class TestDeviceChannel:
    """Technique: Specification-based Testing."""

    def test_topics_derived(self) -> None:
        ch = DeviceChannel("light", " /home/livingroom/light/ ")
        assert ch.topic_base == "home/livingroom/light"
        assert ch.command_topic == "home/livingroom/light/set"
        assert ch.status_topic == "home/livingroom/light/status"

    def test_initial_state(self) -> None:
        ch = DeviceChannel("light", "home/light")
        assert ch.intended_state is False
        assert ch.reported_state is None
        assert ch.last_updated is None
        assert ch.displayed_state is False

    def test_empty_base_rejected(self) -> None:
        with pytest.raises(InvalidTopicError):
            DeviceChannel("light", " / ")

    def test_display_ignores_unknown_report(self) -> None:
        ch = DeviceChannel("light", "home/light", intended_state=True)
        ch.display_source = StateSource.REPORTED
        assert ch.displayed_state is True


class TestRegistry:
    """Technique: Error Guessing."""

    def test_lookup_and_iteration(self, reconciler: StateReconciler) -> None:
        assert len(reconciler) == 2
        assert [ch.name for ch in reconciler] == ["a", "b"]
        assert reconciler.get("a").topic_base == "home/a"
        assert reconciler.status_topics == ["home/a/status", "home/b/status"]

    def test_duplicate_name(self, reconciler: StateReconciler) -> None:
        with pytest.raises(ValueError, match="already registered"):
            reconciler.add_channel(DeviceChannel("a", "home/c"))

    def test_duplicate_status_topic(self, reconciler: StateReconciler) -> None:
        with pytest.raises(InvalidTopicError, match="already used"):
            reconciler.add_channel(DeviceChannel("c", "/home/a/"))

    def test_prefix_overlap_allowed(self, reconciler: StateReconciler) -> None:
        reconciler.add_channel(DeviceChannel("a2", "home/a/sub"))
        assert len(reconciler) == 3


class TestLocalIntent:
    """Technique: State Transition Testing."""

    async def test_intent_publishes_once(
        self,
        reconciler: StateReconciler,
        connection: ConnectionManager,
        mock_mqtt: MockMqttClient,
        fake_clock: FakeClock,
    ) -> None:
        await _connect(connection)
        assert await reconciler.apply_local_intent("a", True) is True

        assert mock_mqtt.published == [("home/a/set", "ON", 1, False)]
        ch = reconciler.get("a")
        assert ch.intended_state is True
        assert ch.last_updated == fake_clock.now()
        assert ch.display_source is StateSource.INTENDED

    async def test_disconnected_intent_rejected(
        self,
        reconciler: StateReconciler,
        mock_mqtt: MockMqttClient,
        event_log: EventLog,
    ) -> None:
        with pytest.raises(NotConnectedError):
            await reconciler.apply_local_intent("a", True)
        assert mock_mqtt.publish_count == 0
        assert reconciler.get("a").intended_state is False
        assert "Cannot set a: not connected" in [e.text for e in event_log.snapshot()]

    async def test_always_policy_repeats(
        self,
        reconciler: StateReconciler,
        connection: ConnectionManager,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await _connect(connection)
        await reconciler.apply_local_intent("a", True)
        await reconciler.apply_local_intent("a", True)
        assert mock_mqtt.get_messages_for("home/a/set") == [
            ("ON", 1, False),
            ("ON", 1, False),
        ]

    async def test_on_change_policy_skips_repeat(
        self,
        connection: ConnectionManager,
        event_log: EventLog,
        mock_mqtt: MockMqttClient,
    ) -> None:
        reconciler = StateReconciler(
            connection,
            event_log,
            [DeviceChannel("a", "home/a")],
            publish_policy="on_change",
            qos=2,
        )
        await _connect(connection)
        assert await reconciler.apply_local_intent("a", True) is True
        assert await reconciler.apply_local_intent("a", True) is False
        assert await reconciler.apply_local_intent("a", False) is True
        assert mock_mqtt.get_messages_for("home/a/set") == [
            ("ON", 2, False),
            ("OFF", 2, False),
        ]

    async def test_unknown_channel(
        self,
        reconciler: StateReconciler,
        connection: ConnectionManager,
    ) -> None:
        await _connect(connection)
        with pytest.raises(KeyError):
            await reconciler.apply_local_intent("nope", True)


class TestRemoteStatus:
    """Technique: Property-based Reasoning."""

    async def test_remote_updates_never_publish(
        self,
        reconciler: StateReconciler,
        connection: ConnectionManager,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await _connect(connection)
        for i in range(100):
            reconciler.apply_remote_status("home/a/status", "ON" if i % 2 else "OFF")
        assert mock_mqtt.publish_count == 0
        assert reconciler.get("a").reported_state is True

    def test_updates_only_matching_channel(
        self,
        reconciler: StateReconciler,
    ) -> None:
        matched = reconciler.apply_remote_status("home/a/status", "ON")
        assert [ch.name for ch in matched] == ["a"]
        assert reconciler.get("a").reported_state is True
        assert reconciler.get("b").reported_state is None

    @pytest.mark.parametrize(
        "topic",
        ["home/a/set", "home/a", "Home/a/status", "home/a/status/x", "home/ab/status"],
    )
    def test_non_matching_topics_ignored(
        self,
        reconciler: StateReconciler,
        topic: str,
    ) -> None:
        assert reconciler.apply_remote_status(topic, "ON") == []
        assert all(ch.reported_state is None for ch in reconciler)

    def test_remote_status_drives_display(
        self,
        reconciler: StateReconciler,
        fake_clock: FakeClock,
        event_log: EventLog,
    ) -> None:
        fake_clock.advance(5)
        reconciler.apply_remote_status("home/a/status", "1")
        ch = reconciler.get("a")
        assert ch.intended_state is False
        assert ch.displayed_state is True
        assert ch.display_source is StateSource.REPORTED
        assert ch.last_updated == fake_clock.now()
        assert "a reported ON" in [e.text for e in event_log.snapshot()]

    async def test_local_intent_takes_display_back(
        self,
        reconciler: StateReconciler,
        connection: ConnectionManager,
    ) -> None:
        await _connect(connection)
        reconciler.apply_remote_status("home/a/status", "ON")
        await reconciler.apply_local_intent("a", False)
        ch = reconciler.get("a")
        assert ch.reported_state is True
        assert ch.displayed_state is False

    def test_listeners_notified(self, reconciler: StateReconciler) -> None:
        seen: list[str] = []
        reconciler.add_listener(lambda ch: seen.append(ch.name))
        reconciler.apply_remote_status("home/b/status", "OFF")
        assert seen == ["b"]


class TestReconfigure:
    """Technique: State Transition Testing."""

    def test_reconfigure_resets_reported(
        self,
        reconciler: StateReconciler,
        event_log: EventLog,
    ) -> None:
        reconciler.apply_remote_status("home/a/status", "ON")
        ch = reconciler.reconfigure("a", "/garage/a/")

        assert ch.status_topic == "garage/a/status"
        assert ch.reported_state is None
        assert ch.display_source is StateSource.INTENDED
        assert "a: topic base set to garage/a" in [e.text for e in event_log.snapshot()]
        assert reconciler.apply_remote_status("home/a/status", "ON") == []
        assert reconciler.apply_remote_status("garage/a/status", "ON") == [ch]

    def test_reconfigure_to_taken_topic(self, reconciler: StateReconciler) -> None:
        with pytest.raises(InvalidTopicError):
            reconciler.reconfigure("a", "home/b")
        assert reconciler.get("a").topic_base == "home/a"

    def test_reconfigure_to_empty(self, reconciler: StateReconciler) -> None:
        with pytest.raises(InvalidTopicError):
            reconciler.reconfigure("a", "  ")
