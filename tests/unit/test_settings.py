"""Unit tests for togglesync._settings — configuration models.

Test Techniques Used:
    - Specification-based Testing: Default values and field constraints
    - Boundary Value Analysis: ports, timeouts, capacities
    - Environment Override: monkeypatch for env var injection
    - Validation Error: pydantic constraint violations
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from togglesync._settings import (
    BrokerSettings,
    DeviceSettings,
    EventLogSettings,
    LoggingSettings,
    ReconcilerSettings,
    Settings,
)
from togglesync.testing import make_settings


class TestBrokerSettingsDefaults:
    """Technique: Specification-based Testing."""

    def test_defaults(self) -> None:
        s = BrokerSettings()
        assert s.uri == "tcp://localhost:1883"
        assert s.client_id == ""
        assert s.clean_session is True
        assert s.keep_alive == 60
        assert s.connect_timeout == 10
        assert s.auto_reconnect is True
        assert s.subscription == "home/#"
        assert s.qos == 1
        assert s.username is None
        assert s.password is None

    def test_frozen(self) -> None:
        s = BrokerSettings()
        with pytest.raises(ValidationError):
            s.uri = "tcp://other:1883"  # type: ignore[misc]

    def test_model_copy_derives_new_config(self) -> None:
        s = BrokerSettings().model_copy(update={"client_id": "t1"})
        assert s.client_id == "t1"


class TestBrokerSettingsValidation:
    """Technique: Boundary Value Analysis."""

    def test_connect_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            BrokerSettings(connect_timeout=0)

    def test_keep_alive_zero_allowed(self) -> None:
        assert BrokerSettings(keep_alive=0).keep_alive == 0

    def test_qos_out_of_range(self) -> None:
        with pytest.raises(ValidationError):
            BrokerSettings(qos=3)  # type: ignore[arg-type]

    def test_inbox_size_minimum(self) -> None:
        with pytest.raises(ValidationError):
            BrokerSettings(inbox_size=0)


class TestOtherSections:
    """Technique: Specification-based Testing."""

    def test_default_devices_are_light_and_fan(self) -> None:
        s = make_settings()
        assert [(d.name, d.topic_base) for d in s.devices] == [
            ("light", "home/livingroom/light"),
            ("fan", "home/livingroom/fan"),
        ]

    def test_reconciler_defaults(self) -> None:
        r = ReconcilerSettings()
        assert r.qos == 1
        assert r.publish_policy == "always"

    def test_invalid_publish_policy(self) -> None:
        with pytest.raises(ValidationError):
            ReconcilerSettings(publish_policy="sometimes")  # type: ignore[arg-type]

    def test_event_log_capacity(self) -> None:
        assert EventLogSettings().capacity == 1000
        assert EventLogSettings(capacity=None).capacity is None
        with pytest.raises(ValidationError):
            EventLogSettings(capacity=0)

    def test_logging_defaults(self) -> None:
        s = LoggingSettings()
        assert s.level == "INFO"
        assert s.format == "text"
        assert s.file is None


class TestEnvironment:
    """Technique: Environment Override."""

    def test_env_prefix_and_nesting(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TOGGLESYNC_BROKER__URI", "mqtt://broker.local:1883")
        monkeypatch.setenv("TOGGLESYNC_BROKER__AUTO_RECONNECT", "false")
        monkeypatch.setenv("TOGGLESYNC_EVENT_LOG__CAPACITY", "50")
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.broker.uri == "mqtt://broker.local:1883"
        assert s.broker.auto_reconnect is False
        assert s.event_log.capacity == 50

    def test_devices_from_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(
            "TOGGLESYNC_DEVICES",
            '[{"name": "pump", "topic_base": "farm/pump"}]',
        )
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.devices == [DeviceSettings(name="pump", topic_base="farm/pump")]

    def test_make_settings_ignores_environment(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TOGGLESYNC_BROKER__URI", "ssl://ignored:8883")
        assert make_settings().broker.uri == "tcp://localhost:1883"

    def test_env_file(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("TOGGLESYNC_BROKER__CLIENT_ID", raising=False)
        env_file = tmp_path / "custom.env"
        env_file.write_text("TOGGLESYNC_BROKER__CLIENT_ID=from-file\n")
        s = Settings(_env_file=env_file)  # type: ignore[call-arg]
        assert s.broker.client_id == "from-file"
