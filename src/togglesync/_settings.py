"""Application configuration via pydantic-settings.

Configuration is loaded from environment variables and/or ``.env``
files.  All variables carry the ``TOGGLESYNC_`` prefix and nested
models use ``__`` as the delimiter, e.g.
``TOGGLESYNC_BROKER__URI=tcp://broker.local:1883``.

Sections:

* **Broker** — connection options handed to the MQTT port.
* **Devices** — the set of toggled channels (light and fan by default).
* **Reconciler** — QoS and publish policy for local intents.
* **Event log** — retention of the diagnostic log.
* **Logging** — level, format, optional file sink, rotation.

All durations are in **seconds**.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

# -------------------------------------------------------------------
# Sub-models (BaseModel, not BaseSettings; nested via composition)
# -------------------------------------------------------------------


class BrokerSettings(BaseModel):
    """MQTT broker connection configuration.

    Frozen: once a connection attempt starts the options it was built
    from cannot change underneath it.  Use ``model_copy(update=...)``
    to derive a modified configuration.

    Environment variables (with ``__`` nesting)::

        TOGGLESYNC_BROKER__URI=ssl://broker.local:8883
        TOGGLESYNC_BROKER__CLIENT_ID=kitchen-panel
        TOGGLESYNC_BROKER__USERNAME=user
        TOGGLESYNC_BROKER__PASSWORD=secret
    """

    model_config = ConfigDict(frozen=True)

    uri: str = Field(
        default="tcp://localhost:1883",
        description=(
            "Broker URI. Accepts tcp://, ssl://, mqtt:// (rewritten to "
            "tcp://) or a bare host:port."
        ),
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, one is generated as "
            "'togglesync-{hex12}' for each connection attempt."
        ),
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    clean_session: bool = Field(
        default=True,
        description="Start every connection with a clean session.",
    )
    keep_alive: Annotated[int, Field(ge=0)] = Field(
        default=60,
        description="Keep-alive interval in seconds.",
    )
    connect_timeout: Annotated[int, Field(gt=0)] = Field(
        default=10,
        description="Seconds to wait for the broker to accept a connection.",
    )
    auto_reconnect: bool = Field(
        default=True,
        description=(
            "Reconnect automatically after an established connection "
            "is lost."
        ),
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=1.0,
        description=(
            "Initial seconds to wait before reconnecting.  Doubles on "
            "each consecutive failure up to ``reconnect_max_interval``."
        ),
    )
    reconnect_max_interval: Annotated[float, Field(gt=0)] = Field(
        default=120.0,
        description="Upper bound (seconds) for the reconnect backoff.",
    )
    subscription: str | None = Field(
        default="home/#",
        description=(
            "Catch-all subscription issued after connecting. When None, "
            "each device's status topic is subscribed individually."
        ),
    )
    qos: Literal[0, 1, 2] = Field(
        default=1,
        description="QoS used for subscriptions.",
    )
    inbox_size: Annotated[int, Field(ge=1)] = Field(
        default=256,
        description="Capacity of the inbound message queue.",
    )


class DeviceSettings(BaseModel):
    """One controllable on/off device."""

    name: str = Field(description="Device name used by the CLI and UI.")
    topic_base: str = Field(
        description="Base topic; commands go to {base}/set, status to {base}/status.",
    )


def _default_devices() -> list[DeviceSettings]:
    return [
        DeviceSettings(name="light", topic_base="home/livingroom/light"),
        DeviceSettings(name="fan", topic_base="home/livingroom/fan"),
    ]


class ReconcilerSettings(BaseModel):
    """Publish behaviour for local intents.

    ``publish_policy`` selects when a local intent is sent:

    - ``"always"`` (default) — every intent publishes, even when it
      repeats the current intended state.
    - ``"on_change"`` — intents equal to the current intended state
      are dropped without publishing.
    """

    qos: Literal[0, 1, 2] = Field(
        default=1,
        description="QoS for outbound command publishes.",
    )
    publish_policy: Literal["always", "on_change"] = Field(
        default="always",
        description="When a local intent results in a publish.",
    )


class EventLogSettings(BaseModel):
    """Retention of the in-memory event log."""

    capacity: int | None = Field(
        default=1000,
        ge=1,
        description=(
            "Maximum number of entries kept (oldest dropped first). "
            "None keeps everything."
        ),
    )


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (``max_file_size_mb`` per file, ``backup_count`` generations kept).
    When ``None``, logs go to stderr only.

    ``format`` is either ``"json"`` (one JSON object per line) or
    ``"text"`` (human-readable, the default for an interactive tool).
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="text",
        description="Log output format: 'json' lines or 'text'.",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for togglesync.

    Example ``.env``::

        TOGGLESYNC_BROKER__URI=mqtt://broker.local:1883
        TOGGLESYNC_BROKER__SUBSCRIPTION=home/#
        TOGGLESYNC_DEVICES='[{"name": "light", "topic_base": "home/livingroom/light"}]'
        TOGGLESYNC_EVENT_LOG__CAPACITY=500
        TOGGLESYNC_LOGGING__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="TOGGLESYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    broker: BrokerSettings = Field(
        default_factory=BrokerSettings,
        description="MQTT broker connection settings.",
    )
    devices: list[DeviceSettings] = Field(
        default_factory=_default_devices,
        description="Devices managed by the engine.",
    )
    reconciler: ReconcilerSettings = Field(
        default_factory=ReconcilerSettings,
        description="Publish behaviour for local intents.",
    )
    event_log: EventLogSettings = Field(
        default_factory=EventLogSettings,
        description="Event log retention.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
