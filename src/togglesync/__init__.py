"""togglesync.

Device-state synchronization engine for MQTT-controlled on/off devices:
broker connectivity, intended vs reported state, and an observable
event log for any UI or automation layer.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("togglesync")
except PackageNotFoundError:
    # Source checkout without installed metadata
    __version__ = "0.0.0+unknown"

from togglesync._clock import ClockPort, SystemClock
from togglesync._connection import (
    ConnectionManager,
    ConnectionState,
    build_connect_options,
    normalize_broker_uri,
)
from togglesync._dispatcher import CommandDispatcher, DispatchResult
from togglesync._engine import Engine
from togglesync._errors import (
    ConnectError,
    EmptyConfigError,
    InvalidTopicError,
    NotConnectedError,
    PublishError,
    SubscribeError,
    TogglesyncError,
    error_type_of,
)
from togglesync._events import Direction, EventLog, LogEntry
from togglesync._logging import JsonFormatter, configure_logging
from togglesync._mqtt import (
    ConnectOptions,
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttPort,
)
from togglesync._settings import (
    BrokerSettings,
    DeviceSettings,
    EventLogSettings,
    LoggingSettings,
    ReconcilerSettings,
    Settings,
)
from togglesync._state import (
    DeviceChannel,
    StateReconciler,
    StateSource,
    format_switch_payload,
    parse_switch_payload,
)
from togglesync._topics import (
    DeviceTopics,
    derive_topics,
    normalize_topic_base,
    topic_matches,
)

__all__ = [
    # Version
    "__version__",
    # Engine
    "Engine",
    # Clock
    "ClockPort",
    "SystemClock",
    # Connection
    "ConnectionManager",
    "ConnectionState",
    "build_connect_options",
    "normalize_broker_uri",
    # Dispatch
    "CommandDispatcher",
    "DispatchResult",
    # Errors
    "ConnectError",
    "EmptyConfigError",
    "InvalidTopicError",
    "NotConnectedError",
    "PublishError",
    "SubscribeError",
    "TogglesyncError",
    "error_type_of",
    # Event log
    "Direction",
    "EventLog",
    "LogEntry",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # MQTT
    "ConnectOptions",
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttPort",
    # Settings
    "BrokerSettings",
    "DeviceSettings",
    "EventLogSettings",
    "LoggingSettings",
    "ReconcilerSettings",
    "Settings",
    # State
    "DeviceChannel",
    "StateReconciler",
    "StateSource",
    "format_switch_payload",
    "parse_switch_payload",
    # Topics
    "DeviceTopics",
    "derive_topics",
    "normalize_topic_base",
    "topic_matches",
]
