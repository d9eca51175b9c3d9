"""Error taxonomy for the synchronization engine.

Every failure the engine can report is one of the classes below.  None
of them is fatal: callers log the error, record it in the event log and,
where relevant, move the connection state machine.

Each class carries a machine-readable ``error_type`` so that log
consumers can filter without parsing messages::

    TogglesyncError          error
    ├── EmptyConfigError     empty_config
    ├── ConnectError         connect_failure
    ├── NotConnectedError    not_connected
    ├── SubscribeError       subscribe_failure
    ├── PublishError         publish_failure
    └── InvalidTopicError    invalid_topic
"""

from __future__ import annotations


class TogglesyncError(Exception):
    """Base class for all engine errors."""

    error_type: str = "error"


class EmptyConfigError(TogglesyncError):
    """A required setting (broker URI, topic base) is blank."""

    error_type = "empty_config"


class ConnectError(TogglesyncError):
    """The broker connection could not be established."""

    error_type = "connect_failure"


class NotConnectedError(TogglesyncError):
    """Publish or subscribe attempted while not connected."""

    error_type = "not_connected"


class SubscribeError(TogglesyncError):
    """The broker or client library rejected a subscription."""

    error_type = "subscribe_failure"


class PublishError(TogglesyncError):
    """The client library failed to publish a message."""

    error_type = "publish_failure"


class InvalidTopicError(TogglesyncError):
    """A topic base is empty or otherwise unusable."""

    error_type = "invalid_topic"


def error_type_of(error: BaseException) -> str:
    """Return the machine-readable type of *error*.

    Engine errors report their own ``error_type``; anything else maps
    to the generic ``"error"``.
    """
    if isinstance(error, TogglesyncError):
        return error.error_type
    return "error"
