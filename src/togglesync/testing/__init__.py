"""Public test-support utilities for togglesync.

Provided symbols:

- :class:`MockMqttClient` — in-memory MQTT double that records calls.
- :class:`FakeClock` — deterministic clock for timestamp tests.
- :func:`make_settings` — factory for ``Settings`` without ``.env`` files.
- :func:`make_engine` — engine wired to the doubles above.
"""

from togglesync._mqtt import MockMqttClient
from togglesync.testing._clock import FakeClock
from togglesync.testing._engine import make_engine
from togglesync.testing._settings import make_settings

__all__ = [
    "FakeClock",
    "MockMqttClient",
    "make_engine",
    "make_settings",
]
