"""Command/status topic derivation.

Each device is configured with a *topic base*; the engine derives the
rest::

    {base}/set       ← outbound command (ON/OFF)
    {base}/status    ← inbound status reported by the device

Bases are user input, so they are normalized first: surrounding
whitespace and slashes are dropped.  ``" /home/light/ "`` and
``"home/light"`` name the same device.
"""

from __future__ import annotations

from dataclasses import dataclass

from togglesync._errors import InvalidTopicError

COMMAND_SUFFIX = "set"
STATUS_SUFFIX = "status"


@dataclass(frozen=True, slots=True)
class DeviceTopics:
    """Normalized base with its derived command and status topics."""

    base: str
    command: str
    status: str


def normalize_topic_base(raw: str) -> str:
    """Strip whitespace and leading/trailing ``/`` from *raw*.

    Idempotent: normalizing an already normalized base returns it
    unchanged.

    Raises:
        InvalidTopicError: If nothing is left after normalization.
    """
    base = raw.strip()
    while True:
        stripped = base.strip("/").strip()
        if stripped == base:
            break
        base = stripped
    if not base:
        msg = f"Topic base is empty (got {raw!r})"
        raise InvalidTopicError(msg)
    return base


def derive_topics(raw: str) -> DeviceTopics:
    """Build the command/status topic pair for a raw topic base."""
    base = normalize_topic_base(raw)
    return DeviceTopics(
        base=base,
        command=f"{base}/{COMMAND_SUFFIX}",
        status=f"{base}/{STATUS_SUFFIX}",
    )


def topic_matches(topic_filter: str, topic: str) -> bool:
    """Return whether *topic* is delivered by a subscription to *topic_filter*.

    ``+`` matches exactly one level and ``#`` the remaining levels,
    including none (``home/#`` matches ``home``).  Filters starting
    with a wildcard never match ``$``-prefixed system topics.
    """
    if topic.startswith("$") and topic_filter[:1] in ("+", "#"):
        return False
    filter_levels = topic_filter.split("/")
    topic_levels = topic.split("/")
    for index, level in enumerate(filter_levels):
        if level == "#":
            return True
        if index >= len(topic_levels):
            return False
        if level not in ("+", topic_levels[index]):
            return False
    return len(filter_levels) == len(topic_levels)
