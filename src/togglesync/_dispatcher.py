"""User intent → command publish.

:class:`CommandDispatcher` is the entry point a UI or automation calls
when someone flips a switch.  It validates the request, then hands it
to the reconciler as a background task so the caller never waits on
the network.  Failures are logged and recorded in the event log; they
are never left as unobserved task exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum

from togglesync._errors import InvalidTopicError, TogglesyncError
from togglesync._events import Direction, EventLog
from togglesync._state import DeviceChannel, StateReconciler
from togglesync._topics import derive_topics

logger = logging.getLogger(__name__)


class DispatchResult(StrEnum):
    """Outcome of one ``set_device`` request."""

    PUBLISHED = "published"
    SKIPPED = "skipped"
    FAILED = "failed"
    REJECTED = "rejected"


class CommandDispatcher:
    """Turns ``set_device`` calls into reconciler intents."""

    def __init__(self, reconciler: StateReconciler, event_log: EventLog) -> None:
        self._reconciler = reconciler
        self._event_log = event_log
        self._pending: set[asyncio.Task[DispatchResult]] = set()

    def set_device(
        self,
        channel: DeviceChannel | str,
        on: bool,
    ) -> asyncio.Task[DispatchResult] | None:
        """Request *channel* to be switched on or off.

        Returns the scheduled task, or ``None`` if the request was
        rejected up front (unknown device, empty topic base).  Must be
        called from within a running event loop.
        """
        try:
            target = self._validate(channel)
        except InvalidTopicError as exc:
            logger.warning("%s", exc)
            self._event_log.add(Direction.SYSTEM, str(exc))
            return None

        task = asyncio.create_task(self._run(target, on))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every outstanding dispatch to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _validate(self, channel: DeviceChannel | str) -> DeviceChannel:
        if isinstance(channel, DeviceChannel):
            target = channel
        else:
            try:
                target = self._reconciler.get(channel)
            except KeyError:
                msg = f"Unknown device '{channel}'"
                raise InvalidTopicError(msg) from None
        try:
            derive_topics(target.topic_base)
        except InvalidTopicError as exc:
            msg = f"{target.name}: {exc}"
            raise InvalidTopicError(msg) from exc
        return target

    async def _run(self, channel: DeviceChannel, on: bool) -> DispatchResult:
        try:
            published = await self._reconciler.apply_local_intent(channel, on)
        except TogglesyncError as exc:
            # Logged and recorded by the layer that raised it.
            logger.debug(
                "set_device(%s, %s) failed: %s",
                channel.name,
                on,
                exc,
                extra={"device": channel.name},
            )
            return DispatchResult.FAILED
        except Exception:
            logger.exception(
                "Unexpected error setting %s",
                channel.name,
                extra={"device": channel.name},
            )
            self._event_log.add(Direction.SYSTEM, f"Failed to set {channel.name}")
            return DispatchResult.FAILED
        return DispatchResult.PUBLISHED if published else DispatchResult.SKIPPED
