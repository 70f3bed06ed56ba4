"""Availability tracking for on-device capabilities."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable

from inbox_triage.core.interfaces import CapabilityBackend
from inbox_triage.core.models import CapabilityKind, CapabilityStatus, StatusChange

LOGGER = logging.getLogger(__name__)

StatusListener = Callable[[StatusChange], None]

DEFAULT_POLL_INTERVAL = 30.0


class CapabilityRegistry:
    """Cache of capability statuses refreshed by polling the backend probes.

    Reads through :meth:`get` never block. Writes happen only in :meth:`poll`,
    which notifies listeners once per actual status change.
    """

    def __init__(
        self,
        backend: CapabilityBackend,
        *,
        kinds: Iterable[CapabilityKind] = tuple(CapabilityKind),
        required: Iterable[CapabilityKind] = (),
        interval_seconds: float = DEFAULT_POLL_INTERVAL,
        auto_poll: bool = True,
    ) -> None:
        """Track ``kinds`` (all unknown at first) and poll until ``required`` are ready."""
        self._backend = backend
        self._statuses: dict[CapabilityKind, CapabilityStatus] = {
            kind: CapabilityStatus.UNKNOWN for kind in kinds
        }
        self._required: set[CapabilityKind] = set(required)
        self._interval_seconds = interval_seconds
        self._auto_poll = auto_poll
        self._listeners: list[StatusListener] = []
        self._poll_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None

    def get(self, kind: CapabilityKind) -> CapabilityStatus:
        """Return the cached status for ``kind``."""
        return self._statuses.get(kind, CapabilityStatus.UNKNOWN)

    def snapshot(self) -> dict[CapabilityKind, CapabilityStatus]:
        """Return a copy of every tracked status."""
        return dict(self._statuses)

    @property
    def required(self) -> frozenset[CapabilityKind]:
        return frozenset(self._required)

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    def all_required_ready(self) -> bool:
        return all(
            self.get(kind) is CapabilityStatus.READY for kind in self._required
        )

    async def poll(self) -> dict[CapabilityKind, CapabilityStatus]:
        """Probe every tracked kind once and return the refreshed statuses."""
        async with self._poll_lock:
            kinds = list(self._statuses)
            observed = await asyncio.gather(*(self._probe(kind) for kind in kinds))
            changes: list[StatusChange] = []
            for kind, status in zip(kinds, observed, strict=True):
                previous = self.get(kind)
                current = _next_status(previous, status)
                if current is not previous:
                    self._statuses[kind] = current
                    changes.append(StatusChange(kind, previous, current))

        for change in changes:
            LOGGER.info(
                "Capability %s changed %s -> %s",
                change.kind.value,
                change.previous.value,
                change.current.value,
            )
            self._notify(change)
        return self.snapshot()

    async def status_for(self, kind: CapabilityKind) -> CapabilityStatus:
        """Return the status of ``kind``, probing once if it was never observed.

        A kind that is not ready is marked required so polling keeps watching it.
        """
        if self.get(kind) is CapabilityStatus.UNKNOWN:
            self._statuses.setdefault(kind, CapabilityStatus.UNKNOWN)
            await self.poll()
        status = self.get(kind)
        if status is not CapabilityStatus.READY:
            self.require(kind)
        return status

    def require(self, kind: CapabilityKind) -> None:
        """Mark ``kind`` as required, restarting polling while it is not ready."""
        self._statuses.setdefault(kind, CapabilityStatus.UNKNOWN)
        self._required.add(kind)
        if self._auto_poll and self.get(kind) is not CapabilityStatus.READY:
            self.start()

    def start(self) -> None:
        """Launch the background poll loop unless it is already running."""
        if self.is_polling:
            return
        self._task = asyncio.get_running_loop().create_task(
            self.poll_loop(), name="capability-poll"
        )

    async def stop(self) -> None:
        """Cancel the background poll loop."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def poll_loop(self, interval_seconds: float | None = None) -> None:
        """Poll until every required capability is ready."""
        interval = self._interval_seconds if interval_seconds is None else interval_seconds
        while True:
            await self.poll()
            if self.all_required_ready():
                LOGGER.info("All required capabilities ready; polling stopped")
                return
            await asyncio.sleep(interval)

    async def _probe(self, kind: CapabilityKind) -> CapabilityStatus:
        try:
            return CapabilityStatus(await self._backend.availability(kind))
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Availability probe for %s failed: %s", kind.value, exc)
            return CapabilityStatus.ERROR

    def _notify(self, change: StatusChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Capability status listener failed")


def _next_status(
    previous: CapabilityStatus, observed: CapabilityStatus
) -> CapabilityStatus:
    """Apply the allowed transitions to a freshly observed status."""
    if observed is CapabilityStatus.UNKNOWN and previous is not CapabilityStatus.UNKNOWN:
        return previous
    if previous is CapabilityStatus.READY and observed is CapabilityStatus.DOWNLOADING:
        return previous
    return observed


__all__ = ["CapabilityRegistry", "DEFAULT_POLL_INTERVAL", "StatusListener"]
