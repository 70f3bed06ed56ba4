"""Lifecycle management for ephemeral capability sessions."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from inbox_triage.core.interfaces import OperationError, SessionHandle
from inbox_triage.core.models import ErrorKind, SessionKey

LOGGER = logging.getLogger(__name__)

SessionFactory = Callable[[], Awaitable[SessionHandle]]


class SessionManager:
    """Holds at most one live session per :class:`SessionKey`.

    Creation, release, and scoped use are serialised per key, so concurrent
    callers sharing a key never observe two sessions for it.
    """

    def __init__(self) -> None:
        self._sessions: dict[SessionKey, SessionHandle] = {}
        self._locks: dict[SessionKey, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: object) -> bool:
        return key in self._sessions

    def live_count(self, key: SessionKey) -> int:
        """Number of live sessions for ``key``; never more than one."""
        return 1 if key in self._sessions else 0

    async def acquire(self, key: SessionKey, factory: SessionFactory) -> SessionHandle:
        """Return the cached session for ``key`` or create one with ``factory``."""
        async with self._lock_for(key):
            return await self._acquire_locked(key, factory)

    async def release(self, key: SessionKey) -> None:
        """Destroy and evict the session for ``key`` if present."""
        async with self._lock_for(key):
            self._evict_locked(key)

    async def release_all(self) -> None:
        """Destroy every cached session."""
        for key in list(self._sessions):
            await self.release(key)

    @contextlib.asynccontextmanager
    async def session(
        self,
        key: SessionKey,
        factory: SessionFactory,
        *,
        keep_warm: bool = False,
    ) -> AsyncIterator[SessionHandle]:
        """Scoped acquisition: the session is destroyed on exit unless kept warm.

        A session that raised (or was cancelled) is always destroyed.
        """
        async with self._lock_for(key):
            handle = await self._acquire_locked(key, factory)
            try:
                yield handle
            except BaseException:
                self._evict_locked(key)
                raise
            if not keep_warm:
                self._evict_locked(key)

    def _lock_for(self, key: SessionKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks.setdefault(key, asyncio.Lock())
        return lock

    async def _acquire_locked(
        self, key: SessionKey, factory: SessionFactory
    ) -> SessionHandle:
        existing = self._sessions.get(key)
        if existing is not None:
            return existing
        try:
            handle = await factory()
        except Exception as exc:
            LOGGER.warning("Creating %s session failed: %s", key.kind.value, exc)
            raise OperationError(
                ErrorKind.CAPABILITY_UNAVAILABLE,
                f"{key.kind.value} capability not available: session creation failed",
            ) from exc
        self._sessions[key] = handle
        LOGGER.debug("Created %s session %s", key.kind.value, key.config_hash)
        return handle

    def _evict_locked(self, key: SessionKey) -> None:
        handle = self._sessions.pop(key, None)
        if handle is None:
            return
        try:
            handle.destroy()
        except Exception:  # noqa: BLE001
            LOGGER.exception("Destroying %s session failed", key.kind.value)
        LOGGER.debug("Destroyed %s session %s", key.kind.value, key.config_hash)


__all__ = ["SessionFactory", "SessionManager"]
