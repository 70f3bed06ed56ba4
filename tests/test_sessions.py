"""Tests for capability session lifecycle management."""

from __future__ import annotations

import asyncio

import pytest

from inbox_triage.capabilities.sessions import SessionManager
from inbox_triage.core.interfaces import OperationError
from inbox_triage.core.models import CapabilityKind, ErrorKind, SessionKey


class StubSession:
    """Session that tracks how many holders use it at once."""

    def __init__(self) -> None:
        self.destroyed = False
        self.active = 0
        self.max_active = 0

    async def invoke(self, prompt: str, *, image: bytes | None = None) -> str:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0)
        self.active -= 1
        return prompt.upper()

    def destroy(self) -> None:
        self.destroyed = True


class CountingFactory:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.created: list[StubSession] = []

    async def __call__(self) -> StubSession:
        await asyncio.sleep(0)
        if self.fail:
            raise RuntimeError("model failed to load")
        session = StubSession()
        self.created.append(session)
        return session


KEY = SessionKey.for_config(CapabilityKind.GENERATE, {"tone": "neutral"})


def test_session_keys_hash_configuration_stably() -> None:
    first = SessionKey.for_config(CapabilityKind.TRANSLATE, {"a": 1, "b": 2})
    second = SessionKey.for_config(CapabilityKind.TRANSLATE, {"b": 2, "a": 1})
    other = SessionKey.for_config(CapabilityKind.TRANSLATE, {"a": 1, "b": 3})

    assert first == second
    assert first != other


@pytest.mark.asyncio
async def test_acquire_reuses_live_session() -> None:
    manager = SessionManager()
    factory = CountingFactory()

    first, second = await asyncio.gather(
        manager.acquire(KEY, factory), manager.acquire(KEY, factory)
    )

    assert first is second
    assert len(factory.created) == 1
    assert manager.live_count(KEY) == 1


@pytest.mark.asyncio
async def test_release_destroys_and_evicts() -> None:
    manager = SessionManager()
    factory = CountingFactory()
    session = await manager.acquire(KEY, factory)

    await manager.release(KEY)

    assert session.destroyed
    assert KEY not in manager
    assert len(manager) == 0


@pytest.mark.asyncio
async def test_factory_failure_is_classified_and_not_cached() -> None:
    manager = SessionManager()

    with pytest.raises(OperationError) as excinfo:
        await manager.acquire(KEY, CountingFactory(fail=True))

    assert excinfo.value.kind is ErrorKind.CAPABILITY_UNAVAILABLE
    assert manager.live_count(KEY) == 0

    session = await manager.acquire(KEY, CountingFactory())
    assert not session.destroyed


@pytest.mark.asyncio
async def test_scoped_session_is_destroyed_unless_kept_warm() -> None:
    manager = SessionManager()
    factory = CountingFactory()

    async with manager.session(KEY, factory) as single_use:
        await single_use.invoke("hi")
    assert single_use.destroyed
    assert len(manager) == 0

    async with manager.session(KEY, factory, keep_warm=True) as warm:
        await warm.invoke("hi")
    assert not warm.destroyed
    assert manager.live_count(KEY) == 1


@pytest.mark.asyncio
async def test_scoped_session_is_destroyed_on_error_even_when_warm() -> None:
    manager = SessionManager()
    factory = CountingFactory()

    with pytest.raises(ValueError):
        async with manager.session(KEY, factory, keep_warm=True):
            raise ValueError("invoke failed")

    assert factory.created[0].destroyed
    assert manager.live_count(KEY) == 0


@pytest.mark.asyncio
async def test_scoped_session_is_destroyed_on_cancellation() -> None:
    manager = SessionManager()
    factory = CountingFactory()

    async def slow_use() -> None:
        async with manager.session(KEY, factory, keep_warm=True):
            await asyncio.sleep(10)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(slow_use(), timeout=0.01)

    assert factory.created[0].destroyed
    assert len(manager) == 0


@pytest.mark.asyncio
async def test_concurrent_scoped_use_never_shares_a_session() -> None:
    manager = SessionManager()
    factory = CountingFactory()

    async def use(index: int) -> str:
        async with manager.session(KEY, factory, keep_warm=index % 2 == 0) as session:
            assert manager.live_count(KEY) == 1
            return await session.invoke(f"call {index}")

    results = await asyncio.gather(*(use(index) for index in range(1000)))

    assert len(results) == 1000
    assert all(session.max_active == 1 for session in factory.created)
    assert manager.live_count(KEY) <= 1


@pytest.mark.asyncio
async def test_release_all_destroys_every_session() -> None:
    manager = SessionManager()
    factory = CountingFactory()
    other_key = SessionKey.for_config(CapabilityKind.SUMMARIZE, {"type": "tldr"})
    await manager.acquire(KEY, factory)
    await manager.acquire(other_key, factory)

    await manager.release_all()

    assert len(manager) == 0
    assert all(session.destroyed for session in factory.created)
