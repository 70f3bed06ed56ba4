"""Tests for capability availability tracking."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import pytest

from inbox_triage.capabilities.registry import CapabilityRegistry
from inbox_triage.core.models import CapabilityKind, CapabilityStatus, StatusChange


class StubBackend:
    """Backend whose probe results are set by the test."""

    def __init__(self, statuses: dict[CapabilityKind, CapabilityStatus] | None = None) -> None:
        self.statuses = statuses or {}
        self.failing: set[CapabilityKind] = set()
        self.probes = 0

    async def availability(self, kind: CapabilityKind) -> CapabilityStatus:
        self.probes += 1
        if kind in self.failing:
            raise RuntimeError("probe exploded")
        return self.statuses.get(kind, CapabilityStatus.UNAVAILABLE)

    async def create(self, kind: CapabilityKind, config: Mapping[str, Any]) -> Any:
        raise NotImplementedError


def _registry(backend: StubBackend, **kwargs: Any) -> CapabilityRegistry:
    return CapabilityRegistry(
        backend,
        kinds=(CapabilityKind.SUMMARIZE, CapabilityKind.GENERATE),
        auto_poll=False,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_statuses_start_unknown_and_refresh_on_poll() -> None:
    backend = StubBackend({CapabilityKind.SUMMARIZE: CapabilityStatus.READY})
    registry = _registry(backend)

    assert registry.get(CapabilityKind.SUMMARIZE) is CapabilityStatus.UNKNOWN

    snapshot = await registry.poll()

    assert snapshot[CapabilityKind.SUMMARIZE] is CapabilityStatus.READY
    assert snapshot[CapabilityKind.GENERATE] is CapabilityStatus.UNAVAILABLE


@pytest.mark.asyncio
async def test_listeners_are_edge_triggered() -> None:
    backend = StubBackend({CapabilityKind.SUMMARIZE: CapabilityStatus.DOWNLOADING})
    registry = _registry(backend)
    changes: list[StatusChange] = []
    registry.add_listener(changes.append)

    await registry.poll()
    await registry.poll()
    backend.statuses[CapabilityKind.SUMMARIZE] = CapabilityStatus.READY
    await registry.poll()

    summarize_changes = [c for c in changes if c.kind is CapabilityKind.SUMMARIZE]
    assert summarize_changes == [
        StatusChange(
            CapabilityKind.SUMMARIZE, CapabilityStatus.UNKNOWN, CapabilityStatus.DOWNLOADING
        ),
        StatusChange(
            CapabilityKind.SUMMARIZE, CapabilityStatus.DOWNLOADING, CapabilityStatus.READY
        ),
    ]


@pytest.mark.asyncio
async def test_failing_probe_only_degrades_its_kind() -> None:
    backend = StubBackend(
        {
            CapabilityKind.SUMMARIZE: CapabilityStatus.READY,
            CapabilityKind.GENERATE: CapabilityStatus.READY,
        }
    )
    backend.failing.add(CapabilityKind.GENERATE)
    registry = _registry(backend)

    await registry.poll()

    assert registry.get(CapabilityKind.SUMMARIZE) is CapabilityStatus.READY
    assert registry.get(CapabilityKind.GENERATE) is CapabilityStatus.ERROR


@pytest.mark.asyncio
async def test_ready_never_regresses_to_downloading() -> None:
    backend = StubBackend({CapabilityKind.SUMMARIZE: CapabilityStatus.READY})
    registry = _registry(backend)
    await registry.poll()

    backend.statuses[CapabilityKind.SUMMARIZE] = CapabilityStatus.DOWNLOADING
    await registry.poll()
    assert registry.get(CapabilityKind.SUMMARIZE) is CapabilityStatus.READY

    backend.statuses[CapabilityKind.SUMMARIZE] = CapabilityStatus.UNKNOWN
    await registry.poll()
    assert registry.get(CapabilityKind.SUMMARIZE) is CapabilityStatus.READY

    backend.statuses[CapabilityKind.SUMMARIZE] = CapabilityStatus.UNAVAILABLE
    await registry.poll()
    assert registry.get(CapabilityKind.SUMMARIZE) is CapabilityStatus.UNAVAILABLE


@pytest.mark.asyncio
async def test_listener_errors_do_not_break_polling() -> None:
    backend = StubBackend({CapabilityKind.SUMMARIZE: CapabilityStatus.READY})
    registry = _registry(backend)
    seen: list[StatusChange] = []

    def broken(change: StatusChange) -> None:
        raise ValueError("listener bug")

    registry.add_listener(broken)
    registry.add_listener(seen.append)

    await registry.poll()

    assert len(seen) == 2


@pytest.mark.asyncio
async def test_poll_loop_stops_once_required_are_ready() -> None:
    backend = StubBackend({CapabilityKind.SUMMARIZE: CapabilityStatus.DOWNLOADING})
    registry = _registry(backend, required=(CapabilityKind.SUMMARIZE,))

    task = asyncio.create_task(registry.poll_loop(interval_seconds=0.01))
    await asyncio.sleep(0.05)
    assert not task.done()

    backend.statuses[CapabilityKind.SUMMARIZE] = CapabilityStatus.READY
    await asyncio.wait_for(task, timeout=1)

    assert registry.all_required_ready()


@pytest.mark.asyncio
async def test_require_restarts_polling_for_unready_kind() -> None:
    backend = StubBackend({CapabilityKind.SUMMARIZE: CapabilityStatus.READY})
    registry = CapabilityRegistry(
        backend,
        kinds=(CapabilityKind.SUMMARIZE, CapabilityKind.GENERATE),
        interval_seconds=0.01,
    )
    await registry.poll()
    assert not registry.is_polling

    registry.require(CapabilityKind.GENERATE)
    assert registry.is_polling

    await registry.stop()
    assert not registry.is_polling


@pytest.mark.asyncio
async def test_status_for_probes_unobserved_kind_once() -> None:
    backend = StubBackend({CapabilityKind.GENERATE: CapabilityStatus.READY})
    registry = _registry(backend)

    status = await registry.status_for(CapabilityKind.GENERATE)
    probes_after_first = backend.probes
    await registry.status_for(CapabilityKind.GENERATE)

    assert status is CapabilityStatus.READY
    assert backend.probes == probes_after_first


@pytest.mark.asyncio
async def test_poll_loop_honours_explicit_zero_interval() -> None:
    class WarmingBackend(StubBackend):
        async def availability(self, kind: CapabilityKind) -> CapabilityStatus:
            self.probes += 1
            if self.probes < 4:
                return CapabilityStatus.DOWNLOADING
            return CapabilityStatus.READY

    backend = WarmingBackend()
    registry = CapabilityRegistry(
        backend,
        kinds=(CapabilityKind.SUMMARIZE,),
        required=(CapabilityKind.SUMMARIZE,),
        interval_seconds=30.0,
        auto_poll=False,
    )

    await asyncio.wait_for(registry.poll_loop(interval_seconds=0), timeout=1)

    assert registry.get(CapabilityKind.SUMMARIZE) is CapabilityStatus.READY
