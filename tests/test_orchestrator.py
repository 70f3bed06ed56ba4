"""Tests for the operation orchestrator."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from typing import Any

import httpx
import pytest

from inbox_triage.core.config import AppSettings, OperationSettings, PollingSettings
from inbox_triage.core.interfaces import OperationError
from inbox_triage.core.models import (
    Attachment,
    AttachmentKind,
    CapabilityKind,
    CapabilityStatus,
    Err,
    ErrorKind,
    Message,
    Ok,
    OperationKind,
    OperationRequest,
    ProcessingMode,
    RemoteCredentials,
    Thread,
)
from inbox_triage.orchestrator import Orchestrator

TLDR = "TL;DR: The vendor contract renewal is due next Tuesday."
KEY_POINTS = "- Contract renewal due Tuesday\n- Legal must review pricing changes"


class StubSession:
    def __init__(self, kind: CapabilityKind, summary_type: object, delay: float) -> None:
        self.kind = kind
        self.summary_type = summary_type
        self.delay = delay
        self.destroyed = False

    async def invoke(self, prompt: str, *, image: bytes | None = None) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.kind is CapabilityKind.TRANSLATE:
            return f"(fr) {prompt}"
        if self.summary_type == "key-points":
            return KEY_POINTS
        return TLDR

    def destroy(self) -> None:
        self.destroyed = True


class StubBackend:
    def __init__(
        self,
        status: CapabilityStatus = CapabilityStatus.READY,
        *,
        delay: float = 0.0,
    ) -> None:
        self.status = status
        self.delay = delay
        self.sessions: list[StubSession] = []

    async def availability(self, kind: CapabilityKind) -> CapabilityStatus:
        return self.status

    async def create(self, kind: CapabilityKind, config: Mapping[str, Any]) -> StubSession:
        session = StubSession(kind, config.get("type"), self.delay)
        self.sessions.append(session)
        return session


def _settings(timeout: float = 5.0) -> AppSettings:
    return AppSettings(
        polling=PollingSettings(enabled=False),
        operation=OperationSettings(timeout_seconds=timeout),
    )


def _thread(body: str) -> Thread:
    return Thread(messages=(Message("Dana", body),), subject="Vendor contract")


LONG_BODY = (
    "The vendor contract renewal is due next Tuesday. "
    "Legal must review the pricing changes before we sign."
)


def _recording_transport(seen: list[httpx.Request]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"choices": [{"message": {"content": f"{TLDR}\n\nKey points:\n- Remote point"}}]},
        )

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_short_thread_returns_content_too_short() -> None:
    orchestrator = Orchestrator(_settings(), backend=StubBackend())

    result = await orchestrator.run(
        OperationRequest(OperationKind.SUMMARIZE, _thread("Thanks, see you at the sync."))
    )

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.CONTENT_TOO_SHORT


@pytest.mark.asyncio
async def test_summary_runs_locally_when_ready() -> None:
    orchestrator = Orchestrator(_settings(), backend=StubBackend())

    result = await orchestrator.run(
        OperationRequest(OperationKind.SUMMARIZE, _thread(LONG_BODY))
    )

    assert isinstance(result, Ok)
    assert result.value.summary == "The vendor contract renewal is due next Tuesday."
    assert "Legal must review pricing changes" in result.value.key_points
    assert not result.used_fallback_provider


@pytest.mark.asyncio
async def test_downloading_model_in_hybrid_mode_is_reported() -> None:
    seen: list[httpx.Request] = []
    orchestrator = Orchestrator(
        _settings(),
        backend=StubBackend(CapabilityStatus.DOWNLOADING),
        transport=_recording_transport(seen),
    )

    result = await orchestrator.run(
        OperationRequest(
            OperationKind.SUMMARIZE,
            _thread(LONG_BODY),
            processing_mode=ProcessingMode.HYBRID,
            remote_credentials=RemoteCredentials("openai", "sk-test"),
        )
    )

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.CAPABILITY_DOWNLOADING
    assert "downloading" in result.message
    assert seen == []


@pytest.mark.asyncio
async def test_device_only_never_contacts_remote_provider() -> None:
    seen: list[httpx.Request] = []
    orchestrator = Orchestrator(
        _settings(),
        backend=StubBackend(CapabilityStatus.UNAVAILABLE),
        transport=_recording_transport(seen),
    )

    result = await orchestrator.run(
        OperationRequest(
            OperationKind.SUMMARIZE,
            _thread(LONG_BODY),
            processing_mode=ProcessingMode.DEVICE_ONLY,
            remote_credentials=RemoteCredentials("openai", "sk-test"),
            prefer_remote=True,
        )
    )

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.CAPABILITY_UNAVAILABLE
    assert seen == []


@pytest.mark.asyncio
async def test_hybrid_mode_falls_back_to_remote_provider() -> None:
    seen: list[httpx.Request] = []
    orchestrator = Orchestrator(
        _settings(),
        backend=StubBackend(CapabilityStatus.UNAVAILABLE),
        transport=_recording_transport(seen),
    )

    result = await orchestrator.run(
        OperationRequest(
            OperationKind.SUMMARIZE,
            _thread(LONG_BODY),
            processing_mode=ProcessingMode.HYBRID,
            remote_credentials=RemoteCredentials("openai", "sk-test"),
        )
    )

    assert isinstance(result, Ok)
    assert result.used_fallback_provider
    assert result.value.key_points == ("Remote point",)
    assert "From: Dana" in json.loads(seen[0].content)["messages"][1]["content"]


@pytest.mark.asyncio
async def test_slow_operation_times_out_with_network_message() -> None:
    orchestrator = Orchestrator(_settings(timeout=0.05), backend=StubBackend(delay=1.0))

    result = await orchestrator.run(
        OperationRequest(OperationKind.SUMMARIZE, _thread(LONG_BODY))
    )

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.UNKNOWN
    assert result.message.startswith("Connection error")


@pytest.mark.asyncio
async def test_drafts_always_return_three_even_on_bad_output() -> None:
    orchestrator = Orchestrator(_settings(), backend=StubBackend())

    result = await orchestrator.run(
        OperationRequest(OperationKind.DRAFT, _thread(LONG_BODY), tone="friendly")
    )

    assert isinstance(result, Ok)
    assert len(result.value.drafts) == 3
    assert result.value.warning is not None


@pytest.mark.asyncio
async def test_attachment_analysis_requires_attachment() -> None:
    orchestrator = Orchestrator(_settings(), backend=StubBackend())

    result = await orchestrator.run(
        OperationRequest(OperationKind.ANALYZE_ATTACHMENT, _thread(LONG_BODY))
    )

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.UNKNOWN


@pytest.mark.asyncio
async def test_attachment_analysis_without_resolver_is_unavailable() -> None:
    orchestrator = Orchestrator(_settings(), backend=StubBackend())
    attachment = Attachment("scan.png", AttachmentKind.IMAGE, 100, "ref-9")

    result = await orchestrator.run(
        OperationRequest(
            OperationKind.ANALYZE_ATTACHMENT, _thread(LONG_BODY), attachment=attachment
        )
    )

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.CAPABILITY_UNAVAILABLE


@pytest.mark.asyncio
async def test_translate_defaults_to_flattened_thread() -> None:
    orchestrator = Orchestrator(_settings(), backend=StubBackend())

    result = await orchestrator.run(
        OperationRequest(
            OperationKind.TRANSLATE,
            _thread("Merci pour votre message."),
            source_language="en",
            target_language="fr",
        )
    )

    assert isinstance(result, Ok)
    assert result.value.text == "(fr) From: Dana\nMerci pour votre message."


@pytest.mark.asyncio
async def test_context_manager_polls_and_releases_sessions() -> None:
    backend = StubBackend()

    async with Orchestrator(_settings(), backend=backend) as orchestrator:
        assert orchestrator.status()[CapabilityKind.SUMMARIZE] is CapabilityStatus.READY
        assert orchestrator.registry.all_required_ready()
        assert not orchestrator.registry.is_polling
        await orchestrator.run(
            OperationRequest(OperationKind.SUMMARIZE, _thread(LONG_BODY))
        )
        assert len(orchestrator.sessions) == 2

    assert len(orchestrator.sessions) == 0
    assert all(session.destroyed for session in backend.sessions)


@pytest.mark.asyncio
async def test_stalled_draft_model_still_returns_fallback_drafts() -> None:
    backend = StubBackend(delay=1.0)
    orchestrator = Orchestrator(_settings(timeout=0.2), backend=backend)

    result = await orchestrator.run(
        OperationRequest(OperationKind.DRAFT, _thread(LONG_BODY), tone="formal")
    )

    assert isinstance(result, Ok)
    assert len(result.value.drafts) == 3
    assert result.value.warning is not None
    assert all(session.destroyed for session in backend.sessions)
    assert len(orchestrator.sessions) == 0


class PullingBackend(StubBackend):
    def __init__(self) -> None:
        super().__init__(CapabilityStatus.UNAVAILABLE)
        self.observed: list[CapabilityStatus] = []
        self.orchestrator: Orchestrator | None = None

    async def pull(self, kind: CapabilityKind) -> None:
        self.status = CapabilityStatus.DOWNLOADING
        assert self.orchestrator is not None
        await self.orchestrator.registry.poll()
        self.observed.append(self.orchestrator.status()[kind])
        self.status = CapabilityStatus.READY


@pytest.mark.asyncio
async def test_download_reports_downloading_then_ready() -> None:
    backend = PullingBackend()
    orchestrator = Orchestrator(_settings(), backend=backend)
    backend.orchestrator = orchestrator

    status = await orchestrator.download(CapabilityKind.GENERATE)

    assert backend.observed == [CapabilityStatus.DOWNLOADING]
    assert status is CapabilityStatus.READY
    assert CapabilityKind.GENERATE in orchestrator.registry.required


@pytest.mark.asyncio
async def test_download_without_pull_support_is_unavailable() -> None:
    orchestrator = Orchestrator(_settings(), backend=StubBackend())

    with pytest.raises(OperationError) as excinfo:
        await orchestrator.download(CapabilityKind.TRANSLATE)

    assert excinfo.value.kind is ErrorKind.CAPABILITY_UNAVAILABLE
