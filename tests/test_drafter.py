"""Tests for the reply drafting service."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import pytest

from inbox_triage.capabilities.registry import CapabilityRegistry
from inbox_triage.capabilities.sessions import SessionManager
from inbox_triage.core.interfaces import OperationError
from inbox_triage.core.models import (
    CapabilityKind,
    CapabilityStatus,
    ErrorKind,
    Message,
    ProcessingMode,
    RemoteCredentials,
    Summary,
    Thread,
    ThreadContext,
)
from inbox_triage.intelligence.drafter import DraftService
from inbox_triage.intelligence.drafts import FALLBACK_WARNING, REMOTE_FALLBACK_WARNING
from inbox_triage.intelligence.fallback import CANNED_REPLIES
from inbox_triage.intelligence.remote import ProviderResponseError, RemoteProviderError

DRAFT_ITEMS = [
    {"type": "Quick Response", "subject": "Re: Launch plan", "body": "Friday works for me, thanks."},
    {"type": "Acknowledgment", "subject": "Re: Launch plan", "body": "Thanks for flagging the regression."},
    {"type": "Next Steps", "subject": "Re: Launch plan", "body": "I will update the release checklist today."},
]


class StubSession:
    def __init__(self, response: str) -> None:
        self.response = response
        self.prompts: list[str] = []
        self.destroyed = False

    async def invoke(self, prompt: str, *, image: bytes | None = None) -> str:
        self.prompts.append(prompt)
        return self.response

    def destroy(self) -> None:
        self.destroyed = True


class StubBackend:
    def __init__(
        self, response: str = "", status: CapabilityStatus = CapabilityStatus.READY
    ) -> None:
        self.response = response
        self.status = status
        self.configs: list[dict[str, Any]] = []
        self.sessions: list[StubSession] = []

    async def availability(self, kind: CapabilityKind) -> CapabilityStatus:
        return self.status

    async def create(self, kind: CapabilityKind, config: Mapping[str, Any]) -> StubSession:
        self.configs.append(dict(config))
        session = StubSession(self.response)
        self.sessions.append(session)
        return session


class StubProvider:
    name = "anthropic"

    def __init__(
        self, items: list[dict[str, Any]] | None = None, error: Exception | None = None
    ) -> None:
        self.items = items or []
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def summarize(self, text: str, credentials: RemoteCredentials) -> Summary:
        raise NotImplementedError

    async def generate_drafts(
        self,
        text: str,
        subject: str,
        tone: str,
        guidance: str | None,
        credentials: RemoteCredentials,
        context: ThreadContext | None = None,
    ) -> list[dict[str, Any]]:
        self.calls.append({"text": text, "subject": subject, "tone": tone, "context": context})
        if self.error is not None:
            raise self.error
        return self.items


CREDENTIALS = RemoteCredentials("anthropic", "ant-key")


def _thread(subject: str | None = "Launch plan") -> Thread:
    return Thread(
        messages=(
            Message("Alice", "QA found a regression. Can we move the launch to Friday?"),
        ),
        subject=subject,
    )


def _service(
    backend: StubBackend, provider: StubProvider | None = None
) -> tuple[DraftService, SessionManager]:
    def factory(name: str) -> StubProvider:
        assert provider is not None
        return provider

    sessions = SessionManager()
    registry = CapabilityRegistry(backend, auto_poll=False)
    service = DraftService(
        backend,
        registry,
        sessions,
        provider_factory=factory,
    )
    return service, sessions


@pytest.mark.asyncio
async def test_short_thread_is_rejected() -> None:
    service, _ = _service(StubBackend())

    with pytest.raises(OperationError) as excinfo:
        await service.draft(Thread(messages=(Message(None, "ok"),)))

    assert excinfo.value.kind is ErrorKind.CONTENT_TOO_SHORT


@pytest.mark.asyncio
async def test_local_drafts_are_accepted_and_session_released() -> None:
    backend = StubBackend(json.dumps({"drafts": DRAFT_ITEMS}))
    service, sessions = _service(backend)

    result = await service.draft(_thread(), tone="Friendly")

    drafts = result.value.drafts
    assert [draft.type for draft in drafts] == ["Quick Response", "Acknowledgment", "Next Steps"]
    assert result.value.warning is None
    assert not result.used_fallback_provider
    assert backend.configs[0]["tone"] == "friendly"
    assert "friendly in tone" in backend.configs[0]["system_prompt"]
    assert "Can we move the launch to Friday?" in backend.sessions[0].prompts[0]
    assert backend.sessions[0].destroyed
    assert len(sessions) == 0


@pytest.mark.asyncio
async def test_malformed_local_output_uses_canned_drafts() -> None:
    backend = StubBackend("I'm sorry, I cannot produce JSON right now.")
    service, _ = _service(backend)

    result = await service.draft(_thread(), tone="assertive")

    assert result.value.warning == FALLBACK_WARNING
    assert tuple(draft.body for draft in result.value.drafts) == CANNED_REPLIES["assertive"]
    assert all(draft.subject == "Re: Launch plan" for draft in result.value.drafts)


@pytest.mark.asyncio
async def test_missing_subject_uses_default_reply_subject() -> None:
    backend = StubBackend("not json")
    service, _ = _service(backend)

    result = await service.draft(_thread(subject=None))

    assert result.value.drafts[0].subject == "Re: Email Thread"


@pytest.mark.asyncio
async def test_signature_is_appended_to_every_body() -> None:
    backend = StubBackend(json.dumps({"drafts": DRAFT_ITEMS}))
    service, _ = _service(backend)

    result = await service.draft(_thread(), signature="Cheers,\nAlex")

    assert all(draft.body.endswith("Cheers,\nAlex") for draft in result.value.drafts)


@pytest.mark.asyncio
async def test_remote_drafts_are_validated_like_local_ones() -> None:
    provider = StubProvider(DRAFT_ITEMS)
    backend = StubBackend(status=CapabilityStatus.UNAVAILABLE)
    service, _ = _service(backend, provider)

    result = await service.draft(
        _thread(), tone="formal", mode=ProcessingMode.HYBRID, credentials=CREDENTIALS
    )

    assert result.used_fallback_provider
    assert result.value.warning is None
    assert provider.calls[0]["tone"] == "formal"
    assert provider.calls[0]["context"].questions
    assert backend.sessions == []


@pytest.mark.asyncio
async def test_incomplete_remote_drafts_fall_back_with_remote_warning() -> None:
    provider = StubProvider(DRAFT_ITEMS[:2])
    service, _ = _service(StubBackend(status=CapabilityStatus.UNAVAILABLE), provider)

    result = await service.draft(_thread(), mode=ProcessingMode.HYBRID, credentials=CREDENTIALS)

    assert result.value.warning == REMOTE_FALLBACK_WARNING
    assert len(result.value.drafts) == 3


@pytest.mark.asyncio
async def test_unusable_remote_response_falls_back() -> None:
    provider = StubProvider(error=ProviderResponseError("anthropic", "drafts array not found"))
    service, _ = _service(StubBackend(status=CapabilityStatus.UNAVAILABLE), provider)

    result = await service.draft(_thread(), mode=ProcessingMode.HYBRID, credentials=CREDENTIALS)

    assert result.value.warning == REMOTE_FALLBACK_WARNING
    assert result.used_fallback_provider


@pytest.mark.asyncio
async def test_remote_http_errors_propagate() -> None:
    provider = StubProvider(
        error=RemoteProviderError("anthropic", "Anthropic API error: 401 Unauthorized", status_code=401)
    )
    service, _ = _service(StubBackend(status=CapabilityStatus.UNAVAILABLE), provider)

    with pytest.raises(RemoteProviderError) as excinfo:
        await service.draft(_thread(), mode=ProcessingMode.HYBRID, credentials=CREDENTIALS)

    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_downloading_generator_is_reported() -> None:
    service, _ = _service(StubBackend(status=CapabilityStatus.DOWNLOADING))

    with pytest.raises(OperationError) as excinfo:
        await service.draft(_thread())

    assert excinfo.value.kind is ErrorKind.CAPABILITY_DOWNLOADING
