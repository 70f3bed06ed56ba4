"""Reply drafting service built on the structured draft pipeline."""

from __future__ import annotations

import logging

from inbox_triage.capabilities.registry import CapabilityRegistry
from inbox_triage.capabilities.sessions import SessionManager
from inbox_triage.core.config import LimitSettings
from inbox_triage.core.interfaces import CapabilityBackend, OperationError
from inbox_triage.core.models import (
    CapabilityKind,
    DraftSet,
    ErrorKind,
    Ok,
    OperationKind,
    ProcessingMode,
    RemoteCredentials,
    SessionKey,
    Thread,
    ThreadContext,
)

from .content import ContentPreparer, extract_thread_context, prepare_for_remote
from .drafts import (
    DEFAULT_SUBJECT,
    REMOTE_FALLBACK_WARNING,
    DraftPipeline,
    PipelineOutcome,
    resolve_payload,
)
from .fallback import DEFAULT_TONE
from .policy import FallbackPolicy
from .prompts import build_system_prompt
from .remote import ProviderResponseError
from .routing import ProviderFactory, choose_route

LOGGER = logging.getLogger(__name__)


class DraftService:
    """Generate exactly three reply drafts for a thread."""

    def __init__(
        self,
        backend: CapabilityBackend,
        registry: CapabilityRegistry,
        sessions: SessionManager,
        *,
        provider_factory: ProviderFactory,
        limits: LimitSettings | None = None,
        pipeline: DraftPipeline | None = None,
    ) -> None:
        self._backend = backend
        self._registry = registry
        self._sessions = sessions
        self._provider_factory = provider_factory
        self._limits = limits or LimitSettings()
        self._policy = FallbackPolicy(self._limits)
        self._preparer = ContentPreparer(self._limits)
        self._pipeline = pipeline or DraftPipeline()

    async def draft(
        self,
        thread: Thread,
        *,
        tone: str = DEFAULT_TONE,
        guidance: str | None = None,
        mode: ProcessingMode = ProcessingMode.DEVICE_ONLY,
        credentials: RemoteCredentials | None = None,
        prefer_remote: bool = False,
        signature: str | None = None,
    ) -> Ok[DraftSet]:
        """Return three drafts; malformed model output resolves to canned drafts."""
        text = self._preparer.flatten(thread)
        minimum = self._limits.min_draft_chars
        if len(text.strip()) < minimum:
            raise OperationError(
                ErrorKind.CONTENT_TOO_SHORT,
                f"Email content too short to generate replies (minimum {minimum} characters)",
            )

        tone = (tone or DEFAULT_TONE).strip().lower()
        subject = thread.subject or DEFAULT_SUBJECT
        context = extract_thread_context(text)

        status = await self._registry.status_for(CapabilityKind.GENERATE)
        route = choose_route(
            self._policy,
            OperationKind.DRAFT,
            mode,
            status,
            len(text),
            credentials=credentials,
            provider_factory=self._provider_factory,
            prefer_remote=prefer_remote,
        )

        if route.provider is not None and route.credentials is not None:
            payload = prepare_for_remote(thread)
            try:
                items = await route.provider.generate_drafts(
                    payload.content,
                    subject,
                    tone,
                    guidance,
                    route.credentials,
                    context,
                )
                outcome = resolve_payload(
                    {"drafts": items},
                    subject=subject,
                    tone=tone,
                    signature=signature,
                    warning=REMOTE_FALLBACK_WARNING,
                )
            except ProviderResponseError as exc:
                LOGGER.warning("Remote draft response unusable: %s", exc)
                outcome = resolve_payload(
                    None,
                    subject=subject,
                    tone=tone,
                    signature=signature,
                    warning=REMOTE_FALLBACK_WARNING,
                )
            return Ok(outcome.draft_set, used_fallback_provider=True)

        outcome = await self._draft_locally(
            self._preparer.fit_for_device(text),
            subject=subject,
            tone=tone,
            guidance=guidance,
            context=context,
            signature=signature,
        )
        return Ok(outcome.draft_set)

    async def _draft_locally(
        self,
        text: str,
        *,
        subject: str,
        tone: str,
        guidance: str | None,
        context: ThreadContext,
        signature: str | None,
    ) -> PipelineOutcome:
        config = {"system_prompt": build_system_prompt(tone), "tone": tone}
        key = SessionKey.for_config(CapabilityKind.GENERATE, config)
        async with self._sessions.session(
            key, lambda: self._backend.create(CapabilityKind.GENERATE, config)
        ) as session:
            outcome = await self._pipeline.run(
                lambda prompt: session.invoke(prompt.user),
                thread_text=text,
                subject=subject,
                tone=tone,
                guidance=guidance,
                context=context,
                signature=signature,
            )
        if outcome.used_synthetic:
            LOGGER.info("Drafts synthesised after %s", " -> ".join(s.value for s in outcome.stages))
        return outcome


__all__ = ["DraftService"]
