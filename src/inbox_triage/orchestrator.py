"""Single entry point that routes operation requests to the services."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from inbox_triage.capabilities.ollama import OllamaBackend
from inbox_triage.capabilities.registry import CapabilityRegistry
from inbox_triage.capabilities.sessions import SessionManager
from inbox_triage.core.config import AppSettings, load_app_settings
from inbox_triage.core.interfaces import (
    AttachmentResolver,
    CapabilityBackend,
    OperationError,
    RemoteProvider,
)
from inbox_triage.core.models import (
    CapabilityKind,
    CapabilityStatus,
    Err,
    ErrorKind,
    Ok,
    OperationKind,
    OperationRequest,
    OperationResult,
    ProcessingMode,
)
from inbox_triage.core.sanitizer import error_result, sanitize_error
from inbox_triage.intelligence.attachments import AttachmentService
from inbox_triage.intelligence.content import flatten
from inbox_triage.intelligence.drafter import DraftService
from inbox_triage.intelligence.drafts import DraftPipeline
from inbox_triage.intelligence.remote import get_provider
from inbox_triage.intelligence.summarizer import SummaryService
from inbox_triage.intelligence.translator import TranslationService

LOGGER = logging.getLogger(__name__)


class Orchestrator:
    """Wires the registry, session manager, and services behind :meth:`run`."""

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        backend: CapabilityBackend | None = None,
        resolver: AttachmentResolver | None = None,
        registry: CapabilityRegistry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Build the default stack; ``transport`` is shared by every HTTP client."""
        self._settings = settings or load_app_settings()
        self._transport = transport
        self._backend = backend or OllamaBackend(
            self._settings.capability, transport=transport
        )
        self._registry = registry or CapabilityRegistry(
            self._backend,
            required=_required_kinds(self._settings.capability.required),
            interval_seconds=self._settings.polling.interval_seconds,
            auto_poll=self._settings.polling.enabled,
        )
        self._sessions = SessionManager()
        limits = self._settings.limits
        operation = self._settings.operation

        self.summaries = SummaryService(
            self._backend,
            self._registry,
            self._sessions,
            provider_factory=self._provider,
            limits=limits,
        )
        self.drafts = DraftService(
            self._backend,
            self._registry,
            self._sessions,
            provider_factory=self._provider,
            limits=limits,
            pipeline=DraftPipeline(
                invoke_timeout=operation.timeout_seconds * operation.draft_invoke_share
            ),
        )
        self.attachments = AttachmentService(
            self._backend, self._registry, self._sessions, resolver, limits=limits
        )
        self.translations = TranslationService(
            self._backend, self._registry, self._sessions, limits=limits
        )

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    async def __aenter__(self) -> Orchestrator:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def start(self) -> None:
        """Probe every capability once and keep polling the required ones."""
        await self._registry.poll()
        if self._settings.polling.enabled and not self._registry.all_required_ready():
            self._registry.start()

    async def close(self) -> None:
        """Stop polling and destroy every cached session."""
        await self._registry.stop()
        await self._sessions.release_all()

    def status(self) -> dict[CapabilityKind, CapabilityStatus]:
        """Return the current capability status snapshot."""
        return self._registry.snapshot()

    async def download(self, kind: CapabilityKind) -> CapabilityStatus:
        """Pull the local model behind ``kind`` and return its refreshed status.

        Probes taken while the pull runs report ``downloading``.
        """
        pull = getattr(self._backend, "pull", None)
        if pull is None:
            raise OperationError(
                ErrorKind.CAPABILITY_UNAVAILABLE,
                f"The local backend cannot download the {kind.value} model",
            )
        self._registry.require(kind)
        try:
            await pull(kind)
        finally:
            await self._registry.poll()
        return self._registry.get(kind)

    async def run(self, request: OperationRequest) -> OperationResult[Any]:
        """Execute ``request`` under the operation deadline and never raise."""
        timeout = self._settings.operation.timeout_seconds
        try:
            return await asyncio.wait_for(self._dispatch(request), timeout=timeout)
        except asyncio.TimeoutError as exc:
            LOGGER.warning("%s timed out after %.1fs", request.kind.value, timeout)
            return Err(kind=ErrorKind.UNKNOWN, message=sanitize_error(exc))
        except OperationError as exc:
            LOGGER.warning("%s failed (%s): %s", request.kind.value, exc.kind.value, exc)
            return error_result(exc)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("%s failed unexpectedly", request.kind.value)
            return error_result(exc)

    async def _dispatch(self, request: OperationRequest) -> Ok[Any]:
        credentials = (
            request.remote_credentials
            if request.processing_mode is ProcessingMode.HYBRID
            else None
        )
        if request.kind is OperationKind.SUMMARIZE:
            return await self.summaries.summarize(
                request.thread,
                mode=request.processing_mode,
                credentials=credentials,
                prefer_remote=request.prefer_remote,
            )
        if request.kind is OperationKind.DRAFT:
            return await self.drafts.draft(
                request.thread,
                tone=request.tone,
                guidance=request.guidance,
                mode=request.processing_mode,
                credentials=credentials,
                prefer_remote=request.prefer_remote,
                signature=request.signature,
            )
        if request.kind is OperationKind.ANALYZE_ATTACHMENT:
            if request.attachment is None:
                raise OperationError(ErrorKind.UNKNOWN, "An attachment is required for analysis")
            return await self.attachments.analyze(
                request.attachment,
                analysis_type=request.analysis_type,
                context=request.text or request.thread.subject or "",
            )
        if request.kind is OperationKind.TRANSLATE:
            text = request.text if request.text is not None else flatten(request.thread)
            return await self.translations.translate(
                text, request.source_language or "", request.target_language or ""
            )
        raise OperationError(ErrorKind.UNKNOWN, f"Unsupported operation: {request.kind}")

    def _provider(self, name: str) -> RemoteProvider:
        return get_provider(name, self._settings.remote, transport=self._transport)


def _required_kinds(names: tuple[str, ...]) -> list[CapabilityKind]:
    kinds: list[CapabilityKind] = []
    for name in names:
        try:
            kinds.append(CapabilityKind(name))
        except ValueError:
            LOGGER.warning("Ignoring unknown required capability %r", name)
    return kinds


__all__ = ["Orchestrator"]
