"""Thread summaries from the local summarizer with remote and heuristic fallbacks."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from inbox_triage.capabilities.registry import CapabilityRegistry
from inbox_triage.capabilities.sessions import SessionManager
from inbox_triage.core.config import LimitSettings
from inbox_triage.core.interfaces import (
    CapabilityBackend,
    CapabilityError,
    OperationError,
)
from inbox_triage.core.models import (
    CapabilityKind,
    ErrorKind,
    Ok,
    OperationKind,
    ProcessingMode,
    RemoteCredentials,
    SessionKey,
    Summary,
    Thread,
)

from .content import (
    ContentPreparer,
    parse_key_points,
    parse_summary_text,
    prepare_for_remote,
)
from .fallback import extract_key_points
from .policy import FallbackPolicy
from .routing import ProviderFactory, choose_route

LOGGER = logging.getLogger(__name__)

TLDR_CONFIG: Mapping[str, Any] = {
    "type": "tldr",
    "format": "plain-text",
    "length": "short",
}
KEY_POINTS_CONFIG: Mapping[str, Any] = {
    "type": "key-points",
    "format": "plain-text",
    "length": "short",
}


class SummaryService:
    """Summarise threads on-device, falling back to a remote provider in hybrid mode."""

    def __init__(
        self,
        backend: CapabilityBackend,
        registry: CapabilityRegistry,
        sessions: SessionManager,
        *,
        provider_factory: ProviderFactory,
        limits: LimitSettings | None = None,
    ) -> None:
        self._backend = backend
        self._registry = registry
        self._sessions = sessions
        self._provider_factory = provider_factory
        self._limits = limits or LimitSettings()
        self._policy = FallbackPolicy(self._limits)
        self._preparer = ContentPreparer(self._limits)

    async def summarize(
        self,
        thread: Thread,
        *,
        mode: ProcessingMode = ProcessingMode.DEVICE_ONLY,
        credentials: RemoteCredentials | None = None,
        prefer_remote: bool = False,
    ) -> Ok[Summary]:
        """Return a TL;DR and key points for ``thread``."""
        text = self._preparer.flatten(thread)
        minimum = self._limits.min_summary_chars
        if len(text.strip()) < minimum:
            raise OperationError(
                ErrorKind.CONTENT_TOO_SHORT,
                f"Email content too short to summarize (minimum {minimum} characters)",
            )

        status = await self._registry.status_for(CapabilityKind.SUMMARIZE)
        route = choose_route(
            self._policy,
            OperationKind.SUMMARIZE,
            mode,
            status,
            len(text),
            credentials=credentials,
            provider_factory=self._provider_factory,
            prefer_remote=prefer_remote,
        )

        if route.provider is not None and route.credentials is not None:
            payload = prepare_for_remote(thread)
            summary = await route.provider.summarize(payload.content, route.credentials)
            return Ok(summary, used_fallback_provider=True)

        local_text = self._preparer.fit_for_device(text)
        if len(local_text) < len(text):
            LOGGER.warning(
                "Thread of %d chars truncated to %d for on-device summary",
                len(text),
                len(local_text),
            )
        summary_text = await self._tldr(local_text)
        key_points = await self._key_points(local_text)
        return Ok(Summary(summary=summary_text, key_points=tuple(key_points)))

    async def _tldr(self, text: str) -> str:
        key = SessionKey.for_config(CapabilityKind.SUMMARIZE, TLDR_CONFIG)
        async with self._sessions.session(
            key,
            lambda: self._backend.create(CapabilityKind.SUMMARIZE, TLDR_CONFIG),
            keep_warm=True,
        ) as session:
            raw = await session.invoke(text)
        summary, _ = parse_summary_text(raw)
        summary = summary or raw.strip()
        if not summary:
            raise CapabilityError("summarize session failed: empty response")
        return summary

    async def _key_points(self, text: str) -> list[str]:
        key = SessionKey.for_config(CapabilityKind.SUMMARIZE, KEY_POINTS_CONFIG)
        try:
            async with self._sessions.session(
                key,
                lambda: self._backend.create(CapabilityKind.SUMMARIZE, KEY_POINTS_CONFIG),
                keep_warm=True,
            ) as session:
                raw = await session.invoke(text)
            points = parse_key_points(raw)
        except (OperationError, CapabilityError) as exc:
            LOGGER.warning("Key-points summarizer failed, using heuristic extraction: %s", exc)
            points = []
        return points or extract_key_points(text)


__all__ = ["KEY_POINTS_CONFIG", "SummaryService", "TLDR_CONFIG"]
