"""Text translation through warm, per-language-pair translator sessions."""

from __future__ import annotations

import logging

from inbox_triage.capabilities.registry import CapabilityRegistry
from inbox_triage.capabilities.sessions import SessionManager
from inbox_triage.core.config import LimitSettings
from inbox_triage.core.interfaces import CapabilityBackend, CapabilityError, OperationError
from inbox_triage.core.models import (
    CapabilityKind,
    ErrorKind,
    Ok,
    SessionKey,
    Translation,
)

from .content import ContentPreparer
from .routing import require_local

LOGGER = logging.getLogger(__name__)


def translator_key(source_language: str, target_language: str) -> SessionKey:
    return SessionKey.for_config(
        CapabilityKind.TRANSLATE,
        {"source_language": source_language, "target_language": target_language},
    )


class TranslationService:
    """Translate text on-device, reusing one session per language pair."""

    def __init__(
        self,
        backend: CapabilityBackend,
        registry: CapabilityRegistry,
        sessions: SessionManager,
        *,
        limits: LimitSettings | None = None,
    ) -> None:
        self._backend = backend
        self._registry = registry
        self._sessions = sessions
        self._preparer = ContentPreparer(limits or LimitSettings())

    async def translate(
        self, text: str, source_language: str, target_language: str
    ) -> Ok[Translation]:
        """Translate ``text``; a failing session is evicted before the error propagates."""
        source = (source_language or "").strip().lower()
        target = (target_language or "").strip().lower()
        if not text or not text.strip() or not source or not target:
            raise OperationError(
                ErrorKind.CONTENT_TOO_SHORT,
                "Translation needs text plus source and target languages",
            )
        if source == target:
            return Ok(Translation(text=text, source_language=source, target_language=target))

        status = await self._registry.status_for(CapabilityKind.TRANSLATE)
        require_local(CapabilityKind.TRANSLATE, status)

        config = {"source_language": source, "target_language": target}
        async with self._sessions.session(
            translator_key(source, target),
            lambda: self._backend.create(CapabilityKind.TRANSLATE, config),
            keep_warm=True,
        ) as session:
            raw = await session.invoke(self._preparer.fit_for_device(text))
            translated = raw.strip()
            if not translated:
                raise CapabilityError("translate session failed: empty response")
        LOGGER.debug("Translated %d chars %s -> %s", len(text), source, target)
        return Ok(Translation(text=translated, source_language=source, target_language=target))


__all__ = ["TranslationService", "translator_key"]
