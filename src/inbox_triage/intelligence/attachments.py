"""On-device attachment analysis; attachment content never leaves the device."""

from __future__ import annotations

import logging

from inbox_triage.capabilities.registry import CapabilityRegistry
from inbox_triage.capabilities.sessions import SessionManager
from inbox_triage.core.config import LimitSettings
from inbox_triage.core.interfaces import (
    AttachmentResolver,
    CapabilityBackend,
    CapabilityError,
    OperationError,
)
from inbox_triage.core.models import (
    AnalysisType,
    Attachment,
    AttachmentAnalysis,
    AttachmentKind,
    CapabilityKind,
    ErrorKind,
    Ok,
    SessionKey,
)

from .content import ContentPreparer
from .prompts import (
    IMAGE_SYSTEM_PROMPTS,
    build_attachment_summary_input,
    build_image_prompt,
)
from .routing import require_local
from .summarizer import TLDR_CONFIG

LOGGER = logging.getLogger(__name__)

DOCUMENT_KINDS = frozenset({AttachmentKind.PDF, AttachmentKind.DOCX, AttachmentKind.XLSX})


class AttachmentService:
    """Describe images with the vision capability and documents with the summarizer."""

    def __init__(
        self,
        backend: CapabilityBackend,
        registry: CapabilityRegistry,
        sessions: SessionManager,
        resolver: AttachmentResolver | None,
        *,
        limits: LimitSettings | None = None,
    ) -> None:
        self._backend = backend
        self._registry = registry
        self._sessions = sessions
        self._resolver = resolver
        self._limits = limits or LimitSettings()
        self._preparer = ContentPreparer(self._limits)

    async def analyze(
        self,
        attachment: Attachment,
        *,
        analysis_type: AnalysisType = AnalysisType.GENERAL,
        context: str = "",
    ) -> Ok[AttachmentAnalysis]:
        """Return a description of ``attachment``."""
        resolver = self._require_resolver()
        if attachment.kind is AttachmentKind.IMAGE:
            description = await self._describe_image(
                resolver, attachment, analysis_type, context
            )
        elif attachment.kind in DOCUMENT_KINDS:
            analysis_type = AnalysisType.GENERAL
            description = await self._summarize_document(resolver, attachment)
        else:
            raise OperationError(
                ErrorKind.UNKNOWN, f"Unsupported attachment type: {attachment.kind}"
            )
        return Ok(
            AttachmentAnalysis(
                name=attachment.name,
                kind=attachment.kind,
                analysis_type=analysis_type,
                description=description,
            )
        )

    def _require_resolver(self) -> AttachmentResolver:
        if self._resolver is None:
            raise OperationError(
                ErrorKind.CAPABILITY_UNAVAILABLE,
                "Attachment content resolver is not configured",
            )
        return self._resolver

    async def _describe_image(
        self,
        resolver: AttachmentResolver,
        attachment: Attachment,
        analysis_type: AnalysisType,
        context: str,
    ) -> str:
        status = await self._registry.status_for(CapabilityKind.ANALYZE_IMAGE)
        require_local(CapabilityKind.ANALYZE_IMAGE, status)

        image = await resolver.fetch(attachment.source_ref)
        config = {
            "system_prompt": IMAGE_SYSTEM_PROMPTS[analysis_type],
            "analysis_type": analysis_type.value,
        }
        key = SessionKey.for_config(CapabilityKind.ANALYZE_IMAGE, config)
        async with self._sessions.session(
            key, lambda: self._backend.create(CapabilityKind.ANALYZE_IMAGE, config)
        ) as session:
            raw = await session.invoke(
                build_image_prompt(analysis_type, context), image=image
            )
        description = raw.strip()
        if not description:
            raise CapabilityError("Image analysis session failed: empty response")
        return description

    async def _summarize_document(
        self, resolver: AttachmentResolver, attachment: Attachment
    ) -> str:
        content = await resolver.extract_text(attachment)
        if content is None:
            LOGGER.info("No text extracted from %s", attachment.name)
            return (
                f"{attachment.name} ({attachment.kind.value.upper()}) - "
                "No readable text could be extracted."
            )
        content = content.strip()
        if len(content) < self._limits.min_summary_chars:
            return f"{attachment.name} - Content too short to summarize effectively"

        status = await self._registry.status_for(CapabilityKind.SUMMARIZE)
        require_local(CapabilityKind.SUMMARIZE, status)

        contextual = build_attachment_summary_input(
            attachment.name, attachment.kind.value, content
        )
        key = SessionKey.for_config(CapabilityKind.SUMMARIZE, TLDR_CONFIG)
        async with self._sessions.session(
            key,
            lambda: self._backend.create(CapabilityKind.SUMMARIZE, TLDR_CONFIG),
            keep_warm=True,
        ) as session:
            raw = await session.invoke(self._preparer.fit_for_device(contextual))
        summary = raw.strip()
        if not summary:
            raise CapabilityError("summarize session failed: empty response")
        return summary


__all__ = ["AttachmentService", "DOCUMENT_KINDS"]
