"""FastAPI application exposing the orchestrator to the side panel."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import asdict
from typing import Any

import httpx
from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.routing import APIRoute
from pydantic import BaseModel, ConfigDict, Field

from inbox_triage.core import AppSettings, configure_logging, load_app_settings
from inbox_triage.core.interfaces import AttachmentResolver, CapabilityBackend
from inbox_triage.core.models import (
    AnalysisType,
    Attachment,
    AttachmentAnalysis,
    AttachmentKind,
    DraftSet,
    Err,
    ErrorKind,
    Message,
    OperationKind,
    OperationRequest,
    OperationResult,
    ProcessingMode,
    RemoteCredentials,
    Summary,
    Thread,
    Translation,
)
from inbox_triage.orchestrator import Orchestrator

LOGGER = logging.getLogger(__name__)


def _camel(name: str) -> str:
    head, *tail = name.split("_")
    return head + "".join(part.title() for part in tail)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=_camel, populate_by_name=True)


class MessagePayload(_CamelModel):
    sender_name: str | None = None
    body: str = ""


class AttachmentPayload(_CamelModel):
    name: str
    kind: str
    size_bytes: int = 0
    source_ref: str


class ThreadPayload(_CamelModel):
    messages: list[MessagePayload] = Field(default_factory=list)
    subject: str | None = None
    attachments: list[AttachmentPayload] = Field(default_factory=list)


class CredentialsPayload(_CamelModel):
    provider: str
    api_key: str = Field(default="", repr=False)


class OperationPayload(_CamelModel):
    thread: ThreadPayload = Field(default_factory=ThreadPayload)
    processing_mode: ProcessingMode = ProcessingMode.DEVICE_ONLY
    remote_credentials: CredentialsPayload | None = None
    prefer_remote: bool = False


class SummarizePayload(OperationPayload):
    pass


class DraftPayload(OperationPayload):
    tone: str = "neutral"
    guidance: str | None = None
    signature: str | None = None


class AttachmentAnalysisPayload(OperationPayload):
    attachment: AttachmentPayload
    analysis_type: AnalysisType = AnalysisType.GENERAL
    context: str | None = None


class TranslatePayload(OperationPayload):
    text: str | None = None
    source_language: str
    target_language: str


def create_app(
    settings: AppSettings | None = None,
    *,
    backend: CapabilityBackend | None = None,
    resolver: AttachmentResolver | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app_settings = settings or load_app_settings()
    configure_logging(app_settings.logging)
    app = FastAPI(title="Inbox Triage")
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    orchestrator = Orchestrator(
        app_settings, backend=backend, resolver=resolver, transport=transport
    )
    app.state.orchestrator = orchestrator

    @app.on_event("startup")
    async def startup_event() -> None:
        """Probe capabilities and begin availability polling."""
        await orchestrator.start()
        LOGGER.info("Capability status: %s", _serialize_status(orchestrator))

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        """Stop polling and release capability sessions."""
        await orchestrator.close()
        LOGGER.info("Orchestrator closed")

    @app.get("/api/status")
    async def status() -> dict[str, Any]:
        """Report the availability of every capability."""
        return {
            "capabilities": _serialize_status(orchestrator),
            "allRequiredReady": orchestrator.registry.all_required_ready(),
        }

    @app.post("/api/summarize")
    async def summarize(payload: SummarizePayload) -> dict[str, Any]:
        """Summarise a thread."""
        request = _build_request(OperationKind.SUMMARIZE, payload)
        return _serialize_result(await orchestrator.run(request))

    @app.post("/api/drafts")
    async def drafts(payload: DraftPayload) -> dict[str, Any]:
        """Generate three reply drafts."""
        request = _build_request(
            OperationKind.DRAFT,
            payload,
            tone=payload.tone,
            guidance=payload.guidance,
            signature=payload.signature,
        )
        return _serialize_result(await orchestrator.run(request))

    @app.post("/api/attachments/analyze")
    async def analyze_attachment(payload: AttachmentAnalysisPayload) -> dict[str, Any]:
        """Describe an image or document attachment on-device."""
        attachment = _to_attachment(payload.attachment)
        if attachment is None:
            return _serialize_result(
                Err(
                    kind=ErrorKind.UNKNOWN,
                    message=f"Unsupported attachment type: {payload.attachment.kind}",
                )
            )
        request = _build_request(
            OperationKind.ANALYZE_ATTACHMENT,
            payload,
            attachment=attachment,
            analysis_type=payload.analysis_type,
            text=payload.context,
        )
        return _serialize_result(await orchestrator.run(request))

    @app.post("/api/translate")
    async def translate(payload: TranslatePayload) -> dict[str, Any]:
        """Translate text, or the flattened thread when no text is given."""
        request = _build_request(
            OperationKind.TRANSLATE,
            payload,
            text=payload.text,
            source_language=payload.source_language,
            target_language=payload.target_language,
        )
        return _serialize_result(await orchestrator.run(request))

    _ensure_route_names(app)
    return app


def _ensure_route_names(app: FastAPI) -> None:
    """Assign names to routes if absent for better URL reversing."""
    for route in app.router.routes:
        if isinstance(route, APIRoute) and route.name is None:
            route.name = route.path_format.replace("/", ":") or "root"


def _build_request(
    kind: OperationKind, payload: OperationPayload, **extra: Any
) -> OperationRequest:
    credentials = None
    if payload.remote_credentials is not None:
        credentials = RemoteCredentials(
            provider=payload.remote_credentials.provider,
            api_key=payload.remote_credentials.api_key,
        )
    return OperationRequest(
        kind=kind,
        thread=_to_thread(payload.thread),
        processing_mode=payload.processing_mode,
        remote_credentials=credentials,
        prefer_remote=payload.prefer_remote,
        **extra,
    )


def _to_thread(payload: ThreadPayload) -> Thread:
    attachments = tuple(
        attachment
        for attachment in (_to_attachment(item) for item in payload.attachments)
        if attachment is not None
    )
    return Thread(
        messages=tuple(
            Message(sender_name=message.sender_name, body=message.body)
            for message in payload.messages
        ),
        subject=payload.subject,
        attachments=attachments,
    )


def _to_attachment(payload: AttachmentPayload) -> Attachment | None:
    try:
        kind = AttachmentKind(payload.kind.strip().lower())
    except ValueError:
        return None
    return Attachment(
        name=payload.name,
        kind=kind,
        size_bytes=payload.size_bytes,
        source_ref=payload.source_ref,
    )


def _serialize_status(orchestrator: Orchestrator) -> dict[str, str]:
    return {kind.value: status.value for kind, status in orchestrator.status().items()}


def _serialize_result(result: OperationResult[Any]) -> dict[str, Any]:
    if isinstance(result, Err):
        return {
            "success": False,
            "error": {"kind": result.kind.value, "message": result.message},
        }
    return {
        "success": True,
        "usedFallbackProvider": result.used_fallback_provider,
        "data": _serialize_value(result.value),
    }


def _serialize_value(value: Any) -> dict[str, Any]:
    if isinstance(value, Summary):
        return {"summary": value.summary, "keyPoints": list(value.key_points)}
    if isinstance(value, DraftSet):
        payload: dict[str, Any] = {
            "drafts": [asdict(draft) for draft in value.drafts],
        }
        if value.warning:
            payload["warning"] = value.warning
        return payload
    if isinstance(value, AttachmentAnalysis):
        return {
            "name": value.name,
            "kind": value.kind.value,
            "analysisType": value.analysis_type.value,
            "description": value.description,
        }
    if isinstance(value, Translation):
        return {
            "text": value.text,
            "sourceLanguage": value.source_language,
            "targetLanguage": value.target_language,
        }
    if isinstance(value, Mapping):
        return dict(value)
    return {"value": value}


__all__ = ["create_app"]
