"""Core domain models used across the orchestration layer."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")

DRAFT_COUNT = 3
DRAFT_TYPE_MAX = 50
DRAFT_SUBJECT_MAX = 100
DRAFT_BODY_MIN = 10
DRAFT_BODY_MAX = 1500
KEY_POINTS_MAX = 5
TRUNCATION_MARKER = "[Content truncated for processing...]"


class CapabilityKind(str, Enum):
    """Pluggable processing functions a backend may offer."""

    SUMMARIZE = "summarize"
    GENERATE = "generate"
    TRANSLATE = "translate"
    ANALYZE_IMAGE = "analyzeImage"


class CapabilityStatus(str, Enum):
    """Readiness of a capability as reported by its availability probe."""

    READY = "ready"
    DOWNLOADING = "downloading"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"
    ERROR = "error"


class ProcessingMode(str, Enum):
    """Whether remote providers may ever receive thread content."""

    DEVICE_ONLY = "deviceOnly"
    HYBRID = "hybrid"


class FallbackTrigger(str, Enum):
    """Reason a fallback decision was taken."""

    NONE = "none"
    MODEL_UNAVAILABLE = "modelUnavailable"
    MODEL_DOWNLOADING = "modelDownloading"
    CONTENT_TOO_LARGE = "contentTooLarge"
    TOKEN_LIMIT_EXCEEDED = "tokenLimitExceeded"


class OperationKind(str, Enum):
    """Operations a collaborator can request for a thread."""

    SUMMARIZE = "summarize"
    DRAFT = "draft"
    ANALYZE_ATTACHMENT = "analyzeAttachment"
    TRANSLATE = "translate"


class AttachmentKind(str, Enum):
    """Attachment formats the core knows how to describe."""

    IMAGE = "image"
    PDF = "pdf"
    DOCX = "docx"
    XLSX = "xlsx"


class AnalysisType(str, Enum):
    """Flavours of image analysis."""

    GENERAL = "general"
    OCR = "ocr"
    CHART = "chart"
    CONTEXT = "context"


class ErrorKind(str, Enum):
    """Closed taxonomy of failures surfaced to collaborators."""

    CAPABILITY_UNAVAILABLE = "CapabilityUnavailable"
    CAPABILITY_DOWNLOADING = "CapabilityDownloading"
    CONTENT_TOO_SHORT = "ContentTooShort"
    CONTENT_TOO_LARGE = "ContentTooLarge"
    SCHEMA_INVALID = "SchemaInvalid"
    REMOTE_PROVIDER_ERROR = "RemoteProviderError"
    INVALID_CREDENTIALS = "InvalidCredentials"
    UNKNOWN = "Unknown"


@dataclass(frozen=True, slots=True)
class Message:
    """Single message of a thread."""

    sender_name: str | None
    body: str
    timestamp: datetime | None = None


@dataclass(frozen=True, slots=True)
class Attachment:
    """Attachment metadata; bytes are resolved on demand through ``source_ref``."""

    name: str
    kind: AttachmentKind
    size_bytes: int
    source_ref: str


@dataclass(frozen=True, slots=True)
class Thread:
    """Ordered messages, subject, and attachments processed in one operation."""

    messages: tuple[Message, ...]
    subject: str | None = None
    attachments: tuple[Attachment, ...] = ()


@dataclass(slots=True)
class Capability:
    """Availability record for one capability kind."""

    kind: CapabilityKind
    status: CapabilityStatus


@dataclass(frozen=True, slots=True)
class StatusChange:
    """Edge-triggered notification emitted by the capability registry."""

    kind: CapabilityKind
    previous: CapabilityStatus
    current: CapabilityStatus


@dataclass(frozen=True, slots=True)
class FallbackDecision:
    """Outcome of the local-versus-remote policy."""

    should_use_remote: bool
    reason: str
    trigger: FallbackTrigger = FallbackTrigger.NONE
    estimated_tokens: int | None = None
    token_limit: int | None = None


@dataclass(frozen=True, slots=True)
class SessionKey:
    """Identity of a capability session: kind plus a hash of its configuration."""

    kind: CapabilityKind
    config_hash: str

    @classmethod
    def for_config(
        cls, kind: CapabilityKind, config: Mapping[str, Any]
    ) -> SessionKey:
        """Build a key whose hash is stable for equal configurations."""
        canonical = json.dumps(dict(config), sort_keys=True, default=str)
        digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]
        return cls(kind=kind, config_hash=digest)


@dataclass(frozen=True, slots=True)
class Draft:
    """One reply draft."""

    type: str
    subject: str
    body: str


@dataclass(frozen=True, slots=True)
class DraftSet:
    """Exactly three drafts, optionally flagged as synthesised."""

    drafts: tuple[Draft, ...]
    warning: str | None = None

    def __post_init__(self) -> None:
        if len(self.drafts) != DRAFT_COUNT:
            msg = f"DraftSet requires exactly {DRAFT_COUNT} drafts, got {len(self.drafts)}"
            raise ValueError(msg)


@dataclass(frozen=True, slots=True)
class Summary:
    """TL;DR text with up to five key points."""

    summary: str
    key_points: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ThreadContext:
    """Signals pulled from a thread to steer reply drafting."""

    key_points: tuple[str, ...] = ()
    questions: tuple[str, ...] = ()
    action_items: tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not (self.key_points or self.questions or self.action_items)


@dataclass(frozen=True, slots=True)
class AttachmentAnalysis:
    """Description produced for a single attachment."""

    name: str
    kind: AttachmentKind
    analysis_type: AnalysisType
    description: str


@dataclass(frozen=True, slots=True)
class Translation:
    """Translated text and the language pair used."""

    text: str
    source_language: str
    target_language: str


@dataclass(frozen=True, slots=True)
class RemoteCredentials:
    """User-supplied provider selection and secret."""

    provider: str
    api_key: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class OperationRequest:
    """Request submitted by a collaborator."""

    kind: OperationKind
    thread: Thread
    processing_mode: ProcessingMode = ProcessingMode.DEVICE_ONLY
    tone: str = "neutral"
    guidance: str | None = None
    remote_credentials: RemoteCredentials | None = None
    prefer_remote: bool = False
    signature: str | None = None
    attachment: Attachment | None = None
    analysis_type: AnalysisType = AnalysisType.GENERAL
    text: str | None = None
    source_language: str | None = None
    target_language: str | None = None


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful operation result."""

    value: T
    used_fallback_provider: bool = False

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Err:
    """Failed operation result carrying a branchable kind and a safe message."""

    kind: ErrorKind
    message: str

    @property
    def ok(self) -> bool:
        return False


OperationResult = Union[Ok[T], Err]


__all__ = [
    "TRUNCATION_MARKER",
    "AnalysisType",
    "Attachment",
    "AttachmentAnalysis",
    "AttachmentKind",
    "Capability",
    "CapabilityKind",
    "CapabilityStatus",
    "DRAFT_BODY_MAX",
    "DRAFT_BODY_MIN",
    "DRAFT_COUNT",
    "DRAFT_SUBJECT_MAX",
    "DRAFT_TYPE_MAX",
    "Draft",
    "DraftSet",
    "Err",
    "ErrorKind",
    "FallbackDecision",
    "FallbackTrigger",
    "KEY_POINTS_MAX",
    "Message",
    "Ok",
    "OperationKind",
    "OperationRequest",
    "OperationResult",
    "ProcessingMode",
    "RemoteCredentials",
    "SessionKey",
    "StatusChange",
    "Summary",
    "Thread",
    "ThreadContext",
    "Translation",
]
