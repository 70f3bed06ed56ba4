"""Summaries, reply drafts, attachment analysis, and translation services."""

from inbox_triage.core.interfaces import CapabilityError, OperationError

from .attachments import AttachmentService
from .drafter import DraftService
from .drafts import DraftPipeline
from .policy import FallbackPolicy
from .remote import ProviderResponseError, RemoteProviderError, get_provider
from .summarizer import SummaryService
from .translator import TranslationService

__all__ = [
    "AttachmentService",
    "CapabilityError",
    "DraftPipeline",
    "DraftService",
    "FallbackPolicy",
    "OperationError",
    "ProviderResponseError",
    "RemoteProviderError",
    "SummaryService",
    "TranslationService",
    "get_provider",
]
