"""Protocol interfaces for decoupling the core from its collaborators."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from .models import (
    Attachment,
    CapabilityKind,
    CapabilityStatus,
    ErrorKind,
    RemoteCredentials,
    Summary,
    ThreadContext,
)


class OperationError(RuntimeError):
    """Raised when an operation fails with a classified, surfaceable cause."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class CapabilityError(RuntimeError):
    """Raised by a session when the local capability fails to respond as expected."""


class SessionHandle(Protocol):
    """A configured capability instance."""

    async def invoke(self, prompt: str, *, image: bytes | None = None) -> str:
        """Run the capability on ``prompt`` and return raw text."""
        raise NotImplementedError

    def destroy(self) -> None:
        """Release the underlying instance."""
        raise NotImplementedError


class CapabilityBackend(Protocol):
    """Probe and factory for on-device capabilities."""

    async def availability(self, kind: CapabilityKind) -> CapabilityStatus:
        """Report the current readiness of ``kind``."""
        raise NotImplementedError

    async def create(
        self, kind: CapabilityKind, config: Mapping[str, Any]
    ) -> SessionHandle:
        """Create a session for ``kind`` configured with ``config``."""
        raise NotImplementedError


class AttachmentResolver(Protocol):
    """Turns opaque attachment handles into content."""

    async def fetch(self, source_ref: str) -> bytes:
        """Return the raw bytes behind ``source_ref``."""
        raise NotImplementedError

    async def extract_text(self, attachment: Attachment) -> str | None:
        """Return extracted document text, or ``None`` when unsupported."""
        raise NotImplementedError


class RemoteProvider(Protocol):
    """Uniform interface over external HTTP model providers."""

    name: str

    async def summarize(self, text: str, credentials: RemoteCredentials) -> Summary:
        """Summarise ``text`` into a TL;DR and key points."""
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
        """Return the provider's draft objects, not yet validated."""
        raise NotImplementedError


__all__ = [
    "AttachmentResolver",
    "CapabilityBackend",
    "CapabilityError",
    "OperationError",
    "RemoteProvider",
    "SessionHandle",
]
