"""On-device capability backend served by a local Ollama daemon."""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin

import httpx

from inbox_triage.core.config import CapabilitySettings
from inbox_triage.core.interfaces import CapabilityError
from inbox_triage.core.models import CapabilityKind, CapabilityStatus
from inbox_triage.intelligence.prompts import build_session_instructions

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class OllamaSession:
    """One configured capability instance backed by ``/api/generate``."""

    settings: CapabilitySettings
    kind: CapabilityKind
    model: str
    instructions: str | None
    temperature: float
    transport: httpx.AsyncBaseTransport | None = None
    destroyed: bool = field(default=False, init=False)

    async def invoke(self, prompt: str, *, image: bytes | None = None) -> str:
        """Send ``prompt`` (and optional image) to the model and return its text."""
        if self.destroyed:
            raise CapabilityError(f"{self.kind.value} session failed: already destroyed")

        payload: dict[str, object] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": self.temperature},
        }
        if self.instructions:
            payload["system"] = self.instructions
        if image is not None:
            payload["images"] = [base64.b64encode(image).decode("ascii")]

        endpoint = _resolve_endpoint(self.settings.base_url, "api/generate")
        try:
            async with httpx.AsyncClient(
                transport=self.transport, timeout=self.settings.timeout_seconds
            ) as client:
                response = await client.post(endpoint, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise CapabilityError(
                f"{self.kind.value} session failed: HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise CapabilityError(
                f"{self.kind.value} session failed: connection error"
            ) from exc
        except json.JSONDecodeError as exc:
            raise CapabilityError("Local model returned invalid JSON") from exc

        result = data.get("response") if isinstance(data, dict) else None
        if not isinstance(result, str):
            raise CapabilityError("Local model response missing 'response' field")
        return result

    def destroy(self) -> None:
        self.destroyed = True


class OllamaBackend:
    """Availability probe and session factory over the Ollama HTTP API."""

    def __init__(
        self,
        settings: CapabilitySettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._pulling: set[str] = set()

    @property
    def provider_id(self) -> str:
        return f"ollama:{self._settings.model}"

    def model_for(self, kind: CapabilityKind) -> str:
        if kind is CapabilityKind.ANALYZE_IMAGE and self._settings.vision_model:
            return self._settings.vision_model
        return self._settings.model

    async def availability(self, kind: CapabilityKind) -> CapabilityStatus:
        """Map the daemon's installed models onto a capability status."""
        model = self.model_for(kind)
        if model in self._pulling:
            return CapabilityStatus.DOWNLOADING
        endpoint = _resolve_endpoint(self._settings.base_url, "api/tags")
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self._settings.timeout_seconds
            ) as client:
                response = await client.get(endpoint)
                response.raise_for_status()
                data = response.json()
        except httpx.ConnectError:
            return CapabilityStatus.UNAVAILABLE
        except (httpx.HTTPError, json.JSONDecodeError) as exc:
            LOGGER.warning("Ollama availability check failed: %s", exc)
            return CapabilityStatus.ERROR

        installed = {
            entry.get("name")
            for entry in data.get("models", [])
            if isinstance(entry, dict)
        }
        if _model_installed(model, installed):
            return CapabilityStatus.READY
        return CapabilityStatus.UNAVAILABLE

    async def create(
        self, kind: CapabilityKind, config: Mapping[str, Any]
    ) -> OllamaSession:
        """Return a session whose system prompt reflects ``config``."""
        temperature = float(config.get("temperature", self._settings.temperature))
        return OllamaSession(
            settings=self._settings,
            kind=kind,
            model=self.model_for(kind),
            instructions=build_session_instructions(kind, config),
            temperature=temperature,
            transport=self._transport,
        )

    async def pull(self, kind: CapabilityKind = CapabilityKind.GENERATE) -> None:
        """Download the model for ``kind``; probes report ``downloading`` meanwhile."""
        model = self.model_for(kind)
        endpoint = _resolve_endpoint(self._settings.base_url, "api/pull")
        self._pulling.add(model)
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=None
            ) as client:
                async with client.stream(
                    "POST", endpoint, json={"model": model}
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if line:
                            LOGGER.debug("Model %s pull progress: %s", model, line)
        except httpx.HTTPError as exc:
            raise CapabilityError(f"Downloading model {model} failed") from exc
        finally:
            self._pulling.discard(model)


def _model_installed(model: str, installed: set[Any]) -> bool:
    if model in installed:
        return True
    return ":" not in model and f"{model}:latest" in installed


def _resolve_endpoint(base_url: str, path: str) -> str:
    trimmed = base_url.rstrip("/") + "/"
    return urljoin(trimmed, path)


__all__ = ["OllamaBackend", "OllamaSession"]
