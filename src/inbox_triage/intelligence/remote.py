"""HTTP clients for user-supplied remote model providers."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import urljoin

import httpx

from inbox_triage.core.config import RemoteSettings
from inbox_triage.core.interfaces import OperationError, RemoteProvider
from inbox_triage.core.models import (
    ErrorKind,
    RemoteCredentials,
    Summary,
    ThreadContext,
)

from .content import parse_summary_text
from .prompts import (
    SUMMARY_SYSTEM_PROMPT,
    build_reply_prompt,
    build_summary_prompt,
    build_system_prompt,
)

LOGGER = logging.getLogger(__name__)

SUMMARY_MAX_TOKENS = 500
DRAFT_MAX_TOKENS = 2000
REMOTE_TEMPERATURE = 0.7

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")


class RemoteProviderError(OperationError):
    """Raised when a remote provider rejects or fails a request."""

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(ErrorKind.REMOTE_PROVIDER_ERROR, message)
        self.provider = provider
        self.status_code = status_code
        self.detail = detail


class ProviderResponseError(RemoteProviderError):
    """Raised when a provider answers successfully with an unusable body."""


def parse_json_response(content: str) -> Any:
    """Decode ``content`` after stripping an optional markdown code fence."""
    cleaned = content.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", cleaned))
    try:
        return json.loads(cleaned)
    except RecursionError as exc:
        raise ValueError("Response JSON is nested too deeply") from exc


def _require_key(label: str, credentials: RemoteCredentials) -> str:
    key = credentials.api_key.strip() if credentials.api_key else ""
    if not key:
        raise OperationError(ErrorKind.INVALID_CREDENTIALS, f"{label} API key is required")
    return key


class _HttpProvider:
    """Shared request plumbing: retries on transport errors, none on HTTP errors."""

    name = ""
    label = ""

    def __init__(
        self,
        settings: RemoteSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    async def _post(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        last_error: httpx.TransportError | None = None
        response: httpx.Response | None = None
        async with httpx.AsyncClient(
            timeout=self._settings.timeout_seconds, transport=self._transport
        ) as client:
            for attempt in range(self._settings.max_retries + 1):
                try:
                    response = await client.post(
                        url, json=dict(payload), headers=headers, params=params
                    )
                    break
                except httpx.TransportError as exc:
                    last_error = exc
                    LOGGER.warning(
                        "%s request attempt %d failed: %s",
                        self.label,
                        attempt + 1,
                        type(exc).__name__,
                    )

        if response is None:
            message = f"{self.label} API request failed: network error"
            if isinstance(last_error, httpx.TimeoutException):
                message = f"{self.label} API request failed: timed out"
            raise RemoteProviderError(self.name, message) from last_error

        if response.is_error:
            detail = _error_detail(response)
            message = f"{self.label} API error: {response.status_code} {response.reason_phrase}"
            if detail:
                message = f"{message} - {detail}"
            raise RemoteProviderError(
                self.name, message, status_code=response.status_code, detail=detail
            )

        try:
            data = response.json()
        except (ValueError, RecursionError) as exc:
            raise ProviderResponseError(
                self.name, f"Invalid response format from {self.label} API: not JSON"
            ) from exc
        if not isinstance(data, dict):
            raise ProviderResponseError(
                self.name, f"Invalid response format from {self.label} API"
            )
        return data

    def _summary_from(self, content: str) -> Summary:
        summary, key_points = parse_summary_text(content)
        if not summary:
            raise ProviderResponseError(
                self.name, f"Invalid response format from {self.label} API: empty summary"
            )
        return Summary(summary=summary, key_points=tuple(key_points))

    def _drafts_from(self, content: str) -> list[dict[str, Any]]:
        try:
            parsed = parse_json_response(content)
        except ValueError as exc:
            raise ProviderResponseError(
                self.name, f"{self.label} returned malformed JSON drafts"
            ) from exc
        drafts = parsed.get("drafts") if isinstance(parsed, dict) else None
        if not isinstance(drafts, list):
            raise ProviderResponseError(
                self.name, "Invalid JSON structure: drafts array not found"
            )
        return drafts

    def _text_field(self, value: Any, where: str) -> str:
        if not isinstance(value, str) or not value:
            raise ProviderResponseError(
                self.name,
                f"Invalid response format from {self.label} API: {where} is not a string",
            )
        return value


def _error_detail(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except (ValueError, RecursionError):
        return None
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        for field_name in ("message", "type", "status"):
            value = error.get(field_name)
            if isinstance(value, str) and value:
                return value
        return json.dumps(error)
    if isinstance(error, str) and error:
        return error
    return None


class OpenAIProvider(_HttpProvider):
    """Chat Completions API."""

    name = "openai"
    label = "OpenAI"

    async def summarize(self, text: str, credentials: RemoteCredentials) -> Summary:
        key = _require_key(self.label, credentials)
        data = await self._post(
            self._settings.openai_url,
            {
                "model": self._settings.openai_model,
                "messages": [
                    {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                    {"role": "user", "content": build_summary_prompt(text)},
                ],
                "temperature": REMOTE_TEMPERATURE,
                "max_tokens": SUMMARY_MAX_TOKENS,
            },
            headers=self._headers(key),
        )
        return self._summary_from(self._content(data))

    async def generate_drafts(
        self,
        text: str,
        subject: str,
        tone: str,
        guidance: str | None,
        credentials: RemoteCredentials,
        context: ThreadContext | None = None,
    ) -> list[dict[str, Any]]:
        key = _require_key(self.label, credentials)
        data = await self._post(
            self._settings.openai_url,
            {
                "model": self._settings.openai_model,
                "messages": [
                    {"role": "system", "content": build_system_prompt(tone)},
                    {
                        "role": "user",
                        "content": build_reply_prompt(text, subject, tone, guidance, context),
                    },
                ],
                "temperature": REMOTE_TEMPERATURE,
                "max_tokens": DRAFT_MAX_TOKENS,
                "response_format": {"type": "json_object"},
            },
            headers=self._headers(key),
        )
        return self._drafts_from(self._content(data))

    @staticmethod
    def _headers(key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {key}"}

    def _content(self, data: Mapping[str, Any]) -> str:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ProviderResponseError(
                self.name,
                "Invalid response format from OpenAI API: missing or empty choices array",
            )
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        return self._text_field(content, "content")


class AnthropicProvider(_HttpProvider):
    """Messages API."""

    name = "anthropic"
    label = "Anthropic"

    async def summarize(self, text: str, credentials: RemoteCredentials) -> Summary:
        key = _require_key(self.label, credentials)
        data = await self._post(
            self._settings.anthropic_url,
            {
                "model": self._settings.anthropic_model,
                "max_tokens": SUMMARY_MAX_TOKENS,
                "system": SUMMARY_SYSTEM_PROMPT,
                "messages": [{"role": "user", "content": build_summary_prompt(text)}],
            },
            headers=self._headers(key),
        )
        return self._summary_from(self._content(data))

    async def generate_drafts(
        self,
        text: str,
        subject: str,
        tone: str,
        guidance: str | None,
        credentials: RemoteCredentials,
        context: ThreadContext | None = None,
    ) -> list[dict[str, Any]]:
        key = _require_key(self.label, credentials)
        data = await self._post(
            self._settings.anthropic_url,
            {
                "model": self._settings.anthropic_model,
                "max_tokens": DRAFT_MAX_TOKENS,
                "system": build_system_prompt(tone),
                "messages": [
                    {
                        "role": "user",
                        "content": build_reply_prompt(text, subject, tone, guidance, context),
                    }
                ],
            },
            headers=self._headers(key),
        )
        return self._drafts_from(self._content(data))

    def _headers(self, key: str) -> dict[str, str]:
        return {
            "x-api-key": key,
            "anthropic-version": self._settings.anthropic_version,
        }

    def _content(self, data: Mapping[str, Any]) -> str:
        blocks = data.get("content")
        if not isinstance(blocks, list) or not blocks:
            raise ProviderResponseError(
                self.name,
                "Invalid response format from Anthropic API: missing or empty content array",
            )
        first = blocks[0] if isinstance(blocks[0], dict) else {}
        return self._text_field(first.get("text"), "content")


class GoogleProvider(_HttpProvider):
    """Gemini ``generateContent`` API."""

    name = "google"
    label = "Google AI"

    async def summarize(self, text: str, credentials: RemoteCredentials) -> Summary:
        key = _require_key(self.label, credentials)
        data = await self._post(
            self._endpoint(),
            {
                "contents": [
                    {
                        "parts": [
                            {"text": f"{SUMMARY_SYSTEM_PROMPT}\n\n{build_summary_prompt(text)}"}
                        ]
                    }
                ],
                "generationConfig": {
                    "temperature": REMOTE_TEMPERATURE,
                    "maxOutputTokens": SUMMARY_MAX_TOKENS,
                },
            },
            params={"key": key},
        )
        return self._summary_from(self._content(data))

    async def generate_drafts(
        self,
        text: str,
        subject: str,
        tone: str,
        guidance: str | None,
        credentials: RemoteCredentials,
        context: ThreadContext | None = None,
    ) -> list[dict[str, Any]]:
        key = _require_key(self.label, credentials)
        prompt = build_reply_prompt(text, subject, tone, guidance, context)
        data = await self._post(
            self._endpoint(),
            {
                "contents": [{"parts": [{"text": f"{build_system_prompt(tone)}\n\n{prompt}"}]}],
                "generationConfig": {
                    "temperature": REMOTE_TEMPERATURE,
                    "maxOutputTokens": DRAFT_MAX_TOKENS,
                    "responseMimeType": "application/json",
                },
            },
            params={"key": key},
        )
        return self._drafts_from(self._content(data))

    def _endpoint(self) -> str:
        base = self._settings.google_url.rstrip("/")
        return f"{base}/{self._settings.google_model}:generateContent"

    def _content(self, data: Mapping[str, Any]) -> str:
        candidates = data.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            raise ProviderResponseError(
                self.name,
                "Invalid response format from Google AI API: missing or empty candidates array",
            )
        content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
            raise ProviderResponseError(
                self.name,
                "Invalid response format from Google AI API: missing or empty content parts",
            )
        return self._text_field(parts[0].get("text"), "content")


class OllamaProvider(_HttpProvider):
    """Self-hosted Ollama server; the credential is the server's base URL."""

    name = "ollama"
    label = "Ollama"

    async def summarize(self, text: str, credentials: RemoteCredentials) -> Summary:
        data = await self._post(
            self._endpoint(credentials),
            {
                "model": self._settings.ollama_model,
                "stream": False,
                "messages": [
                    {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                    {"role": "user", "content": build_summary_prompt(text)},
                ],
                "options": {
                    "temperature": REMOTE_TEMPERATURE,
                    "num_predict": SUMMARY_MAX_TOKENS,
                },
            },
        )
        return self._summary_from(self._content(data))

    async def generate_drafts(
        self,
        text: str,
        subject: str,
        tone: str,
        guidance: str | None,
        credentials: RemoteCredentials,
        context: ThreadContext | None = None,
    ) -> list[dict[str, Any]]:
        data = await self._post(
            self._endpoint(credentials),
            {
                "model": self._settings.ollama_model,
                "stream": False,
                "format": "json",
                "messages": [
                    {"role": "system", "content": build_system_prompt(tone)},
                    {
                        "role": "user",
                        "content": build_reply_prompt(text, subject, tone, guidance, context),
                    },
                ],
                "options": {
                    "temperature": REMOTE_TEMPERATURE,
                    "num_predict": DRAFT_MAX_TOKENS,
                },
            },
        )
        return self._drafts_from(self._content(data))

    def _endpoint(self, credentials: RemoteCredentials) -> str:
        base_url = credentials.api_key.strip() if credentials.api_key else ""
        if not base_url.startswith(("http://", "https://")):
            raise OperationError(
                ErrorKind.INVALID_CREDENTIALS, "Ollama server URL is required"
            )
        return urljoin(base_url.rstrip("/") + "/", "api/chat")

    def _content(self, data: Mapping[str, Any]) -> str:
        message = data.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        return self._text_field(content, "message content")


PROVIDERS: dict[str, type[_HttpProvider]] = {
    OpenAIProvider.name: OpenAIProvider,
    AnthropicProvider.name: AnthropicProvider,
    GoogleProvider.name: GoogleProvider,
    OllamaProvider.name: OllamaProvider,
}


def get_provider(
    name: str,
    settings: RemoteSettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RemoteProvider:
    """Return the provider registered under ``name``."""
    provider_cls = PROVIDERS.get(name.strip().lower()) if name else None
    if provider_cls is None:
        raise OperationError(
            ErrorKind.INVALID_CREDENTIALS, f"Unknown API provider: {name or '(none)'}"
        )
    provider: RemoteProvider = provider_cls(settings or RemoteSettings(), transport=transport)
    return provider


__all__ = [
    "AnthropicProvider",
    "GoogleProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "PROVIDERS",
    "ProviderResponseError",
    "RemoteProviderError",
    "get_provider",
    "parse_json_response",
]
