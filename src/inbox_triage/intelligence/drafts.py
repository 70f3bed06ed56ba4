"""Structured draft output: prompt, extract, validate, and fall back.

Each request moves through ``BuildPrompt -> Invoke -> ExtractJSON ->
ValidateSchema`` and ends in either ``Accept`` or ``SynthesizeFallback``.
Every transition is a plain function so it can be exercised on its own;
:class:`DraftPipeline` only sequences them and records the path taken.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from inbox_triage.core.models import (
    DRAFT_BODY_MAX,
    DRAFT_BODY_MIN,
    DRAFT_COUNT,
    DRAFT_SUBJECT_MAX,
    DRAFT_TYPE_MAX,
    Draft,
    DraftSet,
    ThreadContext,
)

from .fallback import CANNED_TYPES, canned_replies
from .prompts import build_reply_prompt, build_system_prompt

LOGGER = logging.getLogger(__name__)

FALLBACK_WARNING = "AI response was incomplete, using fallback drafts"
REMOTE_FALLBACK_WARNING = "External API response was incomplete, using fallback drafts"
DEFAULT_SUBJECT = "Email Thread"

_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_HTML_TAG = re.compile(r"<[^>]*>")
_JS_URL = re.compile(r"javascript:", re.IGNORECASE)
_REPLY_PREFIX = re.compile(r"^\s*re\s*:", re.IGNORECASE)


class PipelineStage(str, Enum):
    """States of the draft generation pipeline."""

    BUILD_PROMPT = "BuildPrompt"
    INVOKE = "Invoke"
    EXTRACT_JSON = "ExtractJSON"
    VALIDATE_SCHEMA = "ValidateSchema"
    ACCEPT = "Accept"
    SYNTHESIZE_FALLBACK = "SynthesizeFallback"


@dataclass(frozen=True, slots=True)
class DraftPrompt:
    """System and user turns sent to the generating capability."""

    system: str
    user: str


@dataclass(frozen=True, slots=True)
class PipelineOutcome:
    """Final draft set plus the stages visited and any validation errors."""

    draft_set: DraftSet
    stages: tuple[PipelineStage, ...]
    errors: tuple[str, ...] = ()

    @property
    def used_synthetic(self) -> bool:
        return PipelineStage.SYNTHESIZE_FALLBACK in self.stages


def reply_subject(subject: str | None) -> str:
    """Prefix ``subject`` with ``Re:`` unless it already carries one."""
    base = (subject or "").strip() or DEFAULT_SUBJECT
    return base if _REPLY_PREFIX.match(base) else f"Re: {base}"


def build_prompt(
    thread_text: str,
    subject: str,
    tone: str,
    guidance: str | None = None,
    context: ThreadContext | None = None,
) -> DraftPrompt:
    return DraftPrompt(
        system=build_system_prompt(tone),
        user=build_reply_prompt(thread_text, subject, tone, guidance, context),
    )


def extract_json(raw: str) -> dict[str, Any]:
    """Parse the substring between the first ``{`` and the last ``}``."""
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end < start:
        raise ValueError("No JSON object found in response")
    try:
        payload = json.loads(raw[start : end + 1])
    except RecursionError as exc:
        raise ValueError("Response JSON is nested too deeply") from exc
    if not isinstance(payload, dict):
        raise ValueError("Response JSON must be an object")
    return payload


def validate_schema(payload: Any) -> list[str]:
    """Return every schema violation in ``payload``; empty means valid."""
    if not isinstance(payload, dict):
        return ["Response must be a valid JSON object"]
    drafts = payload.get("drafts")
    if not isinstance(drafts, list):
        return ['Response must contain a "drafts" array']
    if len(drafts) != DRAFT_COUNT:
        return [f"Must contain exactly {DRAFT_COUNT} drafts, found {len(drafts)}"]

    errors: list[str] = []
    for index, draft in enumerate(drafts, start=1):
        if not isinstance(draft, dict):
            errors.append(f"Draft {index} must be an object")
            continue
        for field_name in ("type", "subject", "body"):
            value = draft.get(field_name)
            if not isinstance(value, str) or not value.strip():
                errors.append(f'Draft {index} missing or invalid "{field_name}" field')
        draft_type = draft.get("type")
        subject = draft.get("subject")
        body = draft.get("body")
        if isinstance(draft_type, str) and len(draft_type) > DRAFT_TYPE_MAX:
            errors.append(f"Draft {index} type too long (max {DRAFT_TYPE_MAX} chars)")
        if isinstance(subject, str) and len(subject) > DRAFT_SUBJECT_MAX:
            errors.append(
                f"Draft {index} subject too long (max {DRAFT_SUBJECT_MAX} chars)"
            )
        if isinstance(body, str) and len(body) > DRAFT_BODY_MAX:
            errors.append(f"Draft {index} body too long (max {DRAFT_BODY_MAX} chars)")
        if isinstance(body, str) and body.strip() and len(body) < DRAFT_BODY_MIN:
            errors.append(f"Draft {index} body too short (min {DRAFT_BODY_MIN} chars)")
    return errors


def sanitize_field(value: Any, max_length: int) -> str | None:
    """Strip markup and clamp ``value`` to ``max_length`` with an ellipsis."""
    if not isinstance(value, str):
        return None
    cleaned = _SCRIPT_BLOCK.sub("", value)
    cleaned = _HTML_TAG.sub("", cleaned)
    cleaned = _JS_URL.sub("", cleaned).strip()
    if not cleaned:
        return None
    if len(cleaned) > max_length:
        return cleaned[: max_length - 3] + "..."
    return cleaned


def format_drafts(
    items: Sequence[Any], subject: str, signature: str | None = None
) -> tuple[Draft, ...]:
    """Sanitise up to three draft objects, filling blanks with defaults."""
    formatted: list[Draft] = []
    for index, item in enumerate(list(items)[:DRAFT_COUNT], start=1):
        fields = item if isinstance(item, dict) else {}
        body_value = fields.get("body")
        if signature and isinstance(body_value, str) and signature not in body_value:
            body_value = f"{body_value.rstrip()}\n\n{signature}"
        formatted.append(
            Draft(
                type=sanitize_field(fields.get("type"), DRAFT_TYPE_MAX)
                or f"Draft {index}",
                subject=sanitize_field(fields.get("subject"), DRAFT_SUBJECT_MAX)
                or reply_subject(subject),
                body=sanitize_field(body_value, DRAFT_BODY_MAX)
                or "No content generated.",
            )
        )
    return tuple(formatted)


def synthesize_fallback(subject: str, tone: str) -> dict[str, list[dict[str, str]]]:
    """Build the deterministic quick/medium/detailed draft payload for ``tone``."""
    reply = reply_subject(subject)
    return {
        "drafts": [
            {"type": draft_type, "subject": reply, "body": body}
            for draft_type, body in zip(CANNED_TYPES, canned_replies(tone), strict=True)
        ]
    }


def resolve_payload(
    payload: Any,
    *,
    subject: str,
    tone: str,
    signature: str | None = None,
    stages: Sequence[PipelineStage] = (),
    warning: str = FALLBACK_WARNING,
) -> PipelineOutcome:
    """Validate ``payload`` and accept it, or synthesise the fallback set."""
    visited = [*stages, PipelineStage.VALIDATE_SCHEMA]
    errors = validate_schema(payload)
    if not errors:
        drafts = format_drafts(payload["drafts"], subject, signature)
        if all(len(draft.body) >= DRAFT_BODY_MIN for draft in drafts):
            visited.append(PipelineStage.ACCEPT)
            return PipelineOutcome(DraftSet(drafts), tuple(visited))
        errors = ["Draft body empty after sanitisation"]

    LOGGER.warning("Draft schema validation failed: %s", "; ".join(errors))
    return _fallback_outcome(subject, tone, signature, visited, errors, warning)


def _fallback_outcome(
    subject: str,
    tone: str,
    signature: str | None,
    visited: list[PipelineStage],
    errors: Sequence[str],
    warning: str = FALLBACK_WARNING,
) -> PipelineOutcome:
    visited.append(PipelineStage.SYNTHESIZE_FALLBACK)
    fallback = synthesize_fallback(subject, tone)
    drafts = format_drafts(fallback["drafts"], subject, signature)
    return PipelineOutcome(
        DraftSet(drafts, warning=warning), tuple(visited), tuple(errors)
    )


class DraftPipeline:
    """Drives one draft request through the pipeline stages.

    ``invoke_timeout`` bounds the Invoke stage so a stalled capability still
    resolves to the fallback set before the caller's own deadline.
    """

    def __init__(self, invoke_timeout: float | None = None) -> None:
        self._invoke_timeout = invoke_timeout

    async def run(
        self,
        invoke: Callable[[DraftPrompt], Awaitable[str]],
        *,
        thread_text: str,
        subject: str,
        tone: str,
        guidance: str | None = None,
        context: ThreadContext | None = None,
        signature: str | None = None,
    ) -> PipelineOutcome:
        """Produce exactly three drafts; capability failures resolve to fallbacks."""
        stages = [PipelineStage.BUILD_PROMPT]
        prompt = build_prompt(thread_text, subject, tone, guidance, context)

        stages.append(PipelineStage.INVOKE)
        try:
            raw = await asyncio.wait_for(invoke(prompt), timeout=self._invoke_timeout)
        except asyncio.TimeoutError:
            LOGGER.warning(
                "Draft capability did not answer within %.2fs", self._invoke_timeout
            )
            return _fallback_outcome(
                subject, tone, signature, stages, ["Draft capability timed out"]
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Draft capability invocation failed: %s", exc)
            return _fallback_outcome(subject, tone, signature, stages, [str(exc)])

        stages.append(PipelineStage.EXTRACT_JSON)
        try:
            payload = extract_json(raw)
        except ValueError as exc:
            LOGGER.warning("Draft JSON extraction failed: %s", exc)
            return _fallback_outcome(subject, tone, signature, stages, [str(exc)])

        return resolve_payload(
            payload,
            subject=subject,
            tone=tone,
            signature=signature,
            stages=stages,
        )


__all__ = [
    "DEFAULT_SUBJECT",
    "DraftPipeline",
    "DraftPrompt",
    "FALLBACK_WARNING",
    "PipelineOutcome",
    "PipelineStage",
    "REMOTE_FALLBACK_WARNING",
    "build_prompt",
    "extract_json",
    "format_drafts",
    "reply_subject",
    "resolve_payload",
    "sanitize_field",
    "synthesize_fallback",
    "validate_schema",
]
