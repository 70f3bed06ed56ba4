"""Thread flattening, size limiting, and plain-text extraction helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass

from inbox_triage.core.config import LimitSettings
from inbox_triage.core.models import (
    KEY_POINTS_MAX,
    TRUNCATION_MARKER,
    Thread,
    ThreadContext,
)

from .fallback import extract_key_points

MESSAGE_DELIMITER = "\n\n---\n\n"
_MARKER_SEPARATOR = "\n\n"
DEFAULT_RESERVE = 100

_SENTENCE = re.compile(r"[^.!?]*[.!?]+|[^.!?]+$")
_BULLET_PREFIX = re.compile(r"^\s*(?:[-•*]|\d+[.)])\s*")
_KEY_POINTS_HEADER = re.compile(r"key\s+points?\s*:", re.IGNORECASE)
_TLDR_PREFIX = re.compile(
    r"^\s*(?:\d+[.)]\s*)?(?:tl;?dr:?|summary:)\s*", re.IGNORECASE
)
_HEADER_LINE = re.compile(r"^(?:From: .*|---)$", re.MULTILINE)
_ACTION_CUES = (
    "please",
    "could you",
    "can you",
    "would you",
    "need to",
    "let me know",
    "by friday",
    "deadline",
    "asap",
)


@dataclass(frozen=True, slots=True)
class RemotePayload:
    """Text-only view of a thread that may leave the device."""

    content: str
    subject: str
    message_count: int
    attachment_count: int

    @property
    def has_attachments(self) -> bool:
        return self.attachment_count > 0


def flatten(thread: Thread) -> str:
    """Join messages oldest to newest as ``From: sender`` blocks."""
    return MESSAGE_DELIMITER.join(
        f"From: {message.sender_name or 'Unknown'}\n{message.body}"
        for message in thread.messages
    )


def split_sentences(text: str) -> list[str]:
    """Split ``text`` into trimmed sentences that keep their terminators."""
    return [match.strip() for match in _SENTENCE.findall(text) if match.strip()]


def truncate(text: str, max_chars: int, reserve: int = DEFAULT_RESERVE) -> str:
    """Shorten ``text`` to whole sentences and append the truncation marker.

    The result never exceeds ``max_chars`` and is returned unchanged when it
    already fits, which makes the operation idempotent. Limits too small for
    the marker yield the marker clipped to ``max_chars``.
    """
    max_chars = max(max_chars, 0)
    if len(text) <= max_chars:
        return text
    marker_length = len(_MARKER_SEPARATOR) + len(TRUNCATION_MARKER)
    if max_chars < len(TRUNCATION_MARKER):
        return TRUNCATION_MARKER[:max_chars]

    budget = max_chars - max(reserve, marker_length)
    kept: list[str] = []
    length = 0
    for sentence in split_sentences(text):
        added = len(sentence) + (1 if kept else 0)
        if length + added > budget:
            break
        kept.append(sentence)
        length += added

    if not kept:
        return TRUNCATION_MARKER
    return " ".join(kept) + _MARKER_SEPARATOR + TRUNCATION_MARKER


def was_truncated(text: str) -> bool:
    return text.endswith(TRUNCATION_MARKER)


def prepare_for_remote(thread: Thread) -> RemotePayload:
    """Return message text plus counts; attachment content never leaves the device."""
    return RemotePayload(
        content=flatten(thread),
        subject=thread.subject or "",
        message_count=len(thread.messages),
        attachment_count=len(thread.attachments),
    )


def extract_thread_context(text: str, limit: int = KEY_POINTS_MAX) -> ThreadContext:
    """Collect key points, open questions, and requested actions from ``text``."""
    body = _HEADER_LINE.sub("", text)
    sentences = [re.sub(r"\s+", " ", sentence) for sentence in split_sentences(body)]
    questions = [
        sentence for sentence in sentences if sentence.endswith("?") and len(sentence) > 10
    ]
    actions = [
        sentence
        for sentence in sentences
        if sentence not in questions
        and any(cue in sentence.lower() for cue in _ACTION_CUES)
    ]
    return ThreadContext(
        key_points=tuple(extract_key_points(body, max_points=min(limit, 3))),
        questions=tuple(questions[:limit]),
        action_items=tuple(actions[:limit]),
    )


def parse_key_points(text: str, limit: int = KEY_POINTS_MAX) -> list[str]:
    """Turn bullet-style model output into a list of points."""
    if not text or not text.strip():
        return []
    points = [
        _BULLET_PREFIX.sub("", line).strip()
        for line in text.splitlines()
    ]
    filtered = [point for point in points if len(point) > 10]
    return filtered[:limit] if filtered else [text.strip()]


def parse_summary_text(content: str) -> tuple[str, list[str]]:
    """Split free-form ``TL;DR ... Key points:`` output into summary and points."""
    parts = _KEY_POINTS_HEADER.split(content, maxsplit=1)
    head_lines = [line.strip() for line in parts[0].splitlines() if line.strip()]
    if len(parts) == 2:
        summary_lines = head_lines
        point_lines = [line.strip() for line in parts[1].splitlines() if line.strip()]
    else:
        summary_lines = [line for line in head_lines if not _is_bullet(line)]
        point_lines = [line for line in head_lines if _is_bullet(line)]

    summary = " ".join(
        cleaned
        for cleaned in (
            _TLDR_PREFIX.sub("", _BULLET_PREFIX.sub("", line)).strip()
            for line in summary_lines
        )
        if cleaned
    )
    bullets = [line for line in point_lines if _BULLET_PREFIX.match(line)] or point_lines
    key_points = [_BULLET_PREFIX.sub("", line).strip() for line in bullets]
    return summary, [point for point in key_points if point][:KEY_POINTS_MAX]


def _is_bullet(line: str) -> bool:
    return bool(_BULLET_PREFIX.match(line)) and not _TLDR_PREFIX.match(line)


def normalize_whitespace(text: str) -> str:
    """Collapse runs of spaces and tabs while keeping line breaks."""
    collapsed = re.sub(r"[ \t]+", " ", text)
    return re.sub(r"[ \t]*\n[ \t]*", "\n", collapsed).strip()


@dataclass(slots=True)
class ContentPreparer:
    """Applies the configured limits to thread content."""

    limits: LimitSettings

    def flatten(self, thread: Thread) -> str:
        return flatten(thread)

    def truncate(self, text: str, max_chars: int | None = None) -> str:
        limit = max_chars if max_chars is not None else self.limits.hard_cap_chars
        return truncate(text, limit, reserve=self.limits.truncation_reserve)

    def fit_for_device(self, text: str) -> str:
        """Truncate ``text`` to the on-device hard cap."""
        return self.truncate(text)


__all__ = [
    "ContentPreparer",
    "MESSAGE_DELIMITER",
    "RemotePayload",
    "TRUNCATION_MARKER",
    "extract_thread_context",
    "flatten",
    "normalize_whitespace",
    "parse_key_points",
    "parse_summary_text",
    "prepare_for_remote",
    "split_sentences",
    "truncate",
    "was_truncated",
]
