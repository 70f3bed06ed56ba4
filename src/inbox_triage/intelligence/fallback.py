"""Deterministic heuristics used when a capability is unavailable or misbehaves."""

from __future__ import annotations

import re
from collections.abc import Mapping

from inbox_triage.core.models import KEY_POINTS_MAX

DEFAULT_TONE = "neutral"

# Quick, medium, and detailed canned bodies per tone.
CANNED_REPLIES: Mapping[str, tuple[str, str, str]] = {
    "neutral": (
        "Thank you for your email. I will review this and get back to you soon.",
        "I received your email and understand your request. Let me look into this "
        "and provide you with a detailed response by end of day.",
        "Thank you for reaching out. I will review the information you provided and "
        "schedule a follow-up meeting to discuss next steps. I will send you a "
        "meeting invite within the next 24 hours.",
    ),
    "friendly": (
        "Thanks so much for your email! I'll take a look and get back to you shortly.",
        "Hi there! I got your email and really appreciate you reaching out. Let me "
        "dive into this and I'll send you a thoughtful response later today.",
        "Hi! Thanks for your message - I really appreciate you taking the time to "
        "reach out. I want to give this the attention it deserves, so I'll review "
        "everything carefully and set up some time for us to chat about next steps. "
        "Expect a meeting invite from me soon!",
    ),
    "assertive": (
        "I have received your email and will respond with the requested "
        "information shortly.",
        "I understand your request and will provide a comprehensive response. I will "
        "review the details and deliver my analysis by the end of the business day.",
        "I have carefully noted your requirements and will address each point "
        "systematically. I will conduct a thorough review of the information "
        "provided and schedule a meeting to present my findings and recommended "
        "action items. You can expect my detailed response within 24 hours.",
    ),
    "formal": (
        "Thank you for your correspondence. I shall review your request and "
        "respond accordingly.",
        "I acknowledge receipt of your message and appreciate you bringing this "
        "matter to my attention. I will conduct a thorough review of the "
        "information provided and respond with a comprehensive analysis by close "
        "of business today.",
        "Dear colleague, I am writing to acknowledge receipt of your correspondence. "
        "I appreciate you taking the time to outline your requirements in detail. "
        "I shall conduct a comprehensive review of all materials provided and "
        "prepare a thorough response addressing each of your points. I will "
        "schedule a follow-up meeting to discuss the matter further and present my "
        "recommendations. Please expect my detailed response within one business day.",
    ),
}

CANNED_TYPES: tuple[str, str, str] = ("Quick Response", "Acknowledgment", "Next Steps")

_KEY_POINT_INDICATORS = (
    "important",
    "need",
    "require",
    "must",
    "should",
    "deadline",
    "urgent",
)

_SENTENCE_BREAK = re.compile(r"[.!?]+")


def canned_replies(tone: str) -> tuple[str, str, str]:
    """Return the quick/medium/detailed bodies for ``tone`` (neutral if unknown)."""
    return CANNED_REPLIES.get(tone.strip().lower(), CANNED_REPLIES[DEFAULT_TONE])


def extract_key_points(text: str, max_points: int = KEY_POINTS_MAX) -> list[str]:
    """Pick indicator-bearing sentences first, then the longest remaining ones."""
    sentences = [
        _normalise_line(segment)
        for segment in _SENTENCE_BREAK.split(text)
        if len(segment.strip()) > 20
    ]
    key_points: list[str] = []
    for sentence in sentences:
        if len(key_points) >= max_points:
            break
        lowered = sentence.lower()
        if any(indicator in lowered for indicator in _KEY_POINT_INDICATORS):
            key_points.append(sentence)

    if len(key_points) < max_points:
        remaining = sorted(
            (sentence for sentence in sentences if sentence not in key_points),
            key=len,
            reverse=True,
        )
        key_points.extend(remaining[: max_points - len(key_points)])

    return [point for point in key_points if point]


def _normalise_line(line: str) -> str:
    return re.sub(r"\s+", " ", line.strip())


__all__ = [
    "CANNED_REPLIES",
    "CANNED_TYPES",
    "DEFAULT_TONE",
    "canned_replies",
    "extract_key_points",
]
