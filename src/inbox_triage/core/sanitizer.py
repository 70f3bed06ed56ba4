"""Map raw errors onto stable, user-safe messages."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .interfaces import OperationError
from .models import Err, ErrorKind

GENERIC_MESSAGE = "An unexpected error occurred. Please try again."


@dataclass(frozen=True, slots=True)
class SanitizerRule:
    """Ordered classification rule: any matching pattern selects ``message``."""

    name: str
    patterns: tuple[re.Pattern[str], ...]
    message: str

    def matches(self, raw: str) -> bool:
        return any(pattern.search(raw) for pattern in self.patterns)


def _rule(name: str, message: str, *patterns: str) -> SanitizerRule:
    compiled = tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)
    return SanitizerRule(name=name, patterns=compiled, message=message)


RULES: tuple[SanitizerRule, ...] = (
    _rule(
        "stack_trace",
        GENERIC_MESSAGE,
        r"stack trace",
        r"error.*stack",
        r"traceback \(most recent call last\)",
        r"(?m)^\s*File \".*\", line \d+",
        r"\bat\s+\w+\s*\(",
        r"\n\s*at\s+",
        r"maximum recursion depth",
    ),
    _rule(
        "generate_unavailable",
        "AI reply drafting is not available. Enable the on-device model "
        "or configure a remote provider.",
        r"(language model|generate|prompt api).*not available",
    ),
    _rule(
        "summarize_unavailable",
        "AI summarization is not available. Enable the on-device model "
        "or configure a remote provider.",
        r"summari[sz](er|ation|e).*not available",
    ),
    _rule(
        "translate_unavailable",
        "Translation is not available for this language pair.",
        r"translat(or|ion|e).*not available",
    ),
    _rule(
        "image_unavailable",
        "Image analysis is not available. Enable a vision-capable on-device model.",
        r"(image|multimodal|vision).*not available",
    ),
    _rule(
        "downloading",
        "AI models are still downloading. This can take several minutes. "
        "Please try again shortly.",
        r"downloading",
        r"after.*download",
    ),
    _rule(
        "session_failure",
        "AI processing session failed. Please try again.",
        r"session.*failed",
        r"session.*error",
    ),
    _rule(
        "malformed_json",
        "AI response was malformed. Please try regenerating.",
        r"invalid.*json",
        r"json.*parse",
        r"unexpected token",
        r"expecting value",
    ),
    _rule(
        "network",
        "Connection error occurred. Please check your internet connection "
        "and try again.",
        r"network.*error",
        r"connection.*(failed|refused|error|reset)",
        r"timeout",
        r"timed out",
    ),
    _rule(
        "permission",
        "Permission denied. Please check your API key and provider settings.",
        r"permission.*denied",
        r"not.*authori[sz]ed",
        r"unauthori[sz]ed",
        r"forbidden",
    ),
    _rule(
        "not_implemented",
        "This feature is not yet available.",
        r"not.*implemented",
        r"coming soon",
        r"placeholder",
    ),
)

_SECRET_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bsk-[A-Za-z0-9_\-]{8,}"), "[redacted]"),
    (re.compile(r"\bAIza[0-9A-Za-z_\-]{20,}"), "[redacted]"),
    (re.compile(r"(key=)[^&\s]+", re.IGNORECASE), r"\1[redacted]"),
    (re.compile(r"(bearer\s+)\S+", re.IGNORECASE), r"\1[redacted]"),
    (re.compile(r"(x-api-key[:=]\s*)\S+", re.IGNORECASE), r"\1[redacted]"),
)

_FRAME_LINE = re.compile(r"^\s*(at\s+.*|File \".*)$", re.MULTILINE)
_TYPE_PREFIX = re.compile(
    r"^([A-Za-z_][\w.]*(Error|Exception)|Error|Exception):\s*", re.IGNORECASE
)
_IDENTIFIER_TOKEN = re.compile(r"^[A-Z_]+$", re.IGNORECASE)


def redact_secrets(text: str) -> str:
    """Replace credential-looking substrings."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def sanitize(raw: object) -> str:
    """Return a user-safe message for ``raw``."""
    if not isinstance(raw, str) or not raw.strip():
        return GENERIC_MESSAGE

    for rule in RULES:
        if rule.matches(raw):
            return rule.message

    without_frames = _FRAME_LINE.sub("", raw).strip()
    first_line = without_frames.split("\n", 1)[0] if without_frames else ""
    safe_message = _TYPE_PREFIX.sub("", first_line).strip()
    safe_message = redact_secrets(safe_message)

    if len(safe_message) < 10 or _IDENTIFIER_TOKEN.match(safe_message):
        return GENERIC_MESSAGE

    return safe_message[0].upper() + safe_message[1:]


def sanitize_error(error: BaseException) -> str:
    """Sanitise an exception, falling back to its type name for empty messages."""
    raw = str(error) or type(error).__name__
    return sanitize(raw)


def classify(error: BaseException) -> ErrorKind:
    """Return the :class:`ErrorKind` carried by ``error`` or ``UNKNOWN``."""
    if isinstance(error, OperationError):
        return error.kind
    return ErrorKind.UNKNOWN


def error_result(error: BaseException, context: str = "") -> Err:
    """Build an :class:`Err` with a sanitised, optionally prefixed message."""
    sanitized = sanitize_error(error)
    message = f"{context}: {sanitized}" if context else sanitized
    return Err(kind=classify(error), message=message)


__all__ = [
    "GENERIC_MESSAGE",
    "RULES",
    "SanitizerRule",
    "classify",
    "error_result",
    "redact_secrets",
    "sanitize",
    "sanitize_error",
]
