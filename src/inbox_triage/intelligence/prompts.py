"""Prompt templates for capability sessions and remote providers."""

from __future__ import annotations

from collections.abc import Mapping
from textwrap import dedent
from typing import Any

from inbox_triage.core.models import (
    DRAFT_SUBJECT_MAX,
    AnalysisType,
    CapabilityKind,
    ThreadContext,
)

SUMMARY_SYSTEM_PROMPT = (
    "You are a helpful assistant that summarizes email threads. "
    "Provide a concise TL;DR summary and extract 3-5 key points."
)

# Body length hints for the short, medium, and long draft.
DRAFT_BODY_HINTS: tuple[int, int, int] = (500, 1000, 1500)

_SUMMARY_LENGTH_WORDS = {"short": 100, "medium": 200, "long": 350}

IMAGE_SYSTEM_PROMPTS: Mapping[AnalysisType, str] = {
    AnalysisType.GENERAL: (
        "You are an AI assistant that analyzes images in email attachments. "
        "Provide clear, concise descriptions focusing on business-relevant content."
    ),
    AnalysisType.OCR: (
        "You are an OCR system. Extract all visible text from images accurately. "
        "Maintain formatting and structure. If you cannot see the image clearly, "
        "indicate that."
    ),
    AnalysisType.CHART: (
        "You are a data visualization analyst. Describe charts, graphs, and "
        "diagrams, including key data points, trends, and insights."
    ),
    AnalysisType.CONTEXT: (
        "You are analyzing an image attachment in context of an email "
        "conversation. Explain how the image relates to the discussion."
    ),
}

_IMAGE_PROMPTS: Mapping[AnalysisType, str] = {
    AnalysisType.GENERAL: (
        "Describe this image in 2-3 sentences. Focus on key elements that would "
        "be relevant in a business email context."
    ),
    AnalysisType.OCR: (
        "Extract all text visible in this image. Preserve formatting, line breaks, "
        'and structure. If no text is visible, respond with "No text detected".'
    ),
    AnalysisType.CHART: (
        "Analyze this chart or visualization. Describe: 1) Type of visualization, "
        "2) Key data points, 3) Main trends or insights."
    ),
    AnalysisType.CONTEXT: (
        "This image was attached to an email about: {context}\n\n"
        "Describe the image and explain its relevance to the email discussion."
    ),
}


def build_session_instructions(
    kind: CapabilityKind, config: Mapping[str, Any]
) -> str | None:
    """Translate a session configuration into standing model instructions."""
    if kind is CapabilityKind.SUMMARIZE:
        return _summarizer_instructions(config)
    if kind is CapabilityKind.TRANSLATE:
        source = config.get("source_language", "auto")
        target = config.get("target_language", "en")
        return (
            f"Translate the user's text from {source} to {target}. "
            "Return only the translation, preserving line breaks."
        )
    system_prompt = config.get("system_prompt")
    return str(system_prompt) if system_prompt else None


def _summarizer_instructions(config: Mapping[str, Any]) -> str:
    summary_type = config.get("type", "tldr")
    length = str(config.get("length", "short"))
    words = _SUMMARY_LENGTH_WORDS.get(length, 100)
    plain = config.get("format", "plain-text") == "plain-text"
    style = "Use plain text without markdown." if plain else "Markdown is allowed."
    if summary_type == "key-points":
        return (
            "Extract the 3-5 most important points of the user's text. "
            f"Return one point per line, each starting with '- '. {style}"
        )
    return f"Write a TL;DR of the user's text in under {words} words. {style}"


def build_summary_prompt(text: str) -> str:
    """Compose the user turn asking a remote provider for a summary."""
    prompt = """
    Summarize this email thread:

    {text}

    Provide:
    1. A TL;DR summary (under 100 words)
    2. 3-5 key points as a bullet list
    """
    return dedent(prompt).strip().replace("{text}", text)


def build_system_prompt(tone: str) -> str:
    """Compose the draft-generation system prompt for ``tone``."""
    short, medium, long = DRAFT_BODY_HINTS
    prompt = f"""
    You are an AI assistant helping to draft email replies. Generate responses that are:
    - {tone} in tone
    - Professional and appropriate for business communication
    - Concise but complete
    - Properly structured with subject and body
    - Returned as valid JSON with exactly 3 drafts

    CRITICAL: You must respond with ONLY valid JSON in the exact format below.
    Do not include any other text or explanations:
    {{
      "drafts": [
        {{"type": "string", "subject": "string (max {DRAFT_SUBJECT_MAX} chars)", "body": "string (max {short} chars)"}},
        {{"type": "string", "subject": "string (max {DRAFT_SUBJECT_MAX} chars)", "body": "string (max {medium} chars)"}},
        {{"type": "string", "subject": "string (max {DRAFT_SUBJECT_MAX} chars)", "body": "string (max {long} chars)"}}
      ]
    }}

    Each draft must have exactly these three fields: type, subject, body.
    Generate exactly 3 drafts.
    """
    return dedent(prompt).strip()


def _context_section(context: ThreadContext | None) -> str:
    if context is None or context.is_empty():
        return ""
    lines: list[str] = []
    if context.key_points:
        lines.append("KEY POINTS:")
        lines.extend(f"- {point}" for point in context.key_points)
    if context.questions:
        lines.append("QUESTIONS TO ANSWER:")
        lines.extend(f"- {question}" for question in context.questions)
    if context.action_items:
        lines.append("REQUESTED ACTIONS:")
        lines.extend(f"- {item}" for item in context.action_items)
    return "\n" + "\n".join(lines) + "\n"


def build_reply_prompt(
    thread_text: str,
    subject: str,
    tone: str,
    guidance: str | None = None,
    context: ThreadContext | None = None,
) -> str:
    """Compose the user prompt requesting three drafts of increasing length."""
    short, medium, long = DRAFT_BODY_HINTS
    guidance_section = f"\nUSER GUIDANCE:\n{guidance}\n" if guidance else ""
    guidance_note = (
        "\nIncorporate the user guidance above into all three drafts where relevant.\n"
        if guidance
        else ""
    )
    header = (
        f"Based on this email thread, generate 3 different reply drafts in {tone} tone."
        f"\n\nTHREAD:\n{thread_text}\n\nORIGINAL SUBJECT: {subject}"
        f"{guidance_section}{_context_section(context)}"
    )
    instructions = f"""
    Generate exactly 3 reply drafts with these characteristics:
    1. SHORT RESPONSE: Quick acknowledgment (1-2 sentences, max {short} chars body)
    2. MEDIUM RESPONSE: Detailed with clarifications (2-3 paragraphs, max {medium} chars body)
    3. COMPREHENSIVE RESPONSE: Complete with next steps (3-4 paragraphs, max {long} chars body)
    """
    schema = f"""
    Respond with ONLY the following JSON format (no other text):
    {{
      "drafts": [
        {{"type": "Quick Response", "subject": "Re: {subject}", "body": "..."}},
        {{"type": "Acknowledgment", "subject": "Re: {subject}", "body": "..."}},
        {{"type": "Next Steps", "subject": "Re: {subject}", "body": "..."}}
      ]
    }}
    """
    return "\n\n".join(
        (
            header,
            dedent(instructions).strip() + guidance_note,
            dedent(schema).strip(),
        )
    )


def build_image_prompt(analysis_type: AnalysisType, context: str = "") -> str:
    """Return the user prompt for an image analysis request."""
    template = _IMAGE_PROMPTS.get(analysis_type, _IMAGE_PROMPTS[AnalysisType.GENERAL])
    return template.replace("{context}", context or "(no context provided)")


def build_attachment_summary_input(name: str, kind: str, content: str) -> str:
    """Prefix extracted document text with its file description."""
    return f"File: {name} ({kind.upper()})\n\n{content}"


__all__ = [
    "DRAFT_BODY_HINTS",
    "IMAGE_SYSTEM_PROMPTS",
    "SUMMARY_SYSTEM_PROMPT",
    "build_attachment_summary_input",
    "build_image_prompt",
    "build_reply_prompt",
    "build_session_instructions",
    "build_summary_prompt",
    "build_system_prompt",
]
