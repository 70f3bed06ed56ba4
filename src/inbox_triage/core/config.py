"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator, model_validator

from .models import TRUNCATION_MARKER


class LimitSettings(BaseModel):
    """Content-size and token policy for on-device processing."""

    hard_cap_chars: int = Field(
        default=32_000, ge=1, description="Largest thread processed on-device"
    )
    chars_per_token: int = Field(
        default=4, ge=1, description="Rough characters-per-token estimate"
    )
    summarize_token_budget: int = Field(
        default=4_000, ge=1, description="Token budget for local summaries"
    )
    draft_token_budget: int = Field(
        default=8_000, ge=1, description="Token budget for local reply drafts"
    )
    truncation_reserve: int = Field(
        default=100, ge=0, description="Characters reserved for the truncation marker"
    )
    min_summary_chars: int = Field(
        default=50, ge=0, description="Shortest thread that can be summarised"
    )
    min_draft_chars: int = Field(
        default=20, ge=0, description="Shortest thread that can be replied to"
    )

    @model_validator(mode="after")
    def _cap_leaves_room_for_marker(self) -> LimitSettings:
        floor = self.truncation_reserve + len(TRUNCATION_MARKER)
        if self.hard_cap_chars < floor:
            msg = f"hard_cap_chars must be at least {floor} (truncation_reserve plus marker)"
            raise ValueError(msg)
        return self


class CapabilitySettings(BaseModel):
    """Settings for the local (on-device) capability backend."""

    base_url: str = Field(
        default="http://localhost:11434", description="Ollama server URL"
    )
    model: str = Field(default="gemma3:4b", description="Text model identifier")
    vision_model: str | None = Field(
        default=None, description="Vision model; defaults to the text model"
    )
    timeout_seconds: int = Field(
        default=60, ge=1, description="Request timeout for local capability calls"
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Sampling temperature for draft generation",
    )
    required: tuple[str, ...] = Field(
        default=("summarize", "generate"),
        description="Capability kinds polled until ready",
    )

    @field_validator("required", mode="before")
    @classmethod
    def _split_required(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return value


class RemoteSettings(BaseModel):
    """Settings for user-supplied remote providers."""

    openai_url: str = Field(default="https://api.openai.com/v1/chat/completions")
    openai_model: str = Field(default="gpt-4-turbo-preview")
    anthropic_url: str = Field(default="https://api.anthropic.com/v1/messages")
    anthropic_model: str = Field(default="claude-3-5-sonnet-20241022")
    anthropic_version: str = Field(default="2023-06-01")
    google_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/models"
    )
    google_model: str = Field(default="gemini-1.5-flash")
    ollama_model: str = Field(default="llama3.1:8b")
    timeout_seconds: int = Field(
        default=30, ge=1, description="Request timeout for remote calls"
    )
    max_retries: int = Field(
        default=1,
        ge=0,
        le=1,
        description="Transport-level retries; more than one needs caller opt-in",
    )


class PollingSettings(BaseModel):
    """Capability availability polling cadence."""

    interval_seconds: float = Field(
        default=30.0, gt=0, description="Seconds between availability probes"
    )
    enabled: bool = Field(default=True, description="Run the background poll loop")


class OperationSettings(BaseModel):
    """Per-operation boundary behaviour."""

    timeout_seconds: float = Field(
        default=120.0, gt=0, description="Deadline for a single operation"
    )
    draft_invoke_share: float = Field(
        default=0.75,
        gt=0,
        lt=1,
        description="Share of the deadline a local draft model call may use",
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    limits: LimitSettings = Field(default_factory=LimitSettings)
    capability: CapabilitySettings = Field(default_factory=CapabilitySettings)
    remote: RemoteSettings = Field(default_factory=RemoteSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    operation: OperationSettings = Field(default_factory=OperationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


ENV_PREFIX = "INBOX_TRIAGE_"


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _coerce_value(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if value == "":
        return None
    lowercase_value = value.lower()
    if lowercase_value == "true":
        return True
    if lowercase_value == "false":
        return False
    return value


def _collect_env_values(
    env_file: Path | str | None, *, include_environment: bool = True
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values = {}
    if include_environment:
        env_values = {
            key: value
            for key, value in os.environ.items()
            if key.startswith(ENV_PREFIX)
        }

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        _merge_into_tree(collected, path, _coerce_value(value))

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    *,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment=include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AppSettings",
    "CapabilitySettings",
    "LimitSettings",
    "LoggingSettings",
    "OperationSettings",
    "PollingSettings",
    "RemoteSettings",
    "load_app_settings",
]
