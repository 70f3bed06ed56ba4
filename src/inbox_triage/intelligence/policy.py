"""Local-versus-remote decision rules."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from inbox_triage.core.config import LimitSettings
from inbox_triage.core.models import (
    CapabilityKind,
    CapabilityStatus,
    FallbackDecision,
    FallbackTrigger,
    OperationKind,
    ProcessingMode,
)

_CAPABILITY_FOR_OPERATION: dict[OperationKind, CapabilityKind] = {
    OperationKind.SUMMARIZE: CapabilityKind.SUMMARIZE,
    OperationKind.DRAFT: CapabilityKind.GENERATE,
    OperationKind.ANALYZE_ATTACHMENT: CapabilityKind.ANALYZE_IMAGE,
    OperationKind.TRANSLATE: CapabilityKind.TRANSLATE,
}

_NOT_USABLE = frozenset(
    {
        CapabilityStatus.UNAVAILABLE,
        CapabilityStatus.ERROR,
        CapabilityStatus.UNKNOWN,
    }
)


def capability_for(operation: OperationKind) -> CapabilityKind:
    """Return the capability kind an operation runs on locally."""
    return _CAPABILITY_FOR_OPERATION[operation]


@dataclass(frozen=True, slots=True)
class FallbackPolicy:
    """Pure decision function over status, mode, and content size."""

    limits: LimitSettings = field(default_factory=LimitSettings)

    def token_budget(self, operation: OperationKind) -> int:
        if operation is OperationKind.SUMMARIZE:
            return self.limits.summarize_token_budget
        return self.limits.draft_token_budget

    def estimate_tokens(self, content_length: int) -> int:
        return math.ceil(content_length / self.limits.chars_per_token)

    def decide(
        self,
        operation: OperationKind,
        mode: ProcessingMode,
        status: CapabilityStatus,
        content_length: int,
    ) -> FallbackDecision:
        """Choose between local processing, waiting, and a remote provider."""
        # Device-only is a privacy guarantee and must be checked first.
        if mode is ProcessingMode.DEVICE_ONLY:
            return FallbackDecision(False, "device-only mode")

        if status in _NOT_USABLE:
            return FallbackDecision(
                True,
                f"{operation.value} capability is {status.value}",
                FallbackTrigger.MODEL_UNAVAILABLE,
            )

        if status is CapabilityStatus.DOWNLOADING:
            return FallbackDecision(
                False,
                "model is downloading, waiting for completion",
                FallbackTrigger.MODEL_DOWNLOADING,
            )

        if content_length > self.limits.hard_cap_chars:
            return FallbackDecision(
                True,
                "content exceeds on-device processing limits",
                FallbackTrigger.CONTENT_TOO_LARGE,
            )

        estimated = self.estimate_tokens(content_length)
        budget = self.token_budget(operation)
        if estimated > budget:
            return FallbackDecision(
                True,
                f"content exceeds {operation.value} token limits",
                FallbackTrigger.TOKEN_LIMIT_EXCEEDED,
                estimated_tokens=estimated,
                token_limit=budget,
            )

        return FallbackDecision(
            False,
            "local processing available",
            estimated_tokens=estimated,
            token_limit=budget,
        )


__all__ = ["FallbackPolicy", "capability_for"]
