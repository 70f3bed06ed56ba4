"""Turns a fallback decision into a concrete local or remote route."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from inbox_triage.core.interfaces import OperationError, RemoteProvider
from inbox_triage.core.models import (
    CapabilityKind,
    CapabilityStatus,
    ErrorKind,
    FallbackDecision,
    FallbackTrigger,
    OperationKind,
    ProcessingMode,
    RemoteCredentials,
)

from .policy import FallbackPolicy, capability_for

LOGGER = logging.getLogger(__name__)

ProviderFactory = Callable[[str], RemoteProvider]

_SIZE_TRIGGERS = frozenset(
    {FallbackTrigger.CONTENT_TOO_LARGE, FallbackTrigger.TOKEN_LIMIT_EXCEEDED}
)


@dataclass(frozen=True, slots=True)
class Route:
    """Where an operation runs and, if remote, with which provider."""

    decision: FallbackDecision
    provider: RemoteProvider | None = None
    credentials: RemoteCredentials | None = None

    @property
    def is_remote(self) -> bool:
        return self.provider is not None


def choose_route(
    policy: FallbackPolicy,
    operation: OperationKind,
    mode: ProcessingMode,
    status: CapabilityStatus,
    content_length: int,
    *,
    credentials: RemoteCredentials | None,
    provider_factory: ProviderFactory,
    prefer_remote: bool = False,
) -> Route:
    """Resolve the route for one operation or raise a classified error.

    Local routes are only returned when the capability is ready; remote routes
    are only returned in hybrid mode with credentials present.
    """
    if prefer_remote and mode is ProcessingMode.HYBRID and credentials is not None:
        decision = FallbackDecision(True, "remote provider preferred by user")
        return Route(decision, provider_factory(credentials.provider), credentials)

    decision = policy.decide(operation, mode, status, content_length)
    kind = capability_for(operation)

    if decision.trigger is FallbackTrigger.MODEL_DOWNLOADING:
        require_local(kind, status)

    if decision.should_use_remote:
        if credentials is None:
            LOGGER.info(
                "Remote route needed for %s (%s) but no credentials supplied",
                operation.value,
                decision.reason,
            )
            if decision.trigger in _SIZE_TRIGGERS:
                raise OperationError(ErrorKind.CONTENT_TOO_LARGE, decision.reason)
            raise OperationError(
                ErrorKind.CAPABILITY_UNAVAILABLE,
                f"{kind.value} capability not available and no remote provider configured",
            )
        LOGGER.info("Routing %s to %s: %s", operation.value, credentials.provider, decision.reason)
        return Route(decision, provider_factory(credentials.provider), credentials)

    require_local(kind, status)
    return Route(decision)


def require_local(kind: CapabilityKind, status: CapabilityStatus) -> None:
    """Raise unless the on-device capability ``kind`` is ready."""
    if status is CapabilityStatus.DOWNLOADING:
        raise OperationError(
            ErrorKind.CAPABILITY_DOWNLOADING,
            f"{kind.value} model is downloading; try again when the download completes",
        )
    if status is not CapabilityStatus.READY:
        raise OperationError(
            ErrorKind.CAPABILITY_UNAVAILABLE, f"{kind.value} capability not available"
        )


__all__ = ["ProviderFactory", "Route", "choose_route", "require_local"]
