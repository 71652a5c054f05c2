"""
Capability Slots
=================

The machine is parameterized by four injected capabilities and four
observers. Unset stage slots fail with ``not_implemented`` so a machine
can be built and exercised one stage at a time.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from httpflow.core.exceptions import HttpClientError
from httpflow.core.types import ErrorCode, Stage
from httpflow.infra.runtime.context import (
    LifecycleSnapshot,
    PreparedRequest,
    ResponseSnapshot,
    TypedResult,
)

__all__ = [
    "CancelCapability",
    "DispatchCapability",
    "LifecycleObservers",
    "LifecycleServices",
    "PrepareCapability",
    "ValidateCapability",
    "not_implemented",
]

PrepareCapability = Callable[[LifecycleSnapshot], Awaitable[PreparedRequest]]
DispatchCapability = Callable[[LifecycleSnapshot], Awaitable[ResponseSnapshot]]
ValidateCapability = Callable[[LifecycleSnapshot], Awaitable[TypedResult]]
CancelCapability = Callable[[LifecycleSnapshot], Awaitable[None] | None]

QueuedObserver = Callable[[LifecycleSnapshot, Any], None]
SnapshotObserver = Callable[[LifecycleSnapshot], None]

def not_implemented(stage: Stage) -> Callable[[LifecycleSnapshot], Awaitable[Any]]:
    """Stand-in for a stage capability that was never supplied."""

    async def _missing(snapshot: LifecycleSnapshot) -> Any:
        raise HttpClientError(
            f"Http client {stage.value} handler is not implemented",
            code=ErrorCode.NOT_IMPLEMENTED,
        )

    _missing.__qualname__ = f"not_implemented[{stage.value}]"
    return _missing

def _noop(*_: Any) -> None:
    return None

@dataclass(frozen=True, slots=True)
class LifecycleServices:
    """Stage capabilities (async) plus the fire-and-forget cancel hook."""

    prepare: PrepareCapability | None = None
    dispatch: DispatchCapability | None = None
    validate: ValidateCapability | None = None
    cancel: CancelCapability | None = None

    def resolved(self) -> LifecycleServices:
        """Copy with every unset slot filled by its default."""
        return LifecycleServices(
            prepare=self.prepare or not_implemented(Stage.PREPARE),
            dispatch=self.dispatch or not_implemented(Stage.DISPATCH),
            validate=self.validate or not_implemented(Stage.VALIDATE),
            cancel=self.cancel or _noop,
        )

    def for_stage(self, stage: Stage) -> Callable[[LifecycleSnapshot], Awaitable[Any]]:
        capability = getattr(self, stage.value)
        return capability or not_implemented(stage)

@dataclass(frozen=True, slots=True)
class LifecycleObservers:
    """Side-effecting callbacks. They never change machine state."""

    on_request_queued: QueuedObserver | None = None
    on_success: SnapshotObserver | None = None
    on_failure: SnapshotObserver | None = None
    on_cancelled: SnapshotObserver | None = None

    def resolved(self) -> LifecycleObservers:
        return LifecycleObservers(
            on_request_queued=self.on_request_queued or _noop,
            on_success=self.on_success or _noop,
            on_failure=self.on_failure or _noop,
            on_cancelled=self.on_cancelled or _noop,
        )
