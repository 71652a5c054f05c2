"""Events accepted by the request lifecycle machine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar

from httpflow.core.types import EventType, LifecycleState, Stage
from httpflow.infra.runtime.context import RequestDescription

__all__ = [
    "Cancel",
    "LifecycleEvent",
    "Reset",
    "Retry",
    "StageDone",
    "StageFailed",
    "Submit",
    "TransitionRecord",
]

@dataclass(frozen=True, slots=True)
class Submit:
    """Queue a new request; discards everything from the previous one."""

    request: RequestDescription
    type: ClassVar[EventType] = EventType.SUBMIT

@dataclass(frozen=True, slots=True)
class Retry:
    type: ClassVar[EventType] = EventType.RETRY

@dataclass(frozen=True, slots=True)
class Reset:
    type: ClassVar[EventType] = EventType.RESET

@dataclass(frozen=True, slots=True)
class Cancel:
    type: ClassVar[EventType] = EventType.CANCEL

@dataclass(frozen=True, slots=True)
class StageDone:
    """A stage invocation resolved. ``invocation`` identifies which one."""

    stage: Stage
    invocation: int
    output: Any
    type: ClassVar[EventType] = EventType.STAGE_DONE

@dataclass(frozen=True, slots=True)
class StageFailed:
    """A stage invocation raised; ``error`` is recorded verbatim."""

    stage: Stage
    invocation: int
    error: BaseException
    type: ClassVar[EventType] = EventType.STAGE_ERROR

LifecycleEvent = Submit | Retry | Reset | Cancel | StageDone | StageFailed

@dataclass(frozen=True, slots=True)
class TransitionRecord:
    """One taken transition, kept in the machine's bounded history."""

    source: LifecycleState
    target: LifecycleState
    event: EventType
    at: datetime
