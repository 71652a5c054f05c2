"""
Canonical Type Definitions
===========================

Single source of truth for shared enums used across the codebase.
All modules should import shared enums from here.

This module defines:
- LifecycleState: States of the request lifecycle machine
- EventType: Events the machine reacts to
- Stage: The three asynchronous stage capabilities
- ErrorCode: Error taxonomy carried by HttpClientError

Dataclasses (context, snapshots, results) remain in their
domain modules but use these shared enums.
"""

from enum import StrEnum

__all__ = [
    "ErrorCode",
    "EventType",
    "LifecycleState",
    "Stage",
]

class LifecycleState(StrEnum):
    """States of the request lifecycle machine.

    Exactly one state is active at a time. Settled states still
    accept new submissions.
    """

    IDLE = "idle"
    PREPARING = "preparing"
    DISPATCHING = "dispatching"
    VALIDATING = "validating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_settled(self) -> bool:
        return self in (
            LifecycleState.SUCCEEDED,
            LifecycleState.FAILED,
            LifecycleState.CANCELLED,
        )

    @property
    def is_in_flight(self) -> bool:
        return self in (
            LifecycleState.PREPARING,
            LifecycleState.DISPATCHING,
            LifecycleState.VALIDATING,
        )

class EventType(StrEnum):
    """Events accepted by the machine.

    ``stage.done`` / ``stage.error`` are internal: they are produced
    by the machine itself when a stage invocation settles.
    """

    SUBMIT = "submit"
    RETRY = "retry"
    RESET = "reset"
    CANCEL = "cancel"
    STAGE_DONE = "stage.done"
    STAGE_ERROR = "stage.error"

class Stage(StrEnum):
    """Asynchronous stage capabilities sequenced by the machine."""

    PREPARE = "prepare"
    DISPATCH = "dispatch"
    VALIDATE = "validate"

class ErrorCode(StrEnum):
    """Error taxonomy for HTTP client failures."""

    SCHEMA_VALIDATION_ERROR = "schema_validation_error"
    REQUEST_FAILED = "request_failed"
    INVALID_RESPONSE_BODY = "invalid_response_body"
    UNEXPECTED_STATUS = "unexpected_status"
    REQUEST_ABORTED = "request_aborted"
    NOT_IMPLEMENTED = "not_implemented"

    # Stage-failure kinds reported by the machine
    PREPARE_FAILED = "prepare_failed"
    DISPATCH_FAILED = "dispatch_failed"
    VALIDATION_FAILED = "validation_failed"
