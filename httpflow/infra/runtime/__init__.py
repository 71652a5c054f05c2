"""
Runtime Layer — Request Lifecycle
==================================

Provides:
  - Request lifecycle machine (idle → preparing → dispatching → validating → settled)
  - Bounded retry, cooperative cancellation, side-effect observers
  - Immutable request/response/result data model
  - httpx/pydantic stage capabilities

Depends on: core, telemetry
"""

from httpflow.infra.runtime.adapters import (
    HttpxDispatcher,
    create_http_machine,
    prepare_request,
    validate_response,
)
from httpflow.infra.runtime.context import (
    LifecycleSnapshot,
    Opaque,
    PreparedRequest,
    RequestDescription,
    RequestIdentity,
    RequestTiming,
    ResponseSchema,
    ResponseSnapshot,
    TypedResult,
)
from httpflow.infra.runtime.events import (
    Cancel,
    Reset,
    Retry,
    StageDone,
    StageFailed,
    Submit,
    TransitionRecord,
)
from httpflow.infra.runtime.machine import (
    ENTRY_ACTIONS,
    TRANSITIONS,
    RequestLifecycleMachine,
    Transition,
)
from httpflow.infra.runtime.services import LifecycleObservers, LifecycleServices

__all__ = [
    "ENTRY_ACTIONS",
    "TRANSITIONS",
    "Cancel",
    "HttpxDispatcher",
    "LifecycleObservers",
    "LifecycleServices",
    "LifecycleSnapshot",
    "Opaque",
    "PreparedRequest",
    "RequestDescription",
    "RequestIdentity",
    "RequestLifecycleMachine",
    "RequestTiming",
    "Reset",
    "ResponseSchema",
    "ResponseSnapshot",
    "Retry",
    "StageDone",
    "StageFailed",
    "Submit",
    "Transition",
    "TransitionRecord",
    "TypedResult",
    "create_http_machine",
    "prepare_request",
    "validate_response",
]
