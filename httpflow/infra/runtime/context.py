"""
Lifecycle Data Model
=====================

Request description, stage artifacts and the machine's context.

  RequestDescription ──prepare──▶ PreparedRequest
                     ──dispatch─▶ ResponseSnapshot
                     ──validate─▶ TypedResult

Everything here is immutable except ``LifecycleContext``, which only the
machine's transition actions write. Stage capabilities and observers see
``LifecycleSnapshot`` copies.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Any

from httpflow.core.exceptions import ValidationDetail
from httpflow.core.tagged import TaggedUnion
from httpflow.core.types import Stage

__all__ = [
    "LifecycleContext",
    "LifecycleSnapshot",
    "Opaque",
    "PreparedRequest",
    "RequestDescription",
    "RequestIdentity",
    "RequestTiming",
    "ResponseSchema",
    "ResponseSnapshot",
    "TypedResult",
]

def _frozen_mapping(value: Mapping[Any, Any] | None) -> Mapping[Any, Any]:
    return MappingProxyType(dict(value or {}))

# ── Opaque metadata ───────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class RequestIdentity:
    """Identity of the outbound request, filled in by *prepare*."""

    service_name: str
    origin: str
    path: str
    method: str
    path_template: str | None = None
    request_id: str | None = None

@dataclass(frozen=True, slots=True)
class RequestTiming:
    """Monotonic timestamps (seconds) of one attempt."""

    start_time: float
    response_time: float | None = None
    total_time: float | None = None
    attempts: int | None = None

@dataclass(frozen=True, slots=True)
class Opaque:
    """
    Caller-owned metadata threaded through every stage.

    The machine never reads it. ``request``, ``timing`` and
    ``validation_details`` are reserved; anything else goes in ``extra``.
    """

    request: RequestIdentity | None = None
    timing: RequestTiming | None = None
    validation_details: tuple[ValidationDetail, ...] = ()
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extra", _frozen_mapping(self.extra))
        object.__setattr__(self, "validation_details", tuple(self.validation_details))

    def evolve(self, **changes: Any) -> Opaque:
        return dataclasses.replace(self, **changes)

# ── Request ────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class ResponseSchema:
    """Schemas for one expected response status (anything ``TypeAdapter`` accepts)."""

    headers_schema: Any = None
    body_schema: Any = None

@dataclass(frozen=True, slots=True)
class RequestDescription:
    """Caller-supplied description of one outbound call. Read-only to the machine."""

    service_name: str
    origin: str
    path: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str | int | float | bool | None] = field(default_factory=dict)
    body: Any = None
    path_params: Mapping[str, str | int] = field(default_factory=dict)
    request_headers_schema: Any = None
    request_body_schema: Any = None
    query_schema: Any = None
    path_params_schema: Any = None
    response_schemas: Mapping[int, ResponseSchema] = field(default_factory=dict)
    opaque: Opaque = field(default_factory=Opaque)

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", _frozen_mapping(self.headers))
        object.__setattr__(self, "query", _frozen_mapping(self.query))
        object.__setattr__(self, "path_params", _frozen_mapping(self.path_params))
        object.__setattr__(self, "response_schemas", _frozen_mapping(self.response_schemas))

    @property
    def url(self) -> str:
        return f"{self.origin.rstrip('/')}/{self.path.lstrip('/')}"

    def evolve(self, **changes: Any) -> RequestDescription:
        return dataclasses.replace(self, **changes)

@dataclass(frozen=True, slots=True)
class PreparedRequest:
    """Output of *prepare*: the (possibly enriched) options plus opaque metadata."""

    options: RequestDescription
    opaque: Opaque

@dataclass(frozen=True, slots=True)
class ResponseSnapshot:
    """Output of *dispatch*. Consumed by *validate*."""

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", _frozen_mapping(self.headers))

# ── Typed result ──────────────────────────────────────────────────

@lru_cache(maxsize=256)
def _response_union(statuses: tuple[int, ...]) -> TaggedUnion:
    """One union per declared status set; ``statuses`` arrive sorted and unique."""
    return TaggedUnion(
        "Response",
        {status: lambda **payload: payload for status in statuses},
    )

@dataclass(frozen=True, slots=True)
class TypedResult:
    """
    Output of *validate*: schema-decoded data keyed by response status.

    ``statuses`` are the declared response schema keys; ``status`` must be
    one of them. ``match`` requires a handler for every declared status.
    """

    status: int
    data: Any
    headers: Mapping[str, str] = field(default_factory=dict)
    opaque: Opaque = field(default_factory=Opaque)
    statuses: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", _frozen_mapping(self.headers))
        statuses = tuple(sorted(set(self.statuses))) or (self.status,)
        if self.status not in statuses:
            raise ValueError(
                f"status {self.status} is not one of the declared statuses {list(statuses)}"
            )
        object.__setattr__(self, "statuses", statuses)

    def match(self, handlers: Mapping[int, Callable[[Any], Any]]) -> Any:
        """
        Exhaustively match on status.

        Each handler receives a frozen value exposing ``status``, ``data``,
        ``headers`` and ``opaque``.
        """
        variant = _response_union(self.statuses).create(
            self.status,
            status=self.status,
            data=self.data,
            headers=self.headers,
            opaque=self.opaque,
        )
        return variant.match(handlers)

# ── Context ────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class LifecycleSnapshot:
    """Read-only view of the lifecycle context at one point in time."""

    attempt: int = 0
    request: RequestDescription | None = None
    prepared: PreparedRequest | None = None
    response: ResponseSnapshot | None = None
    result: TypedResult | None = None
    error: Any = None
    cancelled: bool = False
    failed_stage: Stage | None = None

@dataclass(slots=True)
class LifecycleContext:
    """
    The machine's sole mutable state.

    It is **not** shared: each machine instance owns its context, and only
    the machine's transition actions assign to it.
    """

    attempt: int = 0
    request: RequestDescription | None = None
    prepared: PreparedRequest | None = None
    response: ResponseSnapshot | None = None
    result: TypedResult | None = None
    error: Any = None
    cancelled: bool = False
    failed_stage: Stage | None = None

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in dataclasses.fields(cls))

    @classmethod
    def from_snapshot(cls, snapshot: LifecycleSnapshot) -> LifecycleContext:
        return cls(**{name: getattr(snapshot, name) for name in cls.field_names()})

    def snapshot(self) -> LifecycleSnapshot:
        return LifecycleSnapshot(
            **{name: getattr(self, name) for name in self.field_names()}
        )
