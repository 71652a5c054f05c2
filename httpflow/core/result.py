"""Result — an ``ok`` value or an ``error``, built on TaggedUnion."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from httpflow.core.tagged import TaggedUnion, TaggedValue

__all__ = ["Err", "Ok", "Result"]


def _is_ok(self: TaggedValue) -> bool:
    return self.match(ok=lambda _: True, error=lambda _: False)


def _is_error(self: TaggedValue) -> bool:
    return self.match(ok=lambda _: False, error=lambda _: True)


def _map(self: TaggedValue, mapper: Callable[[Any], Any]) -> TaggedValue:
    return self.match(
        ok=lambda v: Result.ok(mapper(v.value)),
        error=lambda e: e,
    )


def _map_error(self: TaggedValue, mapper: Callable[[Any], Any]) -> TaggedValue:
    return self.match(
        ok=lambda v: v,
        error=lambda e: Result.error(mapper(e.error)),
    )


def _swap(self: TaggedValue) -> TaggedValue:
    return self.match(
        ok=lambda v: Result.error(v.value),
        error=lambda e: Result.ok(e.error),
    )


def _unwrap_or(self: TaggedValue, default: Any) -> Any:
    return self.match(ok=lambda v: v.value, error=lambda _: default)


Result = TaggedUnion(
    "Result",
    {
        "ok": lambda value: {"value": value},
        "error": lambda error: {"error": error},
    },
    methods={
        "is_ok": _is_ok,
        "is_error": _is_error,
        "map": _map,
        "map_error": _map_error,
        "swap": _swap,
        "unwrap_or": _unwrap_or,
    },
)


def Ok(value: Any) -> TaggedValue:  # noqa: N802
    return Result.ok(value)


def Err(error: Any) -> TaggedValue:  # noqa: N802
    return Result.error(error)
