"""
Tagged Unions — Immutable, Exhaustively Matchable Values
==========================================================

A ``TaggedUnion`` is declared from a mapping of variant tag to payload
factory. Every value it creates is frozen and carries its tag; ``match``
requires a handler for every declared variant, so forgetting a case is a
caller error rather than a silently-defaulted branch.

Usage:
    Shape = TaggedUnion("Shape", {
        "circle": lambda radius: {"radius": radius},
        "square": lambda side: {"side": side},
    })

    area = Shape.circle(2.0).match(
        circle=lambda c: 3.14159 * c.radius**2,
        square=lambda s: s.side**2,
    )

Tags may also be integers (e.g. HTTP status codes); such unions are
matched with a mapping: ``value.match({200: ok, 404: missing})``.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Mapping
from types import MappingProxyType
from typing import Any

__all__ = ["TaggedUnion", "TaggedValue"]

VariantFactory = Callable[..., Mapping[str, Any] | None]

class TaggedValue:
    """Frozen variant instance. Payload fields are readable as attributes."""

    __slots__ = ("_payload", "_tag", "_union")

    _union: TaggedUnion
    _tag: Hashable
    _payload: Mapping[str, Any]

    def __init__(self, union: TaggedUnion, tag: Hashable, payload: Mapping[str, Any]):
        object.__setattr__(self, "_union", union)
        object.__setattr__(self, "_tag", tag)
        object.__setattr__(self, "_payload", MappingProxyType(dict(payload)))

    @property
    def tag(self) -> Hashable:
        return self._tag

    @property
    def union(self) -> TaggedUnion:
        return self._union

    @property
    def payload(self) -> Mapping[str, Any]:
        return self._payload

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._payload[name]
        except KeyError:
            raise AttributeError(
                f"{self._union.name}.{self._tag} has no field {name!r}"
            ) from None

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{self._union.name} values are immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"{self._union.name} values are immutable")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TaggedValue):
            return NotImplemented
        return (
            self._union is other._union
            and self._tag == other._tag
            and dict(self._payload) == dict(other._payload)
        )

    def __hash__(self) -> int:
        return hash((id(self._union), self._tag))

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self._payload.items())
        return f"{self._union.name}.{self._tag}({fields})"

    def match(
        self,
        handlers: Mapping[Hashable, Callable[[Any], Any]] | None = None,
        /,
        **named: Callable[[Any], Any],
    ) -> Any:
        """
        Dispatch to the handler registered for this value's tag.

        Handlers may be given as a mapping, as keyword arguments, or both.
        Every declared variant must be covered.
        """
        table: dict[Hashable, Callable[[Any], Any]] = dict(handlers or {})
        table.update(named)

        declared = self._union.variants
        unknown = [tag for tag in table if tag not in declared]
        if unknown:
            raise TypeError(
                f"Unknown variant(s) for {self._union.name}: {', '.join(map(repr, unknown))}"
            )
        missing = [tag for tag in declared if tag not in table]
        if missing:
            raise TypeError(
                f"Non-exhaustive match on {self._union.name}: "
                f"missing handler(s) for {', '.join(map(repr, missing))}"
            )

        handler = table[self._tag]
        if not callable(handler):
            raise TypeError(
                f'Match handler for variant "{self._tag}" must be callable, '
                f"got {type(handler).__name__}."
            )
        return handler(self)

class TaggedUnion:
    """
    Declares a closed set of variants and builds values for them.

    ``methods`` are attached to every value of the union (they receive the
    value as ``self``), which is how helpers such as ``Result.map`` are
    defined on top of ``match``.
    """

    def __init__(
        self,
        name: str,
        factories: Mapping[Hashable, VariantFactory],
        methods: Mapping[str, Callable[..., Any]] | None = None,
    ):
        for tag, factory in factories.items():
            if not callable(factory):
                raise TypeError(f'Factory for variant "{tag}" must be a function.')

        namespace: dict[str, Any] = {"__slots__": ()}
        for method_name, method in (methods or {}).items():
            if not callable(method):
                raise TypeError(f'Method "{method_name}" must be a function.')
            namespace[method_name] = method

        self.name = name
        self._factories = dict(factories)
        self._value_type: type[TaggedValue] = type(name, (TaggedValue,), namespace)

    @property
    def variants(self) -> tuple[Hashable, ...]:
        return tuple(self._factories)

    def create(self, tag: Hashable, *args: Any, **kwargs: Any) -> TaggedValue:
        """Build the variant ``tag`` from its factory arguments."""
        try:
            factory = self._factories[tag]
        except KeyError:
            raise ValueError(f"{self.name} has no variant {tag!r}") from None

        payload = factory(*args, **kwargs)
        if payload is not None and not isinstance(payload, Mapping):
            raise TypeError(
                f'Variant factory for "{tag}" must return a mapping or None.'
            )
        return self._value_type(self, tag, payload or {})

    def is_variant(self, value: object) -> bool:
        return isinstance(value, TaggedValue) and value.union is self

    def __getattr__(self, name: str) -> Callable[..., TaggedValue]:
        factories = self.__dict__.get("_factories", {})
        if name in factories:
            return lambda *args, **kwargs: self.create(name, *args, **kwargs)
        raise AttributeError(f"{type(self).__name__} {self.__dict__.get('name')!r} has no variant {name!r}")

    def __repr__(self) -> str:
        return f"TaggedUnion({self.name!r}, variants={list(self.variants)!r})"
