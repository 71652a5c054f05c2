"""Unit tests for tagged unions and Result."""

import pytest

from httpflow.core.result import Err, Ok, Result
from httpflow.core.tagged import TaggedUnion


Shape = TaggedUnion(
    "Shape",
    {
        "circle": lambda radius: {"radius": radius},
        "square": lambda side: {"side": side},
        "point": lambda: None,
    },
)


class TestTaggedUnion:

    def test_variants_in_declaration_order(self):
        assert Shape.variants == ("circle", "square", "point")

    def test_create_by_attribute_and_by_tag(self):
        assert Shape.circle(2) == Shape.create("circle", 2)
        assert Shape.circle(2).tag == "circle"
        assert Shape.circle(2).radius == 2
        assert Shape.point().payload == {}

    def test_match_dispatches_on_tag(self):
        area = Shape.square(3).match(
            circle=lambda c: 3.14 * c.radius**2,
            square=lambda s: s.side**2,
            point=lambda _: 0,
        )
        assert area == 9

    def test_non_exhaustive_match_rejected(self):
        with pytest.raises(TypeError, match="Non-exhaustive match on Shape"):
            Shape.circle(1).match(circle=lambda c: c.radius)

    def test_unknown_handler_rejected(self):
        with pytest.raises(TypeError, match="Unknown variant"):
            Shape.point().match(
                circle=lambda c: 1, square=lambda s: 2, point=lambda p: 3, triangle=lambda t: 4
            )

    def test_handler_must_be_callable(self):
        with pytest.raises(TypeError, match="must be callable"):
            Shape.point().match(circle=lambda c: 1, square=lambda s: 2, point=3)

    def test_values_are_frozen(self):
        circle = Shape.circle(1)
        with pytest.raises(AttributeError):
            circle.radius = 5
        with pytest.raises(TypeError):
            circle.payload["radius"] = 5
        with pytest.raises(AttributeError):
            circle.diameter

    def test_equality_is_per_union(self):
        Other = TaggedUnion("Other", {"circle": lambda radius: {"radius": radius}})
        assert Shape.circle(1) != Other.circle(1)
        assert Shape.circle(1) != Shape.circle(2)
        assert hash(Shape.circle(1)) == hash(Shape.circle(1))

    def test_integer_tags_match_by_mapping(self):
        Status = TaggedUnion("Status", {200: lambda **p: p, 404: lambda **p: p})
        value = Status.create(404, reason="gone")
        assert value.match({200: lambda v: "ok", 404: lambda v: v.reason}) == "gone"

    def test_unknown_variant(self):
        with pytest.raises(ValueError):
            Shape.create("hexagon")
        with pytest.raises(AttributeError):
            Shape.hexagon

    def test_is_variant(self):
        assert Shape.is_variant(Shape.point())
        assert not Shape.is_variant(Result.ok(1))

    def test_bad_declarations(self):
        with pytest.raises(TypeError):
            TaggedUnion("Bad", {"a": 1})
        with pytest.raises(TypeError):
            TaggedUnion("Bad", {"a": lambda: None}, methods={"m": "x"})
        with pytest.raises(TypeError, match="mapping"):
            TaggedUnion("Bad", {"a": lambda: 5}).create("a")


class TestResult:

    def test_ok_and_error(self):
        assert Ok(1).is_ok()
        assert not Ok(1).is_error()
        assert Err("x").is_error()
        assert Ok(1).value == 1
        assert Err("x").error == "x"

    def test_map_only_touches_ok(self):
        assert Ok(2).map(lambda v: v * 10) == Ok(20)
        assert Err("x").map(lambda v: v * 10) == Err("x")

    def test_map_error_only_touches_error(self):
        assert Err("x").map_error(str.upper) == Err("X")
        assert Ok(2).map_error(str.upper) == Ok(2)

    def test_swap(self):
        assert Ok(1).swap() == Err(1)
        assert Err(1).swap() == Ok(1)

    def test_unwrap_or(self):
        assert Ok(1).unwrap_or(0) == 1
        assert Err("x").unwrap_or(0) == 0

    def test_exhaustive_match(self):
        with pytest.raises(TypeError, match="Non-exhaustive"):
            Ok(1).match(ok=lambda v: v.value)
