"""Unit tests for the lifecycle data model."""

import dataclasses

import pytest

from httpflow.core.types import LifecycleState, Stage
from httpflow.infra.runtime.context import (
    LifecycleContext,
    LifecycleSnapshot,
    Opaque,
    RequestDescription,
    TypedResult,
    _response_union,
)


def test_request_description_normalizes():
    request = RequestDescription(
        service_name="svc", origin="https://api.example.com/", path="v1/items", method="post",
        headers={"x-trace": "1"},
    )
    assert request.method == "POST"
    assert request.url == "https://api.example.com/v1/items"
    with pytest.raises(TypeError):
        request.headers["x-trace"] = "2"
    with pytest.raises(dataclasses.FrozenInstanceError):
        request.path = "/other"


def test_request_description_evolve_returns_copy():
    request = RequestDescription(service_name="svc", origin="https://a", path="/x")
    changed = request.evolve(path="/y")
    assert request.path == "/x"
    assert changed.path == "/y"
    assert changed.service_name == "svc"


def test_opaque_extra_is_frozen_copy():
    extra = {"tenant": "acme"}
    opaque = Opaque(extra=extra)
    extra["tenant"] = "other"
    assert opaque.extra["tenant"] == "acme"
    assert opaque.evolve(validation_details=[]).validation_details == ()


def test_typed_result_statuses_default_to_status():
    result = TypedResult(status=204, data=None)
    assert result.statuses == (204,)
    assert result.match({204: lambda r: r.status}) == 204


def test_typed_result_rejects_undeclared_status():
    with pytest.raises(ValueError, match="not one of the declared statuses"):
        TypedResult(status=500, data=None, statuses=(200, 404))


def test_typed_result_match_exposes_fields():
    result = TypedResult(status=200, data=[1, 2], headers={"etag": "abc"}, statuses=(404, 200, 200))
    assert result.statuses == (200, 404)
    etag = result.match({200: lambda r: r.headers["etag"], 404: lambda r: None})
    assert etag == "abc"


def test_response_unions_are_shared_and_bounded():
    found = TypedResult(status=200, data=1, statuses=(404, 200))
    missing = TypedResult(status=404, data=None, statuses=(200, 404, 404))
    handlers = {200: lambda r: r.data, 404: lambda r: None}

    assert found.match(handlers) == 1
    assert missing.match(handlers) is None
    assert _response_union(found.statuses) is _response_union(missing.statuses)
    assert _response_union.cache_info().maxsize is not None


def test_context_snapshot_round_trip():
    ctx = LifecycleContext(attempt=2, cancelled=True, failed_stage=Stage.DISPATCH)
    snapshot = ctx.snapshot()
    assert snapshot == LifecycleSnapshot(attempt=2, cancelled=True, failed_stage=Stage.DISPATCH)
    assert LifecycleContext.from_snapshot(snapshot) == ctx
    with pytest.raises(dataclasses.FrozenInstanceError):
        snapshot.attempt = 3


def test_context_fields_match_snapshot():
    snapshot_fields = {f.name for f in dataclasses.fields(LifecycleSnapshot)}
    assert LifecycleContext.field_names() == snapshot_fields


def test_state_helpers():
    settled = {s for s in LifecycleState if s.is_settled}
    in_flight = {s for s in LifecycleState if s.is_in_flight}
    assert settled == {LifecycleState.SUCCEEDED, LifecycleState.FAILED, LifecycleState.CANCELLED}
    assert in_flight == {
        LifecycleState.PREPARING, LifecycleState.DISPATCHING, LifecycleState.VALIDATING,
    }
    assert len(LifecycleState) == 7
