"""Unit tests for error types and retry helpers."""

from pydantic import BaseModel, ValidationError

from httpflow.core.exceptions import (
    HttpClientError,
    RetryConfig,
    compute_retry_delay,
    create_validation_details,
    is_retryable,
)
from httpflow.core.types import ErrorCode


class Item(BaseModel):
    id: int
    tags: list[str]


def _issues():
    try:
        Item.model_validate({"id": "x", "tags": ["a", 2]})
    except ValidationError as exc:
        return exc.errors()
    raise AssertionError("expected validation to fail")


def test_validation_details_flatten_locations():
    details = create_validation_details(_issues(), "Item")
    assert [d.field for d in details] == ["id", "tags.1"]
    assert all(d.schema == "Item" for d in details)
    assert details[0].to_dict()["field"] == "id"


def test_http_client_error_payload():
    cause = ConnectionError("refused")
    error = HttpClientError("request failed", code=ErrorCode.REQUEST_FAILED, cause=cause, status=503)
    assert error.__cause__ is cause
    assert error.retryable is True
    payload = error.to_dict()
    assert payload["code"] == "request_failed"
    assert payload["error"] == "request_failed"
    assert payload["status"] == 503
    assert payload["validation_details"] == []


def test_retryable_defaults_by_code():
    assert not HttpClientError("x", code=ErrorCode.UNEXPECTED_STATUS).retryable
    assert HttpClientError("x", code=ErrorCode.UNEXPECTED_STATUS, retryable=True).retryable


def test_is_retryable_classification():
    cfg = RetryConfig()
    assert is_retryable(cfg, TimeoutError())
    assert is_retryable(cfg, ConnectionResetError())
    assert not is_retryable(cfg, ValueError())
    assert not is_retryable(cfg, RuntimeError())
    assert not is_retryable(cfg, HttpClientError("x", code=ErrorCode.SCHEMA_VALIDATION_ERROR))


def test_retry_delay_grows_and_caps():
    cfg = RetryConfig(initial_delay=1.0, max_delay=5.0, jitter=False)
    assert [compute_retry_delay(cfg, n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


def test_retry_delay_jitter_bounds():
    cfg = RetryConfig(initial_delay=1.0, jitter=True, jitter_factor=0.25)
    for _ in range(20):
        assert 1.0 <= compute_retry_delay(cfg, 1) <= 1.25
