"""
Default HTTP Capabilities
==========================

Stage implementations for the lifecycle machine backed by httpx (transport)
and pydantic (schema validation):

  prepare_request    validate request parts, render path, stamp identity/timing
  HttpxDispatcher    send through httpx.AsyncClient; cancellable per request
  validate_response  pick the schema for the status, decode into TypedResult

``create_http_machine`` wires them into a ``RequestLifecycleMachine``.
The machine itself never depends on this module.
"""

from __future__ import annotations

import asyncio
import re
import time
import uuid
from collections.abc import Mapping
from functools import lru_cache
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter, ValidationError

from httpflow.core.config import get_settings
from httpflow.core.exceptions import HttpClientError, create_validation_details
from httpflow.core.types import ErrorCode
from httpflow.infra.runtime.context import (
    LifecycleSnapshot,
    PreparedRequest,
    RequestDescription,
    RequestIdentity,
    RequestTiming,
    ResponseSnapshot,
    TypedResult,
)
from httpflow.infra.runtime.machine import RequestLifecycleMachine
from httpflow.infra.runtime.services import LifecycleObservers, LifecycleServices
from httpflow.infra.telemetry import get_logger
from httpflow.utils.cancellation import CancellationToken, RequestCancelled, run_cancellable

logger = get_logger(__name__)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")

# ── Schema helpers ─────────────────────────────────────────────────

@lru_cache(maxsize=256)
def _adapter(schema: Any) -> TypeAdapter[Any]:
    return TypeAdapter(schema)

def _schema_name(schema: Any) -> str:
    return getattr(schema, "__name__", None) or repr(schema)

def _validate_part(schema: Any, value: Any, part: str) -> Any:
    """Validate one request/response part; ``schema=None`` passes it through."""
    if schema is None:
        return value
    try:
        return _adapter(schema).validate_python(value)
    except ValidationError as exc:
        issues = [{**issue, "loc": (part, *issue.get("loc", ()))} for issue in exc.errors()]
        details = create_validation_details(issues, _schema_name(schema))
        raise HttpClientError(
            f"Http client {part} failed schema validation",
            code=ErrorCode.SCHEMA_VALIDATION_ERROR,
            cause=exc,
            validation_details=details,
        ) from exc

def _dump(schema: Any, value: Any) -> Any:
    if schema is None:
        return value
    return _adapter(schema).dump_python(value, mode="json")

def _render_path(template: str, params: Mapping[str, Any]) -> str:
    missing = [name for name in _PLACEHOLDER.findall(template) if name not in params]
    if missing:
        raise HttpClientError(
            f"Missing path parameter(s): {', '.join(missing)}",
            code=ErrorCode.SCHEMA_VALIDATION_ERROR,
            validation_details=create_validation_details(
                [{"loc": ("path_params", name), "msg": "Field required"} for name in missing],
                "path",
            ),
        )
    return _PLACEHOLDER.sub(lambda m: quote(str(params[m.group(1)]), safe=""), template)

# ── Prepare ────────────────────────────────────────────────────────

async def prepare_request(snapshot: LifecycleSnapshot) -> PreparedRequest:
    """Validate the request description and stamp identity and timing."""
    request = snapshot.request
    if request is None:
        raise HttpClientError("No request was submitted", code=ErrorCode.REQUEST_FAILED, retryable=False)

    headers = _validate_part(request.request_headers_schema, dict(request.headers), "headers")
    query = _validate_part(request.query_schema, dict(request.query), "query")
    path_params = _validate_part(request.path_params_schema, dict(request.path_params), "path_params")
    body = _validate_part(request.request_body_schema, request.body, "body")

    options = request.evolve(
        path=_render_path(request.path, _dump(request.path_params_schema, path_params)),
        headers=_dump(request.request_headers_schema, headers),
        query=_dump(request.query_schema, query),
        path_params=_dump(request.path_params_schema, path_params),
        body=_dump(request.request_body_schema, body),
    )

    identity = RequestIdentity(
        service_name=request.service_name,
        origin=request.origin,
        path=options.path,
        method=request.method,
        path_template=request.path,
        request_id=uuid.uuid4().hex,
    )
    opaque = request.opaque.evolve(
        request=identity,
        timing=RequestTiming(start_time=time.monotonic(), attempts=snapshot.attempt),
        validation_details=(),
    )
    logger.debug(
        "request_prepared",
        service=identity.service_name,
        method=identity.method,
        path=identity.path,
        request_id=identity.request_id,
        attempt=snapshot.attempt,
    )
    return PreparedRequest(options=options, opaque=opaque)

# ── Dispatch ───────────────────────────────────────────────────────

def _request_key(prepared: PreparedRequest) -> str:
    identity = prepared.opaque.request
    if identity is not None and identity.request_id:
        return identity.request_id
    return f"prepared-{id(prepared)}"

def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" not in content_type:
        return response.text
    try:
        return response.json()
    except ValueError as exc:
        raise HttpClientError(
            "Response body is not valid JSON",
            code=ErrorCode.INVALID_RESPONSE_BODY,
            cause=exc,
            status=response.status_code,
        ) from exc

class HttpxDispatcher:
    """
    Dispatch capability sending prepared requests through ``httpx.AsyncClient``.

    Usage:
        dispatcher = HttpxDispatcher()
        services = LifecycleServices(dispatch=dispatcher, cancel=dispatcher.cancel, ...)
        ...
        await dispatcher.aclose()

    A client passed in is borrowed and never closed here.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, *, timeout_s: float | None = None):
        self._client = client
        self._owns_client = client is None
        self._timeout_s = timeout_s if timeout_s is not None else get_settings().DISPATCH_TIMEOUT_S
        self._tokens: dict[str, CancellationToken] = {}

    @property
    def in_flight(self) -> int:
        return len(self._tokens)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    async def __call__(self, snapshot: LifecycleSnapshot) -> ResponseSnapshot:
        prepared = snapshot.prepared
        if prepared is None:
            raise HttpClientError(
                "Nothing to dispatch: request was not prepared",
                code=ErrorCode.REQUEST_FAILED,
                retryable=False,
            )

        key = _request_key(prepared)
        token = self._tokens.setdefault(key, CancellationToken())
        try:
            token.raise_if_cancelled()
            response = await run_cancellable(self._send(prepared.options), token)
        except RequestCancelled as exc:
            raise HttpClientError(
                "Http client request was aborted",
                code=ErrorCode.REQUEST_ABORTED,
                cause=exc,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "dispatch_failed",
                request_id=key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise HttpClientError(
                f"Http client request failed: {exc}",
                code=ErrorCode.REQUEST_FAILED,
                cause=exc,
            ) from exc
        finally:
            self._tokens.pop(key, None)

        logger.debug("response_received", request_id=key, status=response.status_code)
        return ResponseSnapshot(
            status=response.status_code,
            headers=dict(response.headers),
            body=_decode_body(response),
        )

    async def _send(self, options: RequestDescription) -> httpx.Response:
        params = {k: v for k, v in options.query.items() if v is not None}
        body = options.body
        kwargs: dict[str, Any] = {}
        if isinstance(body, (bytes, str)):
            kwargs["content"] = body
        elif body is not None:
            kwargs["json"] = body
        return await self._get_client().request(
            options.method,
            options.url,
            headers=dict(options.headers),
            params=params,
            **kwargs,
        )

    def cancel(self, snapshot: LifecycleSnapshot) -> None:
        """Abort the in-flight send for this snapshot's request, if any."""
        prepared = snapshot.prepared
        if prepared is None or snapshot.response is not None:
            return
        timing = prepared.opaque.timing
        if timing is not None and timing.attempts != snapshot.attempt:
            # prepared by an earlier attempt; its send has already settled
            return
        key = _request_key(prepared)
        token = self._tokens.get(key)
        if token is None:
            # The send may not have started yet. A task scheduled before this
            # call takes its first step before the discard below runs.
            token = self._tokens[key] = CancellationToken()
            asyncio.get_running_loop().call_soon(self._discard_unclaimed, key, token)
        token.cancel("cancelled by caller")
        logger.info("dispatch_cancel_requested", request_id=key)

    def _discard_unclaimed(self, key: str, token: CancellationToken) -> None:
        if self._tokens.get(key) is token:
            del self._tokens[key]

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

# ── Validate ───────────────────────────────────────────────────────

async def validate_response(snapshot: LifecycleSnapshot) -> TypedResult:
    """Decode the response against the schema declared for its status."""
    response = snapshot.response
    prepared = snapshot.prepared
    if response is None or prepared is None:
        raise HttpClientError(
            "Nothing to validate: no response was received",
            code=ErrorCode.INVALID_RESPONSE_BODY,
            retryable=False,
        )

    response_time = time.monotonic()
    schemas = prepared.options.response_schemas
    if schemas:
        schema = schemas.get(response.status)
        if schema is None:
            raise HttpClientError(
                f"Unexpected response status {response.status}",
                code=ErrorCode.UNEXPECTED_STATUS,
                status=response.status,
            )
        try:
            headers = _dump(
                schema.headers_schema,
                _validate_part(schema.headers_schema, dict(response.headers), "headers"),
            )
            data = _validate_part(schema.body_schema, response.body, "body")
        except HttpClientError as exc:
            exc.status = response.status
            raise
        statuses = tuple(schemas)
    else:
        headers, data, statuses = dict(response.headers), response.body, ()

    timing = prepared.opaque.timing
    start = timing.start_time if timing else response_time
    opaque = prepared.opaque.evolve(
        timing=RequestTiming(
            start_time=start,
            response_time=response_time,
            total_time=time.monotonic() - start,
            attempts=snapshot.attempt,
        ),
    )
    return TypedResult(
        status=response.status,
        data=data,
        headers=headers,
        opaque=opaque,
        statuses=statuses,
    )

# ── Factory ────────────────────────────────────────────────────────

def create_http_machine(
    *,
    client: httpx.AsyncClient | None = None,
    machine_id: str | None = None,
    max_attempts: int | None = None,
    observers: LifecycleObservers | None = None,
    initial_context: Mapping[str, Any] | None = None,
) -> RequestLifecycleMachine:
    """Machine wired with the httpx/pydantic capabilities; defaults from settings."""
    settings = get_settings()
    dispatcher = HttpxDispatcher(client)
    return RequestLifecycleMachine(
        machine_id=machine_id or settings.MACHINE_ID,
        max_attempts=max_attempts if max_attempts is not None else settings.MAX_ATTEMPTS,
        initial_context=initial_context,
        services=LifecycleServices(
            prepare=prepare_request,
            dispatch=dispatcher,
            validate=validate_response,
            cancel=dispatcher.cancel,
        ),
        observers=observers,
    )
