"""
Request Lifecycle Machine — Outbound Call Coordinator
=======================================================

A finite-state coordinator for one outbound HTTP call:

  idle → preparing → dispatching → validating → succeeded
              │            │             │
              └────────────┴─────────────┴──▶ failed / cancelled

Each in-flight state invokes one injected async capability
(prepare / dispatch / validate) and waits for its outcome. Failures land
in ``failed`` with the exception captured verbatim; ``retry`` re-enters
``preparing`` while ``attempt < max_attempts``. ``cancel`` during an
in-flight stage moves to ``cancelled`` and fires the cancel capability
once; a late outcome of the abandoned stage is ignored.

The transition table is data: ``TRANSITIONS`` maps (state, event type) to
a ``Transition``; any pair not listed is ignored. ``ENTRY_ACTIONS`` lists
what runs on entering a state. Actions are the only writers of the
context.

Usage:
    machine = RequestLifecycleMachine(
        max_attempts=2,
        services=LifecycleServices(prepare=..., dispatch=..., validate=...),
    )
    outcome = await machine.run(request)
    outcome.match(ok=lambda r: r.value.data, error=lambda e: None)
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import partial
from typing import Any

from httpflow.core.exceptions import (
    HttpClientError,
    RetryConfig,
    compute_retry_delay,
    is_retryable,
)
from httpflow.core.result import Result
from httpflow.core.tagged import TaggedValue
from httpflow.core.types import ErrorCode, EventType, LifecycleState, Stage
from httpflow.infra.runtime.context import (
    LifecycleContext,
    LifecycleSnapshot,
    RequestDescription,
)
from httpflow.infra.runtime.events import (
    Cancel,
    LifecycleEvent,
    Reset,
    Retry,
    StageDone,
    StageFailed,
    Submit,
    TransitionRecord,
)
from httpflow.infra.runtime.services import LifecycleObservers, LifecycleServices
from httpflow.infra.telemetry import get_logger, get_metrics, get_tracer, log_context
from httpflow.infra.telemetry.metrics import MetricsCollector

logger = get_logger(__name__)

DEFAULT_MACHINE_ID = "httpClient"

S = LifecycleState
E = EventType

# ── Transition Table ───────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class Transition:
    """Target state, actions to run on the way, optional guard name."""

    target: LifecycleState
    actions: tuple[str, ...] = ()
    guard: str | None = None

_QUEUE = Transition(S.PREPARING, ("queue_request", "notify_queued"))
_RESET = Transition(S.IDLE, ("reset_context",))
_CANCEL = Transition(S.CANCELLED, ("mark_cancelled", "execute_cancel"))

def _stage_outcomes(
    on_done: LifecycleState, store: str
) -> dict[EventType, Transition]:
    return {
        E.STAGE_DONE: Transition(on_done, (store,), guard="is_current_invocation"),
        E.STAGE_ERROR: Transition(S.FAILED, ("store_failure",), guard="is_current_invocation"),
        E.CANCEL: _CANCEL,
    }

_TABLE: dict[LifecycleState, dict[EventType, Transition]] = {
    S.IDLE: {
        E.SUBMIT: _QUEUE,
    },
    S.PREPARING: _stage_outcomes(S.DISPATCHING, "store_prepared"),
    S.DISPATCHING: _stage_outcomes(S.VALIDATING, "store_response"),
    S.VALIDATING: _stage_outcomes(S.SUCCEEDED, "store_result"),
    S.SUCCEEDED: {
        E.SUBMIT: _QUEUE,
        E.RESET: _RESET,
    },
    S.FAILED: {
        E.RETRY: Transition(S.PREPARING, guard="can_retry"),
        E.SUBMIT: _QUEUE,
        E.RESET: _RESET,
    },
    S.CANCELLED: {
        E.SUBMIT: _QUEUE,
        E.RESET: _RESET,
    },
}

TRANSITIONS: Mapping[tuple[LifecycleState, EventType], Transition] = {
    (state, event): transition
    for state, row in _TABLE.items()
    for event, transition in row.items()
}

ENTRY_ACTIONS: Mapping[LifecycleState, tuple[str, ...]] = {
    S.PREPARING: ("increment_attempt", "invoke_prepare"),
    S.DISPATCHING: ("invoke_dispatch",),
    S.VALIDATING: ("invoke_validate",),
    S.SUCCEEDED: ("notify_success",),
    S.FAILED: ("notify_failure",),
    S.CANCELLED: ("notify_cancelled",),
}

_STAGE_FAILURE_CODES = {
    Stage.PREPARE: ErrorCode.PREPARE_FAILED,
    Stage.DISPATCH: ErrorCode.DISPATCH_FAILED,
    Stage.VALIDATE: ErrorCode.VALIDATION_FAILED,
}

_SETTLED = frozenset({S.SUCCEEDED, S.FAILED, S.CANCELLED})

# ── Machine ────────────────────────────────────────────────────────

class RequestLifecycleMachine:
    """
    Drives one logical request through prepare → dispatch → validate.

    Single-writer: events are processed one at a time; an event sent while
    another is being processed (e.g. from an observer) is queued and
    handled right after. ``send`` needs a running event loop because
    entering an in-flight state schedules the stage as an asyncio task.

    Not thread-safe. Use one instance per in-flight logical request.
    """

    def __init__(
        self,
        *,
        machine_id: str = DEFAULT_MACHINE_ID,
        max_attempts: int = 1,
        initial_context: Mapping[str, Any] | None = None,
        services: LifecycleServices | None = None,
        observers: LifecycleObservers | None = None,
        metrics: MetricsCollector | None = None,
        history_size: int = 100,
    ) -> None:
        if isinstance(max_attempts, bool) or not isinstance(max_attempts, int) or max_attempts < 1:
            raise ValueError(f"max_attempts must be an integer >= 1, got {max_attempts!r}")

        overrides = dict(initial_context or {})
        unknown = set(overrides) - LifecycleContext.field_names()
        if unknown:
            raise TypeError(f"Unknown context field(s): {', '.join(sorted(unknown))}")

        self._id = machine_id
        self._max_attempts = max_attempts
        self._services = (services or LifecycleServices()).resolved()
        self._observers = (observers or LifecycleObservers()).resolved()
        self._metrics = metrics or get_metrics()
        self._log = logger.bind(machine=machine_id)

        self._initial = LifecycleContext(**overrides).snapshot()
        self._context = LifecycleContext.from_snapshot(self._initial)
        self._state = S.IDLE

        self._invocation = 0
        self._pending: deque[LifecycleEvent] = deque()
        self._processing = False
        self._background: set[asyncio.Future[Any]] = set()
        self._waiters: list[tuple[frozenset[LifecycleState], asyncio.Future[LifecycleState]]] = []
        self._history: deque[TransitionRecord] = deque(maxlen=history_size)

        self._actions: dict[str, Callable[[Any], None]] = {
            "queue_request": self._queue_request,
            "notify_queued": self._notify_queued,
            "increment_attempt": self._increment_attempt,
            "invoke_prepare": partial(self._invoke, Stage.PREPARE),
            "invoke_dispatch": partial(self._invoke, Stage.DISPATCH),
            "invoke_validate": partial(self._invoke, Stage.VALIDATE),
            "store_prepared": self._store_prepared,
            "store_response": self._store_response,
            "store_result": self._store_result,
            "store_failure": self._store_failure,
            "mark_cancelled": self._mark_cancelled,
            "execute_cancel": self._execute_cancel,
            "reset_context": self._reset_context,
            "notify_success": partial(self._notify_settled, "on_success"),
            "notify_failure": partial(self._notify_settled, "on_failure"),
            "notify_cancelled": partial(self._notify_settled, "on_cancelled"),
        }
        self._guards: dict[str, Callable[[Any], bool]] = {
            "can_retry": self._can_retry,
            "is_current_invocation": self._is_current_invocation,
        }

    # ── Observable state ──

    @property
    def id(self) -> str:
        return self._id

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def services(self) -> LifecycleServices:
        """Resolved capabilities (unset stage slots replaced by stand-ins)."""
        return self._services

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def snapshot(self) -> LifecycleSnapshot:
        return self._context.snapshot()

    @property
    def initial_snapshot(self) -> LifecycleSnapshot:
        return self._initial

    @property
    def history(self) -> tuple[TransitionRecord, ...]:
        return tuple(self._history)

    @property
    def exhausted(self) -> bool:
        """Failed with no retries left under the ceiling."""
        return self._state is S.FAILED and self._context.attempt >= self._max_attempts

    @property
    def failure_code(self) -> ErrorCode | None:
        if self._state is not S.FAILED:
            return None
        error = self._context.error
        if isinstance(error, HttpClientError) and error.code is ErrorCode.NOT_IMPLEMENTED:
            return ErrorCode.NOT_IMPLEMENTED
        if self._context.failed_stage is None:
            return None
        return _STAGE_FAILURE_CODES[self._context.failed_stage]

    def __repr__(self) -> str:
        return (
            f"<RequestLifecycleMachine id={self._id!r} state={self._state.value} "
            f"attempt={self._context.attempt}/{self._max_attempts}>"
        )

    # ── Events ──

    def send(self, event: LifecycleEvent) -> None:
        """Process ``event`` (or queue it if a transition is already running)."""
        asyncio.get_running_loop()
        self._pending.append(event)
        if self._processing:
            return

        self._processing = True
        try:
            while self._pending:
                self._process(self._pending.popleft())
        finally:
            self._processing = False

    def submit(self, request: RequestDescription) -> None:
        self.send(Submit(request))

    def retry(self) -> None:
        self.send(Retry())

    def reset(self) -> None:
        self.send(Reset())

    def cancel(self) -> None:
        self.send(Cancel())

    def can(self, event: LifecycleEvent) -> bool:
        """Would ``event`` be accepted in the current state?"""
        transition = TRANSITIONS.get((self._state, event.type))
        if transition is None:
            return False
        return transition.guard is None or self._guards[transition.guard](event)

    def _process(self, event: LifecycleEvent) -> None:
        source = self._state
        transition = TRANSITIONS.get((source, event.type))
        if transition is None:
            self._log.debug("event_ignored", state=source.value, event_type=event.type.value)
            return
        if transition.guard is not None and not self._guards[transition.guard](event):
            self._log.debug(
                "event_rejected_by_guard",
                state=source.value,
                event_type=event.type.value,
                guard=transition.guard,
            )
            return

        for action in transition.actions:
            self._actions[action](event)

        target = transition.target
        self._state = target
        self._history.append(TransitionRecord(source, target, event.type, datetime.now(UTC)))
        self._metrics.record_transition(self._id, source.value, target.value)
        self._log.debug(
            "transition",
            source=source.value,
            target=target.value,
            event_type=event.type.value,
            attempt=self._context.attempt,
        )

        for action in ENTRY_ACTIONS.get(target, ()):
            self._actions[action](event)

        if target in _SETTLED:
            self._metrics.record_settled(self._id, target.value)
        self._wake_waiters()

    # ── Guards ──

    def _can_retry(self, event: Any) -> bool:
        return self._context.attempt < self._max_attempts

    def _is_current_invocation(self, event: StageDone | StageFailed) -> bool:
        return event.invocation == self._invocation

    # ── Actions ──

    def _queue_request(self, event: Submit) -> None:
        ctx = self._context
        ctx.request = event.request
        ctx.prepared = None
        ctx.response = None
        ctx.result = None
        ctx.error = None
        ctx.cancelled = False
        ctx.failed_stage = None
        ctx.attempt = 0

    def _notify_queued(self, event: Submit) -> None:
        self._notify("on_request_queued", self._context.snapshot(), event)

    def _increment_attempt(self, event: Any) -> None:
        self._context.attempt += 1

    def _store_prepared(self, event: StageDone) -> None:
        self._context.prepared = event.output
        self._clear_failure()

    def _store_response(self, event: StageDone) -> None:
        self._context.response = event.output
        self._clear_failure()

    def _store_result(self, event: StageDone) -> None:
        self._context.result = event.output
        self._clear_failure()

    def _clear_failure(self) -> None:
        self._context.error = None
        self._context.failed_stage = None

    def _store_failure(self, event: StageFailed) -> None:
        self._context.error = event.error
        self._context.failed_stage = event.stage
        self._log.warning(
            "stage_failed",
            stage=event.stage.value,
            attempt=self._context.attempt,
            error_type=type(event.error).__name__,
            error=str(event.error),
        )

    def _mark_cancelled(self, event: Cancel) -> None:
        self._context.cancelled = True

    def _execute_cancel(self, event: Cancel) -> None:
        """Fire the cancel capability without waiting for it."""
        snapshot = self._context.snapshot()
        try:
            pending = self._services.cancel(snapshot)
        except Exception as exc:
            self._collaborator_error("cancel", exc)
            return

        if inspect.isawaitable(pending):
            future = asyncio.ensure_future(pending)
            self._track(future)
            future.add_done_callback(self._on_cancel_settled)

    def _reset_context(self, event: Reset) -> None:
        self._context = LifecycleContext.from_snapshot(self._initial)

    def _notify_settled(self, observer: str, event: Any) -> None:
        self._notify(observer, self._context.snapshot())

    # ── Stage invocation ──

    def _invoke(self, stage: Stage, event: Any) -> None:
        self._invocation += 1
        invocation = self._invocation
        snapshot = self._context.snapshot()
        capability = self._services.for_stage(stage)

        task = asyncio.get_running_loop().create_task(
            self._run_stage(stage, capability, snapshot),
            name=f"{self._id}:{stage.value}:{invocation}",
        )
        self._track(task)
        task.add_done_callback(partial(self._on_stage_settled, stage, invocation))

    async def _run_stage(
        self,
        stage: Stage,
        capability: Callable[[LifecycleSnapshot], Any],
        snapshot: LifecycleSnapshot,
    ) -> Any:
        identity = snapshot.prepared.opaque.request if snapshot.prepared else None
        started = time.monotonic()
        outcome = "error"
        with log_context(
            machine_id=self._id,
            request_id=identity.request_id if identity else None,
        ), get_tracer(__name__).span(
            f"lifecycle.stage.{stage.value}",
            attributes={
                "lifecycle.machine": self._id,
                "lifecycle.attempt": snapshot.attempt,
                "http.service": snapshot.request.service_name if snapshot.request else None,
            },
            kind="client",
        ) as span:
            try:
                output = await capability(snapshot)
                outcome = "ok"
                return output
            finally:
                span.set_attribute("lifecycle.outcome", outcome)
                self._metrics.record_stage(
                    self._id, stage.value, outcome, time.monotonic() - started
                )

    def _on_stage_settled(self, stage: Stage, invocation: int, task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            error: BaseException = HttpClientError(
                f"Http client {stage.value} invocation was aborted",
                code=ErrorCode.REQUEST_ABORTED,
            )
            self.send(StageFailed(stage, invocation, error))
            return

        exc = task.exception()
        if exc is not None:
            self.send(StageFailed(stage, invocation, exc))
        else:
            self.send(StageDone(stage, invocation, task.result()))

    def _on_cancel_settled(self, future: asyncio.Future[Any]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self._collaborator_error("cancel", exc)

    def _track(self, future: asyncio.Future[Any]) -> None:
        self._background.add(future)
        future.add_done_callback(self._background.discard)

    # ── Collaborator safety ──

    def _notify(self, observer: str, *args: Any) -> None:
        callback = getattr(self._observers, observer)
        try:
            callback(*args)
        except Exception as exc:
            self._collaborator_error(observer, exc)

    def _collaborator_error(self, kind: str, exc: BaseException) -> None:
        self._metrics.record_collaborator_error(self._id, kind)
        self._log.error("collaborator_failed", exc=exc, kind=kind, state=self._state.value)

    # ── Waiting ──

    def _wake_waiters(self) -> None:
        for targets, future in self._waiters:
            if self._state in targets and not future.done():
                future.set_result(self._state)

    async def wait_for(
        self, *states: LifecycleState | str, timeout: float | None = None
    ) -> LifecycleState:
        """Wait until the machine enters one of ``states``."""
        targets = frozenset(LifecycleState(s) for s in states)
        if self._state in targets:
            return self._state

        future: asyncio.Future[LifecycleState] = asyncio.get_running_loop().create_future()
        entry = (targets, future)
        self._waiters.append(entry)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            self._waiters.remove(entry)

    async def wait_settled(self, timeout: float | None = None) -> LifecycleState:
        return await self.wait_for(*_SETTLED, timeout=timeout)

    # ── Outcome ──

    def outcome(self) -> TaggedValue:
        """``Result.ok(TypedResult)`` on success, ``Result.error(...)`` otherwise."""
        if self._state is S.SUCCEEDED:
            return Result.ok(self._context.result)
        if self._state is S.FAILED:
            return Result.error(self._context.error)
        if self._state is S.CANCELLED:
            return Result.error(
                HttpClientError("Http client request was cancelled", code=ErrorCode.REQUEST_ABORTED)
            )
        raise RuntimeError(f"Machine {self._id!r} has not settled (state={self._state.value})")

    async def run(
        self,
        request: RequestDescription,
        *,
        backoff: RetryConfig | None = None,
        timeout: float | None = None,
    ) -> TaggedValue:
        """
        Submit ``request`` and wait for a settled state.

        With ``backoff``, retryable failures are retried after an
        exponential delay while both the machine ceiling and
        ``backoff.max_attempts`` allow it. ``timeout`` bounds each wait.
        """
        self.submit(request)
        state = await self.wait_settled(timeout)

        while (
            backoff is not None
            and state is S.FAILED
            and self._context.attempt < backoff.max_attempts
            and self.can(Retry())
            and is_retryable(backoff, self._context.error)
        ):
            delay = compute_retry_delay(backoff, self._context.attempt)
            self._log.info(
                "retry_scheduled",
                attempt=self._context.attempt,
                max_attempts=self._max_attempts,
                delay_s=round(delay, 3),
            )
            await asyncio.sleep(delay)
            if not self.can(Retry()):
                break
            self.retry()
            state = await self.wait_settled(timeout)

        return self.outcome()
