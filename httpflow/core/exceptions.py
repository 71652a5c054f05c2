"""Custom exception classes for httpflow.

Includes:
- Base exception with a serializable error payload
- HttpClientError carrying an error code, status and validation details
- Retry configuration and back-off helpers used by the lifecycle machine
"""

import logging
import random
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from httpflow.core.types import ErrorCode

logger = logging.getLogger(__name__)


class HttpFlowError(Exception):
    """Base exception for all httpflow errors."""

    def __init__(self, detail: str, error_code: str = "INTERNAL_ERROR"):
        self.detail = detail
        self.error_code = error_code
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for logs and diagnostics."""
        return {
            "error": self.error_code,
            "detail": self.detail,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True, slots=True)
class ValidationDetail:
    """A single schema violation, flattened for diagnostics."""

    field: str
    message: str
    schema: str | None = None
    issue: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "message": self.message, "schema": self.schema}


def create_validation_details(
    issues: Iterable[Mapping[str, Any]], schema_name: str
) -> tuple[ValidationDetail, ...]:
    """Flatten pydantic ``ValidationError.errors()`` into ValidationDetail entries."""
    return tuple(
        ValidationDetail(
            field=".".join(str(part) for part in issue.get("loc", ())),
            message=str(issue.get("msg", "")),
            schema=schema_name,
            issue=dict(issue),
        )
        for issue in issues
    )


class HttpClientError(HttpFlowError):
    """Raised by HTTP capabilities; recorded verbatim as the machine's failure value."""

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        cause: BaseException | None = None,
        status: int | None = None,
        validation_details: Iterable[ValidationDetail] = (),
        retryable: bool | None = None,
    ):
        super().__init__(detail=message, error_code=code.value)
        self.code = code
        self.cause = cause
        self.status = status
        self.validation_details = tuple(validation_details)
        self.retryable = code == ErrorCode.REQUEST_FAILED if retryable is None else retryable
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base.update(
            {
                "code": self.code.value,
                "status": self.status,
                "retryable": self.retryable,
                "validation_details": [d.to_dict() for d in self.validation_details],
            }
        )
        return base


# =============================================================================
# RETRY CONFIGURATION
# =============================================================================


@dataclass
class RetryConfig:
    """Back-off behaviour for automatic retries driven by ``run()``."""

    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.25
    retryable_exceptions: tuple = field(
        default_factory=lambda: (
            TimeoutError,
            ConnectionError,
            OSError,
        )
    )
    non_retryable_exceptions: tuple = field(
        default_factory=lambda: (
            ValueError,
            TypeError,
            KeyError,
        )
    )


DEFAULT_RETRY_CONFIG = RetryConfig()


def compute_retry_delay(cfg: RetryConfig, attempt: int) -> float:
    """Compute delay before retrying after ``attempt`` with optional jitter."""
    delay = min(
        cfg.initial_delay * (cfg.exponential_base ** (attempt - 1)),
        cfg.max_delay,
    )
    if cfg.jitter:
        delay += delay * cfg.jitter_factor * random.random()
    return delay


def is_retryable(cfg: RetryConfig, error: object) -> bool:
    """Decide whether a captured failure value is worth another attempt."""
    if isinstance(error, HttpClientError):
        return error.retryable
    if isinstance(error, cfg.non_retryable_exceptions):
        return False
    if isinstance(error, cfg.retryable_exceptions):
        return True
    logger.debug("[Retry] Unclassified failure %s treated as non-retryable", type(error).__name__)
    return False
