"""
Request Cancellation Utility
============================

Cooperative cancellation for long-running stage capabilities.
The lifecycle machine only marks a request as cancelled; a capability
that wants to stop its in-flight work holds a token and races it.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

class RequestCancelled(Exception):
    """Raised when in-flight work was cancelled through its token."""

    pass

class CancellationToken:
    """
    Token for cooperative cancellation.

    Usage:
        token = CancellationToken()

        # elsewhere
        token.cancel("client went away")

        # in the worker
        token.raise_if_cancelled()
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Mark as cancelled. Subsequent calls keep the first reason."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled(self._reason or "Request cancelled")

    async def wait(self) -> None:
        await self._event.wait()

async def run_cancellable(awaitable: Awaitable[T], token: CancellationToken) -> T:
    """
    Await ``awaitable`` unless ``token`` is cancelled first.

    Raises RequestCancelled when the token wins; the inner task is
    cancelled and awaited in every case, so nothing leaks.
    """
    token.raise_if_cancelled()

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not work.done():
            work.cancel()
        await asyncio.gather(work, waiter, return_exceptions=True)

    if work.cancelled():
        logger.info("Cancelled in-flight work: %s", token.reason)
        raise RequestCancelled(token.reason or "Request cancelled")
    return work.result()
