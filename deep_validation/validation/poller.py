"""
Terminal-status polling.

Vendor resources settle asynchronously: a message is "queued" long after the
send call returned, a transcript is "in-progress" for minutes. The poller
re-fetches at a fixed interval until the status is terminal or the wall-clock
budget runs out. Expiry is not an error: the last fetched value is returned
and the status check decides the verdict.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

from deep_validation.core.exceptions import VendorTransportError
from deep_validation.core.logging import get_logger

logger = get_logger("validation.poller")

T = TypeVar("T")


MESSAGE_TERMINAL_STATUSES = frozenset({"delivered", "undelivered", "failed", "read"})
CALL_TERMINAL_STATUSES = frozenset({"completed", "busy", "no-answer", "failed", "canceled"})
VERIFICATION_TERMINAL_STATUSES = frozenset({"approved", "expired", "canceled"})
CONFERENCE_TERMINAL_STATUSES = frozenset({"completed"})
RECORDING_TERMINAL_STATUSES = frozenset({"completed", "failed", "absent"})
TRANSCRIPT_TERMINAL_STATUSES = frozenset({"completed", "failed", "canceled", "error"})


@dataclass(frozen=True)
class PollResult(Generic[T]):
    """Last fetched value and how the wait ended."""

    value: T
    reached_terminal: bool
    attempts: int
    elapsed: float


def status_in(statuses: frozenset[str]) -> Callable[[object], bool]:
    """Terminal predicate for records exposing a ``status`` attribute."""

    def predicate(record: object) -> bool:
        return getattr(record, "status", None) in statuses

    return predicate


async def wait_for_terminal(
    fetch: Callable[[], Awaitable[T]],
    is_terminal: Callable[[T], bool],
    *,
    timeout: float,
    poll_interval: float,
) -> PollResult[T]:
    """
    Fetch until ``is_terminal`` holds or ``timeout`` seconds elapse.

    Every fetch is bounded by the remaining budget. A later fetch that overruns
    it is abandoned and the previous value is returned; a first fetch that
    overruns it raises VendorTransportError since there is nothing to return.
    Exceptions raised by ``fetch`` propagate.
    """
    start = time.monotonic()
    deadline = start + timeout
    try:
        value = await asyncio.wait_for(fetch(), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise VendorTransportError(f"Vendor API did not respond within {timeout:.1f}s") from e
    attempts = 1

    while not is_terminal(value):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        await asyncio.sleep(min(poll_interval, remaining))
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        try:
            value = await asyncio.wait_for(fetch(), timeout=remaining)
        except asyncio.TimeoutError:
            break
        attempts += 1

    elapsed = time.monotonic() - start
    reached = is_terminal(value)
    if not reached:
        logger.debug(f"Poll budget of {timeout:.1f}s spent after {attempts} fetches")
    return PollResult(value=value, reached_terminal=reached, attempts=attempts, elapsed=elapsed)
