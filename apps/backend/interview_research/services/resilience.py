"""Timeout and retry wrappers for external calls.

with_timeout turns any awaitable operation into an Outcome instead of
raising, so callers can join several bounded calls without one failure
aborting the others. with_retry re-invokes an operation on transient
failures with capped exponential backoff (tenacity) and logs every attempt.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

FailureReason = Literal["timeout", "error"]


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Tagged result of a bounded operation.

    Exactly one of ``value`` (ok=True) or ``reason``/``detail`` (ok=False)
    is meaningful. ``error`` keeps the original exception for callers that
    need to re-raise or classify it.
    """

    ok: bool
    value: T | None = None
    reason: FailureReason | None = None
    detail: str | None = None
    error: BaseException | None = None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(
        cls,
        reason: FailureReason,
        detail: str,
        error: BaseException | None = None,
    ) -> "Outcome[T]":
        return cls(ok=False, reason=reason, detail=detail, error=error)

    def as_record(self) -> dict[str, Any]:
        """JSON-friendly summary (value omitted)."""
        if self.ok:
            return {"ok": True}
        return {"ok": False, "reason": self.reason, "detail": self.detail}


def _consume_abandoned(task: asyncio.Task) -> None:
    # Retrieve the result of an abandoned operation so a late exception is
    # not reported as "never retrieved".
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"Abandoned operation finished with {type(exc).__name__}: {exc}")


async def with_timeout(
    operation: Callable[[], Awaitable[T]],
    seconds: float,
    label: str,
) -> Outcome[T]:
    """Race an operation against a deadline.

    The operation runs as its own task. If the deadline passes first the
    task is signalled to cancel and abandoned: the wrapper returns a
    timeout Outcome immediately and never awaits the task again.

    Args:
        operation: Zero-argument callable returning an awaitable
        seconds: Deadline in seconds
        label: Name used in logs and failure details

    Returns:
        Outcome with the value, or a timeout/error failure
    """
    task = asyncio.ensure_future(operation())
    try:
        done, _ = await asyncio.wait({task}, timeout=seconds)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if not done:
        task.cancel()
        task.add_done_callback(_consume_abandoned)
        logger.warning(f"{label} timed out after {seconds}s")
        return Outcome.failure("timeout", f"{label} timed out after {seconds}s")

    if task.cancelled():
        logger.warning(f"{label} was cancelled")
        return Outcome.failure("error", f"{label} was cancelled")

    exc = task.exception()
    if exc is not None:
        logger.warning(f"{label} failed: {type(exc).__name__}: {exc}")
        return Outcome.failure("error", f"{type(exc).__name__}: {exc}", error=exc)

    return Outcome.success(task.result())


def is_transient(exc: BaseException) -> bool:
    """Whether a failure is worth retrying (network hiccup, throttling, 5xx)."""
    if isinstance(exc, (asyncio.TimeoutError, httpx.TransportError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return False


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    label: str,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 8.0,
    retry_on: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Invoke an operation, retrying transient failures.

    Delays grow as base_delay * 2^(attempt - 1), capped at max_delay.

    Args:
        operation: Zero-argument callable returning an awaitable
        label: Name used in logs
        max_attempts: Total attempts including the first
        base_delay: Backoff base in seconds
        max_delay: Backoff cap in seconds
        retry_on: Predicate deciding whether a failure is retryable
        sleep: Sleep function (injectable for tests)

    Returns:
        The operation's result

    Raises:
        The last failure once attempts are exhausted, or the first
        non-retryable failure immediately
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempts = 0

    async def attempt() -> T:
        nonlocal attempts
        attempts += 1
        return await operation()

    def log_retry(state: RetryCallState) -> None:
        error = state.outcome.exception()
        logger.warning(
            f"{label} attempt {state.attempt_number}/{max_attempts} failed "
            f"({type(error).__name__}: {error}); "
            f"retrying in {state.next_action.sleep:.1f}s"
        )

    retryer = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=base_delay, max=max_delay),
        retry=retry_if_exception(retry_on),
        before_sleep=log_retry,
        sleep=sleep,
        reraise=True,
    )
    try:
        return await retryer(attempt)
    except Exception as e:
        if attempts > 1:
            logger.error(
                f"{label} failed after {attempts}/{max_attempts} attempts: "
                f"{type(e).__name__}: {e}"
            )
        raise
