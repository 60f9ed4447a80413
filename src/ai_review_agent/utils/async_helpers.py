"""Error taxonomy, retries, cancellation and batching for review runs.

Per-unit failures (one hunk, one fix) are recovered by their callers and
become partial results. Only structural errors reach the entry point.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import ParamSpec, TypeVar

import anthropic
import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

log = structlog.get_logger()

P = ParamSpec("P")
T = TypeVar("T")
R = TypeVar("R")


# =============================================================================
# Errors
# =============================================================================


class ReviewAgentError(Exception):
    """Base class of every error raised by the review agent."""


class PatchParseError(ReviewAgentError):
    """A hunk header in a unified diff could not be parsed."""


class AnalysisCallError(ReviewAgentError):
    """A call to the analysis capability failed."""


class RateLimitError(AnalysisCallError):
    """The analysis capability refused the call for rate reasons.

    Attributes:
        retry_after: Seconds the server asked us to wait, if it said.
    """

    def __init__(self, message: str, retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ExtractionError(ReviewAgentError):
    """No findings document could be pulled out of analysis output.

    Attributes:
        reason: Short tag such as ``no_json`` or ``unbalanced``.
    """

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class PatchApplyError(ReviewAgentError):
    """A suggested fix could not be applied to the working tree."""


class SkillRunnerError(ReviewAgentError):
    """A skill run is missing a structural precondition."""


class SkillLoaderError(ReviewAgentError):
    """A skill definition could not be found or parsed."""


class CommentSourceError(ReviewAgentError):
    """Previously posted comments could not be read."""


# =============================================================================
# Retries
# =============================================================================

# Network hiccups, rate limits and 5xx responses; everything else fails fast
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


def _log_retry(retry_state: RetryCallState) -> None:
    if retry_state.outcome is None:
        return
    error = retry_state.outcome.exception()
    if error is not None:
        log.warning(
            "analysis_call_retry",
            attempt=retry_state.attempt_number,
            error_type=type(error).__name__,
            error=str(error),
            sleep_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
        )


def create_retry(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    retry_on: tuple[type[Exception], ...] = TRANSIENT_ERRORS,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Build a tenacity decorator with exponential backoff.

    The final error is re-raised unchanged once attempts run out.

    Args:
        max_attempts: Attempts including the first call.
        min_wait: Lower bound of the backoff in seconds.
        max_wait: Upper bound of the backoff in seconds.
        retry_on: Exception types worth another attempt.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
        reraise=True,
    )


# =============================================================================
# Cancellation
# =============================================================================


class CancellationToken:
    """Run-wide cancellation signal, passed explicitly to every call boundary.

    Schedulers check ``is_cancelled`` before starting a file or hunk;
    adapters race in-flight calls against ``wait()`` via run_cancellable.

    Example:
        token = CancellationToken()
        loop.add_signal_handler(signal.SIGINT, token.cancel)
        report = await runner.run(skill, context, token)
    """

    def __init__(self) -> None:
        self._cancelled = False
        # Created on first wait() so tokens can be built outside a loop
        self._event: asyncio.Event | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Fire the token; idempotent."""
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    async def wait(self) -> None:
        """Block until the token fires."""
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        """Cancellation point: raise asyncio.CancelledError once fired."""
        if self._cancelled:
            raise asyncio.CancelledError("Operation was cancelled")


async def run_cancellable(coro: Awaitable[T], token: CancellationToken | None) -> T:
    """Await ``coro`` unless ``token`` fires first.

    When the token wins, the work is cancelled (which aborts an in-flight
    HTTP request) and asyncio.CancelledError is raised.
    """
    if token is None:
        return await coro

    if token.is_cancelled:
        if asyncio.iscoroutine(coro):
            coro.close()
        raise asyncio.CancelledError("Operation was cancelled")

    work = asyncio.ensure_future(coro)
    fired = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({work, fired}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        fired.cancel()

    if work in done:
        return work.result()

    work.cancel()
    try:
        await work
    except asyncio.CancelledError:
        pass
    raise asyncio.CancelledError("Operation was cancelled")


# =============================================================================
# Batching
# =============================================================================


async def process_in_batches(
    items: Sequence[T],
    fn: Callable[[T, int], Awaitable[R]],
    batch_size: int,
    token: CancellationToken | None = None,
) -> list[R]:
    """Run ``fn(item, index)`` over items, at most ``batch_size`` at a time.

    Batches run one after another, each with asyncio.gather. Results keep
    input order. Once ``token`` fires no further batch is started, so the
    result list may be shorter than ``items``.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    results: list[R] = []
    for start in range(0, len(items), batch_size):
        if token is not None and token.is_cancelled:
            log.info("batch_processing_cancelled", processed=len(results), total=len(items))
            break
        batch = items[start : start + batch_size]
        results.extend(await asyncio.gather(*(fn(item, start + i) for i, item in enumerate(batch))))
    return results
