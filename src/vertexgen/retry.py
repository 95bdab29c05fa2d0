"""Bounded async retry with explicit error classification.

Design goals:
- Small API surface
- Explicit state (policy + attempt counters)
- Classify from structured status codes; substring matching is only the
  fallback for errors that carry no status
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import math
import random
from typing import TYPE_CHECKING, TypeVar

from vertexgen._http import RETRYABLE_STATUS_CODES, RETRYABLE_TEXT_MARKERS
from vertexgen.errors import (
    APIError,
    RetriesExhaustedError,
    VertexGenError,
    walk_exception_chain,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff.

    ``max_retries`` counts retries, not attempts: a call is tried at most
    ``max_retries + 1`` times.
    """

    max_retries: int = 3
    initial_delay_s: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay_s: float | None = None
    jitter: bool = False  # "full jitter" when enabled

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_retries < 0:
            raise ValueError("RetryPolicy.max_retries must be >= 0")
        if self.initial_delay_s < 0:
            raise ValueError("RetryPolicy.initial_delay_s must be >= 0")
        if self.backoff_multiplier <= 0:
            raise ValueError("RetryPolicy.backoff_multiplier must be > 0")
        if self.max_delay_s is not None and self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0 or None")

    @property
    def max_attempts(self) -> int:
        """Total attempts allowed: one initial attempt plus every retry."""
        return self.max_retries + 1


def _retry_after_from_error(exc: BaseException) -> float | None:
    if isinstance(exc, APIError):
        v = exc.retry_after_s
        if isinstance(v, (int, float)) and v >= 0:
            return float(v)
    return None


def _mentions_retryable_marker(exc: BaseException) -> bool:
    for e in walk_exception_chain(exc):
        text = str(e).lower()
        if any(marker in text for marker in RETRYABLE_TEXT_MARKERS):
            return True
    return False


def should_retry(exc: BaseException) -> bool:
    """Return True when *exc* belongs to the backend overload/rate-limit class.

    Contract:
    - Cancellation and already-exhausted retries are never retried.
    - APIError with a status code is retried iff the code is 429/503/529.
    - APIError without a status code honours its explicit ``retryable`` flag.
    - Other vertexgen errors (credentials, inputs, config) are never retried.
    - Anything else falls back to scanning the message chain for markers.
    """
    if isinstance(exc, (asyncio.CancelledError, RetriesExhaustedError)):
        return False

    if isinstance(exc, APIError):
        if isinstance(exc.status_code, int):
            return exc.status_code in RETRYABLE_STATUS_CODES
        if exc.retryable is not None:
            return exc.retryable
        return _mentions_retryable_marker(exc)

    if isinstance(exc, VertexGenError):
        return False

    return _mentions_retryable_marker(exc)


def compute_backoff_delay(policy: RetryPolicy, *, attempt_index: int) -> float:
    """Return the sleep before the retry that follows attempt *attempt_index*.

    ``attempt_index`` is zero-based: the first retry waits ``initial_delay_s``.
    """
    if policy.initial_delay_s <= 0:
        return 0.0
    try:
        growth = policy.backoff_multiplier ** max(0, attempt_index)
    except OverflowError:
        growth = math.inf
    base = policy.initial_delay_s * growth
    if policy.max_delay_s is not None:
        base = min(policy.max_delay_s, base)
    if base <= 0:
        return 0.0
    if not policy.jitter or math.isinf(base):
        return base
    # Full jitter: random in [0, base] to avoid thundering herd.
    return random.random() * base  # noqa: S311


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = should_retry,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Run an async factory with bounded retries.

    Fatal errors propagate on first occurrence (tagged with the attempt number
    when they are APIErrors). Exhaustion raises RetriesExhaustedError chained
    to the last underlying error. Cancellation interrupts a pending sleep.
    """
    last_exc: Exception | None = None

    for attempt_index in range(policy.max_attempts):
        attempt = attempt_index + 1
        try:
            return await factory()
        except Exception as exc:
            if not should_retry(exc):
                if isinstance(exc, APIError) and exc.attempt is None:
                    exc.attempt = attempt
                    exc.args = (f"attempt {attempt}/{policy.max_attempts}: {exc}",)
                raise
            last_exc = exc
            if attempt_index >= policy.max_retries:
                break

            delay = compute_backoff_delay(policy, attempt_index=attempt_index)
            retry_after = _retry_after_from_error(exc)
            if retry_after is not None:
                delay = max(delay, retry_after)

            logger.warning(
                "Retrying after %.2fs (attempt %d/%d): %s",
                delay,
                attempt,
                policy.max_attempts,
                exc,
            )
            if delay > 0:
                await sleep(delay)

    if last_exc is None:  # pragma: no cover - loop always runs at least once
        raise RuntimeError("retry_async exhausted without an exception")

    status_code = last_exc.status_code if isinstance(last_exc, APIError) else None
    provider = last_exc.provider if isinstance(last_exc, APIError) else None
    raise RetriesExhaustedError(
        f"max retries reached after {policy.max_attempts} attempts "
        f"({policy.max_retries} retries), last error: {last_exc}",
        attempts=policy.max_attempts,
        retries=policy.max_retries,
        hint="The backend is rate limiting or overloaded; lower concurrency or raise max_retries.",
        status_code=status_code,
        provider=provider,
        phase="generate",
    ) from last_exc
