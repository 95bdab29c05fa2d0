"""Exception hierarchy for vertexgen."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class VertexGenError(Exception):
    """Base exception for all vertexgen errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(VertexGenError):
    """Configuration validation or resolution failed."""


class SourceError(VertexGenError):
    """An input could not be resolved into a request part."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        identifier: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.identifier = identifier


InputResolutionError = SourceError


class CredentialError(VertexGenError):
    """The credential provider failed to produce an access token.

    Never retried: credential acquisition is not a transient backend condition.
    """


class APIError(VertexGenError):
    """Backend call failed.

    Providers attach retry metadata so the retry loop can classify failures
    from structured fields instead of formatted messages.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
        attempt: int | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase
        self.attempt = attempt


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


class OverloadedError(APIError):
    """Backend reported it is overloaded (HTTP 503 / 529)."""


class RetriesExhaustedError(APIError):
    """A retryable failure persisted through every allowed attempt.

    The last underlying error is available as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        retries: int,
        hint: str | None = None,
        status_code: int | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(
            message,
            hint=hint,
            retryable=False,
            status_code=status_code,
            provider=provider,
            phase=phase,
            attempt=attempts,
        )
        self.attempts = attempts
        self.retries = retries


class EmptyResultError(APIError):
    """The backend response carried no usable text segments."""


class InvocationTimeoutError(VertexGenError, TimeoutError):
    """The overall invocation deadline expired (retries included)."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        timeout_s: float | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.timeout_s = timeout_s


def walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc*, then every exception reachable via ``__cause__``/``__context__``.

    Each exception is yielded once even when the chain loops back on itself.
    """
    pending: list[BaseException] = [exc]
    visited: set[int] = set()
    while pending:
        current = pending.pop()
        if id(current) in visited:
            continue
        visited.add(id(current))
        yield current
        # Push context first so the explicit cause is visited before it.
        pending.extend(
            linked
            for linked in (current.__context__, current.__cause__)
            if linked is not None
        )
