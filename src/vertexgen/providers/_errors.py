"""Shared provider-side error helpers.

Providers attach retry metadata via APIError so core retry logic can be
bounded and deterministic without brittle substring matching.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from vertexgen._http import OVERLOADED_STATUS_CODES, RETRYABLE_STATUS_CODES
from vertexgen.errors import (
    APIError,
    OverloadedError,
    RateLimitError,
    walk_exception_chain,
)

_BODY_PREVIEW_CHARS = 500
_PROTO_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)s")


def _http_status(value: Any) -> int | None:
    return value if isinstance(value, int) and 100 <= value <= 599 else None


def extract_status_code(exc: BaseException) -> int | None:
    """Return the first HTTP status found along the exception chain."""
    for e in walk_exception_chain(exc):
        candidates = (
            getattr(e, "status_code", None),
            getattr(e, "status", None),
            getattr(getattr(e, "response", None), "status_code", None),
        )
        for candidate in candidates:
            status = _http_status(candidate)
            if status is not None:
                return status
    return None


def retry_info_seconds(payload: Any) -> float | None:
    """Return the ``RetryInfo.retryDelay`` carried by a Google error body.

    Vertex AI rate-limit bodies look like
    ``{"error": {"details": [{"@type": ".../google.rpc.RetryInfo", "retryDelay": "8s"}]}}``
    where the delay is a protobuf Duration string.
    """
    error = payload.get("error") if isinstance(payload, dict) else None
    details = error.get("details") if isinstance(error, dict) else None
    if not isinstance(details, list):
        return None

    for detail in details:
        if not isinstance(detail, dict):
            continue
        if not str(detail.get("@type", "")).endswith("RetryInfo"):
            continue
        match = _PROTO_DURATION_RE.fullmatch(str(detail.get("retryDelay", "")))
        if match is not None:
            return float(match.group(1))
    return None


def _retry_after_header(headers: Any) -> float | None:
    if headers is None:
        return None
    raw: Any = headers.get("Retry-After")
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        seconds = _retry_after_header(getattr(response, "headers", None))
        if seconds is not None:
            return seconds

        retry_info = retry_info_seconds(getattr(e, "details", None))
        if retry_info is not None:
            return retry_info
    return None


def _auth_hint(status_code: int | None) -> str | None:
    if status_code in {401, 403}:
        return (
            "Check credentials/permissions: the account needs "
            "roles/aiplatform.user on the project (try "
            "`gcloud auth application-default login`)."
        )
    if status_code == 404:
        return "Check the model name, project_id, and location (the model may not be served there)."
    return None


def _error_class(status_code: int | None) -> type[APIError]:
    if status_code == 429:
        return RateLimitError
    if isinstance(status_code, int) and status_code in OVERLOADED_STATUS_CODES:
        return OverloadedError
    return APIError


def raise_for_status(response: httpx.Response, *, provider: str, phase: str) -> None:
    """Raise a classified APIError for any non-2xx *response*."""
    if response.is_success:
        return

    status_code = response.status_code
    body = response.text
    retry_after_s = _retry_after_header(response.headers)
    if retry_after_s is None:
        try:
            retry_after_s = retry_info_seconds(response.json())
        except ValueError:
            retry_after_s = None

    err_cls = _error_class(status_code)
    raise err_cls(
        f"{provider} {phase} failed: unexpected status code: {status_code}, "
        f"response body: {body[:_BODY_PREVIEW_CHARS]}",
        hint=_auth_hint(status_code),
        retryable=status_code in RETRYABLE_STATUS_CODES,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Map transport/SDK exceptions into APIError with stable retry metadata.

    Transport failures (connection errors, per-request timeouts) are fatal:
    only the overload/rate-limit status class is retryable.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        exc.provider = exc.provider or provider
        exc.phase = exc.phase or phase
        exc.hint = exc.hint or hint
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)
    retryable = isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES

    if hint is None:
        hint = _auth_hint(status_code)
        if hint is None and isinstance(exc, httpx.TimeoutException):
            hint = "The request timed out; raise Config.request_timeout_s for large inputs."

    msg = message or f"{provider} {phase} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc) or type(exc).__name__
    return _error_class(status_code)(
        f"{msg}{status_note}: {cause}",
        hint=hint,
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )
