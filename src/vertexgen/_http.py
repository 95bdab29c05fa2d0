"""Small HTTP-related constants shared across vertexgen.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

# Backend overload / rate-limit class: the only statuses the retry loop retries.
RATE_LIMIT_STATUS_CODES: frozenset[int] = frozenset({429})
OVERLOADED_STATUS_CODES: frozenset[int] = frozenset({503, 529})
RETRYABLE_STATUS_CODES: frozenset[int] = RATE_LIMIT_STATUS_CODES | OVERLOADED_STATUS_CODES

# Fallback markers for errors that arrive without a structured status code.
RETRYABLE_TEXT_MARKERS: tuple[str, ...] = (
    "429",
    "529",
    "too many requests",
    "resource exhausted",
    "resource_exhausted",
    "overloaded",
)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
JSON_CONTENT_TYPE = "application/json; charset=utf-8"
