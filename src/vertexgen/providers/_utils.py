"""Shared utilities for provider implementations."""

from __future__ import annotations

from copy import deepcopy
import logging
from typing import Any

import httpx

from vertexgen._http import JSON_CONTENT_TYPE
from vertexgen.errors import APIError, ConfigurationError
from vertexgen.providers._errors import raise_for_status, wrap_provider_error

logger = logging.getLogger(__name__)

VERTEX_MODEL_PATH = (
    "/v1/projects/{project}/locations/{location}/publishers/{publisher}/models/{model}"
)

# Keys Vertex's OpenAPI-subset schema rejects.
_UNSUPPORTED_SCHEMA_KEYS = frozenset(
    {"$schema", "$id", "title", "additionalProperties", "default", "examples"}
)


def vertex_host(location: str) -> str:
    """Return the regional (or global) Vertex AI API host."""
    if location == "global":
        return "aiplatform.googleapis.com"
    return f"{location}-aiplatform.googleapis.com"


def vertex_model_url(
    *, project: str, location: str, publisher: str, model: str, method: str
) -> str:
    """Build a publisher model endpoint such as ``...:generateContent``."""
    path = VERTEX_MODEL_PATH.format(
        project=project, location=location, publisher=publisher, model=model
    )
    return f"https://{vertex_host(location)}{path}:{method}"


def to_vertex_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Normalize a JSON schema for Vertex ``responseSchema``.

    Inlines local ``$ref``s from ``$defs`` and drops keywords outside the
    supported OpenAPI subset.
    """
    normalized = deepcopy(schema)
    defs: dict[str, Any] = normalized.pop("$defs", None) or normalized.pop(
        "definitions", None
    ) or {}

    def walk(node: Any, depth: int = 0) -> Any:
        if depth > 32:
            raise ConfigurationError(
                "response_schema is too deeply nested (recursive $ref?)",
                hint="Vertex response schemas cannot be recursive.",
            )
        if isinstance(node, list):
            return [walk(item, depth + 1) for item in node]
        if not isinstance(node, dict):
            return node

        ref = node.get("$ref")
        if isinstance(ref, str):
            name = ref.rsplit("/", 1)[-1]
            target = defs.get(name)
            if target is None:
                raise ConfigurationError(f"response_schema has unresolved $ref: {ref}")
            return walk(target, depth + 1)

        updated: dict[str, Any] = {}
        for key, value in node.items():
            if key in _UNSUPPORTED_SCHEMA_KEYS:
                continue
            updated[key] = walk(value, depth + 1)
        return updated

    result = walk(normalized)
    if not isinstance(result, dict):
        raise APIError("Invalid response_schema: expected object schema")
    return result


async def post_json(
    http: httpx.AsyncClient,
    url: str,
    body: dict[str, Any],
    *,
    token: str,
    provider: str,
) -> dict[str, Any]:
    """POST a JSON body with a bearer token and return the decoded object."""
    logger.debug("POST %s", url)
    headers = {
        "Authorization": f"Bearer {token}",
        "Content-Type": JSON_CONTENT_TYPE,
    }
    try:
        response = await http.post(url, json=body, headers=headers)
    except httpx.HTTPError as e:
        raise wrap_provider_error(
            e,
            provider=provider,
            phase="generate",
            message=f"{provider} http request failed",
        ) from e

    raise_for_status(response, provider=provider, phase="generate")

    try:
        payload = response.json()
    except ValueError as e:
        raise APIError(
            f"{provider} returned a response body that is not JSON",
            retryable=False,
            status_code=response.status_code,
            provider=provider,
            phase="generate",
        ) from e
    if not isinstance(payload, dict):
        raise APIError(
            f"{provider} returned a malformed response: expected a JSON object",
            retryable=False,
            status_code=response.status_code,
            provider=provider,
            phase="generate",
        )
    return payload
