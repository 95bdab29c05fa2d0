"""Claude on Vertex AI (``publishers/anthropic``) provider implementation."""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING, Any

from vertexgen.errors import APIError, ConfigurationError
from vertexgen.providers._utils import post_json, vertex_model_url
from vertexgen.providers.base import ProviderCapabilities
from vertexgen.providers.models import ProviderResponse

if TYPE_CHECKING:
    import httpx

    from vertexgen.parts import Part
    from vertexgen.providers.models import ProviderRequest

ANTHROPIC_VERSION = "vertex-2023-10-16"
# The Messages API requires max_tokens on every request.
DEFAULT_MAX_TOKENS = 1024

_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})


class AnthropicProvider:
    """Vertex AI ``:rawPredict`` provider for Claude models."""

    def __init__(self, http: httpx.AsyncClient, *, project_id: str, location: str) -> None:
        """Create a provider for one project/location."""
        self._http = http
        self.project_id = project_id
        self.location = location

    @property
    def name(self) -> str:
        """Provider name."""
        return "anthropic"

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(structured_outputs=False, file_references=False)

    def endpoint(self, model: str) -> str:
        """Return the ``:rawPredict`` URL for *model*."""
        return vertex_model_url(
            project=self.project_id,
            location=self.location,
            publisher="anthropic",
            model=model,
            method="rawPredict",
        )

    @staticmethod
    def _convert_part(part: Part) -> dict[str, Any]:
        if part.kind == "text":
            return {"type": "text", "text": part.text or ""}
        if part.kind == "file_ref":
            raise ConfigurationError(
                f"Claude cannot read object references: {part.uri}",
                hint="Use Source.from_file() or Source.from_url() so bytes are sent inline.",
            )

        mime_type = part.mime_type or ""
        data = part.data or b""
        if mime_type in _IMAGE_TYPES:
            block_type = "image"
        elif mime_type == "application/pdf":
            block_type = "document"
        elif mime_type.startswith("text/"):
            return {"type": "text", "text": data.decode("utf-8", errors="replace")}
        else:
            raise ConfigurationError(
                f"Claude does not accept inline {mime_type or 'untyped'} content",
                hint="Claude accepts JPEG/PNG/GIF/WEBP images, PDF documents, and text.",
            )
        return {
            "type": block_type,
            "source": {
                "type": "base64",
                "media_type": mime_type,
                "data": base64.b64encode(data).decode("ascii"),
            },
        }

    def build_body(self, request: ProviderRequest) -> dict[str, Any]:
        """Translate a request into a Messages API body."""
        body: dict[str, Any] = {
            "anthropic_version": ANTHROPIC_VERSION,
            "messages": [
                {
                    "role": "user",
                    "content": [self._convert_part(p) for p in request.parts],
                }
            ],
            "max_tokens": request.max_output_tokens or DEFAULT_MAX_TOKENS,
        }
        if request.system_instruction is not None:
            body["system"] = request.system_instruction
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.top_p is not None:
            body["top_p"] = request.top_p
        if request.top_k is not None:
            body["top_k"] = request.top_k
        return body

    async def send(self, body: dict[str, Any], *, model: str, token: str) -> dict[str, Any]:
        """POST the body to the model endpoint."""
        return await post_json(
            self._http, self.endpoint(model), body, token=token, provider=self.name
        )

    def parse_response(self, payload: dict[str, Any]) -> ProviderResponse:
        """Collect ``text`` content blocks in order."""
        content = payload.get("content")
        if content is not None and not isinstance(content, list):
            raise APIError(
                "Claude returned a malformed response: 'content' is not a list",
                retryable=False,
                provider=self.name,
                phase="generate",
            )

        segments: list[str] = []
        for block in content or []:
            if not isinstance(block, dict) or block.get("type") != "text":
                continue
            text = block.get("text")
            if not isinstance(text, str):
                raise APIError(
                    "invalid text content format",
                    retryable=False,
                    provider=self.name,
                    phase="generate",
                )
            if text:
                segments.append(text)

        usage: dict[str, int] = {}
        raw_usage = payload.get("usage")
        if isinstance(raw_usage, dict):
            input_tokens = raw_usage.get("input_tokens")
            output_tokens = raw_usage.get("output_tokens")
            if isinstance(input_tokens, int):
                usage["input_tokens"] = input_tokens
            if isinstance(output_tokens, int):
                usage["output_tokens"] = output_tokens
            if isinstance(input_tokens, int) and isinstance(output_tokens, int):
                usage["total_tokens"] = input_tokens + output_tokens

        stop_reason = payload.get("stop_reason")
        return ProviderResponse(
            segments=segments,
            usage=usage,
            finish_reason=stop_reason if isinstance(stop_reason, str) else None,
            raw=payload,
        )
