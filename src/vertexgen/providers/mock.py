"""Mock provider for testing."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from vertexgen.providers.base import ProviderCapabilities
from vertexgen.providers.models import ProviderResponse

if TYPE_CHECKING:
    from vertexgen.providers.models import ProviderRequest


class MockProvider:
    """Mock provider for exercising the invocation path without API calls.

    Accepts every part kind and returns synthetic responses.
    """

    @property
    def name(self) -> str:
        """Provider name."""
        return "mock"

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(structured_outputs=True, file_references=True)

    def build_body(self, request: ProviderRequest) -> dict[str, Any]:
        """Summarize the request without payload bytes."""
        return {
            "model": request.model,
            "system": request.system_instruction,
            "texts": [p.text for p in request.parts if p.kind == "text"],
            "blobs": [p.mime_type for p in request.parts if p.kind != "text"],
        }

    async def send(
        self,
        body: dict[str, Any],
        *,
        model: str,  # noqa: ARG002
        token: str,  # noqa: ARG002
    ) -> dict[str, Any]:
        """Return a deterministic echo of the first non-empty text."""
        texts = [t for t in body.get("texts", []) if isinstance(t, str) and t.strip()]
        if texts:
            segment = f"echo: {texts[0][:100]}"
        else:
            segment = f"echo: {len(body.get('blobs', []))} blob part(s)"
        return {"segments": [segment], "usage": {"input_tokens": 10, "total_tokens": 20}}

    def parse_response(self, payload: dict[str, Any]) -> ProviderResponse:
        """Read back the echoed segments."""
        segments = [s for s in payload.get("segments", []) if isinstance(s, str)]
        return ProviderResponse(
            segments=segments, usage=dict(payload.get("usage", {})), raw=payload
        )
