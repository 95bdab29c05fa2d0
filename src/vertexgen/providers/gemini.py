"""Gemini on Vertex AI (``publishers/google``) provider implementation."""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING, Any

from vertexgen.errors import APIError
from vertexgen.providers._utils import post_json, to_vertex_schema, vertex_model_url
from vertexgen.providers.base import ProviderCapabilities
from vertexgen.providers.models import ProviderResponse

if TYPE_CHECKING:
    import httpx

    from vertexgen.parts import Part
    from vertexgen.providers.models import ProviderRequest

HARM_CATEGORIES: tuple[str, ...] = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)

DEFAULT_SAFETY_SETTINGS: tuple[dict[str, str], ...] = tuple(
    {"category": category, "threshold": "BLOCK_NONE"} for category in HARM_CATEGORIES
)


class GeminiProvider:
    """Vertex AI ``:generateContent`` REST provider."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        project_id: str,
        location: str,
        safety_settings: tuple[dict[str, str], ...] | None = DEFAULT_SAFETY_SETTINGS,
    ) -> None:
        """Create a provider for one project/location."""
        self._http = http
        self.project_id = project_id
        self.location = location
        self.safety_settings = safety_settings

    @property
    def name(self) -> str:
        """Provider name."""
        return "gemini"

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(structured_outputs=True, file_references=True)

    def endpoint(self, model: str) -> str:
        """Return the ``:generateContent`` URL for *model*."""
        return vertex_model_url(
            project=self.project_id,
            location=self.location,
            publisher="google",
            model=model,
            method="generateContent",
        )

    @staticmethod
    def _convert_part(part: Part) -> dict[str, Any]:
        if part.kind == "text":
            return {"text": part.text or ""}
        if part.kind == "inline":
            return {
                "inlineData": {
                    "mimeType": part.mime_type,
                    "data": base64.b64encode(part.data or b"").decode("ascii"),
                }
            }
        return {"fileData": {"mimeType": part.mime_type, "fileUri": part.uri}}

    def build_body(self, request: ProviderRequest) -> dict[str, Any]:
        """Translate a request into a ``GenerateContentRequest`` body."""
        generation_config: dict[str, Any] = {}
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature
        if request.top_p is not None:
            generation_config["topP"] = request.top_p
        if request.top_k is not None:
            generation_config["topK"] = request.top_k
        if request.max_output_tokens is not None:
            generation_config["maxOutputTokens"] = request.max_output_tokens
        if request.response_mime_type is not None:
            generation_config["responseMimeType"] = request.response_mime_type
        if request.response_schema is not None:
            generation_config.setdefault("responseMimeType", "application/json")
            generation_config["responseSchema"] = to_vertex_schema(request.response_schema)

        body: dict[str, Any] = {
            "contents": [
                {
                    "role": "user",
                    "parts": [self._convert_part(p) for p in request.parts],
                }
            ],
            "generationConfig": generation_config,
        }
        if request.system_instruction is not None:
            body["systemInstruction"] = {"parts": [{"text": request.system_instruction}]}
        if self.safety_settings:
            body["safetySettings"] = [dict(s) for s in self.safety_settings]
        return body

    async def send(self, body: dict[str, Any], *, model: str, token: str) -> dict[str, Any]:
        """POST the body to the model endpoint."""
        return await post_json(
            self._http, self.endpoint(model), body, token=token, provider=self.name
        )

    def parse_response(self, payload: dict[str, Any]) -> ProviderResponse:
        """Collect the text parts of the first candidate, skipping thoughts."""
        candidates = payload.get("candidates")
        if candidates is not None and not isinstance(candidates, list):
            raise APIError(
                "Gemini returned a malformed response: 'candidates' is not a list",
                retryable=False,
                provider=self.name,
                phase="generate",
            )

        segments: list[str] = []
        finish_reason: str | None = None
        if candidates:
            first = candidates[0] if isinstance(candidates[0], dict) else {}
            content = first.get("content") or {}
            parts = content.get("parts") if isinstance(content, dict) else None
            for part in parts or []:
                if not isinstance(part, dict) or part.get("thought"):
                    continue
                text = part.get("text")
                if isinstance(text, str) and text:
                    segments.append(text)
            reason = first.get("finishReason")
            finish_reason = reason if isinstance(reason, str) else None
        else:
            feedback = payload.get("promptFeedback")
            if isinstance(feedback, dict) and isinstance(feedback.get("blockReason"), str):
                finish_reason = f"BLOCKED:{feedback['blockReason']}"

        usage: dict[str, int] = {}
        um = payload.get("usageMetadata")
        if isinstance(um, dict):
            # Vertex attrs → provider-agnostic keys
            for src, dst in (
                ("promptTokenCount", "input_tokens"),
                ("candidatesTokenCount", "output_tokens"),
                ("totalTokenCount", "total_tokens"),
                ("thoughtsTokenCount", "reasoning_tokens"),
            ):
                value = um.get(src)
                if isinstance(value, int):
                    usage[dst] = value

        return ProviderResponse(
            segments=segments, usage=usage, finish_reason=finish_reason, raw=payload
        )
