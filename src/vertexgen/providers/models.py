"""Domain models for the provider transport layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from vertexgen.parts import Part


@dataclass(frozen=True)
class ProviderRequest:
    """A unified request payload for a provider generation call."""

    model: str
    parts: tuple[Part, ...]
    system_instruction: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_output_tokens: int | None = None
    response_mime_type: str | None = None
    response_schema: dict[str, Any] | None = None


@dataclass
class ProviderResponse:
    """A standardized response from a provider generation call.

    ``segments`` holds the text-typed output segments in order.
    """

    segments: list[str] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str | None = None
    raw: dict[str, Any] | None = None

    @property
    def text(self) -> str:
        """Segments joined by newlines."""
        return "\n".join(self.segments)
