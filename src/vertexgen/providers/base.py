"""Provider protocol: minimal interface for backend publishers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from vertexgen.providers.models import ProviderRequest, ProviderResponse


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by providers."""

    structured_outputs: bool
    file_references: bool


@runtime_checkable
class Provider(Protocol):
    """Minimal provider protocol: build, send, parse.

    ``build_body`` runs once per invocation (validation errors surface before
    any network call); ``send`` runs once per attempt.
    """

    @property
    def name(self) -> str:
        """Short provider name used in errors and logs."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature capabilities for strict option validation."""
        ...

    def build_body(self, request: ProviderRequest) -> dict[str, Any]:
        """Translate a request into the publisher's JSON body."""
        ...

    async def send(self, body: dict[str, Any], *, model: str, token: str) -> dict[str, Any]:
        """POST *body* with a bearer *token* and return the decoded JSON."""
        ...

    def parse_response(self, payload: dict[str, Any]) -> ProviderResponse:
        """Extract text segments and usage from a decoded response."""
        ...
