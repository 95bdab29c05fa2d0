"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off provider and credential subclasses.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import json
from typing import Any

import httpx

from vertexgen.auth import Credential
from vertexgen.providers.base import ProviderCapabilities
from vertexgen.providers.models import ProviderRequest, ProviderResponse

JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00"
PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"
PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\n"


@dataclass
class FakeClock:
    """Manually advanced UTC clock."""

    now: datetime = field(
        default_factory=lambda: datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    )

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class FakeCredentialProvider:
    """CredentialProvider double that mints numbered tokens.

    Each fetch yields once to the event loop so concurrent callers really
    interleave.
    """

    clock: FakeClock = field(default_factory=FakeClock)
    lifetime_s: float = 3600.0
    fail_with: BaseException | None = None
    calls: int = 0
    scopes: list[str] = field(default_factory=list)

    async def fetch_credential(self, scope: str) -> Credential:
        self.calls += 1
        self.scopes.append(scope)
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        return Credential(
            access_token=f"token-{self.calls}",
            expiry=self.clock() + timedelta(seconds=self.lifetime_s),
        )


@dataclass
class ScriptedProvider:
    """Provider double that answers from a scripted sequence.

    Script items are either response payloads (``{"segments": [...]}``) or
    exceptions to raise from ``send``.
    """

    script: list[dict[str, Any] | BaseException] = field(default_factory=list)
    capabilities: ProviderCapabilities = field(
        default_factory=lambda: ProviderCapabilities(
            structured_outputs=True, file_references=True
        )
    )
    name: str = "scripted"
    requests: list[ProviderRequest] = field(default_factory=list)
    tokens: list[str] = field(default_factory=list)
    send_calls: int = 0

    def build_body(self, request: ProviderRequest) -> dict[str, Any]:
        self.requests.append(request)
        return {"parts": len(request.parts)}

    async def send(self, body: dict[str, Any], *, model: str, token: str) -> dict[str, Any]:
        del body, model
        self.send_calls += 1
        self.tokens.append(token)
        if not self.script:
            return {"segments": ["ok"]}
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def parse_response(self, payload: dict[str, Any]) -> ProviderResponse:
        return ProviderResponse(segments=list(payload.get("segments", [])), raw=payload)


@dataclass
class RecordingHandler:
    """``httpx.MockTransport`` handler replaying scripted responses."""

    responses: list[httpx.Response] = field(default_factory=list)
    requests: list[httpx.Request] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"unexpected request: {request.method} {request.url}")
        return self.responses.pop(0)

    def bodies(self) -> list[Any]:
        return [json.loads(r.content) for r in self.requests]


def gemini_payload(*texts: str, finish_reason: str = "STOP") -> dict[str, Any]:
    """Build a minimal ``generateContent`` response."""
    return {
        "candidates": [
            {
                "content": {"role": "model", "parts": [{"text": t} for t in texts]},
                "finishReason": finish_reason,
            }
        ],
        "usageMetadata": {
            "promptTokenCount": 5,
            "candidatesTokenCount": 3,
            "totalTokenCount": 8,
        },
    }


def claude_payload(*texts: str) -> dict[str, Any]:
    """Build a minimal Messages API response."""
    return {
        "id": "msg_1",
        "type": "message",
        "role": "assistant",
        "content": [{"type": "text", "text": t} for t in texts],
        "stop_reason": "end_turn",
        "usage": {"input_tokens": 7, "output_tokens": 2},
    }
