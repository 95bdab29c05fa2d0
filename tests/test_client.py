"""Invocation core tests: resolve, authenticate, retry, deadline, join.

The backend is an ``httpx.MockTransport``; credentials come from a fake
provider so no network or ambient credentials are involved.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel
import pytest

import vertexgen
from vertexgen import (
    APIError,
    Client,
    Config,
    ConfigurationError,
    CredentialCache,
    CredentialError,
    EmptyResultError,
    InvocationTimeoutError,
    Options,
    OverloadedError,
    RateLimitError,
    RetriesExhaustedError,
    RetryPolicy,
    Source,
    SourceError,
)
from tests.helpers import (
    JPEG_BYTES,
    PNG_BYTES,
    FakeCredentialProvider,
    RecordingHandler,
    ScriptedProvider,
    claude_payload,
    gemini_payload,
)

pytestmark = pytest.mark.integration

_GEMINI_MODEL = "gemini-2.0-flash-001"
_CLAUDE_MODEL = "claude-3-5-sonnet-v2@20241022"


class _Metadata:
    def __init__(self, content_type: str | None) -> None:
        self.content_type = content_type

    async def get_object_content_type(self, bucket: str, object_name: str) -> str | None:
        del bucket, object_name
        return self.content_type


def _config(**overrides: Any) -> Config:
    params: dict[str, Any] = {
        "model": _GEMINI_MODEL,
        "project_id": "proj",
        "location": "us-central1",
        "retry": RetryPolicy(max_retries=3, initial_delay_s=0.0),
    }
    params.update(overrides)
    return Config(**params)


def _client(
    handler: Any,
    *,
    credentials: FakeCredentialProvider | None = None,
    metadata: Any = None,
    **config: Any,
) -> Client:
    provider = credentials or FakeCredentialProvider()
    return Client(
        _config(**config),
        credentials=CredentialCache(provider, clock=provider.clock),
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        metadata=metadata,
    )


def _ok(payload: dict[str, Any]) -> httpx.Response:
    return httpx.Response(200, json=payload)


# =============================================================================
# Happy Paths
# =============================================================================


@pytest.mark.asyncio
async def test_gemini_invoke_joins_segments_with_newline(tmp_path: Path) -> None:
    image = tmp_path / "cat.jpg"
    image.write_bytes(JPEG_BYTES)
    handler = RecordingHandler([_ok(gemini_payload("Hello", "world"))])
    client = _client(handler)

    text = await client.invoke(Source.from_text("What is this?"), Source.from_file(image))

    request = handler.requests[0]
    body = handler.bodies()[0]
    assert text == "Hello\nworld"
    assert str(request.url) == (
        "https://us-central1-aiplatform.googleapis.com/v1/projects/proj/locations/"
        f"us-central1/publishers/google/models/{_GEMINI_MODEL}:generateContent"
    )
    assert request.headers["Authorization"] == "Bearer token-1"
    assert [list(p) for p in body["contents"][0]["parts"]] == [["text"], ["inlineData"]]
    assert body["contents"][0]["parts"][1]["inlineData"]["mimeType"] == "image/jpeg"
    assert body["generationConfig"]["temperature"] == 1.0


@pytest.mark.asyncio
async def test_system_instructions_merge_config_then_inputs() -> None:
    handler = RecordingHandler([_ok(gemini_payload("ok"))])
    client = _client(handler, system_instruction="You are terse.")

    await client.invoke(Source.system("Answer in French."), Source.from_text("Hi"))

    body = handler.bodies()[0]
    assert body["systemInstruction"] == {
        "parts": [{"text": "You are terse.\nAnswer in French."}]
    }
    assert body["contents"][0]["parts"] == [{"text": "Hi"}]


@pytest.mark.asyncio
async def test_options_override_config_for_one_call() -> None:
    handler = RecordingHandler([_ok(gemini_payload("a")), _ok(gemini_payload("b"))])
    client = _client(handler, temperature=0.7)

    await client.invoke(
        Source.from_text("x"),
        options=Options(temperature=0.0, max_output_tokens=64, system_instruction="S"),
    )
    await client.invoke(Source.from_text("y"))

    first, second = handler.bodies()
    assert first["generationConfig"]["temperature"] == 0.0
    assert first["generationConfig"]["maxOutputTokens"] == 64
    assert first["systemInstruction"] == {"parts": [{"text": "S"}]}
    assert second["generationConfig"]["temperature"] == 0.7
    assert "systemInstruction" not in second


@pytest.mark.asyncio
async def test_gcs_reference_is_passed_by_uri() -> None:
    handler = RecordingHandler([_ok(gemini_payload("a clip"))])
    client = _client(handler, metadata=_Metadata("video/mp4"))

    await client.invoke(Source.from_text("Summarize"), Source.from_gcs("gs://media/clip"))

    assert handler.bodies()[0]["contents"][0]["parts"][1] == {
        "fileData": {"mimeType": "video/mp4", "fileUri": "gs://media/clip"}
    }


@pytest.mark.asyncio
async def test_claude_invoke_uses_raw_predict(tmp_path: Path) -> None:
    image = tmp_path / "img"
    image.write_bytes(PNG_BYTES)
    handler = RecordingHandler([_ok(claude_payload("It is", "a pixel."))])
    client = _client(handler, provider="anthropic", model=_CLAUDE_MODEL, location="us-east5")

    text = await client.invoke(
        Source.system("Be precise."), Source.from_text("Describe"), Source.from_file(image)
    )

    request = handler.requests[0]
    body = handler.bodies()[0]
    assert text == "It is\na pixel."
    assert str(request.url).endswith(
        f"/locations/us-east5/publishers/anthropic/models/{_CLAUDE_MODEL}:rawPredict"
    )
    assert body["anthropic_version"] == "vertex-2023-10-16"
    assert body["system"] == "Be precise."
    assert body["max_tokens"] == 1024
    assert [b["type"] for b in body["messages"][0]["content"]] == ["text", "image"]


@pytest.mark.asyncio
async def test_invoke_text_and_invoke_images_wrappers(tmp_path: Path) -> None:
    paths = []
    for name in ("a.png", "b.png"):
        p = tmp_path / name
        p.write_bytes(PNG_BYTES)
        paths.append(p)
    handler = RecordingHandler([_ok(gemini_payload("one")), _ok(gemini_payload("two"))])
    client = _client(handler)

    assert await client.invoke_text("hi") == "one"
    assert await client.invoke_images("compare", paths) == "two"

    parts = handler.bodies()[1]["contents"][0]["parts"]
    assert parts[0] == {"text": "compare"}
    assert [p["inlineData"]["mimeType"] for p in parts[1:]] == ["image/png", "image/png"]


@pytest.mark.asyncio
async def test_token_is_reused_across_invocations() -> None:
    credentials = FakeCredentialProvider()
    handler = RecordingHandler([_ok(gemini_payload("a")), _ok(gemini_payload("b"))])
    client = _client(handler, credentials=credentials)

    await client.invoke_text("x")
    await client.invoke_text("y")

    assert credentials.calls == 1
    assert {r.headers["Authorization"] for r in handler.requests} == {"Bearer token-1"}


# =============================================================================
# Failure Paths
# =============================================================================


@pytest.mark.asyncio
async def test_empty_response_raises_empty_result_error() -> None:
    payload = gemini_payload()
    payload["candidates"][0]["finishReason"] = "MAX_TOKENS"
    client = _client(RecordingHandler([_ok(payload)]))

    with pytest.raises(EmptyResultError, match="MAX_TOKENS"):
        await client.invoke_text("hi")


@pytest.mark.asyncio
async def test_resolution_failure_makes_no_backend_or_credential_call(tmp_path: Path) -> None:
    credentials = FakeCredentialProvider()
    handler = RecordingHandler([_ok(gemini_payload("never"))])
    client = _client(handler, credentials=credentials)

    with pytest.raises(SourceError):
        await client.invoke(Source.from_text("hi"), Source.from_file(tmp_path / "missing.jpg"))

    assert handler.requests == []
    assert credentials.calls == 0


@pytest.mark.asyncio
async def test_rate_limit_then_success_retries_once() -> None:
    credentials = FakeCredentialProvider()
    handler = RecordingHandler(
        [httpx.Response(429, json={"error": {"code": 429}}), _ok(gemini_payload("done"))]
    )
    client = _client(handler, credentials=credentials)

    assert await client.invoke_text("hi") == "done"
    assert len(handler.requests) == 2
    assert credentials.calls == 1


@pytest.mark.asyncio
async def test_persistent_overload_exhausts_retries() -> None:
    handler = RecordingHandler([httpx.Response(529, text="overloaded") for _ in range(3)])
    client = _client(handler, retry=RetryPolicy(max_retries=2, initial_delay_s=0.0))

    with pytest.raises(RetriesExhaustedError) as exc_info:
        await client.invoke_text("hi")

    assert len(handler.requests) == 3
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.__cause__, OverloadedError)


@pytest.mark.asyncio
async def test_fatal_status_is_not_retried() -> None:
    handler = RecordingHandler([httpx.Response(400, json={"error": {"message": "bad"}})])
    client = _client(handler)

    with pytest.raises(APIError) as exc_info:
        await client.invoke_text("hi")

    assert len(handler.requests) == 1
    assert exc_info.value.status_code == 400
    assert exc_info.value.attempt == 1
    assert str(exc_info.value).startswith("attempt 1/4: ")
    assert not isinstance(exc_info.value, RetriesExhaustedError)


@pytest.mark.asyncio
async def test_unauthorized_invalidates_cached_token() -> None:
    credentials = FakeCredentialProvider()
    handler = RecordingHandler(
        [httpx.Response(401, json={"error": {"code": 401}}), _ok(gemini_payload("ok"))]
    )
    client = _client(handler, credentials=credentials)

    with pytest.raises(APIError) as exc_info:
        await client.invoke_text("hi")
    assert exc_info.value.hint is not None
    assert client.credentials.credential is None

    assert await client.invoke_text("again") == "ok"
    assert handler.requests[1].headers["Authorization"] == "Bearer token-2"


@pytest.mark.asyncio
async def test_credential_failure_is_fatal_and_skips_backend() -> None:
    credentials = FakeCredentialProvider(fail_with=RuntimeError("no ADC"))
    handler = RecordingHandler()
    client = _client(handler, credentials=credentials)

    with pytest.raises(CredentialError):
        await client.invoke_text("hi")

    assert credentials.calls == 1
    assert handler.requests == []


@pytest.mark.asyncio
async def test_deadline_cancels_in_flight_attempt() -> None:
    async def slow(request: httpx.Request) -> httpx.Response:
        del request
        await asyncio.sleep(10)
        return _ok(gemini_payload("late"))

    client = _client(slow, timeout_s=0.05)

    with pytest.raises(InvocationTimeoutError) as exc_info:
        await client.invoke_text("hi")

    assert isinstance(exc_info.value, TimeoutError)
    assert exc_info.value.timeout_s == 0.05


@pytest.mark.asyncio
async def test_deadline_interrupts_backoff_sleep() -> None:
    handler = RecordingHandler([httpx.Response(429, json={}) for _ in range(4)])
    client = _client(
        handler, timeout_s=0.1, retry=RetryPolicy(max_retries=3, initial_delay_s=30.0)
    )

    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(InvocationTimeoutError):
        await client.invoke_text("hi")

    assert loop.time() - started < 5
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_claude_rejects_gcs_reference_before_network() -> None:
    credentials = FakeCredentialProvider()
    handler = RecordingHandler()
    client = _client(
        handler,
        credentials=credentials,
        provider="anthropic",
        model=_CLAUDE_MODEL,
    )

    with pytest.raises(ConfigurationError, match="gs://"):
        await client.invoke(Source.from_text("x"), Source.from_gcs("gs://b/o.png"))

    assert handler.requests == []
    assert credentials.calls == 0


# =============================================================================
# Structured + Raw
# =============================================================================


class _Person(BaseModel):
    name: str
    age: int


@pytest.mark.asyncio
async def test_invoke_structured_validates_model() -> None:
    handler = RecordingHandler([_ok(gemini_payload('{"name": "Ada", "age": 36}'))])
    client = _client(handler)

    person = await client.invoke_structured(Source.from_text("Who?"), schema=_Person)

    config = handler.bodies()[0]["generationConfig"]
    assert person == _Person(name="Ada", age=36)
    assert config["responseMimeType"] == "application/json"
    assert set(config["responseSchema"]["properties"]) == {"name", "age"}


@pytest.mark.asyncio
async def test_invoke_structured_with_dict_schema_returns_decoded_json() -> None:
    handler = RecordingHandler([_ok(gemini_payload("[1, 2, 3]"))])
    client = _client(handler)

    data = await client.invoke_structured(
        Source.from_text("Count"), schema={"type": "array", "items": {"type": "integer"}}
    )

    assert data == [1, 2, 3]


@pytest.mark.asyncio
async def test_invoke_structured_rejects_invalid_json() -> None:
    client = _client(RecordingHandler([_ok(gemini_payload("not json"))]))

    with pytest.raises(APIError, match="not valid JSON"):
        await client.invoke_structured(Source.from_text("x"), schema=_Person)


@pytest.mark.asyncio
async def test_structured_output_unsupported_for_claude() -> None:
    handler = RecordingHandler()
    client = _client(handler, provider="anthropic", model=_CLAUDE_MODEL)

    with pytest.raises(ConfigurationError, match="structured outputs"):
        await client.invoke_structured(Source.from_text("x"), schema=_Person)

    assert handler.requests == []


@pytest.mark.asyncio
async def test_generate_raw_sends_body_verbatim() -> None:
    payload = gemini_payload("raw")
    handler = RecordingHandler([httpx.Response(429, json={}), _ok(payload)])
    client = _client(handler)
    body = {"contents": [{"role": "user", "parts": [{"text": "hi"}]}]}

    result = await client.generate_raw(body)

    assert result == payload
    assert handler.bodies() == [body, body]


# =============================================================================
# Scripted Provider + Lifecycle
# =============================================================================


@pytest.mark.asyncio
async def test_injected_provider_receives_token_on_every_attempt() -> None:
    provider = ScriptedProvider(
        script=[RateLimitError("429", status_code=429), {"segments": ["x", "y"]}]
    )
    credentials = FakeCredentialProvider()
    client = Client(
        _config(),
        credentials=CredentialCache(credentials, clock=credentials.clock),
        provider=provider,
        http=httpx.AsyncClient(transport=httpx.MockTransport(RecordingHandler())),
    )

    assert await client.invoke(Source.from_text("a"), Source.from_text("b")) == "x\ny"
    assert provider.send_calls == 2
    assert provider.tokens == ["token-1", "token-1"]
    assert [p.text for p in provider.requests[0].parts] == ["a", "b"]


@pytest.mark.asyncio
async def test_client_does_not_close_injected_http_client() -> None:
    http = httpx.AsyncClient(transport=httpx.MockTransport(RecordingHandler()))
    async with Client(_config(), credentials=FakeCredentialProvider(), http=http):
        pass

    assert not http.is_closed
    await http.aclose()


@pytest.mark.asyncio
async def test_mock_mode_runs_without_network_or_credentials() -> None:
    async with Client(Config(model=_GEMINI_MODEL, use_mock=True)) as client:
        text = await client.invoke(Source.from_text("ping"))

    assert text == "echo: ping"


@pytest.mark.asyncio
async def test_mock_mode_gcs_input_makes_no_network_calls() -> None:
    handler = RecordingHandler()
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = Client(Config(model=_GEMINI_MODEL, use_mock=True), http=http)

    text = await client.invoke(Source.from_text("describe"), Source.from_gcs("gs://b/o.png"))

    assert text == "echo: describe"
    assert handler.requests == []
    await http.aclose()


@pytest.mark.asyncio
async def test_module_level_invoke_closes_client() -> None:
    text = await vertexgen.invoke(
        Source.from_text("hello"), config=Config(model=_GEMINI_MODEL, use_mock=True)
    )

    assert text == "echo: hello"


def test_client_rejects_non_config() -> None:
    with pytest.raises(ConfigurationError):
        Client({"model": _GEMINI_MODEL})  # type: ignore[arg-type]
