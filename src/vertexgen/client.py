"""Invocation core: resolve inputs, call the backend under one deadline, return text."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, ValidationError

from vertexgen.auth import (
    CredentialCache,
    GoogleCredentialProvider,
    StaticCredentialProvider,
)
from vertexgen.config import DEFAULT_LOCATION, Config
from vertexgen.errors import (
    APIError,
    ConfigurationError,
    EmptyResultError,
    InvocationTimeoutError,
)
from vertexgen.options import Options, response_schema_json, response_schema_model
from vertexgen.providers import AnthropicProvider, GeminiProvider, MockProvider
from vertexgen.providers.models import ProviderRequest
from vertexgen.resolve import (
    GCSMetadataProvider,
    InputResolver,
    OfflineMetadataProvider,
)
from vertexgen.retry import retry_async
from vertexgen.source import Source

if TYPE_CHECKING:
    from collections.abc import Iterable
    import os

    from vertexgen.auth import CredentialProvider
    from vertexgen.parts import ResolvedInputs
    from vertexgen.providers.base import Provider
    from vertexgen.providers.models import ProviderResponse
    from vertexgen.resolve import ObjectMetadataProvider

logger = logging.getLogger(__name__)

MOCK_ACCESS_TOKEN = "mock-token"  # noqa: S105


def _build_provider(config: Config, http: httpx.AsyncClient) -> Provider:
    if config.use_mock:
        return MockProvider()
    project_id = config.project_id or ""
    location = config.location or DEFAULT_LOCATION
    if config.provider == "anthropic":
        return AnthropicProvider(http, project_id=project_id, location=location)
    return GeminiProvider(http, project_id=project_id, location=location)


def _join_nonempty(*texts: str | None) -> str | None:
    kept = [t for t in texts if t]
    return "\n".join(kept) if kept else None


class Client:
    """Adapter to one Vertex AI model.

    The client owns the shared HTTP connection pool, the credential cache,
    and the backend provider. Safe to share across concurrent tasks on one
    event loop; each ``invoke`` is sequential from the caller's view.

    Example:
        async with Client(Config(model="gemini-2.0-flash-001")) as client:
            text = await client.invoke(Source.from_text("Say hello"))
    """

    def __init__(
        self,
        config: Config,
        *,
        credentials: CredentialCache | CredentialProvider | None = None,
        provider: Provider | None = None,
        metadata: ObjectMetadataProvider | None = None,
        http: httpx.AsyncClient | None = None,
        temp_dir: str | os.PathLike[str] | None = None,
    ) -> None:
        """Wire collaborators, building defaults from *config* where omitted."""
        if not isinstance(config, Config):
            raise ConfigurationError(
                f"config must be a Config, got {type(config).__name__}",
                hint="Pass Config(model=..., project_id=...).",
            )
        self.config = config

        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            timeout=config.request_timeout_s, follow_redirects=True
        )

        if credentials is None:
            if config.use_mock:
                credentials = StaticCredentialProvider(MOCK_ACCESS_TOKEN)
            else:
                credentials = GoogleCredentialProvider()
        if not isinstance(credentials, CredentialCache):
            credentials = CredentialCache(credentials)
        self.credentials = credentials

        self.provider = provider or _build_provider(config, self._http)
        if metadata is None:
            if config.use_mock:
                metadata = OfflineMetadataProvider()
            else:
                metadata = GCSMetadataProvider(self._http, self.credentials)
        self._resolver = InputResolver(
            self._http,
            metadata=metadata,
            max_download_bytes=config.max_download_bytes,
            temp_dir=temp_dir,
        )

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http and not self._http.is_closed:
            await self._http.aclose()

    async def invoke(self, *sources: Source, options: Options | None = None) -> str:
        """Run one generation over *sources* and return the joined text.

        Inputs are resolved in order before any backend call; a resolution
        failure aborts the invocation. Text segments of the response are
        joined with newlines.

        Raises:
            SourceError: An input could not be resolved.
            ConfigurationError: Invalid system input or unsupported feature.
            CredentialError: No access token could be obtained.
            RetriesExhaustedError: The backend stayed overloaded/rate limited.
            EmptyResultError: The backend returned no text.
            InvocationTimeoutError: The overall deadline expired.
        """
        response = await self._generate(sources, options)
        return response.text

    async def invoke_text(self, prompt: str, *, options: Options | None = None) -> str:
        """Send a single text prompt."""
        return await self.invoke(Source.from_text(prompt), options=options)

    async def invoke_images(
        self,
        prompt: str,
        paths: Iterable[str | os.PathLike[str]],
        *,
        options: Options | None = None,
    ) -> str:
        """Send a prompt followed by images (local paths, URLs or ``gs://`` URIs)."""
        sources = [Source.from_text(prompt)]
        sources.extend(Source.from_path(p) for p in paths)
        return await self.invoke(*sources, options=options)

    async def invoke_structured(
        self,
        *sources: Source,
        schema: type[BaseModel] | dict[str, Any],
        options: Options | None = None,
    ) -> Any:
        """Generate JSON constrained by *schema* and return it decoded.

        A ``BaseModel`` schema yields a validated model instance; a dict
        schema yields the decoded JSON value.
        """
        base = options or Options()
        structured = Options(
            system_instruction=base.system_instruction,
            temperature=base.temperature,
            max_output_tokens=base.max_output_tokens,
            response_schema=schema,
            response_mime_type="application/json",
        )
        text = await self.invoke(*sources, options=structured)

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise APIError(
                f"structured output is not valid JSON: {e}",
                retryable=False,
                provider=self.provider.name,
                phase="generate",
            ) from e

        model = response_schema_model(schema)
        if model is None:
            return data
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise APIError(
                f"structured output does not match {model.__name__}: {e}",
                retryable=False,
                provider=self.provider.name,
                phase="generate",
            ) from e

    async def generate_raw(
        self, body: dict[str, Any], *, model: str | None = None
    ) -> dict[str, Any]:
        """POST a caller-built request body and return the decoded response.

        Credentials, retries and the overall deadline apply as for ``invoke``;
        the body is sent verbatim.
        """
        if not isinstance(body, dict):
            raise ConfigurationError(
                "body must be a dict",
                hint="Pass the decoded JSON request body.",
            )
        return await self._call_backend(body, model=model or self.config.model)

    async def _generate(
        self, sources: Iterable[Source], options: Options | None
    ) -> ProviderResponse:
        sources = tuple(sources)
        self._check_sources(sources)
        resolved = await self._resolver.resolve_all(sources)
        request = self._build_request(resolved, options or Options())
        body = self.provider.build_body(request)

        logger.debug(
            "Invoking %s model=%s parts=%d",
            self.provider.name,
            request.model,
            len(request.parts),
        )
        payload = await self._call_backend(body, model=request.model)
        response = self.provider.parse_response(payload)

        if not response.segments:
            reason = f" (finish_reason={response.finish_reason})" if response.finish_reason else ""
            raise EmptyResultError(
                f"no text content in response{reason}",
                retryable=False,
                provider=self.provider.name,
                phase="generate",
            )
        logger.debug(
            "Invocation returned %d segment(s), usage=%s",
            len(response.segments),
            response.usage,
        )
        return response

    def _check_sources(self, sources: tuple[Source, ...]) -> None:
        """Reject inputs the provider cannot take before any I/O."""
        if self.provider.capabilities.file_references:
            return
        if any(isinstance(s, Source) and s.source_type == "gcs" for s in sources):
            raise ConfigurationError(
                f"Provider {self.provider.name!r} cannot read gs:// references",
                hint="Use a local file or http(s) URL so bytes are sent inline.",
            )

    def _build_request(
        self, resolved: ResolvedInputs, options: Options
    ) -> ProviderRequest:
        cfg = self.config
        capabilities = self.provider.capabilities

        schema = (
            options.response_schema
            if options.response_schema is not None
            else cfg.response_schema
        )
        if schema is not None and not capabilities.structured_outputs:
            raise ConfigurationError(
                f"Provider {self.provider.name!r} does not support structured outputs",
                hint="Use provider='gemini' for response_schema.",
            )
        return ProviderRequest(
            model=cfg.model,
            parts=resolved.parts,
            system_instruction=_join_nonempty(
                options.system_instruction or cfg.system_instruction,
                resolved.system_instruction,
            ),
            temperature=(
                options.temperature if options.temperature is not None else cfg.temperature
            ),
            top_p=cfg.top_p,
            top_k=cfg.top_k,
            max_output_tokens=options.max_output_tokens or cfg.max_output_tokens,
            response_mime_type=options.response_mime_type or cfg.response_mime_type,
            response_schema=response_schema_json(schema),
        )

    async def _call_backend(self, body: dict[str, Any], *, model: str) -> dict[str, Any]:
        """Run attempts under the overall deadline."""

        async def attempt() -> dict[str, Any]:
            token = await self.credentials.get_token()
            try:
                return await self.provider.send(body, model=model, token=token)
            except APIError as exc:
                if exc.status_code == 401:
                    # Rejected token: the next call refreshes.
                    self.credentials.invalidate(token)
                raise

        timeout_s = self.config.timeout_s
        deadline = asyncio.timeout(timeout_s)
        try:
            async with deadline:
                return await retry_async(attempt, policy=self.config.retry)
        except TimeoutError as e:
            if not deadline.expired():
                raise
            raise InvocationTimeoutError(
                f"invocation exceeded its {timeout_s:g}s deadline",
                hint="Raise Config.timeout_s or lower Config.retry.max_retries.",
                timeout_s=timeout_s,
            ) from e
