"""Configuration: Frozen Config with explicit model/project requirements."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Literal

from dotenv import load_dotenv

from vertexgen.errors import ConfigurationError
from vertexgen.options import ResponseSchemaInput, validate_response_schema
from vertexgen.retry import RetryPolicy

load_dotenv()

ProviderName = Literal["gemini", "anthropic"]

_PROVIDERS: tuple[str, ...] = ("gemini", "anthropic")
_PROJECT_ENV_VARS: tuple[str, ...] = ("GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT")
_LOCATION_ENV_VAR = "GOOGLE_CLOUD_LOCATION"

DEFAULT_LOCATION = "us-central1"
_MB = 1024 * 1024
DEFAULT_MAX_DOWNLOAD_BYTES = 100 * _MB


@dataclass(frozen=True)
class Config:
    """Immutable configuration for one client.

    The model is required; project and location are auto-resolved from
    ``GOOGLE_CLOUD_PROJECT`` / ``GOOGLE_CLOUD_LOCATION`` when omitted.

    Example:
        config = Config(model="gemini-2.0-flash-001", project_id="my-project")
    """

    model: str
    provider: ProviderName = "gemini"
    project_id: str | None = None
    location: str | None = None
    temperature: float = 1.0
    top_p: float | None = 0.95
    top_k: int | None = 40
    #: Gemini falls back to the model default; Claude to 1024 tokens.
    max_output_tokens: int | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    #: Deadline covering every attempt and backoff sleep of one invocation.
    timeout_s: float = 180.0
    #: Per-HTTP-request timeout (downloads, metadata, each backend attempt).
    request_timeout_s: float = 60.0
    response_mime_type: str | None = None
    #: Pydantic ``BaseModel`` subclass or JSON Schema dict for structured output.
    response_schema: ResponseSchemaInput | None = None
    system_instruction: str | None = None
    max_download_bytes: int | None = DEFAULT_MAX_DOWNLOAD_BYTES
    use_mock: bool = False

    def __post_init__(self) -> None:
        """Auto-resolve project/location and validate configuration."""
        if self.provider not in _PROVIDERS:
            raise ConfigurationError(
                f"Unknown provider: {self.provider!r}",
                hint="Supported providers: 'gemini', 'anthropic'",
            )
        if not isinstance(self.model, str) or not self.model.strip():
            raise ConfigurationError(
                "model is required",
                hint="Pass Config(model='gemini-2.0-flash-001', ...).",
            )

        if self.project_id is None:
            resolved = next(
                (os.environ[v] for v in _PROJECT_ENV_VARS if os.environ.get(v)), None
            )
            object.__setattr__(self, "project_id", resolved)
        if self.location is None:
            object.__setattr__(
                self, "location", os.environ.get(_LOCATION_ENV_VAR) or DEFAULT_LOCATION
            )

        if not self.use_mock and not self.project_id:
            raise ConfigurationError(
                "project_id required for real API",
                hint="Set GOOGLE_CLOUD_PROJECT or pass project_id=...",
            )

        if not 0.0 <= self.temperature <= 2.0:
            raise ConfigurationError(
                f"temperature must be within [0, 2], got {self.temperature}",
            )
        if self.top_p is not None and not 0.0 < self.top_p <= 1.0:
            raise ConfigurationError(f"top_p must be within (0, 1], got {self.top_p}")
        if self.top_k is not None and self.top_k < 1:
            raise ConfigurationError(f"top_k must be ≥ 1, got {self.top_k}")
        if self.max_output_tokens is not None and self.max_output_tokens < 1:
            raise ConfigurationError(
                f"max_output_tokens must be ≥ 1, got {self.max_output_tokens}",
            )
        if self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="This bounds the whole invocation, retries included.",
            )
        if self.request_timeout_s <= 0:
            raise ConfigurationError(
                f"request_timeout_s must be > 0, got {self.request_timeout_s}",
            )
        if self.max_download_bytes is not None and self.max_download_bytes < 1:
            raise ConfigurationError(
                f"max_download_bytes must be ≥ 1 or None, got {self.max_download_bytes}",
            )
        if not isinstance(self.retry, RetryPolicy):
            raise ConfigurationError(
                "retry must be a RetryPolicy",
                hint="Pass retry=RetryPolicy(max_retries=3, initial_delay_s=1.0).",
            )
        validate_response_schema(self.response_schema)

    @property
    def max_retries(self) -> int:
        """Retries allowed after the first attempt."""
        return self.retry.max_retries

    @property
    def initial_retry_delay_s(self) -> float:
        """Backoff before the first retry."""
        return self.retry.initial_delay_s
