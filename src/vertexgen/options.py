"""Per-call options that override the client configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from vertexgen.errors import ConfigurationError

ResponseSchemaInput = type[BaseModel] | dict[str, Any]


def validate_response_schema(schema: object) -> None:
    """Raise ConfigurationError unless *schema* is a dict or BaseModel subclass."""
    if schema is None:
        return
    if isinstance(schema, dict):
        return
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return
    raise ConfigurationError(
        "response_schema must be a Pydantic model class or JSON schema dict",
        hint="Pass a BaseModel subclass or a dict following JSON Schema.",
    )


def response_schema_json(schema: ResponseSchemaInput | None) -> dict[str, Any] | None:
    """Return JSON Schema for provider APIs."""
    if schema is None:
        return None
    if isinstance(schema, dict):
        return schema
    return schema.model_json_schema()


def response_schema_model(schema: ResponseSchemaInput | None) -> type[BaseModel] | None:
    """Return the Pydantic schema class when one was provided."""
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema
    return None


@dataclass(frozen=True)
class Options:
    """Optional per-call overrides for `Client.invoke()`.

    Unset fields fall back to the client's `Config`.
    """

    #: Appended before any system-role inputs.
    system_instruction: str | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    #: Pydantic ``BaseModel`` subclass or JSON Schema dict for structured output.
    response_schema: ResponseSchemaInput | None = None
    response_mime_type: str | None = None

    def __post_init__(self) -> None:
        """Validate option shapes early for clear errors."""
        if self.system_instruction is not None and not isinstance(
            self.system_instruction, str
        ):
            raise ConfigurationError(
                "system_instruction must be a string",
                hint="Pass system_instruction='You are a concise assistant.'",
            )
        if self.temperature is not None and not 0.0 <= self.temperature <= 2.0:
            raise ConfigurationError(
                f"temperature must be within [0, 2], got {self.temperature}",
            )
        if self.max_output_tokens is not None and (
            not isinstance(self.max_output_tokens, int) or self.max_output_tokens <= 0
        ):
            raise ConfigurationError(
                "max_output_tokens must be a positive integer",
                hint="Pass max_output_tokens=8192 or leave it unset.",
            )
        validate_response_schema(self.response_schema)
