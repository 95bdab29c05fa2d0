"""vertexgen: Text generation on Vertex AI with Gemini and Claude models.

Public API:
    - invoke(): One-shot generation over explicit inputs
    - Client: Reusable adapter (connection pool + credential cache)
    - Source: Explicit input types
    - Config: Configuration dataclass
"""

from __future__ import annotations

import asyncio
import logging

from vertexgen.auth import (
    Credential,
    CredentialCache,
    GoogleCredentialProvider,
    StaticCredentialProvider,
)
from vertexgen.client import Client
from vertexgen.config import Config
from vertexgen.errors import (
    APIError,
    ConfigurationError,
    CredentialError,
    EmptyResultError,
    InputResolutionError,
    InvocationTimeoutError,
    OverloadedError,
    RateLimitError,
    RetriesExhaustedError,
    SourceError,
    VertexGenError,
)
from vertexgen.options import Options
from vertexgen.retry import RetryPolicy
from vertexgen.source import Source

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("vertexgen")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("vertexgen").addHandler(logging.NullHandler())

logger = logging.getLogger(__name__)


async def invoke(
    *sources: Source,
    config: Config,
    options: Options | None = None,
) -> str:
    """Run one generation with a short-lived client.

    Args:
        *sources: Inputs in the order the model should see them.
        config: Configuration specifying provider, model and project.
        options: Optional per-call overrides.

    Returns:
        The response text segments joined by newlines.

    Example:
        config = Config(model="gemini-2.0-flash-001", project_id="my-project")
        text = await invoke(
            Source.from_text("Describe this image"),
            Source.from_file("photo.jpg"),
            config=config,
        )
    """
    client = Client(config)
    try:
        return await client.invoke(*sources, options=options)
    finally:
        try:
            await client.aclose()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Cleanup should never mask the primary failure.
            logger.warning("Client cleanup failed: %s", exc)


__all__ = [
    "APIError",
    "Client",
    "Config",
    "ConfigurationError",
    "Credential",
    "CredentialCache",
    "CredentialError",
    "EmptyResultError",
    "GoogleCredentialProvider",
    "InputResolutionError",
    "InvocationTimeoutError",
    "Options",
    "OverloadedError",
    "RateLimitError",
    "RetriesExhaustedError",
    "RetryPolicy",
    "Source",
    "SourceError",
    "StaticCredentialProvider",
    "VertexGenError",
    "invoke",
]
