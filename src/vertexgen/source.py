"""Source: Explicit input types for vertexgen.

The variant set is closed: text, local file, remote URL, and Cloud Storage
object. Construction only validates shape; every filesystem or network access
happens when the source is resolved for a call.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

from vertexgen.errors import SourceError

SourceType = Literal["text", "file", "url", "gcs"]
Role = Literal["user", "system"]

_ROLES: frozenset[str] = frozenset({"user", "system"})


def parse_gcs_uri(uri: str) -> tuple[str, str]:
    """Split ``gs://bucket/path/to/object`` into ``(bucket, object_name)``."""
    parsed = urlparse(uri)
    if parsed.scheme != "gs":
        raise SourceError(
            f"invalid GCS scheme: {parsed.scheme or '<none>'}",
            hint="Cloud Storage references look like gs://bucket/object.",
            identifier=uri,
        )
    bucket = parsed.netloc
    object_name = parsed.path.lstrip("/")
    if not bucket or not object_name:
        raise SourceError(
            f"invalid GCS path: {uri}",
            hint="Cloud Storage references need both a bucket and an object name.",
            identifier=uri,
        )
    return bucket, object_name


@dataclass(frozen=True, slots=True)
class Source:
    """A single model input, in declaration order.

    ``identifier`` is the text itself for text sources, otherwise the path,
    URL, or ``gs://`` URI. ``role="system"`` marks text that belongs in the
    request's system instruction rather than among the content parts.
    """

    source_type: SourceType
    identifier: str
    role: Role = "user"

    def __post_init__(self) -> None:
        """Reject unknown roles early."""
        if self.role not in _ROLES:
            raise SourceError(
                f"Unknown role: {self.role!r}",
                hint="Use role='user' or role='system'.",
                identifier=self.label,
            )

    @property
    def label(self) -> str:
        """Short display label, safe for logs and error messages."""
        if self.source_type == "text":
            return self.identifier[:50]
        return self.identifier

    @property
    def is_system(self) -> bool:
        """Whether this input feeds the system instruction."""
        return self.role == "system"

    @classmethod
    def from_text(cls, text: str, *, role: Role = "user") -> Source:
        """Create a Source from literal text."""
        if not isinstance(text, str):
            raise SourceError(
                f"Expected str text, got {type(text).__name__}",
                hint="Use Source.from_file() for bytes on disk.",
            )
        return cls(source_type="text", identifier=text, role=role)

    @classmethod
    def system(cls, text: str) -> Source:
        """Create a system-role text Source."""
        return cls.from_text(text, role="system")

    @classmethod
    def from_file(cls, path: str | os.PathLike[str], *, role: Role = "user") -> Source:
        """Create a Source from a local file (read when resolved)."""
        raw = os.fspath(path)
        if not raw:
            raise SourceError("File path cannot be empty")
        return cls(source_type="file", identifier=str(Path(raw)), role=role)

    @classmethod
    def from_url(cls, url: str, *, role: Role = "user") -> Source:
        """Create a Source from an HTTP(S) URL (downloaded when resolved)."""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise SourceError(
                f"Expected an http(s) URL, got: {url!r}",
                hint="Use Source.from_gcs() for gs:// references.",
                identifier=url,
            )
        return cls(source_type="url", identifier=url, role=role)

    @classmethod
    def from_gcs(cls, uri: str, *, role: Role = "user") -> Source:
        """Create a Source referencing a Cloud Storage object (never downloaded)."""
        parse_gcs_uri(uri)
        return cls(source_type="gcs", identifier=uri, role=role)

    @classmethod
    def from_path(cls, path: str | os.PathLike[str], *, role: Role = "user") -> Source:
        """Create a blob Source, choosing the variant from the path prefix.

        ``gs://`` becomes a Cloud Storage reference, ``http(s)://`` a remote
        download, and anything else a local file.
        """
        raw = os.fspath(path)
        if raw.startswith("gs://"):
            return cls.from_gcs(raw, role=role)
        if raw.startswith(("http://", "https://")):
            return cls.from_url(raw, role=role)
        return cls.from_file(raw, role=role)
