"""Input resolution: turn Sources into canonical request Parts.

Resolution is sequential and fail-fast so part order always equals
declaration order. Remote downloads go through a temporary file that is
removed on every exit path before the resolver returns.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from pathlib import Path, PurePosixPath
import tempfile
from typing import TYPE_CHECKING, Protocol, runtime_checkable
from urllib.parse import quote, urlparse

import httpx

from vertexgen._mime import OCTET_STREAM, detect_mime_type, guess_mime_type_from_extension
from vertexgen.errors import ConfigurationError, SourceError, VertexGenError
from vertexgen.parts import Part, ResolvedInputs
from vertexgen.source import Source, parse_gcs_uri

if TYPE_CHECKING:
    from collections.abc import Iterable

    from vertexgen.auth import CredentialCache

logger = logging.getLogger(__name__)

GCS_OBJECT_ENDPOINT = "https://storage.googleapis.com/storage/v1/b/{bucket}/o/{object}"
_DOWNLOAD_CHUNK_SIZE = 64 * 1024
_BODY_PREVIEW_CHARS = 300


@runtime_checkable
class ObjectMetadataProvider(Protocol):
    """Looks up stored object metadata without fetching object bytes."""

    async def get_object_content_type(self, bucket: str, object_name: str) -> str | None:
        """Return the stored content type, or None when the object has none."""
        ...


class OfflineMetadataProvider:
    """Metadata lookup that never touches the network.

    Reports no stored content type, so ``gs://`` inputs fall back to the
    object name's extension.
    """

    async def get_object_content_type(self, bucket: str, object_name: str) -> str | None:
        del bucket, object_name
        return None


class GCSMetadataProvider:
    """Cloud Storage JSON API metadata lookup authenticated by the credential cache."""

    def __init__(self, http: httpx.AsyncClient, credentials: CredentialCache) -> None:
        """Create a provider sharing the client's HTTP pool and token."""
        self._http = http
        self._credentials = credentials

    async def get_object_content_type(self, bucket: str, object_name: str) -> str | None:
        """Fetch only the ``contentType`` field of the object resource."""
        url = GCS_OBJECT_ENDPOINT.format(
            bucket=quote(bucket, safe=""), object=quote(object_name, safe="")
        )
        headers = await self._credentials.authorization_header()
        try:
            response = await self._http.get(
                url, params={"fields": "contentType"}, headers=headers
            )
        except httpx.HTTPError as e:
            raise SourceError(
                f"failed to get GCS object attributes: {type(e).__name__}: {e}",
                identifier=f"gs://{bucket}/{object_name}",
            ) from e

        if not response.is_success:
            raise SourceError(
                "failed to get GCS object attributes "
                f"(status={response.status_code}): {response.text[:_BODY_PREVIEW_CHARS]}",
                hint=(
                    "Check the object exists and the credentials can read it "
                    "(roles/storage.objectViewer)."
                    if response.status_code in (401, 403, 404)
                    else None
                ),
                identifier=f"gs://{bucket}/{object_name}",
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise SourceError(
                "GCS object metadata was not valid JSON",
                identifier=f"gs://{bucket}/{object_name}",
            ) from e
        content_type = payload.get("contentType") if isinstance(payload, dict) else None
        return content_type if isinstance(content_type, str) and content_type else None


def _remove_quietly(path: str) -> None:
    with contextlib.suppress(FileNotFoundError):
        os.remove(path)


class InputResolver:
    """Resolve Sources into Parts for a single invocation.

    Args:
        http: Shared async HTTP client used for remote downloads.
        metadata: Object-store metadata lookup; required only for ``gs://`` inputs.
        max_download_bytes: Optional cap on a single remote download.
        temp_dir: Directory for transient download files (system default when None).
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        metadata: ObjectMetadataProvider | None = None,
        max_download_bytes: int | None = None,
        temp_dir: str | os.PathLike[str] | None = None,
    ) -> None:
        """Create a resolver bound to the given collaborators."""
        self._http = http
        self._metadata = metadata
        self._max_download_bytes = max_download_bytes
        self._temp_dir = os.fspath(temp_dir) if temp_dir is not None else None

    async def resolve_all(self, sources: Iterable[Source]) -> ResolvedInputs:
        """Resolve every source in order, stopping at the first failure.

        System-role sources are collected into ``system_texts`` instead of
        the content parts; they must be non-empty text.
        """
        parts: list[Part] = []
        system_texts: list[str] = []

        for idx, source in enumerate(sources):
            if not isinstance(source, Source):
                raise SourceError(
                    f"inputs[{idx}]: expected Source, got {type(source).__name__}",
                    hint="Use Source.from_text(), Source.from_file(), Source.from_url(), etc.",
                )
            if source.is_system:
                if source.source_type != "text" or not source.identifier.strip():
                    raise ConfigurationError(
                        "system message must contain text content",
                        hint="Pass Source.system('You are a concise assistant.').",
                    )
                system_texts.append(source.identifier)
                continue

            parts.append(await self.resolve(source))

        logger.debug(
            "Resolved %d part(s), %d system text(s)", len(parts), len(system_texts)
        )
        return ResolvedInputs(parts=tuple(parts), system_texts=tuple(system_texts))

    async def resolve(self, source: Source) -> Part:
        """Resolve one source into exactly one Part."""
        if source.source_type == "text":
            return Part.from_text(source.identifier)
        if source.source_type == "file":
            return await self._resolve_file(source)
        if source.source_type == "url":
            return await self._resolve_url(source)
        if source.source_type == "gcs":
            return await self._resolve_gcs(source)
        raise SourceError(
            f"Unsupported source type: {source.source_type!r}",
            identifier=source.label,
        )

    async def _resolve_file(self, source: Source) -> Part:
        path = Path(source.identifier)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise SourceError(
                f"failed to read file {path}: {e.strerror or e}",
                hint="Check the path exists and is a readable file.",
                identifier=source.identifier,
            ) from e
        return Part.inline(data, detect_mime_type(data, source.identifier))

    async def _resolve_url(self, source: Source) -> Part:
        url = source.identifier
        tmp_path = await self._download_to_temp(url)
        try:
            data = await asyncio.to_thread(Path(tmp_path).read_bytes)
        except OSError as e:
            raise SourceError(
                f"failed to read downloaded file: {e}",
                identifier=url,
            ) from e
        finally:
            _remove_quietly(tmp_path)
            logger.debug("Removed transient download %s", tmp_path)
        return Part.inline(data, detect_mime_type(data, url))

    async def _download_to_temp(self, url: str) -> str:
        """Stream *url* into a new temporary file and return its path.

        The file is removed before raising if anything goes wrong.
        """
        suffix = PurePosixPath(urlparse(url).path).suffix
        fd, tmp_path = tempfile.mkstemp(
            prefix="vertexgen-", suffix=suffix, dir=self._temp_dir
        )
        try:
            with os.fdopen(fd, "wb") as fh:
                async with self._http.stream("GET", url) as response:
                    if not response.is_success:
                        raise SourceError(
                            "failed to download file, status code: "
                            f"{response.status_code}",
                            identifier=url,
                        )
                    total = 0
                    async for chunk in response.aiter_bytes(_DOWNLOAD_CHUNK_SIZE):
                        total += len(chunk)
                        if (
                            self._max_download_bytes is not None
                            and total > self._max_download_bytes
                        ):
                            raise SourceError(
                                "remote file exceeds size limit "
                                f"({total} > {self._max_download_bytes})",
                                hint="Raise Config.max_download_bytes or use a gs:// reference.",
                                identifier=url,
                            )
                        fh.write(chunk)
        except httpx.HTTPError as e:
            _remove_quietly(tmp_path)
            raise SourceError(
                f"failed to download file: {type(e).__name__}: {e}",
                identifier=url,
            ) from e
        except BaseException:
            _remove_quietly(tmp_path)
            raise
        return tmp_path

    async def _resolve_gcs(self, source: Source) -> Part:
        uri = source.identifier
        bucket, object_name = parse_gcs_uri(uri)
        if self._metadata is None:
            raise ConfigurationError(
                "gs:// inputs need an object metadata provider",
                hint="Create the Client with credentials so GCS metadata can be read.",
            )
        try:
            mime_type = await self._metadata.get_object_content_type(bucket, object_name)
        except VertexGenError:
            raise
        except Exception as e:
            raise SourceError(
                f"failed to get GCS file mime type: {type(e).__name__}: {e}",
                identifier=uri,
            ) from e
        if not mime_type:
            mime_type = guess_mime_type_from_extension(object_name) or OCTET_STREAM
        return Part.file_ref(uri, mime_type)
