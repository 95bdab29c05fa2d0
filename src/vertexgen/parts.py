"""Canonical request parts produced by input resolution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

PartKind = Literal["text", "inline", "file_ref"]


@dataclass(frozen=True, slots=True)
class Part:
    """A normalized unit of model input.

    Exactly one payload is populated: ``text`` for text parts, ``data`` for
    inline bytes, ``uri`` for external references.
    """

    kind: PartKind
    mime_type: str | None = None
    text: str | None = None
    data: bytes | None = None
    uri: str | None = None

    @classmethod
    def from_text(cls, text: str) -> Part:
        """Text part."""
        return cls(kind="text", text=text)

    @classmethod
    def inline(cls, data: bytes, mime_type: str) -> Part:
        """Inline bytes with their content type."""
        return cls(kind="inline", mime_type=mime_type, data=data)

    @classmethod
    def file_ref(cls, uri: str, mime_type: str) -> Part:
        """Reference to an object the backend fetches itself."""
        return cls(kind="file_ref", mime_type=mime_type, uri=uri)

    def __repr__(self) -> str:
        """Summarize without dumping payload bytes."""
        if self.kind == "text":
            preview = (self.text or "")[:40]
            return f"Part(kind='text', text={preview!r})"
        if self.kind == "inline":
            size = len(self.data or b"")
            return f"Part(kind='inline', mime_type={self.mime_type!r}, bytes={size})"
        return f"Part(kind='file_ref', mime_type={self.mime_type!r}, uri={self.uri!r})"


@dataclass(frozen=True)
class ResolvedInputs:
    """Resolution output: content parts in order, plus system-role texts."""

    parts: tuple[Part, ...]
    system_texts: tuple[str, ...] = ()

    @property
    def system_instruction(self) -> str | None:
        """System-role texts joined by newlines, or None when absent."""
        if not self.system_texts:
            return None
        return "\n".join(self.system_texts)
