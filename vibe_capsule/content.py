"""Readable-text extraction from local files and streams."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, TextIO

NOT_READERABLE = "Not reader-able"


@dataclass(frozen=True)
class ExtractionResult:
    """Either ``content`` and ``title`` or an ``error``."""

    content: str = ""
    title: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ContentExtractor(Protocol):
    def extract(self, source: str) -> ExtractionResult:
        ...


def guess_title(text: str, fallback: str) -> str:
    """Return the first Markdown heading, else the first non-empty line, else ``fallback``."""
    first_line: Optional[str] = None
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("#"):
            heading = stripped.lstrip("#").strip()
            if heading:
                return heading
        if first_line is None:
            first_line = stripped
    if first_line:
        return first_line[:120]
    return fallback


def extract_text(text: str, fallback_title: str = "Untitled") -> ExtractionResult:
    if not text.strip():
        return ExtractionResult(error=NOT_READERABLE)
    return ExtractionResult(content=text, title=guess_title(text, fallback_title))


class FileExtractor:
    """Treat a text or Markdown file as the page to summarize."""

    def extract(self, source: str) -> ExtractionResult:
        path = Path(source).expanduser()
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            return ExtractionResult(error=f"Cannot read {path}: {exc}")
        return extract_text(text, fallback_title=path.stem or "Untitled")


def extract_stream(handle: TextIO, fallback_title: str = "stdin") -> ExtractionResult:
    return extract_text(handle.read(), fallback_title=fallback_title)
