"""Plain-text helpers derived from Markdown bodies: excerpt, reading time, TOC."""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass
from typing import Any

DEFAULT_WORDS_PER_MINUTE = 200
DEFAULT_EXCERPT_LENGTH = 160
ELLIPSIS = "..."

_FENCED_CODE_RE = re.compile(r"^[ \t]*(```|~~~).*?^[ \t]*\1[^\n]*$", re.MULTILINE | re.DOTALL)
_HEADING_MARKER_RE = re.compile(r"#{1,6}\s")
_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")
_ITALIC_RE = re.compile(r"\*(.+?)\*")
_IMAGE_RE = re.compile(r"!\[(.*?)\]\(.+?\)")
_LINK_RE = re.compile(r"\[(.+?)\]\(.+?\)")
_INLINE_CODE_RE = re.compile(r"`(.+?)`")
_TOC_HEADING_RE = re.compile(r"^(#{2,3})\s+(.+?)(?:\s+#+)?\s*$")
_FENCE_LINE_RE = re.compile(r"^[ \t]*(```|~~~)")


@dataclass(frozen=True)
class TocItem:
    """Table-of-contents entry for a level-2 or level-3 heading."""

    id: str
    level: int
    text: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def slugify(text: str) -> str:
    """Generate an anchor id from heading text.

    - Lowercase, strip
    - Drop characters outside ``[a-z0-9 _-]``
    - Collapse runs of whitespace, underscores and hyphens to one hyphen
    - Strip leading/trailing hyphens
    """
    value = text.lower().strip()
    value = re.sub(r"[^a-z0-9\s_-]", "", value)
    value = re.sub(r"[\s_-]+", "-", value)
    return value.strip("-")


def strip_markdown(content: str) -> str:
    """Remove the Markdown syntax that should not appear in a plain-text excerpt."""
    text = _FENCED_CODE_RE.sub("", content)
    text = _HEADING_MARKER_RE.sub("", text)
    text = _BOLD_RE.sub(r"\1", text)
    text = _ITALIC_RE.sub(r"\1", text)
    text = _IMAGE_RE.sub(r"\1", text)
    text = _LINK_RE.sub(r"\1", text)
    text = _INLINE_CODE_RE.sub(r"\1", text)
    return text.strip()


def extract_excerpt(content: str, max_length: int = DEFAULT_EXCERPT_LENGTH) -> str:
    """Derive a plain-text excerpt: the first paragraph, truncated with an ellipsis."""
    plain_text = strip_markdown(content.replace("\r\n", "\n"))
    first_paragraph = re.split(r"\n[ \t]*\n", plain_text, maxsplit=1)[0].strip()
    if len(first_paragraph) <= max_length:
        return first_paragraph
    return first_paragraph[:max_length].strip() + ELLIPSIS


def count_words(content: str) -> int:
    return len(content.split())


def calculate_reading_time(
    content: str, words_per_minute: int = DEFAULT_WORDS_PER_MINUTE
) -> int:
    """Reading time in whole minutes, rounded up, never less than one."""
    return max(1, math.ceil(count_words(content) / words_per_minute))


def extract_table_of_contents(content: str) -> list[TocItem]:
    """Collect ``##`` and ``###`` headings outside fenced code blocks."""
    toc: list[TocItem] = []
    in_code_block = False
    for line in content.splitlines():
        if _FENCE_LINE_RE.match(line):
            in_code_block = not in_code_block
            continue
        if in_code_block:
            continue
        match = _TOC_HEADING_RE.match(line)
        if match is None:
            continue
        text = match.group(2).strip()
        toc.append(TocItem(id=slugify(text), level=len(match.group(1)), text=text))
    return toc
