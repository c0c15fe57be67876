from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

__all__ = [
    "InlinedText",
    "extract_footnotes",
    "inline_footnotes",
    "parse_footnotes",
    "split_main_text",
]

FOOTNOTE_ENTRY_PATTERN = re.compile(r"\[(\d+)\](.*?)(?=\[\d+\]|\Z)", re.DOTALL)
FOOTNOTE_MARKER_PATTERN = re.compile(r"[ \t]*\[(\d+)\][ \t]*")
SECTION_MARKER = "[1]"


@dataclass(frozen=True)
class InlinedText:
    text: str
    footnotes: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    replaced: int = 0


def parse_footnotes(text: str) -> Mapping[str, str]:
    """
    Build the footnote table from every ``[n] body`` span in ``text``.

    A body runs up to the next ``[n]`` marker or the end of input. When an
    identifier occurs more than once the last body wins, which is what lets the
    trailing footnote section override the in-text references. Empty bodies
    are not recorded, so their markers pass through unchanged.
    """
    table: Dict[str, str] = {}
    for match in FOOTNOTE_ENTRY_PATTERN.finditer(text or ""):
        body = match.group(2).strip()
        if body:
            table[match.group(1)] = body
    return MappingProxyType(table)


def split_main_text(text: str) -> Tuple[str, Optional[str]]:
    """
    Separate the body from the trailing footnote section.

    The section starts at the second ``[1]`` in the document. Without one the
    whole document is body text.
    """
    first = text.find(SECTION_MARKER)
    if first < 0:
        return text, None
    second = text.find(SECTION_MARKER, first + len(SECTION_MARKER))
    if second < 0:
        return text, None
    return text[:second], text[second:]


def extract_footnotes(text: str) -> InlinedText:
    text = text or ""
    main_text, section = split_main_text(text)
    if section is None:
        return InlinedText(text=text.strip())

    footnotes = parse_footnotes(text)
    replaced = 0

    def _render(match: re.Match) -> str:
        nonlocal replaced
        body = footnotes.get(match.group(1))
        if body is None:
            return match.group(0)
        replaced += 1
        return f" (footnote: {body}) "

    inlined = FOOTNOTE_MARKER_PATTERN.sub(_render, main_text).strip()
    logger.debug(
        "Inlined %d markers from %d footnotes into %d characters of text.",
        replaced,
        len(footnotes),
        len(inlined),
    )
    return InlinedText(text=inlined, footnotes=footnotes, replaced=replaced)


def inline_footnotes(text: str) -> str:
    """Replace ``[n]`` markers in the body with their footnote text and drop the footnote section."""
    return extract_footnotes(text).text
