from __future__ import annotations

import logging
import re
from enum import Enum
from typing import List

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_MAX_CHARS",
    "DEFAULT_MAX_TOKENS",
    "SplitStrategy",
    "normalize_text",
    "segment_text",
    "split_into_sentences",
    "split_oversized_unit",
]

DEFAULT_MAX_TOKENS = 51
DEFAULT_MAX_CHARS = 250

SENTENCE_PATTERN = re.compile(r".+?(?:[.!?]+(?=\s|$)|$)")
WHITESPACE_PATTERN = re.compile(r"\s+")


class SplitStrategy(Enum):
    """
    Fallback splits for a sentence longer than the character limit, tried in
    declaration order. The delimiter stays attached to the preceding part.
    """

    SEMICOLON = r"(?<=;)\s+"
    COMMA = r"(?<=,)\s+"
    WHITESPACE = r"\s+"

    def split(self, unit: str) -> List[str]:
        return [part for part in re.split(self.value, unit) if part]


def normalize_text(text: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", text or "").strip()


def split_into_sentences(text: str) -> List[str]:
    """
    Split text into sentence-like units, each keeping its ``.``/``!``/``?`` run.

    Trailing text without a terminator becomes the last unit, so a text with no
    terminator at all is a single unit.
    """
    text = normalize_text(text)
    if not text:
        return []
    units = (match.group(0).strip() for match in SENTENCE_PATTERN.finditer(text))
    return [unit for unit in units if unit]


def split_oversized_unit(unit: str, max_chars: int = DEFAULT_MAX_CHARS) -> List[str]:
    """
    Break a unit that exceeds ``max_chars`` using the first strategy whose parts all fit.

    Every strategy starts again from the original unit. If nothing fits, the
    word split is returned anyway: a single word longer than ``max_chars`` is
    not cut further.
    """
    parts: List[str] = [unit]
    for strategy in SplitStrategy:
        parts = strategy.split(unit)
        if all(len(part) <= max_chars for part in parts):
            logger.debug("Split %d-char unit into %d parts on %s.", len(unit), len(parts), strategy.name)
            return parts

    logger.warning(
        "Unit still has parts over %d characters after word splitting; keeping oversized words whole.",
        max_chars,
    )
    return parts


def segment_text(
    text: str,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    max_chars: int = DEFAULT_MAX_CHARS,
) -> List[str]:
    """
    Group text into ordered chunks sized for a synthesis engine.

    ``max_chars`` is a hard ceiling (short of an indivisible word). ``max_tokens``
    is a soft target estimated from word counts and only applied to whole
    sentences, not to the pieces of a split oversized sentence.
    """
    if max_tokens <= 0:
        raise ValueError("max_tokens must be positive.")
    if max_chars <= 0:
        raise ValueError("max_chars must be positive.")

    chunks: List[str] = []
    current = ""
    current_words = 0

    def flush() -> None:
        nonlocal current, current_words
        if current:
            chunks.append(current)
        current = ""
        current_words = 0

    def append(piece: str, words: int) -> None:
        nonlocal current, current_words
        current = f"{current} {piece}" if current else piece
        current_words += words

    for unit in split_into_sentences(text):
        if len(unit) > max_chars:
            for part in split_oversized_unit(unit, max_chars=max_chars):
                part_words = len(part.split())
                if current and len(current) + 1 + len(part) > max_chars:
                    flush()
                append(part, part_words)
            continue

        unit_words = len(unit.split())
        too_many_tokens = current_words + unit_words + 1 > max_tokens
        too_many_chars = bool(current) and len(current) + 1 + len(unit) > max_chars
        if too_many_tokens or too_many_chars:
            flush()
        append(unit, unit_words)

    flush()
    logger.debug("Segmented %d characters into %d chunks.", len(text or ""), len(chunks))
    return chunks
