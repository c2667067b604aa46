"""Fix common OCR character confusions in raw receipt lines and match keywords in them."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from functools import lru_cache

# Applied in order; each entry is (pattern, replacement).
OCR_CORRECTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    # "O12,50" -> "012,50": letter O read for a zero before a price
    (re.compile(r"[0O](?=\d{2}[,.]\d{2})"), "0"),
    # "l2,50" / "I2,50" -> "12,50"
    (re.compile(r"[Il1](?=\d[,.]\d{2})"), "1"),
    (re.compile(r"\$\s+"), "$"),
    (re.compile(r"€\s+"), "€"),
    # "12 , 50" -> "12,50"
    (re.compile(r"\s+,\s+"), ","),
)

_WHITESPACE = re.compile(r"\s+")
_DOLLAR_DIGIT = re.compile(r"\$\s*(\d)")
_LETTER = re.compile(r"[^\W\d_]")


def normalize_line(line: str) -> str:
    """Return the corrected form of one OCR line. Never raises."""
    processed = line.strip()
    for pattern, replacement in OCR_CORRECTIONS:
        processed = pattern.sub(replacement, processed)
    processed = _WHITESPACE.sub(" ", processed)
    return _DOLLAR_DIGIT.sub(r"$\1", processed)


def normalize_lines(lines: Iterable[str]) -> list[str]:
    """Correct every line, then drop the ones left empty."""
    normalized = (normalize_line(line) for line in lines)
    return [line for line in normalized if line]


def split_text(text: str) -> list[str]:
    """Split a raw OCR text dump into normalized lines."""
    return normalize_lines(text.splitlines())


def _bounded(keyword: str) -> str:
    pattern = re.escape(keyword)
    if _LETTER.match(keyword[:1]):
        pattern = r"(?<![^\W\d_])" + pattern
    if _LETTER.match(keyword[-1:]):
        pattern += r"(?![^\W\d_])"
    return pattern


@lru_cache(maxsize=128)
def keyword_pattern(keywords: tuple[str, ...]) -> re.Pattern[str] | None:
    """
    Compile keywords into one case-insensitive whole-word matcher.

    A letter may not touch a keyword on a side where the keyword itself starts
    or ends with a letter, so "IVA" finds "IVA 21%" and "IVA21%" but not
    "ACEITE OLIVA". Markers such as "@" or "c/" match anywhere.
    """
    words = sorted({keyword for keyword in keywords if keyword}, key=len, reverse=True)
    if not words:
        return None
    return re.compile("|".join(_bounded(word) for word in words), re.IGNORECASE)


def contains_keyword(text: str, keywords: Sequence[str]) -> bool:
    pattern = keyword_pattern(tuple(keywords))
    return pattern is not None and pattern.search(text) is not None
