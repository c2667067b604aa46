"""Layout fingerprints for recognizing a merchant without its name or tax ID."""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Literal

from ticketfox.domain.layout import LayoutType, PricePosition, StoreFingerprint, StoreParsingTemplate
from ticketfox.domain.receipt import DateOrder, ImageDimensions, OcrBlock
from ticketfox.receipt.prices import detect_decimal_separator
from ticketfox.receipt.spatial_correlator import analyze_layout, extract_elements
from ticketfox.receipt.text_normalizer import contains_keyword

logger = logging.getLogger(__name__)

MIN_MATCH_SCORE = 40
HEADER_BAND = 0.15
FOOTER_BAND = 0.85
MAX_PATTERNS = 5
DEFAULT_TYPICAL_WIDTH = 40

SEARCH_KEYWORDS = (
    "MERCADONA",
    "CARREFOUR",
    "LIDL",
    "ALDI",
    "DIA",
    "EROSKI",
    "ALCAMPO",
    "HIPERCOR",
    "CONSUM",
    "AHORRAMAS",
    "CAPRABO",
    "SUPERMERCADO",
    "SUPERMERCADOS",
    "HIPERMERCADO",
    "HIPERMERCADOS",
    "AUTOSERVICIO",
    "IVA",
    "N.I.F",
    "C.I.F",
    "EFECTIVO",
    "TARJETA",
    "VISA",
    "MASTERCARD",
    "CONTACTLESS",
)

# Order matters: dates and times go before the bare number rule eats them
_PLACEHOLDERS = (
    (re.compile(r"\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}"), "<DATE>"),
    (re.compile(r"\d{1,2}:\d{2}(:\d{2})?"), "<TIME>"),
    (re.compile(r"\(?\d{3}\)?[\s\-.]\d{3}[\s\-.]\d{4}"), "<PHONE>"),
    (re.compile(r"\d{9,}"), "<PHONE>"),
    (re.compile(r"\d+[.,]\d{2}"), "<PRICE>"),
    (re.compile(r"[A-Z]?\d{7,8}[A-Z]?"), "<TAXID>"),
    (re.compile(r"\d+"), "<NUM>"),
)
_DATE = re.compile(r"(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2,4})")
_CURRENCY_TOKENS = (
    (re.compile(r"€"), "€"),
    (re.compile(r"\$"), "$"),
    (re.compile(r"£"), "£"),
    (re.compile(r"\bEUR\b", re.IGNORECASE), "€"),
    (re.compile(r"\bUSD\b", re.IGNORECASE), "$"),
)


@dataclass(frozen=True)
class FingerprintMatch:
    merchant_id: str
    store_name: str | None
    score: int
    matched_patterns: tuple[str, ...]


def create_pattern(text: str) -> str | None:
    """Generalize a line by replacing identifying numbers with placeholders."""
    pattern = text.upper()
    if len(pattern) < 4 or pattern.isdigit():
        return None
    for regex, placeholder in _PLACEHOLDERS:
        pattern = regex.sub(placeholder, pattern)
    return pattern if re.search(r"[A-Z]{2,}", pattern) else None


def _band_patterns(blocks: Sequence[OcrBlock], height: float, *, header: bool) -> tuple[str, ...]:
    patterns: list[str] = []
    for block in blocks:
        y = block.bounding_box.top / height
        if (header and y > HEADER_BAND) or (not header and y < FOOTER_BAND):
            continue
        for line in block.lines:
            text = line.text.strip()
            if len(text) < 3:
                continue
            pattern = create_pattern(text)
            if pattern and pattern not in patterns:
                patterns.append(pattern)
    return tuple(patterns[:MAX_PATTERNS])


def _date_info(
    blocks: Sequence[OcrBlock], height: float
) -> tuple[DateOrder | None, Literal["header", "footer", "middle"] | None]:
    for block in blocks:
        for line in block.lines:
            match = _DATE.search(line.text)
            if not match:
                continue
            date_format: DateOrder = "MDY" if int(match.group(1)) <= 12 < int(match.group(2)) else "DMY"
            y = line.bounding_box.top / height
            if y < 0.2:
                return date_format, "header"
            if y > 0.8:
                return date_format, "footer"
            return date_format, "middle"
    return None, None


def _typical_width(blocks: Sequence[OcrBlock]) -> int:
    lengths = sorted(len(line.text.strip()) for block in blocks for line in block.lines if len(line.text.strip()) > 5)
    if not lengths:
        return DEFAULT_TYPICAL_WIDTH
    mid = len(lengths) // 2
    if len(lengths) % 2:
        return lengths[mid]
    return int((lengths[mid - 1] + lengths[mid]) / 2 + 0.5)


def _currency_symbol(text: str) -> str | None:
    counts: Counter[str] = Counter()
    for regex, symbol in _CURRENCY_TOKENS:
        found = len(regex.findall(text))
        if found:
            counts[symbol] += found
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def _known_keywords(blocks: Sequence[OcrBlock]) -> tuple[str, ...]:
    found: list[str] = []
    for block in blocks:
        for keyword in SEARCH_KEYWORDS:
            if keyword not in found and contains_keyword(block.text, (keyword,)):
                found.append(keyword)
    return tuple(found)


def build_store_fingerprint(blocks: Sequence[OcrBlock], dimensions: ImageDimensions) -> StoreFingerprint:
    """Summarize the layout and textual conventions of one receipt."""
    height = dimensions.height or 1
    layout = analyze_layout(extract_elements(blocks, dimensions))
    layout_type = LayoutType.COLUMNAR if layout.is_columnar else LayoutType.INLINE
    if layout.price_column_x is None:
        price_position = PricePosition.RIGHT
    else:
        price_position = PricePosition.RIGHT if layout.price_column_x > 0.6 else PricePosition.LEFT

    header_patterns = _band_patterns(blocks, height, header=True)
    footer_patterns = _band_patterns(blocks, height, header=False)
    date_format, date_position = _date_info(blocks, height)
    all_text = "\n".join(block.text for block in blocks)
    decimal_separator = detect_decimal_separator(all_text)

    confidence = 50
    if len(header_patterns) >= 2:
        confidence += 15
    if footer_patterns:
        confidence += 10
    if layout_type is not LayoutType.MIXED:
        confidence += 10
    if decimal_separator:
        confidence += 10

    return StoreFingerprint(
        layout_type=layout_type,
        price_position=price_position,
        header_patterns=header_patterns,
        footer_patterns=footer_patterns,
        date_format=date_format,
        date_position=date_position,
        typical_width=_typical_width(blocks),
        line_count=sum(len(block.lines) for block in blocks),
        decimal_separator=decimal_separator,
        currency_symbol=_currency_symbol(all_text),
        known_keywords=_known_keywords(blocks),
        confidence=min(confidence, 100),
    )


def _patterns_overlap(first: str, second: str) -> bool:
    return first == second or first in second or second in first


def _matched_headers(first: Iterable[str], second: Sequence[str]) -> list[str]:
    return [pattern for pattern in first if any(_patterns_overlap(pattern, other) for other in second)]


def _shared_keywords(first: Iterable[str], second: Iterable[str]) -> list[str]:
    upper = {keyword.upper() for keyword in first}
    return [keyword for keyword in second if keyword.upper() in upper]


def compare_fingerprints(first: StoreFingerprint, second: StoreFingerprint) -> int:
    """
    Weighted partial match of two fingerprints, 0-100.

    Layout type 20, price position 15, decimal separator 10, currency 10,
    date format 5, header patterns up to 20 and shared keywords up to 20.
    """
    score = 0
    if first.layout_type == second.layout_type:
        score += 20
    if first.price_position == second.price_position:
        score += 15
    if first.decimal_separator == second.decimal_separator:
        score += 10
    if first.currency_symbol == second.currency_symbol:
        score += 10
    if first.date_format == second.date_format:
        score += 5
    score += min(20, len(_matched_headers(first.header_patterns, second.header_patterns)) * 5)
    score += min(20, len(_shared_keywords(first.known_keywords, second.known_keywords)) * 4)
    return score


def match_fingerprint_to_templates(
    fingerprint: StoreFingerprint,
    templates: Iterable[StoreParsingTemplate],
    min_score: int = MIN_MATCH_SCORE,
) -> list[FingerprintMatch]:
    """Score learned templates against a fingerprint, best first."""
    matches: list[FingerprintMatch] = []
    for template in templates:
        if template.fingerprint is None:
            continue
        score = compare_fingerprints(fingerprint, template.fingerprint)
        if score < min_score:
            continue
        matched = [f"header:{pattern}" for pattern in _matched_headers(fingerprint.header_patterns,
                                                                      template.fingerprint.header_patterns)]
        matched += [f"keyword:{keyword}" for keyword in _shared_keywords(fingerprint.known_keywords,
                                                                        template.fingerprint.known_keywords)]
        matches.append(
            FingerprintMatch(
                merchant_id=template.merchant_id,
                store_name=template.store_name,
                score=score,
                matched_patterns=tuple(matched),
            )
        )

    matches.sort(key=lambda match: match.score, reverse=True)
    if matches:
        logger.debug("Best fingerprint match %s (score %d)", matches[0].merchant_id, matches[0].score)
    return matches
