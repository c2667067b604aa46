"""Identify which supermarket chain printed a receipt.

Strategies run in strict order of reliability and the first hit wins:

1. NIF/CIF tax identifier lookup (98)
2. Chain name patterns (90)
3. Fingerprint phrases, scaled by how many match (70-85)
4. A display-name word in the header (60)
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from ticketfox.domain.receipt import DetectionMethod, OcrBlock
from ticketfox.receipt.chain_templates import ChainRegistry, ChainTemplate
from ticketfox.receipt.fallback import first_non_empty

logger = logging.getLogger(__name__)

NIF_CONFIDENCE = 98
NAME_CONFIDENCE = 90
FINGERPRINT_BASE_CONFIDENCE = 70
FINGERPRINT_MAX_CONFIDENCE = 85
HEURISTIC_CONFIDENCE = 60
CHAIN_PARSING_THRESHOLD = 70
HEURISTIC_HEADER_LINES = 10

NIF_PATTERNS = (
    re.compile(r"\b([A-Z]-?\d{8})\b", re.IGNORECASE),
    re.compile(r"\b(\d{8}[A-Z])\b", re.IGNORECASE),
    re.compile(r"NIF[:\s]*([A-Z]-?\d{8})", re.IGNORECASE),
    re.compile(r"CIF[:\s]*([A-Z]-?\d{8})", re.IGNORECASE),
    re.compile(r"N\.?I\.?F\.?[:\s]*([A-Z]-?\d{8})", re.IGNORECASE),
    re.compile(r"C\.?I\.?F\.?[:\s]*([A-Z]-?\d{8})", re.IGNORECASE),
)


@dataclass(frozen=True)
class ChainDetection:
    chain: ChainTemplate | None
    confidence: int
    method: DetectionMethod
    matched: str | None = None

    @property
    def chain_id(self) -> str | None:
        return self.chain.chain_id if self.chain else None


NO_DETECTION = ChainDetection(chain=None, confidence=0, method=DetectionMethod.NONE)


def text_from_blocks(blocks: Iterable[OcrBlock]) -> str:
    """Join block lines (or the block text when it has none) into one document."""
    lines: list[str] = []
    for block in blocks:
        if block.lines:
            lines.extend(line.text for line in block.lines)
        elif block.text:
            lines.append(block.text)
    return "\n".join(lines)


def _nif_variants(nif: str) -> tuple[str, ...]:
    plain = nif.replace("-", "")
    hyphenated = nif if "-" in nif else f"{nif[0]}-{nif[1:]}"
    return (nif, hyphenated, plain)


def detect_by_nif(text: str, registry: ChainRegistry) -> ChainDetection | None:
    for pattern in NIF_PATTERNS:
        for match in pattern.finditer(text):
            nif = match.group(1).upper()
            for variant in _nif_variants(nif):
                chain_id = registry.nif_index.get(variant)
                if chain_id:
                    return ChainDetection(
                        chain=registry.get(chain_id),
                        confidence=NIF_CONFIDENCE,
                        method=DetectionMethod.NIF,
                        matched=nif,
                    )
    return None


def detect_by_name(text: str, registry: ChainRegistry) -> ChainDetection | None:
    upper = text.upper()
    for template in registry.templates:
        for pattern in template.name_patterns:
            match = pattern.search(upper)
            if match:
                return ChainDetection(
                    chain=template,
                    confidence=NAME_CONFIDENCE,
                    method=DetectionMethod.NAME,
                    matched=match.group(0),
                )
    return None


def detect_by_fingerprint(text: str, registry: ChainRegistry) -> ChainDetection | None:
    """Pick the chain with the most fingerprint phrases present; ties keep registry order."""
    upper = text.upper()
    best: ChainDetection | None = None
    best_count = 0
    for template in registry.templates:
        matched = [m.group(0) for m in (p.search(upper) for p in template.fingerprints) if m]
        if len(matched) > best_count:
            best_count = len(matched)
            best = ChainDetection(
                chain=template,
                confidence=min(FINGERPRINT_BASE_CONFIDENCE + 5 * best_count, FINGERPRINT_MAX_CONFIDENCE),
                method=DetectionMethod.FINGERPRINT,
                matched=matched[-1],
            )
    return best


def detect_by_heuristic(text: str, registry: ChainRegistry) -> ChainDetection | None:
    header = "\n".join(text.upper().split("\n")[:HEURISTIC_HEADER_LINES])
    for template in registry.templates:
        for word in template.name.upper().split():
            if len(word) >= 4 and word in header:
                return ChainDetection(
                    chain=template,
                    confidence=HEURISTIC_CONFIDENCE,
                    method=DetectionMethod.HEURISTIC,
                    matched=word,
                )
    return None


_STRATEGIES: tuple[Callable[[str, ChainRegistry], ChainDetection | None], ...] = (
    detect_by_nif,
    detect_by_name,
    detect_by_fingerprint,
    detect_by_heuristic,
)


def detect_chain_from_text(text: str, registry: ChainRegistry) -> ChainDetection:
    if not text or not text.strip():
        return NO_DETECTION

    detection = first_non_empty(strategy(text, registry) for strategy in _STRATEGIES)
    if detection is None:
        logger.debug("No chain detected")
        return NO_DETECTION

    logger.debug(
        "Detected chain %s by %s (confidence %d, matched %r)",
        detection.chain_id,
        detection.method.value,
        detection.confidence,
        detection.matched,
    )
    return detection


def detect_chain_from_lines(lines: Sequence[str], registry: ChainRegistry) -> ChainDetection:
    return detect_chain_from_text("\n".join(lines), registry)


def detect_chain(blocks: Sequence[OcrBlock], registry: ChainRegistry) -> ChainDetection:
    return detect_chain_from_text(text_from_blocks(blocks), registry)


def should_use_chain_parsing(detection: ChainDetection) -> bool:
    """Chain grammars are only trusted above the detection floor."""
    return detection.chain is not None and detection.confidence >= CHAIN_PARSING_THRESHOLD
