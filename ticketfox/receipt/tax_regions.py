"""Spanish tax regimes (IVA, IGIC, IPSI) and their detection from receipt text."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ticketfox.receipt.chain_templates import ReferenceDataError
from ticketfox.receipt.text_normalizer import contains_keyword

POSTAL_CODE_PATTERN = re.compile(r"\b(0[1-9]|[1-4]\d|5[0-2])\d{3}\b")
RATE_TOLERANCE = 0.5


class TaxType(str, Enum):
    IVA = "IVA"
    IGIC = "IGIC"
    IPSI = "IPSI"


class TaxDetectionMethod(str, Enum):
    POSTAL_CODE = "postal_code"
    TAX_KEYWORD = "tax_keyword"
    STORE_NAME = "store_name"
    DEFAULT = "default"


@dataclass(frozen=True)
class TaxRate:
    kind: str
    name: str
    rate: float


@dataclass(frozen=True)
class TaxRegion:
    region_id: str
    name: str
    tax_type: TaxType
    rates: tuple[TaxRate, ...]
    postal_prefixes: tuple[str, ...]
    keywords: tuple[str, ...]
    url_markers: tuple[str, ...]
    indicator_stores: tuple[str, ...]
    keyword_confidence: int = 90


@dataclass(frozen=True)
class TaxRegionDetection:
    region: TaxRegion
    confidence: int
    method: TaxDetectionMethod


@dataclass(frozen=True)
class TaxRegionRegistry:
    regions: tuple[TaxRegion, ...]
    default_region_id: str
    keyword_order: tuple[str, ...] = ()

    def get(self, region_id: str) -> TaxRegion | None:
        for region in self.regions:
            if region.region_id == region_id:
                return region
        return None

    @property
    def default(self) -> TaxRegion:
        region = self.get(self.default_region_id)
        if region is None:
            raise ReferenceDataError(f"default tax region {self.default_region_id!r} is not defined")
        return region

    def in_keyword_order(self) -> tuple[TaxRegion, ...]:
        ordered = [self.get(region_id) for region_id in self.keyword_order]
        found = tuple(region for region in ordered if region is not None)
        return found or self.regions


def build_tax_region_registry(config: Mapping[str, Any], *, source: str = "<memory>") -> TaxRegionRegistry:
    regions: list[TaxRegion] = []
    for entry in config.get("regions", []):
        region_id = str(entry.get("id", "")).strip()
        if not region_id:
            raise ReferenceDataError(f"{source}: tax region needs an 'id'")
        try:
            tax_type = TaxType(str(entry.get("tax_type", "")).upper())
        except ValueError as exc:
            raise ReferenceDataError(f"{source}: region {region_id!r} has unknown tax_type") from exc

        rates = tuple(
            TaxRate(kind=str(rate.get("kind", "")), name=str(rate.get("name", "")), rate=float(rate["rate"]))
            for rate in entry.get("rates", [])
            if "rate" in rate
        )
        regions.append(
            TaxRegion(
                region_id=region_id,
                name=str(entry.get("name", region_id)),
                tax_type=tax_type,
                rates=rates,
                postal_prefixes=tuple(str(prefix) for prefix in entry.get("postal_prefixes", [])),
                keywords=tuple(str(kw).upper() for kw in entry.get("keywords", [])),
                url_markers=tuple(str(url).lower() for url in entry.get("url_markers", [])),
                indicator_stores=tuple(str(store).upper() for store in entry.get("indicator_stores", [])),
                keyword_confidence=int(entry.get("keyword_confidence", 90)),
            )
        )

    seen: dict[str, str] = {}
    for region in regions:
        for prefix in region.postal_prefixes:
            if prefix in seen:
                raise ReferenceDataError(
                    f"{source}: postal prefix {prefix} is claimed by both {seen[prefix]} and {region.region_id}"
                )
            seen[prefix] = region.region_id

    registry = TaxRegionRegistry(
        regions=tuple(regions),
        default_region_id=str(config.get("default_region", regions[0].region_id if regions else "")),
        keyword_order=tuple(str(region_id) for region_id in config.get("keyword_order", [])),
    )
    if registry.get(registry.default_region_id) is None:
        raise ReferenceDataError(f"{source}: default_region {registry.default_region_id!r} is not defined")
    return registry


def _from_postal_code(postal_code: str, registry: TaxRegionRegistry) -> TaxRegionDetection | None:
    prefix = postal_code[:2]
    for region in registry.regions:
        if prefix in region.postal_prefixes:
            return TaxRegionDetection(region=region, confidence=98, method=TaxDetectionMethod.POSTAL_CODE)
    return None


def _from_keywords(text: str, registry: TaxRegionRegistry) -> TaxRegionDetection | None:
    lower = text.lower()
    for region in registry.in_keyword_order():
        if contains_keyword(text, region.keywords) or any(url in lower for url in region.url_markers):
            return TaxRegionDetection(
                region=region,
                confidence=region.keyword_confidence,
                method=TaxDetectionMethod.TAX_KEYWORD,
            )
    return None


def _from_store_name(store_name: str, registry: TaxRegionRegistry) -> TaxRegionDetection | None:
    upper = store_name.upper()
    for region in registry.regions:
        for store in region.indicator_stores:
            if store in upper or (upper and upper in store):
                return TaxRegionDetection(region=region, confidence=85, method=TaxDetectionMethod.STORE_NAME)
    return None


def detect_tax_region(
    text: str,
    registry: TaxRegionRegistry,
    postal_code: str | None = None,
    store_name: str | None = None,
) -> TaxRegionDetection:
    """
    Detect the tax regime a receipt was issued under.

    Strategies, most reliable first: postal code prefix (98), tax keyword
    or regional URL (90-95), known regional store (85), then the default
    peninsula regime (70). Always returns a detection.
    """
    candidates = []
    if postal_code:
        candidates.append(postal_code)
    match = POSTAL_CODE_PATTERN.search(text)
    if match:
        candidates.append(match.group(0))
    for candidate in candidates:
        detection = _from_postal_code(candidate, registry)
        if detection is not None:
            return detection

    detection = _from_keywords(text, registry)
    if detection is not None:
        return detection

    if store_name:
        detection = _from_store_name(store_name, registry)
        if detection is not None:
            return detection

    return TaxRegionDetection(region=registry.default, confidence=70, method=TaxDetectionMethod.DEFAULT)


def get_tax_rates(region_id: str, registry: TaxRegionRegistry) -> tuple[float, ...]:
    region = registry.get(region_id)
    return tuple(rate.rate for rate in region.rates) if region else ()


def match_tax_rate(percentage: float, region_id: str, registry: TaxRegionRegistry) -> TaxRate | None:
    """Match a percentage read from a receipt to a region rate (0.5 point tolerance)."""
    region = registry.get(region_id)
    if region is None:
        return None
    for rate in region.rates:
        if abs(percentage - rate.rate) <= RATE_TOLERANCE:
            return rate
    return None
