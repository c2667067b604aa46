"""Regional parsing presets: locale conventions and keyword sets per territory."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ticketfox.domain.receipt import DateOrder, DecimalSeparator
from ticketfox.receipt.chain_templates import ReferenceDataError
from ticketfox.receipt.text_normalizer import contains_keyword


class KeywordCategory(str, Enum):
    TOTAL = "total"
    SUBTOTAL = "subtotal"
    TAX = "tax"
    DISCOUNT = "discount"
    QUANTITY = "quantity"
    CASH = "cash"
    CARD = "card"
    CHANGE = "change"
    DATE = "date"
    TIME = "time"


@dataclass(frozen=True)
class RegionalPreset:
    preset_id: str
    name: str
    decimal_separator: DecimalSeparator
    thousands_separator: str
    date_format: DateOrder
    currency: str
    currency_symbol: str
    tax_rates: tuple[float, ...]
    keywords: Mapping[KeywordCategory, tuple[str, ...]]
    common_stores: tuple[str, ...]
    skip_keywords: tuple[str, ...]
    indicators: tuple[str, ...] = ()

    def keywords_for(self, category: KeywordCategory) -> tuple[str, ...]:
        return self.keywords.get(category, ())


@dataclass(frozen=True)
class PresetRegistry:
    presets: tuple[RegionalPreset, ...] = ()
    country_codes: Mapping[str, str] = field(default_factory=dict)

    def get(self, preset_id: str) -> RegionalPreset | None:
        wanted = preset_id.lower()
        for preset in self.presets:
            if preset.preset_id == wanted:
                return preset
        return None

    @property
    def default(self) -> RegionalPreset | None:
        return self.presets[0] if self.presets else None


def _upper_tuple(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(str(item).strip().upper() for item in raw if str(item).strip())


def build_regional_preset(config: Mapping[str, Any], *, source: str = "<memory>") -> RegionalPreset:
    preset_id = str(config.get("id", "")).strip().lower()
    if not preset_id:
        raise ReferenceDataError(f"{source}: preset needs an 'id'")

    decimal_separator = config.get("decimal_separator", ".")
    if decimal_separator not in (".", ","):
        raise ReferenceDataError(f"{source}: decimal_separator must be '.' or ','")
    date_format = config.get("date_format", "DMY")
    if date_format not in ("DMY", "MDY", "YMD"):
        raise ReferenceDataError(f"{source}: unknown date_format {date_format!r}")

    raw_keywords = config.get("keywords", {})
    if not isinstance(raw_keywords, Mapping):
        raise ReferenceDataError(f"{source}: [keywords] must be a table")
    keywords: dict[KeywordCategory, tuple[str, ...]] = {}
    for key, values in raw_keywords.items():
        try:
            category = KeywordCategory(str(key))
        except ValueError as exc:
            raise ReferenceDataError(f"{source}: unknown keyword category {key!r}") from exc
        keywords[category] = _upper_tuple(values)

    return RegionalPreset(
        preset_id=preset_id,
        name=str(config.get("name", preset_id)),
        decimal_separator=decimal_separator,
        thousands_separator=str(config.get("thousands_separator", "")),
        date_format=date_format,
        currency=str(config.get("currency", "")),
        currency_symbol=str(config.get("currency_symbol", "")),
        tax_rates=tuple(float(rate) for rate in config.get("tax_rates", [])),
        keywords=keywords,
        common_stores=_upper_tuple(config.get("common_stores")),
        skip_keywords=_upper_tuple(config.get("skip_keywords")),
        indicators=tuple(str(item).lower() for item in config.get("indicators", [])),
    )


def build_preset_registry(config: Mapping[str, Any], *, source: str = "<memory>") -> PresetRegistry:
    presets = tuple(build_regional_preset(entry, source=source) for entry in config.get("presets", []))
    codes = {str(code).upper(): str(preset_id).lower() for code, preset_id in config.get("country_codes", {}).items()}
    return PresetRegistry(presets=presets, country_codes=codes)


def get_regional_preset(preset_id: str, registry: PresetRegistry) -> RegionalPreset | None:
    return registry.get(preset_id)


def get_preset_by_country_code(country_code: str, registry: PresetRegistry) -> RegionalPreset | None:
    """Look up a preset by ISO 3166-1 alpha-2 code."""
    preset_id = registry.country_codes.get(country_code.upper())
    return registry.get(preset_id) if preset_id else None


def detect_region_from_text(text: str, registry: PresetRegistry) -> RegionalPreset | None:
    """Pick the first preset with at least two of its indicator words in text."""
    for preset in registry.presets:
        matched = [indicator for indicator in preset.indicators if contains_keyword(text, (indicator,))]
        if len(matched) >= 2:
            return preset
    return None


def match_store_in_preset(store_name: str, preset: RegionalPreset) -> str | None:
    """Return the known store that matches a detected name, if any."""
    normalized = store_name.upper().strip()
    for store in preset.common_stores:
        if normalized == store or store in normalized:
            return store
        if len(normalized) >= 3 and normalized in store:
            return store
    return None


def matches_keyword(text: str, category: KeywordCategory, preset: RegionalPreset) -> bool:
    return contains_keyword(text.strip(), preset.keywords_for(category))


def should_skip_text(text: str, preset: RegionalPreset) -> bool:
    return contains_keyword(text.strip(), preset.skip_keywords)
