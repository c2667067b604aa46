"""Static per-chain receipt templates.

Each supermarket chain is described by data, not code: identification
patterns (names, NIFs, fingerprint phrases), ordered item grammars with
capture-group roles, keyword sets for the totals block and OCR corrections.
The TOML files under ``receipt/rules/chains`` are the source of truth;
this module turns them into immutable objects.

To add a chain, drop a new ``<id>.toml`` next to the built-in ones (or in
``config/chains`` for a local override). No logic change is required.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Literal

from ticketfox.domain.layout import LayoutType

PriceAlignment = Literal["right", "left", "inline"]
TaxType = Literal["IVA", "IGIC", "IPSI"]

_ITEM_ROLES = ("name", "quantity", "unit_price", "total_price", "unit")


class ReferenceDataError(ValueError):
    """A reference data file is structurally invalid."""


@dataclass(frozen=True)
class ItemGrammar:
    """One item-line regex with the group number that fills each role."""

    pattern: re.Pattern[str]
    name: int | None = None
    quantity: int | None = None
    unit_price: int | None = None
    total_price: int | None = None
    unit: int | None = None
    continuation: bool = False
    description: str = ""

    def group(self, match: re.Match[str], role: str) -> str | None:
        index = getattr(self, role)
        if index is None:
            return None
        return match.group(index)


@dataclass(frozen=True)
class OcrCorrection:
    pattern: re.Pattern[str]
    replacement: str


@dataclass(frozen=True)
class ChainLayout:
    type: LayoutType = LayoutType.INLINE
    price_alignment: PriceAlignment = "right"
    has_unit_prices: bool = False
    has_quantity_column: bool = False
    # zone name -> (start_y, end_y) as fractions of height
    zones: Mapping[str, tuple[float, float]] = field(default_factory=dict)


@dataclass(frozen=True)
class ChainTemplate:
    chain_id: str
    name: str
    tier: int
    market_share: float
    tax_type: TaxType
    name_patterns: tuple[re.Pattern[str], ...]
    nifs: tuple[str, ...]
    fingerprints: tuple[re.Pattern[str], ...]
    item_grammars: tuple[ItemGrammar, ...]
    date_patterns: tuple[re.Pattern[str], ...]
    quantity_formats: tuple[re.Pattern[str], ...]
    total_keywords: tuple[str, ...]
    subtotal_keywords: tuple[str, ...]
    tax_keywords: tuple[str, ...]
    discount_keywords: tuple[str, ...]
    corrections: tuple[OcrCorrection, ...]
    layout: ChainLayout


@dataclass(frozen=True)
class ChainRegistry:
    """Loaded chain templates, ordered by tier then market share."""

    templates: tuple[ChainTemplate, ...] = ()

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.templates, key=lambda t: (t.tier, -t.market_share)))
        object.__setattr__(self, "templates", ordered)

    @cached_property
    def nif_index(self) -> dict[str, str]:
        """NIF (with and without hyphen) -> chain id."""
        index: dict[str, str] = {}
        for template in self.templates:
            for nif in template.nifs:
                plain = nif.replace("-", "").upper()
                index[plain] = template.chain_id
                index[f"{plain[0]}-{plain[1:]}"] = template.chain_id
        return index

    def get(self, chain_id: str) -> ChainTemplate | None:
        wanted = chain_id.lower()
        for template in self.templates:
            if template.chain_id == wanted:
                return template
        return None

    def by_tier(self, tier: int) -> tuple[ChainTemplate, ...]:
        return tuple(t for t in self.templates if t.tier == tier)


def _compile(pattern: Any, *, source: str, flags: int = 0) -> re.Pattern[str]:
    if not isinstance(pattern, str) or not pattern:
        raise ReferenceDataError(f"{source}: pattern must be a non-empty string")
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        raise ReferenceDataError(f"{source}: invalid pattern {pattern!r}: {exc}") from exc


def _compile_all(patterns: Any, *, source: str, flags: int = 0) -> tuple[re.Pattern[str], ...]:
    if patterns is None:
        return ()
    if not isinstance(patterns, list):
        raise ReferenceDataError(f"{source}: expected a list of patterns")
    return tuple(_compile(p, source=source, flags=flags) for p in patterns)


def _keywords(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(str(kw).strip().upper() for kw in raw if str(kw).strip())


def _build_item_grammar(raw: Mapping[str, Any], *, source: str) -> ItemGrammar:
    roles: dict[str, int | None] = {}
    for role in _ITEM_ROLES:
        value = raw.get(role)
        if value is not None and (not isinstance(value, int) or value < 1):
            raise ReferenceDataError(f"{source}: group '{role}' must be a positive integer")
        roles[role] = value

    pattern = _compile(raw.get("pattern"), source=source)
    highest = max((v for v in roles.values() if v is not None), default=0)
    if highest > pattern.groups:
        raise ReferenceDataError(f"{source}: group {highest} exceeds pattern groups ({pattern.groups})")
    if roles["total_price"] is None and roles["unit_price"] is None:
        raise ReferenceDataError(f"{source}: item grammar needs a price group")

    return ItemGrammar(
        pattern=pattern,
        continuation=bool(raw.get("continuation", False)),
        description=str(raw.get("description", "")),
        **roles,
    )


def _build_layout(raw: Any) -> ChainLayout:
    if not isinstance(raw, Mapping):
        return ChainLayout()
    zones: dict[str, tuple[float, float]] = {}
    for zone_name, band in (raw.get("zones") or {}).items():
        if isinstance(band, list) and len(band) == 2:
            zones[str(zone_name)] = (float(band[0]), float(band[1]))
    return ChainLayout(
        type=LayoutType(str(raw.get("type", "inline"))),
        price_alignment=raw.get("price_alignment", "right"),
        has_unit_prices=bool(raw.get("has_unit_prices", False)),
        has_quantity_column=bool(raw.get("has_quantity_column", False)),
        zones=zones,
    )


def build_chain_template(config: Mapping[str, Any], *, source: str = "<memory>") -> ChainTemplate:
    """Build one template from a parsed TOML mapping."""
    chain_id = str(config.get("id", "")).strip().lower()
    name = str(config.get("name", "")).strip()
    if not chain_id or not name:
        raise ReferenceDataError(f"{source}: chain needs 'id' and 'name'")

    tax_type = str(config.get("tax_type", "IVA")).upper()
    if tax_type not in ("IVA", "IGIC", "IPSI"):
        raise ReferenceDataError(f"{source}: unknown tax_type {tax_type!r}")

    raw_items = config.get("items", [])
    if not isinstance(raw_items, list) or not raw_items:
        raise ReferenceDataError(f"{source}: chain needs at least one [[items]] grammar")

    corrections = tuple(
        OcrCorrection(
            pattern=_compile(entry.get("pattern"), source=f"{source} corrections"),
            replacement=str(entry.get("replacement", "")),
        )
        for entry in config.get("corrections", [])
        if isinstance(entry, Mapping)
    )

    try:
        layout = _build_layout(config.get("layout"))
    except ValueError as exc:
        raise ReferenceDataError(f"{source}: invalid layout: {exc}") from exc

    return ChainTemplate(
        chain_id=chain_id,
        name=name,
        tier=int(config.get("tier", 3)),
        market_share=float(config.get("market_share", 0.0)),
        tax_type=tax_type,  # type: ignore[arg-type]
        name_patterns=_compile_all(config.get("name_patterns"), source=f"{source} name_patterns", flags=re.MULTILINE),
        nifs=tuple(str(nif).upper() for nif in config.get("nifs", [])),
        fingerprints=_compile_all(config.get("fingerprints"), source=f"{source} fingerprints", flags=re.MULTILINE),
        item_grammars=tuple(
            _build_item_grammar(entry, source=f"{source} items[{idx}]") for idx, entry in enumerate(raw_items)
        ),
        date_patterns=_compile_all(config.get("date_patterns"), source=f"{source} date_patterns"),
        quantity_formats=_compile_all(config.get("quantity_formats"), source=f"{source} quantity_formats"),
        total_keywords=_keywords(config.get("total_keywords")),
        subtotal_keywords=_keywords(config.get("subtotal_keywords")),
        tax_keywords=_keywords(config.get("tax_keywords")),
        discount_keywords=_keywords(config.get("discount_keywords")),
        corrections=corrections,
        layout=layout,
    )


def build_chain_registry(
    configs: Iterable[tuple[str, Mapping[str, Any]]],
    overrides: Iterable[tuple[str, Mapping[str, Any]]] = (),
) -> ChainRegistry:
    """
    Build the registry from (source, config) pairs.

    Override configs replace a built-in chain with the same id, or add a
    new chain.
    """
    by_id: dict[str, ChainTemplate] = {}
    for source, config in configs:
        template = build_chain_template(config, source=source)
        by_id[template.chain_id] = template
    for source, config in overrides:
        template = build_chain_template(config, source=source)
        by_id[template.chain_id] = template
    return ChainRegistry(templates=tuple(by_id.values()))


def apply_chain_corrections(text: str, chain: ChainTemplate) -> str:
    """Apply a chain's OCR self-correction rules to text."""
    corrected = text
    for correction in chain.corrections:
        corrected = correction.pattern.sub(correction.replacement, corrected)
    return corrected


def apply_chain_corrections_to_lines(lines: Sequence[str], chain: ChainTemplate) -> list[str]:
    return [apply_chain_corrections(line, chain) for line in lines]
