"""Chain-specific receipt parsing driven by a matched chain template."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import Decimal

from ticketfox.domain.receipt import ItemUnit, ParsedItem, ParsedReceipt
from ticketfox.receipt.chain_templates import ChainTemplate, ItemGrammar, apply_chain_corrections_to_lines
from ticketfox.receipt.merchant_detector import ChainDetection
from ticketfox.receipt.prices import MAX_ITEM_PRICE, ZERO, contains_price, parse_price, starts_with_price, to_money
from ticketfox.receipt.tax_regions import TaxRegionRegistry, detect_tax_region
from ticketfox.receipt.text_normalizer import contains_keyword

from .common import (
    MASKED_CARD_PATTERN,
    MIN_LINE_LENGTH,
    TAX_ID_LINE_PATTERN,
    TOTAL_RECONCILIATION_TOLERANCE,
    amounts_agree,
    clean_item_name,
    has_min_letters,
    is_valid_item_name,
    normalize_unit,
    parse_quantity,
    unit_price_for,
    within_total_tolerance,
)
from .fields_parser import (
    ADDRESS_PATTERNS,
    DATE_HEADER_LINES,
    TotalsKeywords,
    extract_payment_method,
    extract_store_address,
    extract_totals,
    find_date_and_time,
)

logger = logging.getLogger(__name__)

CHAIN_ITEM_CONFIDENCE = 80
CHAIN_BASE_CONFIDENCE = 50

CHAIN_SKIP_KEYWORDS = (
    "total",
    "subtotal",
    "iva",
    "igic",
    "ipsi",
    "importe",
    "tarjeta",
    "efectivo",
    "cambio",
    "fecha",
    "hora",
    "nif",
    "cif",
    "gracias",
    "ticket",
    "factura",
)

_LEADING_COUNT = re.compile(r"^\d+\s+")


@dataclass
class _ContinuationState:
    """Two-line memory for items split over a name line and a weight line."""

    pending_name: str | None = None
    # Index in the item list of an item parsed from the previous line
    previous_item: int | None = None


def _is_noise_line(line: str) -> bool:
    if TAX_ID_LINE_PATTERN.search(line) or MASKED_CARD_PATTERN.search(line):
        return True
    return any(pattern.search(line) for pattern in ADDRESS_PATTERNS)


def _should_skip(line: str) -> bool:
    return contains_keyword(line, CHAIN_SKIP_KEYWORDS) or _is_noise_line(line)


def _pending_name_from(line: str) -> str | None:
    """A priceless line may be the first half of a weighted item ("1 PLATANO")."""
    if contains_price(line) or not has_min_letters(line, 2):
        return None
    name = clean_item_name(_LEADING_COUNT.sub("", line))
    return name if is_valid_item_name(name) else None


@dataclass(frozen=True)
class _GrammarMatch:
    grammar: ItemGrammar
    name: str | None
    quantity: Decimal
    unit_price: Decimal | None
    total_price: Decimal | None
    unit: ItemUnit | None


def _match_grammar(line: str, grammars: Sequence[ItemGrammar]) -> _GrammarMatch | None:
    for grammar in grammars:
        match = grammar.pattern.search(line)
        if not match:
            continue
        unit_price_text = grammar.group(match, "unit_price")
        total_text = grammar.group(match, "total_price")
        return _GrammarMatch(
            grammar=grammar,
            name=grammar.group(match, "name"),
            quantity=parse_quantity(grammar.group(match, "quantity")),
            unit_price=parse_price(unit_price_text) if unit_price_text else None,
            total_price=parse_price(total_text) if total_text else None,
            unit=normalize_unit(grammar.group(match, "unit")),
        )
    return None


def _build_item(name: str | None, found: _GrammarMatch, total_price: Decimal | None) -> ParsedItem | None:
    unit_price = found.unit_price
    if total_price is None and unit_price is not None:
        total_price = to_money(unit_price * found.quantity)
    if name is None or total_price is None or not (ZERO < total_price < MAX_ITEM_PRICE):
        return None

    name = clean_item_name(name)
    if not is_valid_item_name(name):
        return None

    return ParsedItem(
        name=name,
        total_price=to_money(total_price),
        quantity=found.quantity,
        unit_price=to_money(unit_price) if unit_price is not None else unit_price_for(total_price, found.quantity),
        unit=found.unit,
        confidence=CHAIN_ITEM_CONFIDENCE,
    )


def _amend_previous(item: ParsedItem, found: _GrammarMatch) -> ParsedItem | None:
    """Attach a weight/unit-price line to the item printed just above it."""
    if found.unit_price is None:
        return None
    expected = found.total_price if found.total_price is not None else item.total_price
    if not amounts_agree(to_money(found.quantity * found.unit_price), expected):
        return None
    return replace(item, quantity=found.quantity, unit_price=to_money(found.unit_price), unit=found.unit)


def parse_chain_items(lines: Sequence[str], chain: ChainTemplate) -> list[ParsedItem]:
    """
    Extract items with the chain's grammars, first structural match per line.

    Weighted products printed over two lines are resolved with a one-line
    lookbehind: a priceless name line followed by a continuation grammar
    yields one item, and a continuation line right after a priced item
    amends that item's quantity and unit price when the amounts agree.
    """
    items: list[ParsedItem] = []
    state = _ContinuationState()

    for index, raw_line in enumerate(lines):
        line = raw_line.strip()
        pending_name, previous_item = state.pending_name, state.previous_item
        state = _ContinuationState()

        if len(line) < MIN_LINE_LENGTH or _should_skip(line):
            continue

        found = _match_grammar(line, chain.item_grammars)
        if found is None:
            state.pending_name = _pending_name_from(line)
            continue

        total_price = found.total_price
        if total_price is None and found.unit_price is not None and index + 1 < len(lines):
            next_line = lines[index + 1].strip()
            if starts_with_price(next_line):
                total_price = parse_price(next_line)

        if found.grammar.continuation:
            if pending_name is not None:
                item = _build_item(pending_name, found, total_price)
                if item is not None:
                    items.append(item)
                    state.previous_item = len(items) - 1
            elif previous_item is not None:
                amended = _amend_previous(items[previous_item], found)
                if amended is not None:
                    items[previous_item] = amended
            continue

        item = _build_item(found.name, found, total_price)
        if item is not None:
            items.append(item)
            state.previous_item = len(items) - 1

    return items


def _chain_totals_keywords(chain: ChainTemplate) -> TotalsKeywords:
    return TotalsKeywords(
        total=chain.total_keywords,
        subtotal=chain.subtotal_keywords,
        tax=chain.tax_keywords,
        discount=chain.discount_keywords,
    )


def _chain_confidence(
    detection: ChainDetection,
    receipt_fields: ParsedReceipt,
) -> int:
    confidence = CHAIN_BASE_CONFIDENCE + min(detection.confidence * 3 // 10, 30)
    if receipt_fields.store_name:
        confidence += 5
    if receipt_fields.date is not None:
        confidence += 10
    if receipt_fields.items:
        confidence += 15
    if receipt_fields.total is not None:
        confidence += 10
        if receipt_fields.items and within_total_tolerance(
            receipt_fields.items_sum, receipt_fields.total, TOTAL_RECONCILIATION_TOLERANCE
        ):
            confidence += 10
    return min(confidence, 100)


def parse_with_chain_template(
    lines: Sequence[str],
    detection: ChainDetection,
    tax_regions: TaxRegionRegistry,
) -> ParsedReceipt:
    """Parse normalized lines with the template of the detected chain."""
    chain = detection.chain
    if chain is None:
        return ParsedReceipt(raw_text="\n".join(lines))

    corrected = apply_chain_corrections_to_lines(lines, chain)
    raw_text = "\n".join(corrected)
    store_name = chain.name

    found_date, time = find_date_and_time(corrected[:DATE_HEADER_LINES], patterns=chain.date_patterns)
    items = parse_chain_items(corrected, chain)
    totals = extract_totals(
        corrected,
        _chain_totals_keywords(chain),
        next_line_price=starts_with_price,
    )
    region = detect_tax_region(raw_text, tax_regions, store_name=store_name)

    receipt = ParsedReceipt(
        store_name=store_name,
        store_address=extract_store_address(corrected),
        date=found_date.value if found_date else None,
        time=time,
        date_string=found_date.text if found_date else None,
        items=tuple(items),
        subtotal=totals.subtotal,
        tax=totals.tax,
        discount=totals.discount,
        total=totals.total,
        payment_method=extract_payment_method(raw_text),
        raw_text=raw_text,
        chain_id=chain.chain_id,
        chain_name=chain.name,
        chain_confidence=detection.confidence,
        detection_method=detection.method,
        parsing_method="chain",
        tax_region=region.region.region_id,
        tax_type=region.region.tax_type.value,
    )
    receipt = replace(receipt, confidence=_chain_confidence(detection, receipt))

    logger.debug(
        "Chain parse for %s: %d items, total %s, confidence %d",
        chain.chain_id,
        len(items),
        totals.total,
        receipt.confidence,
    )
    return receipt
