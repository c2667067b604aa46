"""Shared constants and helpers for OCR receipt parsing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

from ticketfox.domain.receipt import DateOrder, DecimalSeparator, ItemUnit
from ticketfox.receipt.prices import to_money
from ticketfox.receipt.text_normalizer import contains_keyword

# Minimum characters for a line to be worth parsing
MIN_LINE_LENGTH = 3
# Item sum vs declared total tolerance used when scoring a parse
TOTAL_RECONCILIATION_TOLERANCE = Decimal("0.15")
# Continuation lines may amend the previous item when qty x unit price is this close
QUANTITY_PRICE_TOLERANCE = Decimal("0.02")

# Words that never start or belong to an item line (multilingual, lower case)
SKIP_KEYWORDS = (
    "receipt", "ticket", "recibo", "bon", "reçu", "beleg",
    "store", "shop", "tienda", "magasin", "geschäft",
    "phone", "telefono", "teléfono", "tel",
    "address", "direccion", "dirección", "adresse",
    "cashier", "cajero", "kassier", "caissier", "terminal", "register", "caja",
    "member", "socio", "client", "kunde",
    "welcome", "bienvenido", "willkommen", "bienvenue",
    "thank", "gracias", "danke", "merci",
    "documento", "operacion", "operación", "fecha", "hora", "date", "time",
    "s.l.", "s.a.", "c.i.f", "cif:", "n.i.f", "nif:", "supermercados", "hipermercados",
    "centro vendedor", "articulo", "artículo", "articulos", "artículos",
)

# Words that put a line in the totals/payment block
TOTAL_SECTION_KEYWORDS = (
    "total", "subtotal", "tax", "iva", "vat", "mwst", "tva", "sum", "amount", "balance",
    "due", "change", "cash", "card", "paid", "payment", "tender", "credit", "debit",
    "suma", "importe", "pago", "cambio", "efectivo", "tarjeta",
    "gesamt", "zahlung", "betrag", "somme", "montant", "paiement",
)

# Header/metadata line shapes: store codes, long ids, URLs, legal suffixes, addresses
HEADER_PATTERNS = (
    re.compile(r"^\d{4,}-[A-Z]{2}", re.IGNORECASE),
    re.compile(r"^[A-Z]{2,4}\d{4,}", re.IGNORECASE),
    re.compile(r"\d{9,}"),
    re.compile(r"^www\.", re.IGNORECASE),
    re.compile(r"^http", re.IGNORECASE),
    re.compile(r"@"),
    re.compile(r"c\.?i\.?f\.?:?\s*[A-Z]\d", re.IGNORECASE),
    re.compile(r"n\.?i\.?f\.?:?\s*\d", re.IGNORECASE),
    re.compile(r"^\d+[.,]\d+\s*x\s*\d+[.,]\d+", re.IGNORECASE),
    re.compile(r"^x\s*\d+[.,]\d+", re.IGNORECASE),
    re.compile(r"^\d{5}[^\W\d_]"),
    re.compile(r"^C/\s*[^\W\d_]", re.IGNORECASE),
    re.compile(r"^Calle\s", re.IGNORECASE),
    re.compile(r"^Avda\.?\s", re.IGNORECASE),
    re.compile(r"^Avenida\s", re.IGNORECASE),
    re.compile(r"^Plaza\s", re.IGNORECASE),
    re.compile(r"^Pol[íi]gono\s", re.IGNORECASE),
    re.compile(r"\bS\.A\.U\.?\s*$", re.IGNORECASE),
    re.compile(r"\bS\.L\.U?\.?\s*$", re.IGNORECASE),
    re.compile(r"\bNIF\s*[A-Z]\d", re.IGNORECASE),
    re.compile(r"\bCIF\s*[A-Z]\d", re.IGNORECASE),
)

# Lines that start like a summary or payment row
NON_PRODUCT_PREFIXES = re.compile(
    r"^(total|subtotal|iva|tax|fecha|hora|documento|tarjeta|efectivo|cambio|vuelto|"
    r"operaci[oó]n|contactless|importe|detalle)",
    re.IGNORECASE,
)
NON_PRODUCT_WHOLE = re.compile(r"^(pagos?|venta|compra)$", re.IGNORECASE)

# Noise that chain grammars must never read as items
MASKED_CARD_PATTERN = re.compile(r"[X*]{4,}\d{4}")
TAX_ID_LINE_PATTERN = re.compile(r"\b(?:N\.?I\.?F|C\.?I\.?F)\.?\b|\b[A-Z]-?\d{8}\b")

UNIT_PATTERNS: tuple[tuple[re.Pattern[str], ItemUnit], ...] = (
    (re.compile(r"(\d+[.,]?\d*)\s*kg", re.IGNORECASE), "kg"),
    (re.compile(r"(\d+[.,]?\d*)\s*lb", re.IGNORECASE), "lb"),
    (re.compile(r"(\d+[.,]?\d*)\s*oz", re.IGNORECASE), "oz"),
    (re.compile(r"(\d+[.,]?\d*)\s*g(?:r)?(?:ams?)?(?!\w)", re.IGNORECASE), "g"),
    (re.compile(r"(\d+[.,]?\d*)\s*l(?:t)?(?:rs?)?(?!\w)", re.IGNORECASE), "l"),
    (re.compile(r"(\d+[.,]?\d*)\s*ml", re.IGNORECASE), "ml"),
)

_UNIT_ALIASES: dict[str, ItemUnit] = {
    "kg": "kg",
    "kilos": "kg",
    "g": "g",
    "gr": "g",
    "gramos": "g",
    "l": "l",
    "lt": "l",
    "litros": "l",
    "ml": "ml",
}

_QTY_PREFIX = re.compile(r"^(\d+)\s*[xX×]\s*")
_QTY_SUFFIX = re.compile(r"\s*[xX×]\s*(\d+)$")
_QTY_LEADING = re.compile(r"^(\d+)\s+")
_LETTER = re.compile(r"[^\W\d_]")


@dataclass(frozen=True)
class ParseOptions:
    """Caller hints for the generic parser.

    Hints only break ties: auto-detected decimal separator and date order
    win whenever the receipt text is unambiguous.
    """

    preset_id: str | None = None
    preferred_date_format: DateOrder | None = None
    preferred_decimal_separator: DecimalSeparator | None = None
    now: datetime | None = None
    merchant_id: str | None = None


@dataclass(frozen=True)
class QuantityExtraction:
    name: str
    quantity: Decimal
    unit_price: Decimal
    unit: ItemUnit | None


def normalize_unit(raw: str | None) -> ItemUnit | None:
    if not raw:
        return None
    return _UNIT_ALIASES.get(raw.strip().lower())


def parse_quantity(raw: str | None) -> Decimal:
    """Quantities may be fractional weights written with a comma ("1,102")."""
    if not raw:
        return Decimal("1")
    try:
        value = Decimal(raw.strip().replace(",", "."))
    except InvalidOperation:
        return Decimal("1")
    return value if value > 0 else Decimal("1")


def unit_price_for(total_price: Decimal, quantity: Decimal) -> Decimal:
    if quantity <= 0:
        return total_price
    return to_money(total_price / quantity)


def clean_item_name(name: str) -> str:
    return re.sub(r"\s+", " ", name).strip()


def is_valid_item_name(name: str) -> bool:
    return len(name) >= 2 and not name.isdigit()


def count_letters(text: str) -> int:
    return len(_LETTER.findall(text))


def has_min_letters(text: str, minimum: int) -> bool:
    return count_letters(text) >= minimum


def contains_skip_keyword(text: str) -> bool:
    return contains_keyword(text, SKIP_KEYWORDS)


def is_total_section_line(text: str) -> bool:
    return contains_keyword(text, TOTAL_SECTION_KEYWORDS)


def matches_header_pattern(text: str) -> bool:
    return any(pattern.search(text) for pattern in HEADER_PATTERNS)


def is_product_line(line: str) -> bool:
    """Return True for a line that reads like a product name without a price."""
    cleaned = line.strip()
    if len(cleaned) < MIN_LINE_LENGTH:
        return False
    if re.match(r"^\d+[,.]\d{2}$", cleaned):
        return False
    if re.match(r"^[\d\s\-/.:]+$", cleaned):
        return False
    if contains_skip_keyword(cleaned):
        return False
    if matches_header_pattern(cleaned):
        return False
    if NON_PRODUCT_PREFIXES.match(cleaned) or NON_PRODUCT_WHOLE.match(cleaned):
        return False
    return True


def extract_quantity_and_unit(name: str, total_price: Decimal) -> QuantityExtraction:
    """
    Pull an embedded quantity or weight out of an item name.

    Handles a weight with unit ("PLATANO 1,250 kg"), "2 x NAME", "NAME x2",
    and a small leading count ("3 YOGUR"). The unit price is derived from
    the total when a quantity is found.
    """
    quantity = Decimal("1")
    unit: ItemUnit | None = None

    for pattern, unit_type in UNIT_PATTERNS:
        match = pattern.search(name)
        if not match:
            continue
        weight = parse_quantity(match.group(1))
        if weight > 0 and match.group(1):
            quantity = weight
            unit = unit_type
            name = (name[: match.start()] + name[match.end() :]).strip()
            break

    if unit is None:
        prefix = _QTY_PREFIX.match(name)
        suffix = _QTY_SUFFIX.search(name)
        leading = _QTY_LEADING.match(name)
        if prefix and int(prefix.group(1)) > 0:
            quantity = Decimal(prefix.group(1))
            name = name[prefix.end() :].strip()
            unit = "each"
        elif suffix and int(suffix.group(1)) > 0:
            quantity = Decimal(suffix.group(1))
            name = name[: suffix.start()].strip()
            unit = "each"
        elif leading and 1 < int(leading.group(1)) < 100:
            quantity = Decimal(leading.group(1))
            name = name[leading.end() :].strip()
            unit = "each"

    return QuantityExtraction(
        name=clean_item_name(name),
        quantity=quantity,
        unit_price=unit_price_for(total_price, quantity),
        unit=unit,
    )


def amounts_agree(expected: Decimal, actual: Decimal, tolerance: Decimal = QUANTITY_PRICE_TOLERANCE) -> bool:
    return abs(expected - actual) <= tolerance


def within_total_tolerance(items_sum: Decimal, total: Decimal, ratio: Decimal) -> bool:
    return abs(items_sum - total) <= total * ratio
