"""Cross-field validation and final confidence for a parsed receipt."""

from __future__ import annotations

from decimal import Decimal

from ticketfox.domain.receipt import ParsedReceipt, ValidationResult
from ticketfox.receipt.prices import ZERO, to_money

MATCH_PERCENT = Decimal("5")
PARTIAL_MATCH_PERCENT = Decimal("15")
HIGH_PRICE_THRESHOLD = Decimal("200")
MAX_LISTED_DUPLICATES = 3
WARNING_PENALTY = 5


def _duplicate_names(receipt: ParsedReceipt) -> list[str]:
    seen: set[tuple[str, Decimal]] = set()
    duplicates: list[str] = []
    for item in receipt.items:
        key = (item.name.lower(), item.total_price)
        if key in seen:
            duplicates.append(item.name)
        seen.add(key)
    return duplicates


def validate_receipt(receipt: ParsedReceipt) -> ValidationResult:
    """
    Check a parsed receipt for internal consistency.

    The item sum matches the total within 5%; up to 15% off is a warning,
    and beyond that the receipt is invalid and the item sum is suggested as
    the total. A receipt without items is always invalid.
    """
    warnings: list[str] = []
    is_valid = True
    items_sum = to_money(receipt.items_sum)

    matches_total = False
    difference = ZERO
    difference_percent = Decimal("0")
    if receipt.total is not None and receipt.items:
        difference = abs(items_sum - receipt.total)
        if receipt.total > 0:
            difference_percent = difference / receipt.total * 100
        if difference_percent <= MATCH_PERCENT:
            matches_total = True
        elif difference_percent <= PARTIAL_MATCH_PERCENT:
            warnings.append(
                f"Items sum ({items_sum:.2f}) differs from total ({receipt.total:.2f}) by {difference_percent:.1f}%"
            )
        else:
            warnings.append(f"Items sum ({items_sum:.2f}) significantly differs from total ({receipt.total:.2f})")
            is_valid = False

    if not receipt.store_name:
        warnings.append("Store name not detected")
    if receipt.date is None:
        warnings.append("Date not detected")
    if not receipt.items:
        warnings.append("No items detected")
        is_valid = False
    if receipt.total is None:
        warnings.append("Total not detected")

    expensive = [item for item in receipt.items if item.total_price > HIGH_PRICE_THRESHOLD]
    if expensive:
        warnings.append(f"{len(expensive)} item(s) with price > {HIGH_PRICE_THRESHOLD}")

    duplicates = _duplicate_names(receipt)
    if duplicates:
        warnings.append(f"Possible duplicates: {', '.join(duplicates[:MAX_LISTED_DUPLICATES])}")

    confidence = 50
    if matches_total:
        confidence += 30
    if receipt.store_name:
        confidence += 5
    if receipt.date is not None:
        confidence += 5
    if receipt.items:
        confidence += 5
    if receipt.total is not None:
        confidence += 5
    if not warnings:
        confidence += 10
    confidence -= len(warnings) * WARNING_PENALTY

    return ValidationResult(
        is_valid=is_valid,
        items_sum_matches_total=matches_total,
        items_sum=items_sum,
        difference=difference,
        difference_percent=difference_percent.quantize(Decimal("0.1")),
        suggested_total=items_sum if not matches_total and receipt.items else None,
        warnings=tuple(warnings),
        confidence=max(0, min(100, confidence)),
    )
