"""Data models for receipt understanding."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Literal

ItemUnit = Literal["each", "kg", "g", "l", "ml", "lb", "oz"]
DateOrder = Literal["DMY", "MDY", "YMD"]
DecimalSeparator = Literal[".", ","]
ParsingMethod = Literal["chain", "generic", "template"]


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    DIGITAL = "digital"


class DetectionMethod(str, Enum):
    """How the merchant detector reached its verdict, most reliable first."""

    NIF = "nif"
    NAME = "name"
    FINGERPRINT = "fingerprint"
    HEURISTIC = "heuristic"
    NONE = "none"


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in image pixel space, as reported by the OCR engine."""

    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height


@dataclass(frozen=True)
class OcrLine:
    text: str
    bounding_box: BoundingBox


@dataclass(frozen=True)
class OcrBlock:
    """One visual paragraph: its text, its box and the lines inside it."""

    text: str
    bounding_box: BoundingBox
    lines: tuple[OcrLine, ...] = ()

    @classmethod
    def from_lines(cls, lines: list[OcrLine] | tuple[OcrLine, ...]) -> OcrBlock:
        """Build a block whose box encloses all of its lines."""
        if not lines:
            return cls(text="", bounding_box=BoundingBox(0, 0, 0, 0), lines=())
        left = min(line.bounding_box.left for line in lines)
        top = min(line.bounding_box.top for line in lines)
        right = max(line.bounding_box.right for line in lines)
        bottom = max(line.bounding_box.bottom for line in lines)
        return cls(
            text="\n".join(line.text for line in lines),
            bounding_box=BoundingBox(left, top, right - left, bottom - top),
            lines=tuple(lines),
        )


@dataclass(frozen=True)
class ImageDimensions:
    width: float
    height: float

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height else 0.0


@dataclass(frozen=True)
class ParsedItem:
    """A single line item on a receipt."""

    name: str
    total_price: Decimal
    quantity: Decimal = Decimal("1")
    unit_price: Decimal | None = None
    unit: ItemUnit | None = None
    confidence: int = 0

    def __post_init__(self) -> None:
        if self.unit_price is None:
            object.__setattr__(self, "unit_price", self.total_price)


@dataclass(frozen=True)
class ValidationResult:
    """Cross-field verdict on a parsed receipt."""

    is_valid: bool
    items_sum_matches_total: bool
    items_sum: Decimal
    difference: Decimal
    difference_percent: Decimal
    suggested_total: Decimal | None
    warnings: tuple[str, ...]
    confidence: int


@dataclass(frozen=True)
class ParsedReceipt:
    """Structured receipt produced by the pipeline.

    Always returned, even when nothing could be extracted; in that case
    every field is empty and ``confidence`` is near zero.
    """

    store_name: str | None = None
    store_address: str | None = None
    date: date | None = None
    time: str | None = None
    date_string: str | None = None
    items: tuple[ParsedItem, ...] = ()
    subtotal: Decimal | None = None
    tax: Decimal | None = None
    discount: Decimal | None = None
    total: Decimal | None = None
    payment_method: PaymentMethod | None = None
    raw_text: str = ""
    confidence: int = 0
    chain_id: str | None = None
    chain_name: str | None = None
    chain_confidence: int = 0
    detection_method: DetectionMethod = DetectionMethod.NONE
    parsing_method: ParsingMethod = "generic"
    tax_region: str | None = None
    tax_type: str | None = None
    template_merchant_id: str | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def items_sum(self) -> Decimal:
        return sum((item.total_price for item in self.items), Decimal("0.00"))
