"""Layout models: zones, fingerprints and learned per-merchant templates."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal, Protocol

from ticketfox.domain.receipt import DateOrder, DecimalSeparator, ImageDimensions

ParserKind = Literal["template", "generic", "chain"]


class ZoneType(str, Enum):
    STORE_NAME = "store_name"
    DATE = "date"
    PRODUCT_NAMES = "product_names"
    PRICES = "prices"
    QUANTITIES = "quantities"
    TOTAL = "total"
    SUBTOTAL = "subtotal"
    TAX = "tax"


class LayoutType(str, Enum):
    COLUMNAR = "columnar"
    INLINE = "inline"
    MIXED = "mixed"


class PricePosition(str, Enum):
    LEFT = "left"
    RIGHT = "right"
    MIXED = "mixed"


@dataclass(frozen=True)
class NormalizedBoundingBox:
    """Position as fractions of image size; kept inside the unit square."""

    x: float
    y: float
    width: float
    height: float

    def clamped(self) -> NormalizedBoundingBox:
        x = min(max(self.x, 0.0), 1.0)
        y = min(max(self.y, 0.0), 1.0)
        width = min(max(self.width, 0.0), 1.0 - x)
        height = min(max(self.height, 0.0), 1.0 - y)
        return NormalizedBoundingBox(x, y, width, height)

    def padded(self, padding: float) -> NormalizedBoundingBox:
        """Grow the box by ``padding`` on every side, clamped to the image."""
        x = max(0.0, self.x - padding)
        y = max(0.0, self.y - padding)
        return NormalizedBoundingBox(
            x=x,
            y=y,
            width=min(1.0 - x, self.width + padding * 2),
            height=min(1.0 - y, self.height + padding * 2),
        )

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def right(self) -> float:
        return self.x + self.width


@dataclass(frozen=True)
class ZoneDefinition:
    id: str
    type: ZoneType
    bounding_box: NormalizedBoundingBox
    is_required: bool = False


@dataclass(frozen=True)
class ParsingHints:
    decimal_separator: DecimalSeparator | None = None
    date_format: DateOrder | None = None
    currency_symbol: str | None = None


@dataclass(frozen=True)
class StoreFingerprint:
    """Comparable layout signature of one receipt."""

    layout_type: LayoutType
    price_position: PricePosition
    header_patterns: tuple[str, ...] = ()
    footer_patterns: tuple[str, ...] = ()
    date_format: DateOrder | None = None
    date_position: Literal["header", "footer", "middle"] | None = None
    typical_width: int = 40
    line_count: int = 0
    decimal_separator: DecimalSeparator | None = None
    currency_symbol: str | None = None
    known_keywords: tuple[str, ...] = ()
    confidence: int = 0


@dataclass(frozen=True)
class OutcomeCounts:
    success: int = 0
    failure: int = 0


@dataclass(frozen=True)
class StoreParsingTemplate:
    """Learned layout memory for one merchant.

    Counters only ever change through ``TemplateStore.record_outcome``.
    """

    merchant_id: str
    zones: tuple[ZoneDefinition, ...]
    store_name: str | None = None
    parsing_hints: ParsingHints = field(default_factory=ParsingHints)
    sample_image_path: str | None = None
    image_dimensions: ImageDimensions | None = None
    fingerprint: StoreFingerprint | None = None
    confidence: int = 50
    use_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    parser_outcomes: dict[str, OutcomeCounts] = field(default_factory=dict, hash=False, compare=True)
    version: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TemplateStoreError(RuntimeError):
    """Learned templates could not be read or written."""


class TemplateRepository(Protocol):
    """Storage interface the pipeline uses for learned templates."""

    def get(self, merchant_id: str) -> StoreParsingTemplate | None: ...

    def list_with_fingerprints(self) -> list[StoreParsingTemplate]: ...

    def upsert(
        self,
        merchant_id: str,
        *,
        zones: Sequence[ZoneDefinition],
        store_name: str | None = None,
        hints: ParsingHints | None = None,
        sample_image_path: str | None = None,
        image_dimensions: ImageDimensions | None = None,
        fingerprint: StoreFingerprint | None = None,
        confidence: int | None = None,
    ) -> StoreParsingTemplate: ...

    def record_outcome(
        self, merchant_id: str, success: bool, parser: ParserKind = "template"
    ) -> StoreParsingTemplate | None: ...
