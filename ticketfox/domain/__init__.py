"""Core domain models for ticketfox.

- OcrBlock, OcrLine, BoundingBox: OCR engine input
- ParsedReceipt, ParsedItem, ValidationResult: pipeline output
- ZoneDefinition, StoreFingerprint, StoreParsingTemplate: layout memory

Usage:
    from ticketfox.domain import ParsedReceipt, OcrBlock
"""

from ticketfox.domain.layout import (
    LayoutType,
    NormalizedBoundingBox,
    OutcomeCounts,
    ParserKind,
    ParsingHints,
    PricePosition,
    StoreFingerprint,
    StoreParsingTemplate,
    TemplateRepository,
    TemplateStoreError,
    ZoneDefinition,
    ZoneType,
)
from ticketfox.domain.receipt import (
    BoundingBox,
    DetectionMethod,
    ImageDimensions,
    OcrBlock,
    OcrLine,
    ParsedItem,
    ParsedReceipt,
    PaymentMethod,
    ValidationResult,
)

__all__ = [
    "BoundingBox",
    "DetectionMethod",
    "ImageDimensions",
    "LayoutType",
    "NormalizedBoundingBox",
    "OcrBlock",
    "OcrLine",
    "OutcomeCounts",
    "ParsedItem",
    "ParsedReceipt",
    "ParserKind",
    "ParsingHints",
    "PaymentMethod",
    "PricePosition",
    "StoreFingerprint",
    "StoreParsingTemplate",
    "TemplateRepository",
    "TemplateStoreError",
    "ValidationResult",
    "ZoneDefinition",
    "ZoneType",
]
