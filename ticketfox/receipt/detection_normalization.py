"""Detection normalization pipeline for raw OCR engine detections.

This stage sits between raw detection extraction and line grouping. Each
operation takes the full detection list and returns a new one; operations
run in the declared order.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

MIN_DETECTION_CONFIDENCE = 0.7
MIN_DETECTION_TEXT_LENGTH = 2


@dataclass(frozen=True)
class Detection:
    """One recognized text fragment, in unpadded image pixels."""

    text: str
    confidence: float
    left: float
    top: float
    right: float
    bottom: float

    @property
    def center_y(self) -> float:
        return (self.top + self.bottom) / 2

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def width(self) -> float:
        return self.right - self.left


@dataclass(frozen=True)
class DetectionNormalizationContext:
    """Execution context shared by detection normalization operations."""

    image_width: float
    image_height: float
    min_confidence: float = MIN_DETECTION_CONFIDENCE
    min_text_length: int = MIN_DETECTION_TEXT_LENGTH


DetectionNormalizationOp = Callable[[list[Detection], DetectionNormalizationContext], list[Detection]]


def drop_low_confidence(detections: list[Detection], context: DetectionNormalizationContext) -> list[Detection]:
    return [det for det in detections if det.confidence >= context.min_confidence]


def drop_short_text(detections: list[Detection], context: DetectionNormalizationContext) -> list[Detection]:
    """Single characters are almost always punctuation or speckle noise."""
    return [det for det in detections if len(det.text.strip()) >= context.min_text_length]


def clip_to_image(detections: list[Detection], context: DetectionNormalizationContext) -> list[Detection]:
    """Clamp boxes that spill into the removed padding back onto the image."""
    clipped: list[Detection] = []
    for det in detections:
        left = max(0.0, det.left)
        top = max(0.0, det.top)
        right = min(context.image_width, det.right) if context.image_width > 0 else det.right
        bottom = min(context.image_height, det.bottom) if context.image_height > 0 else det.bottom
        if right <= left or bottom <= top:
            continue
        clipped.append(Detection(det.text, det.confidence, left, top, right, bottom))
    return clipped


DEFAULT_OPERATIONS: tuple[DetectionNormalizationOp, ...] = (
    drop_low_confidence,
    drop_short_text,
    clip_to_image,
)


def normalize_detections(
    detections: list[Detection],
    *,
    image_width: float,
    image_height: float,
    operations: Sequence[DetectionNormalizationOp] | None = None,
) -> list[Detection]:
    """Run detection normalization operations in sequence.

    When `operations` is omitted the default filters run; pass an empty
    sequence for a passthrough.
    """
    context = DetectionNormalizationContext(image_width=image_width, image_height=image_height)
    normalized = list(detections)
    for operation in DEFAULT_OPERATIONS if operations is None else operations:
        normalized = operation(normalized, context)
    return normalized
