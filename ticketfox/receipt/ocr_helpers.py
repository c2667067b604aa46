"""OCR engine output conversion and image helpers."""

from __future__ import annotations

import io
import logging
from collections.abc import Sequence
from typing import Any

from ticketfox.domain.layout import NormalizedBoundingBox
from ticketfox.domain.receipt import BoundingBox, ImageDimensions, OcrBlock, OcrLine
from ticketfox.receipt.detection_normalization import Detection, normalize_detections

logger = logging.getLogger(__name__)

MAX_IMAGE_DIMENSION = 3000  # Resize if either dimension exceeds this
OCR_IMAGE_PADDING = 50  # White padding around image to prevent edge truncation
# Margin added to block extents when the reported image size cannot be trusted
INFERRED_DIMENSION_MARGIN = 1.05
ASPECT_MISMATCH_RATIO = 0.2


def resize_image_bytes(
    image_bytes: bytes, max_dimension: int = MAX_IMAGE_DIMENSION, padding: int = OCR_IMAGE_PADDING
) -> bytes:
    """
    Resize image bytes if it exceeds max_dimension on either side.

    Also adds white padding around the image to prevent OCR edge truncation.

    Args:
        image_bytes: Image data as bytes
        max_dimension: Maximum allowed dimension (width or height)
        padding: White padding to add around image (pixels)

    Returns:
        Image bytes (JPEG format), resized if necessary, with padding added
    """
    from PIL import Image, ImageOps

    img = ImageOps.exif_transpose(Image.open(io.BytesIO(image_bytes)))
    width, height = img.size

    if width > max_dimension or height > max_dimension:
        scale = max_dimension / max(width, height)
        img = img.resize((max(1, int(width * scale)), max(1, int(height * scale))), Image.Resampling.LANCZOS)

    if padding > 0:
        img = ImageOps.expand(img, border=padding, fill="white")

    buffer = io.BytesIO()
    img.convert("RGB").save(buffer, format="JPEG", quality=95)
    return buffer.getvalue()


def measure_image_dimensions(image_bytes: bytes) -> ImageDimensions:
    """Image size after EXIF orientation is applied."""
    from PIL import Image, ImageOps

    img = ImageOps.exif_transpose(Image.open(io.BytesIO(image_bytes)))
    width, height = img.size
    return ImageDimensions(width=width, height=height)


def block_extent(blocks: Sequence[OcrBlock]) -> tuple[float, float]:
    """Rightmost and bottommost pixel covered by any block."""
    max_x = max((block.bounding_box.right for block in blocks), default=0.0)
    max_y = max((block.bounding_box.bottom for block in blocks), default=0.0)
    return max_x, max_y


def infer_image_dimensions(blocks: Sequence[OcrBlock], provided: ImageDimensions | None) -> ImageDimensions:
    """
    Pick the image size to normalize block coordinates against.

    Caller-measured dimensions can disagree with what the OCR engine saw
    (EXIF rotation, internal resizing). When blocks overflow the provided
    size, or its aspect ratio is more than 20% off the block extents, the
    extents plus a 5% margin are used instead.
    """
    max_x, max_y = block_extent(blocks)
    if max_x <= 0 or max_y <= 0:
        return provided or ImageDimensions(width=1, height=1)

    inferred = ImageDimensions(
        width=float(int(max_x * INFERRED_DIMENSION_MARGIN + 0.999999)),
        height=float(int(max_y * INFERRED_DIMENSION_MARGIN + 0.999999)),
    )
    if provided is None or provided.width <= 0 or provided.height <= 0:
        return inferred

    if max_x > provided.width or max_y > provided.height:
        logger.debug("OCR blocks overflow %sx%s, using inferred %sx%s", provided.width, provided.height,
                     inferred.width, inferred.height)
        return inferred

    aspect_diff = abs(provided.aspect_ratio - inferred.aspect_ratio) / provided.aspect_ratio
    if aspect_diff > ASPECT_MISMATCH_RATIO:
        logger.debug("Aspect ratio mismatch %.2f, using inferred dimensions", aspect_diff)
        return inferred
    return provided


def normalize_box(box: BoundingBox, dimensions: ImageDimensions) -> NormalizedBoundingBox:
    """Pixel box to 0-1 fractions of the image, clamped."""
    width = dimensions.width or 1
    height = dimensions.height or 1
    return NormalizedBoundingBox(
        x=box.left / width,
        y=box.top / height,
        width=box.width / width,
        height=box.height / height,
    ).clamped()


def _overlap_ratio(det: Detection, top: float, bottom: float) -> float:
    overlap = min(det.bottom, bottom) - max(det.top, top)
    if overlap <= 0:
        return 0.0
    smaller = min(max(det.height, 1e-6), max(bottom - top, 1e-6))
    return overlap / smaller


def _line_threshold(detections: Sequence[Detection]) -> float:
    """Center-distance tolerance scaled to the median text height."""
    heights = sorted(det.height for det in detections if det.height > 0)
    if not heights:
        return 24.0
    return max(12.0, min(30.0, heights[len(heights) // 2] * 0.8))


def group_detections_into_lines(detections: Sequence[Detection], min_overlap: float = 0.3) -> list[list[Detection]]:
    """
    Group detections into visual lines.

    Detections are visited top to bottom and join the line they overlap
    vertically the most, or whose center is within the adaptive threshold.
    Each line is returned left to right, lines top to bottom.
    """
    threshold = _line_threshold(detections)
    lines: list[list[Detection]] = []
    spans: list[tuple[float, float, float]] = []  # top, bottom, center

    for det in sorted(detections, key=lambda d: (d.center_y, d.left)):
        best_index: int | None = None
        best_score: tuple[int, float] | None = None
        for index, (top, bottom, center) in enumerate(spans):
            ratio = _overlap_ratio(det, top, bottom)
            distance = abs(det.center_y - center)
            if ratio < min_overlap and distance > threshold:
                continue
            score = (0 if ratio >= min_overlap else 1, distance)
            if best_score is None or score < best_score:
                best_index, best_score = index, score

        if best_index is None:
            lines.append([det])
            spans.append((det.top, det.bottom, det.center_y))
            continue

        line = lines[best_index]
        line.append(det)
        spans[best_index] = (
            min(d.top for d in line),
            max(d.bottom for d in line),
            sum(d.center_y for d in line) / len(line),
        )

    for line in lines:
        line.sort(key=lambda d: d.left)
    lines.sort(key=lambda line: sum(d.center_y for d in line) / len(line))
    return lines


def _detection_from_raw(entry: Any, padding: int) -> Detection | None:
    try:
        quad, (text, confidence) = entry
        xs = [float(point[0]) - padding for point in quad]
        ys = [float(point[1]) - padding for point in quad]
        score = float(confidence)
    except (TypeError, ValueError):
        logger.warning("Skipping malformed OCR detection: %r", entry)
        return None
    return Detection(str(text), score, min(xs), min(ys), max(xs), max(ys))


def blocks_from_paddleocr(
    raw_result: dict[str, Any], padding: int = OCR_IMAGE_PADDING
) -> tuple[list[OcrBlock], ImageDimensions]:
    """
    Convert a PaddleOCR service response into OCR blocks.

    Coordinates are shifted back by the preprocessing padding, low quality
    detections are filtered, and each visual line becomes one block with
    one ``OcrLine`` per detection.

    Returns:
        The blocks, top to bottom, and the unpadded image dimensions.
    """
    dimensions = ImageDimensions(
        width=max(float(raw_result.get("image_width", 0)) - 2 * padding, 0.0),
        height=max(float(raw_result.get("image_height", 0)) - 2 * padding, 0.0),
    )
    raw_detections = raw_result.get("detections") or []

    detections = [det for det in (_detection_from_raw(entry, padding) for entry in raw_detections) if det]
    detections = normalize_detections(detections, image_width=dimensions.width, image_height=dimensions.height)

    blocks: list[OcrBlock] = []
    for line in group_detections_into_lines(detections):
        ocr_lines = [
            OcrLine(
                text=det.text.strip(),
                bounding_box=BoundingBox(det.left, det.top, det.width, det.height),
            )
            for det in line
        ]
        block = OcrBlock.from_lines(ocr_lines)
        blocks.append(
            OcrBlock(
                text=" ".join(ocr_line.text for ocr_line in ocr_lines),
                bounding_box=block.bounding_box,
                lines=block.lines,
            )
        )
    return blocks, dimensions


def _rows_of(block: OcrBlock) -> list[list[OcrLine]]:
    rows: list[list[OcrLine]] = []
    for line in sorted(block.lines, key=lambda item: (item.bounding_box.top, item.bounding_box.left)):
        center = line.bounding_box.top + line.bounding_box.height / 2
        if rows:
            row_top = min(item.bounding_box.top for item in rows[-1])
            row_bottom = max(item.bounding_box.bottom for item in rows[-1])
            if row_top <= center <= row_bottom:
                rows[-1].append(line)
                continue
        rows.append([line])
    return rows


def block_text_lines(blocks: Sequence[OcrBlock]) -> list[str]:
    """
    Flatten blocks into reading-order text lines.

    Lines of a block that sit on the same row (a name and its price from
    the line grouper) are joined left to right; stacked lines stay apart.
    """
    text_lines: list[str] = []
    for block in blocks:
        if not block.lines:
            text_lines.extend(block.text.splitlines())
            continue
        for row in _rows_of(block):
            row.sort(key=lambda item: item.bounding_box.left)
            text_lines.append(" ".join(item.text for item in row))
    return text_lines
