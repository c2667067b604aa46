"""Runtime helpers for the receipt OCR pipeline (non-HTTP)."""

import io
import json
import os
import time
from pathlib import Path
from typing import Any

import httpx
from PIL import Image, ImageDraw, ImageFont

from ticketfox.domain.receipt import ImageDimensions, OcrBlock
from ticketfox.receipt.ocr_helpers import OCR_IMAGE_PADDING, blocks_from_paddleocr, resize_image_bytes
from ticketfox.runtime.logging import get_logger
from ticketfox.runtime.paths import get_paths

logger = get_logger(__name__)

DEFAULT_OCR_SERVICE_URL = "http://localhost:8001"
OCR_TIMEOUT_SECONDS = 60.0


class OCRServiceUnavailable(RuntimeError):
    """Raised when the OCR service cannot be reached or returns an error."""


def default_ocr_url() -> str:
    return os.environ.get("OCR_SERVICE_URL", DEFAULT_OCR_SERVICE_URL)


def call_ocr_image_bytes(image_bytes: bytes, filename: str, ocr_url: str | None = None) -> dict[str, Any]:
    """
    Send one image to the OCR service and return its raw JSON response.

    The image is resized and padded the same way ``blocks_from_paddleocr``
    expects when it converts the result.
    """
    ocr_url = (ocr_url or default_ocr_url()).rstrip("/")
    logger.info("Sending receipt to OCR service at %s...", ocr_url)

    resized_bytes = resize_image_bytes(image_bytes)
    start_time = time.time()
    try:
        response = httpx.post(
            f"{ocr_url}/ocr",
            files={"file": (filename, resized_bytes, "image/jpeg")},
            timeout=OCR_TIMEOUT_SECONDS,
        )
    except httpx.RequestError as e:
        logger.error("Failed to connect to OCR service: %s", e)
        raise OCRServiceUnavailable(f"Failed to connect to OCR service: {e}") from e

    logger.info("OCR service returned in %.2f seconds", time.time() - start_time)
    if response.status_code != 200:
        # Response bodies can echo receipt text; only the status is logged.
        logger.error("OCR service error: %s", response.status_code)
        raise OCRServiceUnavailable(f"OCR service error: {response.status_code}")

    try:
        return response.json()
    except ValueError as e:
        logger.error("OCR service returned invalid JSON: %s", e)
        raise OCRServiceUnavailable("OCR service returned invalid JSON") from e


def call_ocr_service(
    receipt_path: Path, ocr_url: str | None = None
) -> tuple[dict[str, Any], list[OcrBlock], ImageDimensions]:
    """
    Call the OCR service for an image file.

    Returns:
        Tuple of (raw_result, blocks, image_dimensions).
    """
    raw_result = call_ocr_image_bytes(receipt_path.read_bytes(), receipt_path.name, ocr_url)
    blocks, dimensions = blocks_from_paddleocr(raw_result)
    logger.debug("OCR produced %d blocks for %s", len(blocks), receipt_path.name)
    return raw_result, blocks, dimensions


def load_ocr_json(json_path: Path) -> tuple[dict[str, Any], list[OcrBlock], ImageDimensions]:
    """Read a cached OCR service response and convert it to blocks."""
    raw_result = json.loads(json_path.read_text(encoding="utf-8"))
    if not isinstance(raw_result, dict):
        raise ValueError(f"{json_path}: expected an OCR result object")
    blocks, dimensions = blocks_from_paddleocr(raw_result)
    return raw_result, blocks, dimensions


def save_ocr_json(ocr_result: dict[str, Any], receipt_path: Path) -> Path:
    """Save OCR result JSON for debugging and re-parsing."""
    ocr_json_dir = get_paths().ocr_json
    ocr_json_dir.mkdir(parents=True, exist_ok=True)
    ocr_json_path = ocr_json_dir / f"{receipt_path.stem}.json"
    ocr_json_path.write_text(json.dumps(ocr_result, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.debug("OCR JSON saved to: %s", ocr_json_path)
    return ocr_json_path


def create_debug_overlay(
    image_path: Path,
    raw_ocr_result: dict[str, Any],
    output_path: Path | None = None,
    padding: int = OCR_IMAGE_PADDING,
) -> Path:
    """
    Draw OCR detections over the image that was sent to OCR.

    Boxes are green above 0.9 confidence, yellow above 0.7 (the filter
    floor) and red below it.
    """
    resized_bytes = resize_image_bytes(image_path.read_bytes(), padding=padding)
    img = Image.open(io.BytesIO(resized_bytes))
    img_width, img_height = img.size
    draw = ImageDraw.Draw(img)

    try:
        font = ImageFont.truetype("DejaVuSans.ttf", max(14, int(img_height / 150)))
    except OSError:
        font = ImageFont.load_default()

    for i, detection in enumerate(raw_ocr_result.get("detections", [])):
        bbox, (text, confidence) = detection
        points = [(p[0], p[1]) for p in bbox]
        points.append(points[0])

        if confidence > 0.9:
            color = (0, 255, 0)
        elif confidence > 0.7:
            color = (255, 255, 0)
        else:
            color = (255, 0, 0)
        draw.line(points, fill=color, width=max(2, int(img_width / 500)))

        min_x = min(p[0] for p in points)
        min_y = min(p[1] for p in points)
        display_text = text[:30] + "..." if len(text) > 30 else text
        label = f"{i}: {display_text} ({confidence:.2f})"
        draw.rectangle(draw.textbbox((min_x, min_y - 18), label, font=font), fill=(255, 255, 255))
        draw.text((min_x, min_y - 18), label, fill=(0, 0, 0), font=font)

    if output_path is None:
        output_path = image_path.parent / f"{image_path.stem}_debug.png"
    img.save(output_path)
    logger.info("Debug overlay saved to: %s", output_path)
    return output_path
