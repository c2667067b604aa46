"""FastAPI server that parses receipt images, OCR blocks or text lines."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ticketfox.receipt.formatter import blocks_from_dict, dimensions_from_dict, outcome_to_dict
from ticketfox.receipt.ocr_helpers import blocks_from_paddleocr, resize_image_bytes
from ticketfox.receipt.ocr_parser import ParseOptions
from ticketfox.receipt.ocr_result_parser import parse_receipt_blocks, parse_receipt_lines
from ticketfox.receipt.text_normalizer import split_text
from ticketfox.runtime.logging import get_logger
from ticketfox.runtime.paths import get_paths
from ticketfox.runtime.receipt_pipeline import OCR_TIMEOUT_SECONDS, default_ocr_url, save_ocr_json
from ticketfox.runtime.reference_data import load_reference_data
from ticketfox.runtime.template_store import TemplateStore, TemplateStoreError, template_to_dict

logger = get_logger(__name__)


class ParseOptionsBody(BaseModel):
    preset_id: str | None = None
    merchant_id: str | None = None
    preferred_date_format: str | None = None
    preferred_decimal_separator: str | None = None

    def to_options(self) -> ParseOptions:
        date_format = self.preferred_date_format if self.preferred_date_format in ("DMY", "MDY", "YMD") else None
        separator = self.preferred_decimal_separator if self.preferred_decimal_separator in (".", ",") else None
        return ParseOptions(
            preset_id=self.preset_id,
            merchant_id=self.merchant_id,
            preferred_date_format=date_format,
            preferred_decimal_separator=separator,
        )


class ParseBlocksBody(ParseOptionsBody):
    blocks: list[dict[str, Any]]
    image_dimensions: dict[str, float] | None = None


class ParseLinesBody(ParseOptionsBody):
    lines: list[str] | None = None
    text: str | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create data directories and open the template store on startup."""
    paths = get_paths()
    paths.ensure_data_directories()
    app.state.templates = TemplateStore(paths.templates)
    load_reference_data()
    yield


app = FastAPI(title="ticketfox receipt parser", lifespan=lifespan)


def _templates(request: Request) -> TemplateStore:
    return request.app.state.templates


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.post("/parse")
async def parse_image(request: Request) -> JSONResponse:
    """Receive a receipt image, run OCR on it and parse the result."""
    form = await request.form()
    upload = next((value for value in form.values() if hasattr(value, "read")), None)
    if upload is None:
        return JSONResponse({"status": "error", "message": "No file found in request"}, status_code=400)

    contents = await upload.read()
    suffix = Path(getattr(upload, "filename", None) or "receipt.jpg").suffix or ".jpg"
    filepath = get_paths().uploads / f"receipt_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}{suffix}"
    filepath.write_bytes(contents)

    ocr_url = default_ocr_url().rstrip("/")
    try:
        async with httpx.AsyncClient(timeout=OCR_TIMEOUT_SECONDS) as client:
            response = await client.post(
                f"{ocr_url}/ocr",
                files={"file": (filepath.name, resize_image_bytes(contents), "image/jpeg")},
            )
    except httpx.RequestError as e:
        logger.error("OCR service unavailable: %s", e)
        raise HTTPException(status_code=503, detail="OCR service unavailable") from e
    if response.status_code != 200:
        logger.error("OCR service error: %s", response.status_code)
        raise HTTPException(status_code=503, detail=f"OCR service error: {response.status_code}")

    raw_result = response.json()
    save_ocr_json(raw_result, filepath)
    blocks, dimensions = blocks_from_paddleocr(raw_result)
    outcome = parse_receipt_blocks(
        blocks,
        load_reference_data(),
        dimensions=dimensions,
        templates=_templates(request),
        sample_image_path=str(filepath),
    )
    logger.info(
        "Parsed %s: %d items, confidence %d", filepath.name, len(outcome.receipt.items), outcome.receipt.confidence
    )
    return JSONResponse({"status": "success", "image_filename": filepath.name, **outcome_to_dict(outcome)})


@app.post("/parse/blocks")
def parse_blocks(body: ParseBlocksBody, request: Request) -> dict[str, Any]:
    """Parse OCR blocks supplied as JSON."""
    try:
        blocks = blocks_from_dict(body.blocks)
        dimensions = dimensions_from_dict(body.image_dimensions)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    outcome = parse_receipt_blocks(
        blocks,
        load_reference_data(),
        dimensions=dimensions,
        options=body.to_options(),
        templates=_templates(request),
    )
    return outcome_to_dict(outcome)


@app.post("/parse/lines")
def parse_lines(body: ParseLinesBody) -> dict[str, Any]:
    """Parse plain text lines, without geometry or templates."""
    lines = body.lines if body.lines is not None else split_text(body.text or "")
    outcome = parse_receipt_lines(lines, load_reference_data(), body.to_options())
    return outcome_to_dict(outcome)


@app.get("/templates")
def list_templates(request: Request) -> list[dict[str, Any]]:
    return [
        {
            "merchant_id": template.merchant_id,
            "store_name": template.store_name,
            "confidence": template.confidence,
            "use_count": template.use_count,
            "zones": len(template.zones),
            "has_fingerprint": template.fingerprint is not None,
        }
        for template in _templates(request).list_all()
    ]


@app.get("/templates/{merchant_id}")
def show_template(merchant_id: str, request: Request) -> dict[str, Any]:
    try:
        template = _templates(request).get(merchant_id)
    except TemplateStoreError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    if template is None:
        raise HTTPException(status_code=404, detail=f"No template for {merchant_id}")
    return template_to_dict(template)


def serve(host: str = "0.0.0.0", port: int = 8000) -> None:
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    serve()
