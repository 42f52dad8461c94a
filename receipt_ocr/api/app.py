"""FastAPI application for the receipt OCR API.

Provides a receipt extraction endpoint and a health check. One
``ReceiptProcessor`` (and with it one Tesseract engine) is shared by all
requests and created on first use.
"""

import shutil
import threading
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, File, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from receipt_ocr import __version__
from receipt_ocr.ocr.image_source import RawImage
from receipt_ocr.ocr.receipt_processor import ReceiptProcessor
from receipt_ocr.utils.config import load_config
from receipt_ocr.utils.logger import get_logger

from .schemas import ExtractionMode, ExtractionResponse, HealthResponse

logger = get_logger(__name__)

_processor: ReceiptProcessor | None = None
_processor_lock = threading.Lock()


def _get_processor() -> ReceiptProcessor:
    """Return the shared processor, creating it on first use."""
    global _processor
    with _processor_lock:
        if _processor is None:
            _processor = ReceiptProcessor(load_config())
        return _processor


def _shutdown_processor() -> None:
    global _processor
    with _processor_lock:
        if _processor is not None:
            _processor.close()
            _processor = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    _shutdown_processor()


app = FastAPI(
    title="Receipt OCR API",
    description="Extract the total amount, date and merchant from receipt photos",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_ALLOWED_CONTENT_TYPES = {
    "image/png",
    "image/jpeg",
    "image/tiff",
    "image/webp",
    "application/octet-stream",
}


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Return system health status."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        tesseract_available=shutil.which("tesseract") is not None,
        engine_initialized=_processor is not None and _processor.engine.is_initialized,
    )


@app.post("/extract", response_model=ExtractionResponse)
async def extract_receipt(
    file: Annotated[UploadFile, File(...)],
    mode: Annotated[ExtractionMode, Query()] = ExtractionMode.STANDARD,
    multi_pass: Annotated[bool, Query()] = True,
) -> ExtractionResponse:
    """Extract the amount, date and merchant from an uploaded receipt photo.

    Args:
        file: Uploaded image (PNG, JPEG, TIFF or WebP).
        mode: Standard or enhanced pipeline.
        multi_pass: Retry rotated copies in enhanced mode.

    Returns:
        Extraction result with confidences and processing time.
    """
    start_time = time.perf_counter()

    if file.content_type and file.content_type not in _ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {file.content_type}",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    try:
        processor = _get_processor()
        image = RawImage.from_bytes(content, name=file.filename or "receipt")
        if mode == ExtractionMode.ENHANCED:
            result = await run_in_threadpool(
                processor.process_receipt_enhanced, image, multi_pass
            )
        else:
            result = await run_in_threadpool(processor.process_receipt, image)
    except Exception as exc:
        logger.error("Extraction failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    processing_time = (time.perf_counter() - start_time) * 1000
    return ExtractionResponse(
        document_id=str(uuid.uuid4()),
        mode=mode,
        processing_time_ms=processing_time,
        **result.to_dict(),
    )
