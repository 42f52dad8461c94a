"""Pydantic request/response schemas for the FastAPI endpoints."""

from enum import StrEnum

from pydantic import BaseModel


class ExtractionMode(StrEnum):
    """Pipeline used for an extraction request."""

    STANDARD = "standard"
    ENHANCED = "enhanced"


class ConfidenceResponse(BaseModel):
    """Per-field confidence scores and their aggregate."""

    overall: float
    amount: float
    date: float
    merchant: float


class ExtractionResponse(BaseModel):
    """Response schema for a receipt extraction request."""

    success: bool
    document_id: str
    mode: ExtractionMode
    amount: str | None = None
    date: str | None = None
    merchant: str | None = None
    confidence: ConfidenceResponse
    full_text: str
    error: str | None = None
    error_kind: str | None = None
    rotation: int = 0
    degraded: bool = False
    elapsed_s: float | None = None
    processing_time_ms: float


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    tesseract_available: bool
    engine_initialized: bool
