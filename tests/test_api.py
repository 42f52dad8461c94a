"""Tests for the FastAPI REST endpoints."""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from receipt_ocr.api.app import app
from receipt_ocr.errors import ErrorKind
from receipt_ocr.ocr.image_source import RawImage
from receipt_ocr.ocr.receipt_processor import OcrConfidence, OcrResult


@pytest.fixture
def client() -> TestClient:
    """Create a FastAPI test client."""
    return TestClient(app)


def _make_result() -> OcrResult:
    """Create a successful OcrResult for testing."""
    return OcrResult(
        success=True,
        full_text="STORE X\nTOTAL: $42.50\n01/15/2024",
        amount=Decimal("42.50"),
        date=date(2024, 1, 15),
        merchant="STORE X",
        confidence=OcrConfidence.from_fields(0.9, 0.6, 1.0),
    )


class TestHealthEndpoint:
    """Tests for the /health endpoint."""

    def test_health_returns_ok(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert isinstance(data["tesseract_available"], bool)
        assert isinstance(data["engine_initialized"], bool)


class TestExtractEndpoint:
    """Tests for the /extract endpoint."""

    @patch("receipt_ocr.api.app._get_processor")
    def test_extract_success(
        self, mock_get: MagicMock, client: TestClient, png_bytes: bytes
    ) -> None:
        mock_processor = mock_get.return_value
        mock_processor.process_receipt.return_value = _make_result()

        response = client.post(
            "/extract",
            files={"file": ("receipt.png", png_bytes, "image/png")},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["mode"] == "standard"
        assert data["amount"] == "42.50"
        assert data["date"] == "2024-01-15"
        assert data["merchant"] == "STORE X"
        assert data["confidence"]["amount"] == 0.9
        assert data["processing_time_ms"] >= 0
        assert data["document_id"]

        image = mock_processor.process_receipt.call_args.args[0]
        assert isinstance(image, RawImage)
        assert image.name == "receipt.png"
        assert image.width == 300

    @patch("receipt_ocr.api.app._get_processor")
    def test_extract_enhanced(
        self, mock_get: MagicMock, client: TestClient, png_bytes: bytes
    ) -> None:
        mock_processor = mock_get.return_value
        mock_processor.process_receipt_enhanced.return_value = _make_result()

        response = client.post(
            "/extract?mode=enhanced&multi_pass=false",
            files={"file": ("receipt.png", png_bytes, "image/png")},
        )

        assert response.status_code == 200
        assert response.json()["mode"] == "enhanced"
        args = mock_processor.process_receipt_enhanced.call_args.args
        assert args[1] is False
        mock_processor.process_receipt.assert_not_called()

    @patch("receipt_ocr.api.app._get_processor")
    def test_failed_result_is_reported(
        self, mock_get: MagicMock, client: TestClient, png_bytes: bytes
    ) -> None:
        mock_get.return_value.process_receipt.return_value = OcrResult.failure(
            ErrorKind.TIMEOUT, "OCR processing timed out."
        )

        response = client.post(
            "/extract",
            files={"file": ("receipt.png", png_bytes, "image/png")},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["error_kind"] == "timeout"
        assert data["amount"] is None

    def test_extract_unsupported_type(self, client: TestClient) -> None:
        response = client.post(
            "/extract",
            files={"file": ("test.txt", b"hello", "text/plain")},
        )
        assert response.status_code == 400
        assert "Unsupported" in response.json()["detail"]

    def test_extract_empty_file(self, client: TestClient) -> None:
        response = client.post(
            "/extract",
            files={"file": ("empty.png", b"", "image/png")},
        )
        assert response.status_code == 400

    def test_extract_invalid_mode(self, client: TestClient, png_bytes: bytes) -> None:
        response = client.post(
            "/extract?mode=turbo",
            files={"file": ("receipt.png", png_bytes, "image/png")},
        )
        assert response.status_code == 422

    @patch("receipt_ocr.api.app._get_processor")
    def test_extract_processing_error(
        self, mock_get: MagicMock, client: TestClient, png_bytes: bytes
    ) -> None:
        mock_get.return_value.process_receipt.side_effect = RuntimeError("pool closed")

        response = client.post(
            "/extract",
            files={"file": ("receipt.png", png_bytes, "image/png")},
        )

        assert response.status_code == 500
        assert "pool closed" in response.json()["detail"]
