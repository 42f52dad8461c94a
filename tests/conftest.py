"""Shared test fixtures for the receipt OCR test suite."""

import io
from datetime import date
from pathlib import Path
from unittest.mock import MagicMock

import cv2
import numpy as np
import pytest
from PIL import Image

from receipt_ocr.ocr.image_source import RawImage
from receipt_ocr.ocr.tesseract_engine import TesseractEngine
from receipt_ocr.utils.config import AppConfig, OCRConfig, PreprocessingConfig

FIXED_TODAY = date(2024, 6, 1)


@pytest.fixture
def sample_image() -> np.ndarray:
    """Create a simple synthetic grayscale test image."""
    image = np.zeros((200, 300), dtype=np.uint8)
    image[50:150, 50:250] = 255
    return image


@pytest.fixture
def sample_color_image() -> np.ndarray:
    """Create a simple synthetic BGR test image."""
    image = np.zeros((200, 300, 3), dtype=np.uint8)
    image[50:150, 50:250] = (255, 255, 255)
    return image


@pytest.fixture
def receipt_photo() -> np.ndarray:
    """A light, slightly tilted receipt quad on a dark table."""
    image = np.full((400, 300, 3), 30, dtype=np.uint8)
    corners = np.array([[70, 40], [240, 60], [225, 370], [55, 350]], dtype=np.int32)
    cv2.fillConvexPoly(image, corners, (235, 235, 235))
    for y in range(90, 330, 30):
        cv2.line(image, (90, y), (200, y + 3), (20, 20, 20), 2)
    return image


@pytest.fixture
def plain_page() -> np.ndarray:
    """A uniformly light page with no detectable border."""
    image = np.full((200, 150, 3), 220, dtype=np.uint8)
    image[60:64, 20:130] = 10
    return image


@pytest.fixture
def png_bytes(sample_color_image: np.ndarray) -> bytes:
    """PNG-encoded synthetic image."""
    buffer = io.BytesIO()
    Image.fromarray(sample_color_image).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def raw_image(png_bytes: bytes) -> RawImage:
    """Raw receipt image handle around ``png_bytes``."""
    return RawImage.from_bytes(png_bytes, name="receipt.png")


@pytest.fixture
def fixed_clock():
    """Clock pinned to a date after the fixture receipts were printed."""
    return lambda: FIXED_TODAY


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Application config writing scratch files to a temp directory."""
    return AppConfig(
        preprocessing=PreprocessingConfig(scratch_dir=str(tmp_path / "scratch")),
        ocr=OCRConfig(standard_timeout_s=5.0, enhanced_timeout_s=5.0),
    )


@pytest.fixture
def mock_engine() -> MagicMock:
    """Initialized-looking engine whose recognition result tests set."""
    engine = MagicMock(spec=TesseractEngine)
    engine.is_initialized = True
    engine.recognize.return_value = ""
    return engine


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_dir(project_root: Path) -> Path:
    """Return the configs directory path."""
    return project_root / "configs"
