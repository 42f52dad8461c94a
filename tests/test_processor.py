"""Tests for the end-to-end receipt processing pipeline."""

import time
from datetime import date
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from receipt_ocr.errors import (
    ErrorKind,
    InitializationError,
    PreprocessingError,
    RecognitionError,
)
from receipt_ocr.extraction.date import DateExtractor
from receipt_ocr.ocr.image_source import RawImage
from receipt_ocr.ocr.receipt_processor import (
    NO_TEXT_MESSAGE,
    TIMEOUT_MESSAGE,
    OcrConfidence,
    OcrResult,
    ReceiptProcessor,
)
from receipt_ocr.utils.config import AppConfig, OCRConfig, PreprocessingConfig

STORE_X = "STORE X\nTOTAL: $42.50\n01/15/2024"
TAX_AND_TIP = "STORE X\nSUBTOTAL $32.00\nTAX $3.00\nTOTAL $40.00\nTIP $5.00\n01/15/2024"


@pytest.fixture
def processor(app_config: AppConfig, mock_engine: MagicMock, fixed_clock):
    proc = ReceiptProcessor(app_config, engine=mock_engine)
    proc.date_extractor = DateExtractor(clock=fixed_clock)
    yield proc
    proc.close()


def _scratch_files(config: AppConfig) -> list[Path]:
    scratch = Path(config.preprocessing.scratch_dir)
    return list(scratch.glob("*.png")) if scratch.exists() else []


class TestOcrConfidence:
    """Tests for confidence aggregation."""

    def test_mean_of_found_fields(self) -> None:
        confidence = OcrConfidence.from_fields(0.9, 0.0, 0.6)
        assert confidence.overall == pytest.approx(0.75)
        assert confidence.date == 0.0

    def test_nothing_found(self) -> None:
        assert OcrConfidence.from_fields(0.0, 0.0, 0.0).overall == 0.0


class TestOcrResult:
    """Tests for result serialisation."""

    def test_to_dict(self) -> None:
        result = OcrResult(
            success=True,
            full_text=STORE_X,
            amount=Decimal("42.50"),
            date=date(2024, 1, 15),
            merchant="STORE X",
            confidence=OcrConfidence.from_fields(0.9, 0.6, 1.0),
        )
        data = result.to_dict()
        assert data["amount"] == "42.50"
        assert data["date"] == "2024-01-15"
        assert data["error_kind"] is None
        assert data["confidence"]["amount"] == 0.9

    def test_failure_to_dict(self) -> None:
        data = OcrResult.failure(ErrorKind.DECODE, "bad image").to_dict()
        assert data["success"] is False
        assert data["error_kind"] == "decode"
        assert data["amount"] is None


class TestStandardProcessing:
    """Tests for the single-pass pipeline."""

    def test_extracts_fields(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.return_value = STORE_X

        result = processor.process_receipt(raw_image)

        assert result.success is True
        assert result.amount == Decimal("42.50")
        assert result.date == date(2024, 1, 15)
        assert result.merchant == "STORE X"
        assert result.full_text == STORE_X
        assert result.confidence.amount == 0.9
        assert result.confidence.date == 0.6
        assert result.confidence.merchant == 1.0
        assert result.confidence.overall == pytest.approx(2.5 / 3)
        assert result.error is None

    def test_engine_receives_scratch_png(
        self,
        processor: ReceiptProcessor,
        mock_engine: MagicMock,
        raw_image: RawImage,
        app_config: AppConfig,
    ) -> None:
        seen: list[bool] = []

        def recognize(path: Path, deadline) -> str:
            seen.append(path.exists() and path.suffix == ".png")
            return STORE_X

        mock_engine.recognize.side_effect = recognize
        processor.process_receipt(raw_image)

        assert seen == [True]
        assert _scratch_files(app_config) == []

    def test_blank_text(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.return_value = "  \n\n "

        result = processor.process_receipt(raw_image)

        assert result.success is False
        assert result.error_kind == ErrorKind.NO_TEXT
        assert result.error == NO_TEXT_MESSAGE
        assert result.confidence.overall == 0.0
        assert result.amount is None
        assert result.date is None
        assert result.merchant is None

    def test_text_without_fields_is_success(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.return_value = "---- ****"

        result = processor.process_receipt(raw_image)

        assert result.success is True
        assert result.amount is None
        assert result.confidence.overall == 0.0

    def test_is_deterministic(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.return_value = STORE_X
        assert processor.process_receipt(raw_image) == processor.process_receipt(raw_image)

    def test_initialization_failure(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.initialize.side_effect = InitializationError("eng.traineddata missing")

        result = processor.process_receipt(raw_image)

        assert result.success is False
        assert result.error_kind == ErrorKind.INITIALIZATION
        assert "eng.traineddata" in result.error
        mock_engine.recognize.assert_not_called()

    @pytest.mark.parametrize("data", [b"", b"definitely not an image"])
    def test_decode_failure(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, data: bytes
    ) -> None:
        result = processor.process_receipt(RawImage.from_bytes(data))

        assert result.success is False
        assert result.error_kind == ErrorKind.DECODE
        mock_engine.recognize.assert_not_called()

    def test_recognition_failure(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.side_effect = RecognitionError("tesseract crashed")

        result = processor.process_receipt(raw_image)

        assert result.error_kind == ErrorKind.RECOGNITION
        assert "tesseract crashed" in result.error

    def test_unexpected_error(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.side_effect = ValueError("weird")

        result = processor.process_receipt(raw_image)

        assert result.success is False
        assert result.error_kind == ErrorKind.INTERNAL

    def test_preprocessing_failure_uses_original(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.return_value = STORE_X

        with patch.object(
            processor.preprocessor, "preprocess", side_effect=PreprocessingError("bad")
        ):
            result = processor.process_receipt(raw_image)

        assert result.success is True
        assert result.degraded is True
        assert result.amount == Decimal("42.50")

    def test_scratch_write_failure(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        with patch("receipt_ocr.preprocessing.pipeline.cv2.imwrite", return_value=False):
            result = processor.process_receipt(raw_image)

        assert result.success is False
        assert result.error_kind == ErrorKind.PREPROCESSING
        assert "scratch image" in result.error
        mock_engine.recognize.assert_not_called()


class TestTimeout:
    """Tests for the wall-clock budget."""

    def test_slow_recognition_times_out(
        self, tmp_path: Path, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        config = AppConfig(
            preprocessing=PreprocessingConfig(scratch_dir=str(tmp_path / "scratch")),
            ocr=OCRConfig(standard_timeout_s=0.2, enhanced_timeout_s=0.2),
        )

        def slow(path: Path, deadline) -> str:
            time.sleep(0.6)
            return STORE_X

        mock_engine.recognize.side_effect = slow
        with ReceiptProcessor(config, engine=mock_engine) as processor:
            start = time.monotonic()
            result = processor.process_receipt(raw_image)
            elapsed = time.monotonic() - start

        assert result.success is False
        assert result.error_kind == ErrorKind.TIMEOUT
        assert result.error.startswith(TIMEOUT_MESSAGE)
        assert "budget 0.2s" in result.error
        assert 0.2 <= result.elapsed_s < 0.55
        assert result.to_dict()["elapsed_s"] == result.elapsed_s
        assert elapsed < 0.55

        # the abandoned worker still cleans up its scratch file
        time.sleep(0.8)
        assert _scratch_files(config) == []

    def test_enhanced_times_out(
        self, tmp_path: Path, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        config = AppConfig(
            preprocessing=PreprocessingConfig(scratch_dir=str(tmp_path / "scratch")),
            ocr=OCRConfig(standard_timeout_s=0.2, enhanced_timeout_s=0.2),
        )
        mock_engine.recognize.side_effect = lambda path, deadline: time.sleep(0.5) or ""

        with ReceiptProcessor(config, engine=mock_engine) as processor:
            result = processor.process_receipt_enhanced(raw_image)

        assert result.error_kind == ErrorKind.TIMEOUT

    def test_slow_engine_start_counts_against_budget(
        self, tmp_path: Path, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        config = AppConfig(
            preprocessing=PreprocessingConfig(scratch_dir=str(tmp_path / "scratch")),
            ocr=OCRConfig(standard_timeout_s=0.2, enhanced_timeout_s=0.2),
        )
        mock_engine.initialize.side_effect = lambda: time.sleep(0.5)
        mock_engine.recognize.return_value = STORE_X

        with ReceiptProcessor(config, engine=mock_engine) as processor:
            start = time.monotonic()
            result = processor.process_receipt(raw_image)
            elapsed = time.monotonic() - start

        assert result.error_kind == ErrorKind.TIMEOUT
        assert elapsed < 0.45
        time.sleep(0.5)
        mock_engine.recognize.assert_not_called()


class TestEnhancedProcessing:
    """Tests for the multi-pass pipeline."""

    def test_skips_tax_and_tip(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.return_value = TAX_AND_TIP

        result = processor.process_receipt_enhanced(raw_image)

        assert result.success is True
        assert result.amount == Decimal("40.00")
        assert result.confidence.amount == 0.95
        assert result.rotation == 0
        assert mock_engine.recognize.call_count == 1

    def test_retries_rotations_until_threshold(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.side_effect = ["", STORE_X]

        result = processor.process_receipt_enhanced(raw_image)

        assert result.success is True
        assert result.rotation == 90
        assert result.amount == Decimal("42.50")
        assert mock_engine.recognize.call_count == 2

    def test_never_lowers_confidence(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.side_effect = ["12.50", "", "", ""]

        result = processor.process_receipt_enhanced(raw_image)

        assert result.rotation == 0
        assert result.amount == Decimal("12.50")
        assert result.confidence.overall == pytest.approx(0.6)
        assert mock_engine.recognize.call_count == 4

    def test_multi_pass_disabled(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.return_value = "12.50"

        result = processor.process_receipt_enhanced(raw_image, use_multi_pass=False)

        assert result.success is True
        assert mock_engine.recognize.call_count == 1

    def test_failed_pass_is_skipped(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.side_effect = [RecognitionError("boom"), "12.50", "", ""]

        result = processor.process_receipt_enhanced(raw_image)

        assert result.success is True
        assert result.rotation == 90

    def test_all_passes_fail(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.side_effect = RecognitionError("boom")

        result = processor.process_receipt_enhanced(raw_image)

        assert result.success is False
        assert result.error_kind == ErrorKind.PASSES_EXHAUSTED
        assert mock_engine.recognize.call_count == 4

    def test_single_pass_failure(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.side_effect = RecognitionError("boom")

        result = processor.process_receipt_enhanced(raw_image, use_multi_pass=False)

        assert result.error_kind == ErrorKind.PASSES_EXHAUSTED

    def test_preprocessing_failure_per_pass(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        with patch.object(
            processor.preprocessor, "preprocess", side_effect=PreprocessingError("bad")
        ):
            result = processor.process_receipt_enhanced(raw_image)

        assert result.error_kind == ErrorKind.PASSES_EXHAUSTED
        mock_engine.recognize.assert_not_called()

    def test_all_blank(
        self, processor: ReceiptProcessor, mock_engine: MagicMock, raw_image: RawImage
    ) -> None:
        mock_engine.recognize.return_value = ""

        result = processor.process_receipt_enhanced(raw_image)

        assert result.success is False
        assert result.error_kind == ErrorKind.NO_TEXT
        assert result.rotation == 0
        assert result.amount is None
        assert result.date is None
        assert result.merchant is None
        assert mock_engine.recognize.call_count == 4

    def test_decode_failure(self, processor: ReceiptProcessor) -> None:
        result = processor.process_receipt_enhanced(RawImage.from_bytes(b"junk"))
        assert result.error_kind == ErrorKind.DECODE


class TestLifecycle:
    """Tests for engine ownership."""

    def test_close_releases_engine(self, app_config: AppConfig, mock_engine: MagicMock) -> None:
        with ReceiptProcessor(app_config, engine=mock_engine):
            pass
        mock_engine.release.assert_called_once()

    def test_builds_engine_from_config(self, app_config: AppConfig) -> None:
        with ReceiptProcessor(app_config) as processor:
            assert processor.engine.default_lang == app_config.ocr.default_lang
            assert processor.engine.psm == app_config.ocr.psm
