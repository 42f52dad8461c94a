"""End-to-end receipt extraction pipeline.

Decodes a receipt photo, preprocesses it, runs Tesseract and extracts
the amount, date and merchant, all under a wall-clock budget. The
enhanced entry point retries low-confidence results on rotated copies
and keeps the best pass.
"""

import datetime
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any

import numpy as np

from receipt_ocr.errors import (
    ErrorKind,
    OcrTimeoutError,
    PassesExhaustedError,
    PreprocessingError,
    ReceiptOcrError,
    RecognitionError,
    TransientPassError,
)
from receipt_ocr.extraction.amount import AmountExtractor
from receipt_ocr.extraction.date import DateExtractor
from receipt_ocr.extraction.merchant import MerchantExtractor
from receipt_ocr.extraction.merchant_db import MerchantDatabase
from receipt_ocr.preprocessing.pipeline import (
    ImagePreprocessor,
    PreprocessedImage,
    PreprocessMode,
)
from receipt_ocr.utils.config import AppConfig
from receipt_ocr.utils.logger import get_logger, log_duration

from .image_source import RawImage, decode_image
from .tesseract_engine import TesseractEngine
from .timeout import Deadline, TimeoutGuard

logger = get_logger(__name__)

NO_TEXT_MESSAGE = "No text detected in image"
TIMEOUT_MESSAGE = "OCR processing timed out. Please try retaking the photo."
SLOW_PROCESSING_MS = 2000.0


@dataclass(frozen=True)
class OcrConfidence:
    """Per-field confidences and their aggregate."""

    overall: float = 0.0
    amount: float = 0.0
    date: float = 0.0
    merchant: float = 0.0

    @classmethod
    def from_fields(cls, amount: float, date: float, merchant: float) -> "OcrConfidence":
        """Build confidences with ``overall`` as the mean of the non-zero fields."""
        found = [score for score in (amount, date, merchant) if score > 0.0]
        overall = sum(found) / len(found) if found else 0.0
        return cls(overall=overall, amount=amount, date=date, merchant=merchant)


@dataclass(frozen=True)
class OcrResult:
    """Outcome of one extraction call."""

    success: bool
    full_text: str = ""
    amount: Decimal | None = None
    date: datetime.date | None = None
    merchant: str | None = None
    confidence: OcrConfidence = field(default_factory=OcrConfidence)
    error: str | None = None
    error_kind: ErrorKind | None = None
    rotation: int = 0
    degraded: bool = False
    elapsed_s: float | None = None

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "OcrResult":
        """Build a failed result with no fields."""
        return cls(success=False, error=message, error_kind=kind)

    @classmethod
    def timed_out(cls, elapsed_s: float, budget_s: float) -> "OcrResult":
        """Build the result for a call that ran out of time."""
        return cls(
            success=False,
            error=f"{TIMEOUT_MESSAGE} (after {elapsed_s:.1f}s, budget {budget_s:.1f}s)",
            error_kind=ErrorKind.TIMEOUT,
            elapsed_s=elapsed_s,
        )

    @classmethod
    def blank(cls, rotation: int = 0, degraded: bool = False) -> "OcrResult":
        """Build the result for a pass that recognised no text."""
        return cls(
            success=False,
            error=NO_TEXT_MESSAGE,
            error_kind=ErrorKind.NO_TEXT,
            rotation=rotation,
            degraded=degraded,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise to JSON-compatible types."""
        return {
            "success": self.success,
            "full_text": self.full_text,
            "amount": str(self.amount) if self.amount is not None else None,
            "date": self.date.isoformat() if self.date is not None else None,
            "merchant": self.merchant,
            "confidence": asdict(self.confidence),
            "error": self.error,
            "error_kind": str(self.error_kind) if self.error_kind else None,
            "rotation": self.rotation,
            "degraded": self.degraded,
            "elapsed_s": self.elapsed_s,
        }


def _improves(candidate: OcrResult, best: OcrResult) -> bool:
    if candidate.confidence.overall > best.confidence.overall:
        return True
    return (
        candidate.confidence.overall == best.confidence.overall
        and candidate.success
        and not best.success
    )


class ReceiptProcessor:
    """Receipt field extraction pipeline.

    Owns one Tesseract engine and the worker pool that runs guarded
    calls. Use as a context manager, or call ``close`` when done.

    Args:
        config: Application configuration object.
        engine: Recognition engine; built from ``config.ocr`` when omitted.
    """

    def __init__(self, config: AppConfig, engine: TesseractEngine | None = None) -> None:
        self.config = config
        self.preprocessor = ImagePreprocessor(config.preprocessing)
        self.engine = engine or TesseractEngine(
            tesseract_cmd=config.ocr.tesseract_cmd,
            default_lang=config.ocr.default_lang,
            psm=config.ocr.psm,
            tessdata_dir=config.ocr.tessdata_dir,
            language_asset_dir=config.ocr.language_asset_dir,
        )
        extraction = config.extraction
        self.amount_extractor = AmountExtractor(extraction.decimal_separator)
        self.date_extractor = DateExtractor(
            day_first=extraction.day_first,
            standard_validation_years=extraction.standard_validation_years,
        )
        self.merchant_extractor = MerchantExtractor(
            database=MerchantDatabase(extraction.extra_merchants),
            max_lines=extraction.max_merchant_lines,
            match_threshold=extraction.merchant_match_threshold,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=config.ocr.max_workers,
            thread_name_prefix="receipt-ocr",
        )
        self._guard = TimeoutGuard(self._executor)

    def __enter__(self) -> "ReceiptProcessor":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the engine and stop accepting work."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.engine.release()

    def process_receipt(self, image: RawImage) -> OcrResult:
        """Extract fields with one standard pass.

        Args:
            image: Receipt photo.

        Returns:
            Extraction result; failures are reported on the result.
        """
        return self._run(
            image,
            self._standard_pipeline,
            self.config.ocr.standard_timeout_s,
            "standard",
        )

    def process_receipt_enhanced(
        self, image: RawImage, use_multi_pass: bool = True
    ) -> OcrResult:
        """Extract fields with advanced preprocessing and enhanced extractors.

        When ``use_multi_pass`` is set and the first pass scores below the
        configured threshold, rotated copies are tried until one reaches
        the threshold or the rotations run out. The best pass is returned.

        Args:
            image: Receipt photo.
            use_multi_pass: Retry low-confidence results on rotations.

        Returns:
            Extraction result; failures are reported on the result.
        """
        return self._run(
            image,
            lambda img, deadline: self._enhanced_pipeline(img, deadline, use_multi_pass),
            self.config.ocr.enhanced_timeout_s,
            "enhanced",
        )

    def _run(
        self,
        image: RawImage,
        pipeline: Callable[[RawImage, Deadline], OcrResult],
        budget_s: float,
        label: str,
    ) -> OcrResult:
        start = time.perf_counter()
        logger.info(
            "Processing %s (%d bytes, %s pipeline)", image.name, image.byte_size, label
        )
        try:
            result = self._guard.run(
                lambda deadline: self._start_and_run(pipeline, image, deadline), budget_s
            )
        except OcrTimeoutError as exc:
            logger.error("%s pipeline for %s: %s", label, image.name, exc)
            return OcrResult.timed_out(exc.elapsed_s, exc.budget_s)
        except ReceiptOcrError as exc:
            logger.error("%s pipeline for %s failed: %s", label, image.name, exc)
            return OcrResult.failure(exc.kind, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error processing %s", image.name)
            return OcrResult.failure(ErrorKind.INTERNAL, str(exc) or type(exc).__name__)

        elapsed_ms = (time.perf_counter() - start) * 1000
        if elapsed_ms > SLOW_PROCESSING_MS:
            logger.warning(
                "Slow %s processing for %s: %.0fms", label, image.name, elapsed_ms
            )
        logger.info(
            "Processed %s in %.0fms (success=%s, confidence=%.2f)",
            image.name,
            elapsed_ms,
            result.success,
            result.confidence.overall,
        )
        return result

    def _start_and_run(
        self,
        pipeline: Callable[[RawImage, Deadline], OcrResult],
        image: RawImage,
        deadline: Deadline,
    ) -> OcrResult:
        # engine start-up counts against the call budget
        self.engine.initialize()
        deadline.check()
        return pipeline(image, deadline)

    def _standard_pipeline(self, image: RawImage, deadline: Deadline) -> OcrResult:
        timings: dict[str, float] = {}
        with log_duration(logger, "decode", timings):
            bitmap = decode_image(image)
        deadline.check()

        with log_duration(logger, "preprocess", timings):
            try:
                prepared = self.preprocessor.preprocess(bitmap, PreprocessMode.STANDARD)
            except PreprocessingError as exc:
                logger.warning("Preprocessing failed, using original image: %s", exc)
                prepared = PreprocessedImage.unprocessed(bitmap)
        deadline.check()

        text = self._recognize(prepared, deadline, timings)
        with log_duration(logger, "extract", timings):
            result = self._extract(text, enhanced=False, rotation=0, degraded=prepared.degraded)
        self._log_timings("standard", timings)
        return result

    def _enhanced_pipeline(
        self, image: RawImage, deadline: Deadline, use_multi_pass: bool
    ) -> OcrResult:
        with log_duration(logger, "decode"):
            bitmap = decode_image(image)

        threshold = self.config.extraction.multi_pass_threshold
        rotations = [0]
        if use_multi_pass:
            rotations += [r for r in self.config.extraction.multi_pass_rotations if r != 0]

        best: OcrResult | None = None
        failures: list[TransientPassError] = []
        for rotation in rotations:
            if best is not None and best.confidence.overall >= threshold:
                break
            deadline.check()
            if rotation != 0:
                logger.info(
                    "Confidence %.2f below %.2f, retrying at %d degrees",
                    best.confidence.overall if best else 0.0,
                    threshold,
                    rotation,
                )
            try:
                candidate = self._enhanced_pass(bitmap, rotation, deadline)
            except (PreprocessingError, RecognitionError) as exc:
                failure = TransientPassError(rotation, exc)
                logger.warning("%s", failure)
                failures.append(failure)
                continue

            if best is None or _improves(candidate, best):
                if best is not None:
                    logger.info(
                        "Rotation %d improved confidence %.2f -> %.2f",
                        rotation,
                        best.confidence.overall,
                        candidate.confidence.overall,
                    )
                best = candidate

        if best is None:
            raise PassesExhaustedError(failures)
        return best

    def _enhanced_pass(
        self, bitmap: np.ndarray, rotation: int, deadline: Deadline
    ) -> OcrResult:
        timings: dict[str, float] = {}
        with log_duration(logger, "preprocess", timings):
            prepared = self.preprocessor.preprocess(
                bitmap, PreprocessMode.ADVANCED, rotation
            )
        if prepared.degraded:
            logger.warning(
                "Pass at %d degrees uses degraded preprocessing: %s",
                rotation,
                prepared.degradation_reason,
            )
        deadline.check()

        text = self._recognize(prepared, deadline, timings)
        with log_duration(logger, "extract", timings):
            result = self._extract(
                text, enhanced=True, rotation=rotation, degraded=prepared.degraded
            )
        self._log_timings(f"enhanced@{rotation}", timings)
        return result

    def _recognize(
        self, prepared: PreprocessedImage, deadline: Deadline, timings: dict[str, float]
    ) -> str:
        with log_duration(logger, "recognize", timings):
            with self.preprocessor.scratch_artifact(prepared) as artifact:
                deadline.check()
                text = self.engine.recognize(artifact, deadline)
        deadline.check()
        return text

    def _extract(
        self, text: str, enhanced: bool, rotation: int, degraded: bool
    ) -> OcrResult:
        if not text.strip():
            logger.warning("%s (rotation %d)", NO_TEXT_MESSAGE, rotation)
            return OcrResult.blank(rotation=rotation, degraded=degraded)

        if enhanced:
            amount = self.amount_extractor.extract_enhanced(text)
            date = self.date_extractor.extract_enhanced(
                text, self.config.extraction.date_validation_years
            )
            merchant = self.merchant_extractor.extract_enhanced(text)
        else:
            amount = self.amount_extractor.extract(text)
            date = self.date_extractor.extract(text)
            merchant = self.merchant_extractor.extract(text)

        return OcrResult(
            success=True,
            full_text=text,
            amount=amount.value,
            date=date.value,
            merchant=merchant.value,
            confidence=OcrConfidence.from_fields(
                amount.confidence, date.confidence, merchant.confidence
            ),
            rotation=rotation,
            degraded=degraded,
        )

    @staticmethod
    def _log_timings(label: str, timings: dict[str, float]) -> None:
        logger.info(
            "%s pass timings: %s",
            label,
            ", ".join(f"{stage}={ms:.0f}ms" for stage, ms in timings.items()),
        )
