"""Receipt image preprocessing pipeline.

Prepares a decoded receipt photo for OCR in one of two modes: a cheap
standard pass (grayscale, contrast, sharpen) and an advanced pass that
adds perspective correction and adaptive thresholding. The advanced
mode degrades to the standard output when its extra stages cannot run.
"""

import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

import cv2
import numpy as np

from receipt_ocr.errors import PreprocessingError
from receipt_ocr.utils.config import PreprocessingConfig
from receipt_ocr.utils.logger import get_logger

from .filters import binarize_adaptive, sharpen, stretch_contrast, to_grayscale
from .geometry import correct_perspective, rotate_right_angle

logger = get_logger(__name__)


class PreprocessMode(StrEnum):
    """Preprocessing strength."""

    STANDARD = "standard"
    ADVANCED = "advanced"


@dataclass
class QualityMetrics:
    """Before/after image quality measurements."""

    sharpness_before: float
    sharpness_after: float
    contrast_before: float
    contrast_after: float


@dataclass
class PreprocessedImage:
    """Output bitmap of one preprocessing run and how it was produced."""

    bitmap: np.ndarray
    mode: PreprocessMode
    rotation: int = 0
    metrics: QualityMetrics | None = None
    degraded: bool = False
    degradation_reason: str | None = None

    @classmethod
    def unprocessed(cls, bitmap: np.ndarray) -> "PreprocessedImage":
        """Wrap a decoded bitmap that skipped preprocessing."""
        return cls(
            bitmap=bitmap,
            mode=PreprocessMode.STANDARD,
            degraded=True,
            degradation_reason="preprocessing skipped",
        )


def calculate_sharpness(image: np.ndarray) -> float:
    """Calculate image sharpness using Laplacian variance.

    Args:
        image: Input image (BGR or grayscale).

    Returns:
        Sharpness score (higher means sharper).
    """
    return float(cv2.Laplacian(to_grayscale(image), cv2.CV_64F).var())


def calculate_contrast(image: np.ndarray) -> float:
    """Calculate image contrast as the standard deviation of pixel intensities.

    Args:
        image: Input image (BGR or grayscale).

    Returns:
        Contrast score (higher means more contrast).
    """
    return float(to_grayscale(image).std())


class ImagePreprocessor:
    """Turns decoded receipt photos into OCR-ready bitmaps.

    Each call works on a fresh copy; the caller's array is never modified.

    Args:
        config: Preprocessing configuration.
    """

    def __init__(self, config: PreprocessingConfig) -> None:
        self.config = config

    def preprocess(
        self,
        image: np.ndarray,
        mode: PreprocessMode = PreprocessMode.STANDARD,
        rotation: int = 0,
    ) -> PreprocessedImage:
        """Run the pipeline for ``mode`` on ``image`` rotated by ``rotation``.

        Args:
            image: Decoded BGR or grayscale image.
            mode: Standard or advanced preprocessing.
            rotation: Clockwise quarter turn applied before anything else.

        Returns:
            Preprocessed image. In advanced mode ``degraded`` is set when
            perspective correction or thresholding could not be applied.

        Raises:
            ValueError: If ``rotation`` is not 0, 90, 180 or 270.
            PreprocessingError: If an image transform fails outright.
        """
        rotated = rotate_right_angle(image, rotation)
        sharpness_before = calculate_sharpness(rotated)
        contrast_before = calculate_contrast(rotated)

        reason = None
        try:
            if mode == PreprocessMode.ADVANCED:
                bitmap, reason = self._advanced(rotated)
            else:
                bitmap = self._standard(rotated)
        except cv2.error as exc:
            raise PreprocessingError(f"{mode} preprocessing failed: {exc}") from exc

        metrics = QualityMetrics(
            sharpness_before=sharpness_before,
            sharpness_after=calculate_sharpness(bitmap),
            contrast_before=contrast_before,
            contrast_after=calculate_contrast(bitmap),
        )
        logger.info(
            "Preprocessing (%s, %d deg) complete: sharpness %.1f->%.1f, contrast %.1f->%.1f",
            mode,
            rotation,
            metrics.sharpness_before,
            metrics.sharpness_after,
            metrics.contrast_before,
            metrics.contrast_after,
        )
        return PreprocessedImage(
            bitmap=bitmap,
            mode=mode,
            rotation=rotation,
            metrics=metrics,
            degraded=reason is not None,
            degradation_reason=reason,
        )

    def _standard(self, image: np.ndarray) -> np.ndarray:
        return self._enhance(to_grayscale(image))

    def _enhance(self, gray: np.ndarray) -> np.ndarray:
        result = stretch_contrast(gray, self.config.contrast_factor)
        if self.config.sharpen_enabled:
            result = sharpen(result)
        return result

    def _advanced(self, image: np.ndarray) -> tuple[np.ndarray, str | None]:
        gray = to_grayscale(image)

        if self.config.perspective_enabled:
            rectified = correct_perspective(gray, self.config.min_quad_area_ratio)
            if rectified is None:
                reason = "no receipt boundary detected"
                logger.warning("Advanced preprocessing degraded: %s", reason)
                return self._standard(image), reason
            gray = rectified

        enhanced = self._enhance(gray)
        try:
            binary = binarize_adaptive(
                enhanced,
                block_size=self.config.adaptive_block_size,
                c=self.config.adaptive_c,
            )
        except cv2.error as exc:
            reason = f"adaptive thresholding failed: {exc}"
            logger.warning("Advanced preprocessing degraded: %s", reason)
            return self._standard(image), reason
        return binary, None

    @contextmanager
    def scratch_artifact(self, image: PreprocessedImage) -> Iterator[Path]:
        """Write ``image`` to a unique temporary PNG for the duration of a block.

        The file is removed when the block exits, whether it succeeds,
        raises, or is abandoned on timeout.

        Args:
            image: Preprocessed image to persist.

        Yields:
            Path to the temporary PNG.

        Raises:
            PreprocessingError: If the PNG cannot be written.
        """
        scratch_dir = self.config.scratch_dir
        if scratch_dir is not None:
            Path(scratch_dir).mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(
            prefix=f"ocr_{image.mode}_", suffix=".png", dir=scratch_dir
        )
        os.close(fd)
        path = Path(name)
        try:
            if not cv2.imwrite(str(path), image.bitmap):
                raise PreprocessingError(f"Failed to write scratch image {path}")
            yield path
        finally:
            path.unlink(missing_ok=True)
