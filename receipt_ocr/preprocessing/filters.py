"""Pixel-level filters for receipt images.

Provides grayscale conversion, linear contrast stretching, a 3x3
sharpening kernel, and adaptive thresholding to make printed receipt
text easier for OCR to read.
"""

import cv2
import numpy as np

from receipt_ocr.utils.logger import get_logger

logger = get_logger(__name__)

_SHARPEN_KERNEL = np.array(
    [[0, -1, 0], [-1, 5, -1], [0, -1, 0]],
    dtype=np.float32,
)


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Convert an image to grayscale if it has color channels.

    Args:
        image: Input image (BGR, BGRA or grayscale).

    Returns:
        Grayscale image.
    """
    if len(image.shape) == 3:
        code = cv2.COLOR_BGRA2GRAY if image.shape[2] == 4 else cv2.COLOR_BGR2GRAY
        return cv2.cvtColor(image, code)
    return image


def stretch_contrast(image: np.ndarray, factor: float = 1.5) -> np.ndarray:
    """Scale intensities away from mid-gray by ``factor``.

    Values are saturated to the 0-255 range.

    Args:
        image: Input image (BGR or grayscale).
        factor: Contrast multiplier; 1.0 leaves the image unchanged.

    Returns:
        Contrast-stretched grayscale image.
    """
    gray = to_grayscale(image)
    offset = 127.5 * (1.0 - factor)
    result = cv2.addWeighted(gray, factor, np.zeros_like(gray), 0, offset)
    logger.debug("Applied contrast stretch (factor=%.2f)", factor)
    return result


def sharpen(image: np.ndarray) -> np.ndarray:
    """Sharpen character edges with a 3x3 Laplacian-style kernel."""
    result = cv2.filter2D(image, -1, _SHARPEN_KERNEL)
    logger.debug("Applied sharpening kernel")
    return result


def binarize_adaptive(
    image: np.ndarray, block_size: int = 31, c: int = 10
) -> np.ndarray:
    """Binarize an image using adaptive Gaussian thresholding.

    Args:
        image: Input image (BGR or grayscale).
        block_size: Size of the pixel neighborhood for threshold calculation.
        c: Constant subtracted from the weighted mean.

    Returns:
        Binary image with pixel values 0 or 255.
    """
    gray = to_grayscale(image)
    result = cv2.adaptiveThreshold(
        gray,
        255,
        cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
        cv2.THRESH_BINARY,
        block_size,
        c,
    )
    logger.debug("Applied adaptive binarization (block=%d, c=%d)", block_size, c)
    return result
