"""Geometric corrections for photographed receipts.

Handles quarter-turn rotations for multi-pass recognition and detects
the receipt's paper boundary to undo camera perspective.
"""

import cv2
import numpy as np

from receipt_ocr.utils.logger import get_logger

logger = get_logger(__name__)

VALID_ROTATIONS = (0, 90, 180, 270)

_ROTATE_CODES = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}

# Longest side of the working copy used for contour detection.
_DETECTION_SIZE = 1000.0


def rotate_right_angle(image: np.ndarray, rotation: int) -> np.ndarray:
    """Rotate an image clockwise by a multiple of 90 degrees.

    Args:
        image: Input image.
        rotation: One of 0, 90, 180 or 270.

    Returns:
        Rotated image (the input itself for 0).

    Raises:
        ValueError: If ``rotation`` is not a quarter turn.
    """
    if rotation not in VALID_ROTATIONS:
        raise ValueError(
            f"Unsupported rotation: {rotation}. Use one of {VALID_ROTATIONS}"
        )
    if rotation == 0:
        return image
    logger.debug("Rotating image by %d degrees", rotation)
    return cv2.rotate(image, _ROTATE_CODES[rotation])


def order_points(pts: np.ndarray) -> np.ndarray:
    """Order four corner points as top-left, top-right, bottom-right, bottom-left."""
    rect = np.zeros((4, 2), dtype="float32")
    s = pts.sum(axis=1)
    rect[0] = pts[np.argmin(s)]
    rect[2] = pts[np.argmax(s)]
    diff = np.diff(pts, axis=1)
    rect[1] = pts[np.argmin(diff)]
    rect[3] = pts[np.argmax(diff)]
    return rect


def four_point_transform(image: np.ndarray, pts: np.ndarray) -> np.ndarray:
    """Warp the quadrilateral ``pts`` of ``image`` to a top-down rectangle.

    Args:
        image: Source image.
        pts: Array of shape (4, 2) with the quad's corners in any order.

    Returns:
        Rectified image sized to the quad's longest edges.
    """
    rect = order_points(pts)
    tl, tr, br, bl = rect
    width = int(max(np.linalg.norm(br - bl), np.linalg.norm(tr - tl)))
    height = int(max(np.linalg.norm(tr - br), np.linalg.norm(tl - bl)))
    dst = np.array(
        [[0, 0], [width - 1, 0], [width - 1, height - 1], [0, height - 1]],
        dtype="float32",
    )
    matrix = cv2.getPerspectiveTransform(rect, dst)
    return cv2.warpPerspective(image, matrix, (width, height))


def find_receipt_quad(
    image: np.ndarray, min_area_ratio: float = 0.25
) -> np.ndarray | None:
    """Find the largest four-cornered contour covering enough of the frame.

    Args:
        image: Input image (BGR or grayscale).
        min_area_ratio: Minimum quad area as a fraction of the frame area.

    Returns:
        Corner points of shape (4, 2) in source coordinates, or None.
    """
    gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if len(image.shape) == 3 else image
    h, w = gray.shape[:2]
    ratio = min(1.0, _DETECTION_SIZE / max(h, w))
    if ratio < 1.0:
        gray = cv2.resize(gray, (int(w * ratio), int(h * ratio)))

    blurred = cv2.GaussianBlur(gray, (5, 5), 0)
    edges = cv2.Canny(blurred, 50, 150)
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (3, 3))
    edges = cv2.morphologyEx(edges, cv2.MORPH_CLOSE, kernel, iterations=2)
    contours, _ = cv2.findContours(edges, cv2.RETR_LIST, cv2.CHAIN_APPROX_SIMPLE)

    min_area = min_area_ratio * gray.shape[0] * gray.shape[1]
    for contour in sorted(contours, key=cv2.contourArea, reverse=True)[:10]:
        perimeter = cv2.arcLength(contour, True)
        approx = cv2.approxPolyDP(contour, 0.02 * perimeter, True)
        if len(approx) == 4 and cv2.contourArea(approx) >= min_area:
            return (approx.reshape(4, 2) / ratio).astype("float32")

    logger.debug("No receipt boundary found among %d contours", len(contours))
    return None


def correct_perspective(
    image: np.ndarray, min_area_ratio: float = 0.25
) -> np.ndarray | None:
    """Rectify the receipt region of a photo.

    Args:
        image: Input image (BGR or grayscale).
        min_area_ratio: Minimum quad area as a fraction of the frame area.

    Returns:
        Top-down view of the receipt, or None when no boundary is detected.
    """
    quad = find_receipt_quad(image, min_area_ratio)
    if quad is None:
        return None
    warped = four_point_transform(image, quad)
    if warped.shape[0] < 2 or warped.shape[1] < 2:
        return None
    logger.info(
        "Applied perspective correction: %dx%d -> %dx%d",
        image.shape[1],
        image.shape[0],
        warped.shape[1],
        warped.shape[0],
    )
    return warped
