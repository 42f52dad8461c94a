"""Raw receipt image handles and decoding.

The pipeline borrows a ``RawImage`` for the duration of one call and
decodes it into an OpenCV-style BGR array.
"""

import io
from dataclasses import dataclass, field
from pathlib import Path

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from receipt_ocr.errors import DecodeError
from receipt_ocr.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RawImage:
    """Image bytes plus the metadata callers already know about them."""

    data: bytes = field(repr=False)
    width: int
    height: int
    byte_size: int
    name: str = "receipt"

    @classmethod
    def from_bytes(cls, data: bytes, name: str = "receipt") -> "RawImage":
        """Wrap raw bytes, probing the image header for its dimensions.

        Undecodable input is accepted here with zero dimensions; decoding
        reports the failure.

        Args:
            data: Encoded image bytes (PNG, JPEG, TIFF, ...).
            name: Display name used in logs.

        Returns:
            Image handle.
        """
        width, height = 0, 0
        if data:
            try:
                with Image.open(io.BytesIO(data)) as img:
                    width, height = img.size
            except (UnidentifiedImageError, OSError):
                logger.debug("Could not read image header for %s", name)
        return cls(
            data=data, width=width, height=height, byte_size=len(data), name=name
        )

    @classmethod
    def from_path(cls, path: Path) -> "RawImage":
        """Read an image file into a handle.

        Args:
            path: Path to the image file.

        Returns:
            Image handle named after the file.
        """
        path = Path(path)
        return cls.from_bytes(path.read_bytes(), name=path.name)


def decode_image(image: RawImage) -> np.ndarray:
    """Decode a raw image into a BGR array, honouring EXIF orientation.

    Args:
        image: Raw image handle.

    Returns:
        Decoded image as a ``uint8`` BGR array.

    Raises:
        DecodeError: If the bytes are empty or not a readable image.
    """
    if image.byte_size == 0:
        raise DecodeError(f"Image {image.name} is empty")

    try:
        with Image.open(io.BytesIO(image.data)) as img:
            upright = ImageOps.exif_transpose(img)
            rgb = np.array(upright.convert("RGB"))
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"Failed to decode image {image.name}: {exc}") from exc

    logger.debug("Decoded %s (%dx%d)", image.name, rgb.shape[1], rgb.shape[0])
    return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)
