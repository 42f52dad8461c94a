"""Receipt OCR field extraction.

An on-device receipt processing pipeline combining OpenCV preprocessing,
Tesseract OCR, and heuristic extractors to recover the amount, date, and
merchant of a photographed or imported receipt.
"""

__version__ = "1.0.0"
