"""Error taxonomy for the receipt OCR pipeline.

Exceptions are raised inside the pipeline; the orchestrator converts them
into failed ``OcrResult`` values tagged with an ``ErrorKind`` so callers
never need to catch anything for per-call failures.
"""

from enum import StrEnum


class ErrorKind(StrEnum):
    """Failure categories reported on unsuccessful results."""

    INITIALIZATION = "initialization"
    DECODE = "decode"
    PREPROCESSING = "preprocessing"
    TIMEOUT = "timeout"
    RECOGNITION = "recognition"
    NO_TEXT = "no_text"
    PASSES_EXHAUSTED = "passes_exhausted"
    INTERNAL = "internal"


class ReceiptOcrError(Exception):
    """Base class for all pipeline errors."""

    kind: ErrorKind = ErrorKind.INTERNAL


class InitializationError(ReceiptOcrError):
    """The recognition engine or its language model could not be loaded."""

    kind = ErrorKind.INITIALIZATION


class DecodeError(ReceiptOcrError):
    """Input bytes could not be decoded into a bitmap."""

    kind = ErrorKind.DECODE


class PreprocessingError(ReceiptOcrError):
    """An image transform failed outright (not merely degraded)."""

    kind = ErrorKind.PREPROCESSING


class RecognitionError(ReceiptOcrError):
    """The recognition engine failed on a specific image."""

    kind = ErrorKind.RECOGNITION


class TransientPassError(ReceiptOcrError):
    """A single retry pass failed; the remaining passes still run."""

    kind = ErrorKind.RECOGNITION

    def __init__(self, rotation: int, cause: Exception) -> None:
        super().__init__(f"Pass at {rotation} degrees failed: {cause}")
        self.rotation = rotation
        self.cause = cause


class PassesExhaustedError(ReceiptOcrError):
    """Every recognition pass of an enhanced call failed."""

    kind = ErrorKind.PASSES_EXHAUSTED

    def __init__(self, failures: list[TransientPassError]) -> None:
        rotations = ", ".join(str(failure.rotation) for failure in failures)
        super().__init__(
            f"All {len(failures)} recognition passes failed "
            f"(rotations {rotations}): {failures[-1].cause}"
        )
        self.failures = failures


class OcrTimeoutError(ReceiptOcrError):
    """The wall-clock budget for an extraction call was exceeded."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, elapsed_s: float, budget_s: float) -> None:
        super().__init__(
            f"OCR processing timed out after {elapsed_s:.1f}s "
            f"(budget {budget_s:.1f}s)"
        )
        self.elapsed_s = elapsed_s
        self.budget_s = budget_s
