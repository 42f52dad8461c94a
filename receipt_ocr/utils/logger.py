"""Centralized logging setup for the receipt OCR pipeline.

Provides a structured logging configuration with consistent formatting
across all modules, plus a helper for per-stage timing logs.
"""

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger with a standard format.

    Repeated calls are no-ops once a handler is attached.

    Args:
        level: Logging level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()

    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)
    root.setLevel(numeric_level)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger instance.

    Args:
        name: Logger name, typically ``__name__`` of the calling module.

    Returns:
        Configured logger instance.
    """
    return logging.getLogger(name)


@contextmanager
def log_duration(
    logger: logging.Logger,
    stage: str,
    timings: dict[str, float] | None = None,
) -> Iterator[None]:
    """Measure a pipeline stage and log its duration at debug level.

    Args:
        logger: Logger that receives the timing message.
        stage: Stage name used in the message and as the ``timings`` key.
        timings: Optional dict collecting elapsed milliseconds per stage.
            Written even when the stage raises.
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        if timings is not None:
            timings[stage] = elapsed_ms
        logger.debug("%s took %.0fms", stage, elapsed_ms)
