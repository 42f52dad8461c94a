"""Shared result type for field extractors."""

import re
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class ExtractionCandidate(Generic[T]):
    """A field value with its heuristic confidence.

    An absent value always carries confidence 0.0.
    """

    value: T | None = None
    confidence: float = 0.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        if self.value is None and self.confidence != 0.0:
            raise ValueError("an absent value must have zero confidence")

    @property
    def found(self) -> bool:
        """Whether a value was extracted."""
        return self.value is not None


def keyword_pattern(keywords: tuple[str, ...]) -> re.Pattern[str]:
    """Compile a whole-word, case-insensitive alternation of ``keywords``.

    Longer keywords are tried first and inner spaces or hyphens match any
    run of whitespace or hyphens, so ``"SUB TOTAL"`` also matches
    ``"SUB-TOTAL"``.
    """
    alternatives = []
    for keyword in sorted(keywords, key=len, reverse=True):
        parts = re.split(r"[\s\-]+", keyword)
        alternatives.append(r"[\s\-]*".join(re.escape(part) for part in parts))
    return re.compile(
        r"(?<![A-Za-z0-9])(?:" + "|".join(alternatives) + r")(?![A-Za-z0-9])",
        re.IGNORECASE,
    )
