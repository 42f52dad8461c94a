"""Known-merchant catalogue with fuzzy name matching."""

import re
from collections.abc import Iterable

from rapidfuzz import fuzz, process, utils

from receipt_ocr.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MERCHANTS = (
    # food and coffee
    "McDonald's",
    "KFC",
    "Subway",
    "Burger King",
    "Pizza Hut",
    "Domino's",
    "Starbucks",
    "Costa Coffee",
    "Tim Hortons",
    # retail
    "IKEA",
    "H&M",
    "Zara",
    "Uniqlo",
    "Walmart",
    "Target",
    "Best Buy",
    # groceries
    "Aldi",
    "Lidl",
    "Costco",
    "Carrefour",
    "Tesco",
    "Sainsbury's",
    "Whole Foods Market",
    "Trader Joe's",
    # fuel
    "Shell",
    "BP",
    "Esso",
    "Total",
    "Chevron",
    # hotels
    "Marriott",
    "Hilton",
    "Holiday Inn",
    "Ibis",
    "Novotel",
    # online and services
    "Amazon",
    "Apple",
    "Google",
    "Microsoft",
    "Netflix",
    "Spotify",
    "Uber",
    "PayPal",
)

_FRANCHISE_CODE_PATTERNS = (
    re.compile(r"\b(?:store|location|branch|unit|outlet)\s*(?:no\.?|#)?\s*\d+\b", re.IGNORECASE),
    re.compile(r"#\s*\d+"),
    re.compile(r"\b\d{3,}\b"),
)


def clean_merchant_name(name: str) -> str:
    """Strip store numbers and branch codes from a merchant line.

    Args:
        name: Raw merchant text, e.g. ``"STARBUCKS #1234"``.

    Returns:
        The name without franchise codes and with whitespace collapsed.
    """
    cleaned = name
    for pattern in _FRANCHISE_CODE_PATTERNS:
        cleaned = pattern.sub(" ", cleaned)
    return " ".join(cleaned.split()).strip(" -,.:")


class MerchantDatabase:
    """In-memory catalogue of merchant names.

    Args:
        merchants: Extra names added to the built-in catalogue.
    """

    def __init__(self, merchants: Iterable[str] | None = None) -> None:
        self._merchants: set[str] = set(DEFAULT_MERCHANTS)
        for name in merchants or ():
            self.add(name)

    def __len__(self) -> int:
        return len(self._merchants)

    def all(self) -> list[str]:
        """Catalogue names in a stable order."""
        return sorted(self._merchants, key=str.lower)

    def exists(self, name: str) -> bool:
        """Whether ``name`` is in the catalogue, ignoring case and punctuation."""
        key = utils.default_process(name)
        return any(utils.default_process(known) == key for known in self._merchants)

    def add(self, name: str) -> None:
        """Add a merchant name to the catalogue; blank names are ignored."""
        name = name.strip()
        if name:
            self._merchants.add(name)

    def validate(self, name: str, threshold: float = 0.7) -> tuple[str, float]:
        """Match a name against the catalogue.

        Args:
            name: Extracted merchant text.
            threshold: Minimum similarity (0-1) for a match.

        Returns:
            ``(canonical_name, similarity)`` for the best match, or
            ``(name, 0.0)`` when nothing reaches the threshold.
        """
        cleaned = clean_merchant_name(name)
        if not cleaned:
            return name, 0.0

        match = process.extractOne(
            cleaned,
            self.all(),
            scorer=fuzz.ratio,
            processor=utils.default_process,
            score_cutoff=threshold * 100,
        )
        if match is None:
            return name, 0.0

        canonical, score, _ = match
        logger.debug("Matched merchant %r to %r (%.0f)", name, canonical, score)
        return canonical, score / 100.0

    def find_matches(
        self, name: str, threshold: float = 0.6, max_results: int = 5
    ) -> list[tuple[str, float]]:
        """Rank catalogue names similar to ``name``, best first.

        Args:
            name: Extracted merchant text.
            threshold: Minimum similarity (0-1) to include.
            max_results: Maximum number of matches.

        Returns:
            List of ``(canonical_name, similarity)`` pairs.
        """
        cleaned = clean_merchant_name(name)
        if not cleaned:
            return []

        matches = process.extract(
            cleaned,
            self.all(),
            scorer=fuzz.ratio,
            processor=utils.default_process,
            score_cutoff=threshold * 100,
            limit=max_results,
        )
        return [(canonical, score / 100.0) for canonical, score, _ in matches]
