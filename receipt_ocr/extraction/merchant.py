"""Merchant name extraction from receipt headers.

Scores the first lines of a receipt for how much they look like a
business name, penalising headers, addresses, contact details and
amount lines. The enhanced strategy cleans OCR noise first and snaps the
result to a known merchant when the fuzzy match is close enough.
"""

import re

from receipt_ocr.utils.logger import get_logger

from .base import ExtractionCandidate, keyword_pattern
from .merchant_db import MerchantDatabase, clean_merchant_name

logger = get_logger(__name__)

HEADER_WORDS = (
    "RECEIPT",
    "INVOICE",
    "TAX INVOICE",
    "BILL",
    "COPY",
    "CUSTOMER COPY",
    "MERCHANT COPY",
    "DUPLICATE",
    "ORDER",
    "STATEMENT",
)
COMPANY_WORDS = (
    "LTD",
    "LIMITED",
    "INC",
    "LLC",
    "LLP",
    "PLC",
    "CORP",
    "CORPORATION",
    "COMPANY",
    "CO",
    "GMBH",
    "SDN BHD",
    "PTY",
    "RESTAURANT",
    "CAFE",
    "STORE",
    "MARKET",
    "SUPERMARKET",
    "SHOP",
)
ADDRESS_WORDS = (
    "STREET",
    "ST",
    "ROAD",
    "RD",
    "AVENUE",
    "AVE",
    "BOULEVARD",
    "BLVD",
    "LANE",
    "LN",
    "DRIVE",
    "DR",
    "HIGHWAY",
    "HWY",
    "SUITE",
    "FLOOR",
    "PO BOX",
)
CONTACT_WORDS = ("TEL", "PHONE", "FAX", "EMAIL", "E-MAIL", "WWW", "WEBSITE")

_HEADER_RE = keyword_pattern(HEADER_WORDS)
_COMPANY_RE = keyword_pattern(COMPANY_WORDS)
_ADDRESS_RE = keyword_pattern(ADDRESS_WORDS)
_CONTACT_RE = re.compile(
    keyword_pattern(CONTACT_WORDS).pattern + r"|@|https?://|\.com\b",
    re.IGNORECASE,
)
_AMOUNT_LINE_RE = re.compile(
    r"\b(?:TOTAL|SUBTOTAL|AMOUNT|TAX|VAT|CHANGE|CASH|BALANCE)\b|[$€£¥₹]\s*\d",
    re.IGNORECASE,
)
_PHONE_RE = re.compile(r"(?<!\d)\+?\(?\d{2,4}\)?[\s.\-]\d{3,4}[\s.\-]\d{3,4}(?!\d)")
_STREET_RE = re.compile(
    r"^\s*\d+[A-Za-z]?\s+\w+|\b\d{5}(?:-\d{4})?\b|\b[A-Z]{1,2}\d[A-Z\d]?\s*\d[A-Z]{2}\b"
)
_CAPS_TOKEN_RE = re.compile(r"\b[A-Z0]*[A-Z][A-Z0]*\b")
_STRAY_PUNCT_RE = re.compile(r"[*=_~|<>\[\]{}]+")

_TOP_LINES = 3


def clean_merchant_line(line: str) -> str:
    """Remove OCR noise from a candidate merchant line.

    Drops store codes and long digit runs, reads ``0`` as ``O`` inside
    all-caps words (``C0STC0`` -> ``COSTCO``) and strips decoration
    characters.

    Args:
        line: Raw header line.

    Returns:
        Cleaned line, possibly empty.
    """
    cleaned = clean_merchant_name(line)

    def fix_zero(match: re.Match[str]) -> str:
        token = match.group(0)
        if sum(ch.isalpha() for ch in token) < 2:
            return token
        return token.replace("0", "O")

    cleaned = _CAPS_TOKEN_RE.sub(fix_zero, cleaned)
    cleaned = _STRAY_PUNCT_RE.sub(" ", cleaned)
    return " ".join(cleaned.split()).strip(" -,.:;")


class MerchantExtractor:
    """Extracts the merchant name from receipt text.

    Args:
        database: Catalogue used for fuzzy validation. A default catalogue
            is created when omitted.
        max_lines: Number of non-empty leading lines considered.
        match_threshold: Minimum similarity for snapping to a known name.
    """

    def __init__(
        self,
        database: MerchantDatabase | None = None,
        max_lines: int = 10,
        match_threshold: float = 0.7,
    ) -> None:
        self.database = database or MerchantDatabase()
        self.max_lines = max_lines
        self.match_threshold = match_threshold

    def extract(self, text: str) -> ExtractionCandidate[str]:
        """Extract the merchant with the standard strategy.

        Args:
            text: Recognised receipt text.

        Returns:
            Best-scoring header line; empty when no line scores above zero.
        """
        return self._best_line(text, enhanced=False)

    def extract_enhanced(self, text: str) -> ExtractionCandidate[str]:
        """Extract the merchant with noise cleaning and catalogue matching.

        A catalogue match returns the canonical name with the mean of the
        line score and the match similarity.

        Args:
            text: Recognised receipt text.

        Returns:
            Merchant candidate; empty when no line scores above zero.
        """
        best = self._best_line(text, enhanced=True)
        if not best.found:
            return best

        canonical, similarity = self.database.validate(best.value, self.match_threshold)
        if similarity > 0.0:
            logger.debug("Merchant %r validated as %r", best.value, canonical)
            return ExtractionCandidate(canonical, (best.confidence + similarity) / 2)
        return best

    def get_suggestions(
        self, text: str, max_suggestions: int = 3
    ) -> list[tuple[str, float]]:
        """Suggest catalogue merchants resembling the extracted name.

        Args:
            text: Recognised receipt text.
            max_suggestions: Maximum number of suggestions.

        Returns:
            ``(name, similarity)`` pairs, best first.
        """
        best = self._best_line(text, enhanced=True)
        if not best.found:
            return []
        return self.database.find_matches(best.value, max_results=max_suggestions)

    def _best_line(self, text: str, enhanced: bool) -> ExtractionCandidate[str]:
        if not text or not text.strip():
            return ExtractionCandidate()

        lines = [line.strip() for line in text.splitlines() if line.strip()]
        best_name: str | None = None
        best_score = 0.0
        for index, raw in enumerate(lines[: self.max_lines]):
            name = clean_merchant_line(raw) if enhanced else raw
            if len(name) < 3 or not any(ch.isalpha() for ch in name):
                continue
            score = self._score_line(name, raw, index, enhanced)
            if score > best_score:
                best_name, best_score = name, score

        if best_name is None:
            return ExtractionCandidate()
        return ExtractionCandidate(best_name, best_score)

    @staticmethod
    def _score_line(name: str, raw: str, index: int, enhanced: bool) -> float:
        score = 0.5

        if _HEADER_RE.search(name):
            score -= 0.6
        if _COMPANY_RE.search(name):
            score += 0.3

        if 5 <= len(name) <= 50:
            score += 0.1
        elif len(name) > 50:
            score -= 0.2

        if all(ch.isalpha() or ch.isspace() for ch in name):
            score += 0.1
        if sum(ch.isdigit() for ch in name) / len(name) > 0.3:
            score -= 0.3

        if _ADDRESS_RE.search(raw):
            score -= 0.4
        if _CONTACT_RE.search(raw):
            score -= 0.5
        if _AMOUNT_LINE_RE.search(raw):
            score -= 0.3
        if enhanced and (_PHONE_RE.search(raw) or _STREET_RE.search(raw)):
            score -= 0.3

        if index < _TOP_LINES:
            score += 0.05
        return min(1.0, max(0.0, score))
