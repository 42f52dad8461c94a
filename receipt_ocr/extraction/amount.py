"""Total amount extraction from receipt text.

Finds every monetary value in the recognised text and picks the one
most likely to be the amount paid, scoring by proximity to total
keywords. The enhanced strategy also discards tax, tip, discount and
change lines and tolerates common OCR misreads.
"""

import re
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from receipt_ocr.utils.logger import get_logger

from .base import ExtractionCandidate, keyword_pattern

logger = get_logger(__name__)

MIN_AMOUNT = Decimal("0.01")
MAX_AMOUNT = Decimal("999999.99")

TOTAL_KEYWORDS = (
    "TOTAL",
    "GRAND TOTAL",
    "FINAL TOTAL",
    "NET TOTAL",
    "TOTAL DUE",
    "TOTAL AMOUNT",
    "TOTAL PAYABLE",
    "AMOUNT",
    "AMOUNT DUE",
    "AMOUNT PAYABLE",
    "NET AMOUNT",
    "BALANCE",
    "BALANCE DUE",
    "DUE",
    "PAYABLE",
    "PAID",
    "PAYMENT",
    "TO PAY",
    "SUBTOTAL",
    "SUB TOTAL",
    # common OCR misreads
    "T0TAL",
    "TOTA1",
    "AM0UNT",
)

EXCLUDE_KEYWORDS = (
    "TAX",
    "SALES TAX",
    "VAT",
    "GST",
    "HST",
    "PST",
    "TIP",
    "TIPS",
    "GRATUITY",
    "SERVICE CHARGE",
    "SERVICE FEE",
    "SUBTOTAL",
    "SUB TOTAL",
    "DISCOUNT",
    "SAVINGS",
    "YOU SAVED",
    "OFF",
    "CHANGE",
    "CHANGE DUE",
    "CASH BACK",
    "CASHBACK",
    "TENDERED",
)

# Score multipliers for a keyword found 0, 1 or 2 lines above the amount.
_PROXIMITY_WEIGHTS = (1.0, 0.8, 0.6)

_KEYWORD_BOOSTS = (
    (re.compile(r"GRAND", re.IGNORECASE), 1.2),
    (re.compile(r"FINAL", re.IGNORECASE), 1.1),
    (re.compile(r"SUB", re.IGNORECASE), 0.7),
)

_TOTAL_RE = keyword_pattern(TOTAL_KEYWORDS)
_EXCLUDE_RE = keyword_pattern(EXCLUDE_KEYWORDS)
# "TOTAL INCL. VAT" states what the total contains; it is not a tax line.
_INCLUSIVE_RE = re.compile(r"\bINCL", re.IGNORECASE)

_CURRENCY = (
    r"(?:\$|€|£|¥|￥|₹|₩|Rs\.?"
    r"|(?<![A-Za-z])(?:USD|EUR|GBP|CAD|AUD|NZD|CHF|JPY|CNY|RMB|INR|SGD|HKD|MYR|ZAR)"
    r"(?![A-Za-z]))"
)
_LEAD = r"(?<![\d.,])"
_TRAIL = r"(?![.,]?\d)(?!\s*%)"
_STANDARD_GROUPED = r"(?:\d{1,3}(?:[.,]\d{3})+|\d{1,7})"
# Space-grouped thousands ("1 234,56") only count when a fraction follows.
_ENHANCED_GROUPED = r"(?:\d{1,3}(?:\s\d{3})+(?=\s?[.,]\s?\d)|\d{1,3}(?:[.,]\d{3})+|\d{1,7})"

# Fraction part: standard text needs a tight separator; enhanced also
# accepts stray spaces OCR puts around it, e.g. "42 .50".
_STANDARD_FRACTION = r"[.,]\d{1,2}"
_ENHANCED_FRACTION = r"(?:[.,]\d{1,2}|\s?[.,]\s?\d{2})"


def _build_patterns(grouped: str, fraction: str) -> list[tuple[re.Pattern[str], bool]]:
    number = rf"{grouped}(?:{fraction})?"
    decimal = rf"{grouped}{fraction}"
    return [
        (re.compile(rf"{_CURRENCY}\s*{_LEAD}(?P<num>{number}){_TRAIL}"), True),
        (re.compile(rf"{_LEAD}(?P<num>{number}){_TRAIL}\s*{_CURRENCY}"), True),
        (re.compile(rf"{_LEAD}(?P<num>{decimal}){_TRAIL}"), False),
    ]


_STANDARD_PATTERNS = _build_patterns(_STANDARD_GROUPED, _STANDARD_FRACTION)
_ENHANCED_PATTERNS = _build_patterns(_ENHANCED_GROUPED, _ENHANCED_FRACTION)

# Whole numbers ("TOTAL: 42", "TOTAL 1,234") only count on a total keyword
# line. Parts of dates, times, phone numbers and spaced decimals are skipped.
_PLAIN_INTEGER_RE = re.compile(
    r"(?<![\d.,/:\-])(?P<num>\d{1,3}(?:[.,]\d{3})+|\d{1,7})"
    r"(?!\s?[.,]?\s?\d)(?![/:\-])(?!\s*%)"
)

_NUMERIC_TOKEN_RE = re.compile(r"(?<![A-Za-z])[\d.,Oo$€£¥₹]+(?![A-Za-z])")


@dataclass(frozen=True)
class AmountMatch:
    """A monetary value found in the text."""

    value: Decimal
    line_index: int
    position: int
    end: int
    has_currency: bool


def _detect_decimal_separator(token: str) -> str | None:
    last_dot = token.rfind(".")
    last_comma = token.rfind(",")
    if last_dot >= 0 and last_comma >= 0:
        return "." if last_dot > last_comma else ","
    if last_dot < 0 and last_comma < 0:
        return None

    separator = "." if last_dot >= 0 else ","
    fraction = token.rsplit(separator, 1)[1]
    # A lone or repeated separator followed by three digits groups thousands.
    if len(fraction) == 3:
        return None
    return separator


def parse_amount(token: str, decimal_separator: str = "auto") -> Decimal | None:
    """Parse a numeric token into an amount.

    Args:
        token: Digits with optional ``.``/``,`` separators and spaces.
        decimal_separator: ``"auto"`` to infer the decimal separator from
            the token, or ``"."``/``","`` to force one.

    Returns:
        The amount, or ``None`` if the token is not a valid amount in
        the 0.01 - 999,999.99 range with at most two decimals.
    """
    cleaned = re.sub(r"\s+", "", token)
    if not cleaned or not re.fullmatch(r"[\d.,]+", cleaned):
        return None

    if decimal_separator == "auto":
        separator = _detect_decimal_separator(cleaned)
    else:
        separator = decimal_separator if decimal_separator in cleaned else None

    if separator is None:
        digits = cleaned.replace(".", "").replace(",", "")
    else:
        integer, _, fraction = cleaned.rpartition(separator)
        if not fraction.isdigit():
            return None
        integer = integer.replace(".", "").replace(",", "")
        digits = f"{integer or '0'}.{fraction}"

    try:
        value = Decimal(digits)
    except InvalidOperation:
        return None

    if value.as_tuple().exponent < -2:
        return None
    if not MIN_AMOUNT <= value <= MAX_AMOUNT:
        return None
    return value


def _fix_ocr_digits(line: str) -> str:
    """Read ``O``/``o`` as zero inside numeric tokens such as ``$4O.5O``."""

    def fix(match: re.Match[str]) -> str:
        token = match.group(0)
        if not any(ch.isdigit() for ch in token):
            return token
        return token.replace("O", "0").replace("o", "0")

    return _NUMERIC_TOKEN_RE.sub(fix, line)


def _is_excluded(line: str) -> bool:
    return bool(_EXCLUDE_RE.search(line)) and not _INCLUSIVE_RE.search(line)


def _keyword_boost(keyword: str) -> float:
    for pattern, boost in _KEYWORD_BOOSTS:
        if pattern.search(keyword):
            return boost
    return 1.0


class AmountExtractor:
    """Extracts the total amount paid from receipt text.

    Args:
        decimal_separator: ``"auto"``, ``"."`` or ``","``; see ``parse_amount``.
    """

    def __init__(self, decimal_separator: str = "auto") -> None:
        self.decimal_separator = decimal_separator

    def find_amounts(self, text: str, enhanced: bool = False) -> list[AmountMatch]:
        """List every valid monetary value in ``text`` in reading order."""
        lines = text.splitlines()
        if enhanced:
            lines = [_fix_ocr_digits(line) for line in lines]
        return self._find_amounts(lines, enhanced)

    def _find_amounts(self, lines: list[str], enhanced: bool) -> list[AmountMatch]:
        patterns = _ENHANCED_PATTERNS if enhanced else _STANDARD_PATTERNS
        found: list[AmountMatch] = []
        for index, line in enumerate(lines):
            by_span: dict[tuple[int, int], AmountMatch] = {}
            for pattern, has_currency in patterns:
                for match in pattern.finditer(line):
                    span = match.span("num")
                    if span in by_span:
                        continue
                    value = parse_amount(match.group("num"), self.decimal_separator)
                    if value is None:
                        continue
                    by_span[span] = AmountMatch(value, index, span[0], span[1], has_currency)
            found.extend(sorted(by_span.values(), key=lambda a: a.position))
        return found

    def _with_plain_integers(
        self, line: str, index: int, amounts: list[AmountMatch]
    ) -> list[AmountMatch]:
        """Add whole-number tokens on a keyword line to its amounts."""
        merged = list(amounts)
        for match in _PLAIN_INTEGER_RE.finditer(line):
            start, end = match.span("num")
            if any(start < a.end and a.position < end for a in amounts):
                continue
            value = parse_amount(match.group("num"), self.decimal_separator)
            if value is not None:
                merged.append(AmountMatch(value, index, start, end, False))
        return sorted(merged, key=lambda a: a.position)

    def extract(self, text: str) -> ExtractionCandidate[Decimal]:
        """Extract the total amount with the standard strategy.

        An amount on the same line as a total keyword scores 0.9.
        Otherwise the largest currency-marked amount scores 0.6, or the
        largest plain decimal 0.5.

        Args:
            text: Recognised receipt text.

        Returns:
            Amount candidate; empty when no amount is present.
        """
        if not text or not text.strip():
            return ExtractionCandidate()

        lines = text.splitlines()
        amounts = self._find_amounts(lines, enhanced=False)
        keyword_amount = self._amount_near_keyword(
            lines, amounts, max_offset=0, skip_excluded=False
        )
        if keyword_amount is not None:
            return ExtractionCandidate(keyword_amount, 0.9)
        if not amounts:
            logger.debug("No amounts found")
            return ExtractionCandidate()
        return self._largest(amounts, currency_confidence=0.6, bare_confidence=0.5)

    def extract_enhanced(self, text: str) -> ExtractionCandidate[Decimal]:
        """Extract the total amount with the enhanced strategy.

        Fixes OCR digit misreads, drops amounts on tax, tip, subtotal,
        discount and change lines, and also looks up to two lines below a
        total keyword. A keyword hit scores 0.95; otherwise the largest
        remaining currency-marked amount scores 0.7 and a plain decimal
        0.6. If every amount sits on an excluded line the standard
        strategy is used instead.

        Args:
            text: Recognised receipt text.

        Returns:
            Amount candidate; empty when no amount is present.
        """
        if not text or not text.strip():
            return ExtractionCandidate()

        lines = [_fix_ocr_digits(line) for line in text.splitlines()]
        amounts = self._find_amounts(lines, enhanced=True)
        excluded = {index for index, line in enumerate(lines) if _is_excluded(line)}
        kept = [amount for amount in amounts if amount.line_index not in excluded]
        keyword_amount = self._amount_near_keyword(
            lines, kept, max_offset=2, skip_excluded=True
        )
        if keyword_amount is not None:
            return ExtractionCandidate(keyword_amount, 0.95)
        if not amounts:
            logger.debug("No amounts found")
            return ExtractionCandidate()
        if not kept:
            logger.debug("All amounts are on excluded lines, using standard strategy")
            return self.extract(text)
        return self._largest(kept, currency_confidence=0.7, bare_confidence=0.6)

    def _amount_near_keyword(
        self,
        lines: list[str],
        amounts: list[AmountMatch],
        max_offset: int,
        skip_excluded: bool,
    ) -> Decimal | None:
        by_line: dict[int, list[AmountMatch]] = defaultdict(list)
        for amount in amounts:
            by_line[amount.line_index].append(amount)

        best_score = 0.0
        best_value: Decimal | None = None
        for index, line in enumerate(lines):
            keyword = _TOTAL_RE.search(line)
            if keyword is None or (skip_excluded and _is_excluded(line)):
                continue
            boost = _keyword_boost(keyword.group(0))
            for offset in range(max_offset + 1):
                candidates = by_line.get(index + offset, [])
                if offset == 0:
                    candidates = self._with_plain_integers(line, index, candidates)
                if not candidates:
                    continue
                score = _PROXIMITY_WEIGHTS[offset] * boost
                if score > best_score:
                    best_score = score
                    # the rightmost figure on a line is the line's value
                    best_value = candidates[-1].value
                break

        if best_value is not None:
            logger.debug("Keyword amount %s (score %.2f)", best_value, best_score)
        return best_value

    @staticmethod
    def _largest(
        amounts: list[AmountMatch],
        currency_confidence: float,
        bare_confidence: float,
    ) -> ExtractionCandidate[Decimal]:
        marked = [amount for amount in amounts if amount.has_currency]
        if marked:
            return ExtractionCandidate(
                max(amount.value for amount in marked), currency_confidence
            )
        return ExtractionCandidate(
            max(amount.value for amount in amounts), bare_confidence
        )
