"""Transaction date and time extraction from receipt text.

Recognises numeric (``DD/MM/YYYY``, ``MM-DD-YY``, ``YYYY-MM-DD``) and
textual (``15 Jan 2024``, ``January 15, 2024``) dates, keeps only those
inside a validity window ending today, and prefers dates printed next to
date keywords or a time of day.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, time

from receipt_ocr.utils.logger import get_logger

from .base import ExtractionCandidate, keyword_pattern

logger = get_logger(__name__)

DATE_KEYWORDS = ("DATE", "DATED", "TIME", "TRANSACTION", "PURCHASE", "SALE", "RECEIPT")

_MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}
_MONTH_NAME = r"(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?"

_NUMERIC_RE = re.compile(r"(?<!\d)(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4}|\d{2})(?!\d)")
_ISO_RE = re.compile(r"(?<!\d)(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})(?!\d)")
_DAY_MONTH_RE = re.compile(
    rf"(?<!\d)(\d{{1,2}})(?:st|nd|rd|th)?[\s\-/.]*{_MONTH_NAME}[\s\-/.,]*(\d{{4}}|\d{{2}})(?!\d)",
    re.IGNORECASE,
)
_MONTH_DAY_RE = re.compile(
    rf"\b{_MONTH_NAME}\s*(\d{{1,2}})(?!\d)(?:st|nd|rd|th)?,?\s*(\d{{4}}|\d{{2}})(?!\d)",
    re.IGNORECASE,
)
_TIME_RE = re.compile(
    r"(?<![\d:])([01]?\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?(?![\d:])"
    r"(?:\s*([AaPp])\.?[Mm]\b\.?)?"
)
_KEYWORD_RE = keyword_pattern(DATE_KEYWORDS)

# Two-digit years below this are read as 20xx, the rest as 19xx.
_CENTURY_PIVOT = 50


@dataclass(frozen=True)
class DateMatch:
    """A calendar date found in the text."""

    value: date
    line_index: int


@dataclass(frozen=True)
class DateTimeCandidate:
    """Combined date and time of a transaction."""

    transaction_date: date | None = None
    transaction_time: time | None = None
    confidence: float = 0.0


def _expand_year(raw: str) -> int:
    year = int(raw)
    if len(raw) == 2:
        year += 2000 if year < _CENTURY_PIVOT else 1900
    return year


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # 29 February in a non-leap target year
        return day.replace(year=day.year - years, day=28)


class DateExtractor:
    """Extracts the transaction date (and time) from receipt text.

    Args:
        day_first: Read ambiguous numeric dates such as ``03/04/2024`` as
            day/month when both readings are valid.
        standard_validation_years: Validity window for ``extract``.
        clock: Returns today's date; injectable for tests.
    """

    def __init__(
        self,
        day_first: bool = True,
        standard_validation_years: int = 1,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.day_first = day_first
        self.standard_validation_years = standard_validation_years
        self._clock = clock

    def find_dates(self, text: str) -> list[DateMatch]:
        """List every well-formed date in ``text`` in reading order.

        No validity window is applied.
        """
        found: list[DateMatch] = []
        for index, line in enumerate(text.splitlines()):
            found.extend(
                DateMatch(value, index) for value in self._dates_in_line(line)
            )
        return found

    def _dates_in_line(self, line: str) -> list[date]:
        hits: list[tuple[int, date]] = []
        taken: list[tuple[int, int]] = []

        def add(match: re.Match[str], value: date | None) -> None:
            start, end = match.span()
            if value is None or any(s < end and start < e for s, e in taken):
                return
            taken.append((start, end))
            hits.append((start, value))

        for match in _ISO_RE.finditer(line):
            year, month, day = match.groups()
            add(match, _safe_date(int(year), int(month), int(day)))
        for match in _NUMERIC_RE.finditer(line):
            first, second, year = match.groups()
            add(match, self._resolve_numeric(int(first), int(second), _expand_year(year)))
        for match in _DAY_MONTH_RE.finditer(line):
            day, month, year = match.groups()
            add(match, _safe_date(_expand_year(year), _MONTHS[month[:3].lower()], int(day)))
        for match in _MONTH_DAY_RE.finditer(line):
            month, day, year = match.groups()
            add(match, _safe_date(_expand_year(year), _MONTHS[month[:3].lower()], int(day)))

        return [value for _, value in sorted(hits, key=lambda hit: hit[0])]

    def _resolve_numeric(self, first: int, second: int, year: int) -> date | None:
        day_month = _safe_date(year, second, first)
        month_day = _safe_date(year, first, second)
        if day_month and month_day:
            return day_month if self.day_first else month_day
        return day_month or month_day

    def _window(self, years: int) -> tuple[date, date]:
        today = self._clock()
        return _years_before(today, years), today

    def extract(self, text: str) -> ExtractionCandidate[date]:
        """Extract the transaction date with the standard strategy.

        Only dates within ``standard_validation_years`` of today count.
        A date on a line with a date keyword scores 0.9; otherwise the
        most recent date scores 0.6.

        Args:
            text: Recognised receipt text.

        Returns:
            Date candidate; empty when no valid date is present.
        """
        return self._extract(text, self.standard_validation_years, enhanced=False)

    def extract_enhanced(
        self, text: str, validation_years: int = 3
    ) -> ExtractionCandidate[date]:
        """Extract the transaction date with the enhanced strategy.

        A keyword-line date scores 0.95, a date with a time of day on the
        same or an adjacent line 0.85, otherwise the most recent date 0.7.

        Args:
            text: Recognised receipt text.
            validation_years: Dates older than this many years are ignored.

        Returns:
            Date candidate; empty when no valid date is present.
        """
        return self._extract(text, validation_years, enhanced=True)

    def _extract(
        self, text: str, validation_years: int, enhanced: bool
    ) -> ExtractionCandidate[date]:
        if not text or not text.strip():
            return ExtractionCandidate()

        lines = text.splitlines()
        start, today = self._window(validation_years)
        found = self.find_dates(text)
        candidates = [match for match in found if start <= match.value <= today]
        if not candidates:
            if found:
                logger.debug(
                    "Ignored %d dates outside %s..%s", len(found), start, today
                )
            return ExtractionCandidate()

        for match in candidates:
            if _KEYWORD_RE.search(lines[match.line_index]):
                return ExtractionCandidate(match.value, 0.95 if enhanced else 0.9)

        if enhanced:
            time_lines = {
                index for index, line in enumerate(lines) if _TIME_RE.search(line)
            }
            for match in candidates:
                nearby = {match.line_index - 1, match.line_index, match.line_index + 1}
                if nearby & time_lines:
                    return ExtractionCandidate(match.value, 0.85)

        latest = max(match.value for match in candidates)
        return ExtractionCandidate(latest, 0.7 if enhanced else 0.6)

    def extract_time(self, text: str) -> ExtractionCandidate[time]:
        """Extract the first valid time of day (24-hour or AM/PM).

        Args:
            text: Recognised receipt text.

        Returns:
            Time candidate scoring 0.8; empty when none is present.
        """
        if not text:
            return ExtractionCandidate()
        for match in _TIME_RE.finditer(text):
            value = self._parse_time(match)
            if value is not None:
                return ExtractionCandidate(value, 0.8)
        return ExtractionCandidate()

    @staticmethod
    def _parse_time(match: re.Match[str]) -> time | None:
        hour_raw, minute_raw, second_raw, meridiem = match.groups()
        hour = int(hour_raw)
        if meridiem:
            if not 1 <= hour <= 12:
                return None
            if meridiem.upper() == "P" and hour != 12:
                hour += 12
            elif meridiem.upper() == "A" and hour == 12:
                hour = 0
        return time(hour, int(minute_raw), int(second_raw or 0))

    def extract_date_time(
        self, text: str, validation_years: int = 3
    ) -> DateTimeCandidate:
        """Extract date and time together.

        Confidence is the mean of both when both are found; a date alone
        keeps 80% of its confidence and a time alone 50%.
        """
        found_date = self.extract_enhanced(text, validation_years)
        found_time = self.extract_time(text)

        if found_date.found and found_time.found:
            confidence = (found_date.confidence + found_time.confidence) / 2
        elif found_date.found:
            confidence = found_date.confidence * 0.8
        elif found_time.found:
            confidence = found_time.confidence * 0.5
        else:
            confidence = 0.0

        return DateTimeCandidate(
            transaction_date=found_date.value,
            transaction_time=found_time.value,
            confidence=confidence,
        )
