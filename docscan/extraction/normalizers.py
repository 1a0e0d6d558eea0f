"""
Data Normalizers Module.

Parsing of dates and monetary amounts found in OCR text:
    - Numeric dates (ISO, day-first and month-first), English and Hebrew
      month names, Arabic-Indic and Persian digits
    - Amounts with currency symbols or codes before or after the number,
      US and European separators
    - Currency detection

Author: ML Engineering Team
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Tuple

from dateutil import parser as date_parser

from ..utils.helpers import translate_digits, rtl_ratio
from ..utils.logger import get_logger

# Initialize module logger
logger = get_logger(__name__)


HEBREW_MONTHS = {
    'ינואר': 1,
    'פברואר': 2,
    'מרץ': 3,
    'אפריל': 4,
    'מאי': 5,
    'יוני': 6,
    'יולי': 7,
    'אוגוסט': 8,
    'ספטמבר': 9,
    'אוקטובר': 10,
    'נובמבר': 11,
    'דצמבר': 12,
}

_MONTH_NAMES = r'(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec)[a-z]*\.?'

DATE_PATTERNS = [
    # YYYY-MM-DD
    ('iso', re.compile(r'\b(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})\b')),
    # DD/MM/YYYY or MM/DD/YYYY
    ('numeric', re.compile(r'\b(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2,4})\b')),
    # 15 March 2024
    ('text', re.compile(rf'\b\d{{1,2}}(?:st|nd|rd|th)?\s+{_MONTH_NAMES},?\s+\d{{4}}\b', re.IGNORECASE)),
    # March 15, 2024
    ('text', re.compile(rf'\b{_MONTH_NAMES}\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}\b', re.IGNORECASE)),
    # 15 באפריל 2024
    ('hebrew', re.compile(
        r'(\d{1,2})\s*ב?(' + '|'.join(HEBREW_MONTHS) + r')\s*(\d{2,4})'
    )),
]


@dataclass
class DateMatch:
    """A date found in text, with its character span."""
    value: date
    start: int
    end: int


class DateNormalizer:
    """
    Finds and parses dates in free text.

    Attributes:
        dayfirst: Default for ambiguous numeric dates such as 03/04/2024

    Example:
        >>> normalizer = DateNormalizer()
        >>> normalizer.parse("01/15/2026")
        datetime.date(2026, 1, 15)
        >>> [m.value for m in normalizer.find_dates("Due: 15 באפריל 2024")]
        [datetime.date(2024, 4, 15)]
    """

    def __init__(self, dayfirst: bool = False) -> None:
        self.dayfirst = dayfirst

    def parse(self, date_str: str, dayfirst: Optional[bool] = None) -> Optional[date]:
        """
        Parse a single date string.

        Args:
            date_str: Date text, in any supported format or script.
            dayfirst: Override for ambiguous numeric dates.

        Returns:
            Parsed date or None.
        """
        matches = self.find_dates(date_str, dayfirst=dayfirst)
        if matches:
            return matches[0].value
        return self._parse_with_dateutil(translate_digits(date_str.strip()), self._dayfirst(dayfirst))

    def find_dates(self, text: str, dayfirst: Optional[bool] = None) -> List[DateMatch]:
        """
        Find every parseable date in text, in order of appearance.

        Right-to-left text defaults to day-first ordering. Overlapping
        matches keep the earliest pattern in DATE_PATTERNS.
        """
        if dayfirst is None and rtl_ratio(text) > 0.3:
            dayfirst = True
        dayfirst = self._dayfirst(dayfirst)

        # Digit translation keeps offsets: one character in, one out
        normalized = translate_digits(text)
        taken: List[Tuple[int, int]] = []
        found: List[DateMatch] = []

        for kind, pattern in DATE_PATTERNS:
            for match in pattern.finditer(normalized):
                start, end = match.span()
                if any(start < t_end and end > t_start for t_start, t_end in taken):
                    continue
                value = self._convert(kind, match, dayfirst)
                if value is None:
                    continue
                taken.append((start, end))
                found.append(DateMatch(value, start, end))

        found.sort(key=lambda m: m.start)
        return found

    def _dayfirst(self, dayfirst: Optional[bool]) -> bool:
        return self.dayfirst if dayfirst is None else dayfirst

    def _convert(self, kind: str, match: re.Match, dayfirst: bool) -> Optional[date]:
        if kind == 'iso':
            return _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))

        if kind == 'numeric':
            first, second, year = int(match.group(1)), int(match.group(2)), int(match.group(3))
            if year < 100:
                year += 2000
            if first > 12:
                day, month = first, second
            elif second > 12:
                month, day = first, second
            elif dayfirst:
                day, month = first, second
            else:
                month, day = first, second
            return _safe_date(year, month, day)

        if kind == 'hebrew':
            year = int(match.group(3))
            if year < 100:
                year += 2000
            return _safe_date(year, HEBREW_MONTHS[match.group(2)], int(match.group(1)))

        return self._parse_with_dateutil(match.group(0), dayfirst)

    @staticmethod
    def _parse_with_dateutil(date_str: str, dayfirst: bool) -> Optional[date]:
        try:
            return date_parser.parse(date_str, dayfirst=dayfirst, fuzzy=False).date()
        except (ValueError, OverflowError):
            logger.debug(f"Could not parse date: {date_str!r}")
            return None


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


# =============================================================================
# AMOUNTS
# =============================================================================

CURRENCY_CODES = {
    '$': 'USD',
    'USD': 'USD',
    '€': 'EUR',
    'EUR': 'EUR',
    '£': 'GBP',
    'GBP': 'GBP',
    '¥': 'JPY',
    'JPY': 'JPY',
    '₹': 'INR',
    'INR': 'INR',
    '₪': 'ILS',
    'ILS': 'ILS',
    'NIS': 'ILS',
    'ש"ח': 'ILS',
}

_NUMBER = r'\d+(?:[,.]\d{3})*(?:[.,]\d{1,2})?(?!\d)'
_PREFIX_CURRENCY = r'[$€£¥₹₪]|USD|EUR|GBP|JPY|INR|ILS|NIS|ש"ח'
_SUFFIX_CURRENCY = r'[€₪]|ש"ח|NIS|ILS|EUR|USD'

# Labels that make a bare number an amount
_AMOUNT_LABEL = (
    r'\b(?:sub\s*total|total|sum|amount\s+due|balance(?:\s+due)?|tax|vat)\b'
    r'|סה"כ|לתשלום|מע"מ'
)

# Earlier patterns win overlapping spans
AMOUNT_PATTERNS = [
    re.compile(rf'(?P<cur>{_PREFIX_CURRENCY})\s*(?P<num>{_NUMBER})'),
    re.compile(rf'(?<![\d.,])(?P<num>{_NUMBER})\s*(?P<cur>{_SUFFIX_CURRENCY})'),
    re.compile(
        rf'(?P<label>{_AMOUNT_LABEL})[\s:.\-]{{0,10}}(?:(?P<cur>{_PREFIX_CURRENCY})\s*)?'
        rf'(?<![\d.,])(?P<num>{_NUMBER})',
        re.IGNORECASE
    ),
]


@dataclass
class AmountMatch:
    """A currency amount found in text, with its character span."""
    value: float
    currency: Optional[str]
    start: int
    end: int


class AmountNormalizer:
    """
    Finds and parses currency amounts.

    Example:
        >>> normalizer = AmountNormalizer()
        >>> normalizer.to_float("1.234,56")
        1234.56
        >>> [(m.value, m.currency) for m in normalizer.find_amounts("Total: $45.99")]
        [(45.99, 'USD')]
    """

    def find_amounts(self, text: str) -> List[AmountMatch]:
        """
        Find amounts in order of appearance: currency-marked numbers, and
        numbers following a total, tax or balance label.

        For labeled amounts ``start`` is the start of the number, so the
        label stays in the text before it.
        """
        normalized = translate_digits(text)
        taken: List[Tuple[int, int]] = []
        found: List[AmountMatch] = []

        for pattern in AMOUNT_PATTERNS:
            labeled = 'label' in pattern.groupindex
            for match in pattern.finditer(normalized):
                start, end = match.span()
                if any(start < t_end and end > t_start for t_start, t_end in taken):
                    continue
                value = self.to_float(match.group('num'))
                if value is None:
                    continue
                taken.append((start, end))
                currency = match.group('cur')
                currency = CURRENCY_CODES.get(currency.upper()) if currency else None
                found.append(AmountMatch(value, currency, match.start('num') if labeled else start, end))

        found.sort(key=lambda m: m.start)
        return found

    def to_float(self, amount_str: str) -> Optional[float]:
        """
        Convert a numeric string with separators to float.

        Args:
            amount_str: Number such as "1,234.56", "1.234,56" or "45.99".

        Returns:
            Float value or None.
        """
        cleaned = re.sub(r'[^\d,.\-]', '', translate_digits(amount_str or ''))
        if not cleaned:
            return None

        cleaned = self._handle_european_format(cleaned)
        cleaned = cleaned.replace(',', '')

        try:
            return round(float(cleaned), 2)
        except ValueError:
            logger.debug(f"Could not parse amount: {amount_str!r}")
            return None

    @staticmethod
    def _handle_european_format(amount_str: str) -> str:
        """
        Convert comma-decimal notation to dot-decimal.

        A single comma after the last dot, followed by at most two digits,
        is taken as the decimal separator.
        """
        if amount_str.count(',') == 1:
            comma_pos = amount_str.rfind(',')
            dot_pos = amount_str.rfind('.')
            after_comma = amount_str[comma_pos + 1:]
            if comma_pos > dot_pos and len(after_comma) <= 2 and after_comma.isdigit():
                amount_str = amount_str.replace('.', '').replace(',', '.')
        return amount_str


def detect_currency(text: str) -> Optional[str]:
    """
    Detect the dominant currency mentioned in text.

    Returns:
        ISO 4217 code of the most frequent currency marker, or None.
    """
    counts = {}
    for match in re.finditer(_PREFIX_CURRENCY + r'|שקל', text):
        token = match.group(0)
        code = CURRENCY_CODES.get(token, 'ILS' if token == 'שקל' else None)
        if code:
            counts[code] = counts.get(code, 0) + 1
    if not counts:
        return None
    return max(counts, key=counts.get)
