"""
Per-field value formatting.

Format hints describe the expected shape of a field's value. They are
used in three places: as prompt hints for the extraction engine, as
short-answer patterns in the value classifier, and to normalize final
values (currency grouping, "N% covered", capitalized coverage status,
day-first dates).
"""

import logging
import re
from enum import Enum
from typing import Dict, Optional, Pattern

logger = logging.getLogger(__name__)


class FormatHint(str, Enum):
    """Expected value shape for a field."""
    TEXT = "text"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    PERCENT_COVERED = "percent_covered"
    COVERAGE_STATUS = "coverage_status"
    DATE = "date"


COVERAGE_STATUS_TERMS = (
    'covered', 'not covered', 'nil', 'yes', 'no', 'not applicable',
    'included', 'excluded', 'none',
)

FORMAT_PATTERNS: Dict[FormatHint, Pattern] = {
    FormatHint.CURRENCY: re.compile(
        r'^(?:[a-z]{2,3}\.?\s*)?\d[\d,]*(?:\.\d+)?(?:\s*[a-z]{2,3})?$|^\d{1,3}(?:\.\d+)?\s*%$',
        re.IGNORECASE
    ),
    FormatHint.PERCENTAGE: re.compile(r'^\d{1,3}(?:\.\d+)?\s*%', re.IGNORECASE),
    FormatHint.PERCENT_COVERED: re.compile(r'^\d{1,3}(?:\.\d+)?\s*%(?:\s*covered)?$', re.IGNORECASE),
    FormatHint.COVERAGE_STATUS: re.compile(
        r'^(?:' + '|'.join(re.escape(t) for t in COVERAGE_STATUS_TERMS) + r')\.?$',
        re.IGNORECASE
    ),
    FormatHint.DATE: re.compile(
        r'^(?:\d{4}-\d{2}-\d{2}|\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4}|\d{1,2}\s+[a-z]{3,9}\s+\d{4}|[a-z]{3,9}\s+\d{1,2},?\s+\d{4})$',
        re.IGNORECASE
    ),
}

# Instructions passed to the extraction engine alongside the field list
FORMAT_INSTRUCTIONS: Dict[FormatHint, str] = {
    FormatHint.CURRENCY: "an amount with its currency (e.g. QAR 500), or a percentage",
    FormatHint.PERCENTAGE: "a percentage (e.g. 20%)",
    FormatHint.PERCENT_COVERED: "a coverage percentage (e.g. 80% covered)",
    FormatHint.COVERAGE_STATUS: "a coverage status (Covered, Not covered, Nil) or an amount",
    FormatHint.DATE: "a date as written in the document",
}

_PERCENT = re.compile(r'(\d{1,3}(?:\.\d+)?)\s*%')
_COINSURANCE = re.compile(r'(\d{1,2}(?:\.\d+)?)\s*%\s*(?:co-?insurance|co-?pay(?:ment)?)', re.IGNORECASE)
_AMOUNT = re.compile(r'\d[\d,]*(?:\.\d+)?')
_ISO_DATE = re.compile(r'^(\d{4})-(\d{2})-(\d{2})$')


def matches_format(value: Optional[str], hint: Optional[FormatHint]) -> bool:
    """Whether a value already has the short shape the hint expects."""
    if not value or hint is None or hint == FormatHint.TEXT:
        return False
    pattern = FORMAT_PATTERNS.get(FormatHint(hint))
    return bool(pattern and pattern.match(value.strip()))


def _capitalize(text: str) -> str:
    return text[:1].upper() + text[1:]


def _trim_number(number: str) -> str:
    return number[:-2] if number.endswith('.0') else number


def group_thousands(amount: str) -> str:
    """'1500000.50' -> '1,500,000.50'"""
    digits = amount.replace(',', '')
    whole, _, fraction = digits.partition('.')
    if not whole.isdigit():
        return amount
    grouped = f"{int(whole):,}"
    return f"{grouped}.{fraction}" if fraction else grouped


def format_coverage_status(value: str) -> str:
    trimmed = value.strip()
    if trimmed.lower().rstrip('.') in COVERAGE_STATUS_TERMS:
        return _capitalize(trimmed.rstrip('.'))
    return trimmed


def format_percent_covered(value: str) -> str:
    trimmed = value.strip()
    lower = trimmed.lower()

    coinsurance = _COINSURANCE.search(trimmed)
    if coinsurance:
        covered = 100 - float(coinsurance.group(1))
        return f"{_trim_number(str(covered))}% covered"

    percent = _PERCENT.search(trimmed)
    if percent:
        return f"{_trim_number(percent.group(1))}% covered"

    if lower == 'not covered':
        return "Not covered"
    if lower == 'covered' or 'full' in lower:
        return "100% covered"
    return trimmed


def format_percentage(value: str) -> str:
    percent = _PERCENT.search(value)
    if percent:
        return f"{_trim_number(percent.group(1))}%"
    return value.strip()


def format_currency(value: str, currency_code: str = "QAR") -> str:
    trimmed = value.strip()
    if trimmed.lower().rstrip('.') in COVERAGE_STATUS_TERMS:
        return format_coverage_status(trimmed)

    percent = _PERCENT.search(trimmed)
    if percent:
        return f"{_trim_number(percent.group(1))}%"

    amount = _AMOUNT.search(trimmed)
    if not amount:
        return trimmed

    grouped = group_thousands(amount.group(0))
    if currency_code.lower() in trimmed.lower():
        return trimmed[:amount.start()] + grouped + trimmed[amount.end():]
    return f"{currency_code} {grouped}"


def format_date(value: str) -> str:
    trimmed = value.strip()
    iso = _ISO_DATE.match(trimmed)
    if iso:
        year, month, day = iso.groups()
        return f"{day}/{month}/{year}"
    return trimmed


def apply_format(value: Optional[str], hint: Optional[FormatHint], currency_code: str = "QAR") -> Optional[str]:
    """
    Normalize a final value according to its field's format hint.

    Args:
        value: Extracted value (None passes through)
        hint: Field format hint; None or TEXT only trims
        currency_code: Prefix added to bare amounts

    Returns:
        Formatted value
    """
    if value is None:
        return None
    if hint is None:
        return value.strip()

    hint = FormatHint(hint)
    if hint == FormatHint.CURRENCY:
        return format_currency(value, currency_code)
    if hint == FormatHint.PERCENTAGE:
        return format_percentage(value)
    if hint == FormatHint.PERCENT_COVERED:
        return format_percent_covered(value)
    if hint == FormatHint.COVERAGE_STATUS:
        return format_coverage_status(value)
    if hint == FormatHint.DATE:
        return format_date(value)
    return value.strip()
