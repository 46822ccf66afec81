"""GEDCOM date normalization.

A raw GEDCOM date token ("15 JAN 1943", "ABT 1900", "JUN 1970", "") is
projected three ways:

- ``date_sort_key``: a float that orders dates chronologically, with every
  unknown or invalid date sorting last at 9999.
- ``date_to_display``: a precision-aware DateValue (exact, yearMonth, year
  or unknown).
- ``format_readable``: "January 15, 1943", degrading to "January 1943" or
  "1943", and returning the token unchanged when it holds no year.

All three share ``extract_date_parts`` so a token is always read the same way.
"""

import re
from typing import NamedTuple

from models import DateValue, ExactDate, RangeDate, UnknownDate, YearDate, YearMonthDate

UNKNOWN_SORT_KEY = 9999

MONTH_ABBREVIATIONS = ["JAN", "FEB", "MAR", "APR", "MAY", "JUN",
                       "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]

MONTH_NAMES = ["January", "February", "March", "April", "May", "June",
               "July", "August", "September", "October", "November", "December"]

# Spellings accepted in addition to the GEDCOM abbreviations
MONTH_ALIASES = {name.upper(): abbr for name, abbr in zip(MONTH_NAMES, MONTH_ABBREVIATIONS)}
MONTH_ALIASES["SEPT"] = "SEP"

QUALIFIERS = re.compile(
    r"\b(?:ABOUT|ABT|ESTIMATED|EST|CALCULATED|CAL|CIRCA|CIR|CA|BEFORE|BEF|AFTER|AFT)\b\.?",
    re.IGNORECASE,
)

TOKEN_SEPARATORS = re.compile(r"[\s,()]+")
YEAR_TOKEN = re.compile(r"^\d{4}$")
# Fallback for years embedded in punctuation, e.g. "15/01/1943"
YEAR_SEARCH = re.compile(r"\b(\d{4})\b")
DAY_TOKEN = re.compile(r"^\d{1,2}$")
ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")


class DateParts(NamedTuple):
    year: int | None
    month: int | None  # 1-12
    day: int | None  # 1-31


# ============================================================================
# Shared Extraction
# ============================================================================

def strip_qualifiers(raw: str) -> str:
    """Remove approximation and bound words (ABT, circa, Bef., ...)."""
    return QUALIFIERS.sub(" ", raw).strip()


def month_number(token: str) -> int | None:
    """1-based month for an abbreviation or full month name, else None."""
    token = token.upper().rstrip(".")
    token = MONTH_ALIASES.get(token, token)
    if token in MONTH_ABBREVIATIONS:
        return MONTH_ABBREVIATIONS.index(token) + 1
    return None


def day_number(token: str) -> int | None:
    """Day of month for a 1-2 digit token in 1..31, else None."""
    if DAY_TOKEN.match(token) and 1 <= int(token) <= 31:
        return int(token)
    return None


def extract_date_parts(raw: str | None) -> DateParts:
    """
    Extract year, month and day from a raw date token.

    ISO dates ("1943-01-15") are read whole. Otherwise the year is the first
    4-digit token, or the first 4-digit run between word boundaries when no
    token qualifies ("15/01/1943"). The month is the first token found in the
    month table, and the day must sit directly before or after it.
    """
    if not raw:
        return DateParts(None, None, None)

    text = strip_qualifiers(raw)
    iso = _parse_iso(text)
    if iso is not None:
        return iso

    tokens = [t.rstrip(".") for t in TOKEN_SEPARATORS.split(text) if t]

    year = None
    for token in tokens:
        if YEAR_TOKEN.match(token):
            year = int(token)
            break
    if year is None:
        match = YEAR_SEARCH.search(text)
        if match:
            year = int(match.group(1))

    month = None
    day = None
    for index, token in enumerate(tokens):
        month = month_number(token)
        if month is None:
            continue
        for neighbour in (index - 1, index + 1):
            if 0 <= neighbour < len(tokens):
                day = day_number(tokens[neighbour])
                if day is not None:
                    break
        break

    return DateParts(year, month, day)


def extract_year(raw: str | None) -> str:
    """The 4-digit year of a raw date token, or an empty string."""
    year = extract_date_parts(raw).year
    return str(year) if year is not None else ""


# ============================================================================
# Projections
# ============================================================================

def _sort_key_from_parts(year: int | None, month: int | None, day: int | None) -> float:
    if year is None:
        return float(UNKNOWN_SORT_KEY)
    key = float(year)
    if month:
        # Zero-based offsets keep 31 DEC below the following year
        key += (month - 1) / 12
        if day:
            key += (day - 1) / 365
    return key


def date_sort_key(raw: str | None) -> float:
    """
    Chronological sort key; dates without a year sort last (9999).

    The key is ``year + (month - 1) / 12 + (day - 1) / 365``. The offsets are
    zero-based rather than ``month / 12 + day / 365`` so a late December date
    never sorts after the following year.
    """
    return _sort_key_from_parts(*extract_date_parts(raw))


def date_to_display(raw: str | None) -> DateValue:
    """Precision-aware display value for a raw date token. Never raises."""
    year, month, day = extract_date_parts(raw)
    if year is None:
        return UnknownDate()
    if month and day:
        return ExactDate(exact_date=f"{year:04d}-{month:02d}-{day:02d}")
    if month:
        return YearMonthDate(year=str(year), month=str(month))
    return YearDate(year=str(year))


def format_readable(raw: str | None) -> str:
    """
    Human readable form of a raw date token.

    "15 JAN 1943" -> "January 15, 1943", "JAN 1943" -> "January 1943",
    "ABT 1943" -> "1943". Tokens without a year are returned unchanged.
    """
    if not raw:
        return ""
    year, month, day = extract_date_parts(raw)
    if year is None:
        return raw
    if month and day:
        return f"{MONTH_NAMES[month - 1]} {day}, {year}"
    if month:
        return f"{MONTH_NAMES[month - 1]} {year}"
    return str(year)


# ============================================================================
# DateValue Helpers
# ============================================================================

def _parse_iso(text: str | None) -> DateParts | None:
    match = ISO_DATE.match(text or "")
    if not match:
        return None
    year, month, day = (int(group) for group in match.groups())
    if not 1 <= month <= 12 or not 1 <= day <= 31:
        return None
    return DateParts(year, month, day)


def _int_or_none(text: str | None) -> int | None:
    try:
        return int(text)
    except (TypeError, ValueError):
        return None


def label_for(value: DateValue) -> str:
    """Caption shown next to a feed entry for its DateValue."""
    if isinstance(value, ExactDate):
        parts = _parse_iso(value.exact_date)
        if parts is None:
            return value.exact_date
        return f"{MONTH_NAMES[parts.month - 1]} {parts.day}, {parts.year}"
    if isinstance(value, YearDate):
        return f"Circa {value.year}"
    if isinstance(value, YearMonthDate):
        return f"Circa {value.year}-{value.month.zfill(2)}"
    if isinstance(value, RangeDate):
        return f"Between {value.start_date} and {value.end_date}"
    return ""


def date_value_sort_key(value: DateValue) -> float:
    """Sort key for an already-normalized DateValue; unknown sorts last."""
    if isinstance(value, ExactDate):
        parts = _parse_iso(value.exact_date)
        return _sort_key_from_parts(*parts) if parts else float(UNKNOWN_SORT_KEY)
    if isinstance(value, YearMonthDate):
        month = _int_or_none(value.month)
        return _sort_key_from_parts(_int_or_none(value.year), month if month and 1 <= month <= 12 else None, None)
    if isinstance(value, YearDate):
        return _sort_key_from_parts(_int_or_none(value.year), None, None)
    if isinstance(value, RangeDate):
        # A range sorts by its earliest known endpoint
        for endpoint in (value.start_date, value.end_date):
            parts = _parse_iso(endpoint)
            if parts:
                return _sort_key_from_parts(*parts)
        return float(UNKNOWN_SORT_KEY)
    return float(UNKNOWN_SORT_KEY)
