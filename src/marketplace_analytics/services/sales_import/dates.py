"""Sale date normalization for marketplace exports.

Exports mostly carry DD.MM.YYYY; ISO, slash and space separated dates are
accepted as well. Every candidate is constructed and then re-derived: a
component that does not survive the round trip (day 31 in a 30 day month)
is rejected, never rolled over into the next month.

Calendar components are taken literally from the text. No local time zone is
involved at any point, so the same input yields the same date on every host.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Tuple

from marketplace_analytics.services.sales_import.markers import (
    MAX_MARKER_FIELD_LENGTH,
    find_noise_token,
    has_non_latin_letters,
)

MIN_SALE_YEAR = 2020
MIN_CALENDAR_YEAR = 1900
MAX_CALENDAR_YEAR = 2100

_ADJACENT_DELIMITERS_RE = re.compile(r"[.\-/,;]{2,}")
_TIME_SUFFIX_RE = re.compile(
    r"[T ]\d{1,2}:\d{2}(?::\d{2}(?:\.\d{1,6})?)?(?:Z|[+-]\d{2}:?\d{2})?$"
)

_DOTTED_RE = re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{4})")
_ISO_RE = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")
_SLASH_RE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
_SPACE_RE = re.compile(r"(\d{1,2}) (\d{1,2}) (\d{4})")


def _dmy(m: re.Match) -> Tuple[int, int, int]:
    return int(m.group(1)), int(m.group(2)), int(m.group(3))


def _ymd(m: re.Match) -> Tuple[int, int, int]:
    return int(m.group(3)), int(m.group(2)), int(m.group(1))


def _slash(m: re.Match) -> Tuple[int, int, int]:
    first, second, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
    # 05/25/2024 can only be month/day
    if first <= 12 < second:
        return second, first, year
    return first, second, year


# (pattern, extractor returning (day, month, year)); order matters
_FORMATS: List[Tuple[re.Pattern, Callable[[re.Match], Tuple[int, int, int]]]] = [
    (_DOTTED_RE, _dmy),
    (_ISO_RE, _ymd),
    (_SLASH_RE, _slash),
    (_SPACE_RE, _dmy),
]


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def build_calendar_date(day: int, month: int, year: int) -> Optional[date]:
    """Construct a date and verify that day/month/year survive unchanged."""
    if not (1 <= day <= 31 and 1 <= month <= 12 and MIN_CALENDAR_YEAR <= year <= MAX_CALENDAR_YEAR):
        return None
    try:
        d = date(year, month, day)
    except ValueError:
        return None
    if (d.day, d.month, d.year) != (day, month, year):
        return None
    return d


def is_sale_year_in_range(d: date, today: Optional[date] = None) -> bool:
    today = today or _utc_today()
    return MIN_SALE_YEAR <= d.year <= today.year + 1


def rejection_reason(text: str) -> Optional[str]:
    """Return why text can never be a date (wrong field captured), or None."""
    if not text:
        return "empty"
    if len(text) > MAX_MARKER_FIELD_LENGTH:
        return "too_long"
    if '"' in text or "'" in text:
        return "quoted"
    if "\n" in text or "\r" in text:
        return "multiline"
    if has_non_latin_letters(text):
        return "non_latin_text"
    if find_noise_token(text):
        return "noise_token"
    if _ADJACENT_DELIMITERS_RE.search(text):
        return "adjacent_delimiters"
    return None


def parse_date_text(text: str) -> Optional[date]:
    """Parse a date string without the sale-year range check."""
    s = text.strip()
    if rejection_reason(s):
        return None
    s = _TIME_SUFFIX_RE.sub("", s)
    for pattern, extract in _FORMATS:
        m = pattern.fullmatch(s)
        if not m:
            continue
        day, month, year = extract(m)
        return build_calendar_date(day, month, year)
    return None


def normalize_date(value: object, *, today: Optional[date] = None) -> Optional[date]:
    """Return a valid sale date for value, or None.

    Accepts str, date and datetime. Aware datetimes are converted to UTC
    before the calendar date is taken. Dates outside
    [2020, current year + 1] are rejected as misparsed data.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        parsed: Optional[date] = value.date()
    elif isinstance(value, date):
        parsed = value
    elif isinstance(value, str):
        parsed = parse_date_text(value)
    else:
        # numbers, spreadsheet serials and anything else
        return None

    if parsed is None or not is_sale_year_in_range(parsed, today):
        return None
    return parsed
