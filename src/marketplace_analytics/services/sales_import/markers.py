"""Corruption markers shared by line repair, date parsing and row mapping.

Marketplace exports that went through a broken merge often carry pieces of a
product name in the date or SKU column. The words below are the product-name
fragments observed in those columns; any of them in a date/SKU position means
the row cannot be trusted.
"""

from __future__ import annotations

import re
from typing import Optional

NOISE_TOKENS = (
    # brands
    "apple",
    "iphone",
    "samsung",
    "galaxy",
    "xiaomi",
    "redmi",
    "huawei",
    "honor",
    "nike",
    "adidas",
    "lego",
    # product categories
    "книга",
    "футболка",
    "платье",
    "куртка",
    "джинсы",
    "кроссовки",
    "смартфон",
    "наушники",
    "чехол",
    "рюкзак",
    "сумка",
    "игрушка",
    "набор",
    "комплект",
    "крем",
    "шампунь",
    "кабель",
    "зарядное",
)

_NOISE_RE = re.compile(
    r"(?<!\w)(" + "|".join(re.escape(t) for t in NOISE_TOKENS) + r")(?!\w)",
    re.IGNORECASE,
)

# day.month.year with 1-2 digit day/month and a 4-digit year
DATE_TOKEN_RE = re.compile(r"(?<!\d)(\d{1,2})\.(\d{1,2})\.(\d{4})(?!\d)")
LEADING_DATE_RE = re.compile(r'^\s*"?\d{1,2}\.\d{1,2}\.\d{4}(?!\d)')

# Two or more words of letters: free text, not an identifier
_FREE_TEXT_RE = re.compile(r"[^\W\d_]{3,}\s+[^\W\d_]{3,}")

MAX_MARKER_FIELD_LENGTH = 50


def find_noise_token(value: object) -> Optional[str]:
    """Return the first noise token found in value, or None."""
    if value is None:
        return None
    m = _NOISE_RE.search(str(value))
    return m.group(1).lower() if m else None


def has_non_latin_letters(value: str) -> bool:
    return any(ch.isalpha() and not ch.isascii() for ch in value)


def looks_like_free_text(value: str) -> bool:
    return bool(_FREE_TEXT_RE.search(value))


def starts_with_date_token(line: str) -> bool:
    return bool(LEADING_DATE_RE.match(line))
