"""Map raw export rows to canonical sale rows, per marketplace.

Every marketplace exports the same facts under its own column names (native
Russian headers, English headers, lowercase variants). Each canonical field has
an ordered list of synonyms; the first one holding a value wins.

A row that cannot be mapped is not an error: map_row returns (None, reason)
and the caller drops the row.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence, Tuple

from marketplace_analytics.services.sales_import.dates import normalize_date
from marketplace_analytics.services.sales_import.markers import find_noise_token, looks_like_free_text
from marketplace_analytics.services.sales_import.records import CanonicalSaleRow, Marketplace
from marketplace_analytics.services.sales_import.repair import strip_name_artifacts

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("date", "sku", "name", "price", "quantity")
OPTIONAL_FIELDS = ("commission",)

SKU_MIN_LENGTH = 3
SKU_MAX_LENGTH = 20
NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 200
QUANTITY_MIN = 1
QUANTITY_MAX = 10_000
PRICE_MAX = Decimal("1000000")


@dataclass(frozen=True)
class MarketplaceProfile:
    marketplace: str
    synonyms: Mapping[str, Tuple[str, ...]]

    def columns_for(self, field: str) -> Tuple[str, ...]:
        return self.synonyms.get(field, ())


PROFILES: Mapping[str, MarketplaceProfile] = MappingProxyType(
    {
        Marketplace.WILDBERRIES.value: MarketplaceProfile(
            marketplace=Marketplace.WILDBERRIES.value,
            synonyms=MappingProxyType(
                {
                    "date": ("Дата продажи", "Date", "date"),
                    "sku": ("Артикул WB", "SKU", "sku"),
                    "name": ("Наименование", "Product Name", "name"),
                    "price": ("Цена продажи", "Price", "price"),
                    "quantity": ("Количество", "Quantity", "quantity"),
                    "commission": ("Комиссия WB", "Commission", "commission"),
                }
            ),
        ),
        Marketplace.OZON.value: MarketplaceProfile(
            marketplace=Marketplace.OZON.value,
            synonyms=MappingProxyType(
                {
                    "date": ("Дата", "Date", "date"),
                    "sku": ("Артикул", "SKU", "sku"),
                    "name": ("Название товара", "Product Name", "name"),
                    "price": ("Цена за единицу", "Price", "price"),
                    "quantity": ("Количество", "Quantity", "quantity"),
                    "commission": ("Комиссия за продажу", "Commission", "commission"),
                }
            ),
        ),
    }
)


def get_profile(marketplace: Any) -> MarketplaceProfile:
    code = str(marketplace.value if isinstance(marketplace, Marketplace) else marketplace).upper()
    profile = PROFILES.get(code)
    if profile is None:
        raise ValueError(f"Unsupported marketplace: {marketplace}")
    return profile


def column_index(header: Sequence[str], field: str) -> Optional[int]:
    """Position of a canonical field in a header, trying every profile."""
    stripped = [h.strip() for h in header]
    for profile in PROFILES.values():
        for name in profile.columns_for(field):
            if name in stripped:
                return stripped.index(name)
    return None


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def resolve_field(raw: Mapping[str, Any], columns: Sequence[str]) -> Any:
    for name in columns:
        value = raw.get(name)
        if not _is_empty(value):
            return value
    return None


def _text(value: Any) -> str:
    # Spreadsheet readers hand out 123456.0 for numeric SKU cells
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Parse a money/number cell: '1 234,50', '1,234.50', 1234.5 ..."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return Decimal(str(value))

    s = str(value).strip()
    for ch in (" ", "\u00a0", "\u202f", "\u20bd"):
        s = s.replace(ch, "")
    if not s:
        return None
    if "," in s and "." in s:
        s = s.replace(",", "")
    else:
        s = s.replace(",", ".")
    try:
        d = Decimal(s)
    except InvalidOperation:
        return None
    return d if d.is_finite() else None


def parse_quantity(value: Any) -> Optional[int]:
    d = parse_decimal(value)
    if d is None or d != d.to_integral_value():
        return None
    return int(d)


def map_row(
    raw: Mapping[str, Any],
    marketplace: Any,
    *,
    today: Optional[date] = None,
) -> Tuple[Optional[CanonicalSaleRow], Optional[str]]:
    """Return (row, None) for a valid export row, else (None, drop reason)."""
    profile = get_profile(marketplace)
    values = {
        field: resolve_field(raw, profile.columns_for(field))
        for field in REQUIRED_FIELDS + OPTIONAL_FIELDS
    }

    for field in REQUIRED_FIELDS:
        if _is_empty(values[field]):
            return None, f"missing_{field}"

    sale_date = normalize_date(values["date"], today=today)
    if sale_date is None:
        return None, "invalid_date"

    sku = _text(values["sku"])
    if not (SKU_MIN_LENGTH <= len(sku) <= SKU_MAX_LENGTH):
        return None, "invalid_sku"
    if find_noise_token(sku):
        return None, "sku_noise_token"
    if looks_like_free_text(sku):
        return None, "sku_free_text"

    name = strip_name_artifacts(_text(values["name"]))
    if "\n" in name or "\r" in name:
        return None, "name_multiline"
    if not (NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH):
        return None, "invalid_name"

    price = parse_decimal(values["price"])
    if price is None or price < 0 or price > PRICE_MAX:
        return None, "invalid_price"

    quantity = parse_quantity(values["quantity"])
    if quantity is None or not (QUANTITY_MIN <= quantity <= QUANTITY_MAX):
        return None, "invalid_quantity"

    commission = None if _is_empty(values["commission"]) else parse_decimal(values["commission"])

    row = CanonicalSaleRow(
        sku=sku,
        product_name=name,
        sale_date=sale_date,
        quantity=quantity,
        price=price,
        raw_commission=commission,
    )
    logger.debug("%s row mapped sku=%s date=%s", profile.marketplace, sku, sale_date)
    return row, None
