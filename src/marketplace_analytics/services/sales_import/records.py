"""Sales records produced by the import pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class Marketplace(str, Enum):
    WILDBERRIES = "WILDBERRIES"
    OZON = "OZON"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CanonicalSaleRow:
    """One validated sale, independent of the marketplace export format.

    Only built once every field passed validation (see mapper.map_row).
    """

    sku: str
    product_name: str
    sale_date: date
    quantity: int
    price: Decimal
    raw_commission: Optional[Decimal] = None


@dataclass(frozen=True)
class AnalyzedSaleRow:
    sku: str
    product_name: str
    sale_date: date
    quantity: int
    price: Decimal
    raw_commission: Optional[Decimal]
    revenue: Decimal
    commission: Decimal
    logistics: Decimal
    storage: Decimal
    surcharge: Decimal
    net_profit: Decimal
    profit_margin: Decimal

    @property
    def total_fees(self) -> Decimal:
        return self.commission + self.logistics + self.storage + self.surcharge

    def to_record(self, report_id: str) -> Dict[str, Any]:
        """Column values for the sales_data table."""
        return {"report_id": report_id, **asdict(self)}


@dataclass(frozen=True)
class ReportTotals:
    total_revenue: Decimal
    total_profit: Decimal
    profit_margin: Decimal
    rows_count: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_revenue": str(self.total_revenue),
            "total_profit": str(self.total_profit),
            "profit_margin": str(self.profit_margin),
            "rows_count": self.rows_count,
        }
