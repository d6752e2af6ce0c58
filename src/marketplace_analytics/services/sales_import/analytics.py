"""Per-row profitability and report totals.

Definitions:
  - revenue       = price * quantity
  - commission    = revenue * sale_commission_rate
  - logistics     = revenue * logistics_rate
  - storage       = revenue * storage_rate
  - surcharge     = revenue * surcharge_rate (acquiring, fulfillment; 0 if none)
  - net_profit    = revenue - (commission + logistics + storage + surcharge)
  - profit_margin = net_profit / revenue * 100, 0 when revenue is 0

Money is rounded to kopecks as it is computed so report totals are exact sums
of the stored row values.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping, Optional

from marketplace_analytics.services.sales_import.errors import InvalidInput
from marketplace_analytics.services.sales_import.fees import DEFAULT_FEE_PROFILES, MarketplaceFeeProfile
from marketplace_analytics.services.sales_import.records import (
    AnalyzedSaleRow,
    CanonicalSaleRow,
    Marketplace,
    ReportTotals,
)

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def quantize_money(v: Decimal) -> Decimal:
    return v.quantize(CENT, rounding=ROUND_HALF_UP)


def margin_pct(profit: Decimal, revenue: Decimal) -> Decimal:
    if revenue <= 0:
        return ZERO.quantize(CENT)
    return quantize_money(profit / revenue * HUNDRED)


def _fee(revenue: Decimal, rate: Optional[Decimal]) -> Decimal:
    if not rate:
        return ZERO.quantize(CENT)
    return quantize_money(revenue * rate)


class AnalyticsCalculator:
    """Apply a marketplace fee profile to canonical rows."""

    def __init__(self, fee_profiles: Mapping[str, MarketplaceFeeProfile] = DEFAULT_FEE_PROFILES):
        self.fee_profiles = fee_profiles

    def profile_for(self, marketplace: Any) -> MarketplaceFeeProfile:
        code = marketplace.value if isinstance(marketplace, Marketplace) else str(marketplace).upper()
        profile = self.fee_profiles.get(code)
        if profile is None:
            raise InvalidInput("marketplace", marketplace, f"Unknown marketplace: {marketplace}")
        return profile

    def analyze(self, row: CanonicalSaleRow, marketplace: Any) -> AnalyzedSaleRow:
        profile = self.profile_for(marketplace)
        if row.quantity is None or row.quantity <= 0:
            raise InvalidInput("quantity", row.quantity)
        if row.price is None or row.price < 0:
            raise InvalidInput("price", row.price)

        revenue = quantize_money(row.price * row.quantity)
        commission = _fee(revenue, profile.sale_commission_rate)
        logistics = _fee(revenue, profile.logistics_rate)
        storage = _fee(revenue, profile.storage_rate)
        surcharge = _fee(revenue, profile.surcharge_rate)
        net_profit = revenue - (commission + logistics + storage + surcharge)

        return AnalyzedSaleRow(
            sku=row.sku,
            product_name=row.product_name,
            sale_date=row.sale_date,
            quantity=row.quantity,
            price=row.price,
            raw_commission=row.raw_commission,
            revenue=revenue,
            commission=commission,
            logistics=logistics,
            storage=storage,
            surcharge=surcharge,
            net_profit=net_profit,
            profit_margin=margin_pct(net_profit, revenue),
        )


def compute_report_totals(rows: Iterable[AnalyzedSaleRow]) -> ReportTotals:
    total_revenue = ZERO.quantize(CENT)
    total_profit = ZERO.quantize(CENT)
    count = 0
    for row in rows:
        total_revenue += row.revenue
        total_profit += row.net_profit
        count += 1
    return ReportTotals(
        total_revenue=total_revenue,
        total_profit=total_profit,
        profit_margin=margin_pct(total_profit, total_revenue),
        rows_count=count,
    )
