"""Dashboard aggregates over persisted sale rows, per report or per user."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from marketplace_analytics.schemas.sales_import import (
    DailySales,
    ExpenseBreakdown,
    ReportAnalytics,
    TopProduct,
)
from marketplace_analytics.services.sales_import.analytics import compute_report_totals, margin_pct
from marketplace_analytics.services.sales_import.records import AnalyzedSaleRow

TOP_PRODUCTS_LIMIT = 10

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_PERIOD_DAYS = 30

_ZERO = Decimal("0.00")


def _top_products(rows: List[AnalyzedSaleRow], limit: int) -> List[TopProduct]:
    by_sku: Dict[str, Dict] = {}
    for row in rows:
        item = by_sku.setdefault(
            row.sku,
            {"product_name": row.product_name, "quantity": 0, "revenue": _ZERO, "profit": _ZERO},
        )
        item["quantity"] += row.quantity
        item["revenue"] += row.revenue
        item["profit"] += row.net_profit

    ranked = sorted(by_sku.items(), key=lambda kv: (-kv[1]["profit"], kv[0]))
    return [
        TopProduct(
            sku=sku,
            product_name=item["product_name"],
            quantity=item["quantity"],
            revenue=item["revenue"],
            profit=item["profit"],
            margin=margin_pct(item["profit"], item["revenue"]),
        )
        for sku, item in ranked[:limit]
    ]


def _daily_sales(rows: List[AnalyzedSaleRow]) -> List[DailySales]:
    by_day: Dict[date, Dict] = defaultdict(lambda: {"revenue": _ZERO, "profit": _ZERO, "orders": 0})
    for row in rows:
        day = by_day[row.sale_date]
        day["revenue"] += row.revenue
        day["profit"] += row.net_profit
        day["orders"] += 1
    return [DailySales(sale_date=d, **by_day[d]) for d in sorted(by_day)]


def _expenses(rows: List[AnalyzedSaleRow]) -> ExpenseBreakdown:
    return ExpenseBreakdown(
        commission=sum((r.commission for r in rows), _ZERO),
        logistics=sum((r.logistics for r in rows), _ZERO),
        storage=sum((r.storage for r in rows), _ZERO),
        surcharge=sum((r.surcharge for r in rows), _ZERO),
        # returns are not tracked per sale row
        returns=_ZERO,
    )


def period_start(period: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Earliest upload time covered by period; None means no lower bound.

    Unknown periods fall back to the last 30 days.
    """
    if not period:
        return None
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=PERIOD_DAYS.get(period, DEFAULT_PERIOD_DAYS))


def build_report_analytics(
    rows: Iterable[AnalyzedSaleRow],
    top_limit: int = TOP_PRODUCTS_LIMIT,
) -> ReportAnalytics:
    rows = list(rows)
    totals = compute_report_totals(rows)
    return ReportAnalytics(
        total_revenue=totals.total_revenue,
        total_profit=totals.total_profit,
        profit_margin=totals.profit_margin,
        total_orders=totals.rows_count,
        top_products=_top_products(rows, top_limit),
        daily_sales=_daily_sales(rows),
        expenses=_expenses(rows),
    )
