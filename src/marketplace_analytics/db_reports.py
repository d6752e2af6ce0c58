"""Database access for reports and their sale rows.

SqlReportStore is the persistence handle the ingestion pipeline writes
through. replace_report_sales is the only write of an ingestion run and runs
in a single transaction: rows for the report are deleted, the new rows are
inserted in batches, and the report totals and processed flag are updated.
Either all of it commits or none of it does.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, exists, insert, select, update
from sqlalchemy.engine import Connection, Engine

from marketplace_analytics import settings
from marketplace_analytics.models import Report, SalesData
from marketplace_analytics.schemas.sales_import import ReportAnalytics
from marketplace_analytics.services.sales_import.analytics import compute_report_totals
from marketplace_analytics.services.sales_import.errors import ReportNotFound
from marketplace_analytics.services.sales_import.records import AnalyzedSaleRow, ReportTotals
from marketplace_analytics.services.sales_import.report_analytics import build_report_analytics, period_start

logger = logging.getLogger(__name__)

reports_table = Report.__table__
sales_table = SalesData.__table__

SALE_COLUMNS = (
    "sku",
    "product_name",
    "sale_date",
    "quantity",
    "price",
    "raw_commission",
    "revenue",
    "commission",
    "logistics",
    "storage",
    "surcharge",
    "net_profit",
    "profit_margin",
)


def _row_from_record(record: Any) -> AnalyzedSaleRow:
    return AnalyzedSaleRow(**{name: record[name] for name in SALE_COLUMNS})


def delete_report_sales(conn: Connection, report_id: str) -> int:
    result = conn.execute(delete(sales_table).where(sales_table.c.report_id == report_id))
    return result.rowcount or 0


def insert_sales_batch(
    conn: Connection,
    report_id: str,
    rows: Sequence[AnalyzedSaleRow],
    batch_size: Optional[int] = None,
) -> int:
    batch_size = batch_size or settings.INGEST_BATCH_SIZE
    inserted = 0
    for start in range(0, len(rows), batch_size):
        batch = [row.to_record(report_id) for row in rows[start : start + batch_size]]
        conn.execute(insert(sales_table), batch)
        inserted += len(batch)
    return inserted


def update_report_status(
    conn: Connection,
    report_id: str,
    *,
    processed: bool,
    totals: Optional[ReportTotals] = None,
) -> None:
    values: Dict[str, Any] = {"processed": processed}
    if totals is not None:
        values.update(
            total_revenue=totals.total_revenue,
            total_profit=totals.total_profit,
            profit_margin=totals.profit_margin,
        )
    result = conn.execute(update(reports_table).where(reports_table.c.id == report_id).values(**values))
    if result.rowcount == 0:
        raise ReportNotFound(report_id)


class SqlReportStore:
    """Report persistence over a SQLAlchemy engine."""

    def __init__(self, engine: Engine, batch_size: Optional[int] = None):
        self.engine = engine
        self.batch_size = batch_size or settings.INGEST_BATCH_SIZE

    def create_report(
        self,
        file_name: str,
        marketplace: str,
        *,
        report_id: Optional[str] = None,
        user_id: Optional[str] = None,
        upload_date: Optional[datetime] = None,
    ) -> str:
        report_id = report_id or str(uuid.uuid4())
        values: Dict[str, Any] = dict(
            id=report_id,
            user_id=user_id,
            file_name=file_name,
            marketplace=str(marketplace),
            processed=False,
        )
        if upload_date is not None:
            values["upload_date"] = upload_date
        with self.engine.begin() as conn:
            conn.execute(insert(reports_table).values(**values))
        return report_id

    def get_report(self, report_id: str) -> Optional[Dict[str, Any]]:
        with self.engine.connect() as conn:
            row = conn.execute(select(reports_table).where(reports_table.c.id == report_id)).mappings().first()
        return dict(row) if row else None

    def list_report_sales(self, report_id: str) -> List[AnalyzedSaleRow]:
        stmt = (
            select(sales_table)
            .where(sales_table.c.report_id == report_id)
            .order_by(sales_table.c.sale_date, sales_table.c.id)
        )
        with self.engine.connect() as conn:
            return [_row_from_record(r) for r in conn.execute(stmt).mappings()]

    def list_reports_without_sales(self) -> List[Dict[str, Any]]:
        has_sales = exists().where(sales_table.c.report_id == reports_table.c.id)
        stmt = select(reports_table).where(~has_sales).order_by(reports_table.c.upload_date)
        with self.engine.connect() as conn:
            return [dict(r) for r in conn.execute(stmt).mappings()]

    def replace_report_sales(self, report_id: str, rows: Sequence[AnalyzedSaleRow]) -> ReportTotals:
        """Replace the report's rows and set its totals, atomically."""
        rows = list(rows)
        totals = compute_report_totals(rows)
        with self.engine.begin() as conn:
            deleted = delete_report_sales(conn, report_id)
            inserted = insert_sales_batch(conn, report_id, rows, self.batch_size)
            update_report_status(conn, report_id, processed=inserted > 0, totals=totals)
        logger.info(
            "report %s: replaced %s rows with %s, revenue=%s profit=%s",
            report_id,
            deleted,
            inserted,
            totals.total_revenue,
            totals.total_profit,
        )
        return totals

    def mark_unprocessed(self, report_id: str) -> None:
        with self.engine.begin() as conn:
            update_report_status(conn, report_id, processed=False)

    def get_report_analytics(self, report_id: str) -> ReportAnalytics:
        if self.get_report(report_id) is None:
            raise ReportNotFound(report_id)
        return build_report_analytics(self.list_report_sales(report_id))

    def get_user_analytics(
        self,
        user_id: str,
        period: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> ReportAnalytics:
        """Dashboard over every report of user_id uploaded within period (7d, 30d, 90d)."""
        stmt = (
            select(sales_table)
            .join(reports_table, reports_table.c.id == sales_table.c.report_id)
            .where(reports_table.c.user_id == user_id)
            .order_by(sales_table.c.sale_date, sales_table.c.id)
        )
        since = period_start(period, now)
        if since is not None:
            stmt = stmt.where(reports_table.c.upload_date >= since)
        with self.engine.connect() as conn:
            rows = [_row_from_record(r) for r in conn.execute(stmt).mappings()]
        logger.debug("user %s analytics: period=%s since=%s rows=%s", user_id, period, since, len(rows))
        return build_report_analytics(rows)
