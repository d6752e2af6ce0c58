"""Ingestion run for one uploaded report file.

States: decoding -> mapping -> computing -> persisting -> done, or failed.

Row-level problems (unmappable row, analytics rejection, unexpected per-row
exception) drop the row and never leave this module. File-level problems
(unsupported format, decode failure, no surviving rows) and persistence
failures mark the report unprocessed and are re-raised to the caller.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from marketplace_analytics import settings
from marketplace_analytics.schemas.sales_import import IngestionJob
from marketplace_analytics.services.sales_import.analytics import AnalyticsCalculator
from marketplace_analytics.services.sales_import.decoder import RawRow, decode_file, extension_of
from marketplace_analytics.services.sales_import.diagnostics import IngestionDiagnostics
from marketplace_analytics.services.sales_import.errors import (
    InvalidInput,
    NoValidRows,
    PersistenceError,
)
from marketplace_analytics.services.sales_import.mapper import map_row
from marketplace_analytics.services.sales_import.records import (
    AnalyzedSaleRow,
    CanonicalSaleRow,
    Marketplace,
    ReportTotals,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class IngestionState(str, Enum):
    DECODING = "decoding"
    MAPPING = "mapping"
    COMPUTING = "computing"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class IngestionResult:
    report_id: str
    marketplace: Marketplace
    state: IngestionState = IngestionState.DECODING
    totals: Optional[ReportTotals] = None
    fee_schedule: Optional[str] = None
    diagnostics: IngestionDiagnostics = field(default_factory=IngestionDiagnostics)
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "report_id": self.report_id,
            "marketplace": self.marketplace.value,
            "state": self.state.value,
            "diagnostics": self.diagnostics.as_dict(),
        }
        if self.totals is not None:
            out.update(self.totals.as_dict())
        if self.fee_schedule:
            out["fee_schedule"] = self.fee_schedule
        if self.error:
            out["error"] = self.error
        return out


class IngestionPipeline:
    """Drive one file through decode, map, compute and persist.

    store is any object with replace_report_sales(report_id, rows) and
    mark_unprocessed(report_id); SqlReportStore in production.
    """

    def __init__(
        self,
        store: Any,
        calculator: Optional[AnalyticsCalculator] = None,
        max_workers: Optional[int] = None,
        today: Optional[date] = None,
    ):
        self.store = store
        self.calculator = calculator or AnalyticsCalculator()
        self.max_workers = max(1, max_workers or settings.INGEST_MAX_WORKERS)
        self.today = today

    def run(self, job: IngestionJob) -> IngestionResult:
        """Read job.file_path and ingest it into job.report_id."""
        extension = job.extension or extension_of(job.file_path)
        result = IngestionResult(report_id=job.report_id, marketplace=job.marketplace)
        try:
            with open(job.file_path, "rb") as f:
                content = f.read()
        except OSError as e:
            self._fail(result, e)
            raise
        return self._ingest(result, content, extension)

    def ingest(
        self,
        report_id: str,
        content: bytes,
        extension: str,
        marketplace: Any,
    ) -> IngestionResult:
        code = self.resolve_marketplace(report_id, marketplace)
        result = IngestionResult(report_id=report_id, marketplace=code)
        return self._ingest(result, content, extension)

    def resolve_marketplace(self, report_id: str, marketplace: Any) -> Marketplace:
        """Marketplace code for marketplace; an unknown one fails the report."""
        try:
            return Marketplace(str(marketplace).strip().upper())
        except ValueError as e:
            logger.error("ingestion failed: report_id=%s unknown marketplace %r", report_id, marketplace)
            self._mark_unprocessed(report_id)
            raise InvalidInput("marketplace", marketplace, f"Unknown marketplace: {marketplace}") from e

    def _ingest(self, result: IngestionResult, content: bytes, extension: str) -> IngestionResult:
        diagnostics = result.diagnostics
        logger.info(
            "ingestion started: report_id=%s marketplace=%s extension=%s bytes=%s",
            result.report_id,
            result.marketplace.value,
            extension,
            len(content),
        )
        try:
            raw_rows = decode_file(content, extension, diagnostics)
            diagnostics.record_seen(len(raw_rows))

            self._transition(result, IngestionState.MAPPING)
            mapped = self._settle(lambda raw: self._map_one(raw, result.marketplace, diagnostics), raw_rows)
            canonical = [row for row in mapped if row is not None]

            self._transition(result, IngestionState.COMPUTING)
            computed = self._settle(lambda row: self._compute_one(row, result.marketplace, diagnostics), canonical)
            analyzed = [row for row in computed if row is not None]

            if not analyzed:
                raise NoValidRows(diagnostics)
            result.fee_schedule = self.calculator.profile_for(result.marketplace).version
        except Exception as e:
            self._fail(result, e)
            raise

        self._transition(result, IngestionState.PERSISTING)
        try:
            result.totals = self.store.replace_report_sales(result.report_id, analyzed)
        except SQLAlchemyError as e:
            self._fail(result, e)
            raise PersistenceError(f"Failed to persist report {result.report_id}: {e}") from e
        except Exception as e:
            self._fail(result, e)
            raise

        self._transition(result, IngestionState.DONE)
        logger.info(
            "ingestion finished: report_id=%s rows=%s revenue=%s profit=%s fee_schedule=%s diagnostics=%s",
            result.report_id,
            result.totals.rows_count,
            result.totals.total_revenue,
            result.totals.total_profit,
            result.fee_schedule,
            diagnostics.as_dict(),
        )
        return result

    def _map_one(
        self,
        raw: RawRow,
        marketplace: Marketplace,
        diagnostics: IngestionDiagnostics,
    ) -> Optional[CanonicalSaleRow]:
        try:
            row, reason = map_row(raw, marketplace, today=self.today)
        except Exception:
            logger.exception("unexpected error mapping row: %r", raw)
            diagnostics.record_row_drop("map_error", raw)
            return None
        if row is None:
            diagnostics.record_row_drop(reason or "unmapped", raw)
            return None
        diagnostics.record_mapped()
        return row

    def _compute_one(
        self,
        row: CanonicalSaleRow,
        marketplace: Marketplace,
        diagnostics: IngestionDiagnostics,
    ) -> Optional[AnalyzedSaleRow]:
        try:
            analyzed = self.calculator.analyze(row, marketplace)
        except InvalidInput as e:
            diagnostics.record_row_drop(f"invalid_{e.field}", row)
            return None
        except Exception:
            logger.exception("unexpected error computing row sku=%s", row.sku)
            diagnostics.record_row_drop("compute_error", row)
            return None
        diagnostics.record_analyzed()
        return analyzed

    def _settle(self, fn: Callable[[T], Optional[R]], items: Sequence[T]) -> List[Optional[R]]:
        # fn never raises; every item gets an outcome before the stage ends
        if self.max_workers == 1 or len(items) < 2:
            return [fn(item) for item in items]
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(fn, items))

    def _transition(self, result: IngestionResult, state: IngestionState) -> None:
        logger.debug("report_id=%s: %s -> %s", result.report_id, result.state.value, state.value)
        result.state = state

    def _fail(self, result: IngestionResult, exc: BaseException) -> None:
        failed_in = result.state
        result.state = IngestionState.FAILED
        result.error = str(exc) or type(exc).__name__
        logger.error(
            "ingestion failed: report_id=%s stage=%s error=%s: %s",
            result.report_id,
            failed_in.value,
            type(exc).__name__,
            exc,
        )
        self._mark_unprocessed(result.report_id)

    def _mark_unprocessed(self, report_id: str) -> None:
        try:
            self.store.mark_unprocessed(report_id)
        except Exception:
            logger.exception("could not mark report %s unprocessed", report_id)


def ingest_report_file(
    store: Any,
    report_id: str,
    file_path: str,
    marketplace: Any,
    **pipeline_kwargs: Any,
) -> IngestionResult:
    pipeline = IngestionPipeline(store, **pipeline_kwargs)
    code = pipeline.resolve_marketplace(report_id, marketplace)
    job = IngestionJob(report_id=report_id, file_path=file_path, marketplace=code)
    return pipeline.run(job)
