#!/usr/bin/env python3
"""Re-run ingestion for reports that have no sales rows yet.

The uploaded file is looked up as UPLOAD_DEST/<report_id>_<file_name>.
Reports whose file is missing are listed and skipped.

Usage:
    python scripts/reprocess_pending_reports.py [--dry-run]
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

# Add src directory to path to import marketplace_analytics modules
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from marketplace_analytics import settings
from marketplace_analytics.db import engine
from marketplace_analytics.db_reports import SqlReportStore
from marketplace_analytics.services.sales_import.errors import SalesImportError
from marketplace_analytics.services.sales_import.pipeline import ingest_report_file

logger = logging.getLogger(__name__)


def upload_path(report: dict, upload_dest: str = settings.UPLOAD_DEST) -> str:
    return os.path.join(upload_dest, f"{report['id']}_{report['file_name']}")


def reprocess_pending_reports(store: SqlReportStore, dry_run: bool = False) -> dict:
    """Ingest every report without sales rows whose upload is still on disk.

    Returns counters: pending, processed, failed, missing_file.
    """
    pending = store.list_reports_without_sales()
    stats = {"pending": len(pending), "processed": 0, "failed": 0, "missing_file": 0}
    if not pending:
        print("No pending reports found")
        return stats

    print(f"Found {len(pending)} pending report(s):")
    for report in pending:
        path = upload_path(report)
        if not os.path.exists(path):
            print(f"  Report {report['id']}: file not found ({path}), skipped")
            stats["missing_file"] += 1
            continue

        if dry_run:
            print(f"  Report {report['id']}: would ingest {path} as {report['marketplace']}")
            continue

        try:
            result = ingest_report_file(store, report["id"], path, report["marketplace"])
        except SalesImportError as e:
            print(f"  Report {report['id']}: failed: {e}")
            stats["failed"] += 1
            continue
        print(f"  Report {report['id']}: {result.totals.rows_count} rows, revenue={result.totals.total_revenue}")
        stats["processed"] += 1

    if dry_run:
        print("\n[DRY RUN] Run without --dry-run to ingest these reports.")
    return stats


def main() -> int:
    parser = argparse.ArgumentParser(description="Reprocess reports without sales data")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be ingested")
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    stats = reprocess_pending_reports(SqlReportStore(engine), dry_run=args.dry_run)
    print(stats)
    return 1 if stats["failed"] else 0


if __name__ == "__main__":
    sys.exit(main())
