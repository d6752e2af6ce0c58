#!/usr/bin/env python3
"""Ingest one sales report file synchronously (no Celery worker needed).

Usage:
    python scripts/process_report_file.py PATH --marketplace WILDBERRIES [--report-id ID] [--create-report]
"""

from __future__ import annotations

import argparse
import json
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
from marketplace_analytics.services.sales_import.records import Marketplace


def main() -> int:
    parser = argparse.ArgumentParser(description="Ingest a marketplace sales report file")
    parser.add_argument("path", help="CSV/XLSX/XLS report file")
    parser.add_argument(
        "--marketplace",
        required=True,
        choices=[m.value for m in Marketplace],
        help="Marketplace the report was exported from",
    )
    parser.add_argument("--report-id", help="Existing report ID (required unless --create-report)")
    parser.add_argument("--create-report", action="store_true", help="Create the report row first")
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    store = SqlReportStore(engine)
    report_id = args.report_id
    if args.create_report:
        report_id = store.create_report(os.path.basename(args.path), args.marketplace, report_id=report_id)
        print(f"Created report {report_id}")
    elif not report_id:
        parser.error("--report-id is required unless --create-report is given")

    try:
        result = ingest_report_file(store, report_id, args.path, args.marketplace)
    except SalesImportError as e:
        print(f"Ingestion failed: {e}", file=sys.stderr)
        return 1

    print(json.dumps(result.as_dict(), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
