"""Celery task that ingests one uploaded sales report file."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

from marketplace_analytics import settings
from marketplace_analytics.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="marketplace_analytics.tasks.file_parsing.parse_report_file", acks_late=True)
def parse_report_file(report_id: str, file_path: str, marketplace: str) -> Dict[str, Any]:
    """Decode, analyze and persist a report file; delete it on success.

    Safe to redeliver: persistence replaces the report's rows.
    """
    from marketplace_analytics.db import engine
    from marketplace_analytics.db_reports import SqlReportStore
    from marketplace_analytics.services.sales_import.pipeline import ingest_report_file

    logger.info("parse_report_file start report_id=%s marketplace=%s file=%s", report_id, marketplace, file_path)

    try:
        result = ingest_report_file(SqlReportStore(engine), report_id, file_path, marketplace)
    except Exception as e:
        logger.exception("parse_report_file failed report_id=%s: %s", report_id, e)
        raise

    if settings.INGEST_DELETE_SOURCE_ON_SUCCESS:
        try:
            os.remove(file_path)
            logger.info("parse_report_file removed source file %s", file_path)
        except FileNotFoundError:
            logger.warning("parse_report_file source file already gone: %s", file_path)

    summary = result.as_dict()
    summary["status"] = "completed"
    logger.info("parse_report_file completed report_id=%s rows=%s", report_id, summary.get("rows_count"))
    return summary


def enqueue_report_file(report_id: str, file_path: str, marketplace: str):
    """Schedule ingestion of an uploaded file; returns the AsyncResult."""
    return parse_report_file.delay(report_id, file_path, str(marketplace))
