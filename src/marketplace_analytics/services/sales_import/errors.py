"""Exceptions raised by the sales report import pipeline.

Only file-level and transaction-level failures propagate to callers.
Row-level problems are reported as drops (see diagnostics) and never raised
out of a batch.
"""

from __future__ import annotations

from typing import Any, Optional


class SalesImportError(Exception):
    """Base class for sales import failures."""


class UnsupportedFormat(SalesImportError):
    """File extension is not one of .csv, .xlsx, .xls."""

    def __init__(self, extension: str):
        self.extension = extension
        super().__init__(f"Unsupported file format: {extension or 'unknown'}")


class NoValidRows(SalesImportError):
    """Every row of the file was dropped during mapping or computation."""

    def __init__(self, diagnostics: Optional[Any] = None):
        self.diagnostics = diagnostics
        detail = ""
        if diagnostics is not None:
            detail = f" (rows seen={diagnostics.rows_seen}, dropped={diagnostics.rows_dropped})"
        super().__init__(f"No valid sales data found after processing{detail}")


class InvalidInput(SalesImportError):
    """Analytics input failed a basic shape check."""

    def __init__(self, field: str, value: Any = None, message: Optional[str] = None):
        self.field = field
        self.value = value
        super().__init__(message or f"Invalid {field}: {value!r}")


class ReportNotFound(SalesImportError):
    def __init__(self, report_id: str):
        self.report_id = report_id
        super().__init__(f"Report not found: {report_id}")


class PersistenceError(SalesImportError):
    """The atomic write of rows and report totals failed and was rolled back."""
