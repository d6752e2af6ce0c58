"""Decode uploaded report files into raw row mappings (header -> cell value).

Supported inputs:
  - .csv   delimited text, UTF-8 (BOM tolerated) or Windows-1251
  - .xlsx  first worksheet, via openpyxl
  - .xls   first worksheet, via xlrd

Delimited text goes through the line repair stages (see repair.py) before the
CSV reader sees it. Spreadsheet cells are already structured and are returned
as-is (dates as date/datetime, numbers as int/float).
"""

from __future__ import annotations

import csv
import io
import logging
import os
from typing import Any, Dict, List, Optional, Sequence

from marketplace_analytics.services.sales_import.diagnostics import IngestionDiagnostics
from marketplace_analytics.services.sales_import.errors import UnsupportedFormat
from marketplace_analytics.services.sales_import.mapper import REQUIRED_FIELDS, column_index
from marketplace_analytics.services.sales_import.repair import LineLayout, repair_lines

logger = logging.getLogger(__name__)

CSV_EXTENSIONS = (".csv",)
XLSX_EXTENSIONS = (".xlsx",)
XLS_EXTENSIONS = (".xls",)
SUPPORTED_EXTENSIONS = CSV_EXTENSIONS + XLSX_EXTENSIONS + XLS_EXTENSIONS

DELIMITER_SAMPLE_LINES = 5
FALLBACK_ENCODING = "cp1251"

RawRow = Dict[str, Any]


def extension_of(path: str) -> str:
    return os.path.splitext(path)[1].lower()


def _normalize_extension(extension: str) -> str:
    ext = (extension or "").strip().lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    return ext


def decode_text(content: bytes) -> str:
    """Bytes -> text with '\\n' line endings and no NUL characters."""
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.info("report is not valid UTF-8, decoding as %s", FALLBACK_ENCODING)
        text = content.decode(FALLBACK_ENCODING, errors="replace")
    text = text.replace("\x00", "")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def detect_delimiter(lines: Sequence[str]) -> str:
    sample = [line for line in lines if line.strip()][:DELIMITER_SAMPLE_LINES]
    semicolons = sum(line.count(";") for line in sample)
    commas = sum(line.count(",") for line in sample)
    return ";" if semicolons > commas else ","


def _is_date_column(name: str) -> bool:
    lowered = name.strip().lower()
    return "дата" in lowered or "date" in lowered


def layout_for_header(header: Sequence[str], delimiter: str) -> LineLayout:
    """Derive the repair layout (column positions, expected width) from a header."""
    positions = {field: column_index(header, field) for field in REQUIRED_FIELDS}
    found = [idx for idx in positions.values() if idx is not None]
    date_index = positions["date"] if positions["date"] is not None else 0
    sku_index = positions["sku"] if positions["sku"] is not None else 1
    name_index = positions["name"] if positions["name"] is not None else 2
    layout = LineLayout(
        delimiter=delimiter,
        field_count=len(header),
        date_index=date_index,
        sku_index=sku_index,
        name_index=name_index,
        min_fields=max(found) + 1 if found else 3,
        dates_per_row=max(1, sum(1 for h in header if _is_date_column(h))),
    )
    logger.debug("header layout: %s", layout)
    return layout


def _rows_from_values(header: List[str], rows: Sequence[Sequence[Any]]) -> List[RawRow]:
    out: List[RawRow] = []
    width = len(header)
    for values in rows:
        if not any(v is not None and str(v).strip() for v in values):
            continue
        padded = list(values[:width]) + [None] * (width - len(values))
        out.append({name: value for name, value in zip(header, padded) if name})
    return out


def decode_csv(content: bytes, diagnostics: Optional[IngestionDiagnostics] = None) -> List[RawRow]:
    text = decode_text(content)
    lines = text.split("\n")
    try:
        header_pos = next(i for i, line in enumerate(lines) if line.strip())
    except StopIteration:
        return []

    delimiter = detect_delimiter(lines[header_pos:])
    header = [h.strip() for h in next(csv.reader([lines[header_pos]], delimiter=delimiter))]
    layout = layout_for_header(header, delimiter)

    repaired = list(repair_lines(lines[header_pos + 1 :], layout, diagnostics))
    reader = csv.reader(io.StringIO("\n".join(repaired)), delimiter=delimiter)
    rows = [[v if v != "" else None for v in values] for values in reader]
    logger.info(
        "decoded csv: delimiter=%r columns=%s data_lines=%s rows=%s",
        delimiter,
        len(header),
        len(lines) - header_pos - 1,
        len(rows),
    )
    return _rows_from_values(header, rows)


def _header_cells(values: Sequence[Any]) -> List[str]:
    return [str(v).strip() if v is not None else "" for v in values]


def decode_xlsx(content: bytes) -> List[RawRow]:
    from openpyxl import load_workbook

    wb = load_workbook(filename=io.BytesIO(content), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        rows_iter = ws.iter_rows(values_only=True)
        header: Optional[List[str]] = None
        body: List[Sequence[Any]] = []
        for values in rows_iter:
            if header is None:
                if any(v is not None and str(v).strip() for v in values):
                    header = _header_cells(values)
                continue
            body.append(values)
    finally:
        wb.close()

    if header is None:
        return []
    logger.info("decoded xlsx: columns=%s rows=%s", len(header), len(body))
    return _rows_from_values(header, body)


def decode_xls(content: bytes) -> List[RawRow]:
    import xlrd

    book = xlrd.open_workbook(file_contents=content)
    sheet = book.sheet_by_index(0)

    def cell_value(cell: Any) -> Any:
        if cell.ctype == xlrd.XL_CELL_EMPTY:
            return None
        if cell.ctype == xlrd.XL_CELL_DATE:
            return xlrd.xldate.xldate_as_datetime(cell.value, book.datemode)
        return cell.value

    header: Optional[List[str]] = None
    body: List[List[Any]] = []
    for r in range(sheet.nrows):
        values = [cell_value(c) for c in sheet.row(r)]
        if header is None:
            if any(v is not None and str(v).strip() for v in values):
                header = _header_cells(values)
            continue
        body.append(values)

    if header is None:
        return []
    logger.info("decoded xls: columns=%s rows=%s", len(header), len(body))
    return _rows_from_values(header, body)


def decode_file(
    content: bytes,
    extension: str,
    diagnostics: Optional[IngestionDiagnostics] = None,
) -> List[RawRow]:
    """Decode a whole file or fail; never returns a partially decoded file."""
    ext = _normalize_extension(extension)
    if ext in CSV_EXTENSIONS:
        return decode_csv(content, diagnostics)
    if ext in XLSX_EXTENSIONS:
        return decode_xlsx(content)
    if ext in XLS_EXTENSIONS:
        return decode_xls(content)
    raise UnsupportedFormat(extension)
