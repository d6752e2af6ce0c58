"""Line-level repair of corrupted delimited exports.

Seller exports seen in the wild merge several rows onto one physical line,
mix tab- and comma-delimited fragments, carry product names with unescaped
quotes and let product-name text leak into the date or SKU column.

Repair runs on the text lines of the file before they reach the CSV reader.
Each stage takes one line and returns zero or more candidate lines; an empty
result means the line is dropped (logged with its prefix), never guessed at:

  1. anchor_to_date         data line must start with a D.M.YYYY token
  2. reject_corrupted       noise in the date/SKU positions drops the line
  3. split_merged_line      two or more record dates: one candidate per date
  4. repair_quotes          re-quote fields so the CSV reader round-trips them
  5. strip_line_artifacts   trim merge leftovers off the product name

Stages 1-3 only apply when the sale date is the first column of the file.
A line is split (3) before the corruption gate (2) runs, so each half of a
merged line is judged on its own. When no piece is usable and the whole line
fits the header, the line is kept unsplit (a date inside a product name).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Iterator, List, Optional, Tuple

from marketplace_analytics.services.sales_import.diagnostics import IngestionDiagnostics
from marketplace_analytics.services.sales_import.markers import (
    DATE_TOKEN_RE,
    MAX_MARKER_FIELD_LENGTH,
    find_noise_token,
    has_non_latin_letters,
    looks_like_free_text,
    starts_with_date_token,
)

logger = logging.getLogger(__name__)

MAX_CONTINUATION_LINES = 5


@dataclass(frozen=True)
class LineLayout:
    """Shape of a data line, derived from the header of the file."""

    delimiter: str = ","
    field_count: int = 0
    date_index: int = 0
    sku_index: int = 1
    name_index: int = 2
    min_fields: int = 3
    dates_per_row: int = 1

    @property
    def date_anchored(self) -> bool:
        return self.date_index == 0


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _strict_quoted_end(line: str, start: int, delimiter: str) -> int:
    # RFC 4180 reading: "" is an escaped quote, a lone quote closes the field
    j = start + 1
    n = len(line)
    while j < n:
        if line[j] == '"':
            if j + 1 < n and line[j + 1] == '"':
                j += 2
                continue
            if j + 1 == n or line[j + 1] == delimiter:
                return j
            return -1
        j += 1
    return -1


def _lenient_quoted_end(line: str, start: int, delimiter: str) -> int:
    j = start + 1
    n = len(line)
    while j < n:
        if line[j] == '"' and (j + 1 == n or line[j + 1] == delimiter):
            return j
        j += 1
    return -1


def _quoted_field_end(line: str, start: int, delimiter: str) -> int:
    """Index of the quote closing the field opened at start, or -1."""
    end = _strict_quoted_end(line, start, delimiter)
    if end == -1:
        end = _lenient_quoted_end(line, start, delimiter)
    return end


def split_fields(line: str, delimiter: str) -> List[str]:
    """Split a line into raw fields, keeping quotes, tolerating bad escaping.

    A quoted field is read with doubled-quote escaping first. When that does
    not yield a well-formed field, it ends at the first quote followed by the
    delimiter or the end of the line, and other quotes are content. An
    unterminated quoted field runs to the end of the line.
    """
    fields: List[str] = []
    i = 0
    n = len(line)
    while True:
        if i < n and line[i] == '"':
            j = _quoted_field_end(line, i, delimiter)
            if j == -1:
                fields.append(line[i:])
                return fields
            fields.append(line[i : j + 1])
            if j + 1 == n:
                return fields
            i = j + 2
            if i == n:
                fields.append("")
                return fields
        else:
            k = line.find(delimiter, i)
            if k == -1:
                fields.append(line[i:])
                return fields
            fields.append(line[i:k])
            i = k + 1


def _quoted_spans(line: str, delimiter: str) -> List[Tuple[int, int]]:
    spans = []
    offset = 0
    for raw in split_fields(line, delimiter):
        if raw.startswith('"'):
            spans.append((offset, offset + len(raw)))
        offset += len(raw) + len(delimiter)
    return spans


def unquote_field(raw: str) -> str:
    value = raw.strip()
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        value = value[1:-1]
    elif value.startswith('"'):
        value = value[1:]
    return value.replace('""', '"')


def quote_field(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def count_fields(line: str, delimiter: str) -> int:
    return len(split_fields(line, delimiter))


def is_unterminated(raw: str) -> bool:
    value = raw.strip()
    return value.startswith('"') and (len(value) == 1 or not value.endswith('"'))


def normalize_mixed_delimiters(line: str, delimiter: str) -> str:
    """Turn tabs outside quotes into the file delimiter."""
    if delimiter == "\t" or "\t" not in line:
        return line
    out = []
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        if ch == "\t" and not in_quotes:
            out.append(delimiter)
        else:
            out.append(ch)
    return "".join(out)


# ---------------------------------------------------------------------------
# Multi-line records
# ---------------------------------------------------------------------------


def _is_incomplete(line: str, layout: LineLayout) -> bool:
    if line.count('"') % 2 == 1:
        return True
    return layout.date_anchored and count_fields(line, layout.delimiter) < layout.min_fields


def rejoin_multiline_records(lines: Iterable[str], layout: LineLayout) -> List[str]:
    """Glue physical lines of one record (e.g. a product name with a line break).

    A line is continued while its quotes are unbalanced or it is short of
    fields, and the next line does not start a new dated record.
    """
    out: List[str] = []
    current: Optional[str] = None
    joined = 0
    for line in lines:
        if not line.strip():
            continue
        if current is None:
            current, joined = line, 0
            continue
        if (
            joined < MAX_CONTINUATION_LINES
            and _is_incomplete(current, layout)
            and not starts_with_date_token(line)
        ):
            current = current.rstrip() + " " + line.strip()
            joined += 1
            continue
        out.append(current)
        current, joined = line, 0
    if current is not None:
        out.append(current)
    return out


# ---------------------------------------------------------------------------
# Stage 1: line validity gate
# ---------------------------------------------------------------------------


def _anchor(line: str, layout: LineLayout) -> Tuple[Optional[str], Optional[str]]:
    candidate = line.strip()
    if not starts_with_date_token(candidate):
        m = DATE_TOKEN_RE.search(candidate)
        if not m:
            return None, "no_date_token"
        start = m.start()
        if start > 0 and candidate[start - 1] == '"':
            start -= 1
        logger.debug("discarded %s chars before first date token", start)
        candidate = candidate[start:]

    if count_fields(candidate, layout.delimiter) < layout.min_fields:
        return None, "too_few_fields"
    return candidate, None


def anchor_to_date(
    line: str,
    layout: LineLayout,
    diagnostics: Optional[IngestionDiagnostics] = None,
) -> List[str]:
    """Keep a line that starts with a date, recovering a leading-garbage prefix."""
    candidate, reason = _anchor(line, layout)
    if candidate is None:
        _drop(diagnostics, "anchor", reason, line)
        return []
    return [candidate]


# ---------------------------------------------------------------------------
# Stage 2: field-content corruption gate
# ---------------------------------------------------------------------------


def _marker_problem(raw: str, *, is_sku: bool) -> Optional[str]:
    if is_unterminated(raw):
        return "unterminated_quote"
    value = unquote_field(raw).strip()
    if not value:
        return "empty_field"
    if len(value) > MAX_MARKER_FIELD_LENGTH:
        return "overlong_field"
    if find_noise_token(value):
        return "noise_token"
    if is_sku and looks_like_free_text(value):
        return "free_text"
    if not is_sku and has_non_latin_letters(value):
        return "non_latin_text"
    return None


def _corruption(line: str, layout: LineLayout) -> Optional[str]:
    fields = split_fields(line, layout.delimiter)
    for index, label in ((layout.date_index, "date"), (layout.sku_index, "sku")):
        if index >= len(fields):
            return f"{label}_missing"
        problem = _marker_problem(fields[index], is_sku=label == "sku")
        if problem:
            return f"{label}_{problem}"
    return None


def reject_corrupted(
    line: str,
    layout: LineLayout,
    diagnostics: Optional[IngestionDiagnostics] = None,
) -> List[str]:
    """Drop a line whose date or SKU position holds something else."""
    reason = _corruption(line, layout)
    if reason:
        _drop(diagnostics, "corruption", reason, line)
        return []
    return [line]


def _passes_gates(line: str, layout: LineLayout) -> bool:
    candidate, _ = _anchor(line, layout)
    return candidate is not None and _corruption(candidate, layout) is None


# ---------------------------------------------------------------------------
# Stage 3: merged-row splitting
# ---------------------------------------------------------------------------


def _record_date_tokens(line: str, delimiter: str) -> List[re.Match]:
    # a date inside a quoted field only counts when it opens the field content
    spans = _quoted_spans(line, delimiter)
    tokens = []
    for m in DATE_TOKEN_RE.finditer(line):
        start = m.start()
        quoted = any(a < start < b for a, b in spans)
        if quoted and line[start - 1] != '"':
            continue
        tokens.append(m)
    return tokens


def split_merged_line(
    line: str,
    layout: LineLayout,
    diagnostics: Optional[IngestionDiagnostics] = None,
) -> List[str]:
    """Cut a line carrying several records at each record's leading date."""
    tokens = _record_date_tokens(line, layout.delimiter)
    per_row = max(1, layout.dates_per_row)
    if len(tokens) <= per_row:
        return [line]

    starts = []
    for idx in range(0, len(tokens), per_row):
        start = tokens[idx].start()
        if start > 0 and line[start - 1] == '"':
            start -= 1
        starts.append(start)
    starts[0] = 0

    segments = []
    for idx, start in enumerate(starts):
        end = starts[idx + 1] if idx + 1 < len(starts) else len(line)
        segment = line[start:end].strip().rstrip(layout.delimiter + " \t").strip()
        if segment:
            segments.append(segment)

    if diagnostics is not None and len(segments) > 1:
        diagnostics.record_line_split(len(segments))
    return segments


def _split_or_keep(
    line: str,
    layout: LineLayout,
    diagnostics: Optional[IngestionDiagnostics] = None,
) -> List[str]:
    """Split a merged line, unless the cut only produced unusable pieces.

    A date inside a product name looks like a record boundary too. When no
    piece is a valid record and the whole line is one (no wider than the
    header), the line is kept as it is.
    """
    segments = split_merged_line(line, layout)
    if len(segments) < 2:
        return segments
    if not any(_passes_gates(s, layout) for s in segments):
        fits = not layout.field_count or count_fields(line, layout.delimiter) <= layout.field_count
        if fits and _corruption(line, layout) is None:
            logger.debug("kept unsplit line with a date inside a field: %r", line[:80])
            return [line]
    if diagnostics is not None:
        diagnostics.record_line_split(len(segments))
    return segments


# ---------------------------------------------------------------------------
# Stage 4: quote repair
# ---------------------------------------------------------------------------

@lru_cache(maxsize=8)
def _trailing_quote_run_re(delimiter: str) -> re.Pattern:
    # ,"text"" -> ,"text"
    d = re.escape(delimiter)
    return re.compile(rf'(^|{d})"([^"]*)""+(?={d}|$)')


def repair_field_quotes(raw: str) -> str:
    """Return raw as a field the CSV reader parses back to its content."""
    if '"' not in raw:
        return raw
    value = raw.strip()
    if value.startswith('"'):
        inner = value[1:-1] if len(value) >= 2 and value.endswith('"') else value[1:]
        # accept already doubled quotes, then escape every quote once
        return quote_field(inner.replace('""', '"'))
    return quote_field(raw)


def repair_quotes(line: str, layout: LineLayout) -> str:
    line = _trailing_quote_run_re(layout.delimiter).sub(r'\1"\2"', line)
    fields = split_fields(line, layout.delimiter)
    repaired = [repair_field_quotes(f) for f in fields]
    result = layout.delimiter.join(repaired)
    if result != line:
        logger.debug("re-quoted fields: %r -> %r", line[:80], result[:80])
    return result


# ---------------------------------------------------------------------------
# Stage 5: product-name artifact stripping
# ---------------------------------------------------------------------------

_NAME_ARTIFACT_PATTERNS = (
    # ,12,3,4500,... numeric run left over from a merged row
    re.compile(r"(?:,\s*\d+(?:\.\d+)?){2,}\s*$"),
    # whitespace + date + anything: the next record glued to the name
    re.compile(r"\s+\d{1,2}\.\d{1,2}\.\d{4}[,;\t].*$", re.S),
    # comma run ending in a date
    re.compile(r",[\d,\s]*\d{1,2}\.\d{1,2}\.\d{4}.*$", re.S),
    # single large number (price/sku) after a comma
    re.compile(r",\s*\d{4,}(?:\.\d+)?\s*$"),
)


def strip_name_artifacts(name: str) -> str:
    """Trim merge leftovers (numbers, glued dates) from a product name.

    Newlines are kept on purpose: a name with an embedded line break is a
    corruption signal for the mapper. If nothing plausible is left, the
    original value is returned unchanged.
    """
    if not name:
        return name
    cleaned = name.strip()
    if cleaned.startswith('"'):
        cleaned = cleaned[1:]
    if cleaned.endswith('"'):
        cleaned = cleaned[:-1]
    cleaned = cleaned.replace('""', '"')

    for pattern in _NAME_ARTIFACT_PATTERNS:
        cleaned = pattern.sub("", cleaned)

    cleaned = re.sub(r"[ \t]+", " ", cleaned).strip()
    cleaned = re.sub(r'[",\s]+$', "", cleaned)
    if not cleaned:
        return name.strip()
    return cleaned


def strip_line_artifacts(line: str, layout: LineLayout) -> str:
    fields = split_fields(line, layout.delimiter)
    if layout.name_index >= len(fields):
        return line
    raw = fields[layout.name_index]
    original = unquote_field(raw)
    cleaned = strip_name_artifacts(original)
    if cleaned == original.strip():
        return line
    logger.debug("cleaned product name: %r -> %r", original[:50], cleaned)
    fields[layout.name_index] = quote_field(cleaned)
    return layout.delimiter.join(fields)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def repair_line(
    line: str,
    layout: LineLayout,
    diagnostics: Optional[IngestionDiagnostics] = None,
) -> List[str]:
    """Run every stage over one data line; returns zero or more clean lines."""
    line = normalize_mixed_delimiters(line, layout.delimiter)

    candidates = [line]
    if layout.date_anchored:
        candidates = []
        for anchored in anchor_to_date(line, layout, diagnostics):
            for segment in _split_or_keep(anchored, layout, diagnostics):
                for valid in anchor_to_date(segment, layout, diagnostics):
                    candidates.extend(reject_corrupted(valid, layout, diagnostics))

    return [strip_line_artifacts(repair_quotes(c, layout), layout) for c in candidates]


def repair_lines(
    lines: Iterable[str],
    layout: LineLayout,
    diagnostics: Optional[IngestionDiagnostics] = None,
) -> Iterator[str]:
    lines = (normalize_mixed_delimiters(line, layout.delimiter) for line in lines)
    for line in rejoin_multiline_records(lines, layout):
        yield from repair_line(line, layout, diagnostics)


def _drop(diagnostics: Optional[IngestionDiagnostics], stage: str, reason: str, line: str) -> None:
    if diagnostics is not None:
        diagnostics.record_line_drop(stage, reason, line)
    else:
        logger.warning("line dropped stage=%s reason=%s raw=%r", stage, reason, line[:80])
