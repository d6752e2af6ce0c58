"""Row-level counters for one ingestion run (advisory, logged only)."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

RAW_PREFIX_LENGTH = 80
MAX_SAMPLES = 20


def raw_prefix(value: object, length: int = RAW_PREFIX_LENGTH) -> str:
    text = "" if value is None else str(value)
    text = text.replace("\n", "\\n")
    return text if len(text) <= length else text[:length] + "..."


@dataclass
class IngestionDiagnostics:
    lines_dropped: int = 0
    lines_split: int = 0
    rows_seen: int = 0
    rows_mapped: int = 0
    rows_analyzed: int = 0
    drop_reasons: Counter = field(default_factory=Counter)
    samples: List[Dict[str, str]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def rows_dropped(self) -> int:
        return self.rows_seen - self.rows_analyzed

    def record_line_drop(self, stage: str, reason: str, line: str) -> None:
        with self._lock:
            self.lines_dropped += 1
            self._record(f"{stage}:{reason}", line)
        logger.warning("line dropped stage=%s reason=%s raw=%r", stage, reason, raw_prefix(line))

    def record_line_split(self, parts: int) -> None:
        with self._lock:
            self.lines_split += 1
        logger.debug("merged line split into %s candidates", parts)

    def record_seen(self, count: int = 1) -> None:
        with self._lock:
            self.rows_seen += count

    def record_mapped(self) -> None:
        with self._lock:
            self.rows_mapped += 1

    def record_analyzed(self) -> None:
        with self._lock:
            self.rows_analyzed += 1

    def record_row_drop(self, reason: str, raw: object) -> None:
        with self._lock:
            self._record(reason, raw)
        logger.warning("row dropped reason=%s raw=%r", reason, raw_prefix(raw))

    def _record(self, reason: str, raw: object) -> None:
        self.drop_reasons[reason] += 1
        if len(self.samples) < MAX_SAMPLES:
            self.samples.append({"reason": reason, "raw": raw_prefix(raw)})

    def as_dict(self) -> Dict[str, Any]:
        return {
            "lines_dropped": self.lines_dropped,
            "lines_split": self.lines_split,
            "rows_seen": self.rows_seen,
            "rows_mapped": self.rows_mapped,
            "rows_analyzed": self.rows_analyzed,
            "rows_dropped": self.rows_dropped,
            "drop_reasons": dict(self.drop_reasons),
        }
