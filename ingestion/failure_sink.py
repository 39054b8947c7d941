"""
Collects rows rejected at any stage and writes them out as a report.
"""

import json
import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional

import pandas as pd


logger = logging.getLogger(__name__)

REASON_COLUMN = "error_reason"


@dataclass(frozen=True)
class FailedRow:
    raw: Dict[str, Any]
    reason: str


def failed_report_key(source_key: str, folder: Optional[str] = None) -> str:
    """
    ``failing-companies/75/2024-01-01.csv`` -> ``failing-companies/75/2024-01-01_failed.csv``

    With ``folder`` the report is placed in that folder instead of next
    to the source file.
    """
    directory, _, name = source_key.rpartition("/")
    if name.lower().endswith(".csv"):
        name = name[:-4]
    name = f"{name}_failed.csv"
    if folder is not None:
        directory = folder.rstrip("/")
    return f"{directory}/{name}" if directory else name


class FailureSink:
    """
    In-memory accumulation of failed rows for one run.

    ``flush`` serializes them as a ``;``-delimited CSV with an
    ``error_reason`` column and hands it to the artifact store. A failed
    flush is logged and swallowed: losing the report never fails a run.
    """

    def __init__(self, store, report_key: str, log: Optional[logging.LoggerAdapter] = None):
        self.store = store
        self.report_key = report_key
        self.log = log or logger
        self._rows: List[FailedRow] = []

    def record(self, raw: Dict[str, Any], reason: str) -> None:
        self._rows.append(FailedRow(raw=dict(raw), reason=reason))

    @property
    def rows(self) -> List[FailedRow]:
        return list(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def to_csv(self) -> bytes:
        records = []
        for row in self._rows:
            flat = {
                key: json.dumps(value, default=str, ensure_ascii=False) if isinstance(value, (dict, list)) else value
                for key, value in row.raw.items()
                if key != REASON_COLUMN
            }
            flat[REASON_COLUMN] = row.reason
            records.append(flat)

        df = pd.DataFrame.from_records(records)
        columns = [c for c in df.columns if c != REASON_COLUMN] + [REASON_COLUMN]
        return df[columns].to_csv(sep=";", index=False).encode("utf-8")

    def flush(self) -> Optional[str]:
        """Write the report; returns its locator, or None when empty or on failure."""
        if not self._rows:
            return None

        count = len(self._rows)
        try:
            locator = self.store.put(self.report_key, self.to_csv())
        except Exception as e:
            self.log.error(f"Failed to write failure report {self.report_key}: {e}")
            return None

        self._rows.clear()
        self.log.warning(f"Wrote {count} failed row(s) to {locator}")
        return locator
