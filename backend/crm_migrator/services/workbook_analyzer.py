"""Header-row detection and column profiling for irregular CRM sheets.

Legacy exports put title banners, notes and blank spacer rows above the real
column labels, so the header row is located heuristically:

1. Scan the first ``HEADER_SCAN_ROWS`` rows. A row qualifies when it has at
   least three non-empty cells, at least one of them is text that is not just
   digits, and either two or more domain keywords appear in it or it has five
   or more non-empty cells.
2. For the well-known CRM sheets, fall back to rows 1-3 containing any of a
   short keyword list.
3. Otherwise row 0.

Columns are then profiled over the first ``SAMPLE_ROWS`` data rows. Columns
without a single populated sample are dropped.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from crm_migrator.services.cells import Boolean, Cell, DateValue, Number, Text, is_empty, resolve, row_cell
from crm_migrator.services.errors import EmptySheetError
from crm_migrator.services.workbook_reader import SheetMatrix

logger = logging.getLogger(__name__)

HEADER_SCAN_ROWS = 10
SAMPLE_ROWS = 100
MAX_SAMPLE_VALUES = 3

HEADER_KEYWORDS = (
    "name", "organization", "contact", "email", "phone", "date",
    "priority", "status", "stage", "type", "manager", "opportunity",
    "interaction", "notes", "address", "city", "state",
)

FALLBACK_SHEETS = {"Organizations", "Contacts", "Opportunities", "Interactions"}
FALLBACK_KEYWORDS = ("organization", "contact", "priority", "email")
FALLBACK_ROWS = range(1, 4)

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}|^\d{1,2}/\d{1,2}/\d{2,4}")
EMAIL_RE = re.compile(r"^[\w._%+-]+@[\w.-]+\.[A-Z]{2,}$", re.IGNORECASE)
PHONE_RE = re.compile(r"^\+?\d[\d\s()-]+$")
NUMBER_RE = re.compile(r"^[-+]?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?$")


class ColumnDataType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    EMAIL = "email"
    PHONE = "phone"
    UNKNOWN = "unknown"


@dataclass
class ColumnProfile:
    index: int
    header: str
    data_type: ColumnDataType
    sample_values: list[str] = field(default_factory=list)
    non_empty_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "header": self.header,
            "dataType": self.data_type.value,
            "sampleValues": list(self.sample_values),
            "nonEmptyCount": self.non_empty_count,
        }


@dataclass
class AnalyzedSheet:
    name: str
    rows: list[list[Cell]]
    header_row_index: int
    headers: list[str]
    column_profiles: list[ColumnProfile]

    @property
    def data_start_row(self) -> int:
        return self.header_row_index + 1

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    @property
    def data_rows(self) -> int:
        return max(0, self.total_rows - self.data_start_row)

    def iter_data_rows(self) -> Iterable[tuple[int, list[Cell]]]:
        for idx in range(self.data_start_row, self.total_rows):
            yield idx, self.rows[idx]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "headerRowIndex": self.header_row_index,
            "dataStartRow": self.data_start_row,
            "totalRows": self.total_rows,
            "dataRows": self.data_rows,
            "headers": list(self.headers),
            "columnProfiles": [p.to_dict() for p in self.column_profiles],
        }


def infer_data_type(cell: Cell) -> ColumnDataType:
    cell = resolve(cell)
    if isinstance(cell, DateValue):
        return ColumnDataType.DATE
    if isinstance(cell, Number):
        return ColumnDataType.NUMBER
    if isinstance(cell, Boolean) or not isinstance(cell, Text):
        return ColumnDataType.UNKNOWN

    value = cell.value
    if DATE_RE.match(value):
        return ColumnDataType.DATE
    if EMAIL_RE.match(value):
        return ColumnDataType.EMAIL
    if PHONE_RE.match(value):
        return ColumnDataType.PHONE
    if NUMBER_RE.match(value):
        return ColumnDataType.NUMBER
    return ColumnDataType.STRING


def _header_label(cell: Cell, index: int) -> str:
    text = cell.text().strip()
    return text if text else f"Column{index + 1}"


def _is_textual(cell: Cell) -> bool:
    cell = resolve(cell)
    if not isinstance(cell, Text):
        return False
    value = cell.value
    return len(value) > 2 and not value.isdigit()


class WorkbookAnalyzer:
    def __init__(
        self,
        *,
        header_keywords: Iterable[str] = HEADER_KEYWORDS,
        scan_rows: int = HEADER_SCAN_ROWS,
        sample_rows: int = SAMPLE_ROWS,
    ) -> None:
        self.header_keywords = tuple(k.lower() for k in header_keywords)
        self.scan_rows = max(1, scan_rows)
        self.sample_rows = max(1, sample_rows)

    def analyze(self, sheet: SheetMatrix) -> AnalyzedSheet:
        rows = sheet.rows
        if not rows or all(is_empty(c) for row in rows for c in row):
            raise EmptySheetError(f"Sheet '{sheet.name}' is empty")

        header_row_index = self.find_header_row(rows, sheet.name)
        headers = [_header_label(c, idx) for idx, c in enumerate(rows[header_row_index])]
        profiles = self.profile_columns(rows, header_row_index, headers)

        logger.info(
            "workbook_analyzer.sheet name=%s header_row=%s data_rows=%s columns=%s",
            sheet.name,
            header_row_index,
            max(0, len(rows) - header_row_index - 1),
            len(profiles),
        )
        return AnalyzedSheet(
            name=sheet.name,
            rows=rows,
            header_row_index=header_row_index,
            headers=headers,
            column_profiles=profiles,
        )

    def find_header_row(self, rows: list[list[Cell]], sheet_name: str) -> int:
        for idx in range(min(self.scan_rows, len(rows))):
            if self._qualifies_as_header(rows[idx]):
                return idx

        if sheet_name in FALLBACK_SHEETS:
            for idx in FALLBACK_ROWS:
                if idx >= len(rows):
                    break
                row_text = " ".join(c.text() for c in rows[idx]).lower()
                if any(kw in row_text for kw in FALLBACK_KEYWORDS):
                    return idx

        return 0

    def _qualifies_as_header(self, row: list[Cell]) -> bool:
        non_empty = [c for c in row if not is_empty(c)]
        if len(non_empty) < 3:
            return False
        if not any(_is_textual(c) for c in non_empty):
            return False

        row_text = " ".join(c.text() for c in non_empty).lower()
        keyword_matches = sum(1 for kw in self.header_keywords if kw in row_text)
        return keyword_matches >= 2 or len(non_empty) >= 5

    def profile_columns(
        self,
        rows: list[list[Cell]],
        header_row_index: int,
        headers: list[str],
    ) -> list[ColumnProfile]:
        start = header_row_index + 1
        end = min(start + self.sample_rows, len(rows))

        profiles: list[ColumnProfile] = []
        for col_idx, header in enumerate(headers):
            samples: list[Cell] = []
            non_empty = 0
            for row_idx in range(start, end):
                cell = row_cell(rows[row_idx], col_idx)
                if is_empty(cell):
                    continue
                non_empty += 1
                if len(samples) < MAX_SAMPLE_VALUES:
                    samples.append(cell)

            if non_empty == 0:
                continue

            profiles.append(
                ColumnProfile(
                    index=col_idx,
                    header=header,
                    data_type=infer_data_type(samples[0]),
                    sample_values=[c.text() for c in samples],
                    non_empty_count=non_empty,
                )
            )
        return profiles
