from __future__ import annotations

import csv
import io
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from crm_migrator.services.cells import Cell, is_empty, to_cell
from crm_migrator.services.errors import UnsupportedWorkbookError

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = {"xlsx", "xlsm"}
CSV_EXTENSIONS = {"csv"}


@dataclass
class SheetMatrix:
    """One sheet as a 2-D matrix of typed cells."""

    name: str
    rows: list[list[Cell]] = field(default_factory=list)


@dataclass
class Workbook:
    name: str
    sheets: list[SheetMatrix] = field(default_factory=list)

    @property
    def sheet_names(self) -> list[str]:
        return [s.name for s in self.sheets]

    def sheet(self, name: str) -> SheetMatrix | None:
        for s in self.sheets:
            if s.name == name:
                return s
        return None


def read_workbook(source: str | Path | bytes, filename: str | None = None) -> Workbook:
    """Read an .xlsx/.xlsm/.csv workbook from a path or raw bytes."""
    if isinstance(source, (str, Path)):
        path = Path(source)
        filename = filename or path.name
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise UnsupportedWorkbookError(f"Workbook not readable: {path} ({exc})") from exc
    else:
        data = source

    name = filename or "workbook"
    ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""

    if ext in EXCEL_EXTENSIONS:
        workbook = _read_excel(data, name)
    elif ext in CSV_EXTENSIONS:
        workbook = _read_csv(data, name)
    else:
        raise UnsupportedWorkbookError(f"Unsupported file type: .{ext} (expected .xlsx or .csv)")

    logger.info(
        "workbook_reader.read name=%s sheets=%s rows=%s",
        name,
        len(workbook.sheets),
        sum(len(s.rows) for s in workbook.sheets),
    )
    return workbook


def _read_excel(data: bytes, name: str) -> Workbook:
    try:
        values_wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        formulas_wb = load_workbook(io.BytesIO(data), read_only=True, data_only=False)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise UnsupportedWorkbookError(f"Cannot open workbook {name}: {exc}") from exc

    sheets: list[SheetMatrix] = []
    try:
        for ws in values_wb.worksheets:
            formula_rows = formulas_wb[ws.title].iter_rows(values_only=True)
            rows: list[list[Cell]] = []
            for values in ws.iter_rows(values_only=True):
                formulas = next(formula_rows, ())
                rows.append([
                    to_cell(value, _formula_text(formulas[idx] if idx < len(formulas) else None))
                    for idx, value in enumerate(values)
                ])
            sheets.append(SheetMatrix(name=ws.title, rows=_trim_trailing_blank_rows(rows)))
    finally:
        values_wb.close()
        formulas_wb.close()

    return Workbook(name=name, sheets=sheets)


def _formula_text(raw: Any) -> str | None:
    text = getattr(raw, "text", raw)
    if isinstance(text, str) and text.startswith("="):
        return text
    return None


def _decode_csv_bytes(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("latin-1")


def _read_csv(data: bytes, name: str) -> Workbook:
    reader = csv.reader(io.StringIO(_decode_csv_bytes(data)))
    rows = [[to_cell(value) for value in record] for record in reader]
    sheet_name = Path(name).stem or "Sheet1"
    return Workbook(name=name, sheets=[SheetMatrix(name=sheet_name, rows=_trim_trailing_blank_rows(rows))])


def _trim_trailing_blank_rows(rows: list[list[Cell]]) -> list[list[Cell]]:
    end = len(rows)
    while end > 0 and all(is_empty(c) for c in rows[end - 1]):
        end -= 1
    return rows[:end]
