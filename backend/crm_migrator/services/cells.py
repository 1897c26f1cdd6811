"""Typed spreadsheet cells.

Raw reader values are resolved once, at ingestion, into one of a closed set of
cell variants. Everything downstream (analysis, mapping, transformation) works
on these variants instead of untyped values.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Union


@dataclass(frozen=True)
class Empty:
    def text(self) -> str:
        return ""


@dataclass(frozen=True)
class Text:
    value: str

    def text(self) -> str:
        return self.value


@dataclass(frozen=True)
class Number:
    value: float

    def text(self) -> str:
        if isinstance(self.value, float) and self.value.is_integer():
            return str(int(self.value))
        return str(self.value)


@dataclass(frozen=True)
class Boolean:
    value: bool

    def text(self) -> str:
        return "true" if self.value else "false"


@dataclass(frozen=True)
class DateValue:
    value: datetime

    def text(self) -> str:
        if self.value.time() == time():
            return self.value.date().isoformat()
        return self.value.isoformat()


@dataclass(frozen=True)
class FormulaResult:
    formula: str
    result: "Cell"

    def text(self) -> str:
        return self.result.text()


Cell = Union[Empty, Text, Number, Boolean, DateValue, FormulaResult]

EMPTY = Empty()


def to_cell(raw: Any, formula: str | None = None) -> Cell:
    """Resolve a raw reader value (and its formula, if any) into a typed cell."""
    value = _value_cell(raw)
    if formula:
        return FormulaResult(formula=formula, result=value)
    return value


def _value_cell(raw: Any) -> Cell:
    if raw is None:
        return EMPTY
    if isinstance(raw, bool):
        return Boolean(raw)
    if isinstance(raw, (int, float, Decimal)):
        number = float(raw) if isinstance(raw, Decimal) else raw
        if isinstance(number, float) and (math.isnan(number) or math.isinf(number)):
            return EMPTY
        return Number(number)
    if isinstance(raw, datetime):
        return DateValue(raw)
    if isinstance(raw, date):
        return DateValue(datetime.combine(raw, time()))
    if isinstance(raw, time):
        return Text(raw.isoformat())
    text = str(raw).strip()
    if not text:
        return EMPTY
    return Text(text)


def resolve(cell: Cell) -> Cell:
    """Unwrap formula results down to the value the formula produced."""
    while isinstance(cell, FormulaResult):
        cell = cell.result
    return cell


def is_empty(cell: Cell) -> bool:
    return isinstance(resolve(cell), Empty)


def cell_value(cell: Cell) -> Any:
    """Plain Python value of a cell, None for empty cells."""
    cell = resolve(cell)
    if isinstance(cell, Empty):
        return None
    return cell.value


def row_cell(row: list[Cell], index: int) -> Cell:
    if 0 <= index < len(row):
        return row[index]
    return EMPTY
