"""Turn one mapped source row into the field values of one entity write.

Every transform takes a typed cell and returns a plain value or None when the
cell is empty. Values that cannot be coerced raise ``RowValidationError``;
the executor counts those rows as errored and moves on.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from crm_migrator.services.cells import Cell, DateValue, Number, Text, is_empty, resolve, row_cell
from crm_migrator.services.errors import RowValidationError
from crm_migrator.services.mapping_advisor import MappingSuggestion, TargetEntity

EXCEL_EPOCH = datetime(1970, 1, 1)
EXCEL_EPOCH_SERIAL = 25569

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%d.%m.%Y",
    "%B %d, %Y",
    "%b %d, %Y",
)

PRIORITY_CODES = {"A": "HIGH", "B": "MEDIUM", "C": "LOW", "D": "NONE"}
PRIORITY_WORDS = {"HIGH", "MEDIUM", "LOW", "NONE"}

ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NAME_SPLIT_RE = re.compile(r"[,\s]+")


def text_value(cell: Cell) -> str | None:
    if is_empty(cell):
        return None
    value = cell.text().strip()
    return value or None


def priority_value(cell: Cell) -> str:
    raw = text_value(cell)
    if raw is None:
        return "NONE"
    key = raw.upper()
    if key in PRIORITY_CODES:
        return PRIORITY_CODES[key]
    if key in PRIORITY_WORDS:
        return key
    raise RowValidationError(f"Invalid priority: {raw}")


def phone_value(cell: Cell) -> str | None:
    raw = text_value(cell)
    if raw is None:
        return None
    digits = re.sub(r"\D", "", raw)
    if not 10 <= len(digits) <= 15:
        raise RowValidationError(f"Invalid phone number: {raw}")
    return digits


def state_value(cell: Cell) -> str | None:
    raw = text_value(cell)
    return raw.upper() if raw else None


def zip_value(cell: Cell) -> str | None:
    raw = text_value(cell)
    if raw is None:
        return None
    # numeric cells drop leading zeros
    if isinstance(resolve(cell), Number) and raw.isdigit():
        raw = raw.zfill(5)
    if not ZIP_RE.match(raw):
        raise RowValidationError(f"Invalid zip code: {raw}")
    return raw


def email_value(cell: Cell) -> str | None:
    raw = text_value(cell)
    if raw is None:
        return None
    email = raw.lower()
    if not EMAIL_RE.match(email):
        raise RowValidationError(f"Invalid email: {raw}")
    return email


def status_value(cell: Cell) -> str:
    raw = (text_value(cell) or "").lower()
    if "won" in raw or "sold" in raw:
        return "CLOSED_WON"
    if "lost" in raw or "closed" in raw:
        return "CLOSED_LOST"
    return "OPEN"


_STAGE_RULES = (
    (("lead", "discovery"), "LEAD"),
    (("contact", "qualified"), "QUALIFIED"),
    (("proposal", "demo"), "PROPOSAL"),
    (("negotiation", "follow"), "NEGOTIATION"),
    (("closed", "sold"), "CLOSED"),
)


def stage_value(cell: Cell) -> str:
    raw = (text_value(cell) or "").lower()
    for needles, stage in _STAGE_RULES:
        if any(n in raw for n in needles):
            return stage
    return "LEAD"


_INTERACTION_RULES = (
    (("call", "phone"), "CALL"),
    (("email",), "EMAIL"),
    (("meeting", "person", "visit"), "MEETING"),
)


def interaction_type_value(cell: Cell) -> str:
    raw = (text_value(cell) or "").lower()
    for needles, kind in _INTERACTION_RULES:
        if any(n in raw for n in needles):
            return kind
    return "OTHER"


def number_value(cell: Cell) -> float | None:
    cell = resolve(cell)
    if is_empty(cell):
        return None
    if isinstance(cell, Number):
        return float(cell.value)
    raw = cell.text().strip().replace(",", "").replace("$", "").rstrip("%").strip()
    try:
        return float(raw)
    except ValueError:
        raise RowValidationError(f"Invalid number: {cell.text()}")


def money_value(cell: Cell) -> float:
    value = number_value(cell)
    return 0.0 if value is None else value


def probability_value(cell: Cell) -> float | None:
    value = number_value(cell)
    if value is None:
        return None
    if value <= 1:
        value *= 100
    if not 0 <= value <= 100:
        raise RowValidationError(f"Probability out of range: {cell.text()}")
    return value


def date_value(cell: Cell) -> datetime | None:
    cell = resolve(cell)
    if is_empty(cell):
        return None
    if isinstance(cell, DateValue):
        return cell.value
    if isinstance(cell, Number):
        try:
            return EXCEL_EPOCH + timedelta(days=float(cell.value) - EXCEL_EPOCH_SERIAL)
        except (OverflowError, ValueError):
            raise RowValidationError(f"Invalid date: {cell.text()}")
    if isinstance(cell, Text):
        raw = cell.value.strip()
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(raw, fmt)
            except ValueError:
                continue
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            pass
    raise RowValidationError(f"Invalid date: {cell.text()}")


def split_full_name(full_name: str) -> tuple[str, str]:
    """``"Jane Q Doe"`` -> ("Jane", "Q Doe"); ``"Doe, Jane"`` -> ("Jane", "Doe")."""
    if "," in full_name:
        last, _, first = full_name.partition(",")
        first_parts = [p for p in NAME_SPLIT_RE.split(first.strip()) if p]
        if first_parts:
            return " ".join(first_parts), last.strip()
    parts = [p for p in NAME_SPLIT_RE.split(full_name.strip()) if p]
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


# source field -> (record key, transform)
FieldSpec = dict[str, tuple[str, Callable[[Cell], Any]]]

ORGANIZATION_FIELDS: FieldSpec = {
    "name": ("name", text_value),
    "priority": ("priority", priority_value),
    "segment": ("segment", text_value),
    "distributor": ("distributor", text_value),
    "accountManager": ("account_manager", text_value),
    "phone": ("phone", phone_value),
    "email": ("email", email_value),
    "address": ("address", text_value),
    "city": ("city", text_value),
    "state": ("state", state_value),
    "zipCode": ("zip_code", zip_value),
    "notes": ("notes", text_value),
}

CONTACT_FIELDS: FieldSpec = {
    "fullName": ("full_name", text_value),
    "firstName": ("first_name", text_value),
    "lastName": ("last_name", text_value),
    "organizationName": ("organization_name", text_value),
    "position": ("title", text_value),
    "email": ("email", email_value),
    "phone": ("phone", phone_value),
    "accountManager": ("account_manager", text_value),
    "linkedIn": ("linkedin", text_value),
}

OPPORTUNITY_FIELDS: FieldSpec = {
    "organizationName": ("organization_name", text_value),
    "name": ("name", text_value),
    "stage": ("stage", stage_value),
    "status": ("status", status_value),
    "value": ("value", money_value),
    "probability": ("probability", probability_value),
    "startDate": ("start_date", date_value),
    "expectedCloseDate": ("expected_close_date", date_value),
    "principal": ("principal", text_value),
    "product": ("product", text_value),
    "owner": ("owner", text_value),
}

INTERACTION_FIELDS: FieldSpec = {
    "date": ("date", date_value),
    "type": ("type", interaction_type_value),
    "organizationName": ("organization_name", text_value),
    "contactName": ("contact_name", text_value),
    "accountManager": ("account_manager", text_value),
    "opportunity": ("opportunity_name", text_value),
    "principal": ("principal", text_value),
    "notes": ("notes", text_value),
}

ENTITY_FIELDS: dict[TargetEntity, FieldSpec] = {
    TargetEntity.ORGANIZATIONS: ORGANIZATION_FIELDS,
    TargetEntity.CONTACTS: CONTACT_FIELDS,
    TargetEntity.OPPORTUNITIES: OPPORTUNITY_FIELDS,
    TargetEntity.INTERACTIONS: INTERACTION_FIELDS,
}

REQUIRED_FIELDS: dict[TargetEntity, tuple[str, ...]] = {
    TargetEntity.ORGANIZATIONS: ("name",),
    TargetEntity.CONTACTS: ("first_name", "organization_name"),
    TargetEntity.OPPORTUNITIES: ("name", "organization_name"),
    TargetEntity.INTERACTIONS: ("date",),
}


def build_record(
    entity: TargetEntity,
    row: list[Cell],
    suggestions: Iterable[MappingSuggestion],
    errors: list[tuple[str, str, str]] | None = None,
) -> dict[str, Any]:
    """Mapped and transformed values, before required fields are checked.

    Without ``errors`` the first bad value raises. With it, each bad value is
    appended as ``(target_field, raw_text, message)`` and left out of the record.
    """
    fields = ENTITY_FIELDS[entity]
    record: dict[str, Any] = {}
    for suggestion in suggestions:
        entry = fields.get(suggestion.target_field)
        if entry is None:
            continue
        key, transform = entry
        cell = row_cell(row, suggestion.column_index)
        try:
            record[key] = transform(cell)
        except RowValidationError as exc:
            if errors is None:
                raise
            errors.append((suggestion.target_field, resolve(cell).text(), str(exc)))

    if entity == TargetEntity.CONTACTS:
        full_name = record.pop("full_name", None)
        if full_name and not record.get("first_name"):
            first, last = split_full_name(full_name)
            record["first_name"] = first or None
            if not record.get("last_name"):
                record["last_name"] = last
        if record.get("last_name") is None:
            record["last_name"] = ""

    if entity == TargetEntity.ORGANIZATIONS and "priority" not in record:
        record["priority"] = "NONE"
    return record


def missing_required(entity: TargetEntity, record: dict[str, Any]) -> list[str]:
    return [f for f in REQUIRED_FIELDS[entity] if record.get(f) in (None, "")]


def transform_row(
    entity: TargetEntity,
    row: list[Cell],
    suggestions: Iterable[MappingSuggestion],
) -> dict[str, Any]:
    record = build_record(entity, row, suggestions)
    missing = missing_required(entity, record)
    if missing:
        raise RowValidationError(f"Missing required field(s): {', '.join(missing)}")
    return record
