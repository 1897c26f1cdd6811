"""Pre-migration data-quality pass over mapped sheets.

Nothing is written. Each sheet gets a report of duplicate identities, missing
required fields, values that fail their field transform, and organization
references that no organizations sheet in the same workbook provides (only
checked when the workbook has one). Row numbers are 1-based, as shown in the
spreadsheet.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from crm_migrator.core.settings import settings
from crm_migrator.services.cells import is_empty
from crm_migrator.services.field_transforms import build_record, missing_required
from crm_migrator.services.mapping_advisor import MappingSuggestion, TargetEntity
from crm_migrator.services.workbook_analyzer import AnalyzedSheet

logger = logging.getLogger(__name__)

# record keys that identify one entity row; interactions have no identity
IDENTITY_KEYS: dict[TargetEntity, tuple[str, ...]] = {
    TargetEntity.ORGANIZATIONS: ("name",),
    TargetEntity.CONTACTS: ("first_name", "last_name", "organization_name"),
    TargetEntity.OPPORTUNITIES: ("name", "organization_name"),
}


@dataclass
class MappedSheet:
    sheet: AnalyzedSheet
    entity: TargetEntity
    suggestions: list[MappingSuggestion]


@dataclass
class IntegrityReport:
    checked_rows: int = 0
    duplicates: list[dict[str, Any]] = field(default_factory=list)
    missing_required: list[dict[str, Any]] = field(default_factory=list)
    invalid_formats: list[dict[str, Any]] = field(default_factory=list)
    orphan_references: list[dict[str, Any]] = field(default_factory=list)
    truncated: bool = False

    @property
    def issue_count(self) -> int:
        return (
            sum(len(d["rowNumbers"]) for d in self.duplicates)
            + sum(len(m["rowNumbers"]) for m in self.missing_required)
            + len(self.invalid_formats)
            + len(self.orphan_references)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkedRows": self.checked_rows,
            "issueCount": self.issue_count,
            "duplicates": self.duplicates,
            "missingRequired": self.missing_required,
            "invalidFormats": self.invalid_formats,
            "orphanReferences": self.orphan_references,
            "truncated": self.truncated,
        }


def _identity_key(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


class IntegrityChecker:
    def __init__(self, max_entries: int | None = None) -> None:
        self.max_entries = settings.max_reported_errors if max_entries is None else max_entries

    def check(self, mapped: list[MappedSheet]) -> dict[str, IntegrityReport]:
        """Reports keyed by sheet name."""
        records = {m.sheet.name: self._records(m) for m in mapped}

        # references are only checked when the workbook carries organizations
        known_organizations: set[str] | None = None
        for m in mapped:
            if m.entity != TargetEntity.ORGANIZATIONS:
                continue
            if known_organizations is None:
                known_organizations = set()
            for _, record, _ in records[m.sheet.name]:
                if record.get("name"):
                    known_organizations.add(_identity_key(record["name"]))

        reports: dict[str, IntegrityReport] = {}
        for m in mapped:
            report = self._check_sheet(m.entity, records[m.sheet.name], known_organizations)
            reports[m.sheet.name] = report
            logger.info(
                "data_integrity.sheet name=%s entity=%s rows=%s issues=%s",
                m.sheet.name,
                m.entity.value,
                report.checked_rows,
                report.issue_count,
            )
        return reports

    def _records(self, mapped: MappedSheet) -> list[tuple[int, dict[str, Any], list[tuple[str, str, str]]]]:
        rows = []
        for row_index, row in mapped.sheet.iter_data_rows():
            if all(is_empty(c) for c in row):
                continue
            errors: list[tuple[str, str, str]] = []
            record = build_record(mapped.entity, row, mapped.suggestions, errors)
            rows.append((row_index + 1, record, errors))
        return rows

    def _check_sheet(
        self,
        entity: TargetEntity,
        rows: list[tuple[int, dict[str, Any], list[tuple[str, str, str]]]],
        known_organizations: set[str] | None,
    ) -> IntegrityReport:
        report = IntegrityReport(checked_rows=len(rows))
        identity = IDENTITY_KEYS.get(entity)
        seen: dict[tuple, list[int]] = {}
        missing: dict[str, list[int]] = {}

        for row_number, record, errors in rows:
            for target_field, raw, message in errors:
                self._append(report, report.invalid_formats, {
                    "field": target_field,
                    "row": row_number,
                    "value": raw,
                    "message": message,
                })

            for key in missing_required(entity, record):
                missing.setdefault(key, []).append(row_number)

            if identity and all(record.get(k) not in (None, "") for k in identity if k != "last_name"):
                seen.setdefault(tuple(_identity_key(record.get(k)) for k in identity), []).append(row_number)

            org_name = record.get("organization_name")
            if (
                known_organizations is not None
                and entity != TargetEntity.ORGANIZATIONS
                and org_name
                and _identity_key(org_name) not in known_organizations
            ):
                self._append(report, report.orphan_references, {
                    "field": "organization_name",
                    "targetEntity": TargetEntity.ORGANIZATIONS.value,
                    "row": row_number,
                    "value": org_name,
                })

        report.missing_required = [{"field": k, "rowNumbers": numbers} for k, numbers in missing.items()]
        for key, row_numbers in seen.items():
            if len(row_numbers) > 1:
                self._append(report, report.duplicates, {
                    "fields": list(identity),
                    "value": " / ".join(str(v) for v in key if v not in (None, "")),
                    "rowNumbers": row_numbers,
                })
        return report

    def _append(self, report: IntegrityReport, entries: list[dict[str, Any]], entry: dict[str, Any]) -> None:
        if len(entries) < self.max_entries:
            entries.append(entry)
        else:
            report.truncated = True
