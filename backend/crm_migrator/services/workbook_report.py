from __future__ import annotations

from typing import Any

from crm_migrator.services.data_integrity import IntegrityChecker, MappedSheet
from crm_migrator.services.errors import StructuralError
from crm_migrator.services.mapping_advisor import MappingAdvisor, identify_target_entity
from crm_migrator.services.workbook_analyzer import WorkbookAnalyzer
from crm_migrator.services.workbook_reader import Workbook


def analyze_workbook(
    workbook: Workbook,
    analyzer: WorkbookAnalyzer | None = None,
    advisor: MappingAdvisor | None = None,
    checker: IntegrityChecker | None = None,
) -> list[dict[str, Any]]:
    """Per-sheet analysis, mapping suggestions and data-quality report, without touching the store."""
    analyzer = analyzer or WorkbookAnalyzer()
    advisor = advisor or MappingAdvisor()
    checker = checker or IntegrityChecker()

    report: list[dict[str, Any]] = []
    mapped: list[MappedSheet] = []
    for raw in workbook.sheets:
        try:
            sheet = analyzer.analyze(raw)
        except StructuralError as exc:
            report.append({"name": raw.name, "skipped": True, "reason": str(exc)})
            continue

        entry = {**sheet.to_dict(), "skipped": False}
        entity = identify_target_entity(sheet.name, sheet.headers)
        suggestions = advisor.suggest(sheet, entity) if entity else []
        entry["entity"] = entity.value if entity else None
        entry["suggestions"] = [s.to_dict() for s in suggestions]
        if suggestions:
            mapped.append(MappedSheet(sheet=sheet, entity=entity, suggestions=suggestions))
        report.append(entry)

    integrity = checker.check(mapped)
    for entry in report:
        if entry["name"] in integrity:
            entry["integrity"] = integrity[entry["name"]].to_dict()
    return report
