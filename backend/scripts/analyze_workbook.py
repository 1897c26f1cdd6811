from dotenv import load_dotenv
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

load_dotenv(".env")

import argparse
import json

from crm_migrator.core.settings import settings
from crm_migrator.services.workbook_reader import read_workbook
from crm_migrator.services.workbook_report import analyze_workbook

KEY_SHEETS = ("Organizations", "Contacts", "Opportunities", "Interactions")
TOP_SUGGESTIONS = 5


def _print_sheet(entry: dict) -> None:
    print(f"\n=== {entry['name']} ===")
    if entry["skipped"]:
        print(f"  skipped: {entry['reason']}")
        return

    print(f"  header row:     {entry['headerRowIndex'] + 1}")
    print(f"  data starts at: {entry['dataStartRow'] + 1}")
    print(f"  data rows:      {entry['dataRows']}")
    print(f"  entity:         {entry['entity'] or '-'}")
    print(f"  populated columns ({len(entry['columnProfiles'])}):")
    for profile in entry["columnProfiles"]:
        samples = ", ".join(profile["sampleValues"])
        print(f"    - {profile['header']} [{profile['dataType']}] n={profile['nonEmptyCount']} e.g. {samples}")

    if entry["name"] in KEY_SHEETS and entry["suggestions"]:
        print("  suggested mappings:")
        for s in entry["suggestions"][:TOP_SUGGESTIONS]:
            print(f"    - {s['sourceColumn']} -> {s['targetField']} ({s['confidenceTier']}, {s['reason']})")

    integrity = entry.get("integrity")
    if integrity:
        print(
            f"  data quality: {integrity['issueCount']} issue(s) in {integrity['checkedRows']} rows"
            f" (duplicates={len(integrity['duplicates'])}, missing={len(integrity['missingRequired'])},"
            f" formats={len(integrity['invalidFormats'])}, orphans={len(integrity['orphanReferences'])})"
        )


def main() -> None:
    parser = argparse.ArgumentParser(description="Analyze a legacy CRM workbook without migrating it.")
    parser.add_argument("path", nargs="?", default=settings.workbook_path)
    parser.add_argument("--out", help="write the full analysis as JSON to this file")
    args = parser.parse_args()

    workbook = read_workbook(args.path)
    report = analyze_workbook(workbook)

    print(f"Workbook: {workbook.name} ({len(workbook.sheets)} sheets)")
    for entry in report:
        _print_sheet(entry)

    if args.out:
        Path(args.out).write_text(json.dumps({"workbook": workbook.name, "sheets": report}, indent=2), encoding="utf-8")
        print(f"\nAnalysis written to {args.out}")


if __name__ == "__main__":
    main()
