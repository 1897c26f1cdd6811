import unittest


from crm_migrator.services.cells import to_cell
from crm_migrator.services.mapping_advisor import (
    ConfidenceTier,
    MappingAdvisor,
    TargetEntity,
    identify_target_entity,
    match_keyword,
    normalize,
)
from crm_migrator.services.workbook_analyzer import WorkbookAnalyzer
from crm_migrator.services.workbook_reader import SheetMatrix

_RANK = {ConfidenceTier.HIGH: 0, ConfidenceTier.MEDIUM: 1, ConfidenceTier.LOW: 2}


def _analyzed(name, headers, row):
    sheet = SheetMatrix(name=name, rows=[[to_cell(v) for v in headers], [to_cell(v) for v in row]])
    return WorkbookAnalyzer().analyze(sheet)


class TestMatching(unittest.TestCase):
    def test_normalize(self):
        self.assertEqual(normalize("E-Mail Address"), "emailaddress")
        self.assertEqual(normalize("  Zip/Postal "), "zippostal")
        self.assertEqual(normalize("---"), "")

    def test_match_tiers(self):
        self.assertEqual(match_keyword("priority", "priority", 2), (ConfidenceTier.HIGH, "Exact match"))
        self.assertEqual(match_keyword("companyname", "company", 1), (ConfidenceTier.HIGH, "Contains keyword"))
        self.assertEqual(match_keyword("mainphone", "phone", 2), (ConfidenceTier.MEDIUM, "Contains keyword"))
        self.assertIsNone(match_keyword("segment", "phone", 2))


class TestMappingAdvisor(unittest.TestCase):
    def setUp(self):
        self.advisor = MappingAdvisor()

    def test_email_columns_in_two_sheets(self):
        orgs = _analyzed(
            "Organizations",
            ["Company Email", "Contact Email", "Priority"],
            ["sales@acme.com", "jane@acme.com", "A"],
        )
        contacts = _analyzed(
            "Contacts",
            ["First Name", "Last Name", "Contact Email"],
            ["Jane", "Doe", "jane@acme.com"],
        )

        org_email = [s for s in self.advisor.suggest(orgs, TargetEntity.ORGANIZATIONS) if s.target_field == "email"]
        contact_email = [s for s in self.advisor.suggest(contacts, TargetEntity.CONTACTS) if s.target_field == "email"]

        self.assertEqual(len(org_email), 1)
        self.assertEqual(org_email[0].source_column, "Company Email")
        self.assertEqual(len(contact_email), 1)
        self.assertEqual(contact_email[0].source_column, "Contact Email")

    def test_one_suggestion_per_target_field(self):
        sheet = _analyzed(
            "Organizations",
            ["Organization", "Company", "Customer Name", "Phone", "Mobile", "Telephone", "City", "Town"],
            ["Acme", "Acme Inc", "Acme", "5551234567", "5559876543", "5550000000", "Austin", "Austin"],
        )
        fields = [s.target_field for s in self.advisor.suggest(sheet, TargetEntity.ORGANIZATIONS)]
        self.assertEqual(len(fields), len(set(fields)))

    def test_high_confidence_replaces_weaker_match(self):
        sheet = _analyzed("Organizations", ["Main Phone", "Phone"], ["5551234567", "5559876543"])
        phone = [s for s in self.advisor.suggest(sheet, TargetEntity.ORGANIZATIONS) if s.target_field == "phone"]
        self.assertEqual(len(phone), 1)
        self.assertEqual(phone[0].source_column, "Phone")
        self.assertEqual(phone[0].column_index, 1)
        self.assertEqual(phone[0].confidence, ConfidenceTier.HIGH)

    def test_first_found_wins_between_equal_tiers(self):
        sheet = _analyzed("Organizations", ["Work Phone", "Home Phone"], ["5551234567", "5559876543"])
        phone = [s for s in self.advisor.suggest(sheet, TargetEntity.ORGANIZATIONS) if s.target_field == "phone"]
        self.assertEqual(phone[0].source_column, "Work Phone")
        self.assertEqual(phone[0].confidence, ConfidenceTier.MEDIUM)

    def test_sorted_high_first(self):
        sheet = _analyzed(
            "Organizations",
            ["Notes", "Organization Name", "Work Phone", "Priority"],
            ["call back", "Acme", "5551234567", "A"],
        )
        ranks = [_RANK[s.confidence] for s in self.advisor.suggest(sheet, TargetEntity.ORGANIZATIONS)]
        self.assertEqual(ranks, sorted(ranks))
        self.assertEqual(ranks[0], 0)

    def test_punctuation_only_header_is_ignored(self):
        sheet = _analyzed("Organizations", ["Organization", "---", "Priority"], ["Acme", "x", "A"])
        sources = {s.source_column for s in self.advisor.suggest(sheet, TargetEntity.ORGANIZATIONS)}
        self.assertNotIn("---", sources)


class TestIdentifyTargetEntity(unittest.TestCase):
    def test_by_sheet_name(self):
        self.assertEqual(identify_target_entity("Organizations", []), TargetEntity.ORGANIZATIONS)
        self.assertEqual(identify_target_entity("Company List", []), TargetEntity.ORGANIZATIONS)
        self.assertEqual(identify_target_entity("Contacts", []), TargetEntity.CONTACTS)
        self.assertEqual(identify_target_entity("Contact Interactions", []), TargetEntity.INTERACTIONS)
        self.assertEqual(identify_target_entity("Opportunities", []), TargetEntity.OPPORTUNITIES)

    def test_by_headers(self):
        self.assertEqual(identify_target_entity("Sheet1", ["First", "Last", "Name"]), TargetEntity.CONTACTS)
        self.assertEqual(identify_target_entity("Sheet2", ["Activity", "Date"]), TargetEntity.INTERACTIONS)
        self.assertEqual(identify_target_entity("Sheet3", ["Deal", "Stage"]), TargetEntity.OPPORTUNITIES)
        self.assertIsNone(identify_target_entity("Lookups", ["Code", "Label"]))


if __name__ == "__main__":
    unittest.main()
