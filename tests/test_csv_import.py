import unittest

from gripcrm.models.models import ActivityType, Customer, UserActivity
from gripcrm.services.activity import ActivityRecorder
from gripcrm.services.csv_import import (
    EMPTY_FILE_ERROR,
    CustomerImportService,
    auto_map_fields,
    parse_csv,
    sample_csv,
    validate_rows,
)
from gripcrm.services.customers import CustomerService

from support import create_customer, create_user, make_session_factory


class CsvParsingTests(unittest.TestCase):
    def test_auto_map_synonyms(self):
        mapping = auto_map_fields(["Contact Name", "E-Mail", "Org"])
        self.assertEqual(mapping, {"name": 0, "email": 1})

    def test_auto_map_substrings_and_first_match_wins(self):
        mapping = auto_map_fields(["Work Email", "Name", "Mobile Number", "Company Name", "Full Name", "Business"])
        self.assertEqual(mapping, {"email": 0, "name": 1, "phone": 2, "company": 3})

    def test_parse_skips_blank_lines_and_pads_short_rows(self):
        parsed = parse_csv(b"\xef\xbb\xbfName,Email,Phone\r\n\r\nAnn,ann@example.com\r\n\r\n")
        self.assertEqual(parsed.headers, ["Name", "Email", "Phone"])
        self.assertEqual(parsed.rows, [{"Name": "Ann", "Email": "ann@example.com", "Phone": ""}])

    def test_separator_only_line_is_a_blank_row(self):
        parsed = parse_csv("Name,Email,Phone\nAnn,ann@example.com,1\n,,\n")
        self.assertEqual(parsed.rows[1], {"Name": "", "Email": "", "Phone": ""})
        result = validate_rows(parsed, auto_map_fields(parsed.headers))
        self.assertEqual(result.errors, ["Row 2: Name is required"])

    def test_parse_keeps_quoted_commas_and_newlines(self):
        parsed = parse_csv('Name,Company\n"Doe, John","Line one\nLine two"\n')
        self.assertEqual(parsed.rows[0]["Name"], "Doe, John")
        self.assertEqual(parsed.rows[0]["Company"], "Line one\nLine two")

    def test_validate_reports_row_numbers(self):
        parsed = parse_csv("Name,Email\n,a@b.co\nBob,not-an-email\nCara,\n")
        result = validate_rows(parsed, auto_map_fields(parsed.headers))
        self.assertEqual(result.errors, ["Row 1: Name is required", "Row 2: Invalid email format"])
        self.assertEqual(result.valid_rows, [{"name": "Cara"}])

    def test_validate_without_name_column(self):
        parsed = parse_csv("Email,Phone\nx@y.io,123\n")
        result = validate_rows(parsed, auto_map_fields(parsed.headers))
        self.assertEqual(result.errors, ["Row 1: Name field not found"])

    def test_sample_csv_header(self):
        lines = sample_csv().split("\n")
        self.assertEqual(lines[0], "Name,Email,Phone,Company")
        self.assertEqual(len(lines), 4)


class CustomerImportTests(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = make_session_factory()
        self.db = self.Session()
        self.user = create_user(self.db)
        self.importer = CustomerImportService(
            CustomerService(self.db), activity=ActivityRecorder(self.Session, background=False)
        )

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def test_invalid_email_row_is_not_persisted(self):
        content = b'Name,Email,Phone,Company\n"John Doe","bad-email","555","Acme"\n'

        result = self.importer.import_customers(content, actor_id=self.user.id)

        self.assertFalse(result.success)
        self.assertEqual(result.imported, 0)
        self.assertEqual(result.failed, 1)
        self.assertTrue(any("Invalid email format" in e for e in result.errors))
        self.assertEqual(self.db.query(Customer).count(), 0)

    def test_valid_row_is_imported_verbatim(self):
        content = b'Name,Email,Phone,Company\n"John Doe","John.Doe@Example.com","555","Acme"\n'

        result = self.importer.import_customers(content, actor_id=self.user.id)

        self.assertTrue(result.success)
        self.assertEqual(result.imported, 1)
        self.assertEqual(result.failed, 0)
        self.assertEqual(result.customers[0]["email"], "John.Doe@Example.com")
        stored = self.db.query(Customer).one()
        self.assertEqual(stored.phone, "555")
        self.assertEqual(stored.company, "Acme")

    def test_duplicate_email_fails_only_that_row(self):
        create_customer(self.db, name="Existing", email="dup@example.com")
        content = "Name,Email\nFirst,dup@example.com\nSecond,second@example.com\n"

        result = self.importer.import_customers(content, actor_id=self.user.id)

        self.assertEqual(result.imported, 1)
        self.assertEqual(result.failed, 1)
        self.assertEqual(result.errors, ['Failed to import customer "First": Customer with this email already exists'])
        self.assertEqual(self.db.query(Customer).count(), 2)

    def test_empty_file(self):
        result = self.importer.import_customers(b"Name,Email\n")
        self.assertFalse(result.success)
        self.assertEqual((result.imported, result.failed), (0, 0))
        self.assertEqual(result.errors, [EMPTY_FILE_ERROR])

    def test_undecodable_file_fails_whole_import(self):
        result = self.importer.import_customers(b"Name\n\xff\xfe\xfa\n")
        self.assertFalse(result.success)
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(self.db.query(Customer).count(), 0)

    def test_records_import_activity(self):
        self.importer.import_customers(b"Name\nAnn\n,\nBob\n", actor_id=self.user.id)
        entry = self.db.query(UserActivity).filter(UserActivity.activity_type == ActivityType.IMPORT_CUSTOMERS).one()
        self.assertEqual(entry.metadata_json["imported"], 2)
        self.assertEqual(entry.metadata_json["failed"], 1)

    def test_blank_cell_row_counts_as_failure(self):
        result = self.importer.import_customers(b"Name,Email\nAnn,ann@example.com\n , \n", actor_id=self.user.id)
        self.assertEqual((result.imported, result.failed), (1, 1))
        self.assertEqual(result.errors, ["Row 2: Name is required"])
        self.assertTrue(result.success)


if __name__ == "__main__":
    unittest.main()
