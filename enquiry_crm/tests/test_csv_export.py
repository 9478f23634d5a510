"""
ENQUIRY CRM - CSV Export Tests
"""

import csv
import io
import re

from enquiry_crm.services.csv_export import (
    ENQUIRY_COLUMNS,
    RECEIPT_COLUMNS,
    generate_advertisements_csv,
    generate_csv_filename,
    generate_enquiries_csv,
    generate_receipt_csv,
)


def parse(text):
    return list(csv.reader(io.StringIO(text)))


class TestEnquiriesCsv:
    def test_header_and_quoting(self):
        text = generate_enquiries_csv([
            {"id": "e1", "fullName": 'Ravi "RK" Kumar', "enquiryState": "Pune", "address": "Flat 2, MG Road"},
        ])
        first_line = text.splitlines()[0]
        assert first_line.startswith('"ID","Full Name","Mobile"')
        assert '"Ravi ""RK"" Kumar"' in text

        header, row = parse(text)
        assert header == [h for h, _ in ENQUIRY_COLUMNS]
        assert row[header.index("District")] == "Pune"
        assert row[header.index("Address")] == "Flat 2, MG Road"
        assert row[header.index("Mobile")] == ""

    def test_profession_other_uses_custom(self):
        _, row = parse(generate_enquiries_csv([{"profession": "Other", "customProfession": "Farmer"}]))
        assert row[[h for h, _ in ENQUIRY_COLUMNS].index("Profession")] == "Farmer"

    def test_empty_export_is_header_only(self):
        assert len(parse(generate_enquiries_csv([]))) == 1


class TestAdvertisementsCsv:
    def test_rows(self):
        header, row = parse(generate_advertisements_csv([{"id": "a1", "name": "Asha", "phoneNo": "9876543210"}]))
        assert header[:3] == ["ID", "Name", "Phone No"]
        assert row[:3] == ["a1", "Asha", "9876543210"]


class TestReceiptCsv:
    def test_one_row_per_payment(self):
        enquiry = {
            "fullName": "Asha Rao", "education": "Other", "customEducation": "Diploma",
            "totalFees": "5000", "paidFees": "2500", "remainingFees": "2500",
            "paymentHistory": [
                {"date": "2025-01-10", "amount": "1000", "mode": "Online", "method": None, "note": "First"},
                {"date": "2025-02-10", "amount": "1500", "mode": "Offline", "method": "Cash", "note": None},
            ],
        }
        header, *rows = parse(generate_receipt_csv(enquiry))
        assert header == RECEIPT_COLUMNS
        assert rows == [
            ["Asha Rao", "Diploma", "5000", "2500", "2500", "2025-01-10", "1000", "Online", "", "First"],
            ["Asha Rao", "Diploma", "5000", "2500", "2500", "2025-02-10", "1500", "Offline", "Cash", ""],
        ]

    def test_summary_row_without_history(self):
        header, row = parse(generate_receipt_csv({"fullName": "Asha Rao", "totalFees": "5000"}))
        assert row == ["Asha Rao", "", "5000", "0", "0", "", "", "", "", ""]


def test_filename():
    assert re.match(r"^enquiries_backup_\d{4}-\d{2}-\d{2}\.csv$", generate_csv_filename("enquiries_backup"))
