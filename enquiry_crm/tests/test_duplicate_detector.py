"""
ENQUIRY CRM - Duplicate Detection Tests
Aadhar ignores whitespace, email ignores case, mobile is exact.
"""

from enquiry_crm.services.duplicate_detector import (
    DuplicateCheck,
    check_duplicates,
    find_match,
    get_existing_enquiry,
    match_key,
    validate_unique_fields,
)

ENQUIRIES = [
    {"id": "a", "mobile": "9876543210", "email": "Ravi@Example.com", "aadharNumber": "2345 6789 0123"},
    {"id": "b", "mobile": "9123456789", "email": "meera@example.com", "aadharNumber": ""},
]


class TestMatchKey:
    def test_keys(self):
        assert match_key("aadharNumber", " 2345 6789\t0123 ") == "234567890123"
        assert match_key("email", "  Ravi@Example.COM ") == "ravi@example.com"
        assert match_key("mobile", "9876543210") == "9876543210"
        assert match_key("mobile", None) == ""


class TestCheckDuplicates:
    def test_each_field_reported_once_in_order(self):
        candidate = {"mobile": "9876543210", "email": "RAVI@example.com", "aadharNumber": "234567890123"}
        findings = check_duplicates(ENQUIRIES, candidate)
        assert [f.field for f in findings] == ["aadharNumber", "mobile", "email"]
        assert all(f.existing_id == "a" for f in findings)
        assert findings[0].to_dict() == {
            "field": "aadharNumber",
            "message": "This Aadhar number is already registered",
            "existingId": "a",
        }

    def test_blank_values_never_match(self):
        assert check_duplicates(ENQUIRIES, {"aadharNumber": "", "mobile": None}) == []
        assert find_match(ENQUIRIES, "aadharNumber", "   ") is None

    def test_exclude_own_record(self):
        candidate = {"mobile": "9876543210"}
        assert check_duplicates(ENQUIRIES, candidate, exclude_id="a") == []
        assert check_duplicates(ENQUIRIES, candidate, exclude_id="b") == [
            DuplicateCheck("mobile", "This mobile number is already registered", "a")
        ]

    def test_symmetric(self):
        x = {"id": "x", "email": "Same@Mail.com"}
        y = {"id": "y", "email": "same@mail.com "}
        assert bool(check_duplicates([y], x)) == bool(check_duplicates([x], y)) is True

    def test_new_enquiry_against_existing(self):
        """A then B with the same mobile: B is flagged against A."""
        a = {"id": "A", "mobile": "9000000001"}
        findings = check_duplicates([a], {"mobile": "9000000001"})
        assert findings == [DuplicateCheck("mobile", "This mobile number is already registered", "A")]


class TestExistingEnquiry:
    def test_aadhar_has_priority(self):
        found = get_existing_enquiry(ENQUIRIES, aadhar="234567890123", mobile="9123456789")
        assert found["id"] == "a"

    def test_falls_back_to_email(self):
        found = get_existing_enquiry(ENQUIRIES, mobile="9000000000", email="MEERA@example.com")
        assert found["id"] == "b"

    def test_nothing_found(self):
        assert get_existing_enquiry(ENQUIRIES, mobile="9000000000") is None


class TestValidateUniqueFields:
    def test_error_list(self):
        result = validate_unique_fields(ENQUIRIES, {"mobile": "9123456789", "email": "ravi@example.com"})
        assert result == {"isValid": False, "errors": ["Mobile number already exists", "Email address already exists"]}

    def test_valid(self):
        assert validate_unique_fields(ENQUIRIES, {"mobile": "9000000000"}) == {"isValid": True, "errors": []}
