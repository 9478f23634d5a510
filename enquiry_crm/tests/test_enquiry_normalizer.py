"""
ENQUIRY CRM - Normalization Tests
Tests: alias reconciliation, fee derivation, idempotence.
"""

from decimal import Decimal

from enquiry_crm.services.enquiry_normalizer import (
    amount_str,
    compute_fees,
    format_amount,
    migrate_enquiry,
    to_amount,
)


class TestAmounts:
    def test_parse_strings_and_numbers(self):
        assert to_amount("5000") == Decimal("5000")
        assert to_amount(" 2,500.50 ") == Decimal("2500.50")
        assert to_amount(3000) == Decimal("3000")
        assert to_amount(12.5) == Decimal("12.5")

    def test_empty_or_garbage_is_zero(self):
        assert to_amount(None) == 0
        assert to_amount("") == 0
        assert to_amount("abc") == 0
        assert to_amount("NaN") == 0

    def test_format_has_no_exponent(self):
        assert format_amount(Decimal("5000")) == "5000"
        assert format_amount(Decimal("2000.50")) == "2000.5"
        assert format_amount(Decimal("0.00")) == "0"

    def test_amount_str_keeps_text_normalizes_numbers(self):
        assert amount_str(5000) == "5000"
        assert amount_str(5000.0) == "5000"
        assert amount_str(None) == ""
        assert amount_str(None, "0") == "0"
        assert amount_str(" 1200 ") == "1200"


class TestComputeFees:
    def test_history_wins_over_paid(self):
        history = [{"amount": "1000"}, {"amount": "500"}]
        assert compute_fees("5000", "4000", history) == ("1500", "3500")

    def test_paid_used_without_history(self):
        assert compute_fees("5000", "1200", []) == ("1200", "3800")

    def test_remaining_never_negative(self):
        assert compute_fees("1000", "1500", []) == ("1500", "0")

    def test_no_total_means_empty_remaining(self):
        assert compute_fees("", "300", []) == ("300", "")

    def test_missing_paid_defaults_to_zero(self):
        assert compute_fees("800", None, []) == ("0", "800")


class TestMigrateEnquiry:
    def test_legacy_aliases_fill_both_names(self):
        out = migrate_enquiry({"id": "1", "enquiryState": "Pune", "knowledgeOfDevelopment": "Beginner"})
        assert out["enquiryDistrict"] == "Pune"
        assert out["enquiryState"] == "Pune"
        assert out["knowledgeOfAndroid"] == "Beginner"
        assert out["knowledgeOfDevelopment"] == "Beginner"

    def test_canonical_name_wins_when_both_present(self):
        out = migrate_enquiry({"enquiryDistrict": "Nagpur", "enquiryState": "Maharashtra"})
        assert out["enquiryDistrict"] == "Nagpur"
        assert out["enquiryState"] == "Nagpur"

    def test_history_defaults_to_list(self):
        assert migrate_enquiry({"paymentHistory": None})["paymentHistory"] == []
        assert migrate_enquiry({"paymentHistory": "broken"})["paymentHistory"] == []
        assert migrate_enquiry({})["paymentHistory"] == []

    def test_conservation_with_history(self):
        out = migrate_enquiry({
            "totalFees": "5000",
            "paidFees": "999",
            "paymentHistory": [{"amount": "2000"}, {"amount": "1000"}],
        })
        assert out["paidFees"] == "3000"
        assert out["remainingFees"] == "2000"

    def test_numeric_total_is_stringified(self):
        out = migrate_enquiry({"totalFees": 7000, "paidFees": 2000})
        assert out["totalFees"] == "7000"
        assert out["paidFees"] == "2000"
        assert out["remainingFees"] == "5000"

    def test_input_not_mutated(self):
        record = {"enquiryState": "Goa", "totalFees": 100}
        migrate_enquiry(record)
        assert record == {"enquiryState": "Goa", "totalFees": 100}

    def test_idempotent_on_varied_records(self):
        samples = [
            {},
            {"id": "a", "enquiryState": "Delhi", "totalFees": 5000, "paidFees": 200},
            {"knowledgeOfAndroid": "Expert", "knowledgeOfDevelopment": "None", "paymentHistory": None},
            {"totalFees": "3000", "paymentHistory": [{"amount": "1000.50"}, {"amount": 500}]},
            {"totalFees": "abc", "paidFees": "xyz"},
            {"totalFees": "", "paidFees": ""},
        ]
        for record in samples:
            once = migrate_enquiry(record)
            assert migrate_enquiry(once) == once
