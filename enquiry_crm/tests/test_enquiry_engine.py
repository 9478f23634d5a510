"""
ENQUIRY CRM - Enquiry Engine Tests
Tests: save/update, payments, ledger mirroring, delete authorization,
follow-ups, search, aggregates, bulk import.
Run: pytest enquiry_crm/tests/test_enquiry_engine.py -v
"""

from datetime import date

import pytest

from enquiry_crm.services.enquiry_engine import (
    LedgerSyncError,
    PaymentRuleError,
    generate_payment_id,
    to_base36,
)
from enquiry_crm.services.payment_ledger import INITIAL_PAYMENT_NOTE
from enquiry_crm.tests.conftest import make_enquiry


# ═══════════════════════════════════════════════════════════════
# 1. PAYMENT IDS
# ═══════════════════════════════════════════════════════════════

class TestPaymentIds:
    def test_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "Z"
        assert to_base36(36) == "10"

    def test_payment_id_shape(self):
        payment_id = generate_payment_id(now_ms=36 ** 3)
        prefix, stamp, suffix = payment_id.split("-")
        assert prefix == "PMT"
        assert stamp == "1000"
        assert len(suffix) == 6

    def test_payment_ids_differ(self):
        assert generate_payment_id(now_ms=1) != generate_payment_id(now_ms=1)


# ═══════════════════════════════════════════════════════════════
# 2. SAVE / UPDATE
# ═══════════════════════════════════════════════════════════════

class TestSaveEnquiry:
    @pytest.mark.asyncio
    async def test_defaults_and_fees(self, engine, enquiry_store, user_session):
        saved = await engine.save_enquiry(make_enquiry(), user_session)

        assert saved["id"] in enquiry_store.records
        assert saved["status"] == "Pending"
        assert saved["paidFees"] == "0"
        assert saved["remainingFees"] == "5000"
        assert saved["paymentHistory"] == []
        assert saved["createdBy"] == "staff@example.com"
        assert saved["createdAt"] == saved["updatedAt"]

    @pytest.mark.asyncio
    async def test_both_alias_names_written(self, engine, enquiry_store):
        saved = await engine.save_enquiry(make_enquiry(knowledgeOfAndroid="Beginner"))
        stored = enquiry_store.records[saved["id"]]
        assert stored["enquiryState"] == "Bengaluru Urban"
        assert stored["knowledgeOfDevelopment"] == "Beginner"

    @pytest.mark.asyncio
    async def test_initial_payment_mirrored_with_note(self, engine, payment_store, user_session):
        data = make_enquiry(paymentHistory=[{"date": "2025-01-10", "amount": "1000", "mode": "Online"}])
        saved = await engine.save_enquiry(data, user_session)

        assert saved["paidFees"] == "1000"
        assert saved["remainingFees"] == "4000"

        rows = list(payment_store.records.values())
        assert len(rows) == 1
        assert rows[0]["note"] == INITIAL_PAYMENT_NOTE
        assert rows[0]["amount"] == 1000.0
        assert rows[0]["enquiryId"] == saved["id"]
        assert rows[0]["paymentEntryId"] == saved["paymentHistory"][0]["id"]
        assert rows[0]["createdBy"] == "staff@example.com"

    @pytest.mark.asyncio
    async def test_zero_initial_payment_not_mirrored(self, engine, payment_store):
        data = make_enquiry(paymentHistory=[{"date": "2025-01-10", "amount": "0", "mode": "Online"}])
        await engine.save_enquiry(data)
        assert payment_store.records == {}

    @pytest.mark.asyncio
    async def test_ledger_failure_after_save(self, engine, enquiry_store, payment_store):
        payment_store.fail_on.add("add")
        data = make_enquiry(paymentHistory=[{"date": "2025-01-10", "amount": "1000", "mode": "Online"}])

        with pytest.raises(LedgerSyncError) as exc:
            await engine.save_enquiry(data)

        assert exc.value.enquiry["id"] in enquiry_store.records
        assert exc.value.enquiry["paidFees"] == "1000"

    @pytest.mark.asyncio
    async def test_history_over_total_rejected_before_write(self, engine, enquiry_store, payment_store):
        data = make_enquiry(totalFees="5000", paymentHistory=[{"date": "2025-01-10", "amount": "9000", "mode": "Online"}])

        with pytest.raises(PaymentRuleError, match="Paid fees cannot exceed total fees"):
            await engine.save_enquiry(data)

        assert enquiry_store.records == {}
        assert payment_store.records == {}

    @pytest.mark.asyncio
    async def test_every_initial_entry_mirrored_once(self, engine, payment_store):
        data = make_enquiry(paymentHistory=[
            {"id": "PMT-MADEUP", "date": "2025-01-10", "amount": "1000", "mode": "Online"},
            {"date": "2025-01-11", "amount": "500", "mode": "Offline", "method": "Cash"},
        ])
        saved = await engine.save_enquiry(data)

        ids = [e["id"] for e in saved["paymentHistory"]]
        assert "PMT-MADEUP" not in ids
        rows = sorted(payment_store.records.values(), key=lambda r: r["amount"], reverse=True)
        assert [r["paymentEntryId"] for r in rows] == ids
        assert rows[0]["note"] == INITIAL_PAYMENT_NOTE
        assert rows[1]["note"] is None
        assert saved["paidFees"] == "1500"


class TestUpdateEnquiry:
    @pytest.mark.asyncio
    async def test_missing_enquiry(self, engine):
        assert await engine.update_enquiry("nope", {"fullName": "Someone Else"}) is None

    @pytest.mark.asyncio
    async def test_total_change_recomputes_remaining(self, engine):
        saved = await engine.save_enquiry(make_enquiry())
        updated = await engine.update_enquiry(saved["id"], {"totalFees": "6000"})
        assert updated["totalFees"] == "6000"
        assert updated["remainingFees"] == "6000"

    @pytest.mark.asyncio
    async def test_id_and_created_at_are_protected(self, engine, enquiry_store):
        saved = await engine.save_enquiry(make_enquiry())
        updated = await engine.update_enquiry(saved["id"], {"id": "hijack", "createdAt": "1999-01-01"})
        assert updated["id"] == saved["id"]
        assert enquiry_store.records[saved["id"]]["createdAt"] == saved["createdAt"]

    @pytest.mark.asyncio
    async def test_legacy_alias_update_syncs_canonical(self, engine, enquiry_store):
        saved = await engine.save_enquiry(make_enquiry())
        await engine.update_enquiry(saved["id"], {"enquiryState": "Mysuru"})
        stored = enquiry_store.records[saved["id"]]
        assert stored["enquiryDistrict"] == "Mysuru"
        assert stored["enquiryState"] == "Mysuru"

    @pytest.mark.asyncio
    async def test_interest_raise_promotes_status(self, engine):
        saved = await engine.save_enquiry(make_enquiry())
        updated = await engine.update_enquiry(saved["id"], {"interestedStatus": "75% Interested"})
        assert updated["status"] == "In Process"


    @pytest.mark.asyncio
    async def test_history_sent_back_keeps_entry_ids(self, engine, payment_store, admin_session):
        data = make_enquiry(paymentHistory=[{"date": "2025-01-10", "amount": "1000", "mode": "Online"}])
        saved = await engine.save_enquiry(data, admin_session)
        entry_id = saved["paymentHistory"][0]["id"]

        updated = await engine.update_enquiry(saved["id"], {"paymentHistory": saved["paymentHistory"]}, admin_session)
        assert [e["id"] for e in updated["paymentHistory"]] == [entry_id]

        without_ids = [{k: v for k, v in e.items() if k != "id"} for e in saved["paymentHistory"]]
        updated = await engine.update_enquiry(saved["id"], {"paymentHistory": without_ids}, admin_session)
        assert [e["id"] for e in updated["paymentHistory"]] == [entry_id]
        assert updated["paidFees"] == "1000"

        report = await engine.reconcile_ledger(repair=True)
        assert report["missingFromLedger"] == []
        assert len(payment_store.records) == 1

    @pytest.mark.asyncio
    async def test_appended_entry_mirrored(self, engine, payment_store, admin_session):
        data = make_enquiry(paymentHistory=[{"date": "2025-01-10", "amount": "1000", "mode": "Online"}])
        saved = await engine.save_enquiry(data, admin_session)

        history = saved["paymentHistory"] + [{"date": "2025-02-01", "amount": "500", "mode": "Online"}]
        updated = await engine.update_enquiry(saved["id"], {"paymentHistory": history}, admin_session)

        assert updated["paidFees"] == "1500"
        assert updated["remainingFees"] == "3500"
        new_id = updated["paymentHistory"][1]["id"]
        assert new_id.startswith("PMT-")
        assert sorted(r["paymentEntryId"] for r in payment_store.records.values()) == sorted(
            e["id"] for e in updated["paymentHistory"]
        )
        assert (await engine.reconcile_ledger())["missingFromLedger"] == []

    @pytest.mark.asyncio
    async def test_unknown_entry_id_is_replaced(self, engine, payment_store):
        saved = await engine.save_enquiry(make_enquiry())
        updated = await engine.update_enquiry(saved["id"], {"paymentHistory": [
            {"id": "PMT-MADEUP", "date": "2025-02-01", "amount": "200", "mode": "Online"},
        ]})

        entry_id = updated["paymentHistory"][0]["id"]
        assert entry_id != "PMT-MADEUP"
        assert [r["paymentEntryId"] for r in payment_store.records.values()] == [entry_id]

    @pytest.mark.asyncio
    async def test_history_over_total_rejected(self, engine, enquiry_store, payment_store):
        saved = await engine.save_enquiry(make_enquiry(totalFees="5000"))
        before = dict(enquiry_store.records[saved["id"]])

        with pytest.raises(PaymentRuleError):
            await engine.update_enquiry(saved["id"], {"paymentHistory": [
                {"date": "2025-02-01", "amount": "6000", "mode": "Online"},
            ]})

        assert enquiry_store.records[saved["id"]] == before
        assert payment_store.records == {}

    @pytest.mark.asyncio
    async def test_total_below_amount_paid_rejected(self, engine, enquiry_store):
        saved = await engine.save_enquiry(make_enquiry(totalFees="5000"))
        await engine.add_payment(saved["id"], {"date": "2025-02-01", "amount": "3000", "mode": "Online"})

        with pytest.raises(PaymentRuleError):
            await engine.update_enquiry(saved["id"], {"totalFees": "2000"})
        assert enquiry_store.records[saved["id"]]["totalFees"] == "5000"

    @pytest.mark.asyncio
    async def test_unrelated_update_on_overpaid_legacy_record(self, engine, enquiry_store):
        enquiry_store.records["legacy"] = {
            "id": "legacy", "fullName": "Old Record", "totalFees": "1000", "paidFees": "1500",
        }
        updated = await engine.update_enquiry("legacy", {"fullName": "Old Record Renamed"})
        assert updated["fullName"] == "Old Record Renamed"

    @pytest.mark.asyncio
    async def test_ledger_failure_on_appended_entry(self, engine, enquiry_store, payment_store):
        saved = await engine.save_enquiry(make_enquiry())
        payment_store.fail_on.add("add")

        with pytest.raises(LedgerSyncError) as exc:
            await engine.update_enquiry(saved["id"], {"paymentHistory": [
                {"date": "2025-02-01", "amount": "700", "mode": "Online"},
            ]})

        assert exc.value.enquiry["paidFees"] == "700"
        assert enquiry_store.records[saved["id"]]["paidFees"] == "700"

# ═══════════════════════════════════════════════════════════════
# 3. PAYMENTS
# ═══════════════════════════════════════════════════════════════

class TestAddPayment:
    @pytest.mark.asyncio
    async def test_payment_then_overpayment(self, engine, enquiry_store, payment_store, user_session):
        saved = await engine.save_enquiry(make_enquiry(totalFees="5000"))

        updated = await engine.add_payment(
            saved["id"], {"date": "2025-02-01", "amount": "2000", "mode": "Online"}, user_session
        )
        assert updated["paidFees"] == "2000"
        assert updated["remainingFees"] == "3000"
        assert len(updated["paymentHistory"]) == 1
        assert updated["paymentHistory"][0]["id"].startswith("PMT-")
        assert len(payment_store.records) == 1

        before = dict(enquiry_store.records[saved["id"]])
        with pytest.raises(PaymentRuleError, match="Payment exceeds total fees"):
            await engine.add_payment(saved["id"], {"date": "2025-02-02", "amount": "3500", "mode": "Online"})

        assert enquiry_store.records[saved["id"]] == before
        assert len(payment_store.records) == 1

    @pytest.mark.asyncio
    async def test_requires_total_fees(self, engine, enquiry_store):
        saved = await engine.save_enquiry(make_enquiry(totalFees=""))
        enquiry_store.calls.clear()

        with pytest.raises(PaymentRuleError, match="Total fees must be set"):
            await engine.add_payment(saved["id"], {"date": "2025-02-01", "amount": "100", "mode": "Online"})
        assert "update" not in enquiry_store.calls

    @pytest.mark.asyncio
    async def test_negative_amount_rejected(self, engine):
        saved = await engine.save_enquiry(make_enquiry())
        with pytest.raises(PaymentRuleError, match="cannot be negative"):
            await engine.add_payment(saved["id"], {"date": "2025-02-01", "amount": "-5", "mode": "Online"})

    @pytest.mark.asyncio
    async def test_exact_remaining_is_accepted(self, engine):
        saved = await engine.save_enquiry(make_enquiry(totalFees="5000"))
        updated = await engine.add_payment(saved["id"], {"date": "2025-02-01", "amount": "5000", "mode": "Online"})
        assert updated["remainingFees"] == "0"

    @pytest.mark.asyncio
    async def test_missing_enquiry(self, engine):
        assert await engine.add_payment("nope", {"amount": "10"}) is None

    @pytest.mark.asyncio
    async def test_offline_method_kept_online_method_dropped(self, engine):
        saved = await engine.save_enquiry(make_enquiry())
        offline = await engine.add_payment(
            saved["id"], {"date": "2025-02-01", "amount": "100", "mode": "Offline", "method": "Cash"}
        )
        online = await engine.add_payment(
            saved["id"], {"date": "2025-02-02", "amount": "100", "mode": "Online", "method": "Cash"}
        )
        assert offline["paymentHistory"][0]["method"] == "Cash"
        assert online["paymentHistory"][1]["method"] is None

    @pytest.mark.asyncio
    async def test_created_by_defaults_to_admin(self, engine):
        saved = await engine.save_enquiry(make_enquiry())
        updated = await engine.add_payment(saved["id"], {"date": "2025-02-01", "amount": "100", "mode": "Online"})
        assert updated["paymentHistory"][0]["createdBy"] == "admin"

    @pytest.mark.asyncio
    async def test_paid_follows_history_only(self, engine, enquiry_store):
        enquiry_store.records["legacy"] = {
            "id": "legacy", "fullName": "Old Record", "totalFees": "5000", "paidFees": "1500",
        }
        updated = await engine.add_payment("legacy", {"date": "2025-02-01", "amount": "1000", "mode": "Online"})
        assert updated["paidFees"] == "1000"
        assert updated["remainingFees"] == "4000"

    @pytest.mark.asyncio
    async def test_ledger_failure_keeps_enquiry_write(self, engine, enquiry_store, payment_store):
        saved = await engine.save_enquiry(make_enquiry())
        payment_store.fail_on.add("add")

        with pytest.raises(LedgerSyncError) as exc:
            await engine.add_payment(saved["id"], {"date": "2025-02-01", "amount": "700", "mode": "Online"})

        assert exc.value.enquiry["paidFees"] == "700"
        assert enquiry_store.records[saved["id"]]["paidFees"] == "700"
        assert payment_store.records == {}


# ═══════════════════════════════════════════════════════════════
# 4. DELETE AUTHORIZATION
# ═══════════════════════════════════════════════════════════════

class TestDeleteEnquiry:
    @pytest.mark.asyncio
    async def test_non_admin_touches_nothing(self, engine, enquiry_store, user_session):
        saved = await engine.save_enquiry(make_enquiry())
        enquiry_store.calls.clear()

        assert await engine.delete_enquiry(user_session, saved["id"]) is False
        assert enquiry_store.calls == []
        assert saved["id"] in enquiry_store.records

    @pytest.mark.asyncio
    async def test_no_session_touches_nothing(self, engine, enquiry_store):
        assert await engine.delete_enquiry(None, "any") is False
        assert enquiry_store.calls == []

    @pytest.mark.asyncio
    async def test_admin_deletes(self, engine, enquiry_store, admin_session):
        saved = await engine.save_enquiry(make_enquiry())
        assert await engine.delete_enquiry(admin_session, saved["id"]) is True
        assert saved["id"] not in enquiry_store.records

    @pytest.mark.asyncio
    async def test_admin_missing_record(self, engine, admin_session):
        assert await engine.delete_enquiry(admin_session, "nope") is False


# ═══════════════════════════════════════════════════════════════
# 5. FOLLOW-UPS
# ═══════════════════════════════════════════════════════════════

TODAY = date(2025, 3, 10)


@pytest.fixture
def follow_up_store(enquiry_store):
    for record_id, call_back in (
        ("past", "2025-03-01"),
        ("yesterday", "2025-03-09"),
        ("today", "2025-03-10"),
        ("later", "2025-04-02"),
        ("soon", "2025-03-11"),
        ("none", ""),
    ):
        enquiry_store.records[record_id] = {"id": record_id, "fullName": record_id, "callBackDate": call_back}
    return enquiry_store


class TestFollowUps:
    @pytest.mark.asyncio
    async def test_today(self, engine, follow_up_store):
        result = await engine.get_today_follow_ups(today=TODAY)
        assert [e["id"] for e in result] == ["today"]

    @pytest.mark.asyncio
    async def test_upcoming_includes_today_sorted(self, engine, follow_up_store):
        result = await engine.get_all_follow_ups(today=TODAY)
        assert [e["id"] for e in result] == ["today", "soon", "later"]

    @pytest.mark.asyncio
    async def test_overdue(self, engine, follow_up_store):
        result = await engine.get_overdue_follow_ups(today=TODAY)
        assert [e["id"] for e in result] == ["past", "yesterday"]


# ═══════════════════════════════════════════════════════════════
# 6. SEARCH & AGGREGATES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def populated_store(enquiry_store):
    rows = [
        {"id": "e1", "fullName": "Asha Rao", "mobile": "9123456780", "email": "asha@example.com",
         "status": "Pending", "enquiryDistrict": "Pune", "education": "B.Com",
         "createdAt": "2025-01-05T10:00:00+00:00", "totalFees": "5000", "paidFees": "1000"},
        {"id": "e2", "fullName": "Vikram Shah", "mobile": "9988776655", "email": "vikram@example.com",
         "status": "Confirmed", "enquiryState": "Pune", "education": "Other", "customEducation": "Diploma",
         "createdAt": "2025-01-20T10:00:00+00:00", "totalFees": "8000", "paidFees": "8000"},
        {"id": "e3", "fullName": "Meera Iyer", "mobile": "9000011111", "email": "meera@example.com",
         "status": "In Process", "enquiryDistrict": "Chennai", "education": "B.Com",
         "createdAt": "2025-02-01T23:30:00+00:00", "totalFees": "4000"},
        {"id": "e4", "fullName": "Karan Mehta", "mobile": "9555555555", "email": "karan@example.com",
         "status": "Pending", "createdAt": "2025-02-10T08:00:00+00:00"},
    ]
    for row in rows:
        enquiry_store.records[row["id"]] = row
    return enquiry_store


class TestSearch:
    @pytest.mark.asyncio
    async def test_search_name_case_insensitive(self, engine, populated_store):
        result = await engine.search_enquiries("ASHA")
        assert [e["id"] for e in result] == ["e1"]

    @pytest.mark.asyncio
    async def test_search_mobile_fragment(self, engine, populated_store):
        result = await engine.search_enquiries("99887")
        assert [e["id"] for e in result] == ["e2"]

    @pytest.mark.asyncio
    async def test_blank_search_returns_all(self, engine, populated_store):
        assert len(await engine.search_enquiries("  ")) == 4

    @pytest.mark.asyncio
    async def test_by_status(self, engine, populated_store):
        result = await engine.get_enquiries_by_status("Pending")
        assert {e["id"] for e in result} == {"e1", "e4"}

    @pytest.mark.asyncio
    async def test_date_range_inclusive(self, engine, populated_store):
        result = await engine.get_enquiries_by_date_range("2025-01-20", "2025-02-01")
        assert {e["id"] for e in result} == {"e2", "e3"}

    @pytest.mark.asyncio
    async def test_advanced_search_filters(self, engine, populated_store):
        result = await engine.advanced_search({"status": "All", "district": "Pune"})
        assert {e["id"] for e in result} == {"e1", "e2"}

        result = await engine.advanced_search({"education": "B.Com", "dateFrom": "2025-01-10"})
        assert [e["id"] for e in result] == ["e3"]

        result = await engine.advanced_search({"searchTerm": "example.com", "dateTo": "2025-01-20"})
        assert {e["id"] for e in result} == {"e1", "e2"}


class TestAggregates:
    @pytest.mark.asyncio
    async def test_statistics(self, engine, populated_store):
        assert await engine.get_statistics() == {"total": 4, "confirmed": 1, "pending": 2, "inProcess": 1}

    @pytest.mark.asyncio
    async def test_payment_statistics(self, engine, populated_store):
        stats = await engine.get_payment_statistics()
        assert stats["totalFees"] == 17000.0
        assert stats["totalPaid"] == 9000.0
        assert stats["totalRemaining"] == 8000.0
        assert stats["paidEnquiries"] == 2
        assert stats["unpaidEnquiries"] == 1

    @pytest.mark.asyncio
    async def test_by_state_reads_legacy_alias(self, engine, populated_store):
        assert await engine.get_enquiries_by_state() == {"Pune": 2, "Chennai": 1}

    @pytest.mark.asyncio
    async def test_by_education_uses_custom_value(self, engine, populated_store):
        assert await engine.get_enquiries_by_education() == {"B.Com": 2, "Diploma": 1}

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, engine, enquiry_store):
        from enquiry_crm.services.record_store import StoreError

        enquiry_store.fail_on.add("get_all")
        with pytest.raises(StoreError):
            await engine.get_statistics()


# ═══════════════════════════════════════════════════════════════
# 7. DUPLICATES & BULK IMPORT
# ═══════════════════════════════════════════════════════════════

class TestDuplicatesThroughEngine:
    @pytest.mark.asyncio
    async def test_exclude_own_record(self, engine, populated_store):
        assert await engine.is_mobile_exists("9123456780") is True
        assert await engine.is_mobile_exists("9123456780", exclude_id="e1") is False
        assert await engine.is_email_exists("  ASHA@example.com ") is True

    @pytest.mark.asyncio
    async def test_existing_enquiry_priority(self, engine, populated_store):
        found = await engine.get_existing_enquiry(mobile="9988776655", email="asha@example.com")
        assert found["id"] == "e2"


class TestBulkImport:
    @pytest.mark.asyncio
    async def test_duplicates_skipped_with_index(self, engine, populated_store, admin_session):
        rows = [
            make_enquiry(mobile="9111111111", email="new1@example.com"),
            make_enquiry(mobile="9123456780", email="new2@example.com"),
            make_enquiry(mobile="9111111111", email="new3@example.com"),
            make_enquiry(mobile="9222222222", email="new4@example.com"),
        ]
        result = await engine.bulk_import_enquiries(rows, admin_session)

        assert result["success"] == 2
        assert result["failed"] == 2
        assert result["errors"] == [
            {"index": 1, "error": "Mobile number already exists"},
            {"index": 2, "error": "Mobile number already exists"},
        ]
        assert len(populated_store.records) == 6

    @pytest.mark.asyncio
    async def test_row_paid_over_total_is_a_failure(self, engine, enquiry_store, admin_session):
        rows = [make_enquiry(totalFees="1000", paymentHistory=[{"date": "2025-01-10", "amount": "2000", "mode": "Online"}])]
        result = await engine.bulk_import_enquiries(rows, admin_session)

        assert result == {
            "success": 0, "failed": 1,
            "errors": [{"index": 0, "error": "Paid fees cannot exceed total fees"}],
        }
        assert enquiry_store.records == {}
