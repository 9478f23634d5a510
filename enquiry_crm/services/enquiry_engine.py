"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ENQUIRY CRM - Enquiry Lifecycle & Payment Engine                            ║
║                                                                              ║
║  Lifecycle:  Pending -> In Process -> Confirmed  (admin-only hard delete)    ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - every read goes through migrate_enquiry()                                 ║
║  - non-empty paymentHistory IMPLIES paidFees == sum(history.amount)          ║
║  - remainingFees == max(totalFees - paidFees, 0)                             ║
║  - nothing is written when a payment rule is broken (paid > totalFees)       ║
║  - every appended history entry with amount > 0 gets one ledger row;         ║
║    entries already recorded keep their id on update                          ║
║  - a failed ledger mirror after a successful enquiry write raises            ║
║    LedgerSyncError carrying the updated enquiry                              ║
║  - store failures always propagate as StoreError                             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import secrets
import time
from collections import Counter
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from enquiry_crm.config import now_iso, today_local
from enquiry_crm.services import duplicate_detector
from enquiry_crm.services.duplicate_detector import DuplicateCheck
from enquiry_crm.services.enquiry_normalizer import (
    FIELD_ALIASES,
    ZERO,
    amount_str,
    compute_fees,
    format_amount,
    history_total,
    migrate_enquiry,
    to_amount,
)
from enquiry_crm.services.enquiry_rules import (
    DEFAULT_STATUS,
    apply_status_interest_rules,
    parse_date,
)
from enquiry_crm.services.payment_ledger import INITIAL_PAYMENT_NOTE, PaymentLedger
from enquiry_crm.services.permissions import Session
from enquiry_crm.services.record_store import RecordStore, StoreError

logger = logging.getLogger("enquiry_engine")

BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

# Set by the store or by the engine, never by a caller
PROTECTED_FIELDS = ("id", "createdAt")


class PaymentRuleError(Exception):
    """A payment was rejected before anything was written."""


class LedgerSyncError(Exception):
    """The enquiry was written but its ledger mirror was not."""

    def __init__(self, enquiry: Dict, cause: Exception):
        self.enquiry = enquiry
        self.cause = cause
        super().__init__(
            f"Enquiry {enquiry.get('id')} saved but the payment ledger could not be updated: {cause}"
        )


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(BASE36[rem])
    return "".join(reversed(digits))


def generate_payment_id(now_ms: int = None) -> str:
    """PMT-<base36 ms timestamp>-<6 random base36 chars>"""
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    suffix = "".join(secrets.choice(BASE36) for _ in range(6))
    return f"PMT-{to_base36(now_ms)}-{suffix}"


def _sync_aliases(changes: Dict) -> Dict:
    """Write the canonical and legacy name together so neither goes stale."""
    for canonical, alias in FIELD_ALIASES:
        if canonical in changes:
            changes[alias] = changes[canonical]
        elif alias in changes:
            changes[canonical] = changes[alias]
    return changes


def _same_payment(recorded: Dict, entry: Dict) -> bool:
    return (
        str(recorded.get("date") or "")[:10] == str(entry.get("date") or "")[:10]
        and to_amount(recorded.get("amount")) == to_amount(entry.get("amount"))
        and recorded.get("mode") == entry.get("mode")
    )


def _prepare_history(
    history: Any, created_by: Optional[str], recorded: Optional[List[Dict]] = None
) -> Tuple[List[Dict], List[Dict]]:
    """
    Returns (history, new entries).

    An entry already in ``recorded`` keeps its stored form and id. It is
    recognised by id, or when sent without an id, by date, amount and mode.
    Every other entry is new and gets a fresh id, whatever id it was sent with.
    """
    if not isinstance(history, list):
        return [], []
    recorded = [e for e in recorded or [] if isinstance(e, dict)]
    claimed = set()

    def claim(matches) -> Optional[Dict]:
        for index, candidate in enumerate(recorded):
            if index not in claimed and matches(candidate):
                claimed.add(index)
                return candidate
        return None

    prepared, new_entries = [], []
    for entry in history:
        entry = dict(entry)
        if entry.get("id"):
            known = claim(lambda c: c.get("id") == entry["id"])
        else:
            known = claim(lambda c: _same_payment(c, entry))
        if known is not None:
            prepared.append(dict(known))
            continue

        entry["id"] = generate_payment_id()
        entry["amount"] = amount_str(entry.get("amount"), "0")
        if not entry.get("createdBy") and created_by:
            entry["createdBy"] = created_by
        prepared.append(entry)
        new_entries.append(entry)
    return prepared, new_entries


def _check_fee_cap(total_fees: str, paid_fees: str) -> None:
    if total_fees != "" and to_amount(paid_fees) > to_amount(total_fees):
        raise PaymentRuleError("Paid fees cannot exceed total fees")


class EnquiryEngine:
    """Enquiry lifecycle, payments, duplicate detection and aggregates"""

    def __init__(self, store: RecordStore, ledger: PaymentLedger):
        self.store = store
        self.ledger = ledger

    # ════════════════════════════════════════════════════════════════════
    # READ
    # ════════════════════════════════════════════════════════════════════

    async def get_all_enquiries(self) -> List[Dict]:
        records = await self.store.get_all()
        return [migrate_enquiry(r) for r in records]

    async def get_enquiry_by_id(self, enquiry_id: str) -> Optional[Dict]:
        record = await self.store.get(enquiry_id)
        return migrate_enquiry(record) if record else None

    # ════════════════════════════════════════════════════════════════════
    # WRITE
    # ════════════════════════════════════════════════════════════════════

    async def save_enquiry(self, data: Dict, session: Optional[Session] = None) -> Dict:
        now = now_iso()
        created_by = session.email if session else None
        changes = {k: v for k, v in data.items() if k != "id"}

        if changes.get("status"):
            changes = apply_status_interest_rules({}, changes)
        else:
            # Default status, the interest level is the field being set
            changes.pop("status", None)
            changes = {"status": DEFAULT_STATUS, **apply_status_interest_rules({"status": DEFAULT_STATUS}, changes)}

        record = _sync_aliases(changes)
        record.setdefault("createdAt", now)
        record.setdefault("updatedAt", now)
        if created_by:
            record.setdefault("createdBy", created_by)

        history, new_entries = _prepare_history(record.get("paymentHistory"), created_by)
        record["paymentHistory"] = history
        record["totalFees"] = amount_str(record.get("totalFees"))
        record["paidFees"], record["remainingFees"] = compute_fees(
            record["totalFees"], record.get("paidFees"), history
        )
        _check_fee_cap(record["totalFees"], record["paidFees"])

        result = await self.store.add(record)
        saved = migrate_enquiry({**record, "id": result.id})
        logger.info(f"[ENQUIRY] created {saved['id']} status={saved.get('status')} by={created_by}")

        await self._mirror_entries(saved, new_entries, first_note=INITIAL_PAYMENT_NOTE)
        return saved

    async def update_enquiry(self, enquiry_id: str, partial: Dict, session: Optional[Session] = None) -> Optional[Dict]:
        previous = await self.store.get(enquiry_id)
        if previous is None:
            return None

        current = migrate_enquiry(previous)
        changes = {k: v for k, v in partial.items() if k not in PROTECTED_FIELDS}
        changes = _sync_aliases(apply_status_interest_rules(current, changes))
        merged = {**previous, **changes}

        history = merged.get("paymentHistory")
        new_entries = []
        if "paymentHistory" in changes:
            history, new_entries = _prepare_history(
                history, session.email if session else None, current["paymentHistory"]
            )
            changes["paymentHistory"] = history
        elif not isinstance(history, list):
            history = []
        if "totalFees" in changes:
            changes["totalFees"] = amount_str(changes["totalFees"])

        total = changes.get("totalFees", amount_str(merged.get("totalFees")))
        changes["paidFees"], changes["remainingFees"] = compute_fees(total, merged.get("paidFees"), history)
        if any(f in partial for f in ("paymentHistory", "totalFees", "paidFees")):
            _check_fee_cap(total, changes["paidFees"])
        changes["updatedAt"] = now_iso()

        result = await self.store.update(enquiry_id, changes)
        if not result.success:
            return None
        logger.info(f"[ENQUIRY] updated {enquiry_id} fields={sorted(partial.keys())}")
        updated = migrate_enquiry({**previous, **changes, "id": enquiry_id})

        await self._mirror_entries(updated, new_entries)
        return updated

    async def _mirror_entries(self, enquiry: Dict, entries: List[Dict], first_note: Optional[str] = None):
        """Ledger rows for newly appended history entries. The note applies to the first entry only."""
        note = first_note
        for entry in entries:
            try:
                await self.ledger.mirror_entry(enquiry, entry, note=note)
            except StoreError as e:
                logger.error(f"[ENQUIRY] {enquiry['id']} saved, payment {entry['id']} not mirrored: {e}")
                raise LedgerSyncError(enquiry, e) from e
            note = None

    async def add_payment(self, enquiry_id: str, entry: Dict, session: Optional[Session] = None) -> Optional[Dict]:
        """
        Append a payment to the enquiry history and mirror it to the ledger.
        Raises PaymentRuleError, before any write, when totalFees is not set
        or when the new cumulative paid amount would exceed totalFees.
        """
        record = await self.store.get(enquiry_id)
        if record is None:
            return None
        previous = migrate_enquiry(record)

        total = to_amount(previous.get("totalFees"))
        if total <= 0:
            raise PaymentRuleError("Total fees must be set before adding a payment")

        amount = to_amount(entry.get("amount"))
        if amount < 0:
            raise PaymentRuleError("Payment amount cannot be negative")

        new_entry = {
            "id": generate_payment_id(),
            "date": entry.get("date"),
            "amount": format_amount(amount),
            "mode": entry.get("mode"),
            "method": entry.get("method") if entry.get("mode") == "Offline" else None,
            "reference": entry.get("reference"),
            "note": entry.get("note"),
            "createdBy": entry.get("createdBy") or (session.email if session else None) or "admin",
        }
        history = previous["paymentHistory"] + [new_entry]
        new_paid = history_total(history)
        if new_paid > total:
            raise PaymentRuleError("Payment exceeds total fees")

        changes = {
            "paymentHistory": history,
            "paidFees": format_amount(new_paid),
            "remainingFees": format_amount(max(total - new_paid, ZERO)),
            "updatedAt": now_iso(),
        }
        result = await self.store.update(enquiry_id, changes)
        if not result.success:
            return None
        updated = migrate_enquiry({**previous, **changes})
        logger.info(
            f"[PAYMENT] {new_entry['id']} amount={new_entry['amount']} enquiry={enquiry_id} "
            f"paid={updated['paidFees']} remaining={updated['remainingFees']}"
        )

        try:
            await self.ledger.mirror_entry(updated, new_entry)
        except StoreError as e:
            logger.error(f"[PAYMENT] {new_entry['id']} recorded on enquiry {enquiry_id}, ledger write failed: {e}")
            raise LedgerSyncError(updated, e) from e
        return updated

    async def delete_enquiry(self, session: Optional[Session], enquiry_id: str) -> bool:
        """False, without touching the store, unless the session is an administrator."""
        if session is None or not session.can_delete():
            logger.warning(
                f"[PERMISSION_DENIED] delete enquiry={enquiry_id} "
                f"user={session.email if session else None}"
            )
            return False
        result = await self.store.delete(enquiry_id)
        if result.success:
            logger.info(f"[ENQUIRY] deleted {enquiry_id} by {session.email}")
        return result.success

    async def bulk_import_enquiries(self, rows: List[Dict], session: Optional[Session] = None) -> Dict[str, Any]:
        """Save rows one by one, skipping any whose mobile, email or Aadhar is already taken."""
        result = {"success": 0, "failed": 0, "errors": []}
        existing = await self.get_all_enquiries()
        for index, row in enumerate(rows):
            check = duplicate_detector.validate_unique_fields(existing, row)
            if not check["isValid"]:
                result["failed"] += 1
                result["errors"].append({"index": index, "error": ", ".join(check["errors"])})
                continue
            try:
                saved = await self.save_enquiry(row, session)
            except PaymentRuleError as e:
                result["failed"] += 1
                result["errors"].append({"index": index, "error": str(e)})
                continue
            except LedgerSyncError as e:
                saved = e.enquiry
                result["errors"].append({"index": index, "error": str(e)})
            existing.append(saved)
            result["success"] += 1
        logger.info(f"[ENQUIRY] bulk import: success={result['success']} failed={result['failed']}")
        return result

    # ════════════════════════════════════════════════════════════════════
    # DUPLICATES
    # ════════════════════════════════════════════════════════════════════

    async def check_duplicates(self, candidate: Dict, exclude_id: str = None) -> List[DuplicateCheck]:
        enquiries = await self.get_all_enquiries()
        return duplicate_detector.check_duplicates(enquiries, candidate, exclude_id)

    async def get_existing_enquiry(self, aadhar: str = None, mobile: str = None, email: str = None) -> Optional[Dict]:
        enquiries = await self.get_all_enquiries()
        return duplicate_detector.get_existing_enquiry(enquiries, aadhar, mobile, email)

    async def validate_unique_fields(self, candidate: Dict, exclude_id: str = None) -> Dict[str, Any]:
        enquiries = await self.get_all_enquiries()
        return duplicate_detector.validate_unique_fields(enquiries, candidate, exclude_id)

    async def _exists(self, field: str, value: str, exclude_id: str = None) -> bool:
        enquiries = await self.get_all_enquiries()
        return duplicate_detector.find_match(enquiries, field, value, exclude_id) is not None

    async def is_mobile_exists(self, mobile: str, exclude_id: str = None) -> bool:
        return await self._exists("mobile", mobile, exclude_id)

    async def is_email_exists(self, email: str, exclude_id: str = None) -> bool:
        return await self._exists("email", email, exclude_id)

    async def is_aadhar_exists(self, aadhar: str, exclude_id: str = None) -> bool:
        return await self._exists("aadharNumber", aadhar, exclude_id)

    # ════════════════════════════════════════════════════════════════════
    # SEARCH
    # ════════════════════════════════════════════════════════════════════

    async def search_enquiries(self, term: str) -> List[Dict]:
        enquiries = await self.get_all_enquiries()
        term = (term or "").strip().lower()
        if not term:
            return enquiries
        return [
            e for e in enquiries
            if term in (e.get("fullName") or "").lower()
            or term in (e.get("mobile") or "")
            or term in (e.get("email") or "").lower()
            or term in (e.get("id") or "").lower()
        ]

    async def get_enquiries_by_status(self, status: str) -> List[Dict]:
        enquiries = await self.get_all_enquiries()
        return [e for e in enquiries if e.get("status") == status]

    async def get_enquiries_by_date_range(self, start, end) -> List[Dict]:
        """Enquiries created between start and end, both days inclusive."""
        start, end = parse_date(start), parse_date(end)
        enquiries = await self.get_all_enquiries()
        result = []
        for e in enquiries:
            created = parse_date(e.get("createdAt"))
            if created and (start is None or created >= start) and (end is None or created <= end):
                result.append(e)
        return result

    async def advanced_search(self, filters: Dict) -> List[Dict]:
        """
        Filters: searchTerm, status, district, education, dateFrom, dateTo.
        "All" or empty means no filter. dateTo includes the whole day.
        """
        term = (filters.get("searchTerm") or "").strip()
        enquiries = await self.search_enquiries(term) if term else await self.get_all_enquiries()

        def wanted(key):
            value = filters.get(key)
            return None if value in (None, "", "All") else value

        status, district, education = wanted("status"), wanted("district"), wanted("education")
        date_from, date_to = parse_date(filters.get("dateFrom")), parse_date(filters.get("dateTo"))

        result = []
        for e in enquiries:
            if status and e.get("status") != status:
                continue
            if district and e.get("enquiryDistrict") != district:
                continue
            if education and e.get("education") != education:
                continue
            created = parse_date(e.get("createdAt"))
            if (date_from or date_to) and created is None:
                continue
            if date_from and created < date_from:
                continue
            if date_to and created > date_to:
                continue
            result.append(e)
        return result

    # ════════════════════════════════════════════════════════════════════
    # FOLLOW-UPS
    # ════════════════════════════════════════════════════════════════════

    async def _follow_ups(self, keep, today: date = None) -> List[Dict]:
        today = today or today_local()
        enquiries = await self.get_all_enquiries()
        result = []
        for e in enquiries:
            call_back = parse_date(e.get("callBackDate"))
            if call_back and keep(call_back, today):
                result.append(e)
        result.sort(key=lambda e: str(e.get("callBackDate")))
        return result

    async def get_today_follow_ups(self, today: date = None) -> List[Dict]:
        return await self._follow_ups(lambda d, t: d == t, today)

    async def get_all_follow_ups(self, today: date = None) -> List[Dict]:
        return await self._follow_ups(lambda d, t: d >= t, today)

    async def get_overdue_follow_ups(self, today: date = None) -> List[Dict]:
        return await self._follow_ups(lambda d, t: d < t, today)

    # ════════════════════════════════════════════════════════════════════
    # AGGREGATES
    # ════════════════════════════════════════════════════════════════════

    async def get_statistics(self) -> Dict[str, int]:
        enquiries = await self.get_all_enquiries()
        statuses = Counter(e.get("status") for e in enquiries)
        return {
            "total": len(enquiries),
            "confirmed": statuses["Confirmed"],
            "pending": statuses["Pending"],
            "inProcess": statuses["In Process"],
        }

    async def get_payment_statistics(self) -> Dict[str, Any]:
        enquiries = await self.get_all_enquiries()
        total_fees = paid = remaining = ZERO
        paid_count = unpaid_count = 0
        for e in enquiries:
            fees = to_amount(e.get("totalFees"))
            paid_amount = to_amount(e.get("paidFees"))
            total_fees += fees
            paid += paid_amount
            remaining += to_amount(e.get("remainingFees"))
            if paid_amount > 0:
                paid_count += 1
            elif fees > 0:
                unpaid_count += 1
        return {
            "totalFees": float(total_fees),
            "totalPaid": float(paid),
            "totalRemaining": float(remaining),
            "paidEnquiries": paid_count,
            "unpaidEnquiries": unpaid_count,
        }

    async def get_enquiries_by_state(self) -> Dict[str, int]:
        enquiries = await self.get_all_enquiries()
        return dict(Counter(e["enquiryDistrict"] for e in enquiries if e.get("enquiryDistrict")))

    async def get_enquiries_by_education(self) -> Dict[str, int]:
        enquiries = await self.get_all_enquiries()
        counts = Counter()
        for e in enquiries:
            education = e.get("education")
            if education == "Other" and e.get("customEducation"):
                education = e["customEducation"]
            if education:
                counts[education] += 1
        return dict(counts)

    # ════════════════════════════════════════════════════════════════════
    # LEDGER
    # ════════════════════════════════════════════════════════════════════

    async def reconcile_ledger(self, repair: bool = False) -> Dict[str, Any]:
        enquiries = await self.get_all_enquiries()
        return await self.ledger.reconcile(enquiries, repair=repair)
