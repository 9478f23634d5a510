"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ENQUIRY CRM - Payment Ledger                                                ║
║                                                                              ║
║  Flat "payments" collection mirroring every PaymentEntry appended to an      ║
║  enquiry's paymentHistory (amount > 0 only), plus manual payments with       ║
║  enquiryId = "".                                                             ║
║                                                                              ║
║  - rows are never updated in place                                           ║
║  - only an administrator deletes a row                                       ║
║  - reconcile() reports history entries missing from the ledger               ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from enquiry_crm.config import now_iso
from enquiry_crm.services.enquiry_normalizer import to_amount, format_amount
from enquiry_crm.services.permissions import Session
from enquiry_crm.services.record_store import RecordStore

logger = logging.getLogger("payment_ledger")

INITIAL_PAYMENT_NOTE = "Initial payment recorded at registration"


def _legacy_key(enquiry_id: str, date: Any, amount: Any) -> tuple:
    return (enquiry_id or "", str(date or "")[:10], format_amount(to_amount(amount)))


class PaymentLedger:
    """Ledger operations over the payments collection"""

    def __init__(self, store: RecordStore):
        self.store = store

    async def get_payments(self) -> List[Dict]:
        payments = await self.store.get_all()
        payments.sort(key=lambda p: p.get("createdAt", ""), reverse=True)
        return payments

    async def get_payments_for_enquiry(self, enquiry_id: str) -> List[Dict]:
        return await self.store.find(enquiryId=enquiry_id)

    async def save_payment(self, payment: Dict) -> Dict:
        """Write one ledger row. Used for mirrored entries and manual payments."""
        record = {
            "enquiryId": payment.get("enquiryId") or "",
            "enquiryName": payment.get("enquiryName") or "",
            "date": payment.get("date"),
            "amount": float(to_amount(payment.get("amount"))),
            "mode": payment.get("mode"),
            "offlineType": payment.get("offlineType"),
            "reference": payment.get("reference"),
            "note": payment.get("note"),
            "createdBy": payment.get("createdBy"),
            "paymentEntryId": payment.get("paymentEntryId"),
            "createdAt": now_iso(),
        }
        result = await self.store.add(record)
        record["id"] = result.id
        logger.info(
            f"[LEDGER] payment {record['id']} amount={record['amount']} "
            f"enquiry={record['enquiryId'] or 'manual'}"
        )
        return record

    async def mirror_entry(self, enquiry: Dict, entry: Dict, note: Optional[str] = None) -> Optional[Dict]:
        """Mirror a paymentHistory entry into the ledger. Zero amounts are not mirrored."""
        if to_amount(entry.get("amount")) <= 0:
            return None
        return await self.save_payment({
            "enquiryId": enquiry.get("id"),
            "enquiryName": enquiry.get("fullName"),
            "date": entry.get("date"),
            "amount": entry.get("amount"),
            "mode": entry.get("mode"),
            "offlineType": entry.get("method"),
            "reference": entry.get("reference"),
            "note": entry.get("note") or note,
            "createdBy": entry.get("createdBy"),
            "paymentEntryId": entry.get("id"),
        })

    async def delete_payment(self, session: Optional[Session], payment_id: str) -> bool:
        """False, without touching the store, unless the session is an administrator."""
        if session is None or not session.can_delete():
            logger.warning(
                f"[PERMISSION_DENIED] delete payment={payment_id} "
                f"user={session.email if session else None}"
            )
            return False
        result = await self.store.delete(payment_id)
        if result.success:
            logger.info(f"[LEDGER] payment {payment_id} deleted by {session.email}")
        return result.success

    # ════════════════════════════════════════════════════════════════════
    # RECONCILIATION
    # ════════════════════════════════════════════════════════════════════

    async def reconcile(self, enquiries: List[Dict], repair: bool = False) -> Dict[str, Any]:
        """
        Compare every positive history entry with the ledger rows.
        Rows written before paymentEntryId existed are matched on
        (enquiryId, date, amount).
        With repair=True the missing entries are mirrored.
        """
        payments = await self.store.get_all()
        by_entry_id = {p["paymentEntryId"] for p in payments if p.get("paymentEntryId")}
        legacy = Counter(
            _legacy_key(p.get("enquiryId"), p.get("date"), p.get("amount"))
            for p in payments
            if not p.get("paymentEntryId") and p.get("enquiryId")
        )

        history_entries = 0
        missing = []
        for enquiry in enquiries:
            for entry in enquiry.get("paymentHistory") or []:
                if to_amount(entry.get("amount")) <= 0:
                    continue
                history_entries += 1
                if entry.get("id") and entry["id"] in by_entry_id:
                    continue
                key = _legacy_key(enquiry.get("id"), entry.get("date"), entry.get("amount"))
                if legacy[key] > 0:
                    legacy[key] -= 1
                    continue
                missing.append({
                    "enquiryId": enquiry.get("id"),
                    "enquiryName": enquiry.get("fullName"),
                    "paymentEntryId": entry.get("id"),
                    "date": entry.get("date"),
                    "amount": entry.get("amount"),
                    "_enquiry": enquiry,
                    "_entry": entry,
                })

        repaired = 0
        if repair:
            for item in missing:
                await self.mirror_entry(item["_enquiry"], item["_entry"])
                repaired += 1

        report = {
            "checkedAt": now_iso(),
            "enquiriesChecked": len(enquiries),
            "historyEntries": history_entries,
            "ledgerRows": len(payments),
            "missingFromLedger": [
                {k: v for k, v in item.items() if not k.startswith("_")} for item in missing
            ],
            "repaired": repaired,
        }
        if missing:
            logger.warning(
                f"[LEDGER] reconciliation: {len(missing)} history entries missing from ledger "
                f"(repaired={repaired})"
            )
        else:
            logger.info(f"[LEDGER] reconciliation OK: {history_entries} entries checked")
        return report
