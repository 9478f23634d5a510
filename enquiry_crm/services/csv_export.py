"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ENQUIRY CRM - CSV Export                                                    ║
║                                                                              ║
║  Human downloads only, never re-imported.                                    ║
║  - every field quoted, embedded quotes doubled                               ║
║  - header row in the fixed column order below                                ║
║                                                                              ║
║  Files: enquiries backup, advertisement leads, per-enquiry payment receipt   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import csv
import io
import logging
from datetime import datetime, timezone
from typing import Dict, List

logger = logging.getLogger("csv_export")

# header -> getter
ENQUIRY_COLUMNS = [
    ("ID", lambda e: e.get("id")),
    ("Full Name", lambda e: e.get("fullName")),
    ("Mobile", lambda e: e.get("mobile")),
    ("Alternate Mobile", lambda e: e.get("alternateMobile")),
    ("Email", lambda e: e.get("email")),
    ("Address", lambda e: e.get("address")),
    ("District", lambda e: e.get("enquiryDistrict") or e.get("enquiryState")),
    ("Aadhar Number", lambda e: e.get("aadharNumber")),
    ("PAN Number", lambda e: e.get("panNumber")),
    ("Source", lambda e: e.get("sourceOfEnquiry")),
    ("Interest Level", lambda e: e.get("interestedStatus")),
    ("Status", lambda e: e.get("status")),
    ("Education", lambda e: e.get("education")),
    ("Custom Education", lambda e: e.get("customEducation")),
    ("Development / Domain Knowledge", lambda e: e.get("knowledgeOfAndroid") or e.get("knowledgeOfDevelopment")),
    ("How Did You Know", lambda e: e.get("howDidYouKnow")),
    ("Custom Source", lambda e: e.get("customHowDidYouKnow")),
    ("Profession", lambda e: e.get("customProfession") if e.get("profession") == "Other" else e.get("profession")),
    ("Call Back Date", lambda e: e.get("callBackDate")),
    ("Total Fees", lambda e: e.get("totalFees")),
    ("Paid Fees", lambda e: e.get("paidFees")),
    ("Remaining Fees", lambda e: e.get("remainingFees")),
    ("Created At", lambda e: e.get("createdAt")),
    ("Updated At", lambda e: e.get("updatedAt")),
]

ADVERTISEMENT_COLUMNS = [
    ("ID", lambda a: a.get("id")),
    ("Name", lambda a: a.get("name")),
    ("Phone No", lambda a: a.get("phoneNo")),
    ("Email", lambda a: a.get("email")),
    ("Aadhar No", lambda a: a.get("aadharNo")),
    ("PAN No", lambda a: a.get("panNo")),
    ("Imported At", lambda a: a.get("importedAt")),
]

RECEIPT_COLUMNS = [
    "Name", "Education", "TotalFees", "PaidFees", "RemainingFees",
    "PaymentDate", "PaymentAmount", "Mode", "OfflineType", "Note",
]


def _write(headers: List[str], rows: List[List]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow(["" if cell is None else cell for cell in row])
    return output.getvalue()


def generate_enquiries_csv(enquiries: List[Dict]) -> str:
    """Backup of all enquiries"""
    headers = [h for h, _ in ENQUIRY_COLUMNS]
    rows = [[get(e) for _, get in ENQUIRY_COLUMNS] for e in enquiries]
    logger.info(f"[CSV] enquiries export: {len(rows)} rows")
    return _write(headers, rows)


def generate_advertisements_csv(advertisements: List[Dict]) -> str:
    headers = [h for h, _ in ADVERTISEMENT_COLUMNS]
    rows = [[get(a) for _, get in ADVERTISEMENT_COLUMNS] for a in advertisements]
    logger.info(f"[CSV] advertisements export: {len(rows)} rows")
    return _write(headers, rows)


def generate_receipt_csv(enquiry: Dict) -> str:
    """One row per payment, or a single summary row when there is no history"""
    education = enquiry.get("education")
    if education == "Other" and enquiry.get("customEducation"):
        education = enquiry["customEducation"]
    summary = [
        enquiry.get("fullName"),
        education,
        enquiry.get("totalFees") or "0",
        enquiry.get("paidFees") or "0",
        enquiry.get("remainingFees") or "0",
    ]
    history = enquiry.get("paymentHistory") or []
    if not history:
        return _write(RECEIPT_COLUMNS, [summary + ["", "", "", "", ""]])
    rows = [
        summary + [p.get("date"), p.get("amount"), p.get("mode"), p.get("method"), p.get("note")]
        for p in history
    ]
    return _write(RECEIPT_COLUMNS, rows)


def generate_csv_filename(prefix: str) -> str:
    """enquiries_backup_2025-01-31.csv"""
    date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return f"{prefix}_{date_str}.csv"
