"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ENQUIRY CRM - Advertisement Lead Import                                     ║
║                                                                              ║
║  Per row (reported as "Row N", N = index + 2 for the spreadsheet header):    ║
║  1. normalize   name/email trimmed, phone/aadhar digits only, PAN upper      ║
║  2. validate    every violation collected                                    ║
║  3. dedupe      phoneNo vs stored records AND earlier rows of the batch      ║
║  4. stage                                                                    ║
║  One bulk_add for all staged rows at the end.                                ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import io
import logging
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from openpyxl import load_workbook

from enquiry_crm.config import APP_TIMEZONE, now_iso, today_local
from enquiry_crm.services.enquiry_rules import is_valid_pan
from enquiry_crm.services.record_store import RecordStore

logger = logging.getLogger("advertisement_import")

PHONE_RE = re.compile(r"^[6-9]\d{9}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
AADHAR_RE = re.compile(r"^\d{12}$")

# Spreadsheet column aliases, first match wins
HEADER_ALIASES = {
    "name": ["Name", "name"],
    "phoneNo": ["Phone No", "Phone Number", "phoneNo", "phone"],
    "email": ["Email", "email"],
    "aadharNo": ["Aadhar No", "aadharNo", "aadhar"],
    "panNo": ["PAN No", "panNo", "pan"],
}


def _text(value: Any) -> str:
    if value is None:
        return ""
    # Spreadsheet numbers: 9876543210.0 must not gain a digit
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def _digits(value: Any) -> str:
    return re.sub(r"\D", "", _text(value))


def normalize_row(row: Dict) -> Dict[str, str]:
    return {
        "name": _text(row.get("name")).strip(),
        "phoneNo": _digits(row.get("phoneNo")),
        "email": _text(row.get("email")).strip(),
        "aadharNo": _digits(row.get("aadharNo")),
        "panNo": _text(row.get("panNo")).strip().upper(),
    }


def validate_enquiry(candidate: Dict) -> Dict[str, Any]:
    """{isValid, errors[]}. Collects every violation."""
    errors = []

    name = _text(candidate.get("name")).strip()
    phone = _text(candidate.get("phoneNo")).strip()
    email = _text(candidate.get("email")).strip()
    aadhar = _text(candidate.get("aadharNo")).strip()
    pan = _text(candidate.get("panNo")).strip()

    if not name:
        errors.append("Name is required")
    elif len(name) < 2:
        errors.append("Name must be at least 2 characters")

    if not phone:
        errors.append("Phone number is required")
    elif not PHONE_RE.match(_digits(phone)):
        errors.append("Invalid phone number (must be 10 digits starting with 6-9)")

    if not email:
        errors.append("Email is required")
    elif not EMAIL_RE.match(email):
        errors.append("Invalid email address")

    if aadhar and not AADHAR_RE.match(_digits(aadhar)):
        errors.append("Invalid Aadhar number (must be 12 digits)")

    if pan and not is_valid_pan(pan):
        errors.append("Invalid PAN number (format: ABCDE1234F)")

    return {"isValid": not errors, "errors": errors}


def rows_from_sheet(records: List[Dict]) -> List[Dict]:
    """Map spreadsheet records (header -> cell) to import candidates."""
    rows = []
    for record in records:
        row = {}
        for field, aliases in HEADER_ALIASES.items():
            row[field] = next((record[a] for a in aliases if record.get(a) not in (None, "")), "")
        rows.append(row)
    return rows


def read_workbook_rows(content: bytes) -> List[Dict]:
    """First sheet of an .xlsx file as header -> value dicts. Blank rows are dropped."""
    workbook = load_workbook(filename=io.BytesIO(content), read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if not header:
            return []
        keys = [_text(h).strip() for h in header]
        records = []
        for values in rows:
            if all(v is None or _text(v).strip() == "" for v in values):
                continue
            records.append({k: v for k, v in zip(keys, values) if k})
        return records
    finally:
        workbook.close()


def _imported_on(value: Any) -> Optional[date]:
    try:
        stamp = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    if stamp.tzinfo is not None:
        stamp = stamp.astimezone(APP_TIMEZONE)
    return stamp.date()


class AdvertisementImporter:
    """Advertisement-sourced leads over the advertisements collection"""

    def __init__(self, store: RecordStore):
        self.store = store

    async def get_all_advertisement_enquiries(self) -> List[Dict]:
        return await self.store.get_all()

    async def add_advertisement_enquiry(self, enquiry: Dict, imported_by: str = None) -> Dict:
        record = {**normalize_row(enquiry), "importedAt": now_iso(), "importedBy": imported_by}
        result = await self.store.add(record)
        record["id"] = result.id
        return record

    async def add_bulk_advertisement_enquiries(self, rows: List[Dict], imported_by: str = None) -> Dict[str, Any]:
        result = {"success": 0, "failed": 0, "errors": []}
        stored_phones = {r.get("phoneNo") for r in await self.store.get_all()}
        staged = []
        staged_phones = set()

        for index, row in enumerate(rows):
            label = f"Row {index + 2}"
            candidate = normalize_row(row)

            validation = validate_enquiry(candidate)
            if not validation["isValid"]:
                result["failed"] += 1
                result["errors"].append(f"{label}: {', '.join(validation['errors'])}")
                continue

            phone = candidate["phoneNo"]
            if phone in stored_phones or phone in staged_phones:
                result["failed"] += 1
                result["errors"].append(f"{label}: Duplicate phone number {phone}")
                continue

            staged_phones.add(phone)
            staged.append({**candidate, "importedAt": now_iso(), "importedBy": imported_by})

        if staged:
            await self.store.bulk_add(staged)
        result["success"] = len(staged)

        logger.info(
            f"[IMPORT] advertisements: {len(rows)} rows, success={result['success']} "
            f"failed={result['failed']} by={imported_by}"
        )
        return result

    async def update_advertisement_enquiry(self, enquiry_id: str, updates: Dict) -> bool:
        """Only non-empty fields are applied, normalized the same way as an import."""
        normalized = normalize_row(updates)
        changes = {k: v for k, v in normalized.items() if updates.get(k) and v}
        result = await self.store.update(enquiry_id, changes)
        return result.success

    async def delete_advertisement_enquiry(self, enquiry_id: str) -> bool:
        result = await self.store.delete(enquiry_id)
        return result.success

    async def search_advertisement_enquiries(self, term: str) -> List[Dict]:
        enquiries = await self.store.get_all()
        term = (term or "").strip().lower()
        if not term:
            return enquiries
        fields = ("name", "phoneNo", "email", "aadharNo", "panNo")
        return [e for e in enquiries if any(term in _text(e.get(f)).lower() for f in fields)]

    async def get_advertisement_statistics(self, today: date = None) -> Dict[str, int]:
        enquiries = await self.store.get_all()
        today = today or today_local()
        return {
            "total": len(enquiries),
            "todayImported": sum(1 for e in enquiries if _imported_on(e.get("importedAt")) == today),
            "withAadhar": sum(1 for e in enquiries if e.get("aadharNo")),
            "withPAN": sum(1 for e in enquiries if e.get("panNo")),
        }
