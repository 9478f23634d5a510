"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ENQUIRY CRM - Duplicate Detection                                           ║
║                                                                              ║
║  Unique fields: aadharNumber, mobile, email                                  ║
║  - Aadhar compared with all whitespace removed                               ║
║  - Email compared lower-cased and trimmed                                    ║
║  - Mobile compared exactly                                                   ║
║  - exclude_id skips the enquiry being edited                                 ║
║                                                                              ║
║  Read-then-write: nothing stops a concurrent writer between the check and    ║
║  the save.                                                                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import re
from typing import Any, Dict, List, Optional

DUPLICATE_MESSAGES = {
    "aadharNumber": "This Aadhar number is already registered",
    "mobile": "This mobile number is already registered",
    "email": "This email address is already registered",
}

UNIQUE_FIELD_ERRORS = {
    "aadharNumber": "Aadhar number already exists",
    "mobile": "Mobile number already exists",
    "email": "Email address already exists",
}

# Reporting order
UNIQUE_FIELDS = ["aadharNumber", "mobile", "email"]


class DuplicateCheck:
    """One duplicate finding for a unique field"""

    def __init__(self, field: str, message: str, existing_id: Optional[str] = None):
        self.field = field
        self.message = message
        self.existing_id = existing_id

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "message": self.message, "existingId": self.existing_id}

    def __eq__(self, other):
        return isinstance(other, DuplicateCheck) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"DuplicateCheck({self.field!r}, existing_id={self.existing_id!r})"


def match_key(field: str, value: Any) -> str:
    """Comparison key for a unique field value"""
    text = str(value or "")
    if field == "aadharNumber":
        return re.sub(r"\s", "", text)
    if field == "email":
        return text.lower().strip()
    return text


def find_match(enquiries: List[Dict], field: str, value: Any, exclude_id: str = None) -> Optional[Dict]:
    """First enquiry (other than exclude_id) holding the same value for field."""
    key = match_key(field, value)
    if not key:
        return None
    for enquiry in enquiries:
        if exclude_id is not None and enquiry.get("id") == exclude_id:
            continue
        if match_key(field, enquiry.get(field)) == key:
            return enquiry
    return None


def check_duplicates(enquiries: List[Dict], candidate: Dict, exclude_id: str = None) -> List[DuplicateCheck]:
    """At most one finding per unique field, in aadhar / mobile / email order."""
    findings = []
    for field in UNIQUE_FIELDS:
        if not candidate.get(field):
            continue
        existing = find_match(enquiries, field, candidate[field], exclude_id)
        if existing:
            findings.append(DuplicateCheck(field, DUPLICATE_MESSAGES[field], existing.get("id")))
    return findings


def get_existing_enquiry(
    enquiries: List[Dict],
    aadhar: str = None,
    mobile: str = None,
    email: str = None,
) -> Optional[Dict]:
    """First match by priority: Aadhar, then mobile, then email."""
    for field, value in (("aadharNumber", aadhar), ("mobile", mobile), ("email", email)):
        if value:
            found = find_match(enquiries, field, value)
            if found:
                return found
    return None


def validate_unique_fields(enquiries: List[Dict], candidate: Dict, exclude_id: str = None) -> Dict[str, Any]:
    """{isValid, errors[]} form used by bulk imports"""
    errors = [
        UNIQUE_FIELD_ERRORS[finding.field]
        for finding in check_duplicates(enquiries, candidate, exclude_id)
    ]
    return {"isValid": not errors, "errors": errors}
