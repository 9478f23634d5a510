"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ENQUIRY CRM - Enquiry Business Rules                                        ║
║                                                                              ║
║  Field validation (run by the API layer before every save/update)            ║
║  Status <-> interest coupling (run by the engine on every save/update):      ║
║  - Pending IMPLIES interest in {0%, 25%}                                     ║
║  - interest raised above 25% while Pending -> status "In Process"            ║
║  - status set to Pending while interest > 25% -> interest "25% Interested"   ║
║  Confirmed-only fields are required when the resulting status is Confirmed.  ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import re
from datetime import date
from typing import Dict, Optional

from enquiry_crm.config import today_local
from enquiry_crm.services.enquiry_normalizer import history_total, to_amount

ENQUIRY_STATUSES = ["Pending", "In Process", "Confirmed"]
DEFAULT_STATUS = "Pending"

INTEREST_LEVELS = [
    "0% Interested",
    "25% Interested",
    "50% Interested",
    "75% Interested",
    "100% Interested",
]
PENDING_MAX_INTEREST = 25
PENDING_CAPPED_INTEREST = "25% Interested"

PAYMENT_MODES = ["Online", "Offline"]
OFFLINE_METHODS = ["Cash", "Cheque"]

# 4th character of a PAN: holder category
PAN_CATEGORY_CODES = "PCHFATBLJG"

NAME_RE = re.compile(r"^[a-zA-Z\s.]+$")
MOBILE_DIGITS_RE = re.compile(r"^\d{10}$")
MOBILE_RE = re.compile(r"^[6-9]\d{9}$")
EMAIL_RE = re.compile(r"^[a-zA-Z0-9._-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
AADHAR_RE = re.compile(r"^\d{12}$")
PAN_RE = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
DEMAT_RE = re.compile(r"^[A-Z0-9]{8,16}$")

BLOCKED_AADHAR = {"000000000000", "111111111111"}

MAX_FUTURE_YEARS = 2


# ════════════════════════════════════════════════════════════════════════
# FIELD VALIDATORS (None = valid, str = error message)
# ════════════════════════════════════════════════════════════════════════

def validate_full_name(name: str) -> Optional[str]:
    name = (name or "").strip()
    if not name:
        return "Full name is required"
    if len(name) < 3:
        return "Name must be at least 3 characters"
    if not NAME_RE.match(name):
        return "Name can only contain letters, spaces, and dots"
    if len(name) > 100:
        return "Name must not exceed 100 characters"
    return None


def validate_mobile(mobile: str, label: str = "Mobile") -> Optional[str]:
    mobile = (mobile or "").strip()
    if not mobile:
        return f"{label} number is required"
    if not MOBILE_DIGITS_RE.match(mobile):
        return f"{label} number must be exactly 10 digits"
    if not MOBILE_RE.match(mobile):
        return f"{label} number must start with 6, 7, 8, or 9"
    return None


def validate_email(email: str) -> Optional[str]:
    email = (email or "").strip()
    if not email:
        return "Email address is required"
    if not EMAIL_RE.match(email):
        return "Please enter a valid email address"
    if len(email) > 100:
        return "Email must not exceed 100 characters"
    return None


def clean_aadhar(aadhar: str) -> str:
    return re.sub(r"\s", "", aadhar or "")


def validate_aadhar(aadhar: str) -> Optional[str]:
    cleaned = clean_aadhar(aadhar)
    if not cleaned:
        return None
    if not AADHAR_RE.match(cleaned):
        return "Aadhar number must be exactly 12 digits"
    if cleaned in BLOCKED_AADHAR:
        return "Invalid Aadhar number format"
    return None


def is_valid_pan(pan: str) -> bool:
    pan = (pan or "").strip().upper()
    return bool(PAN_RE.match(pan)) and pan[3] in PAN_CATEGORY_CODES


def validate_pan(pan: str) -> Optional[str]:
    if not (pan or "").strip():
        return None
    if not is_valid_pan(pan):
        return "Invalid PAN number (format: ABCDE1234F)"
    return None


def validate_address(address: str) -> Optional[str]:
    address = (address or "").strip()
    if not address:
        return "Address is required"
    if len(address) < 10:
        return "Address must be at least 10 characters"
    if len(address) > 500:
        return "Address must not exceed 500 characters"
    return None


def validate_demat_account(account: str, label: str) -> Optional[str]:
    account = (account or "").strip().upper()
    if not account:
        return None
    if not DEMAT_RE.match(account):
        return f"{label} must be 8-16 letters or digits"
    return None


def parse_date(value) -> Optional[date]:
    """Accepts YYYY-MM-DD or a full ISO-8601 timestamp."""
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if len(text) < 10:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def add_years(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year + years)
    except ValueError:
        # 29 February
        return d.replace(year=d.year + years, day=28)


def validate_date(value, label: str, allow_past: bool = False, today: date = None) -> Optional[str]:
    if not value:
        return f"{label} is required"
    parsed = parse_date(value)
    if parsed is None:
        return f"Invalid {label.lower()}"
    today = today or today_local()
    if not allow_past and parsed < today:
        return f"{label} cannot be in the past"
    if parsed > add_years(today, MAX_FUTURE_YEARS):
        return f"{label} cannot be more than {MAX_FUTURE_YEARS} years in the future"
    return None


def validate_fee(value, label: str) -> Optional[str]:
    text = str(value).strip() if value is not None else ""
    if not text:
        return None
    if not re.match(r"^\d+(\.\d{1,2})?$", text):
        return f"{label} must be a non-negative amount"
    return None


# ════════════════════════════════════════════════════════════════════════
# STATUS / INTEREST COUPLING
# ════════════════════════════════════════════════════════════════════════

def interest_rank(level: Optional[str]) -> int:
    """'75% Interested' -> 75. Unknown values rank as 0."""
    match = re.match(r"^\s*(\d+)\s*%", level or "")
    return int(match.group(1)) if match else 0


def apply_status_interest_rules(previous: Dict, changes: Dict) -> Dict:
    """
    Returns a copy of ``changes`` with the dependent field adjusted.

    Which field was edited decides the outcome: an edited status (alone or
    together with interest) caps the interest at 25%, an edited interest
    alone promotes the enquiry to "In Process".
    """
    result = dict(changes)
    status = result.get("status", previous.get("status"))
    interest = result.get("interestedStatus", previous.get("interestedStatus"))

    if status != "Pending" or interest_rank(interest) <= PENDING_MAX_INTEREST:
        return result

    status_changed = "status" in changes and changes["status"] != previous.get("status")
    interest_changed = (
        "interestedStatus" in changes
        and changes["interestedStatus"] != previous.get("interestedStatus")
    )

    if status_changed:
        result["interestedStatus"] = PENDING_CAPPED_INTEREST
    elif interest_changed:
        result["status"] = "In Process"
    return result


# ════════════════════════════════════════════════════════════════════════
# WHOLE-RECORD VALIDATION
# ════════════════════════════════════════════════════════════════════════

ALWAYS_REQUIRED_FIELDS = ["fullName", "mobile", "email", "address", "interestedStatus", "callBackDate"]

CONFIRMED_REQUIRED_FIELDS = {
    "aadharNumber": "Aadhar number is required for confirmed enquiries",
    "panNumber": "PAN number is required for confirmed enquiries",
    "demateAccount1": "Demat account is required for confirmed enquiries",
    "sourceOfEnquiry": "Please select source of enquiry",
    "education": "Please select Education",
    "profession": "Please select profession",
    "knowledgeOfAndroid": "Please select knowledge level",
    "howDidYouKnow": "Please select an option",
    "depositInwardDate": "Deposit inward date is required for confirmed enquiries",
    "depositOutwardDate": "Deposit outward date is required for confirmed enquiries",
}

# choice field -> (custom field, message) when the choice is "Other"
CUSTOM_OTHER_FIELDS = {
    "education": ("customEducation", "Please specify your Education"),
    "howDidYouKnow": ("customHowDidYouKnow", "Please specify how you knew about us"),
    "profession": ("customProfession", "Please specify your profession"),
}


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_enquiry(data: Dict, previous: Optional[Dict] = None, today: date = None) -> Dict[str, str]:
    """
    Field-scoped validation. Returns {field: message}; empty dict means valid.

    For a create (previous is None) the always-required fields are checked.
    For an update only the submitted fields are checked, while cross-field
    and Confirmed rules look at the merged record.
    """
    errors: Dict[str, str] = {}
    creating = previous is None
    merged = {**(previous or {}), **data}
    today = today or today_local()

    def check(field: str) -> bool:
        return creating and field in ALWAYS_REQUIRED_FIELDS or field in data

    if check("fullName"):
        error = validate_full_name(data.get("fullName"))
        if error:
            errors["fullName"] = error

    if check("mobile"):
        error = validate_mobile(data.get("mobile"))
        if error:
            errors["mobile"] = error

    if not _blank(data.get("alternateMobile")):
        error = validate_mobile(data.get("alternateMobile"), "Alternate mobile")
        if not error and data["alternateMobile"].strip() == (merged.get("mobile") or "").strip():
            error = "Alternate mobile cannot be same as primary mobile"
        if error:
            errors["alternateMobile"] = error

    if check("email"):
        error = validate_email(data.get("email"))
        if error:
            errors["email"] = error

    if check("address"):
        error = validate_address(data.get("address"))
        if error:
            errors["address"] = error

    if "aadharNumber" in data:
        error = validate_aadhar(data.get("aadharNumber"))
        if error:
            errors["aadharNumber"] = error

    if "panNumber" in data:
        error = validate_pan(data.get("panNumber"))
        if error:
            errors["panNumber"] = error

    for field, label in (("demateAccount1", "Demat account 1"), ("demateAccount2", "Demat account 2")):
        if field in data:
            error = validate_demat_account(data.get(field), label)
            if error:
                errors[field] = error
    account1 = (merged.get("demateAccount1") or "").strip().upper()
    account2 = (merged.get("demateAccount2") or "").strip().upper()
    if account2 and account2 == account1 and "demateAccount2" not in errors:
        errors["demateAccount2"] = "Demat account 2 must differ from demat account 1"

    if "status" in data and data.get("status") not in ENQUIRY_STATUSES:
        errors["status"] = "Please select status"

    if check("interestedStatus") and data.get("interestedStatus") not in INTEREST_LEVELS:
        errors["interestedStatus"] = "Please select interested status"

    if check("callBackDate"):
        error = validate_date(data.get("callBackDate"), "Call back date", today=today)
        if error:
            errors["callBackDate"] = error

    for field, label in (("depositInwardDate", "Deposit inward date"), ("depositOutwardDate", "Deposit outward date")):
        if not _blank(data.get(field)) and parse_date(data[field]) is None:
            errors[field] = f"Invalid {label.lower()}"
    inward = parse_date(merged.get("depositInwardDate"))
    outward = parse_date(merged.get("depositOutwardDate"))
    if inward and outward and outward < inward and "depositOutwardDate" not in errors:
        errors["depositOutwardDate"] = "Deposit outward date cannot be before deposit inward date"

    for field, label in (("totalFees", "Total fees"), ("paidFees", "Paid fees")):
        if field in data:
            error = validate_fee(data.get(field), label)
            if error:
                errors[field] = error
    history = merged.get("paymentHistory") if isinstance(merged.get("paymentHistory"), list) else []
    paid = history_total(history) if history else to_amount(merged.get("paidFees"))
    fee_fields = [f for f in ("totalFees", "paidFees", "paymentHistory") if f in data]
    if (
        fee_fields
        and "totalFees" not in errors and "paidFees" not in errors
        and not _blank(merged.get("totalFees"))
        and paid > to_amount(merged.get("totalFees"))
    ):
        if fee_fields == ["totalFees"]:
            errors["totalFees"] = "Total fees cannot be less than the amount already paid"
        elif history:
            errors["paymentHistory"] = "Total payments cannot exceed Total fees"
        else:
            errors["paidFees"] = "Paid fees cannot exceed Total fees"

    if merged.get("status") == "Confirmed":
        for field, message in CONFIRMED_REQUIRED_FIELDS.items():
            value = merged.get(field)
            if field == "knowledgeOfAndroid":
                value = value or merged.get("knowledgeOfDevelopment")
            if _blank(value) and field not in errors:
                errors[field] = message
        for choice, (custom, message) in CUSTOM_OTHER_FIELDS.items():
            if merged.get(choice) == "Other" and _blank(merged.get(custom)):
                errors[custom] = message

    return errors
