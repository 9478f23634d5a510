"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ENQUIRY CRM - Enquiry Normalization                                         ║
║                                                                              ║
║  Applied to every enquiry read from the store:                               ║
║  - enquiryDistrict / enquiryState         -> same value in both              ║
║  - knowledgeOfAndroid / knowledgeOfDevelopment -> same value in both         ║
║  - paymentHistory                         -> always a list                   ║
║  - paidFees      = sum(history) once history exists, else stored value       ║
║  - remainingFees = max(total - paid, 0) when totalFees is set, else ""       ║
║                                                                              ║
║  migrate_enquiry(migrate_enquiry(x)) == migrate_enquiry(x)                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Tuple

# Canonical name first, legacy alias second
FIELD_ALIASES = [
    ("enquiryDistrict", "enquiryState"),
    ("knowledgeOfAndroid", "knowledgeOfDevelopment"),
]

ZERO = Decimal("0")


def to_amount(value: Any) -> Decimal:
    """Parse a fee amount. Empty or unparseable values count as 0."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return ZERO
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return ZERO
    if not amount.is_finite():
        return ZERO
    return amount


def format_amount(amount: Decimal) -> str:
    """Decimal -> plain string without exponent or trailing zeros ("5000", "2000.5")."""
    if amount == 0:
        return "0"
    return format(amount.normalize(), "f")


def amount_str(value: Any, default: str = "") -> str:
    """String form of a stored amount field. Numbers are normalized, text is kept."""
    if value is None:
        return default
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return format_amount(to_amount(value))
    text = str(value).strip()
    return text if text else default


def history_total(history: List[Dict]) -> Decimal:
    return sum((to_amount(entry.get("amount")) for entry in history), ZERO)


def compute_fees(total_fees: Any, paid_fees: Any, history: List[Dict]) -> Tuple[str, str]:
    """
    Returns (paidFees, remainingFees).
    History is the source of truth for paid once it is non-empty.
    """
    total = amount_str(total_fees)
    if history:
        paid = format_amount(history_total(history))
    else:
        paid = amount_str(paid_fees, "0")

    if total == "":
        return paid, ""
    remaining = max(to_amount(total) - to_amount(paid), ZERO)
    return paid, format_amount(remaining)


def migrate_enquiry(record: Dict) -> Dict:
    """Normalize a stored enquiry. Returns a new dict, the input is not modified."""
    data = dict(record)

    history = data.get("paymentHistory")
    if not isinstance(history, list):
        history = []
    data["paymentHistory"] = history

    for canonical, alias in FIELD_ALIASES:
        value = data.get(canonical) or data.get(alias) or ""
        data[canonical] = value
        data[alias] = value

    data["totalFees"] = amount_str(data.get("totalFees"))
    data["paidFees"], data["remainingFees"] = compute_fees(
        data["totalFees"], data.get("paidFees"), history
    )
    return data
