"""
ENQUIRY CRM - Payment ledger models
"""

from typing import Optional

from pydantic import BaseModel, validator

from enquiry_crm.models.enquiry import Amount
from enquiry_crm.services.enquiry_normalizer import to_amount
from enquiry_crm.services.enquiry_rules import OFFLINE_METHODS, PAYMENT_MODES


class PaymentCreate(BaseModel):
    """Manual ledger payment, not tied to an enquiry unless enquiryId is set"""
    enquiryId: str = ""
    enquiryName: str = ""
    date: str
    amount: Amount
    mode: str
    offlineType: Optional[str] = None
    reference: Optional[str] = None
    note: Optional[str] = None

    @validator("amount")
    def validate_amount(cls, v):
        if to_amount(v) <= 0:
            raise ValueError("Amount must be greater than 0")
        return v

    @validator("mode")
    def validate_mode(cls, v):
        if v not in PAYMENT_MODES:
            raise ValueError(f"Invalid payment mode: {v}")
        return v

    @validator("offlineType")
    def validate_offline_type(cls, v):
        if v is not None and v not in OFFLINE_METHODS:
            raise ValueError(f"Invalid offline type: {v}")
        return v
