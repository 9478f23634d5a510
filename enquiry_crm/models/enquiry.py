"""
ENQUIRY CRM - Enquiry & payment entry models
Field names follow the stored documents (camelCase).
"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, model_validator, validator

from enquiry_crm.services.enquiry_rules import OFFLINE_METHODS, PAYMENT_MODES

Amount = Union[str, int, float]


def _amount_text(v):
    if v is None:
        return v
    if isinstance(v, float) and v.is_integer():
        v = int(v)
    return str(v).strip()


class PaymentEntryCreate(BaseModel):
    """One payment on an enquiry. id is set only for an entry already recorded."""
    id: Optional[str] = None
    date: str
    amount: Amount
    mode: str
    method: Optional[str] = None
    reference: Optional[str] = None
    note: Optional[str] = None
    createdBy: Optional[str] = None

    @validator("amount")
    def validate_amount(cls, v):
        return _amount_text(v)

    @validator("mode")
    def validate_mode(cls, v):
        if v not in PAYMENT_MODES:
            raise ValueError(f"Invalid payment mode: {v}. Valid: {PAYMENT_MODES}")
        return v

    @model_validator(mode="after")
    def validate_offline_method(self):
        if self.mode == "Offline" and self.method not in OFFLINE_METHODS:
            raise ValueError(f"Offline payments need a method: {OFFLINE_METHODS}")
        if self.mode == "Online":
            self.method = None
        return self


class EnquiryInput(BaseModel):
    """
    Create and update payload. Only the fields actually sent are used
    (model_dump(exclude_unset=True)); rules live in services.enquiry_rules.
    """
    model_config = ConfigDict(extra="ignore")

    fullName: Optional[str] = None
    mobile: Optional[str] = None
    alternateMobile: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None

    aadharNumber: Optional[str] = None
    panNumber: Optional[str] = None

    education: Optional[str] = None
    customEducation: Optional[str] = None
    knowledgeOfAndroid: Optional[str] = None
    knowledgeOfDevelopment: Optional[str] = None
    sourceOfEnquiry: Optional[str] = None
    howDidYouKnow: Optional[str] = None
    customHowDidYouKnow: Optional[str] = None
    profession: Optional[str] = None
    customProfession: Optional[str] = None
    enquiryDistrict: Optional[str] = None
    enquiryState: Optional[str] = None

    status: Optional[str] = None
    interestedStatus: Optional[str] = None
    callBackDate: Optional[str] = None

    totalFees: Optional[Amount] = None
    paidFees: Optional[Amount] = None
    paymentHistory: Optional[List[PaymentEntryCreate]] = None

    demateAccount1: Optional[str] = None
    demateAccount2: Optional[str] = None
    depositInwardDate: Optional[str] = None
    depositOutwardDate: Optional[str] = None

    @validator("fullName", "mobile", "alternateMobile", "email", "address", "aadharNumber")
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @validator("panNumber", "demateAccount1", "demateAccount2")
    def upper_identifier(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @validator("totalFees", "paidFees")
    def amount_as_text(cls, v):
        return _amount_text(v)


class DuplicateCheckRequest(BaseModel):
    mobile: Optional[str] = None
    email: Optional[str] = None
    aadharNumber: Optional[str] = None
    excludeId: Optional[str] = None


class ExistingEnquiryRequest(BaseModel):
    aadharNumber: Optional[str] = None
    mobile: Optional[str] = None
    email: Optional[str] = None
