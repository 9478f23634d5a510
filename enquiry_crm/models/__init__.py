"""
ENQUIRY CRM - Models Package
from enquiry_crm.models import EnquiryInput, PaymentCreate, UserCreate, etc.
"""

from enquiry_crm.models.enquiry import (
    PaymentEntryCreate,
    EnquiryInput,
    DuplicateCheckRequest,
    ExistingEnquiryRequest,
)
from enquiry_crm.models.payment import PaymentCreate
from enquiry_crm.models.auth import (
    UserLogin,
    UserCreate,
    UserUpdate,
    PasswordChange,
    AdminPasswordReset,
)
from enquiry_crm.models.advertisement import (
    AdvertisementRow,
    AdvertisementImport,
    AdvertisementUpdate,
)
