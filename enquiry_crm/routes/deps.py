"""
ENQUIRY CRM - Shared route dependencies
Services are built per request from the Mongo collections; tests override
these providers with in-memory stores.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from enquiry_crm.config import db
from enquiry_crm.services.advertisement_import import AdvertisementImporter
from enquiry_crm.services.enquiry_engine import EnquiryEngine
from enquiry_crm.services.identity import IdentityService
from enquiry_crm.services.payment_ledger import PaymentLedger
from enquiry_crm.services.permissions import Session
from enquiry_crm.services.record_store import MotorRecordStore, RecordStore

security = HTTPBearer(auto_error=False)


# ==================== SERVICES ====================

def get_payment_ledger() -> PaymentLedger:
    return PaymentLedger(MotorRecordStore(db.payments))


def get_enquiry_engine(ledger: PaymentLedger = Depends(get_payment_ledger)) -> EnquiryEngine:
    return EnquiryEngine(MotorRecordStore(db.enquiries), ledger)


def get_advertisement_importer() -> AdvertisementImporter:
    return AdvertisementImporter(MotorRecordStore(db.advertisements))


def get_identity_service() -> IdentityService:
    return IdentityService(
        MotorRecordStore(db.users),
        MotorRecordStore(db.identities),
        MotorRecordStore(db.sessions),
    )


def get_activity_store() -> RecordStore:
    return MotorRecordStore(db.activity_logs)


# ==================== SESSION ====================

async def get_current_session(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    identity: IdentityService = Depends(get_identity_service),
) -> Session:
    """Session of the bearer token on the request."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    session = await identity.resolve_session(credentials.credentials)
    if not session:
        raise HTTPException(status_code=401, detail="Session expired")
    return session


async def require_admin(session: Session = Depends(get_current_session)) -> Session:
    """Administrator access."""
    if not session.is_admin():
        raise HTTPException(status_code=403, detail="Admin access required")
    return session


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None
