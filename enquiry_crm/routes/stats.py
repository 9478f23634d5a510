"""
ENQUIRY CRM - Routes Stats (dashboard aggregates)
"""

from fastapi import APIRouter, Depends

from enquiry_crm.routes.deps import get_enquiry_engine
from enquiry_crm.services.enquiry_engine import EnquiryEngine
from enquiry_crm.services.permissions import MANAGE_PAYMENTS, VIEW_ENQUIRY, Session, require_permission

router = APIRouter(prefix="/stats", tags=["Stats"])


@router.get("/enquiries")
async def enquiry_stats(
    session: Session = Depends(require_permission(VIEW_ENQUIRY)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
):
    return await engine.get_statistics()


@router.get("/payments")
async def payment_stats(
    session: Session = Depends(require_permission(MANAGE_PAYMENTS)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
):
    return await engine.get_payment_statistics()


@router.get("/by-state")
async def enquiries_by_state(
    session: Session = Depends(require_permission(VIEW_ENQUIRY)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
):
    return await engine.get_enquiries_by_state()


@router.get("/by-education")
async def enquiries_by_education(
    session: Session = Depends(require_permission(VIEW_ENQUIRY)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
):
    return await engine.get_enquiries_by_education()
