"""
ENQUIRY CRM - Routes Payments (flat ledger)
"""

from fastapi import APIRouter, HTTPException, Depends, Request

from enquiry_crm.models.payment import PaymentCreate
from enquiry_crm.routes.deps import (
    client_ip,
    get_activity_store,
    get_current_session,
    get_enquiry_engine,
    get_payment_ledger,
    require_admin,
)
from enquiry_crm.services.activity_logger import log_activity
from enquiry_crm.services.enquiry_engine import EnquiryEngine
from enquiry_crm.services.payment_ledger import PaymentLedger
from enquiry_crm.services.permissions import MANAGE_PAYMENTS, Session, require_permission
from enquiry_crm.services.record_store import RecordStore

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.get("")
async def list_payments(
    session: Session = Depends(require_permission(MANAGE_PAYMENTS)),
    ledger: PaymentLedger = Depends(get_payment_ledger),
):
    payments = await ledger.get_payments()
    return {"payments": payments, "count": len(payments)}


@router.post("")
async def create_manual_payment(
    data: PaymentCreate,
    request: Request,
    session: Session = Depends(require_permission(MANAGE_PAYMENTS)),
    ledger: PaymentLedger = Depends(get_payment_ledger),
    activity: RecordStore = Depends(get_activity_store),
):
    """Ledger-only payment; it is not added to any enquiry history."""
    payment = await ledger.save_payment({**data.model_dump(), "createdBy": session.email})
    await log_activity(
        activity, session.current_user, "create", "payment",
        entity_id=payment["id"], entity_name=payment["enquiryName"],
        details={"amount": payment["amount"]}, ip_address=client_ip(request)
    )
    return {"success": True, "payment": payment}


@router.get("/reconciliation")
async def reconcile_ledger(
    repair: bool = False,
    admin: Session = Depends(require_admin),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
):
    """History entries missing from the ledger; repair=true writes them."""
    return await engine.reconcile_ledger(repair=repair)


@router.delete("/{payment_id}")
async def delete_payment(
    payment_id: str,
    request: Request,
    session: Session = Depends(get_current_session),
    ledger: PaymentLedger = Depends(get_payment_ledger),
    activity: RecordStore = Depends(get_activity_store),
):
    deleted = await ledger.delete_payment(session, payment_id)
    if not deleted:
        if not session.can_delete():
            raise HTTPException(status_code=403, detail="Only administrators can delete payments")
        raise HTTPException(status_code=404, detail="Payment not found")

    await log_activity(
        activity, session.current_user, "delete", "payment",
        entity_id=payment_id, ip_address=client_ip(request)
    )
    return {"success": True}
