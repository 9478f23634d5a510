"""
ENQUIRY CRM - Routes Enquiries
CRUD, duplicate checks, follow-ups, payments on an enquiry, CSV exports.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.responses import JSONResponse, Response

from enquiry_crm.models.enquiry import (
    DuplicateCheckRequest,
    EnquiryInput,
    ExistingEnquiryRequest,
    PaymentEntryCreate,
)
from enquiry_crm.routes.deps import (
    client_ip,
    get_activity_store,
    get_current_session,
    get_enquiry_engine,
    require_admin,
)
from enquiry_crm.services import csv_export
from enquiry_crm.services.activity_logger import log_activity
from enquiry_crm.services.enquiry_engine import EnquiryEngine, LedgerSyncError, PaymentRuleError
from enquiry_crm.services.enquiry_rules import validate_enquiry
from enquiry_crm.services.permissions import (
    ADD_ENQUIRY,
    ALL_FOLLOW_UPS,
    MANAGE_PAYMENTS,
    TODAYS_FOLLOW_UPS,
    VIEW_ENQUIRY,
    Session,
    require_permission,
)
from enquiry_crm.services.record_store import RecordStore

router = APIRouter(prefix="/enquiries", tags=["Enquiries"])

UNIQUE_FIELDS = ("aadharNumber", "mobile", "email")
PAYMENT_FIELDS = ("paymentHistory", "totalFees", "paidFees")


def _partial_write(enquiry: dict, e: LedgerSyncError) -> JSONResponse:
    """The enquiry was written, its ledger row was not."""
    return JSONResponse(
        status_code=207,
        content={"success": True, "enquiry": enquiry, "warning": str(e), "ledgerSynced": False},
    )


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ==================== LIST / SEARCH ====================

@router.get("")
async def list_enquiries(
    search: Optional[str] = None,
    status: Optional[str] = None,
    district: Optional[str] = None,
    education: Optional[str] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    session: Session = Depends(require_permission(VIEW_ENQUIRY)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
):
    """All enquiries, optionally filtered"""
    filters = {
        "searchTerm": search, "status": status, "district": district,
        "education": education, "dateFrom": dateFrom, "dateTo": dateTo,
    }
    if any(filters.values()):
        enquiries = await engine.advanced_search(filters)
    else:
        enquiries = await engine.get_all_enquiries()
    return {"enquiries": enquiries, "count": len(enquiries)}


@router.post("/check-duplicates")
async def check_duplicates(
    data: DuplicateCheckRequest,
    session: Session = Depends(require_permission(ADD_ENQUIRY)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
):
    candidate = data.model_dump(exclude={"excludeId"}, exclude_none=True)
    findings = await engine.check_duplicates(candidate, exclude_id=data.excludeId)
    return {"duplicates": [f.to_dict() for f in findings]}


@router.post("/existing")
async def existing_enquiry(
    data: ExistingEnquiryRequest,
    session: Session = Depends(require_permission(ADD_ENQUIRY)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
):
    """Existing lead by Aadhar, then mobile, then email."""
    enquiry = await engine.get_existing_enquiry(data.aadharNumber, data.mobile, data.email)
    return {"exists": enquiry is not None, "enquiry": enquiry}


# ==================== FOLLOW-UPS ====================

@router.get("/follow-ups/today")
async def todays_follow_ups(
    session: Session = Depends(require_permission(TODAYS_FOLLOW_UPS)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
):
    enquiries = await engine.get_today_follow_ups()
    return {"enquiries": enquiries, "count": len(enquiries)}


@router.get("/follow-ups/upcoming")
async def all_follow_ups(
    session: Session = Depends(require_permission(ALL_FOLLOW_UPS)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
):
    enquiries = await engine.get_all_follow_ups()
    return {"enquiries": enquiries, "count": len(enquiries)}


@router.get("/follow-ups/overdue")
async def overdue_follow_ups(
    session: Session = Depends(require_permission(ALL_FOLLOW_UPS)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
):
    enquiries = await engine.get_overdue_follow_ups()
    return {"enquiries": enquiries, "count": len(enquiries)}


# ==================== EXPORT / BULK ====================

@router.get("/export.csv")
async def export_enquiries(
    request: Request,
    admin: Session = Depends(require_admin),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
    activity: RecordStore = Depends(get_activity_store),
):
    enquiries = await engine.get_all_enquiries()
    await log_activity(
        activity, admin.current_user, "export", "enquiry",
        details={"count": len(enquiries)}, ip_address=client_ip(request)
    )
    return _csv_response(
        csv_export.generate_enquiries_csv(enquiries),
        csv_export.generate_csv_filename("enquiries_backup"),
    )


@router.post("/bulk")
async def bulk_import(
    rows: list[EnquiryInput],
    request: Request,
    admin: Session = Depends(require_admin),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
    activity: RecordStore = Depends(get_activity_store),
):
    """Import enquiries, skipping rows whose mobile, email or Aadhar already exist."""
    result = await engine.bulk_import_enquiries(
        [r.model_dump(exclude_unset=True, mode="json") for r in rows], admin
    )
    await log_activity(
        activity, admin.current_user, "import", "enquiry",
        details={"success": result["success"], "failed": result["failed"]},
        ip_address=client_ip(request)
    )
    return result


# ==================== CRUD ====================

@router.post("")
async def create_enquiry(
    data: EnquiryInput,
    request: Request,
    session: Session = Depends(require_permission(ADD_ENQUIRY)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
    activity: RecordStore = Depends(get_activity_store),
):
    payload = data.model_dump(exclude_unset=True, mode="json")

    if payload.get("paymentHistory") and not session.has_permission(MANAGE_PAYMENTS):
        raise HTTPException(status_code=403, detail=f"Permission required: {MANAGE_PAYMENTS}")

    errors = validate_enquiry(payload)
    if errors:
        raise HTTPException(status_code=422, detail=errors)

    duplicates = await engine.check_duplicates(payload)
    if duplicates:
        raise HTTPException(status_code=409, detail={"duplicates": [d.to_dict() for d in duplicates]})

    try:
        enquiry = await engine.save_enquiry(payload, session)
    except PaymentRuleError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LedgerSyncError as e:
        return _partial_write(e.enquiry, e)

    await log_activity(
        activity, session.current_user, "create", "enquiry",
        entity_id=enquiry["id"], entity_name=enquiry.get("fullName"),
        ip_address=client_ip(request)
    )
    return {"success": True, "enquiry": enquiry}


@router.get("/{enquiry_id}")
async def get_enquiry(
    enquiry_id: str,
    session: Session = Depends(require_permission(VIEW_ENQUIRY)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
):
    enquiry = await engine.get_enquiry_by_id(enquiry_id)
    if not enquiry:
        raise HTTPException(status_code=404, detail="Enquiry not found")
    return enquiry


@router.put("/{enquiry_id}")
async def update_enquiry(
    enquiry_id: str,
    data: EnquiryInput,
    request: Request,
    session: Session = Depends(require_permission(ADD_ENQUIRY)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
    activity: RecordStore = Depends(get_activity_store),
):
    partial = data.model_dump(exclude_unset=True, mode="json")
    if not partial:
        raise HTTPException(status_code=400, detail="Nothing to update")

    if any(f in partial for f in PAYMENT_FIELDS) and not session.has_permission(MANAGE_PAYMENTS):
        raise HTTPException(status_code=403, detail=f"Permission required: {MANAGE_PAYMENTS}")

    previous = await engine.get_enquiry_by_id(enquiry_id)
    if previous is None:
        raise HTTPException(status_code=404, detail="Enquiry not found")

    errors = validate_enquiry(partial, previous)
    if errors:
        raise HTTPException(status_code=422, detail=errors)

    changed_unique = {f: partial[f] for f in UNIQUE_FIELDS if partial.get(f) and partial[f] != previous.get(f)}
    if changed_unique:
        duplicates = await engine.check_duplicates(changed_unique, exclude_id=enquiry_id)
        if duplicates:
            raise HTTPException(status_code=409, detail={"duplicates": [d.to_dict() for d in duplicates]})

    try:
        enquiry = await engine.update_enquiry(enquiry_id, partial, session)
    except PaymentRuleError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LedgerSyncError as e:
        return _partial_write(e.enquiry, e)
    if enquiry is None:
        raise HTTPException(status_code=404, detail="Enquiry not found")

    await log_activity(
        activity, session.current_user, "update", "enquiry",
        entity_id=enquiry_id, entity_name=enquiry.get("fullName"),
        details={"fields": sorted(partial.keys())}, ip_address=client_ip(request)
    )
    return {"success": True, "enquiry": enquiry}


@router.delete("/{enquiry_id}")
async def delete_enquiry(
    enquiry_id: str,
    request: Request,
    confirm: bool = False,
    session: Session = Depends(get_current_session),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
    activity: RecordStore = Depends(get_activity_store),
):
    """Administrator only, and only with ?confirm=true. No undo."""
    if not confirm:
        raise HTTPException(status_code=400, detail="Deletion must be confirmed (confirm=true)")

    deleted = await engine.delete_enquiry(session, enquiry_id)
    if not deleted:
        if not session.can_delete():
            raise HTTPException(
                status_code=403,
                detail="Only administrators can delete enquiries"
            )
        raise HTTPException(status_code=404, detail="Enquiry not found")

    await log_activity(
        activity, session.current_user, "delete", "enquiry",
        entity_id=enquiry_id, ip_address=client_ip(request)
    )
    return {"success": True}


# ==================== PAYMENTS ON AN ENQUIRY ====================

@router.post("/{enquiry_id}/payments")
async def add_payment(
    enquiry_id: str,
    entry: PaymentEntryCreate,
    request: Request,
    session: Session = Depends(require_permission(MANAGE_PAYMENTS)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
    activity: RecordStore = Depends(get_activity_store),
):
    try:
        enquiry = await engine.add_payment(enquiry_id, entry.model_dump(), session)
    except PaymentRuleError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LedgerSyncError as e:
        return _partial_write(e.enquiry, e)

    if enquiry is None:
        raise HTTPException(status_code=404, detail="Enquiry not found")

    await log_activity(
        activity, session.current_user, "payment", "enquiry",
        entity_id=enquiry_id, entity_name=enquiry.get("fullName"),
        details={"amount": entry.amount, "mode": entry.mode},
        ip_address=client_ip(request)
    )
    return {"success": True, "enquiry": enquiry}


@router.get("/{enquiry_id}/receipt.csv")
async def payment_receipt(
    enquiry_id: str,
    session: Session = Depends(require_permission(MANAGE_PAYMENTS)),
    engine: EnquiryEngine = Depends(get_enquiry_engine),
):
    enquiry = await engine.get_enquiry_by_id(enquiry_id)
    if not enquiry:
        raise HTTPException(status_code=404, detail="Enquiry not found")
    return _csv_response(csv_export.generate_receipt_csv(enquiry), f"receipt_{enquiry_id}.csv")
