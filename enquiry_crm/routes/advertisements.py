"""
ENQUIRY CRM - Routes Advertisements
Imported advertisement leads: JSON or .xlsx import, search, export.
"""

import logging
import zipfile
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Request, UploadFile, File
from fastapi.responses import Response
from openpyxl.utils.exceptions import InvalidFileException

from enquiry_crm.models.advertisement import AdvertisementImport, AdvertisementRow, AdvertisementUpdate
from enquiry_crm.routes.deps import (
    client_ip,
    get_activity_store,
    get_advertisement_importer,
    require_admin,
)
from enquiry_crm.services import csv_export
from enquiry_crm.services.activity_logger import log_activity
from enquiry_crm.services.advertisement_import import (
    AdvertisementImporter,
    normalize_row,
    read_workbook_rows,
    rows_from_sheet,
    validate_enquiry,
)
from enquiry_crm.services.permissions import (
    IMPORT_ADVERTISEMENT,
    SEARCH_ADVERTISEMENT,
    VIEW_ADVERTISEMENT,
    Session,
    require_any_permission,
    require_permission,
)
from enquiry_crm.services.record_store import RecordStore

logger = logging.getLogger("advertisements")

router = APIRouter(prefix="/advertisements", tags=["Advertisements"])


@router.get("")
async def list_advertisements(
    session: Session = Depends(require_permission(VIEW_ADVERTISEMENT)),
    importer: AdvertisementImporter = Depends(get_advertisement_importer),
):
    enquiries = await importer.get_all_advertisement_enquiries()
    return {"enquiries": enquiries, "count": len(enquiries)}


@router.get("/search")
async def search_advertisements(
    q: Optional[str] = None,
    session: Session = Depends(require_permission(SEARCH_ADVERTISEMENT)),
    importer: AdvertisementImporter = Depends(get_advertisement_importer),
):
    enquiries = await importer.search_advertisement_enquiries(q or "")
    return {"enquiries": enquiries, "count": len(enquiries)}


@router.get("/stats")
async def advertisement_stats(
    session: Session = Depends(require_any_permission(VIEW_ADVERTISEMENT, IMPORT_ADVERTISEMENT)),
    importer: AdvertisementImporter = Depends(get_advertisement_importer),
):
    return await importer.get_advertisement_statistics()


@router.get("/export.csv")
async def export_advertisements(
    session: Session = Depends(require_permission(VIEW_ADVERTISEMENT)),
    importer: AdvertisementImporter = Depends(get_advertisement_importer),
):
    enquiries = await importer.get_all_advertisement_enquiries()
    filename = csv_export.generate_csv_filename("advertisement-enquiries")
    return Response(
        content=csv_export.generate_advertisements_csv(enquiries),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("")
async def add_advertisement(
    data: AdvertisementRow,
    session: Session = Depends(require_permission(IMPORT_ADVERTISEMENT)),
    importer: AdvertisementImporter = Depends(get_advertisement_importer),
):
    candidate = normalize_row(data.model_dump())
    validation = validate_enquiry(candidate)
    if not validation["isValid"]:
        raise HTTPException(status_code=422, detail=validation["errors"])
    enquiry = await importer.add_advertisement_enquiry(candidate, session.current_user.get("username"))
    return {"success": True, "enquiry": enquiry}


async def _import_rows(rows, session, importer, activity, request, source):
    result = await importer.add_bulk_advertisement_enquiries(rows, session.current_user.get("username"))
    await log_activity(
        activity, session.current_user, "import", "advertisement",
        details={"source": source, "rows": len(rows), "success": result["success"], "failed": result["failed"]},
        ip_address=client_ip(request)
    )
    return result


@router.post("/import")
async def import_advertisements(
    data: AdvertisementImport,
    request: Request,
    session: Session = Depends(require_permission(IMPORT_ADVERTISEMENT)),
    importer: AdvertisementImporter = Depends(get_advertisement_importer),
    activity: RecordStore = Depends(get_activity_store),
):
    rows = [r.model_dump() for r in data.rows]
    return await _import_rows(rows, session, importer, activity, request, "json")


@router.post("/import/xlsx")
async def import_advertisements_xlsx(
    request: Request,
    file: UploadFile = File(...),
    session: Session = Depends(require_permission(IMPORT_ADVERTISEMENT)),
    importer: AdvertisementImporter = Depends(get_advertisement_importer),
    activity: RecordStore = Depends(get_activity_store),
):
    """First sheet of an Excel workbook; headers such as Name, Phone No, Email, Aadhar No, PAN No."""
    content = await file.read()
    try:
        records = read_workbook_rows(content)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as e:
        logger.warning(f"[IMPORT] unreadable workbook {file.filename}: {e}")
        raise HTTPException(status_code=400, detail="Could not read the Excel file")

    if not records:
        raise HTTPException(status_code=400, detail="Excel file is empty")

    return await _import_rows(rows_from_sheet(records), session, importer, activity, request, file.filename)


@router.put("/{enquiry_id}")
async def update_advertisement(
    enquiry_id: str,
    data: AdvertisementUpdate,
    session: Session = Depends(require_permission(IMPORT_ADVERTISEMENT)),
    importer: AdvertisementImporter = Depends(get_advertisement_importer),
):
    if not await importer.update_advertisement_enquiry(enquiry_id, data.model_dump(exclude_unset=True)):
        raise HTTPException(status_code=404, detail="Advertisement enquiry not found")
    return {"success": True}


@router.delete("/{enquiry_id}")
async def delete_advertisement(
    enquiry_id: str,
    request: Request,
    admin: Session = Depends(require_admin),
    importer: AdvertisementImporter = Depends(get_advertisement_importer),
    activity: RecordStore = Depends(get_activity_store),
):
    if not await importer.delete_advertisement_enquiry(enquiry_id):
        raise HTTPException(status_code=404, detail="Advertisement enquiry not found")
    await log_activity(
        activity, admin.current_user, "delete", "advertisement",
        entity_id=enquiry_id, ip_address=client_ip(request)
    )
    return {"success": True}
