"""
Activity journal (audit trail)
"""

import logging
from typing import Dict, Optional

from enquiry_crm.config import now_iso
from enquiry_crm.services.record_store import RecordStore, StoreError

logger = logging.getLogger("activity_logger")


async def log_activity(
    store: RecordStore,
    user: Optional[Dict],
    action: str,
    entity_type: str,
    entity_id: str = None,
    entity_name: str = None,
    details: dict = None,
    ip_address: str = None
):
    """
    Record one activity in the journal. A journal write failure is logged
    and does not undo the action being journaled.

    Actions: create, update, delete, payment, import, login, logout, export, deactivate, reactivate
    Entity types: enquiry, payment, advertisement, user, system
    """
    user = user or {}
    log_entry = {
        "userId": user.get("id", "system"),
        "userEmail": user.get("email", "system"),
        "userName": user.get("fullName", "System"),
        "action": action,
        "entityType": entity_type,
        "entityId": entity_id,
        "entityName": entity_name,
        "details": details or {},
        "ipAddress": ip_address,
        "createdAt": now_iso()
    }

    try:
        result = await store.add(log_entry)
    except StoreError as e:
        logger.error(f"[ACTIVITY] could not record {action} on {entity_type}/{entity_id}: {e}")
        return None
    log_entry["id"] = result.id
    return log_entry


async def get_activity_logs(
    store: RecordStore,
    user_id: str = None,
    entity_type: str = None,
    action: str = None,
    limit: int = 100,
    skip: int = 0
):
    """
    Activity logs, newest first, with optional filters
    """
    query = {}

    if user_id:
        query["userId"] = user_id
    if entity_type:
        query["entityType"] = entity_type
    if action:
        query["action"] = action

    logs = await store.find_page(query, "createdAt", skip=skip, limit=limit)
    total = await store.count(query)

    return {"logs": logs, "total": total, "limit": limit, "skip": skip}
