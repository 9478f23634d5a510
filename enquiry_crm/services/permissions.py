"""
ENQUIRY CRM - Permission System
Session object + permission names + FastAPI dependencies.
role=admin implies every permission. Standard users carry an explicit list.
"""

import logging
from typing import Dict, List, Optional

from fastapi import Depends, HTTPException

logger = logging.getLogger("permissions")

# ════════════════════════════════════════════════════════════════════════
# ALL PERMISSION NAMES
# ════════════════════════════════════════════════════════════════════════

ADD_ENQUIRY = "Add Enquiry"
VIEW_ENQUIRY = "View Enquiry"
MANAGE_PAYMENTS = "Manage Payment Details"
TODAYS_FOLLOW_UPS = "Today's Follow-ups"
ALL_FOLLOW_UPS = "All Follow-ups"
IMPORT_ADVERTISEMENT = "Import Advertisement"
VIEW_ADVERTISEMENT = "View Advertisement Data"
SEARCH_ADVERTISEMENT = "Search Advertisement"

ALL_PERMISSION_KEYS = [
    ADD_ENQUIRY,
    VIEW_ENQUIRY,
    MANAGE_PAYMENTS,
    TODAYS_FOLLOW_UPS,
    ALL_FOLLOW_UPS,
    IMPORT_ADVERTISEMENT,
    VIEW_ADVERTISEMENT,
    SEARCH_ADVERTISEMENT,
]

# ════════════════════════════════════════════════════════════════════════
# ROLE PRESETS (defaults when creating a user with a role)
# ════════════════════════════════════════════════════════════════════════

ROLE_PRESETS: Dict[str, List[str]] = {
    "admin": list(ALL_PERMISSION_KEYS),
    "user": [VIEW_ENQUIRY, TODAYS_FOLLOW_UPS, ALL_FOLLOW_UPS],
}

VALID_ROLES = list(ROLE_PRESETS.keys())


def get_preset_permissions(role: str) -> List[str]:
    """Returns the default permissions for a role."""
    return list(ROLE_PRESETS.get(role, ROLE_PRESETS["user"]))


# ════════════════════════════════════════════════════════════════════════
# SESSION
# ════════════════════════════════════════════════════════════════════════

class Session:
    """
    Identity of the caller, passed explicitly into every privileged operation.
    """

    def __init__(self, current_user: Dict, token: Optional[str] = None):
        self.current_user = current_user
        self.token = token
        self.role = current_user.get("role", "user")
        self.permissions = list(current_user.get("permissions") or [])

    @property
    def user_id(self) -> Optional[str]:
        return self.current_user.get("id")

    @property
    def email(self) -> Optional[str]:
        return self.current_user.get("email")

    def is_admin(self) -> bool:
        return self.role == "admin"

    def has_permission(self, name: str) -> bool:
        return self.is_admin() or name in self.permissions

    def can_delete(self) -> bool:
        return self.is_admin()

    def to_dict(self) -> Dict:
        return {
            "user": self.current_user,
            "role": self.role,
            "permissions": ALL_PERMISSION_KEYS if self.is_admin() else self.permissions,
        }

    def __repr__(self):
        return f"Session(user={self.email!r}, role={self.role!r})"


def user_has_permission(user: Dict, key: str) -> bool:
    """Check if a user record has a specific permission."""
    return Session(user).has_permission(key)


# ════════════════════════════════════════════════════════════════════════
# FASTAPI DEPENDENCIES
# ════════════════════════════════════════════════════════════════════════

def require_permission(permission_key: str):
    """
    FastAPI dependency factory.
    Usage: session: Session = Depends(require_permission(VIEW_ENQUIRY))
    """
    from enquiry_crm.routes.deps import get_current_session

    async def _check(session: Session = Depends(get_current_session)) -> Session:
        if not session.has_permission(permission_key):
            logger.warning(
                f"[PERMISSION_DENIED] user={session.email} "
                f"key={permission_key} role={session.role}"
            )
            raise HTTPException(
                status_code=403,
                detail=f"Permission required: {permission_key}"
            )
        return session

    return _check


def require_any_permission(*permission_keys: str):
    """Passes when the session holds at least one of the permissions."""
    from enquiry_crm.routes.deps import get_current_session

    async def _check(session: Session = Depends(get_current_session)) -> Session:
        if not any(session.has_permission(k) for k in permission_keys):
            logger.warning(
                f"[PERMISSION_DENIED] user={session.email} "
                f"keys={list(permission_keys)} role={session.role}"
            )
            raise HTTPException(
                status_code=403,
                detail=f"Permission required: {' or '.join(permission_keys)}"
            )
        return session

    return _check
