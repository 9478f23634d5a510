"""
ENQUIRY CRM - Routes Auth
Login / Logout / Session / User management / Passwords.
"""

from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials

from enquiry_crm.models.auth import UserLogin, UserCreate, UserUpdate, PasswordChange, AdminPasswordReset
from enquiry_crm.routes.deps import (
    client_ip,
    get_activity_store,
    get_current_session,
    get_identity_service,
    require_admin,
    security,
)
from enquiry_crm.services.activity_logger import log_activity, get_activity_logs
from enquiry_crm.services.identity import (
    AccountDeactivated,
    AuthenticationError,
    IdentityService,
    PermissionDenied,
    UserValidationError,
)
from enquiry_crm.services.permissions import Session
from enquiry_crm.services.record_store import RecordStore

router = APIRouter(prefix="/auth", tags=["Auth"])


# ==================== LOGIN / LOGOUT ====================

@router.post("/login")
async def login(
    data: UserLogin,
    request: Request,
    identity: IdentityService = Depends(get_identity_service),
    activity: RecordStore = Depends(get_activity_store),
):
    """Login with username or email."""
    try:
        token, session = await identity.login(data.usernameOrEmail, data.password, data.rememberMe)
    except AccountDeactivated as e:
        raise HTTPException(status_code=403, detail=str(e))
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))

    await log_activity(
        activity,
        user=session.current_user,
        action="login",
        entity_type="user",
        entity_id=session.user_id,
        ip_address=client_ip(request)
    )

    return {
        "token": token,
        "persistence": "local" if data.rememberMe else "session",
        **session.to_dict(),
    }


@router.post("/logout")
async def logout(
    session: Session = Depends(get_current_session),
    credentials: HTTPAuthorizationCredentials = Depends(security),
    identity: IdentityService = Depends(get_identity_service),
):
    if credentials:
        await identity.logout(credentials.credentials)
    return {"success": True}


@router.get("/me")
async def get_me(session: Session = Depends(get_current_session)):
    """Current user + role + permissions."""
    return session.to_dict()


@router.post("/password")
async def change_own_password(
    data: PasswordChange,
    session: Session = Depends(get_current_session),
    identity: IdentityService = Depends(get_identity_service),
):
    """Change own password; the current password is checked first."""
    try:
        await identity.change_own_password(session, data.currentPassword, data.newPassword)
    except AuthenticationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UserValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True}


# ==================== USER MANAGEMENT (admin) ====================

@router.get("/users")
async def list_users(
    admin: Session = Depends(require_admin),
    identity: IdentityService = Depends(get_identity_service),
):
    return {"users": await identity.get_all_users()}


@router.post("/users")
async def create_user(
    data: UserCreate,
    request: Request,
    admin: Session = Depends(require_admin),
    identity: IdentityService = Depends(get_identity_service),
    activity: RecordStore = Depends(get_activity_store),
):
    payload = data.model_dump(exclude={"password"})
    try:
        user = await identity.add_user(admin, payload, data.password)
    except UserValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))

    await log_activity(
        activity, admin.current_user, "create", "user",
        entity_id=user["id"], entity_name=user["email"],
        details={"role": user["role"]}, ip_address=client_ip(request)
    )
    return {"success": True, "user": {k: v for k, v in user.items() if k != "authUid"}}


@router.put("/users/{user_id}")
async def update_user(
    user_id: str,
    data: UserUpdate,
    request: Request,
    admin: Session = Depends(require_admin),
    identity: IdentityService = Depends(get_identity_service),
    activity: RecordStore = Depends(get_activity_store),
):
    updates = data.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="Nothing to update")
    try:
        user = await identity.update_user(admin, user_id, updates)
    except UserValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    await log_activity(
        activity, admin.current_user, "update", "user",
        entity_id=user_id, entity_name=user.get("email"),
        details={"fields": sorted(updates.keys())}, ip_address=client_ip(request)
    )
    return {"success": True, "user": user}


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    request: Request,
    permanent: bool = False,
    admin: Session = Depends(require_admin),
    identity: IdentityService = Depends(get_identity_service),
    activity: RecordStore = Depends(get_activity_store),
):
    """Deactivate (default) or permanently remove a user."""
    try:
        if permanent:
            done = await identity.delete_user(admin, user_id)
        else:
            done = await identity.deactivate_user(admin, user_id)
    except UserValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not done:
        raise HTTPException(status_code=404, detail="User not found")

    await log_activity(
        activity, admin.current_user, "delete" if permanent else "deactivate", "user",
        entity_id=user_id, ip_address=client_ip(request)
    )
    return {"success": True, "permanent": permanent}


@router.post("/users/{user_id}/reactivate")
async def reactivate_user(
    user_id: str,
    request: Request,
    admin: Session = Depends(require_admin),
    identity: IdentityService = Depends(get_identity_service),
    activity: RecordStore = Depends(get_activity_store),
):
    if not await identity.reactivate_user(admin, user_id):
        raise HTTPException(status_code=404, detail="User not found")
    await log_activity(
        activity, admin.current_user, "reactivate", "user",
        entity_id=user_id, ip_address=client_ip(request)
    )
    return {"success": True}


@router.post("/users/{user_id}/password")
async def rotate_user_password(
    user_id: str,
    data: AdminPasswordReset,
    request: Request,
    admin: Session = Depends(require_admin),
    identity: IdentityService = Depends(get_identity_service),
    activity: RecordStore = Depends(get_activity_store),
):
    """Privileged password rotation for another user."""
    try:
        done = await identity.rotate_password(admin, user_id, data.newPassword)
    except UserValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not done:
        raise HTTPException(status_code=404, detail="User not found")
    await log_activity(
        activity, admin.current_user, "password_reset", "user",
        entity_id=user_id, ip_address=client_ip(request)
    )
    return {"success": True}


# ==================== ACTIVITY ====================

@router.get("/activity")
async def list_activity(
    user_id: str = None,
    entity_type: str = None,
    action: str = None,
    limit: int = 100,
    skip: int = 0,
    admin: Session = Depends(require_admin),
    activity: RecordStore = Depends(get_activity_store),
):
    return await get_activity_logs(activity, user_id, entity_type, action, limit, skip)
