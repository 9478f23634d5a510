"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ENQUIRY CRM - Identity & Access                                             ║
║                                                                              ║
║  Collections:                                                                ║
║  - identities  {uid, email, passwordHash}        (credential provider)       ║
║  - users       {id, username, role, permissions, isActive, authUid, ...}     ║
║  - sessions    {token, userId, persistence, expiresAt}                       ║
║                                                                              ║
║  Login:  username-or-email -> user -> credentials -> session                 ║
║          an inactive user is signed straight back out                        ║
║  Persistence: "local"   (remember me, REMEMBER_ME_TTL_DAYS)                  ║
║               "session" (SESSION_TTL_HOURS)                                  ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, List, Optional, Tuple

from enquiry_crm import config
from enquiry_crm.config import generate_token, hash_password, now_iso, verify_password
from enquiry_crm.services.permissions import ALL_PERMISSION_KEYS, Session, VALID_ROLES, get_preset_permissions
from enquiry_crm.services.record_store import RecordStore

logger = logging.getLogger("identity")

MIN_PASSWORD_LENGTH = 6

# Never writable through update_user
PROTECTED_USER_FIELDS = ("id", "authUid", "createdAt", "createdBy", "passwordChangedAt", "password", "passwordHash")


class AuthenticationError(Exception):
    """Unknown user or wrong password"""


class AccountDeactivated(AuthenticationError):
    """Credentials were right but the account is disabled"""


class PermissionDenied(Exception):
    """The session may not perform this operation"""


class UserValidationError(ValueError):
    """Rejected user data (duplicate email, short password...)"""


def public_user(user: Dict) -> Dict:
    return {k: v for k, v in user.items() if k not in ("password", "passwordHash")}


class IdentityService:
    """Users, credentials and sessions"""

    def __init__(self, users: RecordStore, identities: RecordStore, sessions: RecordStore):
        self.users = users
        self.identities = identities
        self.sessions = sessions

    # ==================== LOOKUPS ====================

    async def get_all_users(self) -> List[Dict]:
        return [public_user(u) for u in await self.users.get_all()]

    async def get_user(self, user_id: str) -> Optional[Dict]:
        user = await self.users.get(user_id)
        return public_user(user) if user else None

    async def find_user_by_email(self, email: str) -> Optional[Dict]:
        email = (email or "").lower().strip()
        matches = await self.users.find(email=email)
        return matches[0] if matches else None

    async def find_user_by_username(self, username: str) -> Optional[Dict]:
        username = (username or "").strip()
        matches = await self.users.find(username=username)
        return matches[0] if matches else None

    async def username_exists(self, username: str, exclude_id: str = None) -> bool:
        username = (username or "").strip().lower()
        return any(
            (u.get("username") or "").lower() == username and u.get("id") != exclude_id
            for u in await self.users.get_all()
        )

    async def email_exists(self, email: str, exclude_id: str = None) -> bool:
        email = (email or "").lower().strip()
        return any(
            (u.get("email") or "").lower() == email and u.get("id") != exclude_id
            for u in await self.users.get_all()
        )

    async def get_active_users(self) -> List[Dict]:
        return [u for u in await self.get_all_users() if u.get("isActive")]

    async def get_users_by_role(self, role: str) -> List[Dict]:
        return [u for u in await self.get_active_users() if u.get("role") == role]

    async def get_users_by_permission(self, permission: str) -> List[Dict]:
        return [u for u in await self.get_active_users() if permission in (u.get("permissions") or [])]

    # ==================== LOGIN / SESSIONS ====================

    async def _verify_credentials(self, user: Dict, password: str) -> bool:
        identities = await self.identities.find(uid=user.get("authUid"))
        return bool(identities) and verify_password(password, identities[0].get("passwordHash"))

    async def login(self, identifier: str, password: str, remember_me: bool = False) -> Tuple[str, Session]:
        """Returns (token, session). Raises AuthenticationError / AccountDeactivated."""
        identifier = (identifier or "").strip()
        if "@" in identifier:
            user = await self.find_user_by_email(identifier)
        else:
            user = await self.find_user_by_username(identifier)

        if not user or not user.get("email"):
            logger.warning(f"[AUTH] unknown login identifier {identifier!r}")
            raise AuthenticationError("Invalid email or password")

        if not await self._verify_credentials(user, password):
            logger.warning(f"[AUTH] bad password for {user.get('email')}")
            raise AuthenticationError("Invalid email or password")

        token = await self._open_session(user, remember_me)

        if not user.get("isActive", True):
            await self.logout(token)
            logger.warning(f"[AUTH] deactivated account {user.get('email')} refused")
            raise AccountDeactivated("Account deactivated")

        logger.info(f"[AUTH] login {user.get('email')} persistence={'local' if remember_me else 'session'}")
        return token, Session(public_user(user), token)

    async def _open_session(self, user: Dict, remember_me: bool) -> str:
        now = datetime.now(timezone.utc)
        if remember_me:
            expires_at = now + timedelta(days=config.REMEMBER_ME_TTL_DAYS)
        else:
            expires_at = now + timedelta(hours=config.SESSION_TTL_HOURS)
        token = generate_token()
        await self.sessions.add({
            "token": token,
            "userId": user["id"],
            "persistence": "local" if remember_me else "session",
            "createdAt": now.isoformat(),
            "expiresAt": expires_at.isoformat(),
        })
        return token

    async def resolve_session(self, token: str) -> Optional[Session]:
        """Session for a bearer token, or None when unknown, expired or deactivated."""
        if not token:
            return None
        matches = await self.sessions.find(token=token)
        if not matches or matches[0].get("expiresAt", "") <= now_iso():
            return None
        user = await self.users.get(matches[0]["userId"])
        if not user or not user.get("isActive", True):
            return None
        return Session(public_user(user), token)

    async def logout(self, token: str) -> bool:
        matches = await self.sessions.find(token=token)
        for session in matches:
            await self.sessions.delete(session["id"])
        return bool(matches)

    # ==================== USER MANAGEMENT (admin) ====================

    def _require_admin(self, session: Optional[Session], action: str):
        if session is None or not session.is_admin():
            logger.warning(f"[PERMISSION_DENIED] {action} user={session.email if session else None}")
            raise PermissionDenied(f"Only administrators can {action}")

    async def add_user(self, session: Optional[Session], data: Dict[str, Any], password: str) -> Dict:
        self._require_admin(session, "create users")
        return await self._create_user(data, password, created_by=session.email)

    async def _create_user(self, data: Dict[str, Any], password: str, created_by: str = None) -> Dict:
        email = (data.get("email") or "").lower().strip()
        username = (data.get("username") or "").strip()
        role = data.get("role") or "user"

        if role not in VALID_ROLES:
            raise UserValidationError(f"Invalid role: {role}")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise UserValidationError("Password must be at least 6 characters.")
        if await self.email_exists(email):
            raise UserValidationError("This email is already in use by another account.")
        if await self.username_exists(username):
            raise UserValidationError("This username is already taken.")

        auth_uid = str(uuid.uuid4())
        await self.identities.add({"uid": auth_uid, "email": email, "passwordHash": hash_password(password)})

        now = now_iso()
        permissions = data.get("permissions")
        if permissions is None:
            permissions = get_preset_permissions(role)
        user = {
            "username": username,
            "fullName": data.get("fullName") or "",
            "email": email,
            "role": role,
            "permissions": [p for p in permissions if p in ALL_PERMISSION_KEYS],
            "isActive": True,
            "authUid": auth_uid,
            "createdAt": now,
            "createdBy": created_by,
            "passwordChangedAt": now,
        }
        result = await self.users.add(user)
        user["id"] = result.id
        logger.info(f"[USERS] created {email} role={role} by={created_by}")
        return user

    async def update_user(self, session: Optional[Session], user_id: str, updates: Dict[str, Any]) -> Optional[Dict]:
        self._require_admin(session, "update users")
        current = await self.users.get(user_id)
        if current is None:
            return None

        changes = {k: v for k, v in updates.items() if k not in PROTECTED_USER_FIELDS}
        if "email" in changes:
            changes["email"] = (changes["email"] or "").lower().strip()
            if changes["email"] != current.get("email") and await self.email_exists(changes["email"], user_id):
                raise UserValidationError("This email is already in use by another account.")
        if "username" in changes and await self.username_exists(changes["username"], user_id):
            raise UserValidationError("This username is already taken.")
        if "role" in changes and changes["role"] not in VALID_ROLES:
            raise UserValidationError(f"Invalid role: {changes['role']}")
        if "permissions" in changes and changes["permissions"] is not None:
            changes["permissions"] = [p for p in changes["permissions"] if p in ALL_PERMISSION_KEYS]

        changes["updatedAt"] = now_iso()
        await self.users.update(user_id, changes)

        if "email" in changes and changes["email"] != current.get("email"):
            identities = await self.identities.find(uid=current.get("authUid"))
            for identity in identities:
                await self.identities.update(identity["id"], {"email": changes["email"]})

        logger.info(f"[USERS] updated {user_id} fields={sorted(changes.keys())} by={session.email}")
        return public_user({**current, **changes})

    async def _set_active(self, user_id: str, active: bool) -> bool:
        result = await self.users.update(user_id, {"isActive": active, "updatedAt": now_iso()})
        return result.success

    async def deactivate_user(self, session: Optional[Session], user_id: str) -> bool:
        """Soft delete"""
        self._require_admin(session, "deactivate users")
        if user_id == session.user_id:
            raise UserValidationError("You cannot deactivate your own account.")
        done = await self._set_active(user_id, False)
        if done:
            for s in await self.sessions.find(userId=user_id):
                await self.sessions.delete(s["id"])
            logger.info(f"[USERS] deactivated {user_id} by={session.email}")
        return done

    async def reactivate_user(self, session: Optional[Session], user_id: str) -> bool:
        self._require_admin(session, "reactivate users")
        done = await self._set_active(user_id, True)
        if done:
            logger.info(f"[USERS] reactivated {user_id} by={session.email}")
        return done

    async def delete_user(self, session: Optional[Session], user_id: str) -> bool:
        """Hard delete: profile, credentials and sessions"""
        self._require_admin(session, "delete users")
        if user_id == session.user_id:
            raise UserValidationError("You cannot delete your own account.")
        user = await self.users.get(user_id)
        if user is None:
            return False
        for s in await self.sessions.find(userId=user_id):
            await self.sessions.delete(s["id"])
        for identity in await self.identities.find(uid=user.get("authUid")):
            await self.identities.delete(identity["id"])
        result = await self.users.delete(user_id)
        logger.info(f"[USERS] permanently deleted {user.get('email')} by={session.email}")
        return result.success

    # ==================== PASSWORDS ====================

    async def _set_password(self, user: Dict, new_password: str):
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            raise UserValidationError("Password must be at least 6 characters.")
        identities = await self.identities.find(uid=user.get("authUid"))
        if not identities:
            raise UserValidationError("User has no login credentials.")
        await self.identities.update(identities[0]["id"], {"passwordHash": hash_password(new_password)})
        now = now_iso()
        await self.users.update(user["id"], {"passwordChangedAt": now, "updatedAt": now})

    async def rotate_password(self, session: Optional[Session], user_id: str, new_password: str) -> bool:
        """Privileged reset of another user's password"""
        self._require_admin(session, "change other users' passwords")
        if not user_id:
            raise UserValidationError("User id is required.")
        user = await self.users.get(user_id)
        if user is None:
            return False
        await self._set_password(user, new_password)
        logger.info(f"[USERS] password rotated for {user.get('email')} by={session.email}")
        return True

    async def change_own_password(self, session: Session, current_password: str, new_password: str) -> bool:
        """Re-authenticates with the current password first"""
        user = await self.users.get(session.user_id)
        if user is None:
            raise AuthenticationError("User not found")
        if not await self._verify_credentials(user, current_password):
            logger.warning(f"[AUTH] password change refused for {user.get('email')}: wrong current password")
            raise AuthenticationError("Current password is incorrect")
        await self._set_password(user, new_password)
        logger.info(f"[USERS] {user.get('email')} changed their password")
        return True

    # ==================== BOOTSTRAP ====================

    async def initialize_default_admin(self, email: str, username: str, password: Optional[str]) -> Optional[Dict]:
        """Create the first administrator when there are no users at all."""
        if await self.users.get_all():
            return None
        if not password:
            logger.warning("[USERS] no users and DEFAULT_ADMIN_PASSWORD not set, skipping admin bootstrap")
            return None
        admin = await self._create_user(
            {
                "email": email,
                "username": username,
                "fullName": "Administrator",
                "role": "admin",
                "permissions": list(ALL_PERMISSION_KEYS),
            },
            password,
            created_by="system",
        )
        logger.info(f"[USERS] default administrator {email} created")
        return admin
