"""
ENQUIRY CRM - Auth & user models
role=admin implies every permission.
"""

from typing import List, Optional

from pydantic import BaseModel, validator

from enquiry_crm.services.permissions import ALL_PERMISSION_KEYS, VALID_ROLES


def _check_permissions(v):
    if v is None:
        return v
    unknown = [p for p in v if p not in ALL_PERMISSION_KEYS]
    if unknown:
        raise ValueError(f"Unknown permissions: {unknown}. Valid: {ALL_PERMISSION_KEYS}")
    return v


class UserLogin(BaseModel):
    usernameOrEmail: str
    password: str
    rememberMe: bool = False


class UserCreate(BaseModel):
    username: str
    fullName: str
    email: str
    password: str
    role: str = "user"
    permissions: Optional[List[str]] = None

    @validator("role")
    def validate_role(cls, v):
        if v not in VALID_ROLES:
            raise ValueError(f"Invalid role: {v}. Valid: {VALID_ROLES}")
        return v

    @validator("permissions")
    def validate_permissions(cls, v):
        return _check_permissions(v)


class UserUpdate(BaseModel):
    username: Optional[str] = None
    fullName: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    permissions: Optional[List[str]] = None
    isActive: Optional[bool] = None

    @validator("role")
    def validate_role(cls, v):
        if v is not None and v not in VALID_ROLES:
            raise ValueError(f"Invalid role: {v}")
        return v

    @validator("permissions")
    def validate_permissions(cls, v):
        return _check_permissions(v)


class PasswordChange(BaseModel):
    currentPassword: str
    newPassword: str


class AdminPasswordReset(BaseModel):
    newPassword: str
