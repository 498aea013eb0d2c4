from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from portal.middleware.authorization import ROLE_HIERARCHY


def _check_role(v: Optional[str]) -> Optional[str]:
    if v is not None and v not in ROLE_HIERARCHY:
        raise ValueError(f"Invalid role. Must be one of: {tuple(ROLE_HIERARCHY)}")
    return v


class NotificationFlags(BaseModel):
    send_invoice_email: Optional[bool] = None
    send_invoice_attachment: Optional[bool] = None
    send_statement_email: Optional[bool] = None
    send_statement_attachment: Optional[bool] = None
    send_email_as_summary: Optional[bool] = None
    send_import_summary_report: Optional[bool] = None


class UserCreateRequest(NotificationFlags):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    role: str = "external_user"
    password: Optional[str] = None
    all_companies: bool = False
    company_ids: List[str] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: Optional[str]) -> Optional[str]:
        return _check_role(v)


class UserUpdateRequest(NotificationFlags):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None
    all_companies: Optional[bool] = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: Optional[str]) -> Optional[str]:
        return _check_role(v)


class UserCompaniesRequest(BaseModel):
    company_ids: List[str] = Field(default_factory=list)


class LockAccountRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)
    duration_minutes: Optional[int] = Field(None, ge=1, le=60 * 24 * 365)


class ManageableRole(BaseModel):
    value: str
    label: str
    level: int
