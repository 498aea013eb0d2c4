from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        return v.strip().lower()


class CompanySummary(BaseModel):
    id: str
    name: str
    reference_no: Optional[int] = None


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: str
    role_label: str
    is_active: bool
    must_change_password: bool = False
    all_companies: bool = False
    avatar_url: Optional[str] = None
    pending_email: Optional[str] = None
    last_login: Optional[str] = None
    send_invoice_email: bool = False
    send_invoice_attachment: bool = False
    send_statement_email: bool = False
    send_statement_attachment: bool = False
    send_email_as_summary: bool = False
    send_import_summary_report: bool = False
    is_locked: bool = False
    account_locked_until: Optional[str] = None
    failed_login_attempts: int = 0
    companies: List[CompanySummary] = Field(default_factory=list)
    created_at: Optional[str] = None


class LoginResponse(BaseModel):
    token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    user: Optional[UserResponse] = None
    requires_password_change: bool = False
    session_token: Optional[str] = None
    message: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: Optional[str] = None
    new_password: str = Field(..., min_length=1)
    session_token: Optional[str] = None


class TokenRequest(BaseModel):
    token: str = Field(..., min_length=1)
