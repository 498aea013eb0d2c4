from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


def _normalise_email(v):
    return v.strip().lower() if isinstance(v, str) else v


class RegistrationSubmit(BaseModel):
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    company_name: str = Field(..., max_length=255)
    email: EmailStr
    account_number: Optional[str] = Field(None, max_length=100)

    @field_validator("first_name", "last_name", "company_name")
    @classmethod
    def required_text(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("This field is required")
        return v.strip()

    @field_validator("email", mode="before")
    @classmethod
    def normalise_email(cls, v):
        return _normalise_email(v)

    @field_validator("account_number")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() or None if v else None


class RegistrationUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    company_name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    account_number: Optional[str] = Field(None, max_length=100)
    intended_role: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalise_email(cls, v):
        return _normalise_email(v)


class ApproveRegistrationRequest(BaseModel):
    role: Optional[str] = None
    company_ids: List[str] = Field(default_factory=list)
    all_companies: bool = False
    send_invoice_email: bool = True
    send_invoice_attachment: bool = False
    send_statement_email: bool = True
    send_statement_attachment: bool = False
    send_email_as_summary: bool = False


class RejectRegistrationRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class RegistrationResponse(BaseModel):
    id: str
    first_name: str
    last_name: str
    company_name: str
    account_number: Optional[str] = None
    email: str
    custom_fields: dict = Field(default_factory=dict)
    status: str
    reviewed_by_id: Optional[str] = None
    reviewed_at: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_user_id: Optional[str] = None
    created_at: Optional[str] = None
