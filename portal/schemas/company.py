from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from portal.models.company import COMPANY_TYPES


class CompanyBase(BaseModel):
    parent_id: Optional[str] = None
    type: Optional[str] = None
    reference_no: Optional[int] = Field(None, ge=0)
    code: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[dict] = None
    tax_id: Optional[str] = Field(None, max_length=50)
    vat_number: Optional[str] = Field(None, max_length=50)
    website: Optional[str] = None
    primary_contact_id: Optional[str] = None
    send_invoice_email: Optional[bool] = None
    send_invoice_attachment: Optional[bool] = None
    send_statement_email: Optional[bool] = None
    send_statement_attachment: Optional[bool] = None
    send_email_as_summary: Optional[bool] = None
    is_active: Optional[bool] = None
    edi: Optional[bool] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in COMPANY_TYPES:
            raise ValueError(f"Invalid company type. Must be one of: {COMPANY_TYPES}")
        return v


class CompanyCreate(CompanyBase):
    name: str = Field(..., min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Company name is required")
        return v.strip()


class CompanyUpdate(CompanyBase):
    name: Optional[str] = Field(None, min_length=1, max_length=255)


class CompanyResponse(BaseModel):
    id: str
    name: str
    parent_id: Optional[str] = None
    type: Optional[str] = None
    reference_no: Optional[int] = None
    code: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[dict] = None
    tax_id: Optional[str] = None
    vat_number: Optional[str] = None
    website: Optional[str] = None
    primary_contact_id: Optional[str] = None
    send_invoice_email: bool = False
    send_invoice_attachment: bool = False
    send_statement_email: bool = False
    send_statement_attachment: bool = False
    send_email_as_summary: bool = False
    is_active: bool = True
    edi: bool = False
    created_at: Optional[str] = None


class CompanyTreeNode(BaseModel):
    id: str
    name: str
    type: Optional[str] = None
    reference_no: Optional[int] = None
    children: List["CompanyTreeNode"] = Field(default_factory=list)


class AssignedUser(BaseModel):
    id: str
    name: str
    email: str
    role: str
    is_active: bool
