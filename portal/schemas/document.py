from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from portal.models.document import DOCUMENT_STATUSES, DOCUMENT_TRACKING_STATUSES


class DocumentFields(BaseModel):
    company_id: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    amount: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    status: Optional[str] = None
    document_status: Optional[str] = None
    items: Optional[list] = None
    notes: Optional[str] = None
    extra_metadata: Optional[dict] = Field(None, alias="metadata")

    model_config = {"populate_by_name": True}

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in DOCUMENT_STATUSES:
            raise ValueError(f"Invalid status. Must be one of: {DOCUMENT_STATUSES}")
        return v

    @field_validator("document_status")
    @classmethod
    def validate_document_status(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in DOCUMENT_TRACKING_STATUSES:
            raise ValueError(f"Invalid document status. Must be one of: {DOCUMENT_TRACKING_STATUSES}")
        return v


class InvoiceCreate(DocumentFields):
    invoice_number: str = Field(..., min_length=1, max_length=100)
    company_id: str


class InvoiceUpdate(DocumentFields):
    invoice_number: Optional[str] = Field(None, min_length=1, max_length=100)
    edit_reason: Optional[str] = None


class CreditNoteCreate(DocumentFields):
    credit_note_number: str = Field(..., min_length=1, max_length=100)
    company_id: str
    invoice_id: Optional[str] = None
    reason: Optional[str] = None


class CreditNoteUpdate(DocumentFields):
    credit_note_number: Optional[str] = Field(None, min_length=1, max_length=100)
    invoice_id: Optional[str] = None
    reason: Optional[str] = None
    edit_reason: Optional[str] = None


class DocumentResponse(BaseModel):
    id: str
    document_type: str
    number: str
    company_id: Optional[str] = None
    company_name: Optional[str] = None
    issue_date: Optional[str] = None
    due_date: Optional[str] = None
    amount: Optional[str] = None
    tax_amount: Optional[str] = None
    status: str
    document_status: str
    items: Optional[list] = None
    notes: Optional[str] = None
    has_file: bool = False
    invoice_id: Optional[str] = None
    reason: Optional[str] = None
    viewed_at: Optional[str] = None
    downloaded_at: Optional[str] = None
    edit_history: List[dict] = Field(default_factory=list)
    retention_expiry_date: Optional[str] = None
    created_at: Optional[str] = None


class ImportResponse(BaseModel):
    import_id: str
    total_files: int
    message: str
