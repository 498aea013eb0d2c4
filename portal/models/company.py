import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from portal.database import Base, JSONType

COMPANY_TYPES = ("CORP", "SUB", "BRANCH")


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id")
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[Optional[str]] = mapped_column(String(10))
    reference_no: Mapped[Optional[int]] = mapped_column(Integer, unique=True)
    code: Mapped[Optional[str]] = mapped_column(String(50), unique=True)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    address: Mapped[Optional[dict]] = mapped_column(JSONType)
    tax_id: Mapped[Optional[str]] = mapped_column(String(50))
    vat_number: Mapped[Optional[str]] = mapped_column(String(50))
    website: Mapped[Optional[str]] = mapped_column(Text)
    primary_contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    send_invoice_email: Mapped[bool] = mapped_column(Boolean, default=False)
    send_invoice_attachment: Mapped[bool] = mapped_column(Boolean, default=False)
    send_statement_email: Mapped[bool] = mapped_column(Boolean, default=False)
    send_statement_attachment: Mapped[bool] = mapped_column(Boolean, default=False)
    send_email_as_summary: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # EDI customers receive documents electronically; no portal emails
    edi: Mapped[bool] = mapped_column(Boolean, default=False)

    extra_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSONType, default=dict
    )
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_companies_parent", "parent_id"),
        Index("idx_companies_name", "name"),
    )
