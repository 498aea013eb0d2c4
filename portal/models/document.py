"""Columns shared by customer-facing documents (invoices, credit notes)."""

import uuid
from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Numeric, DateTime, Date, Text, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from portal.database import JSONType

DOCUMENT_STATUSES = ("draft", "ready", "sent", "paid", "overdue", "cancelled")
DOCUMENT_TRACKING_STATUSES = ("ready", "review", "viewed", "downloaded", "queried")


class DocumentMixin:
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id")
    )
    issue_date: Mapped[Optional[date]] = mapped_column(Date)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(20), default="ready")
    document_status: Mapped[str] = mapped_column(String(20), default="ready")
    items: Mapped[Optional[list]] = mapped_column(JSONType, default=list)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    file_url: Mapped[Optional[str]] = mapped_column(Text)
    extra_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSONType, default=dict
    )
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    downloaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    deleted_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    deletion_reason: Mapped[Optional[str]] = mapped_column(Text)

    edited_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    edit_reason: Mapped[Optional[str]] = mapped_column(Text)
    edit_history: Mapped[Optional[list]] = mapped_column(JSONType, default=list)

    retention_start_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    retention_expiry_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    retention_deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
