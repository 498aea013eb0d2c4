import uuid
from typing import Optional

from sqlalchemy import String, Text, ForeignKey, Index, desc
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from portal.database import Base
from portal.models.document import DocumentMixin


class CreditNote(DocumentMixin, Base):
    __tablename__ = "credit_notes"

    credit_note_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("invoices.id")
    )
    reason: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("idx_credit_notes_company", "company_id"),
        Index("idx_credit_notes_document_status", "document_status"),
        Index("idx_credit_notes_created", desc("created_at")),
    )

    @property
    def number(self) -> str:
        return self.credit_note_number
