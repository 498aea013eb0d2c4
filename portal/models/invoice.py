from sqlalchemy import String, Index, desc
from sqlalchemy.orm import Mapped, mapped_column

from portal.database import Base
from portal.models.document import DocumentMixin


class Invoice(DocumentMixin, Base):
    __tablename__ = "invoices"

    invoice_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    __table_args__ = (
        Index("idx_invoices_company", "company_id"),
        Index("idx_invoices_document_status", "document_status"),
        Index("idx_invoices_created", desc("created_at")),
    )

    @property
    def number(self) -> str:
        return self.invoice_number
