import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, BigInteger, DateTime, Text, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from portal.database import Base, JSONType

FILE_STATUSES = ("uploaded", "processing", "parsed", "unallocated", "failed", "duplicate")


class StoredFile(Base):
    """An uploaded import file and the outcome of processing it."""

    __tablename__ = "files"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_hash: Mapped[Optional[str]] = mapped_column(String(64))
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100))
    file_type: Mapped[str] = mapped_column(String(20), default="unknown")
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id")
    )
    uploaded_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    import_id: Mapped[Optional[str]] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(20), default="uploaded")
    failure_reason: Mapped[Optional[str]] = mapped_column(String(100))
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    extra_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSONType, default=dict
    )

    __table_args__ = (
        Index("idx_files_hash", "file_hash"),
        Index("idx_files_status", "status"),
        Index("idx_files_import", "import_id"),
    )
