import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from portal.database import Base

RETENTION_PERIOD_CHOICES = (None, 14, 30, 60, 90)
PASSWORD_EXPIRY_CHOICES = (None, 0, 14, 30, 60, 90)
RETENTION_DATE_TRIGGERS = ("upload_date", "invoice_date")


class PortalSettings(Base):
    """Single-row table of runtime-editable portal settings."""

    __tablename__ = "settings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    company_name: Mapped[str] = mapped_column(String(255), default="EDI Portal")
    site_title: Mapped[Optional[str]] = mapped_column(String(255))
    system_email: Mapped[Optional[str]] = mapped_column(String(255))
    primary_color: Mapped[str] = mapped_column(String(20), default="#066fd1")

    password_expiry_days: Mapped[Optional[int]] = mapped_column(Integer)
    file_retention_days: Mapped[int] = mapped_column(Integer, default=90)
    document_retention_period: Mapped[Optional[int]] = mapped_column(Integer)
    document_retention_date_trigger: Mapped[str] = mapped_column(
        String(20), default="upload_date"
    )

    only_external_users_change_document_status: Mapped[bool] = mapped_column(
        Boolean, default=False
    )
    queries_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    account_lockout_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    max_failed_login_attempts: Mapped[int] = mapped_column(Integer, default=5)
    lockout_duration_minutes: Mapped[int] = mapped_column(Integer, default=30)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
