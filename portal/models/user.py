import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Table,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from portal.database import Base


user_companies = Table(
    "user_companies",
    Base.metadata,
    Column(
        "user_id",
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "company_id",
        UUID(as_uuid=True),
        ForeignKey("companies.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("created_at", DateTime, default=datetime.utcnow),
)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255))
    must_change_password: Mapped[bool] = mapped_column(Boolean, default=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="external_user")
    added_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    avatar: Mapped[Optional[str]] = mapped_column(Text)

    reset_password_token: Mapped[Optional[str]] = mapped_column(String(128))
    reset_password_expires: Mapped[Optional[datetime]] = mapped_column(DateTime)
    pending_email: Mapped[Optional[str]] = mapped_column(String(255))
    email_change_token: Mapped[Optional[str]] = mapped_column(String(128))
    email_change_expires: Mapped[Optional[datetime]] = mapped_column(DateTime)
    password_expiry_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    all_companies: Mapped[bool] = mapped_column(Boolean, default=False)
    send_invoice_email: Mapped[bool] = mapped_column(Boolean, default=False)
    send_invoice_attachment: Mapped[bool] = mapped_column(Boolean, default=False)
    send_statement_email: Mapped[bool] = mapped_column(Boolean, default=False)
    send_statement_attachment: Mapped[bool] = mapped_column(Boolean, default=False)
    send_email_as_summary: Mapped[bool] = mapped_column(Boolean, default=False)
    send_import_summary_report: Mapped[bool] = mapped_column(Boolean, default=False)

    # Account lockout
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0)
    account_locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_failed_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    locked_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    lock_reason: Mapped[Optional[str]] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_users_email", "email"),
        Index("idx_users_role", "role"),
        Index("idx_users_reset_token", "reset_password_token"),
        Index("idx_users_email_change_token", "email_change_token"),
    )
