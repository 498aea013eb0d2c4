"""Activity logging service: records who did what in the portal."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union
import uuid

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.models.activity_log import ActivityLog

logger = structlog.get_logger()


class ActivityType(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    PASSWORD_RESET = "password_reset"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_CHANGED = "password_changed"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    BRUTE_FORCE_DETECTED = "brute_force_detected"
    EMAIL_CHANGE_REQUESTED = "email_change_requested"
    EMAIL_CHANGE_VALIDATED = "email_change_validated"
    USER_REGISTRATION_SUBMITTED = "user_registration_submitted"
    USER_REGISTRATION_APPROVED = "user_registration_approved"
    USER_REGISTRATION_REJECTED = "user_registration_rejected"
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"
    COMPANY_CREATED = "company_created"
    COMPANY_UPDATED = "company_updated"
    COMPANY_DELETED = "company_deleted"
    SUPPLIER_CREATED = "supplier_created"
    SUPPLIER_UPDATED = "supplier_updated"
    SUPPLIER_DELETED = "supplier_deleted"
    INVOICE_CREATED = "invoice_created"
    INVOICE_UPDATED = "invoice_updated"
    INVOICE_VIEWED = "invoice_viewed"
    INVOICE_DOWNLOADED = "invoice_downloaded"
    INVOICE_DELETED = "invoice_deleted"
    CREDIT_NOTE_CREATED = "credit_note_created"
    CREDIT_NOTE_UPDATED = "credit_note_updated"
    CREDIT_NOTE_VIEWED = "credit_note_viewed"
    CREDIT_NOTE_DOWNLOADED = "credit_note_downloaded"
    CREDIT_NOTE_DELETED = "credit_note_deleted"
    FILE_UPLOAD = "file_upload"
    FILE_DELETED = "file_deleted"
    IMPORT_BATCH_COMPLETE = "import_batch_complete"
    SETTINGS_UPDATED = "settings_updated"
    EMAIL_TEMPLATE_UPDATED = "email_template_updated"
    LOGS_CLEARED = "logs_cleared"
    LOG_DELETED = "log_deleted"


def get_client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _to_uuid(value: Any) -> Optional[uuid.UUID]:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        logger.warning("activity_invalid_uuid", value=str(value))
        return None


def _actor_fields(user: Union[dict, Any, None]) -> tuple[Optional[uuid.UUID], Optional[str], Optional[str]]:
    """Accept either the claims dict from get_current_user or a User row."""
    if user is None:
        return None, None, None
    if isinstance(user, dict):
        return _to_uuid(user.get("user_id")), user.get("email"), user.get("role")
    return _to_uuid(getattr(user, "id", None)), getattr(user, "email", None), getattr(user, "role", None)


async def log_activity(
    session: AsyncSession,
    type: Union[ActivityType, str],
    action: str,
    user: Union[dict, Any, None] = None,
    details: Optional[dict] = None,
    company: Any = None,
    request: Optional[Request] = None,
    user_email: Optional[str] = None,
) -> Optional[ActivityLog]:
    """
    Record an activity log entry.

    Uses session.flush(); the caller owns the transaction. The entry is written
    inside a savepoint, so a failed insert is logged and rolled back on its own
    without breaking the request being audited.
    """
    user_id, email, role = _actor_fields(user)
    activity_type = type.value if isinstance(type, ActivityType) else str(type)

    entry = ActivityLog(
        type=activity_type,
        user_id=user_id,
        user_email=email or user_email,
        user_role=role,
        action=action,
        details=details or {},
        company_id=_to_uuid(getattr(company, "id", None)) if company is not None else None,
        company_name=getattr(company, "name", None) if company is not None else None,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent") if request is not None else None,
        created_at=datetime.utcnow(),
    )
    # the caller's pending work raises its own errors, outside the savepoint
    await session.flush()
    try:
        async with session.begin_nested():
            session.add(entry)
    except Exception as exc:
        logger.error("activity_log_failed", type=activity_type, error=str(exc))
        return None

    logger.info("activity_logged", type=activity_type, user_email=entry.user_email)
    return entry
