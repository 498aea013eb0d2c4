from datetime import datetime, timedelta
from typing import Optional
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.middleware.authorization import ROLE_LABELS
from portal.models.company import Company
from portal.models.portal_settings import PortalSettings
from portal.models.user import User, user_companies
from portal.schemas.auth import CompanySummary, UserResponse
from portal.schemas.common import iso
from portal.services.url_config import UrlConfigError, get_avatar_url

logger = structlog.get_logger()


async def email_in_use(db: AsyncSession, email: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
    """Emails are unique across live and soft-deleted users (the column is unique)."""
    q = select(User.id).where(func.lower(User.email) == email.strip().lower())
    if exclude_id is not None:
        q = q.where(User.id != exclude_id)
    return (await db.execute(q.limit(1))).scalar_one_or_none() is not None


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(
        select(User).where(
            func.lower(User.email) == email.strip().lower(),
            User.deleted_at == None,  # noqa: E711
        )
    )
    return result.scalar_one_or_none()


async def get_user_companies(db: AsyncSession, user_id: uuid.UUID) -> list[Company]:
    result = await db.execute(
        select(Company)
        .join(user_companies, user_companies.c.company_id == Company.id)
        .where(user_companies.c.user_id == user_id)
        .order_by(Company.name)
    )
    return list(result.scalars().all())


def password_expiry_from(portal_settings: PortalSettings, now: Optional[datetime] = None) -> Optional[datetime]:
    if not portal_settings.password_expiry_days:
        return None
    return (now or datetime.utcnow()) + timedelta(days=portal_settings.password_expiry_days)


def avatar_url(user: User) -> Optional[str]:
    if not user.avatar:
        return None
    try:
        return get_avatar_url(str(user.id))
    except UrlConfigError as exc:
        # same-origin deployments can still resolve the relative path
        logger.warning("avatar_url_relative", error=str(exc))
        return f"/api/profile/avatar/{user.id}"


def is_locked(user: User, now: Optional[datetime] = None) -> bool:
    if user.account_locked_until is not None:
        return user.account_locked_until > (now or datetime.utcnow())
    return bool(user.lock_reason)


async def user_to_response(db: AsyncSession, user: User, include_companies: bool = True) -> UserResponse:
    companies = await get_user_companies(db, user.id) if include_companies else []
    return UserResponse(
        id=str(user.id),
        name=user.name,
        email=user.email,
        role=user.role,
        role_label=ROLE_LABELS.get(user.role, user.role),
        is_active=bool(user.is_active),
        must_change_password=bool(user.must_change_password),
        all_companies=bool(user.all_companies),
        avatar_url=avatar_url(user),
        pending_email=user.pending_email,
        last_login=iso(user.last_login),
        send_invoice_email=bool(user.send_invoice_email),
        send_invoice_attachment=bool(user.send_invoice_attachment),
        send_statement_email=bool(user.send_statement_email),
        send_statement_attachment=bool(user.send_statement_attachment),
        send_email_as_summary=bool(user.send_email_as_summary),
        send_import_summary_report=bool(user.send_import_summary_report),
        is_locked=is_locked(user),
        account_locked_until=iso(user.account_locked_until),
        failed_login_attempts=user.failed_login_attempts or 0,
        companies=[
            CompanySummary(id=str(c.id), name=c.name, reference_no=c.reference_no) for c in companies
        ],
        created_at=iso(user.created_at),
    )
