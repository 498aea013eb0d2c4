from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.middleware.authorization import ADMIN_ROLES
from portal.models.user import User


async def get_admin_emails(db: AsyncSession, import_summary_only: bool = False) -> list[str]:
    """Emails of active global admins and administrators."""
    q = select(User.email).where(
        User.role.in_(ADMIN_ROLES),
        User.is_active == True,  # noqa: E712
        User.deleted_at == None,  # noqa: E711
    )
    if import_summary_only:
        q = q.where(User.send_import_summary_report == True)  # noqa: E712
    result = await db.execute(q)
    return [email for email in result.scalars().all() if email]
