"""Access to the single ``settings`` row (created with defaults on first use)."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.models.portal_settings import PortalSettings

logger = structlog.get_logger()

DEFAULT_LOCKOUT_ENABLED = True
DEFAULT_MAX_FAILED_ATTEMPTS = 5
DEFAULT_LOCKOUT_MINUTES = 30


async def get_portal_settings(db: AsyncSession) -> PortalSettings:
    result = await db.execute(select(PortalSettings).limit(1))
    row = result.scalar_one_or_none()
    if row is None:
        row = PortalSettings(
            account_lockout_enabled=DEFAULT_LOCKOUT_ENABLED,
            max_failed_login_attempts=DEFAULT_MAX_FAILED_ATTEMPTS,
            lockout_duration_minutes=DEFAULT_LOCKOUT_MINUTES,
            file_retention_days=90,
            document_retention_date_trigger="upload_date",
        )
        db.add(row)
        await db.flush()
        logger.info("portal_settings_initialised")
    return row
