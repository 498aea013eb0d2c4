from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.database import get_db
from portal.middleware.auth import get_current_user
from portal.middleware.authorization import ADMIN_ROLES, require_roles
from portal.schemas.settings import PublicSettingsResponse, SettingsResponse, SettingsUpdate
from portal.services.account_lockout import get_lockout_config
from portal.services.activity_logger import ActivityType, log_activity
from portal.services.security_monitor import get_security_stats
from portal.services.settings_service import get_portal_settings

logger = structlog.get_logger()
router = APIRouter()


@router.get("/public", response_model=PublicSettingsResponse)
async def get_public_settings(db: AsyncSession = Depends(get_db)):
    """Branding shown on the login and registration pages."""
    row = await get_portal_settings(db)
    return PublicSettingsResponse(
        company_name=row.company_name,
        site_title=row.site_title,
        primary_color=row.primary_color,
    )


@router.get("", response_model=SettingsResponse)
async def get_settings(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return SettingsResponse.model_validate(await get_portal_settings(db))


@router.put("", response_model=SettingsResponse)
async def update_settings(
    body: SettingsUpdate,
    request: Request,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("global_admin")),
    db: AsyncSession = Depends(get_db),
):
    row = await get_portal_settings(db)
    updates = body.model_dump(exclude_unset=True)

    changed = []
    for key, value in updates.items():
        # nullable choices may be cleared; everything else ignores explicit nulls
        if value is None and key not in ("password_expiry_days", "document_retention_period", "site_title", "system_email"):
            continue
        if getattr(row, key) != value:
            setattr(row, key, value)
            changed.append(key)
    await db.flush()

    if changed:
        await log_activity(
            db,
            ActivityType.SETTINGS_UPDATED,
            "Updated portal settings",
            user=current_user,
            details={"changed_keys": changed},
            request=request,
        )
        logger.info("settings_updated", keys=changed, by=current_user["user_id"])
    return SettingsResponse.model_validate(row)


@router.get("/security/stats")
async def security_stats(
    _auth: None = Depends(require_roles(*ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await get_security_stats(db)


@router.get("/security/lockout-config")
async def lockout_config(
    _auth: None = Depends(require_roles(*ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    config = await get_lockout_config(db)
    return {
        "enabled": config.enabled,
        "max_attempts": config.max_attempts,
        "duration_minutes": config.duration_minutes,
    }
