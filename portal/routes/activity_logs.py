import csv
import io
import json
from collections import Counter
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.database import get_db
from portal.middleware.auth import get_current_user
from portal.middleware.authorization import INTERNAL_ROLES, require_roles
from portal.models.activity_log import ActivityLog
from portal.schemas.activity_log import ActivityLogResponse, PurgeLogsRequest
from portal.schemas.common import MessageResponse, PaginatedResponse, ReasonRequest, build_pagination
from portal.services.activity_logger import ActivityType, log_activity
from portal.services.lookups import bad_request, get_or_404, parse_uuid

logger = structlog.get_logger()
router = APIRouter()

STAFF = require_roles(*INTERNAL_ROLES)
EXPORT_LIMIT = 10_000
STATS_SAMPLE_SIZE = 100
PURGE_CONFIRMATION = "PURGE ALL LOGS"


class LogFilters:
    """Query parameters shared by the list and export endpoints."""

    def __init__(
        self,
        user_id: Optional[str] = Query(None),
        company_id: Optional[str] = Query(None),
        role: Optional[str] = Query(None),
        type: Optional[str] = Query(None),
        start_date: Optional[date] = Query(None),
        end_date: Optional[date] = Query(None),
        search: Optional[str] = Query(None),
    ):
        self.user_id = user_id
        self.company_id = company_id
        self.role = role
        self.type = type
        self.start_date = start_date
        self.end_date = end_date
        self.search = search

    def conditions(self) -> list:
        conditions = []
        if self.user_id:
            conditions.append(ActivityLog.user_id == parse_uuid(self.user_id, "User"))
        if self.company_id:
            conditions.append(ActivityLog.company_id == parse_uuid(self.company_id, "Company"))
        if self.role:
            conditions.append(ActivityLog.user_role == self.role)
        if self.type:
            conditions.append(ActivityLog.type == self.type)
        if self.start_date:
            conditions.append(ActivityLog.created_at >= datetime.combine(self.start_date, datetime.min.time()))
        if self.end_date:
            conditions.append(ActivityLog.created_at <= datetime.combine(self.end_date, datetime.max.time()))
        if self.search:
            pattern = f"%{self.search.strip()}%"
            conditions.append(
                or_(
                    ActivityLog.action.ilike(pattern),
                    ActivityLog.user_email.ilike(pattern),
                    ActivityLog.company_name.ilike(pattern),
                )
            )
        return conditions


def _to_response(log: ActivityLog) -> ActivityLogResponse:
    return ActivityLogResponse(
        id=str(log.id),
        type=log.type,
        user_id=str(log.user_id) if log.user_id else None,
        user_email=log.user_email,
        user_role=log.user_role,
        action=log.action,
        details=log.details or {},
        company_id=str(log.company_id) if log.company_id else None,
        company_name=log.company_name,
        ip_address=log.ip_address,
        user_agent=log.user_agent,
        created_at=log.created_at.isoformat() if log.created_at else "",
    )


@router.get("", response_model=PaginatedResponse[ActivityLogResponse])
async def list_activity_logs(
    page: int = Query(1, ge=1, le=10000),
    limit: int = Query(50, ge=1, le=200),
    filters: LogFilters = Depends(),
    _auth: None = Depends(STAFF),
    db: AsyncSession = Depends(get_db),
):
    conditions = filters.conditions()
    total = (await db.execute(select(func.count(ActivityLog.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(ActivityLog)
        .where(*conditions)
        .order_by(ActivityLog.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [_to_response(log) for log in result.scalars().all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/export")
async def export_activity_logs(
    filters: LogFilters = Depends(),
    _auth: None = Depends(STAFF),
    db: AsyncSession = Depends(get_db),
):
    """Export filtered activity logs as CSV. Max 10,000 rows."""
    result = await db.execute(
        select(ActivityLog)
        .where(*filters.conditions())
        .order_by(ActivityLog.created_at.desc())
        .limit(EXPORT_LIMIT)
    )
    logs = result.scalars().all()

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "id", "created_at", "type", "action", "user_email", "user_role",
        "company_name", "ip_address", "details",
    ])
    for log in logs:
        writer.writerow([
            str(log.id),
            log.created_at.isoformat() if log.created_at else "",
            log.type,
            log.action,
            log.user_email or "",
            log.user_role or "",
            log.company_name or "",
            log.ip_address or "",
            json.dumps(log.details, default=str) if log.details else "",
        ])

    filename = f"activity_logs_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.csv"
    return Response(
        content=output.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/stats")
async def get_activity_stats(_auth: None = Depends(STAFF), db: AsyncSession = Depends(get_db)):
    total = (await db.execute(select(func.count(ActivityLog.id)))).scalar() or 0
    result = await db.execute(
        select(ActivityLog.type, ActivityLog.user_role)
        .order_by(ActivityLog.created_at.desc())
        .limit(STATS_SAMPLE_SIZE)
    )
    recent = result.all()
    return {
        "total": total,
        "by_type": dict(Counter(t for t, _ in recent)),
        "by_role": dict(Counter(r or "unknown" for _, r in recent)),
    }


@router.get("/types")
async def list_activity_types(_auth: None = Depends(STAFF)):
    return [t.value for t in ActivityType]


@router.delete("/clear")
async def clear_activity_logs(
    body: ReasonRequest,
    request: Request,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("global_admin", "administrator")),
    db: AsyncSession = Depends(get_db),
):
    """Delete every log except earlier clear records, then record this clear."""
    result = await db.execute(delete(ActivityLog).where(ActivityLog.type != ActivityType.LOGS_CLEARED.value))
    deleted = result.rowcount or 0
    await log_activity(
        db,
        ActivityType.LOGS_CLEARED,
        f"Cleared {deleted} activity log(s)",
        user=current_user,
        details={"is_clear_log": True, "reason": body.reason.strip(), "deleted_count": deleted},
        request=request,
    )
    logger.warning("activity_logs_cleared", deleted=deleted, by=current_user["user_id"])
    return {"message": f"Cleared {deleted} activity log(s)", "deleted_count": deleted}


@router.delete("/purge-all")
async def purge_all_activity_logs(
    body: PurgeLogsRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("global_admin")),
    db: AsyncSession = Depends(get_db),
):
    if body.confirm != PURGE_CONFIRMATION:
        raise bad_request(f'Confirmation text must be "{PURGE_CONFIRMATION}"', code="CONFIRMATION_REQUIRED")
    result = await db.execute(delete(ActivityLog))
    deleted = result.rowcount or 0
    # the purge leaves no row behind; the application log is the only record
    logger.warning(
        "activity_logs_purged",
        deleted=deleted,
        by=current_user["user_id"],
        email=current_user["email"],
        reason=body.reason.strip(),
    )
    return {"message": f"Purged {deleted} activity log(s)", "deleted_count": deleted}


@router.delete("/{log_id}", response_model=MessageResponse)
async def delete_activity_log(
    log_id: str,
    body: ReasonRequest,
    request: Request,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("global_admin")),
    db: AsyncSession = Depends(get_db),
):
    log = await get_or_404(db, ActivityLog, log_id, "Activity log")
    if log.type == ActivityType.LOGS_CLEARED.value:
        raise bad_request("Log clear records cannot be deleted", code="CLEAR_LOG_PROTECTED")

    snapshot = {"id": str(log.id), "type": log.type, "action": log.action, "user_email": log.user_email}
    await db.delete(log)
    await db.flush()
    await log_activity(
        db,
        ActivityType.LOGS_CLEARED,
        "Deleted an activity log entry",
        user=current_user,
        details={"is_clear_log": True, "reason": body.reason.strip(), "deleted_count": 1, "deleted_log": snapshot},
        request=request,
    )
    return MessageResponse(message="Activity log deleted")
