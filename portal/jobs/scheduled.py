"""
Scheduled maintenance jobs triggered by an external scheduler hitting these endpoints.

Jobs:
  - document-retention: Daily, removes documents past their retention expiry
  - file-cleanup: Daily, removes import files older than the file retention window
  - sweep-trackers: Hourly, drops stale login-failure counters and abandoned batches
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.config import settings
from portal.database import get_db
from portal.services.activity_logger import log_activity
from portal.services.batch_notifier import batch_tracker
from portal.services.document_service import CREDIT_NOTE, INVOICE
from portal.services.retention import cleanup_expired_documents, cleanup_old_files
from portal.services.security_monitor import security_monitor
from portal.services.settings_service import get_portal_settings

logger = structlog.get_logger()
router = APIRouter()


async def _require_internal_auth(request: Request):
    """
    Verify the request comes from the scheduler or another internal service.
    Validates X-Internal-Secret header against INTERNAL_JOB_SECRET from settings.
    """
    secret = settings.INTERNAL_JOB_SECRET
    if not secret:
        # In development (DEBUG=True), allow unauthenticated internal calls
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="INTERNAL_JOB_SECRET is not configured",
        )
    provided = request.headers.get("X-Internal-Secret")
    if not provided or provided != secret:
        logger.warning("internal_auth_failed", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )


@router.post("/document-retention")
async def run_document_retention(
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_internal_auth),
):
    portal_settings = await get_portal_settings(db)
    counts = await cleanup_expired_documents(db, portal_settings)
    for kind, key in ((INVOICE, "invoices"), (CREDIT_NOTE, "credit_notes")):
        if counts[key]:
            await log_activity(
                db,
                kind.deleted,
                f"Retention cleanup removed {counts[key]} {kind.label.lower()}(s)",
                user_email="system",
                details={"job": "document-retention", "document_type": kind.document_type, "count": counts[key]},
            )
    return {"job": "document-retention", **counts}


@router.post("/file-cleanup")
async def run_file_cleanup(
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_internal_auth),
):
    portal_settings = await get_portal_settings(db)
    removed = await cleanup_old_files(db, portal_settings.file_retention_days)
    return {"job": "file-cleanup", "removed": removed, "retention_days": portal_settings.file_retention_days}


@router.post("/sweep-trackers")
async def sweep_trackers(_auth: None = Depends(_require_internal_auth)):
    security_removed = security_monitor.sweep()
    batches_removed = batch_tracker.sweep()
    logger.info("trackers_swept", security=security_removed, batches=batches_removed)
    return {"job": "sweep-trackers", "security_entries_removed": security_removed, "batches_removed": batches_removed}
