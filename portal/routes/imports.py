from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.database import get_db
from portal.middleware.auth import get_current_user
from portal.middleware.authorization import INTERNAL_ROLES, require_roles
from portal.models.stored_file import StoredFile
from portal.schemas.common import iso
from portal.services.batch_notifier import batch_tracker, send_batch_notifications
from portal.services.lookups import not_found

logger = structlog.get_logger()
router = APIRouter()

STAFF = require_roles(*INTERNAL_ROLES)


@router.get("/active")
async def list_active_imports(_auth: None = Depends(STAFF)):
    return {"data": batch_tracker.get_active_batches()}


@router.get("/{import_id}")
async def get_import_status(import_id: str, _auth: None = Depends(STAFF)):
    status = batch_tracker.get_batch_status(import_id)
    if status is None:
        raise not_found("Import")
    return status


@router.get("/{import_id}/results")
async def get_import_results(
    import_id: str,
    _auth: None = Depends(STAFF),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(StoredFile).where(StoredFile.import_id == import_id).order_by(StoredFile.uploaded_at)
    )
    files = result.scalars().all()
    return {
        "import_id": import_id,
        "in_progress": batch_tracker.get_batch_status(import_id) is not None,
        "data": [
            {
                "id": str(f.id),
                "file_name": f.file_name,
                "status": f.status,
                "failure_reason": f.failure_reason,
                "customer_id": str(f.customer_id) if f.customer_id else None,
                "processed_at": iso(f.processed_at),
            }
            for f in files
        ],
    }


@router.post("/{import_id}/force-notify")
async def force_notify(
    import_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(STAFF),
    db: AsyncSession = Depends(get_db),
):
    """Send notifications for a batch whose remaining files will never report."""
    batch = batch_tracker.force_complete(import_id)
    if batch is None:
        raise not_found("Import")
    outcome = await send_batch_notifications(db, batch)
    logger.warning("import_force_notified", import_id=import_id, by=current_user["user_id"])
    return {"message": "Notifications sent", "batch": batch.summary(), **outcome}
