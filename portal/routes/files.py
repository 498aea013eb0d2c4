from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.database import get_db
from portal.middleware.auth import get_current_user
from portal.middleware.authorization import require_roles
from portal.models.stored_file import FILE_STATUSES, StoredFile
from portal.schemas.common import MessageResponse, PaginatedResponse, build_pagination, iso
from portal.services.activity_logger import ActivityType, log_activity
from portal.services.lookups import get_or_404
from portal.services.storage import delete_quietly

logger = structlog.get_logger()
router = APIRouter()

ADMIN = require_roles("global_admin")


class StoredFileResponse(BaseModel):
    id: str
    file_name: str
    file_type: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    status: str
    failure_reason: Optional[str] = None
    import_id: Optional[str] = None
    customer_id: Optional[str] = None
    uploaded_by_id: Optional[str] = None
    uploaded_at: Optional[str] = None
    processed_at: Optional[str] = None
    metadata: dict = {}


def _to_response(f: StoredFile) -> StoredFileResponse:
    return StoredFileResponse(
        id=str(f.id),
        file_name=f.file_name,
        file_type=f.file_type or "unknown",
        file_size=f.file_size,
        mime_type=f.mime_type,
        status=f.status,
        failure_reason=f.failure_reason,
        import_id=f.import_id,
        customer_id=str(f.customer_id) if f.customer_id else None,
        uploaded_by_id=str(f.uploaded_by_id) if f.uploaded_by_id else None,
        uploaded_at=iso(f.uploaded_at),
        processed_at=iso(f.processed_at),
        metadata=f.extra_metadata or {},
    )


@router.get("", response_model=PaginatedResponse[StoredFileResponse])
async def list_files(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    status: Optional[str] = Query(None),
    file_type: Optional[str] = Query(None),
    import_id: Optional[str] = Query(None),
    _auth: None = Depends(ADMIN),
    db: AsyncSession = Depends(get_db),
):
    conditions = [StoredFile.deleted_at == None]  # noqa: E711
    if status:
        conditions.append(StoredFile.status == status)
    if file_type:
        conditions.append(StoredFile.file_type == file_type)
    if import_id:
        conditions.append(StoredFile.import_id == import_id)

    total = (await db.execute(select(func.count(StoredFile.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(StoredFile)
        .where(*conditions)
        .order_by(StoredFile.uploaded_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [_to_response(f) for f in result.scalars().all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/stats/summary")
async def file_stats(_auth: None = Depends(ADMIN), db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(StoredFile.status, func.count(StoredFile.id))
        .where(StoredFile.deleted_at == None)  # noqa: E711
        .group_by(StoredFile.status)
    )
    counts = {s: 0 for s in FILE_STATUSES}
    counts.update({row[0]: row[1] for row in result.all()})
    return {"total": sum(counts.values()), "by_status": counts}


@router.get("/{file_id}", response_model=StoredFileResponse)
async def get_file(file_id: str, _auth: None = Depends(ADMIN), db: AsyncSession = Depends(get_db)):
    return _to_response(await get_or_404(db, StoredFile, file_id, "File"))


@router.delete("/{file_id}", response_model=MessageResponse)
async def delete_file(
    file_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(ADMIN),
    db: AsyncSession = Depends(get_db),
):
    stored = await get_or_404(db, StoredFile, file_id, "File")
    stored.deleted_at = datetime.utcnow()
    await db.flush()
    removed = delete_quietly(stored.file_path)
    await log_activity(
        db,
        ActivityType.FILE_DELETED,
        f"Deleted file {stored.file_name}",
        user=current_user,
        details={"file_id": str(stored.id), "file_name": stored.file_name, "bytes_removed": removed},
        request=request,
    )
    logger.info("file_deleted", file_id=str(stored.id), bytes_removed=removed)
    return MessageResponse(message="File deleted")
