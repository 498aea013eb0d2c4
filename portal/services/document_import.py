"""
Background processing of uploaded import files.

Each queued file is allocated to a customer by its file name
(``<reference_no>_<document_number>.pdf``), turned into an invoice or credit
note, and reported to the batch tracker. Every file reports completion exactly
once, whatever the outcome, so batch notifications always fire.
"""

from datetime import datetime
import hashlib
import re
from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from portal.database import AsyncSessionLocal
from portal.models.company import Company
from portal.models.stored_file import StoredFile
from portal.services.batch_notifier import JobResult, batch_tracker, send_batch_notifications
from portal.services.document_service import DOCUMENT_KINDS, number_exists
from portal.services.retention import apply_retention_dates
from portal.services.settings_service import get_portal_settings

logger = structlog.get_logger()

MAX_IMPORT_FILES = 500
_FILENAME = re.compile(r"^\s*(\d+)[_\- ]+(.+?)\s*\.pdf\s*$", re.IGNORECASE)


def parse_import_filename(file_name: str) -> Optional[tuple[int, str]]:
    """``"10042_INV-0001.pdf"`` -> ``(10042, "INV-0001")``; None when it doesn't follow the convention."""
    match = _FILENAME.match(file_name or "")
    if not match:
        return None
    return int(match.group(1)), match.group(2)


def file_sha256(file_bytes: bytes) -> str:
    return hashlib.sha256(file_bytes).hexdigest()


async def find_duplicate_file(db: AsyncSession, file_hash: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
    q = select(StoredFile.id).where(
        StoredFile.file_hash == file_hash,
        StoredFile.deleted_at == None,  # noqa: E711
        StoredFile.status.in_(("parsed", "unallocated")),
    )
    if exclude_id is not None:
        q = q.where(StoredFile.id != exclude_id)
    return (await db.execute(q.limit(1))).scalar_one_or_none() is not None


async def _process(db: AsyncSession, stored: StoredFile, document_type: str) -> JobResult:
    kind = DOCUMENT_KINDS[document_type]
    now = datetime.utcnow()
    stored.status = "processing"

    if stored.file_hash and await find_duplicate_file(db, stored.file_hash, exclude_id=stored.id):
        stored.status = "duplicate"
        stored.failure_reason = "duplicate"
        stored.processed_at = now
        return JobResult(success=False, file_name=stored.file_name, document_type=document_type, error="Duplicate file")

    parsed = parse_import_filename(stored.file_name)
    company = None
    if parsed:
        result = await db.execute(select(Company).where(Company.reference_no == parsed[0]))
        company = result.scalar_one_or_none()

    if company is None:
        stored.status = "unallocated"
        stored.failure_reason = "no_matching_company" if parsed else "unrecognised_file_name"
        stored.processed_at = now
        return JobResult(
            success=True,
            file_name=stored.file_name,
            document_type=document_type,
            document_number=parsed[1] if parsed else None,
        )

    number = parsed[1]
    if await number_exists(db, kind, number):
        stored.status = "failed"
        stored.failure_reason = "duplicate"
        stored.processed_at = now
        return JobResult(
            success=False,
            file_name=stored.file_name,
            document_type=document_type,
            document_number=number,
            error=f"{kind.label} {number} already exists",
        )

    document = kind.model(
        company_id=company.id,
        status="ready",
        document_status="ready",
        file_url=stored.file_path,
        created_by_id=stored.uploaded_by_id,
        created_at=now,
        extra_metadata={"import_id": stored.import_id, "file_id": str(stored.id)},
        **{kind.number_field: number},
    )
    apply_retention_dates(document, await get_portal_settings(db))
    db.add(document)
    await db.flush()

    stored.status = "parsed"
    stored.customer_id = company.id
    stored.processed_at = now
    return JobResult(
        success=True,
        file_name=stored.file_name,
        document_id=str(document.id),
        company_id=str(company.id),
        document_type=document_type,
        document_number=number,
        amount=str(document.amount) if document.amount else None,
    )


async def process_import_file(
    file_id: str,
    import_id: str,
    document_type: str,
    session_factory: async_sessionmaker = AsyncSessionLocal,
) -> JobResult:
    """Process one queued file in its own session and report it to the batch."""
    async with session_factory() as db:
        try:
            stored = await db.get(StoredFile, uuid.UUID(file_id))
            if stored is None:
                result = JobResult(success=False, document_type=document_type, error="File record not found")
            else:
                result = await _process(db, stored, document_type)
            await db.commit()
        except Exception as exc:
            await db.rollback()
            logger.error("import_file_failed", file_id=file_id, import_id=import_id, error=str(exc))
            result = JobResult(success=False, document_type=document_type, error=str(exc))
            await _mark_failed(db, file_id, str(exc))

        logger.info(
            "import_file_processed",
            file_id=file_id,
            import_id=import_id,
            success=result.success,
            company_id=result.company_id,
        )

        batch = batch_tracker.record_job_completion(import_id, result)
        if batch is not None:
            try:
                await send_batch_notifications(db, batch)
                await db.commit()
            except Exception as exc:
                await db.rollback()
                logger.error("import_batch_notification_failed", import_id=import_id, error=str(exc))
    return result


async def _mark_failed(db: AsyncSession, file_id: str, reason: str) -> None:
    try:
        stored = await db.get(StoredFile, uuid.UUID(file_id))
        if stored is not None:
            stored.status = "failed"
            stored.failure_reason = reason[:100]
            stored.processed_at = datetime.utcnow()
            await db.commit()
    except Exception as exc:
        await db.rollback()
        logger.error("import_file_mark_failed_error", file_id=file_id, error=str(exc))
