"""Document and import-file retention."""

from datetime import date, datetime, time, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.models.credit_note import CreditNote
from portal.models.invoice import Invoice
from portal.models.portal_settings import PortalSettings
from portal.models.stored_file import StoredFile
from portal.services.storage import delete_quietly

logger = structlog.get_logger()


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def calculate_retention_start_date(document: Any, trigger: Optional[str]) -> datetime:
    created_at = _as_datetime(getattr(document, "created_at", None)) or datetime.utcnow()
    if trigger == "invoice_date":
        issue_date = _as_datetime(getattr(document, "issue_date", None))
        if issue_date:
            return issue_date
        period_end = _as_datetime((getattr(document, "extra_metadata", None) or {}).get("period_end"))
        if period_end:
            return period_end
    return created_at


def calculate_retention_expiry_date(start: Optional[datetime], period_days: Optional[int]) -> Optional[datetime]:
    if not start or not period_days:
        return None
    return datetime.combine((start + timedelta(days=period_days)).date(), time.min)


def apply_retention_dates(document: Any, portal_settings: PortalSettings) -> None:
    period = portal_settings.document_retention_period
    if not period:
        document.retention_start_date = None
        document.retention_expiry_date = None
        return
    start = calculate_retention_start_date(document, portal_settings.document_retention_date_trigger)
    document.retention_start_date = start
    document.retention_expiry_date = calculate_retention_expiry_date(start, period)


def should_delete_document(document: Any, portal_settings: PortalSettings, now: Optional[datetime] = None) -> bool:
    if not portal_settings.document_retention_period:
        return False
    if document.retention_deleted_at is not None or document.deleted_at is not None:
        return False
    if document.retention_expiry_date is None:
        return False
    return document.retention_expiry_date <= (now or datetime.utcnow())


async def cleanup_expired_documents(
    db: AsyncSession, portal_settings: PortalSettings, now: Optional[datetime] = None
) -> dict:
    """Retention-delete every invoice and credit note whose expiry has passed."""
    now = now or datetime.utcnow()
    counts = {"invoices": 0, "credit_notes": 0, "files_removed": 0}
    if not portal_settings.document_retention_period:
        logger.info("retention_disabled_skipping")
        return counts

    for model, key in ((Invoice, "invoices"), (CreditNote, "credit_notes")):
        result = await db.execute(
            select(model).where(
                model.retention_expiry_date <= now,
                model.retention_deleted_at == None,  # noqa: E711
                model.deleted_at == None,  # noqa: E711
            )
        )
        for document in result.scalars().all():
            if not should_delete_document(document, portal_settings, now):
                continue
            document.retention_deleted_at = now
            document.deleted_at = now
            document.deletion_reason = "Retention period expired"
            if delete_quietly(document.file_url):
                counts["files_removed"] += 1
            counts[key] += 1

    await db.flush()
    logger.info("retention_cleanup_complete", **counts)
    return counts


async def cleanup_old_files(db: AsyncSession, retention_days: int, now: Optional[datetime] = None) -> int:
    """Soft-delete import file records older than ``retention_days`` and drop their bytes."""
    if not retention_days or retention_days <= 0:
        return 0
    cutoff = (now or datetime.utcnow()) - timedelta(days=retention_days)
    result = await db.execute(
        select(StoredFile).where(StoredFile.uploaded_at < cutoff, StoredFile.deleted_at == None)  # noqa: E711
    )
    removed = 0
    for stored in result.scalars().all():
        # parsed files back a live document; only the record goes
        if stored.status != "parsed":
            delete_quietly(stored.file_path)
        stored.deleted_at = now or datetime.utcnow()
        removed += 1
    await db.flush()
    logger.info("file_cleanup_complete", removed=removed, retention_days=retention_days)
    return removed
