"""
Import batch completion tracking.

An import registers a batch with the number of files it queued; every
processed file reports back through ``record_job_completion``. When the last
file reports, the batch is removed from the tracker and handed back to the
caller so that customer and administrator notifications can be sent once for
the whole batch. Tracking is in-process and non-durable; batches that never
complete expire after ``BATCH_TTL``.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional
import uuid

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.models.company import Company
from portal.models.user import User, user_companies
from portal.services.activity_logger import ActivityType, log_activity
from portal.services.email_templates import send_templated_email
from portal.services.recipients import get_admin_emails
from portal.services.url_config import UrlConfigError, get_document_url

logger = structlog.get_logger()

BATCH_TTL = timedelta(hours=1)

SOURCE_LABELS = {
    "ftp_scan": "FTP/SFTP Scheduled Scan",
    "manual-upload": "Manual Upload",
}

DOCUMENT_TYPE_LABELS = {
    "invoice": "Invoice",
    "credit_note": "Credit Note",
    "statement": "Statement",
}


@dataclass
class JobResult:
    success: bool
    file_name: Optional[str] = None
    document_id: Optional[str] = None
    company_id: Optional[str] = None
    document_type: str = "invoice"
    document_number: Optional[str] = None
    amount: Optional[str] = None
    error: Optional[str] = None


@dataclass
class Batch:
    import_id: str
    total_jobs: int
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    source: str = "manual-upload"
    started_at: datetime = field(default_factory=datetime.utcnow)
    results: list[JobResult] = field(default_factory=list)

    @property
    def completed(self) -> int:
        return len(self.results)

    @property
    def is_complete(self) -> bool:
        return self.completed >= self.total_jobs

    def summary(self) -> dict:
        successful = [r for r in self.results if r.success]
        allocated = [r for r in successful if r.company_id]
        return {
            "import_id": self.import_id,
            "source": self.source,
            "total": self.total_jobs,
            "completed": self.completed,
            "successful": len(successful),
            "failed": self.completed - len(successful),
            "allocated": len(allocated),
            "unallocated": len(successful) - len(allocated),
            "started_at": self.started_at.isoformat(),
        }


class BatchTracker:
    def __init__(self, ttl: timedelta = BATCH_TTL):
        self.ttl = ttl
        self._batches: dict[str, Batch] = {}

    def register_batch(
        self,
        import_id: str,
        total_jobs: int,
        user_id: Optional[str] = None,
        user_email: Optional[str] = None,
        source: str = "manual-upload",
    ) -> Batch:
        self.sweep()
        batch = Batch(
            import_id=import_id,
            total_jobs=total_jobs,
            user_id=user_id,
            user_email=user_email,
            source=source,
        )
        self._batches[import_id] = batch
        logger.info("import_batch_registered", import_id=import_id, total_jobs=total_jobs, source=source)
        return batch

    def record_job_completion(self, import_id: str, result: JobResult) -> Optional[Batch]:
        """Add a file result; return the batch (now untracked) when it is the last one."""
        batch = self._batches.get(import_id)
        if batch is None:
            logger.warning("import_batch_unknown", import_id=import_id)
            return None
        batch.results.append(result)
        if not batch.is_complete:
            return None
        del self._batches[import_id]
        logger.info("import_batch_complete", **batch.summary())
        return batch

    def get_batch_status(self, import_id: str) -> Optional[dict]:
        batch = self._batches.get(import_id)
        if batch is None:
            return None
        status = batch.summary()
        status["progress"] = round(100 * batch.completed / batch.total_jobs) if batch.total_jobs else 100
        return status

    def get_active_batches(self) -> list[dict]:
        self.sweep()
        return [self.get_batch_status(import_id) for import_id in list(self._batches)]

    def force_complete(self, import_id: str) -> Optional[Batch]:
        """Stop tracking a stuck batch and return it for notification."""
        batch = self._batches.pop(import_id, None)
        if batch is not None:
            logger.warning("import_batch_forced", import_id=import_id, completed=batch.completed, total=batch.total_jobs)
        return batch

    def sweep(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or datetime.utcnow()) - self.ttl
        expired = [k for k, b in self._batches.items() if b.started_at < cutoff]
        for import_id in expired:
            batch = self._batches.pop(import_id)
            logger.warning("import_batch_expired", import_id=import_id, completed=batch.completed, total=batch.total_jobs)
        return len(expired)

    def clear(self) -> None:
        self._batches.clear()


batch_tracker = BatchTracker()


def format_processing_time(elapsed: timedelta) -> str:
    ms = int(elapsed.total_seconds() * 1000)
    if ms < 1000:
        return f"{ms}ms"
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs}s"


def source_label(source: str) -> str:
    return SOURCE_LABELS.get(source, source)


def _document_url(document_type: str, document_id: Optional[str]) -> str:
    if not document_id:
        return ""
    try:
        return get_document_url(document_type, document_id)
    except UrlConfigError:
        return ""


async def _company_recipients(db: AsyncSession, company_id: uuid.UUID) -> list[User]:
    assigned = select(user_companies.c.user_id).where(user_companies.c.company_id == company_id)
    result = await db.execute(
        select(User).where(
            or_(User.id.in_(assigned), User.all_companies == True),  # noqa: E712
            User.is_active == True,  # noqa: E712
            User.deleted_at == None,  # noqa: E711
            User.send_invoice_email == True,  # noqa: E712
            User.role != "notification_contact",
        )
    )
    return list(result.scalars().all())


async def _notify_company(db: AsyncSession, company: Company, results: list[JobResult]) -> int:
    users = await _company_recipients(db, company.id)
    documents = [
        {
            "type_label": DOCUMENT_TYPE_LABELS.get(r.document_type, r.document_type),
            "number": r.document_number,
            "amount": r.amount,
            "url": _document_url(r.document_type, r.document_id),
        }
        for r in results
    ]
    sent = 0
    for user in users:
        if user.send_email_as_summary:
            ok = await send_templated_email(
                db,
                "document-summary",
                user.email,
                {
                    "user_name": user.name,
                    "customer_name": company.name,
                    "document_count": len(documents),
                    "documents": documents,
                },
            )
            sent += int(ok)
            continue
        for result, document in zip(results, documents):
            ok = await send_templated_email(
                db,
                "document-notification",
                user.email,
                {
                    "user_name": user.name,
                    "customer_name": company.name,
                    "document_type_label": document["type_label"],
                    "document_number": result.document_number,
                    "amount": result.amount,
                    "document_url": document["url"],
                },
            )
            sent += int(ok)
    return sent


async def send_batch_notifications(db: AsyncSession, batch: Batch, now: Optional[datetime] = None) -> dict:
    """Notify customers about their new documents and admins about the import."""
    now = now or datetime.utcnow()
    summary = batch.summary()

    by_company: dict[str, list[JobResult]] = defaultdict(list)
    for result in batch.results:
        if result.success and result.company_id:
            by_company[str(result.company_id)].append(result)

    emails_sent = 0
    skipped_edi = 0
    for company_id, results in by_company.items():
        company = await db.get(Company, uuid.UUID(company_id))
        if company is None:
            continue
        if company.edi:
            skipped_edi += 1
            continue
        try:
            emails_sent += await _notify_company(db, company, results)
        except Exception as exc:
            logger.error("batch_company_notification_failed", company_id=company_id, error=str(exc))

    processing_time = format_processing_time(now - batch.started_at)
    await log_activity(
        db,
        ActivityType.IMPORT_BATCH_COMPLETE,
        f"Import batch completed: {summary['successful']} of {summary['total']} file(s) processed",
        user={"user_id": batch.user_id, "email": batch.user_email, "role": None} if batch.user_id else None,
        details={**summary, "processing_time": processing_time, "companies_notified": len(by_company) - skipped_edi},
    )

    admin_emails = await get_admin_emails(db, import_summary_only=True)
    if admin_emails:
        await send_templated_email(
            db,
            "import-summary-report",
            admin_emails,
            {
                **summary,
                "source_label": source_label(batch.source),
                "processing_time": processing_time,
                "failures": [
                    {"file_name": r.file_name, "error": r.error or "Unknown error"}
                    for r in batch.results
                    if not r.success
                ],
            },
        )

    logger.info(
        "import_batch_notifications_sent",
        import_id=batch.import_id,
        customer_emails=emails_sent,
        admin_recipients=len(admin_emails),
        skipped_edi=skipped_edi,
    )
    return {"customer_emails": emails_sent, "admin_recipients": len(admin_emails), "skipped_edi": skipped_edi}


async def run_periodic_sweep(interval_seconds: int) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        batch_tracker.sweep()
