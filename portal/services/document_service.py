"""
Behaviour shared by invoices and credit notes: access-filtered listing,
fetch with company checks, view/download status tracking, edit history and
soft deletion.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Type
import uuid

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.middleware.document_access import assert_company_access
from portal.models.credit_note import CreditNote
from portal.models.invoice import Invoice
from portal.models.portal_settings import PortalSettings
from portal.services.activity_logger import ActivityType
from portal.services.lookups import not_found, parse_uuid


@dataclass(frozen=True)
class DocumentKind:
    model: Type[Any]
    number_field: str
    document_type: str
    label: str
    created: ActivityType
    updated: ActivityType
    viewed: ActivityType
    downloaded: ActivityType
    deleted: ActivityType

    @property
    def number_column(self):
        return getattr(self.model, self.number_field)


INVOICE = DocumentKind(
    model=Invoice,
    number_field="invoice_number",
    document_type="invoice",
    label="Invoice",
    created=ActivityType.INVOICE_CREATED,
    updated=ActivityType.INVOICE_UPDATED,
    viewed=ActivityType.INVOICE_VIEWED,
    downloaded=ActivityType.INVOICE_DOWNLOADED,
    deleted=ActivityType.INVOICE_DELETED,
)

CREDIT_NOTE = DocumentKind(
    model=CreditNote,
    number_field="credit_note_number",
    document_type="credit_note",
    label="Credit note",
    created=ActivityType.CREDIT_NOTE_CREATED,
    updated=ActivityType.CREDIT_NOTE_UPDATED,
    viewed=ActivityType.CREDIT_NOTE_VIEWED,
    downloaded=ActivityType.CREDIT_NOTE_DOWNLOADED,
    deleted=ActivityType.CREDIT_NOTE_DELETED,
)

DOCUMENT_KINDS = {INVOICE.document_type: INVOICE, CREDIT_NOTE.document_type: CREDIT_NOTE}

# Roles whose views/downloads always move the tracking status
STATUS_CHANGE_ROLES = ("external_user", "global_admin")


async def list_documents(
    db: AsyncSession,
    kind: DocumentKind,
    company_ids: Optional[list[uuid.UUID]],
    page: int,
    limit: int,
    company_id: Optional[uuid.UUID] = None,
    status_filter: Optional[str] = None,
    document_status: Optional[str] = None,
    search: Optional[str] = None,
) -> tuple[list, int]:
    model = kind.model
    conditions = [model.deleted_at == None, model.retention_deleted_at == None]  # noqa: E711
    if company_ids is not None:
        if not company_ids:
            return [], 0
        conditions.append(model.company_id.in_(company_ids))
    if company_id:
        conditions.append(model.company_id == company_id)
    if status_filter:
        conditions.append(model.status == status_filter)
    if document_status:
        conditions.append(model.document_status == document_status)
    if search:
        conditions.append(kind.number_column.ilike(f"%{search}%"))

    total = (await db.execute(select(func.count(model.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(model)
        .where(*conditions)
        .order_by(model.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def get_document(
    db: AsyncSession, kind: DocumentKind, document_id: str, company_ids: Optional[list[uuid.UUID]]
):
    document = await db.get(kind.model, parse_uuid(document_id, kind.label))
    if document is None or document.deleted_at is not None or document.retention_deleted_at is not None:
        raise not_found(kind.label)
    assert_company_access(company_ids, document.company_id)
    return document


async def number_exists(
    db: AsyncSession, kind: DocumentKind, number: str, exclude_id: Optional[uuid.UUID] = None
) -> bool:
    q = select(kind.model.id).where(kind.number_column == number)
    if exclude_id is not None:
        q = q.where(kind.model.id != exclude_id)
    return (await db.execute(q.limit(1))).scalar_one_or_none() is not None


def can_change_document_status(role: str, portal_settings: PortalSettings) -> bool:
    if not portal_settings.only_external_users_change_document_status:
        return True
    return role in STATUS_CHANGE_ROLES


def mark_viewed(document, role: str, portal_settings: PortalSettings, now: Optional[datetime] = None) -> bool:
    """Record a view. Returns True when the tracking status moved to ``viewed``."""
    now = now or datetime.utcnow()
    if not can_change_document_status(role, portal_settings):
        return False
    if document.viewed_at is None:
        document.viewed_at = now
    if document.document_status != "downloaded" and document.document_status != "viewed":
        document.document_status = "viewed"
        return True
    return False


def mark_downloaded(document, role: str, portal_settings: PortalSettings, now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    if not can_change_document_status(role, portal_settings):
        return False
    if document.downloaded_at is None:
        document.downloaded_at = now
    if document.viewed_at is None:
        document.viewed_at = now
    changed = document.document_status != "downloaded"
    document.document_status = "downloaded"
    return changed


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def apply_edits(
    document,
    updates: dict,
    editor_id: Optional[str],
    reason: Optional[str],
    now: Optional[datetime] = None,
) -> dict:
    """Apply field updates, appending a ``{field: {from, to}}`` entry to edit_history."""
    changes = {}
    for field_name, new_value in updates.items():
        old_value = getattr(document, field_name)
        if _jsonable(old_value) == _jsonable(new_value):
            continue
        setattr(document, field_name, new_value)
        changes[field_name] = {"from": _jsonable(old_value), "to": _jsonable(new_value)}

    if changes:
        now = now or datetime.utcnow()
        document.edited_by_id = uuid.UUID(str(editor_id)) if editor_id else None
        document.edit_reason = reason
        # reassign so the JSON column is marked dirty
        document.edit_history = list(document.edit_history or []) + [
            {
                "edited_by": str(editor_id) if editor_id else None,
                "edited_at": now.isoformat(),
                "reason": reason,
                "changes": changes,
            }
        ]
    return changes


def soft_delete(document, deleted_by: Optional[str], reason: str, now: Optional[datetime] = None) -> None:
    if not reason or not reason.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": {"code": "REASON_REQUIRED", "message": "A reason for deletion is required"}},
        )
    document.deleted_at = now or datetime.utcnow()
    document.deleted_by_id = uuid.UUID(str(deleted_by)) if deleted_by else None
    document.deletion_reason = reason.strip()
