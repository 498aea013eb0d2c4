"""
Router factory for the two customer document types. Invoices and credit notes
expose the same endpoints and differ only in their number field, activity
types and a couple of credit-note-only columns.
"""

from datetime import datetime
from typing import Optional, Type
import uuid

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Query,
    Request,
    UploadFile,
    status,
)
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from portal.database import get_db, get_session_factory
from portal.middleware.auth import get_current_user
from portal.middleware.authorization import DOCUMENT_EDITOR_ROLES, INTERNAL_ROLES, require_roles
from portal.middleware.document_access import assert_company_access, get_accessible_companies
from portal.models.company import Company
from portal.models.stored_file import StoredFile
from portal.schemas.common import MessageResponse, PaginatedResponse, ReasonRequest, build_pagination, iso
from portal.schemas.document import DocumentResponse, ImportResponse
from portal.services.activity_logger import ActivityType, log_activity
from portal.services.batch_notifier import batch_tracker
from portal.services.document_import import MAX_IMPORT_FILES, file_sha256, process_import_file
from portal.services.document_service import (
    DocumentKind,
    apply_edits,
    can_change_document_status,
    get_document,
    list_documents,
    mark_downloaded,
    mark_viewed,
    number_exists,
    soft_delete,
)
from portal.services.lookups import bad_request, forbidden, not_found, parse_uuid
from portal.services.retention import apply_retention_dates
from portal.services.settings_service import get_portal_settings
from portal.services.storage import delete_quietly, get_storage

logger = structlog.get_logger()

UUID_FIELDS = ("company_id", "invoice_id")
REQUIRED_FIELDS = ("company_id", "amount", "tax_amount", "status", "document_status")


def document_to_response(kind: DocumentKind, document, company_name: Optional[str] = None) -> DocumentResponse:
    return DocumentResponse(
        id=str(document.id),
        document_type=kind.document_type,
        number=getattr(document, kind.number_field),
        company_id=str(document.company_id) if document.company_id else None,
        company_name=company_name,
        issue_date=iso(document.issue_date),
        due_date=iso(document.due_date),
        amount=str(document.amount) if document.amount is not None else None,
        tax_amount=str(document.tax_amount) if document.tax_amount is not None else None,
        status=document.status,
        document_status=document.document_status,
        items=document.items,
        notes=document.notes,
        has_file=bool(document.file_url),
        invoice_id=str(getattr(document, "invoice_id", None)) if getattr(document, "invoice_id", None) else None,
        reason=getattr(document, "reason", None),
        viewed_at=iso(document.viewed_at),
        downloaded_at=iso(document.downloaded_at),
        edit_history=document.edit_history or [],
        retention_expiry_date=iso(document.retention_expiry_date),
        created_at=iso(document.created_at),
    )


async def _company_names(db: AsyncSession, company_ids: set) -> dict:
    ids = [cid for cid in company_ids if cid is not None]
    if not ids:
        return {}
    result = await db.execute(select(Company.id, Company.name).where(Company.id.in_(ids)))
    return {cid: name for cid, name in result.all()}


async def _require_company(db: AsyncSession, company_id: str) -> Company:
    company = await db.get(Company, parse_uuid(company_id, "Company"))
    if company is None:
        raise bad_request("Company not found", code="INVALID_COMPANY")
    return company


def _coerce_ids(values: dict) -> dict:
    for key in UUID_FIELDS:
        if values.get(key):
            values[key] = parse_uuid(values[key], "Company" if key == "company_id" else "Invoice")
    return values


def _is_pdf(upload: UploadFile) -> bool:
    name = (upload.filename or "").lower()
    return upload.content_type == "application/pdf" or name.endswith(".pdf")


def create_document_router(
    kind: DocumentKind, create_schema: Type[BaseModel], update_schema: Type[BaseModel]
) -> APIRouter:
    router = APIRouter()
    editors = require_roles(*DOCUMENT_EDITOR_ROLES)
    admins = require_roles("global_admin", "administrator")
    staff = require_roles(*INTERNAL_ROLES)

    @router.get("", response_model=PaginatedResponse[DocumentResponse])
    async def list_(
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        company_id: Optional[str] = Query(None),
        status_filter: Optional[str] = Query(None, alias="status"),
        document_status: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
        company_ids: Optional[list[uuid.UUID]] = Depends(get_accessible_companies),
        db: AsyncSession = Depends(get_db),
    ):
        rows, total = await list_documents(
            db,
            kind,
            company_ids,
            page,
            limit,
            company_id=parse_uuid(company_id, "Company") if company_id else None,
            status_filter=status_filter,
            document_status=document_status,
            search=search.strip() if search else None,
        )
        names = await _company_names(db, {r.company_id for r in rows})
        items = [document_to_response(kind, r, names.get(r.company_id)) for r in rows]
        return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))

    @router.post("/import", response_model=ImportResponse)
    async def import_documents(
        request: Request,
        background_tasks: BackgroundTasks,
        files: list[UploadFile] = File(...),
        current_user: dict = Depends(get_current_user),
        _auth: None = Depends(staff),
        db: AsyncSession = Depends(get_db),
        session_factory: async_sessionmaker = Depends(get_session_factory),
    ):
        """Store uploaded PDFs and queue each one for allocation and document creation."""
        if not files:
            raise bad_request("No files uploaded", code="NO_FILES")
        if len(files) > MAX_IMPORT_FILES:
            raise bad_request(f"A maximum of {MAX_IMPORT_FILES} files can be imported at once", code="TOO_MANY_FILES")
        rejected = [f.filename for f in files if not _is_pdf(f)]
        if rejected:
            raise bad_request("Only PDF files can be imported", code="INVALID_FILE_TYPE", rejected_files=rejected)

        import_id = uuid.uuid4().hex
        storage = get_storage()
        uploader_id = parse_uuid(current_user["user_id"], "User")
        stored_ids = []
        for upload in files:
            contents = await upload.read()
            key = f"imports/{import_id}/{uuid.uuid4().hex}.pdf"
            storage.save(contents, key, content_type="application/pdf")
            stored = StoredFile(
                file_name=upload.filename or "upload.pdf",
                file_hash=file_sha256(contents),
                file_path=key,
                file_size=len(contents),
                mime_type="application/pdf",
                file_type=kind.document_type,
                uploaded_by_id=uploader_id,
                import_id=import_id,
                status="uploaded",
            )
            db.add(stored)
            await db.flush()
            stored_ids.append(str(stored.id))

        await log_activity(
            db,
            ActivityType.FILE_UPLOAD,
            f"Uploaded {len(stored_ids)} {kind.label.lower()} file(s) for import",
            user=current_user,
            details={"import_id": import_id, "file_count": len(stored_ids), "document_type": kind.document_type},
            request=request,
        )
        # background processors open their own sessions and must see these rows
        await db.commit()

        batch_tracker.register_batch(
            import_id,
            len(stored_ids),
            user_id=current_user["user_id"],
            user_email=current_user["email"],
            source="manual-upload",
        )
        for file_id in stored_ids:
            background_tasks.add_task(
                process_import_file, file_id, import_id, kind.document_type, session_factory
            )

        logger.info("import_queued", import_id=import_id, total_files=len(stored_ids), document_type=kind.document_type)
        return ImportResponse(
            import_id=import_id,
            total_files=len(stored_ids),
            message=f"{len(stored_ids)} file(s) queued for processing",
        )

    @router.get("/{document_id}", response_model=DocumentResponse)
    async def get_(
        document_id: str,
        company_ids: Optional[list[uuid.UUID]] = Depends(get_accessible_companies),
        db: AsyncSession = Depends(get_db),
    ):
        document = await get_document(db, kind, document_id, company_ids)
        names = await _company_names(db, {document.company_id})
        return document_to_response(kind, document, names.get(document.company_id))

    @router.post("", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
    async def create_(
        body: create_schema,  # type: ignore[valid-type]
        request: Request,
        current_user: dict = Depends(get_current_user),
        _auth: None = Depends(editors),
        db: AsyncSession = Depends(get_db),
    ):
        values = body.model_dump(exclude_unset=True, exclude={"edit_reason"})
        number = values.pop(kind.number_field).strip()
        if await number_exists(db, kind, number):
            raise bad_request(f"{kind.label} number '{number}' already exists", code="DUPLICATE_NUMBER")
        company = await _require_company(db, values.pop("company_id"))
        values = _coerce_ids({k: v for k, v in values.items() if v is not None})

        document = kind.model(
            **values,
            company_id=company.id,
            created_by_id=parse_uuid(current_user["user_id"], "User"),
            created_at=datetime.utcnow(),
            **{kind.number_field: number},
        )
        apply_retention_dates(document, await get_portal_settings(db))
        db.add(document)
        await db.flush()

        await log_activity(
            db,
            kind.created,
            f"Created {kind.label.lower()} {number}",
            user=current_user,
            company=company,
            details={"document_id": str(document.id), "number": number},
            request=request,
        )
        return document_to_response(kind, document, company.name)

    @router.put("/{document_id}", response_model=DocumentResponse)
    async def update_(
        document_id: str,
        body: update_schema,  # type: ignore[valid-type]
        request: Request,
        current_user: dict = Depends(get_current_user),
        _auth: None = Depends(editors),
        company_ids: Optional[list[uuid.UUID]] = Depends(get_accessible_companies),
        db: AsyncSession = Depends(get_db),
    ):
        document = await get_document(db, kind, document_id, company_ids)
        updates = body.model_dump(exclude_unset=True)
        edit_reason = updates.pop("edit_reason", None)
        # explicit nulls clear optional fields but never required ones
        updates = {
            k: v for k, v in updates.items() if v is not None or k not in REQUIRED_FIELDS + (kind.number_field,)
        }

        new_number = updates.get(kind.number_field)
        if new_number is not None:
            new_number = updates[kind.number_field] = new_number.strip()
            if new_number != getattr(document, kind.number_field) and await number_exists(
                db, kind, new_number, exclude_id=document.id
            ):
                raise bad_request(f"{kind.label} number '{new_number}' already exists", code="DUPLICATE_NUMBER")
        if updates.get("company_id"):
            company = await _require_company(db, updates["company_id"])
            assert_company_access(company_ids, company.id)
        if (
            "document_status" in updates
            and updates["document_status"] != document.document_status
            and not can_change_document_status(current_user["role"], await get_portal_settings(db))
        ):
            raise forbidden(
                "Only external users can change document status while this restriction is enabled",
                code="DOCUMENT_STATUS_RESTRICTED",
            )
        updates = _coerce_ids(updates)

        changes = apply_edits(document, updates, current_user["user_id"], edit_reason)
        await db.flush()

        names = await _company_names(db, {document.company_id})
        if changes:
            await log_activity(
                db,
                kind.updated,
                f"Updated {kind.label.lower()} {getattr(document, kind.number_field)}",
                user=current_user,
                details={"document_id": str(document.id), "changes": changes, "reason": edit_reason},
                request=request,
            )
        return document_to_response(kind, document, names.get(document.company_id))

    @router.post("/{document_id}/view", response_model=DocumentResponse)
    async def view_(
        document_id: str,
        request: Request,
        current_user: dict = Depends(get_current_user),
        company_ids: Optional[list[uuid.UUID]] = Depends(get_accessible_companies),
        db: AsyncSession = Depends(get_db),
    ):
        document = await get_document(db, kind, document_id, company_ids)
        portal_settings = await get_portal_settings(db)
        mark_viewed(document, current_user["role"], portal_settings)
        await db.flush()

        company = await db.get(Company, document.company_id) if document.company_id else None
        await log_activity(
            db,
            kind.viewed,
            f"Viewed {kind.label.lower()} {getattr(document, kind.number_field)}",
            user=current_user,
            company=company,
            details={"document_id": str(document.id)},
            request=request,
        )
        return document_to_response(kind, document, company.name if company else None)

    @router.get("/{document_id}/download")
    async def download_(
        document_id: str,
        request: Request,
        current_user: dict = Depends(get_current_user),
        company_ids: Optional[list[uuid.UUID]] = Depends(get_accessible_companies),
        db: AsyncSession = Depends(get_db),
    ):
        document = await get_document(db, kind, document_id, company_ids)
        if not document.file_url:
            raise not_found("File")
        try:
            data = get_storage().read(document.file_url)
        except FileNotFoundError:
            raise not_found("File")

        portal_settings = await get_portal_settings(db)
        mark_downloaded(document, current_user["role"], portal_settings)
        await db.flush()

        number = getattr(document, kind.number_field)
        company = await db.get(Company, document.company_id) if document.company_id else None
        await log_activity(
            db,
            kind.downloaded,
            f"Downloaded {kind.label.lower()} {number}",
            user=current_user,
            company=company,
            details={"document_id": str(document.id)},
            request=request,
        )
        return Response(
            content=data,
            media_type="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="{number}.pdf"'},
        )

    @router.delete("/{document_id}", response_model=MessageResponse)
    async def delete_(
        document_id: str,
        body: ReasonRequest,
        request: Request,
        current_user: dict = Depends(get_current_user),
        _auth: None = Depends(admins),
        company_ids: Optional[list[uuid.UUID]] = Depends(get_accessible_companies),
        db: AsyncSession = Depends(get_db),
    ):
        document = await get_document(db, kind, document_id, company_ids)
        soft_delete(document, current_user["user_id"], body.reason)
        await db.flush()
        delete_quietly(document.file_url)

        number = getattr(document, kind.number_field)
        await log_activity(
            db,
            kind.deleted,
            f"Deleted {kind.label.lower()} {number}",
            user=current_user,
            details={"document_id": str(document.id), "number": number, "reason": document.deletion_reason},
            request=request,
        )
        return MessageResponse(message=f"{kind.label} deleted")

    return router
