from typing import Optional
import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.database import get_db
from portal.middleware.auth import get_current_user
from portal.middleware.authorization import INTERNAL_ROLES, require_roles
from portal.middleware.document_access import assert_company_access, get_accessible_companies
from portal.models.company import Company
from portal.models.credit_note import CreditNote
from portal.models.invoice import Invoice
from portal.models.stored_file import StoredFile
from portal.models.user import User, user_companies
from portal.schemas.common import MessageResponse, PaginatedResponse, build_pagination, iso
from portal.schemas.company import (
    AssignedUser,
    CompanyCreate,
    CompanyResponse,
    CompanyTreeNode,
    CompanyUpdate,
)
from portal.services.activity_logger import ActivityType, log_activity
from portal.services.lookups import bad_request, get_or_404, parse_uuid

logger = structlog.get_logger()
router = APIRouter()

COMPANY_EDITORS = require_roles("global_admin", "administrator", "manager")
COMPANY_ADMINS = require_roles("global_admin", "administrator")


def _to_response(c: Company) -> CompanyResponse:
    return CompanyResponse(
        id=str(c.id),
        name=c.name,
        parent_id=str(c.parent_id) if c.parent_id else None,
        type=c.type,
        reference_no=c.reference_no,
        code=c.code,
        email=c.email,
        phone=c.phone,
        address=c.address,
        tax_id=c.tax_id,
        vat_number=c.vat_number,
        website=c.website,
        primary_contact_id=str(c.primary_contact_id) if c.primary_contact_id else None,
        send_invoice_email=bool(c.send_invoice_email),
        send_invoice_attachment=bool(c.send_invoice_attachment),
        send_statement_email=bool(c.send_statement_email),
        send_statement_attachment=bool(c.send_statement_attachment),
        send_email_as_summary=bool(c.send_email_as_summary),
        is_active=bool(c.is_active),
        edi=bool(c.edi),
        created_at=iso(c.created_at),
    )


def build_company_tree(companies: list[Company]) -> list[CompanyTreeNode]:
    """Nest companies under their parents. Orphans (parent not visible) become roots."""
    nodes = {
        c.id: CompanyTreeNode(id=str(c.id), name=c.name, type=c.type, reference_no=c.reference_no)
        for c in companies
    }
    roots = []
    for c in companies:
        if c.parent_id is not None and c.parent_id in nodes and c.parent_id != c.id:
            nodes[c.parent_id].children.append(nodes[c.id])
        else:
            roots.append(nodes[c.id])
    return roots


async def _would_create_cycle(db: AsyncSession, company_id: uuid.UUID, new_parent_id: uuid.UUID) -> bool:
    """Walk up from the proposed parent; reaching the company itself means a cycle."""
    current, seen = new_parent_id, set()
    while current is not None and current not in seen:
        if current == company_id:
            return True
        seen.add(current)
        current = (await db.execute(select(Company.parent_id).where(Company.id == current))).scalar_one_or_none()
    return False


async def _check_unique(db: AsyncSession, field_name: str, value, exclude_id: Optional[uuid.UUID] = None) -> None:
    if value is None or value == "":
        return
    column = getattr(Company, field_name)
    q = select(Company.id).where(column == value)
    if exclude_id is not None:
        q = q.where(Company.id != exclude_id)
    if (await db.execute(q.limit(1))).scalar_one_or_none() is not None:
        label = "Reference number" if field_name == "reference_no" else "Company code"
        raise bad_request(f"{label} '{value}' is already in use", code="DUPLICATE_COMPANY")


async def _resolve_parent(db: AsyncSession, parent_id: Optional[str]) -> Optional[uuid.UUID]:
    if not parent_id:
        return None
    parent = await db.get(Company, parse_uuid(parent_id, "Parent company"))
    if parent is None:
        raise bad_request("Parent company not found", code="INVALID_PARENT")
    return parent.id


@router.get("", response_model=PaginatedResponse[CompanyResponse])
async def list_companies(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    search: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    parent_id: Optional[str] = Query(None),
    company_ids: Optional[list[uuid.UUID]] = Depends(get_accessible_companies),
    db: AsyncSession = Depends(get_db),
):
    conditions = []
    if company_ids is not None:
        if not company_ids:
            return PaginatedResponse(data=[], pagination=build_pagination(page, limit, 0))
        conditions.append(Company.id.in_(company_ids))
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(or_(Company.name.ilike(pattern), Company.code.ilike(pattern)))
    if type:
        conditions.append(Company.type == type)
    if is_active is not None:
        conditions.append(Company.is_active == is_active)
    if parent_id:
        conditions.append(Company.parent_id == parse_uuid(parent_id, "Parent company"))

    total = (await db.execute(select(func.count(Company.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(Company).where(*conditions).order_by(Company.name).offset((page - 1) * limit).limit(limit)
    )
    items = [_to_response(c) for c in result.scalars().all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/hierarchy", response_model=list[CompanyTreeNode])
async def get_hierarchy(
    company_ids: Optional[list[uuid.UUID]] = Depends(get_accessible_companies),
    db: AsyncSession = Depends(get_db),
):
    q = select(Company).order_by(Company.name)
    if company_ids is not None:
        if not company_ids:
            return []
        q = q.where(Company.id.in_(company_ids))
    result = await db.execute(q)
    return build_company_tree(list(result.scalars().all()))


@router.get("/{company_id}", response_model=CompanyResponse)
async def get_company(
    company_id: str,
    company_ids: Optional[list[uuid.UUID]] = Depends(get_accessible_companies),
    db: AsyncSession = Depends(get_db),
):
    company = await get_or_404(db, Company, company_id, "Company")
    assert_company_access(company_ids, company.id)
    return _to_response(company)


@router.post("", response_model=CompanyResponse, status_code=status.HTTP_201_CREATED)
async def create_company(
    body: CompanyCreate,
    request: Request,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(COMPANY_EDITORS),
    db: AsyncSession = Depends(get_db),
):
    await _check_unique(db, "reference_no", body.reference_no)
    await _check_unique(db, "code", body.code)
    parent_id = await _resolve_parent(db, body.parent_id)

    data = {
        k: v
        for k, v in body.model_dump(exclude_unset=True, exclude={"parent_id", "primary_contact_id"}).items()
        if v is not None
    }
    company = Company(
        **data,
        parent_id=parent_id,
        primary_contact_id=parse_uuid(body.primary_contact_id, "User") if body.primary_contact_id else None,
        created_by_id=parse_uuid(current_user["user_id"], "User"),
    )
    db.add(company)
    await db.flush()

    await log_activity(
        db,
        ActivityType.COMPANY_CREATED,
        f"Created company {company.name}",
        user=current_user,
        company=company,
        details={"reference_no": company.reference_no, "type": company.type},
        request=request,
    )
    logger.info("company_created", company_id=str(company.id), name=company.name)
    return _to_response(company)


@router.put("/{company_id}", response_model=CompanyResponse)
async def update_company(
    company_id: str,
    body: CompanyUpdate,
    request: Request,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(COMPANY_EDITORS),
    db: AsyncSession = Depends(get_db),
):
    company = await get_or_404(db, Company, company_id, "Company")
    updates = body.model_dump(exclude_unset=True)

    if "reference_no" in updates:
        await _check_unique(db, "reference_no", updates["reference_no"], exclude_id=company.id)
    if "code" in updates:
        await _check_unique(db, "code", updates["code"], exclude_id=company.id)
    if "parent_id" in updates:
        new_parent = await _resolve_parent(db, updates["parent_id"])
        if new_parent is not None and await _would_create_cycle(db, company.id, new_parent):
            raise bad_request("A company cannot be its own ancestor", code="COMPANY_CYCLE")
        updates["parent_id"] = new_parent
    if updates.get("primary_contact_id"):
        updates["primary_contact_id"] = parse_uuid(updates["primary_contact_id"], "User")
    if "name" in updates:
        if not (updates["name"] or "").strip():
            raise bad_request("Company name is required", code="VALIDATION_ERROR")
        updates["name"] = updates["name"].strip()

    changes = {}
    for field_name, value in updates.items():
        old = getattr(company, field_name)
        if old != value:
            setattr(company, field_name, value)
            changes[field_name] = {
                "from": str(old) if isinstance(old, uuid.UUID) else old,
                "to": str(value) if isinstance(value, uuid.UUID) else value,
            }
    await db.flush()

    if changes:
        await log_activity(
            db,
            ActivityType.COMPANY_UPDATED,
            f"Updated company {company.name}",
            user=current_user,
            company=company,
            details={"changes": changes},
            request=request,
        )
    return _to_response(company)


@router.delete("/{company_id}", response_model=MessageResponse)
async def delete_company(
    company_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(COMPANY_ADMINS),
    db: AsyncSession = Depends(get_db),
):
    company = await get_or_404(db, Company, company_id, "Company")

    children = (await db.execute(select(func.count(Company.id)).where(Company.parent_id == company.id))).scalar()
    if children:
        raise bad_request("Cannot delete a company that has child companies", code="COMPANY_HAS_CHILDREN")
    for model in (Invoice, CreditNote):
        documents = (await db.execute(select(func.count(model.id)).where(model.company_id == company.id))).scalar()
        if documents:
            raise bad_request("Cannot delete a company that has documents", code="COMPANY_HAS_DOCUMENTS")

    name = company.name
    await db.execute(user_companies.delete().where(user_companies.c.company_id == company.id))
    await db.execute(update(StoredFile).where(StoredFile.customer_id == company.id).values(customer_id=None))
    await db.delete(company)
    await db.flush()

    await log_activity(
        db,
        ActivityType.COMPANY_DELETED,
        f"Deleted company {name}",
        user=current_user,
        details={"company_id": company_id, "company_name": name},
        request=request,
    )
    logger.info("company_deleted", company_id=company_id)
    return MessageResponse(message="Company deleted")


@router.get("/{company_id}/assigned-users", response_model=list[AssignedUser])
async def list_assigned_users(
    company_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*INTERNAL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    company = await get_or_404(db, Company, company_id, "Company")
    result = await db.execute(
        select(User)
        .join(user_companies, user_companies.c.user_id == User.id)
        .where(user_companies.c.company_id == company.id, User.deleted_at == None)  # noqa: E711
        .order_by(User.name)
    )
    return [
        AssignedUser(id=str(u.id), name=u.name, email=u.email, role=u.role, is_active=bool(u.is_active))
        for u in result.scalars().all()
    ]
