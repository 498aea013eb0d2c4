from datetime import datetime
from typing import Optional
import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.database import get_db
from portal.middleware.auth import get_current_user
from portal.middleware.authorization import INTERNAL_ROLES, require_roles
from portal.models.supplier import Supplier
from portal.schemas.common import MessageResponse, PaginatedResponse, build_pagination, iso
from portal.schemas.supplier import SupplierCreate, SupplierResponse, SupplierUpdate
from portal.services.activity_logger import ActivityType, log_activity
from portal.services.lookups import bad_request, get_or_404, parse_uuid

logger = structlog.get_logger()
router = APIRouter()


def _to_response(s: Supplier) -> SupplierResponse:
    return SupplierResponse(
        id=str(s.id),
        name=s.name,
        code=s.code,
        email=s.email,
        phone=s.phone,
        address=s.address,
        tax_id=s.tax_id,
        vat_number=s.vat_number,
        website=s.website,
        notes=s.notes,
        is_active=bool(s.is_active),
        created_at=iso(s.created_at),
    )


async def _check_code(db: AsyncSession, code: Optional[str], exclude_id: Optional[uuid.UUID] = None) -> None:
    if not code:
        return
    q = select(Supplier.id).where(Supplier.code == code)
    if exclude_id is not None:
        q = q.where(Supplier.id != exclude_id)
    if (await db.execute(q.limit(1))).scalar_one_or_none() is not None:
        raise bad_request(f"Supplier code '{code}' is already in use", code="DUPLICATE_SUPPLIER_CODE")


@router.get("", response_model=PaginatedResponse[SupplierResponse])
async def list_suppliers(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    _auth: None = Depends(require_roles(*INTERNAL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    conditions = [Supplier.deleted_at == None]  # noqa: E711
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(
            or_(Supplier.name.ilike(pattern), Supplier.code.ilike(pattern), Supplier.email.ilike(pattern))
        )
    if is_active is not None:
        conditions.append(Supplier.is_active == is_active)

    total = (await db.execute(select(func.count(Supplier.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(Supplier).where(*conditions).order_by(Supplier.name).offset((page - 1) * limit).limit(limit)
    )
    items = [_to_response(s) for s in result.scalars().all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/{supplier_id}", response_model=SupplierResponse)
async def get_supplier(
    supplier_id: str,
    _auth: None = Depends(require_roles(*INTERNAL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return _to_response(await get_or_404(db, Supplier, supplier_id, "Supplier"))


@router.post("", response_model=SupplierResponse, status_code=status.HTTP_201_CREATED)
async def create_supplier(
    body: SupplierCreate,
    request: Request,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("global_admin")),
    db: AsyncSession = Depends(get_db),
):
    await _check_code(db, body.code)
    supplier = Supplier(
        **body.model_dump(),
        created_by_id=parse_uuid(current_user["user_id"], "User"),
    )
    db.add(supplier)
    await db.flush()
    await log_activity(
        db,
        ActivityType.SUPPLIER_CREATED,
        f"Created supplier {supplier.name}",
        user=current_user,
        details={"supplier_id": str(supplier.id), "code": supplier.code},
        request=request,
    )
    logger.info("supplier_created", supplier_id=str(supplier.id))
    return _to_response(supplier)


@router.put("/{supplier_id}", response_model=SupplierResponse)
async def update_supplier(
    supplier_id: str,
    body: SupplierUpdate,
    request: Request,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("global_admin")),
    db: AsyncSession = Depends(get_db),
):
    supplier = await get_or_404(db, Supplier, supplier_id, "Supplier")
    updates = body.model_dump(exclude_unset=True)
    if "code" in updates:
        await _check_code(db, updates["code"], exclude_id=supplier.id)

    changes = {}
    for field_name, value in updates.items():
        if field_name in ("name", "is_active") and value is None:
            continue
        old = getattr(supplier, field_name)
        if old != value:
            setattr(supplier, field_name, value)
            changes[field_name] = {"from": old, "to": value}
    await db.flush()

    if changes:
        await log_activity(
            db,
            ActivityType.SUPPLIER_UPDATED,
            f"Updated supplier {supplier.name}",
            user=current_user,
            details={"supplier_id": str(supplier.id), "changes": changes},
            request=request,
        )
    return _to_response(supplier)


@router.delete("/{supplier_id}", response_model=MessageResponse)
async def delete_supplier(
    supplier_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("global_admin")),
    db: AsyncSession = Depends(get_db),
):
    supplier = await get_or_404(db, Supplier, supplier_id, "Supplier")
    supplier.deleted_at = datetime.utcnow()
    supplier.is_active = False
    await db.flush()
    await log_activity(
        db,
        ActivityType.SUPPLIER_DELETED,
        f"Deleted supplier {supplier.name}",
        user=current_user,
        details={"supplier_id": str(supplier.id)},
        request=request,
    )
    return MessageResponse(message="Supplier deleted")
