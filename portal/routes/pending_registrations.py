from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.database import get_db
from portal.middleware.auth import get_current_user
from portal.middleware.authorization import assert_can_manage, can_manage_role, is_valid_role, require_roles
from portal.models.pending_registration import PendingRegistration
from portal.models.user import User
from portal.routes.registration import pending_registration_exists
from portal.schemas.common import PaginatedResponse, build_pagination, iso
from portal.schemas.registration import (
    ApproveRegistrationRequest,
    RegistrationResponse,
    RegistrationUpdate,
    RejectRegistrationRequest,
)
from portal.services.activity_logger import ActivityType, log_activity
from portal.services.auth_service import generate_temp_password, hash_password
from portal.services.company_access import find_missing_company_ids, set_user_companies
from portal.services.email_templates import send_templated_email
from portal.services.lookups import bad_request, get_or_404, parse_uuid
from portal.services.url_config import UrlConfigError, get_login_url
from portal.services.user_service import email_in_use

logger = structlog.get_logger()
router = APIRouter()

ADMIN_ONLY = require_roles("global_admin", "administrator")
REGISTRATION_STATUSES = ("pending", "approved", "rejected")


def _to_response(r: PendingRegistration) -> RegistrationResponse:
    return RegistrationResponse(
        id=str(r.id),
        first_name=r.first_name,
        last_name=r.last_name,
        company_name=r.company_name,
        account_number=r.account_number,
        email=r.email,
        custom_fields=r.custom_fields or {},
        status=r.status,
        reviewed_by_id=str(r.reviewed_by_id) if r.reviewed_by_id else None,
        reviewed_at=iso(r.reviewed_at),
        rejection_reason=r.rejection_reason,
        created_user_id=str(r.created_user_id) if r.created_user_id else None,
        created_at=iso(r.created_at),
    )


def _require_pending(registration: PendingRegistration) -> None:
    if registration.status != "pending":
        raise bad_request(
            f"Registration has already been {registration.status}",
            code="REGISTRATION_NOT_PENDING",
        )


@router.get("", response_model=PaginatedResponse[RegistrationResponse])
async def list_registrations(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    _auth: None = Depends(ADMIN_ONLY),
    db: AsyncSession = Depends(get_db),
):
    conditions = []
    if status_filter:
        if status_filter not in REGISTRATION_STATUSES:
            raise bad_request(f"Invalid status. Must be one of: {REGISTRATION_STATUSES}", code="VALIDATION_ERROR")
        conditions.append(PendingRegistration.status == status_filter)

    total = (await db.execute(select(func.count(PendingRegistration.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(PendingRegistration)
        .where(*conditions)
        .order_by(PendingRegistration.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [_to_response(r) for r in result.scalars().all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/{registration_id}", response_model=RegistrationResponse)
async def get_registration(
    registration_id: str,
    _auth: None = Depends(ADMIN_ONLY),
    db: AsyncSession = Depends(get_db),
):
    registration = await get_or_404(db, PendingRegistration, registration_id, "Registration")
    return _to_response(registration)


@router.put("/{registration_id}", response_model=RegistrationResponse)
async def update_registration(
    registration_id: str,
    body: RegistrationUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(ADMIN_ONLY),
    db: AsyncSession = Depends(get_db),
):
    registration = await get_or_404(db, PendingRegistration, registration_id, "Registration")
    _require_pending(registration)

    updates = body.model_dump(exclude_unset=True)
    intended_role = updates.pop("intended_role", None)

    new_email = updates.get("email")
    if new_email and new_email != registration.email.lower():
        if await email_in_use(db, new_email):
            raise bad_request("An account with this email already exists", code="EMAIL_IN_USE")
        if await pending_registration_exists(db, new_email, exclude_id=registration.id):
            raise bad_request("A registration request for this email is already pending", code="REGISTRATION_PENDING")

    if intended_role is not None:
        if not is_valid_role(intended_role):
            raise bad_request(f"Invalid role: {intended_role}", code="INVALID_ROLE")
        assert_can_manage(current_user, intended_role)
        registration.custom_fields = {**(registration.custom_fields or {}), "intended_role": intended_role}

    for field_name, value in updates.items():
        if value is not None:
            setattr(registration, field_name, value.strip() if isinstance(value, str) else value)
    await db.flush()
    logger.info("registration_updated", registration_id=registration_id, fields=list(updates))
    return _to_response(registration)


@router.post("/{registration_id}/approve")
async def approve_registration(
    registration_id: str,
    body: ApproveRegistrationRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(ADMIN_ONLY),
    db: AsyncSession = Depends(get_db),
):
    """Create the user account for a pending registration and email a temporary password."""
    registration = await get_or_404(db, PendingRegistration, registration_id, "Registration")
    _require_pending(registration)

    role = body.role or (registration.custom_fields or {}).get("intended_role") or "external_user"
    if not is_valid_role(role):
        raise bad_request(f"Invalid role: {role}", code="INVALID_ROLE")
    if not can_manage_role(current_user["role"], role):
        raise bad_request(f"You cannot assign the role '{role}'", code="ROLE_NOT_MANAGEABLE")

    if await email_in_use(db, registration.email):
        raise bad_request("A user with this email already exists", code="EMAIL_IN_USE")

    company_ids = [] if body.all_companies else [parse_uuid(cid, "Company") for cid in body.company_ids]
    missing = await find_missing_company_ids(db, company_ids)
    if missing:
        raise bad_request(
            "One or more companies do not exist",
            code="INVALID_COMPANIES",
            missing_company_ids=[str(m) for m in missing],
        )

    temp_password = generate_temp_password()
    user = User(
        name=registration.full_name,
        email=registration.email.lower(),
        password_hash=hash_password(temp_password),
        must_change_password=True,
        role=role,
        added_by_id=parse_uuid(current_user["user_id"], "User"),
        is_active=True,
        all_companies=body.all_companies,
        send_invoice_email=body.send_invoice_email,
        send_invoice_attachment=body.send_invoice_attachment,
        send_statement_email=body.send_statement_email,
        send_statement_attachment=body.send_statement_attachment,
        send_email_as_summary=body.send_email_as_summary,
    )
    db.add(user)
    await db.flush()
    if company_ids:
        await set_user_companies(db, user.id, company_ids)

    registration.status = "approved"
    registration.reviewed_by_id = parse_uuid(current_user["user_id"], "User")
    registration.reviewed_at = datetime.utcnow()
    registration.created_user_id = user.id
    await db.flush()

    try:
        login_url = get_login_url()
    except UrlConfigError:
        login_url = ""
    await send_templated_email(
        db,
        "registration-approved",
        user.email,
        {"user_name": user.name, "email": user.email, "temp_password": temp_password, "login_url": login_url},
        background_tasks=background_tasks,
    )
    await log_activity(
        db,
        ActivityType.USER_REGISTRATION_APPROVED,
        f"Approved registration for {user.email}",
        user=current_user,
        details={
            "registration_id": registration_id,
            "created_user_id": str(user.id),
            "role": role,
            "company_ids": [str(c) for c in company_ids],
            "all_companies": body.all_companies,
        },
        request=request,
    )

    logger.info("registration_approved", registration_id=registration_id, user_id=str(user.id))
    return {
        "message": "Registration approved and user account created",
        "registration": _to_response(registration).model_dump(),
        "user_id": str(user.id),
    }


@router.post("/{registration_id}/reject")
async def reject_registration(
    registration_id: str,
    body: RejectRegistrationRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(ADMIN_ONLY),
    db: AsyncSession = Depends(get_db),
):
    registration = await get_or_404(db, PendingRegistration, registration_id, "Registration")
    _require_pending(registration)

    registration.status = "rejected"
    registration.reviewed_by_id = parse_uuid(current_user["user_id"], "User")
    registration.reviewed_at = datetime.utcnow()
    registration.rejection_reason = (body.reason or "").strip() or None
    await db.flush()

    await send_templated_email(
        db,
        "registration-rejected",
        registration.email,
        {"first_name": registration.first_name, "rejection_reason": registration.rejection_reason},
        background_tasks=background_tasks,
    )
    await log_activity(
        db,
        ActivityType.USER_REGISTRATION_REJECTED,
        f"Rejected registration for {registration.email}",
        user=current_user,
        details={"registration_id": registration_id, "reason": registration.rejection_reason},
        request=request,
    )
    logger.info("registration_rejected", registration_id=registration_id)
    return {"message": "Registration rejected", "registration": _to_response(registration).model_dump()}
