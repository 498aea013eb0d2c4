from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.config import settings
from portal.database import get_db
from portal.middleware.auth import get_current_user
from portal.middleware.authorization import (
    ROLE_HIERARCHY,
    ROLE_LABELS,
    assert_can_manage,
    can_add_users,
    can_delete_users,
    can_view_users,
    get_manageable_roles,
)
from portal.models.user import User
from portal.schemas.auth import UserResponse
from portal.schemas.common import MessageResponse, PaginatedResponse, build_pagination
from portal.schemas.user import (
    LockAccountRequest,
    ManageableRole,
    UserCompaniesRequest,
    UserCreateRequest,
    UserUpdateRequest,
)
from portal.services.account_lockout import lock_account, unlock_account
from portal.services.activity_logger import ActivityType, log_activity
from portal.services.auth_service import (
    generate_temp_password,
    generate_token,
    hash_password,
    hash_token,
    validate_password_strength,
)
from portal.services.company_access import find_missing_company_ids, set_user_companies
from portal.services.email_templates import send_templated_email
from portal.services.lookups import bad_request, get_or_404, parse_uuid
from portal.services.security_monitor import security_monitor
from portal.services.settings_service import get_portal_settings
from portal.services.url_config import UrlConfigError, get_login_url, get_reset_password_url
from portal.services.user_service import email_in_use, password_expiry_from, user_to_response

logger = structlog.get_logger()
router = APIRouter()

NOTIFICATION_FLAGS = (
    "send_invoice_email",
    "send_invoice_attachment",
    "send_statement_email",
    "send_statement_attachment",
    "send_email_as_summary",
    "send_import_summary_report",
)


def _forbidden(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"error": {"code": "INSUFFICIENT_PERMISSIONS", "message": message}},
    )


async def require_user_viewer(current_user: dict = Depends(get_current_user)) -> dict:
    if not can_view_users(current_user["role"]):
        raise _forbidden("Access denied. You do not have permission to view users.")
    return current_user


async def _resolve_company_ids(db: AsyncSession, raw_ids: list[str]) -> list:
    company_ids = [parse_uuid(cid, "Company") for cid in raw_ids]
    missing = await find_missing_company_ids(db, company_ids)
    if missing:
        raise bad_request(
            "One or more companies do not exist",
            code="INVALID_COMPANIES",
            missing_company_ids=[str(m) for m in missing],
        )
    return company_ids


@router.get("", response_model=PaginatedResponse[UserResponse])
async def list_users(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    current_user: dict = Depends(require_user_viewer),
    db: AsyncSession = Depends(get_db),
):
    conditions = [User.deleted_at == None]  # noqa: E711
    if role:
        conditions.append(User.role == role)
    if is_active is not None:
        conditions.append(User.is_active == is_active)
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

    total = (await db.execute(select(func.count(User.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(User).where(*conditions).order_by(User.name).offset((page - 1) * limit).limit(limit)
    )
    items = [await user_to_response(db, u) for u in result.scalars().all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/roles/manageable", response_model=list[ManageableRole])
async def list_manageable_roles(current_user: dict = Depends(get_current_user)):
    return [
        ManageableRole(value=role, label=ROLE_LABELS[role], level=ROLE_HIERARCHY[role])
        for role in get_manageable_roles(current_user["role"])
    ]


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    current_user: dict = Depends(require_user_viewer),
    db: AsyncSession = Depends(get_db),
):
    user = await get_or_404(db, User, user_id, "User")
    return await user_to_response(db, user)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not can_add_users(current_user["role"]):
        raise _forbidden("Access denied. You do not have permission to add users.")
    assert_can_manage(current_user, body.role)

    email = str(body.email).strip().lower()
    if await email_in_use(db, email):
        raise bad_request("A user with this email already exists", code="EMAIL_IN_USE")

    company_ids = [] if body.all_companies else await _resolve_company_ids(db, body.company_ids)

    temp_password = None
    if body.password:
        problems = validate_password_strength(body.password)
        if problems:
            raise bad_request(problems[0], code="WEAK_PASSWORD", errors=problems)
        password = body.password
    else:
        temp_password = password = generate_temp_password()

    portal_settings = await get_portal_settings(db)
    user = User(
        name=body.name.strip(),
        email=email,
        password_hash=hash_password(password),
        must_change_password=temp_password is not None,
        role=body.role,
        added_by_id=parse_uuid(current_user["user_id"], "User"),
        is_active=body.is_active,
        all_companies=body.all_companies,
        password_expiry_date=None if temp_password else password_expiry_from(portal_settings),
    )
    for flag in NOTIFICATION_FLAGS:
        value = getattr(body, flag)
        if value is not None:
            setattr(user, flag, value)
    db.add(user)
    await db.flush()
    if company_ids:
        await set_user_companies(db, user.id, company_ids)

    if temp_password:
        try:
            login_url = get_login_url()
        except UrlConfigError:
            login_url = ""
        await send_templated_email(
            db,
            "welcome",
            user.email,
            {"user_name": user.name, "email": user.email, "temp_password": temp_password, "login_url": login_url},
            background_tasks=background_tasks,
        )

    await log_activity(
        db,
        ActivityType.USER_CREATED,
        f"Created user {user.email}",
        user=current_user,
        details={
            "created_user_id": str(user.id),
            "role": user.role,
            "company_ids": [str(c) for c in company_ids],
            "all_companies": user.all_companies,
        },
        request=request,
    )
    logger.info("user_created", user_id=str(user.id), role=user.role, created_by=current_user["user_id"])
    return await user_to_response(db, user)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    body: UserUpdateRequest,
    request: Request,
    current_user: dict = Depends(require_user_viewer),
    db: AsyncSession = Depends(get_db),
):
    user = await get_or_404(db, User, user_id, "User")
    assert_can_manage(current_user, user.role)
    updates = body.model_dump(exclude_unset=True)

    if updates.get("role") and updates["role"] != user.role:
        assert_can_manage(current_user, updates["role"])
    if updates.get("email"):
        updates["email"] = str(updates["email"]).strip().lower()
        if updates["email"] != user.email and await email_in_use(db, updates["email"], exclude_id=user.id):
            raise bad_request("A user with this email already exists", code="EMAIL_IN_USE")

    changes = {}
    for field_name, value in updates.items():
        if value is None:
            continue
        if field_name == "name":
            value = value.strip()
        old = getattr(user, field_name)
        if old != value:
            setattr(user, field_name, value)
            changes[field_name] = {"from": old, "to": value}
    await db.flush()

    if changes:
        await log_activity(
            db,
            ActivityType.USER_UPDATED,
            f"Updated user {user.email}",
            user=current_user,
            details={"updated_user_id": str(user.id), "changes": changes},
            request=request,
        )
    return await user_to_response(db, user)


@router.put("/{user_id}/companies", response_model=UserResponse)
async def update_user_companies(
    user_id: str,
    body: UserCompaniesRequest,
    request: Request,
    current_user: dict = Depends(require_user_viewer),
    db: AsyncSession = Depends(get_db),
):
    user = await get_or_404(db, User, user_id, "User")
    assert_can_manage(current_user, user.role)
    company_ids = await _resolve_company_ids(db, body.company_ids)
    await set_user_companies(db, user.id, company_ids)
    await log_activity(
        db,
        ActivityType.USER_UPDATED,
        f"Updated company assignments for {user.email}",
        user=current_user,
        details={"updated_user_id": str(user.id), "company_ids": [str(c) for c in company_ids]},
        request=request,
    )
    return await user_to_response(db, user)


@router.post("/{user_id}/unlock", response_model=UserResponse)
async def unlock_user(
    user_id: str,
    request: Request,
    current_user: dict = Depends(require_user_viewer),
    db: AsyncSession = Depends(get_db),
):
    user = await get_or_404(db, User, user_id, "User")
    assert_can_manage(current_user, user.role)
    await unlock_account(db, user)
    security_monitor.reset_account(user.email)
    await log_activity(
        db,
        ActivityType.ACCOUNT_UNLOCKED,
        f"Unlocked account {user.email}",
        user=current_user,
        details={"unlocked_user_id": str(user.id)},
        request=request,
    )
    return await user_to_response(db, user)


@router.post("/{user_id}/lock", response_model=UserResponse)
async def lock_user(
    user_id: str,
    body: LockAccountRequest,
    request: Request,
    current_user: dict = Depends(require_user_viewer),
    db: AsyncSession = Depends(get_db),
):
    user = await get_or_404(db, User, user_id, "User")
    if str(user.id) == current_user["user_id"]:
        raise bad_request("You cannot lock your own account", code="CANNOT_LOCK_SELF")
    assert_can_manage(current_user, user.role)
    locked_until = await lock_account(
        db, user, current_user["user_id"], body.reason.strip(), duration_minutes=body.duration_minutes
    )
    await log_activity(
        db,
        ActivityType.ACCOUNT_LOCKED,
        f"Locked account {user.email}",
        user=current_user,
        details={
            "locked_user_id": str(user.id),
            "reason": user.lock_reason,
            "locked_until": locked_until.isoformat() if locked_until else None,
            "manual": True,
        },
        request=request,
    )
    return await user_to_response(db, user)


@router.post("/{user_id}/reset-password", response_model=MessageResponse)
async def send_password_reset(
    user_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(require_user_viewer),
    db: AsyncSession = Depends(get_db),
):
    user = await get_or_404(db, User, user_id, "User")
    assert_can_manage(current_user, user.role)
    token = generate_token()
    try:
        reset_url = get_reset_password_url(token)
    except UrlConfigError as exc:
        raise bad_request(str(exc), code="URL_CONFIG_ERROR")

    user.reset_password_token = hash_token(token)
    user.reset_password_expires = datetime.utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
    await db.flush()
    await send_templated_email(
        db,
        "password-reset",
        user.email,
        {"user_name": user.name, "reset_url": reset_url, "expiry_minutes": settings.PASSWORD_RESET_EXPIRE_MINUTES},
        background_tasks=background_tasks,
    )
    await log_activity(
        db,
        ActivityType.PASSWORD_RESET_REQUESTED,
        f"Password reset sent to {user.email} by administrator",
        user=current_user,
        details={"target_user_id": str(user.id)},
        request=request,
    )
    return MessageResponse(message=f"Password reset email sent to {user.email}")


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not can_delete_users(current_user["role"]):
        raise _forbidden("Access denied. You do not have permission to delete users.")
    user = await get_or_404(db, User, user_id, "User")
    if str(user.id) == current_user["user_id"]:
        raise bad_request("You cannot delete your own account", code="CANNOT_DELETE_SELF")
    assert_can_manage(current_user, user.role)

    user.deleted_at = datetime.utcnow()
    user.is_active = False
    await db.flush()
    await log_activity(
        db,
        ActivityType.USER_DELETED,
        f"Deleted user {user.email}",
        user=current_user,
        details={"deleted_user_id": str(user.id), "role": user.role},
        request=request,
    )
    logger.info("user_deleted", user_id=str(user.id), deleted_by=current_user["user_id"])
    return MessageResponse(message="User deleted")
