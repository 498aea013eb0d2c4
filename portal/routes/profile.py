from datetime import datetime, timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Request, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.config import settings
from portal.database import get_db
from portal.middleware.auth import get_current_user
from portal.models.user import User
from portal.schemas.auth import UserResponse
from portal.schemas.common import MessageResponse
from portal.schemas.profile import EmailChangeRequest, ProfilePasswordChange, ProfileUpdate
from portal.services.activity_logger import ActivityType, log_activity
from portal.services.auth_service import (
    generate_token,
    hash_password,
    hash_token,
    validate_password_strength,
    verify_password,
)
from portal.services.avatar import MAX_AVATAR_BYTES, InvalidImageError, process_avatar
from portal.services.email_templates import send_templated_email
from portal.services.lookups import bad_request, get_current_user_row, get_or_404, not_found
from portal.services.settings_service import get_portal_settings
from portal.services.storage import delete_quietly, get_storage
from portal.services.url_config import UrlConfigError, get_email_change_validation_url
from portal.services.user_service import email_in_use, password_expiry_from, user_to_response

logger = structlog.get_logger()
router = APIRouter()


@router.get("", response_model=UserResponse)
async def get_profile(current_user: dict = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    user = await get_current_user_row(db, current_user)
    return await user_to_response(db, user)


@router.put("", response_model=UserResponse)
async def update_profile(
    body: ProfileUpdate,
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await get_current_user_row(db, current_user)
    name = body.name.strip()
    if not name:
        raise bad_request("Name is required", code="VALIDATION_ERROR")
    old_name = user.name
    user.name = name
    await db.flush()
    await log_activity(
        db,
        ActivityType.USER_UPDATED,
        "Updated own profile",
        user=user,
        details={"changes": {"name": {"from": old_name, "to": name}}},
        request=request,
    )
    return await user_to_response(db, user)


@router.put("/password", response_model=MessageResponse)
async def change_own_password(
    body: ProfilePasswordChange,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await get_current_user_row(db, current_user)
    if not verify_password(body.current_password, user.password_hash):
        raise bad_request("Current password is incorrect", code="INVALID_CURRENT_PASSWORD")
    problems = validate_password_strength(body.new_password)
    if problems:
        raise bad_request(problems[0], code="WEAK_PASSWORD", errors=problems)
    if verify_password(body.new_password, user.password_hash):
        raise bad_request("New password must be different from the current password", code="PASSWORD_REUSED")

    portal_settings = await get_portal_settings(db)
    user.password_hash = hash_password(body.new_password)
    user.must_change_password = False
    user.password_expiry_date = password_expiry_from(portal_settings)
    await db.flush()

    await send_templated_email(
        db,
        "password-changed",
        user.email,
        {"user_name": user.name, "changed_at": datetime.utcnow().strftime("%Y-%m-%d %H:%M UTC")},
        background_tasks=background_tasks,
    )
    await log_activity(db, ActivityType.PASSWORD_CHANGED, "Password changed from profile", user=user, request=request)
    return MessageResponse(message="Password changed successfully")


@router.post("/avatar", response_model=UserResponse)
async def upload_avatar(
    avatar: UploadFile = File(...),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Resize the upload to a 128x128 PNG and replace any previous avatar."""
    if not (avatar.content_type or "").startswith("image/"):
        raise bad_request("Only image files are allowed", code="INVALID_FILE_TYPE")
    contents = await avatar.read()
    if len(contents) > MAX_AVATAR_BYTES:
        raise bad_request("Image must be 2MB or smaller", code="FILE_TOO_LARGE")
    try:
        png_bytes = process_avatar(contents)
    except InvalidImageError as exc:
        raise bad_request(str(exc), code="INVALID_IMAGE")

    user = await get_current_user_row(db, current_user)
    previous = user.avatar
    key = f"avatars/{user.id}/{generate_token()[:16]}.png"
    get_storage().save(png_bytes, key, content_type="image/png")
    user.avatar = key
    await db.flush()
    if previous:
        delete_quietly(previous)

    logger.info("avatar_uploaded", user_id=str(user.id), size=len(png_bytes))
    return await user_to_response(db, user)


@router.delete("/avatar", response_model=UserResponse)
async def delete_avatar(current_user: dict = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    user = await get_current_user_row(db, current_user)
    if user.avatar:
        delete_quietly(user.avatar)
        user.avatar = None
        await db.flush()
    return await user_to_response(db, user)


@router.get("/avatar/{user_id}")
async def get_avatar(
    user_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await get_or_404(db, User, user_id, "User")
    if not user.avatar:
        raise not_found("Avatar")
    try:
        data = get_storage().read(user.avatar)
    except FileNotFoundError:
        raise not_found("Avatar")
    return Response(content=data, media_type="image/png", headers={"Cache-Control": "private, max-age=3600"})


async def _issue_email_change(db: AsyncSession, user: User, background_tasks: BackgroundTasks) -> None:
    token = generate_token()
    try:
        validation_url = get_email_change_validation_url(token)
    except UrlConfigError as exc:
        logger.error("email_change_url_unavailable", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": {
                    "code": "EMAIL_CHANGE_UNAVAILABLE",
                    "message": "Email change links cannot be sent right now. Please contact an administrator.",
                }
            },
        )

    user.email_change_token = hash_token(token)
    user.email_change_expires = datetime.utcnow() + timedelta(minutes=settings.EMAIL_CHANGE_EXPIRE_MINUTES)
    await db.flush()
    await send_templated_email(
        db,
        "email-change-validation",
        user.pending_email,
        {
            "user_name": user.name,
            "new_email": user.pending_email,
            "validation_url": validation_url,
            "expiry_minutes": settings.EMAIL_CHANGE_EXPIRE_MINUTES,
        },
        background_tasks=background_tasks,
    )


@router.post("/email-change/request", response_model=MessageResponse)
async def request_email_change(
    body: EmailChangeRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await get_current_user_row(db, current_user)
    new_email = str(body.new_email).strip().lower()
    if new_email == user.email.lower():
        raise bad_request("New email must be different from your current email", code="EMAIL_UNCHANGED")
    if await email_in_use(db, new_email, exclude_id=user.id):
        raise bad_request("This email address is already in use", code="EMAIL_IN_USE")

    user.pending_email = new_email
    await _issue_email_change(db, user, background_tasks)
    await log_activity(
        db,
        ActivityType.EMAIL_CHANGE_REQUESTED,
        f"Requested email change to {new_email}",
        user=user,
        details={"new_email": new_email},
        request=request,
    )
    return MessageResponse(message=f"A validation link has been sent to {new_email}")


@router.post("/email-change/resend", response_model=MessageResponse)
async def resend_email_change(
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await get_current_user_row(db, current_user)
    if not user.pending_email:
        raise bad_request("There is no pending email change", code="NO_PENDING_EMAIL_CHANGE")
    await _issue_email_change(db, user, background_tasks)
    return MessageResponse(message=f"A new validation link has been sent to {user.pending_email}")


@router.delete("/email-change", response_model=MessageResponse)
async def cancel_email_change(current_user: dict = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    user = await get_current_user_row(db, current_user)
    user.pending_email = None
    user.email_change_token = None
    user.email_change_expires = None
    await db.flush()
    return MessageResponse(message="Email change cancelled")
