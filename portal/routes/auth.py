from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.config import settings
from portal.database import get_db
from portal.middleware.auth import get_current_user, get_optional_user
from portal.models.user import User
from portal.schemas.auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    ResetPasswordRequest,
    TokenRequest,
    UserResponse,
)
from portal.schemas.common import MessageResponse
from portal.services.account_lockout import (
    check_lockout,
    increment_failed_attempts,
    reset_failed_attempts,
)
from portal.services.activity_logger import ActivityType, get_client_ip, log_activity
from portal.services.auth_service import (
    create_access_token,
    create_session_token,
    generate_token,
    hash_password,
    hash_token,
    validate_password_strength,
    verify_password,
    verify_session_token,
)
from portal.services.email_templates import send_templated_email
from portal.services.lookups import bad_request, get_current_user_row, parse_uuid
from portal.services.security_monitor import security_monitor, track_account_lockout, track_failed_login
from portal.services.settings_service import get_portal_settings
from portal.services.url_config import UrlConfigError, get_reset_password_url
from portal.services.user_service import (
    email_in_use,
    get_user_by_email,
    password_expiry_from,
    user_to_response,
)

logger = structlog.get_logger()

router = APIRouter()

FORGOT_PASSWORD_MESSAGE = "If an account exists with that email, a password reset link has been sent."


def _auth_error(status_code: int, code: str, message: str, **extra) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": {"code": code, "message": message}, **extra},
    )


def _locked_error(locked_until: Optional[datetime], remaining_minutes: Optional[int]) -> HTTPException:
    if locked_until is None:
        message = "Account is locked. Please contact an administrator."
    else:
        message = f"Account is temporarily locked. Try again in {remaining_minutes} minute(s)."
    return _auth_error(
        423,
        "ACCOUNT_LOCKED",
        message,
        locked_until=locked_until.isoformat() if locked_until else None,
        remaining_minutes=remaining_minutes,
    )


def _changed_data(user: User) -> dict:
    return {"user_name": user.name, "changed_at": datetime.utcnow().strftime("%Y-%m-%d %H:%M UTC")}


def _password_expired(user: User, password_expiry_days: Optional[int], now: datetime) -> bool:
    if not password_expiry_days or user.password_expiry_date is None:
        return False
    return user.password_expiry_date <= now


@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    """Authenticate a user, enforcing account lockout and forced password changes."""
    ip = get_client_ip(request)
    user_agent = request.headers.get("user-agent")
    now = datetime.utcnow()

    user = await get_user_by_email(db, body.email)
    if user is None:
        await log_activity(
            db,
            ActivityType.LOGIN_FAILED,
            "Login failed: unknown email",
            user_email=body.email,
            details={"reason": "user_not_found"},
            request=request,
        )
        await track_failed_login(db, body.email, ip, user_agent)
        await db.commit()
        raise _auth_error(status.HTTP_401_UNAUTHORIZED, "AUTH_INVALID_CREDENTIALS", "Invalid credentials")

    if user.role == "notification_contact":
        raise _auth_error(
            status.HTTP_403_FORBIDDEN,
            "PORTAL_ACCESS_DENIED",
            "Your account does not have portal access",
        )

    lockout = await check_lockout(db, user, now)
    if lockout.is_locked:
        await db.commit()
        raise _locked_error(lockout.locked_until, lockout.remaining_minutes)

    if not user.password_hash:
        raise _auth_error(
            status.HTTP_401_UNAUTHORIZED,
            "PASSWORD_NOT_SET",
            "Password has not been set for this account. Use forgot password to set one.",
            requires_password_setup=True,
        )

    if not verify_password(body.password, user.password_hash):
        attempt = await increment_failed_attempts(db, user, now)
        await log_activity(
            db,
            ActivityType.LOGIN_FAILED,
            "Login failed: invalid password",
            user=user,
            details={"reason": "invalid_password", "attempts": attempt.attempts},
            request=request,
        )
        await track_failed_login(db, user.email, ip, user_agent)

        if attempt.is_now_locked:
            await track_account_lockout(db, user, ip, attempt.attempts, attempt.locked_until)
            await log_activity(
                db,
                ActivityType.ACCOUNT_LOCKED,
                "Account locked after repeated failed logins",
                user=user,
                details={
                    "attempts": attempt.attempts,
                    "locked_until": attempt.locked_until.isoformat() if attempt.locked_until else None,
                },
                request=request,
            )
            await db.commit()
            raise _locked_error(attempt.locked_until, attempt.remaining_minutes)

        await db.commit()
        raise _auth_error(
            status.HTTP_401_UNAUTHORIZED,
            "AUTH_INVALID_CREDENTIALS",
            "Invalid credentials",
            attempts_remaining=attempt.attempts_remaining,
        )

    await reset_failed_attempts(db, user)
    security_monitor.reset_account(user.email)

    if not user.is_active:
        await db.commit()
        raise _auth_error(status.HTTP_401_UNAUTHORIZED, "ACCOUNT_INACTIVE", "Account is inactive")

    portal_settings = await get_portal_settings(db)
    if user.must_change_password or _password_expired(user, portal_settings.password_expiry_days, now):
        logger.info("login_requires_password_change", user_id=str(user.id))
        return LoginResponse(
            requires_password_change=True,
            session_token=create_session_token(str(user.id), user.email),
            message="Password change required",
        )

    user.last_login = now
    await log_activity(db, ActivityType.LOGIN, "User logged in", user=user, request=request)
    await db.flush()

    logger.info("login_succeeded", user_id=str(user.id), role=user.role)
    return LoginResponse(
        token=create_access_token(str(user.id), user.role, user.email),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=await user_to_response(db, user),
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await log_activity(db, ActivityType.LOGOUT, "User logged out", user=current_user, request=request)
    return MessageResponse(message="Logged out")


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: ForgotPasswordRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    """Always returns the same message so account existence is not revealed."""
    user = await get_user_by_email(db, body.email)
    if user is None or not user.is_active:
        logger.info("password_reset_unknown_email")
        return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)

    token = generate_token()
    user.reset_password_token = hash_token(token)
    user.reset_password_expires = datetime.utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
    await db.flush()

    try:
        reset_url = get_reset_password_url(token)
    except UrlConfigError as exc:
        logger.error("password_reset_url_unavailable", error=str(exc))
        reset_url = None
    if reset_url:
        await send_templated_email(
            db,
            "password-reset",
            user.email,
            {"user_name": user.name, "reset_url": reset_url, "expiry_minutes": settings.PASSWORD_RESET_EXPIRE_MINUTES},
            background_tasks=background_tasks,
        )
    await log_activity(
        db, ActivityType.PASSWORD_RESET_REQUESTED, "Password reset requested", user=user, request=request
    )
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


async def _user_for_reset_token(db: AsyncSession, token: str) -> Optional[User]:
    result = await db.execute(
        select(User).where(
            User.reset_password_token == hash_token(token),
            User.reset_password_expires > datetime.utcnow(),
            User.deleted_at == None,  # noqa: E711
        )
    )
    return result.scalar_one_or_none()


@router.get("/validate-reset-token/{token}")
async def validate_reset_token(token: str, db: AsyncSession = Depends(get_db)):
    user = await _user_for_reset_token(db, token)
    if user is None:
        raise bad_request("Invalid or expired reset token", code="INVALID_RESET_TOKEN")
    return {"valid": True, "email": user.email}


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    user = await _user_for_reset_token(db, body.token)
    if user is None:
        raise bad_request("Invalid or expired reset token", code="INVALID_RESET_TOKEN")

    problems = validate_password_strength(body.password)
    if problems:
        raise bad_request(problems[0], code="WEAK_PASSWORD", errors=problems)

    portal_settings = await get_portal_settings(db)
    user.password_hash = hash_password(body.password)
    user.reset_password_token = None
    user.reset_password_expires = None
    user.must_change_password = False
    user.password_expiry_date = password_expiry_from(portal_settings)
    user.failed_login_attempts = 0
    user.account_locked_until = None
    user.last_failed_login_at = None
    user.lock_reason = None
    user.locked_by_id = None
    await db.flush()
    security_monitor.reset_account(user.email)

    await send_templated_email(
        db, "password-changed", user.email, _changed_data(user), background_tasks=background_tasks
    )
    await log_activity(db, ActivityType.PASSWORD_RESET, "Password reset via email link", user=user, request=request)
    logger.info("password_reset_completed", user_id=str(user.id))
    return MessageResponse(message="Password has been reset. You can now log in.")


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: Optional[dict] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Change password with an access token, or with the session token from a forced-change login."""
    if current_user is not None:
        user = await get_current_user_row(db, current_user)
    elif body.session_token:
        try:
            claims = verify_session_token(body.session_token)
        except JWTError:
            raise _auth_error(
                status.HTTP_401_UNAUTHORIZED, "SESSION_TOKEN_INVALID", "Invalid or expired session token"
            )
        user = await db.get(User, parse_uuid(claims.get("sub"), "User"))
        if user is None or user.deleted_at is not None:
            raise _auth_error(status.HTTP_401_UNAUTHORIZED, "SESSION_TOKEN_INVALID", "Invalid or expired session token")
    else:
        raise _auth_error(status.HTTP_401_UNAUTHORIZED, "AUTH_TOKEN_INVALID", "Authentication required")

    if not user.must_change_password:
        if not body.current_password:
            raise bad_request("Current password is required", code="CURRENT_PASSWORD_REQUIRED")
        if not verify_password(body.current_password, user.password_hash):
            raise bad_request("Current password is incorrect", code="INVALID_CURRENT_PASSWORD")

    problems = validate_password_strength(body.new_password)
    if problems:
        raise bad_request(problems[0], code="WEAK_PASSWORD", errors=problems)
    if verify_password(body.new_password, user.password_hash):
        raise bad_request("New password must be different from the current password", code="PASSWORD_REUSED")

    portal_settings = await get_portal_settings(db)
    now = datetime.utcnow()
    user.password_hash = hash_password(body.new_password)
    user.must_change_password = False
    user.password_expiry_date = password_expiry_from(portal_settings, now)
    user.last_login = now
    await db.flush()

    await send_templated_email(
        db, "password-changed", user.email, _changed_data(user), background_tasks=background_tasks
    )
    await log_activity(db, ActivityType.PASSWORD_CHANGED, "Password changed", user=user, request=request)
    logger.info("password_changed", user_id=str(user.id))

    return {
        "message": "Password changed successfully",
        "token": create_access_token(str(user.id), user.role, user.email),
        "user": (await user_to_response(db, user)).model_dump(),
    }


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: dict = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    """Current authenticated user with assigned companies."""
    user = await get_current_user_row(db, current_user)
    return await user_to_response(db, user)


@router.post("/validate-email-change")
async def validate_email_change(
    body: TokenRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(User).where(
            User.email_change_token == hash_token(body.token),
            User.email_change_expires > datetime.utcnow(),
            User.deleted_at == None,  # noqa: E711
        )
    )
    user = result.scalar_one_or_none()
    if user is None or not user.pending_email:
        raise bad_request("Invalid or expired email change link", code="INVALID_EMAIL_CHANGE_TOKEN")

    new_email = user.pending_email
    if await email_in_use(db, new_email, exclude_id=user.id):
        raise bad_request("This email address is already in use", code="EMAIL_IN_USE")

    old_email = user.email
    user.email = new_email
    user.pending_email = None
    user.email_change_token = None
    user.email_change_expires = None
    await db.flush()

    for recipient in (old_email, new_email):
        await send_templated_email(
            db,
            "email-change-confirmed",
            recipient,
            {"user_name": user.name, "old_email": old_email, "new_email": new_email},
            background_tasks=background_tasks,
        )
    await log_activity(
        db,
        ActivityType.EMAIL_CHANGE_VALIDATED,
        "Email address changed",
        user=user,
        details={"old_email": old_email, "new_email": new_email},
        request=request,
    )
    logger.info("email_change_validated", user_id=str(user.id))
    return {"message": "Email address updated. Please log in with your new email.", "email": new_email}
