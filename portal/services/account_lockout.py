"""
Per-account lockout after repeated failed logins.

State lives on the user row (failed_login_attempts, account_locked_until,
lock_reason, locked_by_id), so it survives restarts. Thresholds come from the
settings row. All functions flush; the caller owns the transaction.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import math
from typing import Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.models.user import User
from portal.services.settings_service import (
    DEFAULT_LOCKOUT_ENABLED,
    DEFAULT_LOCKOUT_MINUTES,
    DEFAULT_MAX_FAILED_ATTEMPTS,
    get_portal_settings,
)

logger = structlog.get_logger()

BRUTE_FORCE_REASON = "brute_force"


@dataclass
class LockoutConfig:
    enabled: bool = DEFAULT_LOCKOUT_ENABLED
    max_attempts: int = DEFAULT_MAX_FAILED_ATTEMPTS
    duration_minutes: int = DEFAULT_LOCKOUT_MINUTES


@dataclass
class LockoutStatus:
    is_locked: bool
    locked_until: Optional[datetime] = None
    remaining_minutes: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class FailedAttemptResult:
    attempts: int
    is_now_locked: bool
    locked_until: Optional[datetime] = None
    max_attempts: int = DEFAULT_MAX_FAILED_ATTEMPTS
    remaining_minutes: Optional[int] = None

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)


async def get_lockout_config(db: AsyncSession) -> LockoutConfig:
    row = await get_portal_settings(db)
    return LockoutConfig(
        enabled=row.account_lockout_enabled if row.account_lockout_enabled is not None else DEFAULT_LOCKOUT_ENABLED,
        max_attempts=row.max_failed_login_attempts or DEFAULT_MAX_FAILED_ATTEMPTS,
        duration_minutes=row.lockout_duration_minutes or DEFAULT_LOCKOUT_MINUTES,
    )


def _remaining_minutes(locked_until: datetime, now: datetime) -> int:
    return max(1, math.ceil((locked_until - now).total_seconds() / 60))


def _clear_lock(user: User) -> None:
    user.failed_login_attempts = 0
    user.account_locked_until = None
    user.lock_reason = None
    user.locked_by_id = None


async def check_lockout(
    db: AsyncSession, user: User, now: Optional[datetime] = None
) -> LockoutStatus:
    """
    Report whether the account is locked, clearing a lock that has expired.

    A lock with a reason but no expiry is an indefinite manual lock.
    """
    now = now or datetime.utcnow()

    if user.account_locked_until is None:
        if user.lock_reason:
            return LockoutStatus(is_locked=True, reason=user.lock_reason)
        return LockoutStatus(is_locked=False)

    if user.account_locked_until > now:
        return LockoutStatus(
            is_locked=True,
            locked_until=user.account_locked_until,
            remaining_minutes=_remaining_minutes(user.account_locked_until, now),
            reason=user.lock_reason,
        )

    _clear_lock(user)
    await db.flush()
    logger.info("account_lock_expired", user_id=str(user.id))
    return LockoutStatus(is_locked=False)


async def increment_failed_attempts(
    db: AsyncSession, user: User, now: Optional[datetime] = None
) -> FailedAttemptResult:
    now = now or datetime.utcnow()
    config = await get_lockout_config(db)

    attempts = (user.failed_login_attempts or 0) + 1
    user.failed_login_attempts = attempts
    user.last_failed_login_at = now

    if config.enabled and attempts >= config.max_attempts:
        user.account_locked_until = now + timedelta(minutes=config.duration_minutes)
        user.lock_reason = BRUTE_FORCE_REASON
        await db.flush()
        logger.warning(
            "account_locked_brute_force",
            user_id=str(user.id),
            attempts=attempts,
            locked_until=user.account_locked_until.isoformat(),
        )
        return FailedAttemptResult(
            attempts=attempts,
            is_now_locked=True,
            locked_until=user.account_locked_until,
            max_attempts=config.max_attempts,
            remaining_minutes=_remaining_minutes(user.account_locked_until, now),
        )

    await db.flush()
    return FailedAttemptResult(
        attempts=attempts, is_now_locked=False, max_attempts=config.max_attempts
    )


async def reset_failed_attempts(db: AsyncSession, user: User) -> None:
    if not user.failed_login_attempts and user.account_locked_until is None:
        return
    user.failed_login_attempts = 0
    user.last_failed_login_at = None
    if user.lock_reason == BRUTE_FORCE_REASON:
        user.account_locked_until = None
        user.lock_reason = None
    await db.flush()


async def lock_account(
    db: AsyncSession,
    user: User,
    locked_by: Optional[str],
    reason: str,
    duration_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Manually lock an account. ``duration_minutes=None`` locks indefinitely."""
    now = now or datetime.utcnow()
    user.account_locked_until = (
        now + timedelta(minutes=duration_minutes) if duration_minutes else None
    )
    user.lock_reason = reason or "manual"
    user.locked_by_id = uuid.UUID(str(locked_by)) if locked_by else None
    user.failed_login_attempts = 0
    await db.flush()
    logger.info(
        "account_locked_manually",
        user_id=str(user.id),
        locked_by=locked_by,
        duration_minutes=duration_minutes,
    )
    return user.account_locked_until


async def unlock_account(db: AsyncSession, user: User) -> None:
    _clear_lock(user)
    user.last_failed_login_at = None
    await db.flush()
    logger.info("account_unlocked", user_id=str(user.id))
