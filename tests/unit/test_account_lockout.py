"""
Unit tests for portal/services/account_lockout.py
"""

from datetime import datetime, timedelta

from portal.services.account_lockout import (
    BRUTE_FORCE_REASON,
    check_lockout,
    get_lockout_config,
    increment_failed_attempts,
    lock_account,
    reset_failed_attempts,
    unlock_account,
)
from portal.services.settings_service import get_portal_settings

NOW = datetime(2026, 3, 1, 12, 0, 0)


async def test_defaults_when_settings_row_is_new(db):
    config = await get_lockout_config(db)
    assert config.enabled is True
    assert config.max_attempts == 5
    assert config.duration_minutes == 30


async def test_locks_on_reaching_max_attempts(db, make_user):
    user = await make_user(role="external_user")
    results = [await increment_failed_attempts(db, user, NOW) for _ in range(5)]

    assert [r.is_now_locked for r in results] == [False, False, False, False, True]
    assert results[3].attempts_remaining == 1
    assert user.account_locked_until == NOW + timedelta(minutes=30)
    assert user.lock_reason == BRUTE_FORCE_REASON
    assert results[4].remaining_minutes == 30
    assert results[3].remaining_minutes is None


async def test_disabled_lockout_only_counts(db, make_user):
    row = await get_portal_settings(db)
    row.account_lockout_enabled = False
    user = await make_user(role="external_user")
    for _ in range(8):
        result = await increment_failed_attempts(db, user, NOW)
    assert result.is_now_locked is False
    assert user.failed_login_attempts == 8
    assert user.account_locked_until is None


async def test_check_lockout_reports_remaining_minutes(db, make_user):
    user = await make_user(role="external_user", account_locked_until=NOW + timedelta(minutes=10, seconds=1))
    status = await check_lockout(db, user, NOW)
    assert status.is_locked
    assert status.remaining_minutes == 11


async def test_expired_lock_is_cleared(db, make_user):
    user = await make_user(
        role="external_user",
        account_locked_until=NOW - timedelta(minutes=1),
        lock_reason=BRUTE_FORCE_REASON,
        failed_login_attempts=5,
    )
    status = await check_lockout(db, user, NOW)
    assert not status.is_locked
    assert user.failed_login_attempts == 0
    assert user.lock_reason is None


async def test_manual_lock_without_duration_is_indefinite(db, make_user):
    admin = await make_user(role="global_admin")
    user = await make_user(role="external_user")
    until = await lock_account(db, user, str(admin.id), "Suspicious activity")
    assert until is None

    status = await check_lockout(db, user, NOW + timedelta(days=365))
    assert status.is_locked
    assert status.locked_until is None
    assert status.reason == "Suspicious activity"

    await unlock_account(db, user)
    assert not (await check_lockout(db, user, NOW)).is_locked


async def test_successful_login_reset_keeps_manual_lock(db, make_user):
    user = await make_user(role="external_user", failed_login_attempts=2, lock_reason="manual")
    await reset_failed_attempts(db, user)
    assert user.failed_login_attempts == 0
    assert user.lock_reason == "manual"
