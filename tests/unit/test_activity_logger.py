"""
Unit tests for portal/services/activity_logger.py
"""

from types import SimpleNamespace

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from portal.models.activity_log import ActivityLog
from portal.models.company import Company
from portal.models.user import User
from portal.services.activity_logger import ActivityType, get_client_ip, log_activity


def test_client_ip_prefers_first_forwarded_address():
    request = SimpleNamespace(
        headers={"x-forwarded-for": "203.0.113.7, 10.0.0.1"}, client=SimpleNamespace(host="10.0.0.1")
    )
    assert get_client_ip(request) == "203.0.113.7"
    assert get_client_ip(SimpleNamespace(headers={}, client=SimpleNamespace(host="10.0.0.2"))) == "10.0.0.2"
    assert get_client_ip(None) is None


async def test_entry_records_actor_and_company(db, make_user, make_company):
    user = await make_user(role="manager")
    company = await make_company()

    entry = await log_activity(db, ActivityType.COMPANY_UPDATED, "Renamed company", user=user, company=company)
    await db.commit()

    assert entry is not None
    assert entry.user_email == "manager@example.com"
    assert entry.user_role == "manager"
    assert entry.company_name == "Acme Ltd"


async def test_failed_entry_does_not_break_callers_transaction(db):
    db.add(Company(name="Kept Ltd"))

    entry = await log_activity(db, ActivityType.COMPANY_CREATED, None)
    assert entry is None

    await db.commit()
    names = (await db.execute(select(Company.name))).scalars().all()
    assert names == ["Kept Ltd"]
    assert (await db.execute(select(ActivityLog))).scalars().all() == []


async def test_callers_own_errors_are_not_swallowed(db, make_user):
    await make_user(role="manager")
    db.add(User(name="Clash", email="manager@example.com", role="manager"))

    with pytest.raises(IntegrityError):
        await log_activity(db, ActivityType.USER_CREATED, "Created user")
    await db.rollback()
