"""
Activity log listing, clearing and deletion rules
"""

from datetime import datetime

from sqlalchemy import func, select

from portal.models.activity_log import ActivityLog


async def _seed_logs(db, *types):
    rows = [
        ActivityLog(type=t, action=f"{t} happened", user_email="someone@example.com", created_at=datetime.utcnow())
        for t in types
    ]
    db.add_all(rows)
    await db.commit()
    return rows


async def _count(db, **filters):
    q = select(func.count(ActivityLog.id))
    for key, value in filters.items():
        q = q.where(getattr(ActivityLog, key) == value)
    return (await db.execute(q)).scalar()


async def test_list_filters_by_type_and_search(client, db, make_user, headers_for):
    staff = await make_user(role="credit_controller")
    await _seed_logs(db, "login", "login", "invoice_viewed")

    by_type = await client.get("/api/activity-logs", params={"type": "login"}, headers=headers_for(staff))
    assert by_type.status_code == 200
    assert by_type.json()["pagination"]["total"] == 2

    by_search = await client.get("/api/activity-logs", params={"search": "VIEWED"}, headers=headers_for(staff))
    assert [log["type"] for log in by_search.json()["data"]] == ["invoice_viewed"]


async def test_external_users_cannot_read_logs(client, make_user, headers_for):
    customer = await make_user(role="external_user")
    response = await client.get("/api/activity-logs", headers=headers_for(customer))
    assert response.status_code == 403


async def test_clear_keeps_earlier_clear_records(client, db, make_user, headers_for):
    admin = await make_user(role="administrator")
    await _seed_logs(db, "login", "logout", "logs_cleared")

    response = await client.request(
        "DELETE", "/api/activity-logs/clear", json={"reason": "quarterly tidy"}, headers=headers_for(admin)
    )

    assert response.status_code == 200
    assert response.json()["deleted_count"] == 2
    assert await _count(db) == 2
    assert await _count(db, type="logs_cleared") == 2

    latest = (
        await db.execute(select(ActivityLog).order_by(ActivityLog.created_at.desc()).limit(1))
    ).scalar_one()
    assert latest.details["is_clear_log"] is True
    assert latest.details["reason"] == "quarterly tidy"


async def test_delete_single_log_is_recorded_and_clear_logs_are_protected(client, db, make_user, headers_for):
    admin = await make_user(role="global_admin")
    login, cleared = await _seed_logs(db, "login", "logs_cleared")

    protected = await client.request(
        "DELETE", f"/api/activity-logs/{cleared.id}", json={"reason": "oops"}, headers=headers_for(admin)
    )
    assert protected.status_code == 400
    assert protected.json()["error"]["code"] == "CLEAR_LOG_PROTECTED"

    deleted = await client.request(
        "DELETE", f"/api/activity-logs/{login.id}", json={"reason": "test entry"}, headers=headers_for(admin)
    )
    assert deleted.status_code == 200
    assert await _count(db, type="login") == 0
    assert await _count(db, type="logs_cleared") == 2


async def test_only_global_admin_deletes_single_logs(client, db, make_user, headers_for):
    admin = await make_user(role="administrator")
    (log,) = await _seed_logs(db, "login")
    response = await client.request(
        "DELETE", f"/api/activity-logs/{log.id}", json={"reason": "x"}, headers=headers_for(admin)
    )
    assert response.status_code == 403


async def test_purge_all_requires_confirmation_text(client, db, make_user, headers_for):
    admin = await make_user(role="global_admin")
    await _seed_logs(db, "login", "logs_cleared")

    refused = await client.request(
        "DELETE",
        "/api/activity-logs/purge-all",
        json={"confirm": "purge", "reason": "fresh start"},
        headers=headers_for(admin),
    )
    assert refused.status_code == 400
    assert refused.json()["error"]["code"] == "CONFIRMATION_REQUIRED"
    assert await _count(db) == 2

    purged = await client.request(
        "DELETE",
        "/api/activity-logs/purge-all",
        json={"confirm": "PURGE ALL LOGS", "reason": "fresh start"},
        headers=headers_for(admin),
    )
    assert purged.status_code == 200
    assert purged.json()["deleted_count"] == 2
    assert await _count(db) == 0


async def test_export_returns_csv(client, db, make_user, headers_for):
    staff = await make_user(role="manager")
    await _seed_logs(db, "login")

    response = await client.get("/api/activity-logs/export", headers=headers_for(staff))

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert len(lines) == 2
    assert "login happened" in lines[1]


async def test_stats_counts_by_type(client, db, make_user, headers_for):
    staff = await make_user(role="manager")
    await _seed_logs(db, "login", "login", "logout")

    stats = (await client.get("/api/activity-logs/stats", headers=headers_for(staff))).json()
    assert stats["total"] == 3
    assert stats["by_type"] == {"login": 2, "logout": 1}
    assert stats["by_role"] == {"unknown": 3}
