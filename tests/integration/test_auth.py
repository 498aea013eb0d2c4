"""
Login, lockout and forced password change through the HTTP API
"""

from sqlalchemy import select

from portal.models.activity_log import ActivityLog
from portal.models.user import User

# default password set by the make_user fixture
TEST_PASSWORD = "Str0ng!Passw0rd"
NEW_PASSWORD = "An0ther!Passw0rd"


async def _login(client, email, password=TEST_PASSWORD):
    return await client.post("/api/auth/login", json={"email": email, "password": password})


async def test_login_returns_token_and_user(client, make_user):
    await make_user(role="credit_controller", email="cc@example.com")

    response = await _login(client, "CC@Example.com")

    assert response.status_code == 200
    data = response.json()
    assert data["token"]
    assert data["token_type"] == "Bearer"
    assert data["user"]["email"] == "cc@example.com"

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
    assert me.status_code == 200
    assert me.json()["role"] == "credit_controller"


async def test_unknown_email_is_logged_and_rejected(client, db):
    response = await _login(client, "nobody@example.com")

    assert response.status_code == 401
    body = response.json()
    assert body["error"]["code"] == "AUTH_INVALID_CREDENTIALS"
    assert body["message"] == "Invalid credentials"

    logs = (await db.execute(select(ActivityLog).where(ActivityLog.type == "login_failed"))).scalars().all()
    assert [log.user_email for log in logs] == ["nobody@example.com"]


async def test_wrong_password_counts_down_then_locks(client, make_user):
    await make_user(role="external_user")

    for remaining in (4, 3, 2, 1):
        response = await _login(client, "external_user@example.com", "wrong")
        assert response.status_code == 401
        assert response.json()["attempts_remaining"] == remaining

    locked = await _login(client, "external_user@example.com", "wrong")
    assert locked.status_code == 423
    assert locked.json()["error"]["code"] == "ACCOUNT_LOCKED"
    assert locked.json()["remaining_minutes"] == 30

    # the right password does not get through while locked
    still_locked = await _login(client, "external_user@example.com")
    assert still_locked.status_code == 423
    assert still_locked.json()["remaining_minutes"] == 30


async def test_notification_contact_has_no_portal_access(client, make_user):
    await make_user(role="notification_contact")
    response = await _login(client, "notification_contact@example.com")
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "PORTAL_ACCESS_DENIED"


async def test_forced_password_change_flow(client, db, make_user):
    user = await make_user(role="external_user", must_change_password=True)

    first = await _login(client, user.email)
    assert first.status_code == 200
    assert first.json()["requires_password_change"] is True
    assert first.json()["token"] is None
    session_token = first.json()["session_token"]

    weak = await client.post(
        "/api/auth/change-password", json={"new_password": "short", "session_token": session_token}
    )
    assert weak.status_code == 400
    assert weak.json()["error"]["code"] == "WEAK_PASSWORD"

    changed = await client.post(
        "/api/auth/change-password", json={"new_password": NEW_PASSWORD, "session_token": session_token}
    )
    assert changed.status_code == 200
    assert changed.json()["token"]

    await db.refresh(user)
    assert user.must_change_password is False
    assert (await _login(client, user.email, NEW_PASSWORD)).json()["token"]


async def test_forgot_password_does_not_reveal_accounts(client, db, make_user):
    user = await make_user(role="manager")

    known = await client.post("/api/auth/forgot-password", json={"email": user.email})
    unknown = await client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    await db.refresh(user)
    assert user.reset_password_token is not None


async def test_me_requires_token(client):
    response = await client.get("/api/auth/me")
    assert response.status_code == 401


async def test_deleted_user_token_is_rejected(client, db, make_user, headers_for):
    user = await make_user(role="manager")
    headers = headers_for(user)
    row = (await db.execute(select(User).where(User.id == user.id))).scalar_one()
    await db.delete(row)
    await db.commit()

    response = await client.get("/api/auth/me", headers=headers)
    assert response.status_code == 404
