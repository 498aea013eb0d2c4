"""
Own-profile endpoints: name and password changes, avatar upload and the
email change validation flow
"""

import io
from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlparse

from PIL import Image
from sqlalchemy import select

from portal.models.user import User
from portal.routes import profile as profile_routes
from portal.services.url_config import UrlConfigError


def _image_bytes(size=(300, 200), fmt="JPEG") -> bytes:
    out = io.BytesIO()
    Image.new("RGB", size, (200, 40, 40)).save(out, format=fmt)
    return out.getvalue()


async def test_update_name_strips_whitespace(client, make_user, headers_for):
    user = await make_user(role="credit_controller")

    response = await client.put("/api/profile", json={"name": "  Jo Park  "}, headers=headers_for(user))
    assert response.status_code == 200
    assert response.json()["name"] == "Jo Park"

    blank = await client.put("/api/profile", json={"name": "   "}, headers=headers_for(user))
    assert blank.status_code == 400
    assert blank.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_change_password_checks_current_password(client, make_user, headers_for):
    user = await make_user(role="external_user")
    response = await client.put(
        "/api/profile/password",
        json={"current_password": "not-it", "new_password": "An0ther!Passw0rd"},
        headers=headers_for(user),
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_CURRENT_PASSWORD"

    changed = await client.put(
        "/api/profile/password",
        json={"current_password": "Str0ng!Passw0rd", "new_password": "An0ther!Passw0rd"},
        headers=headers_for(user),
    )
    assert changed.status_code == 200
    login = await client.post(
        "/api/auth/login", json={"email": user.email, "password": "An0ther!Passw0rd"}
    )
    assert login.status_code == 200


async def test_avatar_is_resized_to_square_png(client, make_user, headers_for):
    user = await make_user(role="manager")

    uploaded = await client.post(
        "/api/profile/avatar",
        files={"avatar": ("me.jpg", _image_bytes(), "image/jpeg")},
        headers=headers_for(user),
    )
    assert uploaded.status_code == 200
    avatar_url = uploaded.json()["avatar_url"]
    assert avatar_url.endswith(f"/api/profile/avatar/{user.id}")

    served = await client.get(f"/api/profile/avatar/{user.id}", headers=headers_for(user))
    assert served.status_code == 200
    assert served.headers["content-type"] == "image/png"
    image = Image.open(io.BytesIO(served.content))
    assert image.size == (128, 128)
    assert image.format == "PNG"

    removed = await client.delete("/api/profile/avatar", headers=headers_for(user))
    assert removed.json()["avatar_url"] is None
    assert (await client.get(f"/api/profile/avatar/{user.id}", headers=headers_for(user))).status_code == 404


async def test_avatar_rejects_non_images(client, make_user, headers_for):
    user = await make_user(role="manager")

    wrong_type = await client.post(
        "/api/profile/avatar",
        files={"avatar": ("notes.txt", b"hello", "text/plain")},
        headers=headers_for(user),
    )
    assert wrong_type.status_code == 400
    assert wrong_type.json()["error"]["code"] == "INVALID_FILE_TYPE"

    corrupt = await client.post(
        "/api/profile/avatar",
        files={"avatar": ("fake.png", b"definitely not a png", "image/png")},
        headers=headers_for(user),
    )
    assert corrupt.status_code == 400
    assert corrupt.json()["error"]["code"] == "INVALID_IMAGE"


async def test_email_change_round_trip(client, db, make_user, headers_for, monkeypatch):
    user = await make_user(role="external_user", email="old.address@example.com")
    send = AsyncMock()
    monkeypatch.setattr(profile_routes, "send_templated_email", send)

    requested = await client.post(
        "/api/profile/email-change/request",
        json={"new_email": "New.Address@example.com"},
        headers=headers_for(user),
    )
    assert requested.status_code == 200

    _, template_name, recipient, data = send.await_args.args
    assert template_name == "email-change-validation"
    assert recipient == "new.address@example.com"
    token = parse_qs(urlparse(data["validation_url"]).query)["token"][0]

    bad = await client.post("/api/auth/validate-email-change", json={"token": "wrong"})
    assert bad.json()["error"]["code"] == "INVALID_EMAIL_CHANGE_TOKEN"

    validated = await client.post("/api/auth/validate-email-change", json={"token": token})
    assert validated.status_code == 200
    assert validated.json()["email"] == "new.address@example.com"

    row = (await db.execute(select(User).where(User.id == user.id))).scalar_one()
    await db.refresh(row)
    assert row.email == "new.address@example.com"
    assert row.pending_email is None
    assert row.email_change_token is None

    # the link is single use
    reused = await client.post("/api/auth/validate-email-change", json={"token": token})
    assert reused.status_code == 400


async def test_email_change_fails_when_link_cannot_be_built(client, db, make_user, headers_for, monkeypatch):
    user = await make_user(role="external_user")

    def _no_frontend(token):
        raise UrlConfigError("FRONTEND_URL environment variable is required")

    monkeypatch.setattr(profile_routes, "get_email_change_validation_url", _no_frontend)

    response = await client.post(
        "/api/profile/email-change/request",
        json={"new_email": "elsewhere@example.com"},
        headers=headers_for(user),
    )
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "EMAIL_CHANGE_UNAVAILABLE"

    row = (await db.execute(select(User).where(User.id == user.id))).scalar_one()
    await db.refresh(row)
    assert row.pending_email is None


async def test_email_change_rejects_address_in_use(client, make_user, headers_for):
    user = await make_user(role="external_user")
    await make_user(role="manager")

    response = await client.post(
        "/api/profile/email-change/request",
        json={"new_email": "manager@example.com"},
        headers=headers_for(user),
    )
    assert response.json()["error"]["code"] == "EMAIL_IN_USE"
