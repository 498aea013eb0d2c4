"""
User management within the role hierarchy, and the company tree
"""

from sqlalchemy import select

from portal.models.user import User


async def test_manager_creates_external_user_with_temp_password(client, db, make_user, make_company, headers_for):
    manager = await make_user(role="manager")
    company = await make_company()

    response = await client.post(
        "/api/users",
        json={
            "name": "Kim Taylor",
            "email": "Kim.Taylor@example.com",
            "role": "external_user",
            "company_ids": [str(company.id)],
        },
        headers=headers_for(manager),
    )

    assert response.status_code == 201
    data = response.json()
    assert data["email"] == "kim.taylor@example.com"
    assert data["must_change_password"] is True
    assert [c["id"] for c in data["companies"]] == [str(company.id)]


async def test_manager_cannot_create_administrator(client, make_user, headers_for):
    manager = await make_user(role="manager")
    response = await client.post(
        "/api/users",
        json={"name": "Pat", "email": "pat@example.com", "role": "administrator"},
        headers=headers_for(manager),
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "ROLE_NOT_MANAGEABLE"


async def test_unknown_company_ids_are_rejected(client, make_user, headers_for):
    admin = await make_user(role="administrator")
    response = await client.post(
        "/api/users",
        json={
            "name": "Lee",
            "email": "lee@example.com",
            "role": "external_user",
            "company_ids": ["2b1f7c1e-8f35-4c4c-9a43-0d5cf1d0e111"],
        },
        headers=headers_for(admin),
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_COMPANIES"


async def test_lock_and_unlock(client, db, make_user, headers_for):
    admin = await make_user(role="administrator")
    target = await make_user(role="credit_controller")

    locked = await client.post(
        f"/api/users/{target.id}/lock", json={"reason": "left the company"}, headers=headers_for(admin)
    )
    assert locked.status_code == 200
    assert locked.json()["is_locked"] is True

    login = await client.post(
        "/api/auth/login", json={"email": target.email, "password": "Str0ng!Passw0rd"}
    )
    assert login.status_code == 423

    unlocked = await client.post(f"/api/users/{target.id}/unlock", headers=headers_for(admin))
    assert unlocked.json()["is_locked"] is False

    self_lock = await client.post(f"/api/users/{admin.id}/lock", json={"reason": "x"}, headers=headers_for(admin))
    assert self_lock.json()["error"]["code"] == "CANNOT_LOCK_SELF"


async def test_manageable_roles_follow_hierarchy(client, make_user, headers_for):
    controller = await make_user(role="credit_controller")
    response = await client.get("/api/users/roles/manageable", headers=headers_for(controller))
    assert [r["value"] for r in response.json()] == ["external_user", "notification_contact"]


async def test_delete_user_is_soft(client, db, make_user, headers_for):
    admin = await make_user(role="administrator")
    target = await make_user(role="external_user")

    response = await client.delete(f"/api/users/{target.id}", headers=headers_for(admin))
    assert response.status_code == 200

    row = (await db.execute(select(User).where(User.id == target.id))).scalar_one()
    await db.refresh(row)
    assert row.deleted_at is not None
    assert (await client.get(f"/api/users/{target.id}", headers=headers_for(admin))).status_code == 404


async def test_company_hierarchy_and_scoping(client, db, make_user, make_company, headers_for):
    admin = await make_user(role="global_admin")
    headers = headers_for(admin)

    parent = (await client.post("/api/companies", json={"name": "Group", "reference_no": 500}, headers=headers)).json()
    child = (
        await client.post("/api/companies", json={"name": "Subsidiary", "parent_id": parent["id"]}, headers=headers)
    ).json()

    duplicate = await client.post("/api/companies", json={"name": "Again", "reference_no": 500}, headers=headers)
    assert duplicate.json()["error"]["code"] == "DUPLICATE_COMPANY"

    tree = (await client.get("/api/companies/hierarchy", headers=headers)).json()
    assert [node["name"] for node in tree] == ["Group"]
    assert tree[0]["children"][0]["id"] == child["id"]

    cycle = await client.put(f"/api/companies/{parent['id']}", json={"parent_id": child["id"]}, headers=headers)
    assert cycle.json()["error"]["code"] == "COMPANY_CYCLE"

    has_children = await client.delete(f"/api/companies/{parent['id']}", headers=headers)
    assert has_children.json()["error"]["code"] == "COMPANY_HAS_CHILDREN"

    assert (await client.delete(f"/api/companies/{child['id']}", headers=headers)).status_code == 200
