"""Unit tests for the role hierarchy helpers in portal/middleware/authorization.py"""

import pytest
from fastapi import HTTPException

from portal.middleware.authorization import (
    assert_can_manage,
    can_add_users,
    can_delete_users,
    can_manage_role,
    get_manageable_roles,
    is_valid_role,
)


def test_global_admin_manages_every_role_including_itself():
    assert can_manage_role("global_admin", "global_admin")
    assert get_manageable_roles("global_admin")[0] == "global_admin"


@pytest.mark.parametrize(
    "manager, target, allowed",
    [
        ("administrator", "manager", True),
        ("administrator", "administrator", False),
        ("administrator", "global_admin", False),
        ("manager", "credit_senior", True),
        ("manager", "manager", False),
        ("credit_controller", "external_user", True),
        ("external_user", "notification_contact", True),
        ("notification_contact", "external_user", False),
        ("bogus", "external_user", False),
        ("global_admin", "bogus", False),
    ],
)
def test_can_manage_role(manager, target, allowed):
    assert can_manage_role(manager, target) is allowed


def test_manageable_roles_for_manager():
    assert get_manageable_roles("manager") == [
        "credit_senior",
        "credit_controller",
        "external_user",
        "notification_contact",
    ]


def test_capability_helpers():
    assert can_add_users("manager")
    assert not can_add_users("credit_senior")
    assert can_delete_users("administrator")
    assert not can_delete_users("manager")
    assert is_valid_role("credit_controller")
    assert not is_valid_role("admin")


def test_assert_can_manage_raises_403():
    with pytest.raises(HTTPException) as exc:
        assert_can_manage({"role": "manager", "user_id": "x", "email": "m@x.test"}, "administrator")
    assert exc.value.status_code == 403
    assert exc.value.detail["error"]["code"] == "ROLE_NOT_MANAGEABLE"
