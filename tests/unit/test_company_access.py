"""
Unit tests for portal/services/company_access.py and the hierarchy builder in
portal/routes/companies.py
"""

import uuid
from types import SimpleNamespace

from portal.routes.companies import build_company_tree
from portal.services.company_access import (
    expand_descendants,
    find_missing_company_ids,
    get_accessible_company_ids,
    set_user_companies,
)

A, B, C, D, E = (uuid.uuid4() for _ in range(5))
# A -> B -> C, A -> D, E standalone
PAIRS = [(A, None), (B, A), (C, B), (D, A), (E, None)]


def test_expand_descendants_walks_whole_subtree():
    assert expand_descendants([B], PAIRS) == {B, C}
    assert expand_descendants([A], PAIRS) == {A, B, C, D}
    assert expand_descendants([E, C], PAIRS) == {E, C}


def test_expand_descendants_survives_cycles():
    cyclic = [(A, B), (B, A)]
    assert expand_descendants([A], cyclic) == {A, B}


def test_build_company_tree_nests_children_and_keeps_orphans_as_roots():
    def company(cid, parent, name):
        return SimpleNamespace(id=cid, parent_id=parent, name=name, type=None, reference_no=None)

    companies = [company(A, None, "A"), company(B, A, "B"), company(C, B, "C"), company(D, uuid.uuid4(), "D")]
    roots = build_company_tree(companies)
    assert [r.name for r in roots] == ["A", "D"]
    assert roots[0].children[0].name == "B"
    assert roots[0].children[0].children[0].name == "C"


async def test_admins_and_all_companies_users_are_unrestricted(db, make_user):
    admin = await make_user(role="administrator")
    wide = await make_user(role="external_user", email="wide@x.test", all_companies=True)
    assert await get_accessible_company_ids(db, admin) is None
    assert await get_accessible_company_ids(db, wide) is None


async def test_assigned_company_includes_descendants(db, make_user, make_company):
    parent = await make_company(name="Parent")
    child = await make_company(name="Child", parent_id=parent.id)
    other = await make_company(name="Other")
    user = await make_user(role="external_user")

    assert await get_accessible_company_ids(db, user) == []

    await set_user_companies(db, user.id, [parent.id, parent.id])
    accessible = set(await get_accessible_company_ids(db, user))
    assert accessible == {parent.id, child.id}
    assert other.id not in accessible


async def test_find_missing_company_ids(db, make_company):
    company = await make_company()
    ghost = uuid.uuid4()
    assert await find_missing_company_ids(db, [company.id, ghost]) == [ghost]
