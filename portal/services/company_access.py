"""Which companies (and therefore which documents) a user may see."""

from collections import defaultdict, deque
from typing import Iterable, Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.middleware.authorization import ADMIN_ROLES
from portal.models.company import Company
from portal.models.user import User, user_companies


def expand_descendants(
    roots: Iterable[uuid.UUID], parent_pairs: Iterable[tuple[uuid.UUID, Optional[uuid.UUID]]]
) -> set[uuid.UUID]:
    """Return ``roots`` plus every company below them in the parent tree."""
    children: dict[uuid.UUID, list[uuid.UUID]] = defaultdict(list)
    for company_id, parent_id in parent_pairs:
        if parent_id is not None:
            children[parent_id].append(company_id)

    seen: set[uuid.UUID] = set()
    queue = deque(roots)
    while queue:
        current = queue.popleft()
        if current in seen:
            continue
        seen.add(current)
        queue.extend(children.get(current, ()))
    return seen


async def get_assigned_company_ids(db: AsyncSession, user_id: uuid.UUID) -> list[uuid.UUID]:
    result = await db.execute(
        select(user_companies.c.company_id).where(user_companies.c.user_id == user_id)
    )
    return list(result.scalars().all())


async def get_accessible_company_ids(db: AsyncSession, user: User) -> Optional[list[uuid.UUID]]:
    """
    None means unrestricted (admins, all-companies users). An empty list means
    the user has no company assignments and sees no documents.
    """
    if user.role in ADMIN_ROLES or user.all_companies:
        return None

    assigned = await get_assigned_company_ids(db, user.id)
    if not assigned:
        return []

    result = await db.execute(select(Company.id, Company.parent_id))
    return sorted(expand_descendants(assigned, result.all()), key=str)


async def set_user_companies(db: AsyncSession, user_id: uuid.UUID, company_ids: list[uuid.UUID]) -> None:
    """Replace a user's company assignments."""
    await db.execute(user_companies.delete().where(user_companies.c.user_id == user_id))
    if company_ids:
        await db.execute(
            user_companies.insert(),
            [{"user_id": user_id, "company_id": cid} for cid in dict.fromkeys(company_ids)],
        )
    await db.flush()


async def find_missing_company_ids(db: AsyncSession, company_ids: list[uuid.UUID]) -> list[uuid.UUID]:
    if not company_ids:
        return []
    result = await db.execute(select(Company.id).where(Company.id.in_(company_ids)))
    found = set(result.scalars().all())
    return [cid for cid in company_ids if cid not in found]
