from typing import Optional
import uuid

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.database import get_db
from portal.middleware.auth import get_current_user
from portal.services.company_access import get_accessible_company_ids
from portal.services.lookups import get_current_user_row


async def get_accessible_companies(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Optional[list[uuid.UUID]]:
    """FastAPI dependency: company ids visible to the caller (None = all)."""
    user = await get_current_user_row(db, current_user)
    return await get_accessible_company_ids(db, user)


def assert_company_access(company_ids: Optional[list[uuid.UUID]], company_id: Optional[uuid.UUID]):
    if company_ids is None:
        return
    if company_id is None or company_id not in company_ids:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": {
                    "code": "DOCUMENT_ACCESS_DENIED",
                    "message": "Access denied. You do not have access to this company's documents.",
                }
            },
        )
