"""Shared id parsing and fetch-or-404 helpers for route handlers."""

from typing import Optional, Type, TypeVar
import uuid

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.models.user import User

M = TypeVar("M")


def not_found(entity: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"error": {"code": "NOT_FOUND", "message": f"{entity} not found"}},
    )


def bad_request(message: str, code: str = "BAD_REQUEST", **extra) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": {"code": code, "message": message}, **extra},
    )


def forbidden(message: str, code: str = "FORBIDDEN") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"error": {"code": code, "message": message}},
    )


def parse_uuid(value: Optional[str], entity: str = "Resource") -> uuid.UUID:
    """Ids that are not UUIDs cannot exist, so they are reported as 404."""
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        raise not_found(entity)


async def get_or_404(db: AsyncSession, model: Type[M], entity_id: str, entity: str, include_deleted: bool = False) -> M:
    obj = await db.get(model, parse_uuid(entity_id, entity))
    if obj is None or (not include_deleted and getattr(obj, "deleted_at", None) is not None):
        raise not_found(entity)
    return obj


async def get_current_user_row(db: AsyncSession, current_user: dict) -> User:
    result = await db.execute(
        select(User).where(
            User.id == parse_uuid(current_user["user_id"], "User"),
            User.deleted_at == None,  # noqa: E711
        )
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise not_found("User")
    return user
