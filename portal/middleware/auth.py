from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
import structlog

from portal.services.auth_service import verify_access_token

logger = structlog.get_logger()

security = HTTPBearer(auto_error=False)


def _unauthorized(message: str = "Invalid or expired token") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "error": {
                "code": "AUTH_TOKEN_INVALID",
                "message": message,
            }
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """FastAPI dependency: extract and verify JWT, return user claims dict."""
    if credentials is None:
        raise _unauthorized("Authentication required")
    try:
        payload = verify_access_token(credentials.credentials)
        return {
            "user_id": payload["sub"],
            "role": payload["role"],
            "email": payload["email"],
        }
    except (JWTError, KeyError) as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise _unauthorized()


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict | None:
    """Like get_current_user, but returns None when no bearer token was sent."""
    if credentials is None:
        return None
    return await get_current_user(credentials)
