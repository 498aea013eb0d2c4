from datetime import datetime, timedelta, timezone
from typing import Optional
import hashlib
import re
import secrets

from jose import jwt, JWTError
from passlib.context import CryptContext
import structlog

from portal.config import settings

logger = structlog.get_logger()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# ---------- password helpers ----------

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(plain, hashed)


def validate_password_strength(password: str) -> list[str]:
    """Return a list of human-readable problems; empty when the password is acceptable."""
    problems = []
    if len(password or "") < 8:
        problems.append("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password or ""):
        problems.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password or ""):
        problems.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password or ""):
        problems.append("Password must contain at least one number")
    return problems


_TEMP_LETTERS = "ABCDEFGHJKLMNPQRSTUVWXYZ"  # no I or O
_TEMP_DIGITS = "23456789"
_TEMP_SPECIALS = "!@#$%"


def generate_temp_password() -> str:
    """Readable one-time password, e.g. ``TempKXPW4827!``."""
    letters = "".join(secrets.choice(_TEMP_LETTERS) for _ in range(4))
    digits = "".join(secrets.choice(_TEMP_DIGITS) for _ in range(4))
    return f"Temp{letters}{digits}{secrets.choice(_TEMP_SPECIALS)}"


# ---------- opaque tokens (password reset, email change) ----------

def generate_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ---------- JWT key loading ----------

_private_key: Optional[str] = None
_public_key: Optional[str] = None


def _signing_key() -> str:
    global _private_key
    if not settings.JWT_ALGORITHM.startswith("RS"):
        return settings.JWT_SECRET
    if _private_key is None:
        with open(settings.JWT_PRIVATE_KEY_PATH, "r") as f:
            _private_key = f.read()
    return _private_key


def _verification_key() -> str:
    global _public_key
    if not settings.JWT_ALGORITHM.startswith("RS"):
        return settings.JWT_SECRET
    if _public_key is None:
        with open(settings.JWT_PUBLIC_KEY_PATH, "r") as f:
            _public_key = f.read()
    return _public_key


# ---------- token generation ----------

def create_access_token(user_id: str, role: str, email: str) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "iat": now,
        "exp": now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        "type": "access",
    }
    return jwt.encode(claims, _signing_key(), algorithm=settings.JWT_ALGORITHM)


def create_session_token(user_id: str, email: str) -> str:
    """Short-lived token that only authorises a forced password change."""
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": now + timedelta(minutes=settings.SESSION_TOKEN_EXPIRE_MINUTES),
        "type": "password_change",
    }
    return jwt.encode(claims, _signing_key(), algorithm=settings.JWT_ALGORITHM)


# ---------- token verification ----------

def decode_token(token: str) -> dict:
    """Decode and verify a JWT token. Raises JWTError on failure."""
    return jwt.decode(token, _verification_key(), algorithms=[settings.JWT_ALGORITHM])


def verify_access_token(token: str) -> dict:
    """Verify an access token and return its claims."""
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise JWTError("Not an access token")
    return payload


def verify_session_token(token: str) -> dict:
    payload = decode_token(token)
    if payload.get("type") != "password_change":
        raise JWTError("Not a password change session token")
    return payload
