"""Builds absolute frontend/backend URLs used in emails and redirects."""

from typing import Optional
from urllib.parse import quote, urlparse

from portal.config import Settings, settings as _settings

DEV_FRONTEND_URL = "http://localhost:3000"
DEV_BACKEND_URL = "http://localhost:8000"

DOCUMENT_PATHS = {
    "invoice": "invoices",
    "credit_note": "credit-notes",
    "statement": "statements",
}


class UrlConfigError(RuntimeError):
    """Raised when a required URL setting is missing or malformed."""


def _validate(name: str, url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise UrlConfigError(
            f'{name} is not a valid URL: "{url}". '
            "Provide an absolute http(s) URL, e.g. https://portal.example.com"
        )
    return url.rstrip("/")


def get_frontend_url(config: Optional[Settings] = None) -> str:
    config = config or _settings
    url = config.FRONTEND_URL
    if not url:
        if config.ENVIRONMENT == "development":
            return DEV_FRONTEND_URL
        raise UrlConfigError(
            "FRONTEND_URL environment variable is required. "
            "Set it in your .env file, e.g. FRONTEND_URL=https://portal.example.com"
        )
    return _validate("FRONTEND_URL", url)


def get_backend_url(config: Optional[Settings] = None) -> str:
    config = config or _settings
    url = config.BACKEND_URL or config.API_URL
    if not url:
        if config.ENVIRONMENT == "development":
            return DEV_BACKEND_URL
        raise UrlConfigError(
            "BACKEND_URL or API_URL environment variable is required. "
            "Set it in your .env file, e.g. BACKEND_URL=https://api.portal.example.com"
        )
    return _validate("BACKEND_URL/API_URL", url)


def get_login_url(config: Optional[Settings] = None) -> str:
    return f"{get_frontend_url(config)}/login"


def get_reset_password_url(token: str, config: Optional[Settings] = None) -> str:
    return f"{get_frontend_url(config)}/reset-password?token={quote(token, safe='')}"


def get_email_change_validation_url(token: str, config: Optional[Settings] = None) -> str:
    return f"{get_frontend_url(config)}/validate-email-change?token={quote(token, safe='')}"


def get_document_url(document_type: str, document_id: str, config: Optional[Settings] = None) -> str:
    path = DOCUMENT_PATHS.get(document_type, "invoices")
    return f"{get_frontend_url(config)}/{path}/{document_id}/view"


def get_pending_registration_url(registration_id: str, config: Optional[Settings] = None) -> str:
    return f"{get_frontend_url(config)}/users/pending-accounts/{registration_id}"


def get_avatar_url(user_id: str, config: Optional[Settings] = None) -> str:
    return f"{get_backend_url(config)}/api/profile/avatar/{user_id}"
