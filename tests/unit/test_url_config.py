"""Unit tests for portal/services/url_config.py"""

import pytest

from portal.config import Settings
from portal.services.url_config import (
    DEV_FRONTEND_URL,
    UrlConfigError,
    get_avatar_url,
    get_backend_url,
    get_document_url,
    get_frontend_url,
    get_reset_password_url,
)


def _config(**overrides):
    return Settings(_env_file=None, **overrides)


def test_trailing_slash_is_stripped():
    assert get_frontend_url(_config(FRONTEND_URL="https://portal.example.com/")) == "https://portal.example.com"


def test_missing_frontend_url_falls_back_in_development():
    assert get_frontend_url(_config(FRONTEND_URL=None, ENVIRONMENT="development")) == DEV_FRONTEND_URL


def test_missing_frontend_url_raises_outside_development():
    with pytest.raises(UrlConfigError):
        get_frontend_url(_config(FRONTEND_URL=None, ENVIRONMENT="production"))


@pytest.mark.parametrize("bad", ["portal.example.com", "ftp://portal.example.com", "https://"])
def test_invalid_urls_are_rejected(bad):
    with pytest.raises(UrlConfigError):
        get_frontend_url(_config(FRONTEND_URL=bad))


def test_backend_url_accepts_api_url_alias():
    config = _config(BACKEND_URL=None, API_URL="https://api.example.com", ENVIRONMENT="production")
    assert get_backend_url(config) == "https://api.example.com"


def test_avatar_url_points_at_backend():
    config = _config(BACKEND_URL="https://api.example.com/")
    assert get_avatar_url("42", config) == "https://api.example.com/api/profile/avatar/42"


def test_reset_url_encodes_token():
    config = _config(FRONTEND_URL="https://p.example.com")
    assert get_reset_password_url("a/b+c", config) == "https://p.example.com/reset-password?token=a%2Fb%2Bc"


def test_document_urls_by_type():
    config = _config(FRONTEND_URL="https://p.example.com")
    assert get_document_url("credit_note", "42", config) == "https://p.example.com/credit-notes/42/view"
    assert get_document_url("invoice", "7", config) == "https://p.example.com/invoices/7/view"
