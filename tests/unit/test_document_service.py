"""
Unit tests for portal/services/document_service.py and the import file-name
convention in portal/services/document_import.py
"""

from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from portal.services.document_import import parse_import_filename
from portal.services.document_service import (
    apply_edits,
    can_change_document_status,
    mark_downloaded,
    mark_viewed,
    soft_delete,
)

NOW = datetime(2026, 3, 1, 12, 0, 0)
EDITOR = "0b6f3a52-5a4e-4d8f-9a43-6a1d2c3b4e5f"


def _settings(only_external=False):
    return SimpleNamespace(only_external_users_change_document_status=only_external)


def _doc(**fields):
    defaults = dict(
        document_status="ready",
        viewed_at=None,
        downloaded_at=None,
        amount=Decimal("10.00"),
        notes=None,
        edit_history=[],
        edited_by_id=None,
        edit_reason=None,
        deleted_at=None,
        deleted_by_id=None,
        deletion_reason=None,
    )
    defaults.update(fields)
    return SimpleNamespace(**defaults)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("10042_INV-0001.pdf", (10042, "INV-0001")),
        ("7-CN 55.PDF", (7, "CN 55")),
        ("  12 ABC.pdf ", (12, "ABC")),
        ("INV-0001.pdf", None),
        ("10042_INV-0001.txt", None),
        ("", None),
    ],
)
def test_parse_import_filename(name, expected):
    assert parse_import_filename(name) == expected


def test_status_restriction_limits_tracking_to_external_users():
    assert can_change_document_status("manager", _settings(only_external=False))
    assert not can_change_document_status("manager", _settings(only_external=True))
    assert can_change_document_status("external_user", _settings(only_external=True))
    assert can_change_document_status("global_admin", _settings(only_external=True))


def test_view_then_download_progression():
    doc = _doc()
    assert mark_viewed(doc, "external_user", _settings(), NOW)
    assert doc.document_status == "viewed"
    assert doc.viewed_at == NOW

    assert mark_downloaded(doc, "external_user", _settings(), NOW)
    assert doc.document_status == "downloaded"
    # viewing a downloaded document never moves it backwards
    assert not mark_viewed(doc, "external_user", _settings(), NOW)
    assert doc.document_status == "downloaded"


def test_download_without_view_sets_viewed_at():
    doc = _doc()
    mark_downloaded(doc, "external_user", _settings(), NOW)
    assert doc.viewed_at == NOW


def test_repeat_download_keeps_first_timestamp():
    doc = _doc()
    mark_downloaded(doc, "external_user", _settings(), NOW)
    later = datetime(2026, 3, 2, 9, 30, 0)
    assert not mark_downloaded(doc, "external_user", _settings(), later)
    assert doc.downloaded_at == NOW


def test_restricted_role_does_not_change_status():
    doc = _doc()
    assert not mark_viewed(doc, "credit_controller", _settings(only_external=True), NOW)
    assert doc.document_status == "ready"
    assert doc.viewed_at is None


def test_apply_edits_records_only_real_changes():
    doc = _doc()
    changes = apply_edits(doc, {"amount": Decimal("10.00"), "notes": "Late"}, EDITOR, "typo", NOW)
    assert changes == {"notes": {"from": None, "to": "Late"}}
    assert doc.edit_reason == "typo"
    assert doc.edit_history[-1]["changes"] == changes
    assert doc.edit_history[-1]["edited_at"] == NOW.isoformat()


def test_apply_edits_with_no_changes_leaves_history_alone():
    doc = _doc()
    assert apply_edits(doc, {"amount": Decimal("10.00")}, EDITOR, None, NOW) == {}
    assert doc.edit_history == []


def test_soft_delete_requires_reason():
    doc = _doc()
    with pytest.raises(HTTPException) as exc:
        soft_delete(doc, EDITOR, "   ")
    assert exc.value.status_code == 400
    soft_delete(doc, EDITOR, " duplicate ", NOW)
    assert doc.deleted_at == NOW
    assert doc.deletion_reason == "duplicate"
