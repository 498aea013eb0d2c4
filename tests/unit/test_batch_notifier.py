"""
Unit tests for portal/services/batch_notifier.py

Batch tracking (register, complete, force, expire) and the notification fan-out
that runs once the last file of an import reports back.
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import insert, select

from portal.models.activity_log import ActivityLog
from portal.models.user import user_companies
from portal.services import batch_notifier
from portal.services.batch_notifier import (
    BatchTracker,
    JobResult,
    format_processing_time,
    send_batch_notifications,
    source_label,
)


# ---------------------------------------------------------------------------
# BatchTracker
# ---------------------------------------------------------------------------


def test_batch_is_returned_only_when_last_file_reports():
    tracker = BatchTracker()
    tracker.register_batch("imp-1", 2)
    assert tracker.record_job_completion("imp-1", JobResult(success=True)) is None
    assert tracker.get_batch_status("imp-1")["progress"] == 50

    batch = tracker.record_job_completion("imp-1", JobResult(success=False, error="bad"))
    assert batch is not None
    assert batch.summary()["failed"] == 1
    assert tracker.get_batch_status("imp-1") is None


def test_unknown_batch_is_ignored():
    tracker = BatchTracker()
    assert tracker.record_job_completion("missing", JobResult(success=True)) is None


def test_summary_splits_allocated_and_unallocated():
    tracker = BatchTracker()
    tracker.register_batch("imp-2", 3)
    tracker.record_job_completion("imp-2", JobResult(success=True, company_id="c1"))
    tracker.record_job_completion("imp-2", JobResult(success=True))
    batch = tracker.record_job_completion("imp-2", JobResult(success=False))
    summary = batch.summary()
    assert (summary["successful"], summary["allocated"], summary["unallocated"]) == (2, 1, 1)


def test_force_complete_removes_batch():
    tracker = BatchTracker()
    tracker.register_batch("imp-3", 5)
    batch = tracker.force_complete("imp-3")
    assert batch.completed == 0
    assert tracker.get_active_batches() == []
    assert tracker.force_complete("imp-3") is None


def test_sweep_expires_old_batches():
    tracker = BatchTracker(ttl=timedelta(hours=1))
    batch = tracker.register_batch("imp-4", 1)
    assert tracker.sweep(batch.started_at + timedelta(minutes=30)) == 0
    assert tracker.sweep(batch.started_at + timedelta(minutes=61)) == 1


@pytest.mark.parametrize(
    "elapsed, expected",
    [
        (timedelta(milliseconds=250), "250ms"),
        (timedelta(seconds=12.34), "12.3s"),
        (timedelta(minutes=3, seconds=5), "3m 5s"),
    ],
)
def test_format_processing_time(elapsed, expected):
    assert format_processing_time(elapsed) == expected


def test_source_label_maps_known_sources():
    assert source_label("manual-upload") == "Manual Upload"
    assert source_label("api") == "api"


# ---------------------------------------------------------------------------
# send_batch_notifications
# ---------------------------------------------------------------------------


@pytest.fixture
def sent(monkeypatch):
    mock = AsyncMock(return_value=True)
    monkeypatch.setattr(batch_notifier, "send_templated_email", mock)
    return mock


def _batch(results):
    tracker = BatchTracker()
    tracker.register_batch("imp-9", len(results), source="manual-upload")
    batch = None
    for r in results:
        batch = tracker.record_job_completion("imp-9", r)
    return batch


async def test_individual_and_summary_recipients(db, make_company, make_user, sent):
    company = await make_company(reference_no=100)
    single = await make_user(role="external_user", email="single@x.test", send_invoice_email=True)
    digest = await make_user(
        role="external_user", email="digest@x.test", send_invoice_email=True, send_email_as_summary=True
    )
    await make_user(role="external_user", email="optout@x.test", send_invoice_email=False)
    await db.execute(insert(user_companies), [
        {"user_id": single.id, "company_id": company.id},
        {"user_id": digest.id, "company_id": company.id},
    ])

    batch = _batch([
        JobResult(success=True, company_id=str(company.id), document_id="d1", document_number="INV-1"),
        JobResult(success=True, company_id=str(company.id), document_id="d2", document_number="INV-2"),
    ])
    outcome = await send_batch_notifications(db, batch, now=batch.started_at + timedelta(seconds=2))

    templates = [(c.args[1], c.args[2]) for c in sent.await_args_list]
    assert templates.count(("document-notification", "single@x.test")) == 2
    assert templates.count(("document-summary", "digest@x.test")) == 1
    assert all(to != "optout@x.test" for _, to in templates)
    assert outcome["customer_emails"] == 3


async def test_edi_companies_are_skipped(db, make_company, make_user, sent):
    company = await make_company(reference_no=200, edi=True)
    user = await make_user(role="external_user", email="edi@x.test", send_invoice_email=True)
    await db.execute(insert(user_companies), [{"user_id": user.id, "company_id": company.id}])

    batch = _batch([JobResult(success=True, company_id=str(company.id), document_number="INV-9")])
    outcome = await send_batch_notifications(db, batch)

    assert outcome["skipped_edi"] == 1
    assert outcome["customer_emails"] == 0


async def test_admin_summary_and_activity_log(db, make_user, sent):
    await make_user(role="global_admin", email="ga@x.test", send_import_summary_report=True)
    await make_user(role="administrator", email="quiet@x.test", send_import_summary_report=False)

    batch = _batch([JobResult(success=False, file_name="bad.pdf", error="Duplicate file")])
    await send_batch_notifications(db, batch, now=datetime.utcnow())

    summary_calls = [c for c in sent.await_args_list if c.args[1] == "import-summary-report"]
    assert len(summary_calls) == 1
    assert summary_calls[0].args[2] == ["ga@x.test"]
    assert summary_calls[0].args[3]["failures"] == [{"file_name": "bad.pdf", "error": "Duplicate file"}]

    logs = (await db.execute(select(ActivityLog).where(ActivityLog.type == "import_batch_complete"))).scalars().all()
    assert len(logs) == 1
