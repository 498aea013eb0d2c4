"""
Invoice and credit note endpoints: company scoping, tracking, deletion and
bulk PDF import
"""

from sqlalchemy import select

from portal.models.invoice import Invoice
from portal.models.stored_file import StoredFile
from portal.services.company_access import set_user_companies
from portal.services.settings_service import get_portal_settings


async def _create_invoice(client, headers, company, number="INV-100", **fields):
    response = await client.post(
        "/api/invoices",
        json={"invoice_number": number, "company_id": str(company.id), "amount": "125.50", **fields},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


async def test_create_and_duplicate_number(client, make_user, make_company, headers_for):
    admin = await make_user(role="administrator")
    company = await make_company()

    created = await _create_invoice(client, headers_for(admin), company)
    assert created["number"] == "INV-100"
    assert created["document_type"] == "invoice"
    assert created["company_name"] == "Acme Ltd"
    assert created["amount"] == "125.50"
    assert created["document_status"] == "ready"

    duplicate = await client.post(
        "/api/invoices",
        json={"invoice_number": "INV-100", "company_id": str(company.id)},
        headers=headers_for(admin),
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["error"]["code"] == "DUPLICATE_NUMBER"


async def test_external_user_only_sees_assigned_companies(client, db, make_user, make_company, headers_for):
    admin = await make_user(role="global_admin")
    parent = await make_company(name="Parent Group")
    branch = await make_company(name="Branch", parent_id=parent.id)
    other = await make_company(name="Other Co")
    customer = await make_user(role="external_user")
    await set_user_companies(db, customer.id, [parent.id])
    await db.commit()

    await _create_invoice(client, headers_for(admin), branch, "INV-BRANCH")
    foreign = await _create_invoice(client, headers_for(admin), other, "INV-OTHER")

    listed = await client.get("/api/invoices", headers=headers_for(customer))
    assert listed.status_code == 200
    assert [d["number"] for d in listed.json()["data"]] == ["INV-BRANCH"]
    assert listed.json()["pagination"]["total"] == 1

    denied = await client.get(f"/api/invoices/{foreign['id']}", headers=headers_for(customer))
    assert denied.status_code == 403
    assert denied.json()["error"]["code"] == "DOCUMENT_ACCESS_DENIED"

    everything = await client.get("/api/invoices", headers=headers_for(admin))
    assert everything.json()["pagination"]["total"] == 2


async def test_user_without_companies_sees_nothing(client, make_user, make_company, headers_for):
    admin = await make_user(role="global_admin")
    await _create_invoice(client, headers_for(admin), await make_company())
    loner = await make_user(role="external_user")

    response = await client.get("/api/invoices", headers=headers_for(loner))
    assert response.status_code == 200
    assert response.json()["data"] == []


async def test_external_users_cannot_create(client, make_user, make_company, headers_for):
    customer = await make_user(role="external_user")
    response = await client.post(
        "/api/invoices",
        json={"invoice_number": "INV-1", "company_id": str((await make_company()).id)},
        headers=headers_for(customer),
    )
    assert response.status_code == 403


async def test_view_marks_document_viewed(client, make_user, make_company, headers_for):
    admin = await make_user(role="global_admin")
    company = await make_company()
    customer = await make_user(role="external_user", all_companies=True)
    invoice = await _create_invoice(client, headers_for(admin), company)

    viewed = await client.post(f"/api/invoices/{invoice['id']}/view", headers=headers_for(customer))
    assert viewed.status_code == 200
    assert viewed.json()["document_status"] == "viewed"
    assert viewed.json()["viewed_at"] is not None


async def test_update_records_edit_history(client, make_user, make_company, headers_for):
    admin = await make_user(role="global_admin")
    invoice = await _create_invoice(client, headers_for(admin), await make_company())

    response = await client.put(
        f"/api/invoices/{invoice['id']}",
        json={"notes": "Reissued", "edit_reason": "customer request"},
        headers=headers_for(admin),
    )
    assert response.status_code == 200
    history = response.json()["edit_history"]
    assert len(history) == 1
    assert history[0]["changes"]["notes"] == {"from": None, "to": "Reissued"}


async def test_edits_respect_company_scope(client, db, make_user, make_company, headers_for):
    admin = await make_user(role="global_admin")
    own = await make_company(name="Own Co")
    foreign_company = await make_company(name="Foreign Co")
    foreign = await _create_invoice(client, headers_for(admin), foreign_company, "INV-FOREIGN")
    mine = await _create_invoice(client, headers_for(admin), own, "INV-OWN")
    manager = await make_user(role="manager")
    await set_user_companies(db, manager.id, [own.id])
    await db.commit()

    edit = await client.put(
        f"/api/invoices/{foreign['id']}", json={"notes": "hijacked"}, headers=headers_for(manager)
    )
    assert edit.status_code == 403
    assert edit.json()["error"]["code"] == "DOCUMENT_ACCESS_DENIED"

    move = await client.put(
        f"/api/invoices/{mine['id']}", json={"company_id": str(foreign_company.id)}, headers=headers_for(manager)
    )
    assert move.status_code == 403

    row = (await db.execute(select(Invoice).where(Invoice.invoice_number == "INV-FOREIGN"))).scalar_one()
    await db.refresh(row)
    assert row.notes is None


async def test_document_status_change_can_be_restricted(client, db, make_user, make_company, headers_for):
    admin = await make_user(role="global_admin")
    invoice = await _create_invoice(client, headers_for(admin), await make_company())
    senior = await make_user(role="credit_senior", all_companies=True)
    portal_settings = await get_portal_settings(db)
    portal_settings.only_external_users_change_document_status = True
    await db.commit()

    denied = await client.put(
        f"/api/invoices/{invoice['id']}", json={"document_status": "review"}, headers=headers_for(senior)
    )
    assert denied.status_code == 403
    assert denied.json()["error"]["code"] == "DOCUMENT_STATUS_RESTRICTED"

    # other fields stay editable
    notes = await client.put(
        f"/api/invoices/{invoice['id']}", json={"notes": "checked", "document_status": "ready"},
        headers=headers_for(senior),
    )
    assert notes.status_code == 200

    allowed = await client.put(
        f"/api/invoices/{invoice['id']}", json={"document_status": "review"}, headers=headers_for(admin)
    )
    assert allowed.json()["document_status"] == "review"


async def test_update_clears_optional_fields_only(client, make_user, make_company, headers_for):
    admin = await make_user(role="global_admin")
    invoice = await _create_invoice(
        client, headers_for(admin), await make_company(), notes="Pay by BACS", due_date="2026-01-31"
    )

    response = await client.put(
        f"/api/invoices/{invoice['id']}",
        json={"notes": None, "due_date": None, "amount": None, "invoice_number": None},
        headers=headers_for(admin),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["notes"] is None
    assert data["due_date"] is None
    assert data["amount"] == "125.50"
    assert data["number"] == "INV-100"


async def test_delete_requires_reason_and_hides_document(client, make_user, make_company, headers_for):
    admin = await make_user(role="administrator")
    invoice = await _create_invoice(client, headers_for(admin), await make_company())
    url = f"/api/invoices/{invoice['id']}"

    missing_reason = await client.request("DELETE", url, json={"reason": ""}, headers=headers_for(admin))
    assert missing_reason.status_code == 400

    deleted = await client.request("DELETE", url, json={"reason": "Raised in error"}, headers=headers_for(admin))
    assert deleted.status_code == 200
    assert (await client.get(url, headers=headers_for(admin))).status_code == 404


async def test_import_allocates_by_reference_number(client, db, make_user, make_company, headers_for):
    uploader = await make_user(role="credit_controller")
    company = await make_company(name="Northern Foods", reference_no=1000)
    customer = await make_user(role="external_user")
    await set_user_companies(db, customer.id, [company.id])
    await db.commit()

    response = await client.post(
        "/api/invoices/import",
        files=[
            ("files", ("1000_INV-7001.pdf", b"%PDF-1.4 first", "application/pdf")),
            ("files", ("4242_INV-7002.pdf", b"%PDF-1.4 second", "application/pdf")),
            ("files", ("scan.pdf", b"%PDF-1.4 third", "application/pdf")),
        ],
        headers=headers_for(uploader),
    )
    assert response.status_code == 200
    import_id = response.json()["import_id"]
    assert response.json()["total_files"] == 3

    stored = await db.execute(select(StoredFile).where(StoredFile.import_id == import_id))
    statuses = {f.file_name: f.status for f in stored.scalars().all()}
    assert statuses == {
        "1000_INV-7001.pdf": "parsed",
        "4242_INV-7002.pdf": "unallocated",
        "scan.pdf": "unallocated",
    }

    invoice = (await db.execute(select(Invoice).where(Invoice.invoice_number == "INV-7001"))).scalar_one()
    assert invoice.company_id == company.id

    download = await client.get(f"/api/invoices/{invoice.id}/download", headers=headers_for(customer))
    assert download.status_code == 200
    assert download.content == b"%PDF-1.4 first"
    assert download.headers["content-type"] == "application/pdf"

    await db.refresh(invoice)
    assert invoice.document_status == "downloaded"


async def test_import_rejects_non_pdf(client, make_user, headers_for):
    uploader = await make_user(role="credit_senior")
    response = await client.post(
        "/api/invoices/import",
        files=[("files", ("notes.txt", b"hello", "text/plain"))],
        headers=headers_for(uploader),
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_FILE_TYPE"
    assert response.json()["rejected_files"] == ["notes.txt"]


async def test_credit_notes_share_the_document_endpoints(client, make_user, make_company, headers_for):
    admin = await make_user(role="global_admin")
    company = await make_company()

    response = await client.post(
        "/api/credit-notes",
        json={"credit_note_number": "CN-9", "company_id": str(company.id), "reason": "Damaged goods"},
        headers=headers_for(admin),
    )
    assert response.status_code == 201
    assert response.json()["document_type"] == "credit_note"
    assert response.json()["reason"] == "Damaged goods"

    listed = await client.get("/api/credit-notes", headers=headers_for(admin))
    assert [d["number"] for d in listed.json()["data"]] == ["CN-9"]
