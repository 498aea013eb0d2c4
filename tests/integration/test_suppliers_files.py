"""
Supplier records and the import file registry
"""

from sqlalchemy import select

from portal.models.activity_log import ActivityLog
from portal.models.invoice import Invoice
from portal.models.stored_file import StoredFile
from portal.models.supplier import Supplier
from portal.services.company_access import set_user_companies
from portal.services.storage import get_storage


async def test_supplier_crud_with_soft_delete(client, db, make_user, headers_for):
    admin = await make_user(role="global_admin")
    headers = headers_for(admin)

    created = await client.post(
        "/api/suppliers",
        json={"name": "Harbour Logistics", "code": "HRB", "email": "accounts@example.com"},
        headers=headers,
    )
    assert created.status_code == 201
    supplier_id = created.json()["id"]
    assert created.json()["is_active"] is True

    duplicate = await client.post("/api/suppliers", json={"name": "Other", "code": "HRB"}, headers=headers)
    assert duplicate.json()["error"]["code"] == "DUPLICATE_SUPPLIER_CODE"

    updated = await client.put(f"/api/suppliers/{supplier_id}", json={"phone": "0161 555 0100"}, headers=headers)
    assert updated.json()["phone"] == "0161 555 0100"

    searched = await client.get("/api/suppliers", params={"search": "harbour"}, headers=headers)
    assert [s["id"] for s in searched.json()["data"]] == [supplier_id]

    deleted = await client.delete(f"/api/suppliers/{supplier_id}", headers=headers)
    assert deleted.status_code == 200
    assert (await client.get(f"/api/suppliers/{supplier_id}", headers=headers)).status_code == 404
    assert (await client.get("/api/suppliers", headers=headers)).json()["pagination"]["total"] == 0

    row = (await db.execute(select(Supplier).where(Supplier.code == "HRB"))).scalar_one()
    assert row.deleted_at is not None
    assert row.is_active is False

    logged = (await db.execute(select(ActivityLog.type).order_by(ActivityLog.created_at))).scalars().all()
    assert logged == ["supplier_created", "supplier_updated", "supplier_deleted"]


async def test_staff_read_suppliers_but_only_global_admin_writes(client, make_user, headers_for):
    controller = await make_user(role="credit_controller")
    customer = await make_user(role="external_user")

    assert (await client.get("/api/suppliers", headers=headers_for(controller))).status_code == 200
    assert (await client.get("/api/suppliers", headers=headers_for(customer))).status_code == 403

    response = await client.post("/api/suppliers", json={"name": "Nope"}, headers=headers_for(controller))
    assert response.status_code == 403


async def test_file_registry_is_global_admin_only(client, db, make_user, headers_for):
    admin = await make_user(role="global_admin")
    administrator = await make_user(role="administrator")
    storage = get_storage()
    storage.save(b"%PDF-1.4 test", "imports/registry/one.pdf")
    stored = StoredFile(
        file_name="1000_INV-1.pdf",
        file_path="imports/registry/one.pdf",
        file_type="invoice",
        status="parsed",
        import_id="registry",
    )
    db.add(stored)
    await db.commit()

    assert (await client.get("/api/files", headers=headers_for(administrator))).status_code == 403
    assert (await client.get(f"/api/files/{stored.id}", headers=headers_for(administrator))).status_code == 403

    listed = await client.get("/api/files", params={"import_id": "registry"}, headers=headers_for(admin))
    assert [f["file_name"] for f in listed.json()["data"]] == ["1000_INV-1.pdf"]

    stats = await client.get("/api/files/stats/summary", headers=headers_for(admin))
    assert stats.json()["by_status"]["parsed"] == 1
    assert stats.json()["total"] == 1

    deleted = await client.delete(f"/api/files/{stored.id}", headers=headers_for(admin))
    assert deleted.status_code == 200
    assert not storage.exists("imports/registry/one.pdf")
    assert (await client.get(f"/api/files/{stored.id}", headers=headers_for(admin))).status_code == 404


async def test_document_download_respects_company_scope(client, db, make_user, make_company, headers_for):
    admin = await make_user(role="global_admin")
    own = await make_company(name="Own Co")
    other = await make_company(name="Other Co")
    customer = await make_user(role="external_user")
    await set_user_companies(db, customer.id, [own.id])
    await db.commit()

    created = await client.post(
        "/api/invoices", json={"invoice_number": "INV-DL", "company_id": str(other.id)}, headers=headers_for(admin)
    )
    invoice_id = created.json()["id"]
    get_storage().save(b"%PDF-1.4 invoice", "documents/inv-dl.pdf")
    row = (await db.execute(select(Invoice).where(Invoice.invoice_number == "INV-DL"))).scalar_one()
    row.file_url = "documents/inv-dl.pdf"
    await db.commit()

    denied = await client.get(f"/api/invoices/{invoice_id}/download", headers=headers_for(customer))
    assert denied.status_code == 403
    assert denied.json()["error"]["code"] == "DOCUMENT_ACCESS_DENIED"

    allowed = await client.get(f"/api/invoices/{invoice_id}/download", headers=headers_for(admin))
    assert allowed.status_code == 200
    assert allowed.content == b"%PDF-1.4 invoice"
