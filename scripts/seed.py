"""
Seed script: creates the settings row, the built-in email templates, a demo
company hierarchy and one user per role.
Run from the project root: python -m scripts.seed
"""
import asyncio
import sys
import os
import uuid

# Ensure the project root is on sys.path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select, insert
from portal.database import AsyncSessionLocal
from portal.models.company import Company
from portal.models.email_template import EmailTemplate
from portal.models.user import User, user_companies
from portal.services.auth_service import hash_password
from portal.services.email_templates import DEFAULT_TEMPLATES
from portal.services.settings_service import get_portal_settings

# ---------- Fixed UUIDs ----------

COMPANY_HQ_ID = uuid.UUID("c0000000-0000-0000-0000-000000000001")
COMPANY_NORTH_ID = uuid.UUID("c0000000-0000-0000-0000-000000000002")
COMPANY_DEPOT_ID = uuid.UUID("c0000000-0000-0000-0000-000000000003")

USER_GLOBAL_ADMIN_ID = uuid.UUID("a0000000-0000-0000-0000-000000000001")
USER_ADMIN_ID = uuid.UUID("a0000000-0000-0000-0000-000000000002")
USER_MANAGER_ID = uuid.UUID("a0000000-0000-0000-0000-000000000003")
USER_CREDIT_SENIOR_ID = uuid.UUID("a0000000-0000-0000-0000-000000000004")
USER_CREDIT_CONTROLLER_ID = uuid.UUID("a0000000-0000-0000-0000-000000000005")
USER_EXTERNAL_ID = uuid.UUID("a0000000-0000-0000-0000-000000000006")

DEFAULT_PASSWORD = "PortalTest123!"


async def seed():
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(User).where(User.id == USER_GLOBAL_ADMIN_ID))
        if result.scalar_one_or_none():
            print("Seed data already exists. Skipping.")
            return

        hashed_pw = hash_password(DEFAULT_PASSWORD)

        # --- Settings ---
        await get_portal_settings(db)

        # --- Email templates ---
        for name, default in DEFAULT_TEMPLATES.items():
            db.add(EmailTemplate(
                name=name,
                subject=default["subject"],
                html_body=default["html"],
                text_body=default.get("text"),
                variables=default.get("variables", []),
                category=default.get("category", "notification"),
                is_active=True,
            ))

        # --- Companies ---
        companies = [
            Company(id=COMPANY_HQ_ID, name="Northwind Holdings", type="CORP", reference_no=1000, code="NWH"),
            Company(id=COMPANY_NORTH_ID, parent_id=COMPANY_HQ_ID, name="Northwind North", type="SUB",
                    reference_no=1001, code="NWN", send_invoice_email=True),
            Company(id=COMPANY_DEPOT_ID, parent_id=COMPANY_NORTH_ID, name="Northwind Leeds Depot", type="BRANCH",
                    reference_no=1002, code="NWL", send_invoice_email=True, send_email_as_summary=True),
        ]
        db.add_all(companies)
        await db.flush()

        # --- Users ---
        users = [
            User(id=USER_GLOBAL_ADMIN_ID, name="Global Admin", email="global.admin@portal.example.com",
                 role="global_admin", all_companies=True, send_import_summary_report=True),
            User(id=USER_ADMIN_ID, name="Portal Admin", email="admin@portal.example.com",
                 role="administrator", all_companies=True),
            User(id=USER_MANAGER_ID, name="Morgan Manager", email="manager@portal.example.com", role="manager"),
            User(id=USER_CREDIT_SENIOR_ID, name="Casey Senior", email="credit.senior@portal.example.com",
                 role="credit_senior"),
            User(id=USER_CREDIT_CONTROLLER_ID, name="Jordan Controller", email="credit.controller@portal.example.com",
                 role="credit_controller"),
            User(id=USER_EXTERNAL_ID, name="Riley Customer", email="customer@northwind.example.com",
                 role="external_user", send_invoice_email=True),
        ]
        for user in users:
            user.password_hash = hashed_pw
        db.add_all(users)
        await db.flush()

        await db.execute(insert(user_companies), [
            {"user_id": USER_MANAGER_ID, "company_id": COMPANY_NORTH_ID},
            {"user_id": USER_CREDIT_SENIOR_ID, "company_id": COMPANY_HQ_ID},
            {"user_id": USER_CREDIT_CONTROLLER_ID, "company_id": COMPANY_DEPOT_ID},
            {"user_id": USER_EXTERNAL_ID, "company_id": COMPANY_NORTH_ID},
        ])

        await db.commit()
        print("Seed data inserted successfully!")
        print(f"  Email templates: {len(DEFAULT_TEMPLATES)}")
        print(f"  Companies: {len(companies)}")
        print(f"  Users: {len(users)} (password: {DEFAULT_PASSWORD})")


if __name__ == "__main__":
    asyncio.run(seed())
