from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.database import get_db
from portal.models.pending_registration import PendingRegistration
from portal.schemas.registration import RegistrationSubmit
from portal.services.activity_logger import ActivityType, get_client_ip, log_activity
from portal.services.email_templates import send_templated_email
from portal.services.lookups import bad_request
from portal.services.recipients import get_admin_emails
from portal.services.settings_service import get_portal_settings
from portal.services.url_config import UrlConfigError, get_pending_registration_url
from portal.services.user_service import email_in_use

logger = structlog.get_logger()
router = APIRouter()

REQUIRED_FIELDS = ["first_name", "last_name", "company_name", "email"]
OPTIONAL_FIELDS = ["account_number"]


async def pending_registration_exists(db: AsyncSession, email: str, exclude_id=None) -> bool:
    q = select(PendingRegistration.id).where(
        func.lower(PendingRegistration.email) == email.lower(),
        PendingRegistration.status == "pending",
    )
    if exclude_id is not None:
        q = q.where(PendingRegistration.id != exclude_id)
    return (await db.execute(q.limit(1))).scalar_one_or_none() is not None


@router.post("/submit", status_code=status.HTTP_201_CREATED)
async def submit_registration(
    body: RegistrationSubmit,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    """Public self-registration. An administrator must approve the request."""
    if await email_in_use(db, body.email):
        raise bad_request("An account with this email already exists", code="EMAIL_IN_USE")
    if await pending_registration_exists(db, body.email):
        raise bad_request(
            "A registration request for this email is already pending review",
            code="REGISTRATION_PENDING",
        )

    registration = PendingRegistration(
        first_name=body.first_name,
        last_name=body.last_name,
        company_name=body.company_name,
        account_number=body.account_number,
        email=body.email,
        custom_fields={},
        status="pending",
        extra_metadata={
            "ip_address": get_client_ip(request),
            "user_agent": request.headers.get("user-agent"),
        },
    )
    db.add(registration)
    await db.flush()

    try:
        review_url = get_pending_registration_url(str(registration.id))
    except UrlConfigError as exc:
        logger.error("registration_review_url_unavailable", error=str(exc))
        review_url = None

    admin_emails = await get_admin_emails(db)
    if admin_emails:
        await send_templated_email(
            db,
            "registration-request",
            admin_emails,
            {
                "first_name": registration.first_name,
                "last_name": registration.last_name,
                "email": registration.email,
                "registration_company_name": registration.company_name,
                "account_number": registration.account_number,
                "review_url": review_url,
            },
            background_tasks=background_tasks,
        )
    await send_templated_email(
        db,
        "registration-submitted",
        registration.email,
        {"first_name": registration.first_name, "last_name": registration.last_name},
        background_tasks=background_tasks,
    )
    await log_activity(
        db,
        ActivityType.USER_REGISTRATION_SUBMITTED,
        f"Registration submitted by {registration.full_name} ({registration.company_name})",
        user_email=registration.email,
        details={"registration_id": str(registration.id), "company_name": registration.company_name},
        request=request,
    )

    logger.info("registration_submitted", registration_id=str(registration.id))
    return {
        "message": "Registration submitted. You will receive an email once it has been reviewed.",
        "registration_id": str(registration.id),
    }


@router.get("/form-config")
async def get_form_config(db: AsyncSession = Depends(get_db)):
    portal_settings = await get_portal_settings(db)
    return {
        "required_fields": REQUIRED_FIELDS,
        "optional_fields": OPTIONAL_FIELDS,
        "company_name": portal_settings.company_name,
    }
