from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.database import get_db
from portal.middleware.auth import get_current_user
from portal.middleware.authorization import INTERNAL_ROLES, require_roles
from portal.models.email_template import EmailTemplate
from portal.schemas.common import MessageResponse
from portal.schemas.email_template import (
    EmailTemplateCreate,
    EmailTemplateResponse,
    EmailTemplateUpdate,
    TemplatePreviewRequest,
    TemplatePreviewResponse,
    TemplateTestRequest,
)
from portal.services.activity_logger import ActivityType, log_activity
from portal.services.email_service import send_email
from portal.services.email_templates import (
    DEFAULT_TEMPLATES,
    TemplateNotFoundError,
    render_email_template,
)
from portal.services.lookups import bad_request, get_or_404, not_found

logger = structlog.get_logger()
router = APIRouter()

STAFF = require_roles(*INTERNAL_ROLES)


def _row_to_response(row: EmailTemplate) -> EmailTemplateResponse:
    return EmailTemplateResponse(
        id=str(row.id),
        name=row.name,
        subject=row.subject,
        html_body=row.html_body,
        text_body=row.text_body,
        description=row.description,
        variables=row.variables or [],
        is_active=bool(row.is_active),
        category=row.category or "notification",
    )


def _default_to_response(name: str) -> EmailTemplateResponse:
    default = DEFAULT_TEMPLATES[name]
    return EmailTemplateResponse(
        name=name,
        subject=default["subject"],
        html_body=default["html"],
        text_body=default.get("text"),
        variables=default.get("variables", []),
        category=default.get("category", "notification"),
        is_default=True,
    )


async def _find_by_name(db: AsyncSession, name: str):
    result = await db.execute(select(EmailTemplate).where(EmailTemplate.name == name))
    return result.scalar_one_or_none()


def _sample_data(name: str, data: dict) -> dict:
    """Placeholder values for every declared variable, overridden by ``data``."""
    variables = DEFAULT_TEMPLATES.get(name, {}).get("variables", [])
    sample = {var: f"[{var}]" for var in variables}
    sample.update(data or {})
    return sample


async def _render(db: AsyncSession, name: str, data: dict):
    try:
        return await render_email_template(db, name, _sample_data(name, data))
    except TemplateNotFoundError:
        raise not_found("Email template")


@router.get("", response_model=list[EmailTemplateResponse])
async def list_email_templates(_auth: None = Depends(STAFF), db: AsyncSession = Depends(get_db)):
    """Stored templates plus any built-in default that has no stored override."""
    result = await db.execute(select(EmailTemplate).order_by(EmailTemplate.name))
    rows = result.scalars().all()
    stored = {row.name for row in rows}
    items = [_row_to_response(row) for row in rows]
    items.extend(_default_to_response(name) for name in DEFAULT_TEMPLATES if name not in stored)
    return sorted(items, key=lambda t: t.name)


@router.get("/{name}", response_model=EmailTemplateResponse)
async def get_email_template(name: str, _auth: None = Depends(STAFF), db: AsyncSession = Depends(get_db)):
    row = await _find_by_name(db, name)
    if row is not None:
        return _row_to_response(row)
    if name in DEFAULT_TEMPLATES:
        return _default_to_response(name)
    raise not_found("Email template")


@router.post("", response_model=EmailTemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_email_template(
    body: EmailTemplateCreate,
    request: Request,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("global_admin")),
    db: AsyncSession = Depends(get_db),
):
    if await _find_by_name(db, body.name) is not None:
        raise bad_request(f"Email template '{body.name}' already exists", code="DUPLICATE_TEMPLATE")

    fields = body.model_dump(exclude_none=True)
    if "variables" not in fields and body.name in DEFAULT_TEMPLATES:
        fields["variables"] = DEFAULT_TEMPLATES[body.name].get("variables", [])
    row = EmailTemplate(**fields)
    db.add(row)
    await db.flush()
    await log_activity(
        db,
        ActivityType.EMAIL_TEMPLATE_UPDATED,
        f"Created email template {row.name}",
        user=current_user,
        details={"template": row.name, "operation": "create"},
        request=request,
    )
    return _row_to_response(row)


@router.put("/{template_id}", response_model=EmailTemplateResponse)
async def update_email_template(
    template_id: str,
    body: EmailTemplateUpdate,
    request: Request,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("global_admin")),
    db: AsyncSession = Depends(get_db),
):
    row = await get_or_404(db, EmailTemplate, template_id, "Email template")
    changed = []
    for key, value in body.model_dump(exclude_unset=True).items():
        if value is None and key in ("subject", "html_body", "is_active", "category"):
            continue
        if getattr(row, key) != value:
            setattr(row, key, value)
            changed.append(key)
    await db.flush()

    if changed:
        await log_activity(
            db,
            ActivityType.EMAIL_TEMPLATE_UPDATED,
            f"Updated email template {row.name}",
            user=current_user,
            details={"template": row.name, "operation": "update", "changed_keys": changed},
            request=request,
        )
    return _row_to_response(row)


@router.delete("/{template_id}", response_model=MessageResponse)
async def delete_email_template(
    template_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("global_admin")),
    db: AsyncSession = Depends(get_db),
):
    """Remove a stored template. Built-in names revert to their default."""
    row = await get_or_404(db, EmailTemplate, template_id, "Email template")
    name = row.name
    await db.delete(row)
    await db.flush()
    await log_activity(
        db,
        ActivityType.EMAIL_TEMPLATE_UPDATED,
        f"Deleted email template {name}",
        user=current_user,
        details={"template": name, "operation": "delete"},
        request=request,
    )
    return MessageResponse(message="Email template deleted")


@router.post("/{name}/preview", response_model=TemplatePreviewResponse)
async def preview_email_template(
    name: str,
    body: TemplatePreviewRequest,
    _auth: None = Depends(STAFF),
    db: AsyncSession = Depends(get_db),
):
    rendered = await _render(db, name, body.data)
    return TemplatePreviewResponse(subject=rendered.subject, html=rendered.html, text=rendered.text)


@router.post("/{name}/test")
async def send_test_email(
    name: str,
    body: TemplateTestRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("global_admin")),
    db: AsyncSession = Depends(get_db),
):
    rendered = await _render(db, name, body.data)
    sent = await send_email([body.to], f"[TEST] {rendered.subject}", rendered.html, rendered.text)
    if not sent:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": {"code": "EMAIL_SEND_FAILED", "message": "Test email could not be sent"}},
        )
    logger.info("template_test_sent", template=name, to=body.to, by=current_user["user_id"])
    return {"message": f"Test email sent to {body.to}", "sent": True}
