"""
Email templates: a small Handlebars-like renderer, the built-in default
templates, and helpers to render a named template and send it.

Supported syntax:
  {{var}} / {{ a.b.c }}                   variable (None or missing -> "")
  {{#if var}}...{{else}}...{{/if}}          conditional, may nest
  {{#each list}}...{{else}}...{{/each}}     loop; {{this}}, {{@index}}, item keys
"""

from dataclasses import dataclass
import html as _html
import re
from typing import Any, Optional

from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.models.email_template import EmailTemplate
from portal.services.email_service import send_email
from portal.services.settings_service import get_portal_settings
from portal.services.url_config import UrlConfigError, get_login_url

logger = structlog.get_logger()

DEFAULT_PRIMARY_COLOR = "#066fd1"

_VAR = re.compile(r"\{\{\s*([\w.@]+)\s*\}\}")
_BLOCK_OPEN = re.compile(r"\{\{\s*#(if|each)\s+([\w.@]+)\s*\}\}")
_BLOCK_TAG = re.compile(r"\{\{\s*(#(?:if|each)\s+[\w.@]+|/(?:if|each)|else)\s*\}\}")
_FALSY_STRINGS = ("", "false", "0")


class TemplateNotFoundError(LookupError):
    pass


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


# ---------------------------------------------------------------------------
# Renderer
# ---------------------------------------------------------------------------

def _lookup(context: dict, path: str) -> Any:
    if path in context:
        return context[path]
    value: Any = context
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


def _is_truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value.strip().lower() not in _FALSY_STRINGS
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) > 0
    return True


def _find_block_end(template: str, start: int, kind: str):
    """Return (close_start, close_end, else_span) for the block opened before ``start``."""
    depth = 0
    else_span = None
    for tag in _BLOCK_TAG.finditer(template, start):
        token = tag.group(1)
        if token.startswith("#"):
            depth += 1
        elif token.startswith("/"):
            if depth == 0:
                if token[1:] != kind:
                    return None
                return tag.start(), tag.end(), else_span
            depth -= 1
        elif depth == 0 and else_span is None:
            else_span = (tag.start(), tag.end())
    return None


def _substitute(text: str, context: dict, escape: bool) -> str:
    def replace(match: re.Match) -> str:
        value = _lookup(context, match.group(1))
        if value is None:
            return ""
        rendered = str(value)
        return _html.escape(rendered) if escape else rendered

    return _VAR.sub(replace, text)


def _loop_context(context: dict, item: Any, index: int, total: int) -> dict:
    child = dict(context)
    if isinstance(item, dict):
        child.update(item)
    child["this"] = item
    child["@index"] = index
    child["@first"] = index == 0
    child["@last"] = index == total - 1
    return child


def render_template(template: Optional[str], data: Optional[dict] = None, escape: bool = False) -> str:
    """Render ``template`` against ``data``. Never raises on missing variables."""
    if not template:
        return ""
    context = data or {}
    out = []
    pos = 0
    while True:
        opening = _BLOCK_OPEN.search(template, pos)
        if opening is None:
            out.append(_substitute(template[pos:], context, escape))
            break

        out.append(_substitute(template[pos:opening.start()], context, escape))
        kind, path = opening.group(1), opening.group(2)
        block = _find_block_end(template, opening.end(), kind)
        if block is None:
            # unbalanced block: emit the tag untouched and carry on after it
            out.append(opening.group(0))
            pos = opening.end()
            continue

        close_start, close_end, else_span = block
        if else_span:
            body = template[opening.end():else_span[0]]
            alternative = template[else_span[1]:close_start]
        else:
            body = template[opening.end():close_start]
            alternative = ""

        value = _lookup(context, path)
        if kind == "if":
            chosen = body if _is_truthy(value) else alternative
            out.append(render_template(chosen, context, escape))
        else:
            items = list(value) if isinstance(value, (list, tuple)) else []
            if items:
                for index, item in enumerate(items):
                    out.append(render_template(body, _loop_context(context, item, index, len(items)), escape))
            else:
                out.append(render_template(alternative, context, escape))
        pos = close_end

    return "".join(out)


def strip_html(html: Optional[str]) -> str:
    """Plain-text alternative of an HTML body."""
    if not html:
        return ""
    text = re.sub(r"<style[^>]*>[\s\S]*?</style>", "", html, flags=re.IGNORECASE)
    text = re.sub(r"<script[^>]*>[\s\S]*?</script>", "", text, flags=re.IGNORECASE)
    text = re.sub(r"<br\s*/?>|</p>|</tr>|</h\d>|</li>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = _html.unescape(text).replace("\xa0", " ")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\s*\n\s*", "\n", text)
    return text.strip()


def wrap_email_content(body_html: str, company_name: str, primary_color: str) -> str:
    return (
        '<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;">'
        f'<div style="background:{_html.escape(primary_color)};color:#fff;padding:16px 24px;">'
        f"<strong>{_html.escape(company_name)}</strong></div>"
        f'<div style="padding:24px;color:#333;">{body_html}</div>'
        '<div style="padding:12px 24px;color:#999;font-size:12px;">'
        "This is an automated message, please do not reply.</div></div>"
    )


# ---------------------------------------------------------------------------
# Built-in templates (used when no active row exists in email_templates)
# ---------------------------------------------------------------------------

def _button(url_var: str, label: str) -> str:
    return (
        f'<p><a href="{{{{{url_var}}}}}" style="background:{{{{primary_color}}}};color:#fff;'
        f'padding:10px 18px;text-decoration:none;border-radius:4px;">{label}</a></p>'
    )


DEFAULT_TEMPLATES: dict[str, dict] = {
    "welcome": {
        "category": "auth",
        "subject": "Welcome to {{company_name}}",
        "html": (
            "<p>Hello {{user_name}},</p>"
            "<p>An account has been created for you on the {{company_name}} portal.</p>"
            "{{#if temp_password}}<p>Your temporary password is <strong>{{temp_password}}</strong>. "
            "You will be asked to change it when you first log in.</p>{{/if}}"
            + _button("login_url", "Log in")
        ),
        "variables": ["user_name", "email", "temp_password", "login_url"],
    },
    "password-reset": {
        "category": "auth",
        "subject": "Reset your {{company_name}} password",
        "html": (
            "<p>Hello {{user_name}},</p>"
            "<p>We received a request to reset your password. The link expires in {{expiry_minutes}} minutes.</p>"
            + _button("reset_url", "Reset password")
            + "<p>If you did not request this, you can ignore this email.</p>"
        ),
        "variables": ["user_name", "reset_url", "expiry_minutes"],
    },
    "password-changed": {
        "category": "auth",
        "subject": "Your {{company_name}} password was changed",
        "html": (
            "<p>Hello {{user_name}},</p>"
            "<p>Your password was changed on {{changed_at}}.</p>"
            "<p>If this was not you, contact your administrator immediately.</p>"
        ),
        "variables": ["user_name", "changed_at"],
    },
    "registration-request": {
        "category": "notification",
        "subject": "New account request: {{first_name}} {{last_name}} ({{registration_company_name}})",
        "html": (
            "<p>A new account has been requested.</p>"
            "<ul><li>Name: {{first_name}} {{last_name}}</li>"
            "<li>Email: {{email}}</li>"
            "<li>Company: {{registration_company_name}}</li>"
            "{{#if account_number}}<li>Account number: {{account_number}}</li>{{/if}}</ul>"
            + _button("review_url", "Review request")
        ),
        "variables": ["first_name", "last_name", "email", "registration_company_name", "account_number", "review_url"],
    },
    "registration-submitted": {
        "category": "auth",
        "subject": "We received your {{company_name}} account request",
        "html": (
            "<p>Hello {{first_name}},</p>"
            "<p>Thank you for registering. An administrator will review your request "
            "and you will receive an email once it has been processed.</p>"
        ),
        "variables": ["first_name", "last_name"],
    },
    "registration-approved": {
        "category": "auth",
        "subject": "Your {{company_name}} account has been approved",
        "html": (
            "<p>Hello {{user_name}},</p>"
            "<p>Your account request has been approved.</p>"
            "<p>Email: {{email}}<br>Temporary password: <strong>{{temp_password}}</strong></p>"
            "<p>You will be asked to choose a new password when you first log in.</p>"
            + _button("login_url", "Log in")
        ),
        "variables": ["user_name", "email", "temp_password", "login_url"],
    },
    "registration-rejected": {
        "category": "auth",
        "subject": "Your {{company_name}} account request",
        "html": (
            "<p>Hello {{first_name}},</p>"
            "<p>Unfortunately your account request could not be approved.</p>"
            "{{#if rejection_reason}}<p>Reason: {{rejection_reason}}</p>{{/if}}"
        ),
        "variables": ["first_name", "rejection_reason"],
    },
    "email-change-validation": {
        "category": "auth",
        "subject": "Confirm your new email address",
        "html": (
            "<p>Hello {{user_name}},</p>"
            "<p>Please confirm that you want to use {{new_email}} for your {{company_name}} account. "
            "The link expires in {{expiry_minutes}} minutes.</p>"
            + _button("validation_url", "Confirm email")
        ),
        "variables": ["user_name", "new_email", "validation_url", "expiry_minutes"],
    },
    "email-change-confirmed": {
        "category": "auth",
        "subject": "Your email address has been changed",
        "html": (
            "<p>Hello {{user_name}},</p>"
            "<p>The email address on your account was changed from {{old_email}} to {{new_email}}.</p>"
        ),
        "variables": ["user_name", "old_email", "new_email"],
    },
    "security-alert": {
        "category": "system",
        "subject": "Security alert: {{alert_title}}",
        "html": (
            "<p><strong>{{alert_title}}</strong></p>"
            "<p>{{alert_message}}</p>"
            "<ul>"
            "{{#if ip_address}}<li>IP address: {{ip_address}}</li>{{/if}}"
            "{{#if email}}<li>Account: {{email}}</li>{{/if}}"
            "{{#if attempts}}<li>Attempts: {{attempts}}</li>{{/if}}"
            "{{#if locked_until}}<li>Locked until: {{locked_until}}</li>{{/if}}"
            "<li>Detected at: {{detected_at}}</li></ul>"
            "{{#if accounts}}<p>Accounts targeted:</p><ul>{{#each accounts}}<li>{{this}}</li>{{/each}}</ul>{{/if}}"
        ),
        "variables": ["alert_title", "alert_message", "ip_address", "email", "attempts", "locked_until", "accounts", "detected_at"],
    },
    "document-notification": {
        "category": "document",
        "subject": "New {{document_type_label}} {{document_number}} from {{company_name}}",
        "html": (
            "<p>Hello {{user_name}},</p>"
            "<p>A new {{document_type_label}} is available for {{customer_name}}.</p>"
            "<ul><li>Number: {{document_number}}</li>"
            "{{#if amount}}<li>Amount: {{amount}}</li>{{/if}}</ul>"
            + _button("document_url", "View document")
        ),
        "variables": ["user_name", "customer_name", "document_type_label", "document_number", "amount", "document_url"],
    },
    "document-summary": {
        "category": "document",
        "subject": "{{document_count}} new document(s) for {{customer_name}}",
        "html": (
            "<p>Hello {{user_name}},</p>"
            "<p>The following documents are now available for {{customer_name}}:</p>"
            "<table><tr><th>Type</th><th>Number</th><th>Amount</th></tr>"
            "{{#each documents}}<tr><td>{{type_label}}</td>"
            '<td><a href="{{url}}">{{number}}</a></td><td>{{amount}}</td></tr>{{/each}}'
            "</table>"
            + _button("login_url", "Open portal")
        ),
        "variables": ["user_name", "customer_name", "document_count", "documents"],
    },
    "import-summary-report": {
        "category": "system",
        "subject": "Import complete: {{successful}} of {{total}} processed ({{source_label}})",
        "html": (
            "<p>An import batch has finished.</p>"
            "<ul><li>Source: {{source_label}}</li>"
            "<li>Total files: {{total}}</li>"
            "<li>Successful: {{successful}}</li>"
            "<li>Failed: {{failed}}</li>"
            "<li>Allocated to a customer: {{allocated}}</li>"
            "<li>Unallocated: {{unallocated}}</li>"
            "<li>Processing time: {{processing_time}}</li></ul>"
            "{{#if failures}}<p>Failures:</p><ul>{{#each failures}}<li>{{file_name}}: {{error}}</li>{{/each}}</ul>{{/if}}"
        ),
        "variables": ["source_label", "total", "successful", "failed", "allocated", "unallocated", "processing_time", "failures"],
    },
}


# ---------------------------------------------------------------------------
# Named template rendering and sending
# ---------------------------------------------------------------------------

async def render_email_template(db: AsyncSession, name: str, data: Optional[dict] = None) -> RenderedEmail:
    """Render template ``name`` (DB row if active, else the built-in default)."""
    result = await db.execute(
        select(EmailTemplate).where(EmailTemplate.name == name, EmailTemplate.is_active == True)  # noqa: E712
    )
    row = result.scalar_one_or_none()
    if row is not None:
        subject, html_body, text_body = row.subject, row.html_body, row.text_body
    elif name in DEFAULT_TEMPLATES:
        default = DEFAULT_TEMPLATES[name]
        subject, html_body, text_body = default["subject"], default["html"], default.get("text")
    else:
        raise TemplateNotFoundError(f"Email template '{name}' not found or is inactive")

    portal_settings = await get_portal_settings(db)
    try:
        login_url = get_login_url()
    except UrlConfigError:
        login_url = ""
    context = {
        "company_name": portal_settings.company_name,
        "login_url": login_url,
        "primary_color": portal_settings.primary_color or DEFAULT_PRIMARY_COLOR,
    }
    context.update(data or {})

    rendered_html = wrap_email_content(
        render_template(html_body, context, escape=True),
        context["company_name"],
        context["primary_color"],
    )
    text = render_template(text_body, context) if text_body else strip_html(rendered_html)
    return RenderedEmail(
        subject=render_template(subject, context),
        html=rendered_html,
        text=text,
    )


async def send_templated_email(
    db: AsyncSession,
    template_name: str,
    to: str | list[str],
    data: Optional[dict] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> bool:
    """
    Render while the session is open, then send (or queue) the email.

    Never raises: email is a side effect and must not fail the request.
    """
    recipients = [to] if isinstance(to, str) else [r for r in to if r]
    if not recipients:
        return False
    try:
        rendered = await render_email_template(db, template_name, data)
    except Exception as exc:
        logger.error("email_template_render_failed", template=template_name, error=str(exc))
        return False

    if background_tasks is not None:
        background_tasks.add_task(send_email, recipients, rendered.subject, rendered.html, rendered.text)
        logger.info("email_queued", template=template_name, to=recipients)
        return True
    return await send_email(recipients, rendered.subject, rendered.html, rendered.text)
