"""
Unit tests for portal/services/email_templates.py

Covers the template language ({{var}}, {{#if}}, {{#each}}), the HTML-to-text
fallback and named-template rendering against the database.
"""

import pytest

from portal.models.email_template import EmailTemplate
from portal.services.email_templates import (
    DEFAULT_TEMPLATES,
    TemplateNotFoundError,
    render_email_template,
    render_template,
    strip_html,
)


# ---------------------------------------------------------------------------
# render_template
# ---------------------------------------------------------------------------


def test_substitutes_variables_with_and_without_spaces():
    assert render_template("Hi {{name}} / {{ name }}", {"name": "Ada"}) == "Hi Ada / Ada"


def test_missing_and_none_values_render_empty():
    assert render_template("[{{missing}}][{{nothing}}]", {"nothing": None}) == "[][]"


def test_dotted_paths_resolve_nested_values():
    data = {"user": {"address": {"city": "Leeds"}}}
    assert render_template("{{user.address.city}}", data) == "Leeds"


@pytest.mark.parametrize("value", [None, False, "", "false", "0", 0, []])
def test_if_treats_falsy_values_as_false(value):
    assert render_template("{{#if flag}}yes{{else}}no{{/if}}", {"flag": value}) == "no"


def test_if_without_else_renders_body_when_truthy():
    assert render_template("a{{#if flag}}b{{/if}}c", {"flag": "yes"}) == "abc"


def test_nested_if_blocks():
    template = "{{#if a}}A{{#if b}}B{{else}}!B{{/if}}{{/if}}"
    assert render_template(template, {"a": True, "b": False}) == "A!B"
    assert render_template(template, {"a": False, "b": True}) == ""


def test_each_exposes_this_and_index():
    template = "{{#each items}}{{@index}}:{{this}};{{/each}}"
    assert render_template(template, {"items": ["x", "y"]}) == "0:x;1:y;"


def test_each_dict_items_fall_back_to_outer_data():
    template = "{{#each rows}}{{number}}@{{customer}} {{/each}}"
    data = {"customer": "Acme", "rows": [{"number": "INV-1"}, {"number": "INV-2"}]}
    assert render_template(template, data) == "INV-1@Acme INV-2@Acme "


def test_each_with_missing_list_renders_nothing():
    assert render_template("<ul>{{#each items}}<li>{{this}}</li>{{/each}}</ul>", {}) == "<ul></ul>"


def test_nested_each_inside_if():
    template = "{{#if items}}{{#each items}}[{{this}}]{{/each}}{{else}}none{{/if}}"
    assert render_template(template, {"items": [1, 2]}) == "[1][2]"
    assert render_template(template, {"items": []}) == "none"


def test_unbalanced_block_is_left_untouched():
    assert render_template("{{#if flag}}open", {"flag": True}) == "{{#if flag}}open"


def test_escape_mode_escapes_values_only():
    out = render_template("<b>{{name}}</b>", {"name": "<script>"}, escape=True)
    assert out == "<b>&lt;script&gt;</b>"


# ---------------------------------------------------------------------------
# strip_html
# ---------------------------------------------------------------------------


def test_strip_html_produces_readable_text():
    html = "<style>p{color:red}</style><p>Hello&nbsp;<b>Ada</b></p><p>Line   two<br>three</p>"
    assert strip_html(html) == "Hello Ada\nLine two\nthree"


def test_strip_html_empty():
    assert strip_html(None) == ""


# ---------------------------------------------------------------------------
# render_email_template
# ---------------------------------------------------------------------------


async def test_renders_builtin_default_with_settings_context(db):
    rendered = await render_email_template(
        db, "password-reset", {"user_name": "Ada", "reset_url": "https://x/r", "expiry_minutes": 60}
    )
    assert rendered.subject == "Reset your EDI Portal password"
    assert "Ada" in rendered.html
    assert "https://x/r" in rendered.html
    assert "60 minutes" in rendered.text
    assert "<" not in rendered.text


async def test_active_database_row_overrides_default(db):
    db.add(EmailTemplate(name="welcome", subject="Custom {{user_name}}", html_body="<p>Hi</p>", is_active=True))
    await db.flush()
    rendered = await render_email_template(db, "welcome", {"user_name": "Ada"})
    assert rendered.subject == "Custom Ada"


async def test_inactive_row_falls_back_to_default(db):
    db.add(EmailTemplate(name="welcome", subject="Custom", html_body="<p>Hi</p>", is_active=False))
    await db.flush()
    rendered = await render_email_template(db, "welcome", {"user_name": "Ada"})
    assert rendered.subject == "Welcome to EDI Portal"


async def test_unknown_template_raises(db):
    with pytest.raises(TemplateNotFoundError):
        await render_email_template(db, "no-such-template", {})


def test_every_default_declares_subject_and_html():
    for name, template in DEFAULT_TEMPLATES.items():
        assert template["subject"], name
        assert template["html"], name
