"""Unit tests for template rendering, resolution and management."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from notify_service.features.notifications.content import EmailContent, PushContent, SmsContent
from notify_service.features.notifications.exceptions import (
    TemplateMissing,
    TemplateRenderWarning,
    TemplateSyntaxInvalid,
)
from notify_service.features.notifications.schemas import TemplateUpsert
from notify_service.features.notifications.templates import (
    TemplateRenderer,
    TemplateService,
    pick_template,
)

# ============================================================================
# Renderer
# ============================================================================


@pytest.mark.unit
class TestTemplateRenderer:
    """Test suite for TemplateRenderer."""

    def test_renders_email(self, make_template):
        template = make_template(html_body="<p>Hi {{ name }}</p>")
        result = TemplateRenderer().render(template, {"name": "Ada", "order_id": "A-1"})

        assert isinstance(result.content, EmailContent)
        assert result.content.subject == "Order A-1 shipped"
        assert result.content.text == "Hi Ada, order A-1 is on its way."
        assert result.content.html == "<p>Hi Ada</p>"
        assert result.missing == ()

    def test_missing_placeholder_keeps_marker_and_warns(self, make_template):
        template = make_template(channel="sms", body="Hi {{ name }}, code {{ code }}")

        with pytest.warns(TemplateRenderWarning, match="code"):
            result = TemplateRenderer().render(template, {"name": "Ada"})

        assert isinstance(result.content, SmsContent)
        assert result.content.text == "Hi Ada, code {{ code }}"
        assert result.missing == ("code",)

    def test_missing_dotted_path(self, make_template):
        template = make_template(channel="sms", body="Total: {{ order.total }}")

        with pytest.warns(TemplateRenderWarning):
            result = TemplateRenderer().render(template, {})

        assert result.content.text == "Total: {{ order.total }}"
        assert result.missing == ("order.total",)

    def test_html_body_is_escaped_text_is_not(self, make_template):
        template = make_template(
            subject="Hello",
            body="Hi {{ name }}",
            html_body="<p>Hi {{ name }}</p>",
        )
        result = TemplateRenderer().render(template, {"name": "<b>Ada</b>"})

        assert result.content.text == "Hi <b>Ada</b>"
        assert result.content.html == "<p>Hi &lt;b&gt;Ada&lt;/b&gt;</p>"

    def test_push_data_is_rendered_recursively(self, make_template):
        template = make_template(
            channel="push",
            subject=None,
            title="Order {{ order_id }}",
            body="Shipped",
            data={"link": "app://orders/{{ order_id }}", "ids": ["{{ order_id }}"], "n": 3},
        )
        result = TemplateRenderer().render(template, {"order_id": "A-1"})

        assert isinstance(result.content, PushContent)
        assert result.content.title == "Order A-1"
        assert result.content.data == {"link": "app://orders/A-1", "ids": ["A-1"], "n": 3}

    def test_whatsapp_renders_as_text(self, make_template):
        template = make_template(channel="whatsapp", body="Hi {{ name }}")
        result = TemplateRenderer().render(template, {"name": "Ada"})
        assert isinstance(result.content, SmsContent)

    def test_json_filter(self):
        assert TemplateRenderer().render_string("{{ items|json }}", {"items": [1, 2]}) == "[1, 2]"

    def test_syntax_error_raises(self, make_template):
        template = make_template(channel="sms", body="Hi {{ name ")

        with pytest.raises(TemplateSyntaxInvalid) as exc_info:
            TemplateRenderer().render(template, {"name": "Ada"})

        assert exc_info.value.field == "body"

    def test_validate_checks_every_field(self, make_template):
        template = make_template(subject="{% if %}", body="fine")

        with pytest.raises(TemplateSyntaxInvalid) as exc_info:
            TemplateRenderer().validate(template)

        assert exc_info.value.field == "subject"

    def test_sandbox_blocks_internal_attributes(self, make_template):
        template = make_template(channel="sms", body="{{ name.__class__ }}")

        with pytest.warns(TemplateRenderWarning):
            result = TemplateRenderer().render(template, {"name": "Ada"})

        assert "<class" not in result.content.text


# ============================================================================
# Resolution
# ============================================================================


@pytest.mark.unit
class TestPickTemplate:
    """Test suite for the template fallback order."""

    def test_tenant_requested_language_first(self, make_template):
        tenant_fr = make_template(tenant_id="acme", language="fr")
        global_fr = make_template(language="fr")

        assert pick_template([global_fr, tenant_fr], "acme", "fr", "en") is tenant_fr

    def test_tenant_default_language_before_global(self, make_template):
        tenant_en = make_template(tenant_id="acme", language="en")
        global_fr = make_template(language="fr")

        assert pick_template([tenant_en, global_fr], "acme", "fr", "en") is tenant_en

    def test_global_fallback(self, make_template):
        global_en = make_template(language="en")
        other_tenant = make_template(tenant_id="globex", language="fr")

        assert pick_template([global_en, other_tenant], "acme", "fr", "en") is global_en

    def test_any_global_language_as_last_resort(self, make_template):
        global_de = make_template(language="de")
        global_es = make_template(language="es")

        assert pick_template([global_es, global_de], "acme", "fr", "en") is global_de

    def test_nothing_matches(self):
        assert pick_template([], "acme", "en", "en") is None


@pytest.mark.unit
class TestTemplateService:
    """Test suite for TemplateService against the database."""

    @pytest.mark.asyncio
    async def test_resolve_prefers_tenant_template(self, db_session, add_template):
        await add_template(language="en")
        tenant_template = await add_template(tenant_id="acme", language="en", subject="Custom")

        resolved = await TemplateService().resolve(
            db_session, "acme", "order_shipped", "email", language="en", default_language="en"
        )

        assert resolved.id == tenant_template.id

    @pytest.mark.asyncio
    async def test_other_tenants_get_global(self, db_session, add_template):
        global_template = await add_template(language="en")
        await add_template(tenant_id="acme", language="en")

        resolved = await TemplateService().resolve(
            db_session, "globex", "order_shipped", "email", language="en", default_language="en"
        )

        assert resolved.id == global_template.id

    @pytest.mark.asyncio
    async def test_inactive_templates_are_ignored(self, db_session, add_template):
        await add_template(is_active=False)

        with pytest.raises(TemplateMissing) as exc_info:
            await TemplateService().resolve(
                db_session, "acme", "order_shipped", "email", language="en", default_language="en"
            )

        assert exc_info.value.channel == "email"

    @pytest.mark.asyncio
    async def test_upsert_creates_then_bumps_version(self, db_session):
        service = TemplateService()
        payload = TemplateUpsert(type_code="otp", channel="sms", body="Code {{ code }}")

        created = await service.upsert(db_session, "acme", payload)
        updated = await service.upsert(
            db_session, "acme", payload.model_copy(update={"body": "Your code: {{ code }}"})
        )

        assert created.version == 1
        assert updated.id == created.id
        assert updated.version == 2
        assert updated.body == "Your code: {{ code }}"

    @pytest.mark.asyncio
    async def test_upsert_rejects_bad_syntax(self, db_session):
        payload = TemplateUpsert(type_code="otp", channel="sms", body="{{ code ")

        with pytest.raises(TemplateSyntaxInvalid):
            await TemplateService().upsert(db_session, "acme", payload)

    @pytest.mark.asyncio
    async def test_preview(self, db_session, add_template):
        await add_template(channel="sms", subject=None, body="Code {{ code }}", type_code="otp")

        template, result = await TemplateService().preview(
            db_session, "acme", "otp", "sms", {"code": "1234"}, language="en", default_language="en"
        )

        assert template.tenant_id is None
        assert result.content.text == "Code 1234"


@pytest.mark.unit
class TestTemplateUpsertSchema:
    """Required source fields depend on the channel."""

    def test_email_requires_subject(self):
        with pytest.raises(ValidationError):
            TemplateUpsert(type_code="welcome", channel="email", body="Hi")

    def test_push_requires_title(self):
        with pytest.raises(ValidationError):
            TemplateUpsert(type_code="welcome", channel="push", body="Hi")

    def test_type_code_pattern(self):
        with pytest.raises(ValidationError):
            TemplateUpsert(type_code="Not Valid", channel="sms", body="Hi")
