"""Jinja2 template rendering for notifications.

Rendering is deliberately forgiving: a placeholder without a value is left
in the output as the literal marker ``{{ name }}`` and reported as a
TemplateRenderWarning. Partially rendered content is still delivered.
"""

from __future__ import annotations

import json
import logging
import warnings
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from jinja2 import TemplateSyntaxError, Undefined
from jinja2.sandbox import SandboxedEnvironment, SecurityError

from notify_service.features.notifications.content import (
    CONTENT_KIND,
    EmailContent,
    InAppContent,
    PushContent,
    RenderedContent,
    SmsContent,
    WebhookContent,
)
from notify_service.features.notifications.enums import Channel
from notify_service.features.notifications.exceptions import (
    TemplateRenderWarning,
    TemplateSyntaxInvalid,
)
from notify_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from notify_service.features.notifications.models import NotificationTemplate

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)

# Placeholders seen without a value during the current render call
_missing_placeholders: ContextVar[list[str] | None] = ContextVar(
    "missing_placeholders", default=None
)

TEMPLATE_FIELDS = ("subject", "body", "html_body", "title", "action_url")


class MarkerUndefined(Undefined):
    """Undefined that renders as its own ``{{ path }}`` marker.

    Attribute and item access on a missing value extend the dotted path
    instead of raising, so ``{{ order.total }}`` with no ``order`` renders
    as ``{{ order.total }}``.
    """

    __slots__ = ()

    @property
    def _path(self) -> str:
        return self._undefined_name or "?"

    def _record(self) -> None:
        missing = _missing_placeholders.get()
        if missing is not None and self._path not in missing:
            missing.append(self._path)

    def __str__(self) -> str:
        self._record()
        return "{{ " + self._path + " }}"

    def __getattr__(self, name: str) -> Any:
        if name[:2] == "__":
            raise AttributeError(name)
        return MarkerUndefined(name=f"{self._path}.{name}")

    def __getitem__(self, key: Any) -> MarkerUndefined:
        return MarkerUndefined(name=f"{self._path}.{key}")


@dataclass(frozen=True, slots=True)
class RenderResult:
    """Rendered content plus the placeholders that had no value."""

    content: RenderedContent
    missing: tuple[str, ...] = ()


class TemplateRenderer:
    """Sandboxed Jinja2 renderer producing channel-shaped content.

    Uses SandboxedEnvironment so tenant-authored templates cannot reach
    Python internals. Plain-text fields are rendered without escaping; the
    email HTML body is autoescaped.
    """

    def __init__(self) -> None:
        self._text_env = SandboxedEnvironment(
            autoescape=False,
            undefined=MarkerUndefined,
            keep_trailing_newline=True,
        )
        self._html_env = SandboxedEnvironment(
            autoescape=True,
            undefined=MarkerUndefined,
            keep_trailing_newline=True,
        )
        for env in (self._text_env, self._html_env):
            env.filters["json"] = json.dumps

    def render(
        self,
        template: NotificationTemplate,
        variables: dict[str, Any],
        *,
        channel: str | None = None,
    ) -> RenderResult:
        """Render every source field of ``template`` into the channel's content shape.

        Raises:
            TemplateSyntaxInvalid: If a stored source does not parse or the
                sandbox blocks an expression.
        """
        target = Channel(channel or template.channel)
        kind = CONTENT_KIND[target]
        token = _missing_placeholders.set([])
        try:
            content = self._build(kind, template, variables)
            missing = tuple(_missing_placeholders.get() or ())
        finally:
            _missing_placeholders.reset(token)

        if missing:
            self._warn_missing(template, missing)

        lazy_logger.debug(
            lambda: f"Rendered template {template.type_code}/{template.channel}/{template.language} "
            f"v{template.version} as {kind}"
        )
        return RenderResult(content=content, missing=missing)

    def render_string(self, source: str, variables: dict[str, Any], *, html: bool = False) -> str:
        """Render a single source string (used by previews)."""
        token = _missing_placeholders.set([])
        try:
            return self._render(source, variables, field="source", html=html)
        finally:
            _missing_placeholders.reset(token)

    def validate(self, template: NotificationTemplate) -> None:
        """Parse every source field without rendering.

        Raises:
            TemplateSyntaxInvalid: On the first field that fails to parse.
        """
        for field in TEMPLATE_FIELDS:
            source = getattr(template, field)
            if source:
                self._parse(source, field=field, html=field == "html_body")
        for path, source in _iter_strings(template.data or {}, "data"):
            self._parse(source, field=path, html=False)

    def _build(
        self, kind: str, template: NotificationTemplate, variables: dict[str, Any]
    ) -> RenderedContent:
        def text(field: str) -> str:
            return self._render(getattr(template, field) or "", variables, field=field)

        if kind == "email":
            return EmailContent(
                subject=text("subject"),
                text=text("body"),
                html=(
                    self._render(template.html_body, variables, field="html_body", html=True)
                    if template.html_body
                    else None
                ),
            )
        if kind == "sms":
            return SmsContent(text=text("body"))
        if kind == "push":
            return PushContent(
                title=text("title"),
                body=text("body"),
                data=self._render_data(template.data or {}, variables),
            )
        if kind == "in_app":
            return InAppContent(
                title=text("title"),
                body=text("body"),
                action_url=text("action_url") if template.action_url else None,
            )
        return WebhookContent(payload=self._render_data(template.data or {}, variables))

    def _parse(self, source: str, *, field: str, html: bool) -> Any:
        env = self._html_env if html else self._text_env
        try:
            return env.from_string(source)
        except TemplateSyntaxError as exc:
            msg = f"Template field {field!r} does not parse: {exc.message} (line {exc.lineno})"
            raise TemplateSyntaxInvalid(msg, field=field) from exc

    def _render(self, source: str, variables: dict[str, Any], *, field: str, html: bool = False) -> str:
        if "{" not in source:
            return source
        compiled = self._parse(source, field=field, html=html)
        try:
            return compiled.render(**variables)
        except SecurityError as exc:
            msg = f"Template field {field!r} uses a blocked expression: {exc}"
            raise TemplateSyntaxInvalid(msg, field=field) from exc

    def _render_data(self, data: Any, variables: dict[str, Any], path: str = "data") -> Any:
        if isinstance(data, dict):
            return {k: self._render_data(v, variables, f"{path}.{k}") for k, v in data.items()}
        if isinstance(data, list):
            return [self._render_data(v, variables, f"{path}[{i}]") for i, v in enumerate(data)]
        if isinstance(data, str):
            return self._render(data, variables, field=path)
        return data

    def _warn_missing(self, template: NotificationTemplate, missing: tuple[str, ...]) -> None:
        message = (
            f"Template {template.type_code}/{template.channel}/{template.language} rendered "
            f"with unresolved placeholders: {', '.join(missing)}"
        )
        logger.warning(
            message,
            extra={
                "template_id": str(template.id) if template.id else None,
                "type_code": template.type_code,
                "channel": template.channel,
                "missing_placeholders": list(missing),
                "operation": "template.render",
            },
        )
        warnings.warn(message, TemplateRenderWarning, stacklevel=3)


def _iter_strings(data: Any, path: str) -> list[tuple[str, str]]:
    if isinstance(data, dict):
        return [item for k, v in data.items() for item in _iter_strings(v, f"{path}.{k}")]
    if isinstance(data, list):
        return [item for i, v in enumerate(data) for item in _iter_strings(v, f"{path}[{i}]")]
    if isinstance(data, str):
        return [(path, data)]
    return []


_renderer: TemplateRenderer | None = None


def get_template_renderer() -> TemplateRenderer:
    """Get or create the singleton TemplateRenderer instance."""
    global _renderer
    if _renderer is None:
        _renderer = TemplateRenderer()
    return _renderer


__all__ = [
    "MarkerUndefined",
    "RenderResult",
    "TemplateRenderer",
    "get_template_renderer",
]
