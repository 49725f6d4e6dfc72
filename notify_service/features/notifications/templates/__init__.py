"""Template rendering and resolution for notifications.

Jinja2 sandboxed rendering into channel-shaped content, with tenant
templates shadowing global defaults.
"""

from __future__ import annotations

from notify_service.features.notifications.templates.renderer import (
    MarkerUndefined,
    RenderResult,
    TemplateRenderer,
    get_template_renderer,
)
from notify_service.features.notifications.templates.service import (
    TemplateService,
    get_template_service,
    pick_template,
)

__all__ = [
    "MarkerUndefined",
    "RenderResult",
    "TemplateRenderer",
    "TemplateService",
    "get_template_renderer",
    "get_template_service",
    "pick_template",
]
