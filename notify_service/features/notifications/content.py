"""Rendered notification content, one shape per channel.

Content is a discriminated union on ``kind`` so the renderer and the
channel senders agree on fields statically: email has subject/text/html,
SMS and WhatsApp a single text, push title/body/data and so on.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .enums import Channel


class _Content(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class EmailContent(_Content):
    kind: Literal["email"] = "email"
    subject: str
    text: str
    html: str | None = None


class SmsContent(_Content):
    kind: Literal["sms"] = "sms"
    text: str


class PushContent(_Content):
    kind: Literal["push"] = "push"
    title: str
    body: str
    data: dict[str, Any] = Field(default_factory=dict)


class InAppContent(_Content):
    kind: Literal["in_app"] = "in_app"
    title: str
    body: str
    action_url: str | None = None


class WebhookContent(_Content):
    kind: Literal["webhook"] = "webhook"
    payload: dict[str, Any] = Field(default_factory=dict)


RenderedContent = Annotated[
    EmailContent | SmsContent | PushContent | InAppContent | WebhookContent,
    Field(discriminator="kind"),
]

content_adapter: TypeAdapter[RenderedContent] = TypeAdapter(RenderedContent)

CONTENT_KIND: dict[Channel, str] = {
    Channel.EMAIL: "email",
    Channel.SMS: "sms",
    Channel.WHATSAPP: "sms",
    Channel.PUSH: "push",
    Channel.IN_APP: "in_app",
    Channel.WEBHOOK: "webhook",
}
"""Content shape each channel carries."""


def dump_content(content: RenderedContent) -> dict[str, Any]:
    """Serialize content for the JSON column."""
    return content.model_dump(mode="json")


def load_content(data: dict[str, Any]) -> RenderedContent:
    """Parse content stored on a queue entry."""
    return content_adapter.validate_python(data)


__all__ = [
    "CONTENT_KIND",
    "EmailContent",
    "InAppContent",
    "PushContent",
    "RenderedContent",
    "SmsContent",
    "WebhookContent",
    "content_adapter",
    "dump_content",
    "load_content",
]
