"""
Provider-agnostic email models.

These models represent an email after provider-specific fields have been
stripped away. The pipeline, parser and handlers work exclusively with these
models; only the adapter layer knows about Resend/SendGrid/Postmark formats.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class Envelope(BaseModel):
    """SMTP envelope as reported by the provider (may differ from headers)."""

    model_config = {"frozen": True}

    mail_from: str = ""
    rcpt_to: list[str] = []


class InboundEmail(BaseModel):
    """
    Normalized inbound email, provider-agnostic and immutable.

    ``id`` is never empty: adapters synthesize a timestamp-based id when the
    vendor omits a native message id. Header names are lowercased so lookups
    never depend on the vendor's casing.
    """

    model_config = {"frozen": True}

    id: str = Field(min_length=1)
    sender_email: str
    recipient_email: str
    subject: str = ""
    text: str = ""
    html: Optional[str] = None
    headers: dict[str, str] = {}
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    envelope: Optional[Envelope] = None

    @field_validator("headers", mode="before")
    @classmethod
    def _lowercase_header_names(cls, value):
        if not value:
            return {}
        return {str(k).lower(): str(v) for k, v in dict(value).items()}


class OutboundSendRequest(BaseModel):
    """A message to send through the active provider."""

    to: str
    subject: str
    text: str
    html: Optional[str] = None
    reply_to: Optional[str] = None
    cc: list[str] = []
    bcc: list[str] = []
    headers: dict[str, str] = {}
