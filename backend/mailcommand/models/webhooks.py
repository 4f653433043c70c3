"""
Strict schemas for each vendor's inbound webhook payload.

Each adapter validates the raw payload against its schema first, then maps
the validated model onto InboundEmail. Vendors send many more fields than
listed here; unknown fields are ignored (extra="ignore").
"""

from typing import Optional, Union

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Resend: JSON, snake_case
# ---------------------------------------------------------------------------

class ResendEnvelope(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    from_: str = Field(default="", alias="from")
    to: list[str] = []


class ResendInboundPayload(BaseModel):
    """Resend inbound email webhook body."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    from_: str = Field(alias="from", min_length=1)
    to: Union[str, list[str]]
    subject: str = ""
    text: str = ""
    html: Optional[str] = None
    headers: dict[str, str] = {}
    envelope: Optional[ResendEnvelope] = None


# ---------------------------------------------------------------------------
# SendGrid Inbound Parse: multipart/form-data
# ---------------------------------------------------------------------------

class SendGridInboundPayload(BaseModel):
    """
    SendGrid Inbound Parse form fields.

    ``envelope`` arrives as a JSON *string* and ``headers`` as the raw header
    block; both are decoded by the adapter, not here.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    envelope: str = ""
    from_: str = Field(default="", alias="from")
    to: str = ""
    subject: str = ""
    text: str = ""
    html: Optional[str] = None
    headers: str = ""


class SendGridEnvelope(BaseModel):
    model_config = {"extra": "ignore"}

    from_: str = Field(default="", alias="from")
    to: list[str] = []


# ---------------------------------------------------------------------------
# Postmark: JSON, PascalCase
# ---------------------------------------------------------------------------

class PostmarkHeader(BaseModel):
    Name: str
    Value: str


class PostmarkInboundPayload(BaseModel):
    """
    Subset of Postmark's inbound webhook JSON that we care about.
    """

    model_config = {"extra": "ignore"}

    MessageID: Optional[str] = None
    From: str = Field(min_length=1)
    To: str = Field(min_length=1)
    Subject: str = ""
    TextBody: str = ""
    HtmlBody: Optional[str] = None
    Headers: list[PostmarkHeader] = []
