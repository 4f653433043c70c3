"""
SendGrid provider.

Outbound: POST https://api.sendgrid.com/v3/mail/send; recipients are nested
          under ``personalizations``. SendGrid answers 202 and returns the
          message id in the X-Message-Id response header.
Inbound:  Inbound Parse posts multipart/form-data. ``envelope`` is a JSON
          string and ``headers`` is the raw header block.
Webhook signature: ECDSA (P-256, SHA-256) over ``timestamp + raw body``,
          base64 in X-Twilio-Email-Event-Webhook-Signature, timestamp in
          X-Twilio-Email-Event-Webhook-Timestamp, verified against the
          account's public key.

Environment variables
---------------------
SENDGRID_API_KEY               API key (SG....)
SENDGRID_WEBHOOK_PUBLIC_KEY    base64 DER verification key from the dashboard
"""

import base64
import binascii
import json
import logging
import os
from email.parser import HeaderParser
from typing import Optional, Union

import httpx
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import ValidationError

from mailcommand.errors import WebhookParseError
from mailcommand.models.inbound_email import Envelope, InboundEmail, OutboundSendRequest
from mailcommand.models.webhooks import SendGridEnvelope, SendGridInboundPayload
from mailcommand.services.email_provider import EmailProvider, RawWebhookBody, as_bytes

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"
SENDGRID_SCOPES_URL = "https://api.sendgrid.com/v3/scopes"


def _decode_envelope(raw: str) -> Envelope:
    """
    Decode the envelope JSON string. A malformed envelope yields an empty
    Envelope: the message content is still usable without it.
    """
    if not raw:
        return Envelope()
    try:
        parsed = SendGridEnvelope.model_validate(json.loads(raw))
    except (ValueError, ValidationError):
        logger.warning("SendGrid envelope could not be decoded; continuing without it")
        return Envelope()
    return Envelope(mail_from=parsed.from_, rcpt_to=parsed.to)


def _parse_header_block(raw: str) -> dict[str, str]:
    if not raw:
        return {}
    message = HeaderParser().parsestr(raw)
    return {name.lower(): str(value).strip() for name, value in message.items()}


class SendGridProvider(EmailProvider):
    name = "sendgrid"
    signature_header = "X-Twilio-Email-Event-Webhook-Signature"
    timestamp_header = "X-Twilio-Email-Event-Webhook-Timestamp"
    inbound_format = "form"
    default_from_address = "noreply@mailcommand.app"

    def __init__(self, api_key=None, webhook_secret=None, from_address=None, transport=None):
        super().__init__(
            api_key=api_key or os.getenv("SENDGRID_API_KEY"),
            webhook_secret=webhook_secret or os.getenv("SENDGRID_WEBHOOK_PUBLIC_KEY"),
            from_address=from_address,
            transport=transport,
        )

    async def send_email(self, request: OutboundSendRequest) -> str:
        self._require_api_key()

        personalization: dict = {"to": [{"email": request.to}]}
        if request.cc:
            personalization["cc"] = [{"email": addr} for addr in request.cc]
        if request.bcc:
            personalization["bcc"] = [{"email": addr} for addr in request.bcc]

        content = [{"type": "text/plain", "value": request.text}]
        if request.html:
            content.append({"type": "text/html", "value": request.html})

        body: dict = {
            "personalizations": [personalization],
            "from": {"email": self.from_address},
            "subject": request.subject,
            "content": content,
        }
        if request.reply_to:
            body["reply_to"] = {"email": request.reply_to}
        if request.headers:
            body["headers"] = request.headers

        response = await self._request(
            "POST",
            SENDGRID_SEND_URL,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json=body,
        )
        return response.headers.get("x-message-id") or self._synthesize_id()

    async def handle_inbound_webhook(self, body: RawWebhookBody) -> InboundEmail:
        payload: SendGridInboundPayload = self._validate_payload(SendGridInboundPayload, body)

        envelope = _decode_envelope(payload.envelope)
        sender = payload.from_ or envelope.mail_from
        recipient = payload.to or (envelope.rcpt_to[0] if envelope.rcpt_to else "")
        if not sender or not recipient:
            raise WebhookParseError("sendgrid webhook payload has no sender or recipient")

        headers = _parse_header_block(payload.headers)

        return InboundEmail(
            id=headers.get("message-id") or self._synthesize_id(),
            sender_email=sender,
            recipient_email=recipient,
            subject=payload.subject,
            text=payload.text,
            html=payload.html,
            headers=headers,
            envelope=envelope,
        )

    def verify_webhook_signature(
        self,
        payload: Union[bytes, str],
        signature: Optional[str],
        timestamp: Optional[str] = None,
    ) -> bool:
        if not signature or not timestamp:
            return False
        if not self.webhook_secret:
            logger.warning("SENDGRID_WEBHOOK_PUBLIC_KEY is not set; rejecting webhook")
            return False

        try:
            public_key = serialization.load_der_public_key(base64.b64decode(self.webhook_secret))
            decoded_signature = base64.b64decode(signature)
        except (ValueError, binascii.Error, UnsupportedAlgorithm):
            logger.warning("SendGrid webhook key or signature is not valid base64/DER")
            return False

        if not isinstance(public_key, ec.EllipticCurvePublicKey):
            logger.warning("SENDGRID_WEBHOOK_PUBLIC_KEY is not an EC public key")
            return False

        try:
            public_key.verify(
                decoded_signature,
                timestamp.encode() + as_bytes(payload),
                ec.ECDSA(hashes.SHA256()),
            )
        except InvalidSignature:
            return False
        return True

    async def validate_config(self) -> bool:
        """An API key must look like SG.* and be accepted by the scopes endpoint."""
        if not self.api_key:
            logger.warning("SENDGRID_API_KEY not configured")
            return False
        if not self.api_key.startswith("SG."):
            return False

        try:
            async with self._client() as client:
                response = await client.get(
                    SENDGRID_SCOPES_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as exc:
            logger.warning(f"SendGrid config check failed: {exc}")
            return False

        return response.status_code not in (401, 403)
