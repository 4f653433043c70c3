"""
Resend provider.

Outbound: POST https://api.resend.com/emails (JSON, flat to/cc/bcc).
Inbound:  JSON webhook, snake_case keys; the envelope (when present) is
          already a structured object.
Webhook signature header ``resend-signature``:

    t=<unix seconds>,v1=<hex HMAC-SHA256 of "<t>.<raw body>">

signed with RESEND_WEBHOOK_SECRET. Signatures outside a five minute window
are rejected.

Environment variables
---------------------
RESEND_API_KEY          API key (re_...)
RESEND_WEBHOOK_SECRET   HMAC secret for inbound webhooks
"""

import hashlib
import hmac
import logging
import os
import time
from typing import Optional, Union

import httpx

from mailcommand.models.inbound_email import Envelope, InboundEmail, OutboundSendRequest
from mailcommand.models.webhooks import ResendInboundPayload
from mailcommand.services.email_provider import EmailProvider, RawWebhookBody, as_bytes

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

SIGNATURE_TOLERANCE_SECONDS = 300


class ResendProvider(EmailProvider):
    name = "resend"
    signature_header = "resend-signature"
    default_from_address = "MailCommand <onboarding@resend.dev>"

    def __init__(self, api_key=None, webhook_secret=None, from_address=None, transport=None):
        super().__init__(
            api_key=api_key or os.getenv("RESEND_API_KEY"),
            webhook_secret=webhook_secret or os.getenv("RESEND_WEBHOOK_SECRET"),
            from_address=from_address,
            transport=transport,
        )

    def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def send_email(self, request: OutboundSendRequest) -> str:
        self._require_api_key()

        body = {
            "from": self.from_address,
            "to": [request.to],
            "subject": request.subject,
            "text": request.text,
        }
        if request.html:
            body["html"] = request.html
        if request.reply_to:
            body["reply_to"] = request.reply_to
        if request.cc:
            body["cc"] = request.cc
        if request.bcc:
            body["bcc"] = request.bcc
        if request.headers:
            body["headers"] = request.headers

        response = await self._request(
            "POST", RESEND_API_URL, headers=self._auth_headers(), json=body
        )
        message_id = self._json_object(response).get("id")
        return message_id or self._synthesize_id()

    async def handle_inbound_webhook(self, body: RawWebhookBody) -> InboundEmail:
        payload: ResendInboundPayload = self._validate_payload(ResendInboundPayload, body)

        headers = {k.lower(): v for k, v in payload.headers.items()}
        recipient = payload.to if isinstance(payload.to, str) else ", ".join(payload.to)

        envelope = None
        if payload.envelope is not None:
            envelope = Envelope(
                mail_from=payload.envelope.from_,
                rcpt_to=payload.envelope.to,
            )

        return InboundEmail(
            id=headers.get("message-id") or self._synthesize_id(),
            sender_email=payload.from_,
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
        if not signature:
            return False
        if not self.webhook_secret:
            logger.warning("RESEND_WEBHOOK_SECRET is not set; rejecting webhook")
            return False

        parts: dict[str, list[str]] = {}
        for item in signature.split(","):
            key, sep, value = item.strip().partition("=")
            if sep:
                parts.setdefault(key, []).append(value)

        signed_at = (parts.get("t") or [timestamp or ""])[0]
        candidates = parts.get("v1") or []
        if not signed_at or not candidates:
            return False

        try:
            signed_at_int = int(signed_at)
        except ValueError:
            return False
        if abs(time.time() - signed_at_int) > SIGNATURE_TOLERANCE_SECONDS:
            return False

        signed_payload = f"{signed_at}.".encode() + as_bytes(payload)
        expected = hmac.new(
            self.webhook_secret.encode(), signed_payload, hashlib.sha256
        ).hexdigest()
        return any(hmac.compare_digest(expected, candidate) for candidate in candidates)

    async def validate_config(self) -> bool:
        """
        Probe the API with a deliberately incomplete send.

        A valid key gets a 4xx validation error (422); an invalid key gets 401.
        """
        if not self.api_key:
            logger.warning("RESEND_API_KEY not configured")
            return False

        try:
            async with self._client() as client:
                response = await client.post(
                    RESEND_API_URL,
                    headers=self._auth_headers(),
                    json={"from": "", "to": "", "subject": "", "text": ""},
                )
        except httpx.HTTPError as exc:
            logger.warning(f"Resend config check failed: {exc}")
            return False

        return response.status_code not in (401, 403)


def sign_resend_payload(payload: Union[bytes, str], secret: str, timestamp: Optional[int] = None) -> str:
    """Build a ``resend-signature`` header value for ``payload`` (dev tooling and tests)."""
    signed_at = str(timestamp if timestamp is not None else int(time.time()))
    digest = hmac.new(
        secret.encode(), f"{signed_at}.".encode() + as_bytes(payload), hashlib.sha256
    ).hexdigest()
    return f"t={signed_at},v1={digest}"
