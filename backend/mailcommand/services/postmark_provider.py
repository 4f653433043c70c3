"""
Postmark provider.

Outbound: POST https://api.postmarkapp.com/email with PascalCase fields;
          cc/bcc are comma-separated strings.
Inbound:  JSON webhook with PascalCase keys (From, To, Subject, TextBody,
          HtmlBody, MessageID, Headers[].{Name, Value}).
Webhook authentication: Postmark does not sign inbound webhooks, so the
          endpoint is configured with a shared token that Postmark sends in
          X-Postmark-Secret; it is compared in constant time.

Environment variables
---------------------
POSTMARK_SERVER_TOKEN     server API token
POSTMARK_WEBHOOK_SECRET   shared webhook token
"""

import hmac
import logging
import os
from typing import Optional, Union

import httpx

from mailcommand.errors import ProviderError
from mailcommand.models.inbound_email import InboundEmail, OutboundSendRequest
from mailcommand.models.webhooks import PostmarkInboundPayload
from mailcommand.services.email_provider import EmailProvider, RawWebhookBody

logger = logging.getLogger(__name__)

POSTMARK_API_URL = "https://api.postmarkapp.com"


class PostmarkProvider(EmailProvider):
    name = "postmark"
    signature_header = "X-Postmark-Secret"
    default_from_address = "noreply@mailcommand.app"

    def __init__(self, api_key=None, webhook_secret=None, from_address=None, transport=None):
        super().__init__(
            api_key=api_key or os.getenv("POSTMARK_SERVER_TOKEN"),
            webhook_secret=webhook_secret or os.getenv("POSTMARK_WEBHOOK_SECRET"),
            from_address=from_address,
            transport=transport,
        )

    def _auth_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-Postmark-Server-Token": self.api_key,
        }

    async def send_email(self, request: OutboundSendRequest) -> str:
        self._require_api_key()

        body: dict = {
            "From": self.from_address,
            "To": request.to,
            "Subject": request.subject,
            "TextBody": request.text,
        }
        if request.html:
            body["HtmlBody"] = request.html
        if request.reply_to:
            body["ReplyTo"] = request.reply_to
        if request.cc:
            body["Cc"] = ", ".join(request.cc)
        if request.bcc:
            body["Bcc"] = ", ".join(request.bcc)
        if request.headers:
            body["Headers"] = [{"Name": k, "Value": v} for k, v in request.headers.items()]

        response = await self._request(
            "POST", f"{POSTMARK_API_URL}/email", headers=self._auth_headers(), json=body
        )
        data = self._json_object(response)

        # Postmark reports some rejections in a 200 body
        if data.get("ErrorCode"):
            raise ProviderError(
                f"postmark API error {data.get('ErrorCode')}: {data.get('Message')}",
                user_message="The email service rejected the message.",
            )
        return data.get("MessageID") or self._synthesize_id()

    async def handle_inbound_webhook(self, body: RawWebhookBody) -> InboundEmail:
        payload: PostmarkInboundPayload = self._validate_payload(PostmarkInboundPayload, body)

        headers = {h.Name.lower(): h.Value for h in payload.Headers}

        return InboundEmail(
            id=payload.MessageID or headers.get("message-id") or self._synthesize_id(),
            sender_email=payload.From,
            recipient_email=payload.To,
            subject=payload.Subject,
            text=payload.TextBody,
            html=payload.HtmlBody,
            headers=headers,
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
            logger.warning("POSTMARK_WEBHOOK_SECRET is not set; rejecting webhook")
            return False
        return hmac.compare_digest(signature.encode(), self.webhook_secret.encode())

    async def validate_config(self) -> bool:
        if not self.api_key:
            logger.warning("POSTMARK_SERVER_TOKEN not configured")
            return False

        try:
            async with self._client() as client:
                response = await client.get(
                    f"{POSTMARK_API_URL}/server", headers=self._auth_headers()
                )
        except httpx.HTTPError as exc:
            logger.warning(f"Postmark config check failed: {exc}")
            return False

        return response.status_code not in (401, 403)
