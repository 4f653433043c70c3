"""
Email provider capability contract.

Every vendor adapter subclasses EmailProvider and implements:

  send_email(request)              -> vendor message id   (ProviderError on failure)
  handle_inbound_webhook(body)     -> InboundEmail        (WebhookParseError on bad payload)
  verify_webhook_signature(...)    -> bool                (False whenever unsure)
  validate_config()                -> bool                (cheap credential check)

Callers only ever see InboundEmail / OutboundSendRequest, so nothing outside
the adapters branches on vendor.

Adding a new provider:
  1. Subclass EmailProvider in services/<vendor>_provider.py.
  2. Register it in provider_registry.build_provider_registry().
  3. Set EMAIL_PROVIDER=<vendor> in the environment.
"""

import json
import logging
import os
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Literal, Optional, Union

import httpx
from pydantic import BaseModel, ValidationError

from mailcommand.errors import ProviderError, WebhookParseError
from mailcommand.models.inbound_email import InboundEmail, OutboundSendRequest

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 8.0

RawWebhookBody = Union[Mapping[str, Any], bytes, str]


def http_timeout() -> float:
    """Timeout applied to every outbound HTTP call (HTTP_TIMEOUT_SECONDS)."""
    try:
        return float(os.getenv("HTTP_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))
    except ValueError:
        return DEFAULT_TIMEOUT_SECONDS


class EmailProvider(ABC):
    """Base class for vendor adapters."""

    name: str = ""

    # Request headers the webhook endpoint must hand to verify_webhook_signature.
    signature_header: str = ""
    timestamp_header: Optional[str] = None

    # How the vendor encodes its inbound webhook body.
    inbound_format: Literal["json", "form"] = "json"

    default_from_address: str = ""

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        from_address: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or ""
        self.webhook_secret = webhook_secret or ""
        self.from_address = (
            from_address or os.getenv("MAIL_FROM_ADDRESS") or self.default_from_address
        )
        self._transport = transport

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def send_email(self, request: OutboundSendRequest) -> str:
        """Send ``request`` and return the vendor's message id."""

    @abstractmethod
    async def handle_inbound_webhook(self, body: RawWebhookBody) -> InboundEmail:
        """Map the vendor webhook body onto InboundEmail."""

    @abstractmethod
    def verify_webhook_signature(
        self,
        payload: Union[bytes, str],
        signature: Optional[str],
        timestamp: Optional[str] = None,
    ) -> bool:
        """Return True only when ``signature`` authenticates ``payload``."""

    async def validate_config(self) -> bool:
        return bool(self.api_key)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=http_timeout(), transport=self._transport)

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Perform an HTTP call, mapping transport failures and non-2xx
        responses onto ProviderError.
        """
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderError(
                f"{self.name} request timed out: {exc}",
                user_message="The email service did not respond in time.",
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"{self.name} request failed: {exc}",
                user_message="The email service could not be reached.",
            ) from exc

        if not response.is_success:
            raise ProviderError(
                f"{self.name} API error: {response.status_code} - {response.text}",
                user_message="The email service rejected the message.",
            )
        return response

    def _json_object(self, response: httpx.Response) -> dict[str, Any]:
        """Decode a 2xx response body that must be a JSON object."""
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"{self.name} API returned a non-JSON body: {response.text[:200]!r}",
                user_message="The email service sent an unexpected response.",
            ) from exc

        if not isinstance(data, dict):
            raise ProviderError(
                f"{self.name} API returned {type(data).__name__}, expected an object",
                user_message="The email service sent an unexpected response.",
            )
        return data

    def _require_api_key(self) -> None:
        if not self.api_key:
            raise ProviderError(
                f"{self.name} API key is not configured",
                user_message="Outbound email is not configured.",
            )

    def _synthesize_id(self) -> str:
        return f"{self.name}-{int(time.time() * 1000)}"

    def _validate_payload(self, schema: type[BaseModel], body: RawWebhookBody) -> Any:
        """Decode ``body`` (if raw) and validate it against the vendor schema."""
        if isinstance(body, (bytes, str)):
            try:
                body = json.loads(body)
            except ValueError as exc:
                raise WebhookParseError(f"{self.name} webhook body is not valid JSON") from exc

        if not isinstance(body, Mapping):
            raise WebhookParseError(f"{self.name} webhook body must be an object")

        try:
            return schema.model_validate(dict(body))
        except ValidationError as exc:
            raise WebhookParseError(
                f"{self.name} webhook payload does not match the expected shape: "
                f"{exc.error_count()} error(s)"
            ) from exc


def as_bytes(payload: Union[bytes, str]) -> bytes:
    return payload.encode("utf-8") if isinstance(payload, str) else payload
