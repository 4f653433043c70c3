"""
Email provider adapter tests.

Vendor APIs are replaced with httpx.MockTransport. No network calls.

Coverage:
  - inbound normalization for Resend, SendGrid and Postmark payloads
  - outbound request shapes (flat vs. personalizations vs. PascalCase)
  - canonical fields survive inbound -> OutboundSendRequest -> send
  - signature verification, including reject-by-default
  - ProviderError on non-2xx and transport failures
  - provider registry
"""

import base64
import json
import os
import time
from unittest.mock import patch

import httpx
import pytest
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

from mailcommand.errors import ProviderError, WebhookParseError
from mailcommand.models.inbound_email import OutboundSendRequest
from mailcommand.services.postmark_provider import PostmarkProvider
from mailcommand.services.provider_registry import (
    ProviderRegistry,
    active_provider_name,
    build_provider_registry,
)
from mailcommand.services.resend_provider import ResendProvider, sign_resend_payload
from mailcommand.services.sendgrid_provider import SendGridProvider


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class _Recorder:
    """MockTransport handler that records requests and returns a canned response."""

    def __init__(self, status_code: int = 200, json_body=None, headers=None):
        self.status_code = status_code
        self.json_body = json_body if json_body is not None else {}
        self.headers = headers or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.json_body, headers=self.headers)

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def _make_resend_payload(**overrides) -> dict:
    payload = {
        "from": "Ada <ada@example.com>",
        "to": ["cmd@inbound.mailcommand.app"],
        "subject": "/memo groceries",
        "text": "milk, eggs",
        "headers": {"Message-ID": "<abc@example.com>"},
    }
    payload.update(overrides)
    return payload


def _make_sendgrid_form(**overrides) -> dict:
    form = {
        "from": "Ada <ada@example.com>",
        "to": "cmd@inbound.mailcommand.app",
        "subject": "/status",
        "text": "",
        "envelope": json.dumps({"from": "ada@example.com", "to": ["cmd@inbound.mailcommand.app"]}),
        "headers": "Message-ID: <sg-1@example.com>\nX-Mailer: Test\n",
    }
    form.update(overrides)
    return form


def _make_postmark_payload(**overrides) -> dict:
    payload = {
        "MessageID": "pm-123",
        "From": "ada@example.com",
        "To": "cmd@inbound.mailcommand.app",
        "Subject": "/help",
        "TextBody": "",
        "HtmlBody": "<p>hi</p>",
        "Headers": [{"Name": "X-Spam-Status", "Value": "No"}],
    }
    payload.update(overrides)
    return payload


def _ec_keypair():
    private_key = ec.generate_private_key(ec.SECP256R1())
    public_der = private_key.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return private_key, base64.b64encode(public_der).decode()


def _sign_sendgrid(private_key, timestamp: str, body: bytes) -> str:
    signature = private_key.sign(timestamp.encode() + body, ec.ECDSA(hashes.SHA256()))
    return base64.b64encode(signature).decode()


# ===========================================================================
# Resend
# ===========================================================================

class TestResendInbound:

    @pytest.mark.asyncio
    async def test_normalizes_payload(self):
        email = await ResendProvider().handle_inbound_webhook(_make_resend_payload())

        assert email.id == "<abc@example.com>"
        assert email.sender_email == "Ada <ada@example.com>"
        assert email.recipient_email == "cmd@inbound.mailcommand.app"
        assert email.subject == "/memo groceries"
        assert email.text == "milk, eggs"
        assert email.headers == {"message-id": "<abc@example.com>"}

    @pytest.mark.asyncio
    async def test_accepts_raw_json_bytes(self):
        raw = json.dumps(_make_resend_payload()).encode()
        email = await ResendProvider().handle_inbound_webhook(raw)
        assert email.subject == "/memo groceries"

    @pytest.mark.asyncio
    async def test_synthesizes_id_when_missing(self):
        email = await ResendProvider().handle_inbound_webhook(_make_resend_payload(headers={}))
        assert email.id.startswith("resend-")

    @pytest.mark.asyncio
    async def test_string_recipient(self):
        email = await ResendProvider().handle_inbound_webhook(
            _make_resend_payload(to="one@example.com")
        )
        assert email.recipient_email == "one@example.com"

    @pytest.mark.asyncio
    async def test_envelope_is_mapped(self):
        email = await ResendProvider().handle_inbound_webhook(
            _make_resend_payload(envelope={"from": "bounce@example.com", "to": ["cmd@x.app"]})
        )
        assert email.envelope.mail_from == "bounce@example.com"
        assert email.envelope.rcpt_to == ["cmd@x.app"]

    @pytest.mark.asyncio
    async def test_missing_sender_is_rejected(self):
        payload = _make_resend_payload()
        del payload["from"]
        with pytest.raises(WebhookParseError):
            await ResendProvider().handle_inbound_webhook(payload)

    @pytest.mark.asyncio
    async def test_invalid_json_is_rejected(self):
        with pytest.raises(WebhookParseError):
            await ResendProvider().handle_inbound_webhook(b"not json")

    @pytest.mark.asyncio
    async def test_non_object_is_rejected(self):
        with pytest.raises(WebhookParseError):
            await ResendProvider().handle_inbound_webhook(b"[1, 2]")


class TestResendSend:

    @pytest.mark.asyncio
    async def test_flat_request_shape(self):
        recorder = _Recorder(json_body={"id": "re_123"})
        provider = ResendProvider(
            api_key="re_key", from_address="bot@mailcommand.app",
            transport=httpx.MockTransport(recorder),
        )

        message_id = await provider.send_email(
            OutboundSendRequest(to="ada@example.com", subject="Hi", text="Body", reply_to="x@y.z")
        )

        assert message_id == "re_123"
        request = recorder.requests[0]
        assert request.url == "https://api.resend.com/emails"
        assert request.headers["authorization"] == "Bearer re_key"
        assert recorder.last_json == {
            "from": "bot@mailcommand.app",
            "to": ["ada@example.com"],
            "subject": "Hi",
            "text": "Body",
            "reply_to": "x@y.z",
        }

    @pytest.mark.asyncio
    async def test_non_2xx_raises_provider_error(self):
        recorder = _Recorder(status_code=422, json_body={"message": "bad"})
        provider = ResendProvider(api_key="re_key", transport=httpx.MockTransport(recorder))

        with pytest.raises(ProviderError) as exc_info:
            await provider.send_email(OutboundSendRequest(to="a@b.c", subject="s", text="t"))
        assert "422" in str(exc_info.value)
        assert exc_info.value.user_message

    @pytest.mark.asyncio
    async def test_transport_failure_raises_provider_error(self):
        def handler(request):
            raise httpx.ConnectError("boom", request=request)

        provider = ResendProvider(api_key="re_key", transport=httpx.MockTransport(handler))
        with pytest.raises(ProviderError):
            await provider.send_email(OutboundSendRequest(to="a@b.c", subject="s", text="t"))

    @pytest.mark.asyncio
    async def test_missing_api_key_raises_provider_error(self):
        provider = ResendProvider(api_key="", transport=httpx.MockTransport(_Recorder()))
        provider.api_key = ""
        with pytest.raises(ProviderError):
            await provider.send_email(OutboundSendRequest(to="a@b.c", subject="s", text="t"))

    @pytest.mark.asyncio
    async def test_non_json_success_body_raises_provider_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="OK"))
        provider = ResendProvider(api_key="re_key", transport=transport)

        with pytest.raises(ProviderError) as exc_info:
            await provider.send_email(OutboundSendRequest(to="a@b.c", subject="s", text="t"))
        assert exc_info.value.user_message == "The email service sent an unexpected response."


class TestResendSignature:

    def test_valid_signature(self):
        body = json.dumps(_make_resend_payload()).encode()
        provider = ResendProvider(webhook_secret="whsec")
        assert provider.verify_webhook_signature(body, sign_resend_payload(body, "whsec"))

    def test_wrong_secret(self):
        body = b"{}"
        provider = ResendProvider(webhook_secret="whsec")
        assert not provider.verify_webhook_signature(body, sign_resend_payload(body, "other"))

    def test_tampered_body(self):
        provider = ResendProvider(webhook_secret="whsec")
        signature = sign_resend_payload(b'{"a": 1}', "whsec")
        assert not provider.verify_webhook_signature(b'{"a": 2}', signature)

    def test_stale_timestamp(self):
        body = b"{}"
        provider = ResendProvider(webhook_secret="whsec")
        signature = sign_resend_payload(body, "whsec", timestamp=int(time.time()) - 3600)
        assert not provider.verify_webhook_signature(body, signature)

    def test_malformed_header(self):
        provider = ResendProvider(webhook_secret="whsec")
        assert not provider.verify_webhook_signature(b"{}", "garbage")

    def test_unconfigured_secret_rejects(self):
        provider = ResendProvider(webhook_secret="")
        provider.webhook_secret = ""
        body = b"{}"
        assert not provider.verify_webhook_signature(body, sign_resend_payload(body, "whsec"))


# ===========================================================================
# SendGrid
# ===========================================================================

class TestSendGridInbound:

    @pytest.mark.asyncio
    async def test_normalizes_form_fields(self):
        email = await SendGridProvider().handle_inbound_webhook(_make_sendgrid_form())

        assert email.id == "<sg-1@example.com>"
        assert email.sender_email == "Ada <ada@example.com>"
        assert email.recipient_email == "cmd@inbound.mailcommand.app"
        assert email.headers["x-mailer"] == "Test"
        assert email.envelope.mail_from == "ada@example.com"

    @pytest.mark.asyncio
    async def test_falls_back_to_envelope_addresses(self):
        email = await SendGridProvider().handle_inbound_webhook(
            _make_sendgrid_form(**{"from": "", "to": ""})
        )
        assert email.sender_email == "ada@example.com"
        assert email.recipient_email == "cmd@inbound.mailcommand.app"

    @pytest.mark.asyncio
    async def test_malformed_envelope_is_tolerated(self):
        email = await SendGridProvider().handle_inbound_webhook(
            _make_sendgrid_form(envelope="{not json")
        )
        assert email.envelope.mail_from == ""
        assert email.sender_email == "Ada <ada@example.com>"

    @pytest.mark.asyncio
    async def test_no_sender_anywhere_is_rejected(self):
        with pytest.raises(WebhookParseError):
            await SendGridProvider().handle_inbound_webhook(
                _make_sendgrid_form(**{"from": "", "envelope": ""})
            )


class TestSendGridSend:

    @pytest.mark.asyncio
    async def test_personalizations_shape(self):
        recorder = _Recorder(status_code=202, headers={"X-Message-Id": "sg-msg-1"})
        provider = SendGridProvider(
            api_key="SG.key", from_address="bot@mailcommand.app",
            transport=httpx.MockTransport(recorder),
        )

        message_id = await provider.send_email(
            OutboundSendRequest(to="ada@example.com", subject="Hi", text="Body", cc=["c@x.y"])
        )

        assert message_id == "sg-msg-1"
        body = recorder.last_json
        assert body["personalizations"] == [
            {"to": [{"email": "ada@example.com"}], "cc": [{"email": "c@x.y"}]}
        ]
        assert body["from"] == {"email": "bot@mailcommand.app"}
        assert body["content"] == [{"type": "text/plain", "value": "Body"}]

    @pytest.mark.asyncio
    async def test_synthesizes_id_without_header(self):
        provider = SendGridProvider(
            api_key="SG.key", transport=httpx.MockTransport(_Recorder(status_code=202))
        )
        message_id = await provider.send_email(OutboundSendRequest(to="a@b.c", subject="s", text="t"))
        assert message_id.startswith("sendgrid-")


class TestSendGridSignature:

    def test_valid_signature(self):
        private_key, public_b64 = _ec_keypair()
        body = b"payload-bytes"
        timestamp = "1700000000"
        provider = SendGridProvider(webhook_secret=public_b64)

        signature = _sign_sendgrid(private_key, timestamp, body)
        assert provider.verify_webhook_signature(body, signature, timestamp)

    def test_tampered_body(self):
        private_key, public_b64 = _ec_keypair()
        provider = SendGridProvider(webhook_secret=public_b64)

        signature = _sign_sendgrid(private_key, "1700000000", b"original")
        assert not provider.verify_webhook_signature(b"changed", signature, "1700000000")

    def test_wrong_key(self):
        private_key, _ = _ec_keypair()
        _, other_public = _ec_keypair()
        provider = SendGridProvider(webhook_secret=other_public)

        signature = _sign_sendgrid(private_key, "1", b"x")
        assert not provider.verify_webhook_signature(b"x", signature, "1")

    def test_missing_timestamp(self):
        private_key, public_b64 = _ec_keypair()
        provider = SendGridProvider(webhook_secret=public_b64)
        signature = _sign_sendgrid(private_key, "1", b"x")
        assert not provider.verify_webhook_signature(b"x", signature, None)

    def test_garbage_key_rejects(self):
        provider = SendGridProvider(webhook_secret="bm90IGEga2V5")
        assert not provider.verify_webhook_signature(b"x", "c2ln", "1")

    def test_unsupported_key_algorithm_rejects(self):
        provider = SendGridProvider(webhook_secret="bm90IGEga2V5")
        with patch(
            "mailcommand.services.sendgrid_provider.serialization.load_der_public_key",
            side_effect=UnsupportedAlgorithm("unsupported curve"),
        ):
            assert provider.verify_webhook_signature(b"x", "c2ln", "1") is False


# ===========================================================================
# Postmark
# ===========================================================================

class TestPostmark:

    @pytest.mark.asyncio
    async def test_normalizes_pascal_case(self):
        email = await PostmarkProvider().handle_inbound_webhook(_make_postmark_payload())

        assert email.id == "pm-123"
        assert email.sender_email == "ada@example.com"
        assert email.subject == "/help"
        assert email.html == "<p>hi</p>"
        assert email.headers == {"x-spam-status": "No"}

    @pytest.mark.asyncio
    async def test_missing_to_is_rejected(self):
        payload = _make_postmark_payload()
        del payload["To"]
        with pytest.raises(WebhookParseError):
            await PostmarkProvider().handle_inbound_webhook(payload)

    @pytest.mark.asyncio
    async def test_send_shape(self):
        recorder = _Recorder(json_body={"ErrorCode": 0, "MessageID": "pm-out-1"})
        provider = PostmarkProvider(
            api_key="pm-token", from_address="bot@mailcommand.app",
            transport=httpx.MockTransport(recorder),
        )

        message_id = await provider.send_email(
            OutboundSendRequest(
                to="ada@example.com", subject="Hi", text="Body",
                cc=["a@x.y", "b@x.y"], headers={"In-Reply-To": "<m1>"},
            )
        )

        assert message_id == "pm-out-1"
        assert recorder.requests[0].headers["x-postmark-server-token"] == "pm-token"
        body = recorder.last_json
        assert body["To"] == "ada@example.com"
        assert body["Cc"] == "a@x.y, b@x.y"
        assert body["Headers"] == [{"Name": "In-Reply-To", "Value": "<m1>"}]

    @pytest.mark.asyncio
    async def test_error_code_in_200_body_raises(self):
        recorder = _Recorder(json_body={"ErrorCode": 300, "Message": "Invalid email"})
        provider = PostmarkProvider(api_key="pm-token", transport=httpx.MockTransport(recorder))
        with pytest.raises(ProviderError):
            await provider.send_email(OutboundSendRequest(to="a@b.c", subject="s", text="t"))

    @pytest.mark.asyncio
    async def test_plain_text_200_raises_provider_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="OK"))
        provider = PostmarkProvider(api_key="pm-token", transport=transport)
        with pytest.raises(ProviderError) as exc_info:
            await provider.send_email(OutboundSendRequest(to="a@b.c", subject="s", text="t"))
        assert exc_info.value.user_message

    @pytest.mark.asyncio
    async def test_json_array_200_raises_provider_error(self):
        provider = PostmarkProvider(
            api_key="pm-token", transport=httpx.MockTransport(_Recorder(json_body=[1, 2]))
        )
        with pytest.raises(ProviderError):
            await provider.send_email(OutboundSendRequest(to="a@b.c", subject="s", text="t"))

    def test_shared_token_signature(self):
        provider = PostmarkProvider(webhook_secret="tok")
        assert provider.verify_webhook_signature(b"{}", "tok")
        assert not provider.verify_webhook_signature(b"{}", "nope")


# ===========================================================================
# Cross-provider properties
# ===========================================================================

def _providers_with(recorder: _Recorder):
    transport = httpx.MockTransport(recorder)
    return [
        (ResendProvider(api_key="re_key", webhook_secret="s", transport=transport), _make_resend_payload()),
        (SendGridProvider(api_key="SG.key", webhook_secret="s", transport=transport), _make_sendgrid_form()),
        (PostmarkProvider(api_key="pm", webhook_secret="s", transport=transport), _make_postmark_payload()),
    ]


class TestAllProviders:

    def test_empty_signature_is_always_rejected(self):
        for provider, _ in _providers_with(_Recorder()):
            assert provider.verify_webhook_signature(b"{}", "") is False
            assert provider.verify_webhook_signature(b"{}", None, "1") is False

    @pytest.mark.asyncio
    async def test_canonical_fields_survive_send(self):
        recorder = _Recorder(status_code=200, json_body={"id": "x", "ErrorCode": 0, "MessageID": "x"})

        for provider, payload in _providers_with(recorder):
            email = await provider.handle_inbound_webhook(payload)
            await provider.send_email(
                OutboundSendRequest(to=email.recipient_email, subject=email.subject, text=email.text or "x")
            )

            sent = json.dumps(recorder.last_json)
            assert email.recipient_email in sent
            assert email.subject in sent
            assert (email.text or "x") in sent

    @pytest.mark.asyncio
    async def test_validate_config_false_without_key(self):
        for provider in (ResendProvider(), SendGridProvider(), PostmarkProvider()):
            provider.api_key = ""
            assert await provider.validate_config() is False

    @pytest.mark.asyncio
    async def test_validate_config_rejected_key(self):
        transport = httpx.MockTransport(_Recorder(status_code=401))
        for provider in (
            ResendProvider(api_key="re_bad", transport=transport),
            SendGridProvider(api_key="SG.bad", transport=transport),
            PostmarkProvider(api_key="bad", transport=transport),
        ):
            assert await provider.validate_config() is False

    @pytest.mark.asyncio
    async def test_validate_config_accepted_key(self):
        transport = httpx.MockTransport(_Recorder(status_code=422))
        assert await ResendProvider(api_key="re_ok", transport=transport).validate_config() is True


class TestProviderRegistry:

    def test_builtin_providers(self):
        registry = build_provider_registry()
        assert registry.names() == ["postmark", "resend", "sendgrid"]
        assert "SendGrid" in registry

    def test_unknown_name_returns_none(self):
        assert build_provider_registry().get("mailgun") is None
        assert build_provider_registry().get(None) is None

    def test_duplicate_registration_rejected(self):
        registry = ProviderRegistry()
        registry.register(ResendProvider())
        with pytest.raises(ValueError):
            registry.register(ResendProvider())

    def test_active_provider_default(self, monkeypatch):
        monkeypatch.delenv("EMAIL_PROVIDER", raising=False)
        assert active_provider_name() == "resend"
        monkeypatch.setenv("EMAIL_PROVIDER", " Postmark ")
        assert active_provider_name() == "postmark"
