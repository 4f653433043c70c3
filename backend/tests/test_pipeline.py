"""
Pipeline and reply composition tests.

The provider, store and fetcher are mocks; the dispatcher and handlers are
real.

Coverage:
  - compose_reply glyphs, subject and threading headers
  - no command -> no dispatch, no reply
  - allow-list rejection -> no reply
  - body-sourced commands hand only the payload to the handler
  - reply send failure does not fail the message
  - HTML-only bodies
"""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

from mailcommand.errors import ProviderError
from mailcommand.models.command import Command, ExecutionResult
from mailcommand.models.inbound_email import InboundEmail
from mailcommand.services.dispatcher import Dispatcher, build_default_registry
from mailcommand.services.pipeline import (
    CommandPipeline,
    body_without_command,
    email_text,
    html_body_to_text,
)
from mailcommand.services.reply import compose_reply, reply_subject, reply_text
from mailcommand.services.summarizer import RuleBasedSummarizer


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_email(subject: str = "/memo buy milk", text: str = "", html=None, headers=None) -> InboundEmail:
    return InboundEmail(
        id="msg-1",
        sender_email="Ada Lovelace <Ada@Example.com>",
        recipient_email="cmd@inbound.mailcommand.app",
        subject=subject,
        text=text,
        html=html,
        headers=headers or {},
    )


def _make_pipeline(store=None) -> CommandPipeline:
    if store is None:
        store = AsyncMock()
        store.create.return_value = "7"
        store.query_by_owner.return_value = []
    return CommandPipeline(
        dispatcher=Dispatcher(build_default_registry()),
        store=store,
        fetcher=AsyncMock(),
        summarizer=RuleBasedSummarizer(),
        workflows=AsyncMock(),
        artifact_base_url="https://mc.test",
    )


def _make_provider(send_result="reply-1") -> MagicMock:
    provider = MagicMock()
    provider.name = "resend"
    if isinstance(send_result, Exception):
        provider.send_email = AsyncMock(side_effect=send_result)
    else:
        provider.send_email = AsyncMock(return_value=send_result)
    return provider


# ===========================================================================
# Reply composition
# ===========================================================================

class TestComposeReply:

    def test_success_text_appends_url(self):
        result = ExecutionResult.ok("Memo saved! Quick note", url="https://mc.test/memo/1")
        assert reply_text(result) == "✅ Done: Memo saved! Quick note\n\nhttps://mc.test/memo/1"

    def test_url_not_repeated_when_already_in_message(self):
        result = ExecutionResult.ok("See https://mc.test/memo/1", url="https://mc.test/memo/1")
        assert reply_text(result) == "✅ Done: See https://mc.test/memo/1"

    def test_failure_text(self):
        assert reply_text(ExecutionResult.fail("Unknown command: /x")) == "❌ Unknown command: /x"

    def test_subject(self):
        assert reply_subject("/memo hi") == "Re: /memo hi"
        assert reply_subject("RE: /memo hi") == "RE: /memo hi"
        assert reply_subject("") == "Re: your MailCommand request"

    def test_threading_headers(self):
        email = _make_email(headers={"Message-ID": "<m1@example.com>"})
        request = compose_reply(email, "ada@example.com", ExecutionResult.ok("ok"))

        assert request.to == "ada@example.com"
        assert request.headers == {"In-Reply-To": "<m1@example.com>", "References": "<m1@example.com>"}


# ===========================================================================
# Body helpers
# ===========================================================================

class TestBodyHelpers:

    def test_html_fallback(self):
        email = _make_email(text="", html="<p>/status</p>")
        assert email_text(email) == "/status"

    def test_subject_command_keeps_whole_body(self):
        command = Command(name="memo", raw="/memo", source="subject")
        assert body_without_command("line\n\n> quoted\r\nmore", command) == "line\n\n> quoted\nmore"

    def test_html_body_keeps_block_lines(self):
        email = _make_email(text="", html="<p>Hello there</p>\n<p>/memo buy milk</p>")
        assert email_text(email) == "Hello there\n/memo buy milk"

    def test_html_body_breaks_and_entities(self):
        html = "<div>Fish &amp; chips<br>Peas</div><script>x()</script><div>  <b>Tea</b>  </div>"
        assert html_body_to_text(html) == "Fish & chips\nPeas\nTea"

    def test_body_command_line_removed(self):
        command = Command(name="memo", args=["title"], raw="/memo title", source="body")
        assert body_without_command("/memo title\nthe content", command) == "the content"

    def test_embedded_command_line_removed(self):
        command = Command(
            name="extract", args=["https://e.com"], raw="/extract https://e.com",
            source="body_embedded",
        )
        body = "Hi,\n/extract https://e.com\nWhat is it?"
        assert body_without_command(body, command) == "Hi,\nWhat is it?"


# ===========================================================================
# CommandPipeline.process
# ===========================================================================

class TestPipeline:

    @pytest.mark.asyncio
    async def test_memo_round_trip(self, monkeypatch):
        monkeypatch.delenv("ALLOWED_SENDERS", raising=False)
        pipeline = _make_pipeline()
        provider = _make_provider()

        outcome = await pipeline.process(_make_email(), provider)

        assert outcome.processed is True
        assert outcome.command == "memo"
        assert outcome.result.success is True
        assert outcome.reply_id == "reply-1"
        assert outcome.as_response() == {
            "received": True, "processed": True, "command": "memo", "success": True,
        }

        record = pipeline.store.create.await_args.args[0]
        assert record.owner_id == "ada@example.com"
        assert record.content == "buy milk"

        reply = provider.send_email.await_args.args[0]
        assert reply.to == "ada@example.com"
        assert reply.subject == "Re: /memo buy milk"
        assert reply.text.startswith("✅ Done: Memo saved!")
        assert "https://mc.test/memo/7" in reply.text

    @pytest.mark.asyncio
    async def test_no_command_means_no_reply(self, monkeypatch):
        monkeypatch.delenv("ALLOWED_SENDERS", raising=False)
        provider = _make_provider()

        outcome = await _make_pipeline().process(
            _make_email(subject="Lunch?", text="Are you free?"), provider
        )

        assert outcome.processed is False
        assert outcome.reason == "no_command"
        assert outcome.as_response()["command"] is None
        assert outcome.as_response()["success"] is None
        provider.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_command_is_replied(self, monkeypatch):
        monkeypatch.delenv("ALLOWED_SENDERS", raising=False)
        provider = _make_provider()

        outcome = await _make_pipeline().process(_make_email(subject="/frobnicate"), provider)

        assert outcome.processed is True
        assert outcome.result.success is False
        assert provider.send_email.await_args.args[0].text == "❌ Unknown command: /frobnicate"

    @pytest.mark.asyncio
    async def test_sender_outside_allow_list_is_ignored(self, monkeypatch):
        monkeypatch.setenv("ALLOWED_SENDERS", "grace@example.com, Other <x@y.z>")
        pipeline = _make_pipeline()
        provider = _make_provider()

        outcome = await pipeline.process(_make_email(), provider)

        assert outcome.processed is False
        assert outcome.reason == "sender_not_allowed"
        pipeline.store.create.assert_not_awaited()
        provider.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sender_in_allow_list_is_processed(self, monkeypatch):
        monkeypatch.setenv("ALLOWED_SENDERS", "ADA@example.com")
        outcome = await _make_pipeline().process(_make_email(), _make_provider())
        assert outcome.processed is True

    @pytest.mark.asyncio
    async def test_body_command_payload(self, monkeypatch):
        monkeypatch.delenv("ALLOWED_SENDERS", raising=False)
        pipeline = _make_pipeline()

        email = _make_email(subject="notes", text="/memo Standup\nShipped the parser.\n-- \nAda")
        outcome = await pipeline.process(email, _make_provider())

        assert outcome.command == "memo"
        record = pipeline.store.create.await_args.args[0]
        assert record.title == "Standup"
        assert record.content == "Shipped the parser."

    @pytest.mark.asyncio
    async def test_blog_body_keeps_blockquote(self, monkeypatch):
        monkeypatch.delenv("ALLOWED_SENDERS", raising=False)
        pipeline = _make_pipeline()

        body = "Intro paragraph.\n> A famous quote\nMy analysis of the quote.\nConclusion."
        outcome = await pipeline.process(_make_email(subject="/blog My Post", text=body), _make_provider())

        assert outcome.result.success is True
        saved = pipeline.store.create.await_args.args[0].content
        assert "> A famous quote" in saved
        assert "My analysis of the quote." in saved
        assert "Conclusion." in saved

    @pytest.mark.asyncio
    async def test_html_only_body_with_embedded_command(self, monkeypatch):
        monkeypatch.delenv("ALLOWED_SENDERS", raising=False)
        pipeline = _make_pipeline()

        email = _make_email(subject="hi", html="<p>Hello there</p>\n<p>/memo buy milk</p>")
        outcome = await pipeline.process(email, _make_provider())

        assert outcome.command == "memo"
        record = pipeline.store.create.await_args.args[0]
        assert record.content == "Hello there"

    @pytest.mark.asyncio
    async def test_reply_failure_is_logged_not_raised(self, monkeypatch):
        monkeypatch.delenv("ALLOWED_SENDERS", raising=False)
        provider = _make_provider(ProviderError("503 from vendor", user_message="down"))

        outcome = await _make_pipeline().process(_make_email(), provider)

        assert outcome.processed is True
        assert outcome.result.success is True
        assert outcome.reply_id is None
