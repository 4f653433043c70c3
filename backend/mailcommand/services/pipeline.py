"""
Inbound message pipeline: one email -> one parse -> one dispatch -> one reply.

The pipeline holds only read-only collaborators (dispatcher, store, fetcher,
summarizer, workflow trigger); per-message state lives in a fresh
CommandContext. Concurrent messages never share mutable state.
"""

import html
import logging
import os
import re
from dataclasses import dataclass
from typing import Optional

from mailcommand.auth import is_sender_allowed, resolve_sender
from mailcommand.errors import ProviderError
from mailcommand.models.command import Command, ExecutionResult
from mailcommand.models.inbound_email import InboundEmail
from mailcommand.services.command_context import CommandContext
from mailcommand.services.command_parser import parse_email, strip_signature
from mailcommand.services.dispatcher import Dispatcher
from mailcommand.services.email_provider import EmailProvider
from mailcommand.services.page_fetcher import PageFetcher
from mailcommand.services.reply import compose_reply
from mailcommand.services.storage import ArtifactStore
from mailcommand.services.summarizer import Summarizer
from mailcommand.services.workflows import WorkflowTrigger

logger = logging.getLogger(__name__)


@dataclass
class PipelineOutcome:
    """What happened to one inbound message."""

    processed: bool
    command: Optional[str] = None
    result: Optional[ExecutionResult] = None
    reply_id: Optional[str] = None
    reason: Optional[str] = None

    def as_response(self) -> dict:
        return {
            "received": True,
            "processed": self.processed,
            "command": self.command,
            "success": self.result.success if self.result else None,
        }


_SCRIPT_OR_STYLE = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_LINE_BREAK_TAG = re.compile(
    r"<br\s*/?>|</(p|div|li|tr|h[1-6]|blockquote)\s*>", re.IGNORECASE
)
_TAG = re.compile(r"<[^>]+>")
_INLINE_WHITESPACE = re.compile(r"[ \t\f\v]+")
_BLANK_RUN = re.compile(r"\n{3,}")


def html_body_to_text(html_body: str) -> str:
    """
    Render an HTML email body as plain text, one line per block element.

    Unlike the page reducer used by /extract, line structure is kept so the
    body command fallbacks and saved content still see separate lines.
    """
    text = _SCRIPT_OR_STYLE.sub("", html_body)
    text = text.replace("\r\n", "\n").replace("\n", " ")
    text = _LINE_BREAK_TAG.sub("\n", text)
    text = html.unescape(_TAG.sub("", text))
    lines = [_INLINE_WHITESPACE.sub(" ", line).strip() for line in text.split("\n")]
    return _BLANK_RUN.sub("\n\n", "\n".join(lines)).strip()


def email_text(email: InboundEmail) -> str:
    """Plain-text body, falling back to the HTML part rendered as text."""
    if email.text.strip():
        return email.text
    if email.html:
        return html_body_to_text(email.html)
    return ""


def body_without_command(body: str, command: Command) -> str:
    """
    Body content handed to the handler.

    The signature is dropped; quoted lines are kept as written. When the command
    itself came from the body, its line is removed so handlers see only the
    payload.
    """
    text = strip_signature(body)
    if command.source == "subject":
        return text

    lines = text.split("\n")
    for i, line in enumerate(lines):
        if line.strip() == command.raw:
            del lines[i]
            break
    return "\n".join(lines).strip()


class CommandPipeline:
    def __init__(
        self,
        dispatcher: Dispatcher,
        store: ArtifactStore,
        fetcher: PageFetcher,
        summarizer: Summarizer,
        workflows: WorkflowTrigger,
        artifact_base_url: Optional[str] = None,
        claris_address: Optional[str] = None,
    ):
        self.dispatcher = dispatcher
        self.store = store
        self.fetcher = fetcher
        self.summarizer = summarizer
        self.workflows = workflows
        self.artifact_base_url = artifact_base_url or os.getenv("ARTIFACT_BASE_URL")
        self.claris_address = claris_address or os.getenv("CLARIS_FORWARD_ADDRESS")

    async def process(self, email: InboundEmail, provider: EmailProvider) -> PipelineOutcome:
        """
        Run one inbound email through parse, dispatch and reply.

        Steps:
        1. Resolve the sender and apply the allow-list.
        2. Parse the command (subject first, then body).
        3. Dispatch to the registered handler.
        4. Send the confirmation reply through ``provider``.

        CommandRoutingError is not caught: a miswired registry aborts the
        request without a reply.
        """
        # 1. Sender
        sender = resolve_sender(email.sender_email)
        if not is_sender_allowed(sender):
            logger.warning(f"Ignoring message {email.id}: sender not in ALLOWED_SENDERS")
            return PipelineOutcome(processed=False, reason="sender_not_allowed")

        # 2. Parse
        body = email_text(email)
        command = parse_email(email.subject, body)
        if command is None:
            logger.info(f"No command found in message {email.id}")
            return PipelineOutcome(processed=False, reason="no_command")

        # 3. Dispatch
        ctx = CommandContext(
            sender=sender,
            email=email,
            body=body_without_command(body, command),
            store=self.store,
            provider=provider,
            fetcher=self.fetcher,
            summarizer=self.summarizer,
            workflows=self.workflows,
            artifact_base_url=self.artifact_base_url,
            claris_address=self.claris_address,
        )
        result = await self.dispatcher.dispatch(command, ctx)
        logger.info(f"/{command.name} for message {email.id}: success={result.success}")

        # 4. Reply
        reply_id: Optional[str] = None
        try:
            reply_id = await provider.send_email(compose_reply(email, sender, result))
        except ProviderError as exc:
            logger.error(f"Failed to send reply for message {email.id}: {exc}")

        return PipelineOutcome(
            processed=True, command=command.name, result=result, reply_id=reply_id
        )
