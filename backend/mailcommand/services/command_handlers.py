"""
Command handlers.

Each handler owns one command name, refines Command.args into its own fields
model, performs one action and returns an ExecutionResult. Handlers keep no
state between invocations.

Failure policy (enforced by CommandHandler.execute):
  - HandlerInputError  -> ExecutionResult(success=False) with the corrective text
  - CollaboratorError  -> ExecutionResult(success=False) with a plain-language reason
  - CommandRoutingError propagates: it means the registry is wired wrong.
"""

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from mailcommand.errors import (
    CollaboratorError,
    CommandRoutingError,
    FetchError,
    HandlerInputError,
)
from mailcommand.models.artifact import ArtifactRecord
from mailcommand.models.command import (
    BlogFields,
    Command,
    ExecutionResult,
    ExtractFields,
    MemoFields,
    ReplyFields,
    RunFields,
)
from mailcommand.models.inbound_email import OutboundSendRequest
from mailcommand.services.command_context import CommandContext
from mailcommand.services.page_fetcher import html_to_text
from mailcommand.services.storage import artifact_url
from mailcommand.services.templates import (
    format_blog_post,
    format_extract_message,
    format_help_message,
    format_stats_message,
)

if TYPE_CHECKING:
    from mailcommand.services.dispatcher import CommandRegistry

logger = logging.getLogger(__name__)

DAY_MS = 86_400_000
WEEK_MS = 604_800_000

MAX_TWEET_CHARS = 280

_URL_SCHEME = re.compile(r"^https?://", re.IGNORECASE)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower())
    return slug.strip("-")


class CommandHandler(ABC):
    """Base class: one instance per command name."""

    name: str = ""
    usage: str = ""
    summary: str = ""

    async def execute(self, command: Command, ctx: Optional[CommandContext]) -> ExecutionResult:
        if command.name != self.name:
            raise CommandRoutingError(
                f"{type(self).__name__} handles /{self.name}, was given /{command.name}"
            )

        try:
            return await self.run(command, ctx)
        except HandlerInputError as exc:
            return ExecutionResult.fail(str(exc))
        except CollaboratorError as exc:
            logger.warning(f"/{self.name} failed: {exc}")
            return ExecutionResult.fail(f"Could not complete /{self.name}: {exc.user_message}")

    @abstractmethod
    async def run(self, command: Command, ctx: CommandContext) -> ExecutionResult:
        ...

    async def _save(
        self,
        ctx: CommandContext,
        kind: str,
        title: Optional[str],
        content: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        record = ArtifactRecord(
            owner_id=ctx.sender,
            kind=kind,
            title=title,
            content=content,
            metadata={"command": f"/{self.name}", **(metadata or {})},
        )
        return await ctx.store.create(record)


# ---------------------------------------------------------------------------
# Create-artifact handlers
# ---------------------------------------------------------------------------

class MemoHandler(CommandHandler):
    name = "memo"
    usage = "[title] <content>"
    summary = "Quick note or memo"

    def parse_fields(self, command: Command, ctx: CommandContext) -> MemoFields:
        """
        With a body: subject words are the title, the body is the content.
        Without one: subject words are the content and there is no title.
        """
        words = " ".join(command.args).strip()
        if ctx.body:
            return MemoFields(title=words or None, content=ctx.body)
        if words:
            return MemoFields(title=None, content=words)
        raise HandlerInputError(
            "/memo needs some content. Write it after /memo or in the email body."
        )

    async def run(self, command: Command, ctx: CommandContext) -> ExecutionResult:
        fields = self.parse_fields(command, ctx)
        artifact_id = await self._save(ctx, "memo", fields.title, fields.content)
        url = artifact_url("memo", artifact_id, ctx.artifact_base_url)
        label = f'"{fields.title}"' if fields.title else "Quick note"
        return ExecutionResult.ok(f"Memo saved! {label}", url=url, id=artifact_id)


class BlogHandler(CommandHandler):
    name = "blog"
    usage = "<title>"
    summary = "Publish a blog post (post body goes in the email body)"

    def parse_fields(self, command: Command, ctx: CommandContext) -> BlogFields:
        title = " ".join(command.args).strip()
        if not title:
            raise HandlerInputError("/blog needs a title: /blog <title>")
        if not ctx.body:
            raise HandlerInputError("/blog needs the post content in the email body.")
        return BlogFields(title=title, content=ctx.body)

    async def run(self, command: Command, ctx: CommandContext) -> ExecutionResult:
        fields = self.parse_fields(command, ctx)
        document = format_blog_post(fields.title, fields.content, _now())
        artifact_id = await self._save(ctx, "blog", fields.title, document)
        url = artifact_url("blog", artifact_id, ctx.artifact_base_url)
        return ExecutionResult.ok(f'Blog post published! "{fields.title}"', url=url, id=artifact_id)


# ---------------------------------------------------------------------------
# /extract: fetch, summarize, persist
# ---------------------------------------------------------------------------

class ExtractHandler(CommandHandler):
    name = "extract"
    usage = "<url> [questions...]"
    summary = "Summarize a webpage"

    def parse_fields(self, command: Command, ctx: CommandContext) -> ExtractFields:
        if not command.args:
            raise HandlerInputError("/extract needs a URL: /extract <url> [questions...]")

        url = command.args[0]
        if not _URL_SCHEME.match(url):
            raise HandlerInputError(
                f"/extract needs a URL starting with http:// or https:// (got {url!r})."
            )

        questions = [q for q in command.args[1:] if q.strip()]
        if not questions and ctx.body:
            questions = [line.strip() for line in ctx.body.splitlines() if line.strip().endswith("?")]
        return ExtractFields(url=url, questions=questions)

    async def run(self, command: Command, ctx: CommandContext) -> ExecutionResult:
        fields = self.parse_fields(command, ctx)

        # 1. Fetch
        try:
            raw = await ctx.fetcher.fetch(fields.url)
        except FetchError as exc:
            logger.warning(f"/extract fetch failed: {exc}")
            return ExecutionResult.fail(f"Failed to fetch page: {exc.user_message}")

        # 2. Summarize (never fails; degrades to generic output)
        text = html_to_text(raw)
        summary = await ctx.summarizer.summarize(raw, text, fields.url, fields.questions or None)

        # 3. Persist
        artifact_id = await self._save(
            ctx,
            "extract",
            summary.title,
            summary.content,
            metadata={
                "original_url": fields.url,
                "key_points": summary.key_points,
                "questions": fields.questions,
            },
        )
        url = artifact_url("extract", artifact_id, ctx.artifact_base_url)
        return ExecutionResult.ok(
            format_extract_message(summary.title, summary.key_points, url),
            url=url,
            id=artifact_id,
            key_points=summary.key_points,
        )


# ---------------------------------------------------------------------------
# /run: external workflow trigger
# ---------------------------------------------------------------------------

class RunHandler(CommandHandler):
    name = "run"
    usage = "<workflow> [key=value ...]"
    summary = "Execute a workflow"

    def parse_fields(self, command: Command, ctx: CommandContext) -> RunFields:
        """``key=value`` tokens become named args; other tokens are positional."""
        if not command.args:
            raise HandlerInputError("/run needs a workflow name: /run <workflow> [key=value ...]")

        args: dict[str, Any] = {}
        positional: list[str] = []
        for token in command.args[1:]:
            key, sep, value = token.partition("=")
            if sep and key:
                args[key] = value
            else:
                positional.append(token)
        if positional:
            args["positional"] = positional

        return RunFields(workflow=command.args[0], args=args)

    async def run(self, command: Command, ctx: CommandContext) -> ExecutionResult:
        fields = self.parse_fields(command, ctx)
        result = await ctx.workflows.execute(fields.workflow, fields.args)
        return ExecutionResult.ok(
            f'Executed "{fields.workflow}" - {result}', workflow=fields.workflow
        )


# ---------------------------------------------------------------------------
# /reply: outbound email through the active provider
# ---------------------------------------------------------------------------

class ReplyHandler(CommandHandler):
    name = "reply"
    usage = "<to> <content>"
    summary = "Send an email reply"

    def parse_fields(self, command: Command, ctx: CommandContext) -> ReplyFields:
        if not command.args or "@" not in command.args[0]:
            raise HandlerInputError("/reply needs a recipient address: /reply <to> <content>")

        content = " ".join(command.args[1:]).strip() or ctx.body
        if not content:
            raise HandlerInputError("/reply needs a message, after the address or in the email body.")
        return ReplyFields(to=command.args[0], content=content)

    async def run(self, command: Command, ctx: CommandContext) -> ExecutionResult:
        fields = self.parse_fields(command, ctx)
        message_id = await ctx.provider.send_email(
            OutboundSendRequest(
                to=fields.to,
                subject="Re: Your MailCommand request",
                text=fields.content,
                reply_to=ctx.sender,
            )
        )
        return ExecutionResult.ok(f"Reply sent to {fields.to}", message_id=message_id)


# ---------------------------------------------------------------------------
# /status; artifact counts by age
# ---------------------------------------------------------------------------

class StatusHandler(CommandHandler):
    name = "status"
    summary = "View your stats"

    async def run(self, command: Command, ctx: CommandContext) -> ExecutionResult:
        records = await ctx.store.query_by_owner(ctx.sender)

        now_ms = int(_now().timestamp() * 1000)
        today = sum(1 for r in records if r.created_at_ms > now_ms - DAY_MS)
        week = sum(1 for r in records if r.created_at_ms > now_ms - WEEK_MS)
        total = len(records)

        return ExecutionResult.ok(
            format_stats_message(today, week, total), today=today, week=week, total=total
        )


# ---------------------------------------------------------------------------
# /help: lists whatever is registered right now
# ---------------------------------------------------------------------------

class HelpHandler(CommandHandler):
    name = "help"
    summary = "Show this message"

    def __init__(self, registry: "CommandRegistry", inbound_address: Optional[str] = None):
        self._registry = registry
        self._inbound_address = inbound_address

    async def run(self, command: Command, ctx: Optional[CommandContext]) -> ExecutionResult:
        entries = []
        for name in self._registry.names():
            handler = self._registry.get(name)
            entries.append((name, handler.usage, handler.summary))
        return ExecutionResult.ok(
            format_help_message(entries, self._inbound_address),
            commands=self._registry.names(),
        )


# ---------------------------------------------------------------------------
# Secondary built-ins
# ---------------------------------------------------------------------------

class PingHandler(CommandHandler):
    name = "ping"
    summary = "Health check"

    async def run(self, command: Command, ctx: Optional[CommandContext]) -> ExecutionResult:
        return ExecutionResult.ok("Pong! MailCommand is alive.")


class NoteHandler(CommandHandler):
    name = "note"
    usage = "[text]"
    summary = "Save to your knowledge base"

    async def run(self, command: Command, ctx: CommandContext) -> ExecutionResult:
        words = " ".join(command.args).strip()
        content = ctx.body or words
        if not content:
            raise HandlerInputError("/note needs some text, after /note or in the email body.")

        date = _now().date().isoformat()
        slug = _slugify(words) if words and ctx.body else ""
        title = f"{date}-{slug or 'note'}"

        artifact_id = await self._save(ctx, "note", title, content)
        return ExecutionResult.ok(
            f"Note saved: {title}",
            url=artifact_url("note", artifact_id, ctx.artifact_base_url),
            title=title,
        )


class LogHandler(CommandHandler):
    name = "log"
    usage = "[entry]"
    summary = "Add to your daily journal"

    async def run(self, command: Command, ctx: CommandContext) -> ExecutionResult:
        words = " ".join(command.args).strip()
        text = " ".join(part for part in (words, ctx.body) if part)
        if not text:
            raise HandlerInputError("/log needs an entry, after /log or in the email body.")

        now = _now()
        entry = f"[{now.isoformat()}] {text}"
        await self._save(ctx, "log", now.date().isoformat(), entry)
        return ExecutionResult.ok("Entry added to journal")


class RemindHandler(CommandHandler):
    name = "remind"
    usage = "<message>"
    summary = "Create a reminder"

    async def run(self, command: Command, ctx: CommandContext) -> ExecutionResult:
        message = " ".join(command.args).strip() or ctx.body.split("\n", 1)[0].strip()
        if not message:
            raise HandlerInputError("/remind needs a message: /remind <message>")

        created = _now().isoformat()
        artifact_id = await self._save(
            ctx, "reminder", message, ctx.body or message, metadata={"created": created}
        )
        return ExecutionResult.ok("Reminder created", id=artifact_id, message=message, created=created)


class ClarisHandler(CommandHandler):
    name = "claris"
    summary = "Forward the email body to Claris"

    async def run(self, command: Command, ctx: CommandContext) -> ExecutionResult:
        if not ctx.claris_address:
            return ExecutionResult.fail("Claris forwarding is not configured.")

        content = ctx.body or " ".join(command.args).strip()
        if not content:
            raise HandlerInputError("/claris needs something to forward in the email body.")

        await ctx.provider.send_email(
            OutboundSendRequest(
                to=ctx.claris_address,
                subject=f"Fwd: {ctx.email.subject}",
                text=content,
                reply_to=ctx.sender,
            )
        )
        return ExecutionResult.ok("Forwarded to Claris", forwarded=True)


class TweetHandler(CommandHandler):
    name = "tweet"
    usage = "[text]"
    summary = "Save a tweet draft (280 characters max)"

    async def run(self, command: Command, ctx: CommandContext) -> ExecutionResult:
        content = (" ".join(command.args).strip() or ctx.body)[:MAX_TWEET_CHARS]
        if not content:
            raise HandlerInputError("/tweet needs some text, after /tweet or in the email body.")

        await self._save(ctx, "tweet", None, content)
        return ExecutionResult.ok(
            f"Tweet draft saved ({len(content)} characters)", content=content
        )
