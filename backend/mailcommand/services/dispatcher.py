"""
Command registry and dispatcher.

The registry maps a command name to exactly one handler. It is populated
once at process start and only read afterwards; the dispatcher does one
lookup per message and never retries.
"""

import logging
import os
from typing import Iterator, Optional

from mailcommand.models.command import Command, ExecutionResult
from mailcommand.services.command_context import CommandContext
from mailcommand.services.command_handlers import (
    BlogHandler,
    ClarisHandler,
    CommandHandler,
    ExtractHandler,
    HelpHandler,
    LogHandler,
    MemoHandler,
    NoteHandler,
    PingHandler,
    ReplyHandler,
    RemindHandler,
    RunHandler,
    StatusHandler,
    TweetHandler,
)

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Name -> handler. Registering a name twice replaces the earlier handler."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}

    def register(self, handler: CommandHandler, name: Optional[str] = None) -> None:
        key = (name or handler.name).strip().lower()
        if not key:
            raise ValueError("Command handlers must be registered under a non-empty name")
        if key in self._handlers:
            logger.warning(f"Replacing handler for /{key}")
        self._handlers[key] = handler

    def get(self, name: str) -> Optional[CommandHandler]:
        return self._handlers.get(name.lower())

    def names(self) -> list[str]:
        """Registered names in registration order."""
        return list(self._handlers)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(self._handlers)


class Dispatcher:
    def __init__(self, registry: CommandRegistry):
        self.registry = registry

    async def dispatch(self, command: Command, ctx: Optional[CommandContext]) -> ExecutionResult:
        """
        Route ``command`` to its handler.

        An unregistered name is a normal outcome and yields a failed result.
        CommandRoutingError from a miswired handler is not caught here.
        """
        handler = self.registry.get(command.name)
        if handler is None:
            logger.info(f"Unknown command /{command.name}")
            return ExecutionResult.fail(f"Unknown command: /{command.name}")

        logger.info(f"Dispatching /{command.name} ({command.source})")
        return await handler.execute(command, ctx)


def build_default_registry(inbound_address: Optional[str] = None) -> CommandRegistry:
    """Register every built-in command. /help lists whatever ends up registered."""
    registry = CommandRegistry()
    for handler in (
        MemoHandler(),
        BlogHandler(),
        ExtractHandler(),
        RunHandler(),
        ReplyHandler(),
        StatusHandler(),
        NoteHandler(),
        LogHandler(),
        RemindHandler(),
        TweetHandler(),
        ClarisHandler(),
        PingHandler(),
    ):
        registry.register(handler)

    registry.register(
        HelpHandler(registry, inbound_address or os.getenv("MAIL_INBOUND_ADDRESS"))
    )
    return registry
