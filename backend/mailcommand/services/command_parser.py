"""
Command parser: recognises ``/command arg "multi word arg"`` in email text.

Public API:
  tokenize(text) -> list[str]
  parse_subject(subject) -> Command | None
  parse_body(body) -> Command | None
  parse_email(subject, body) -> Command | None

Only text that begins with the marker is a command. An ordinary subject such
as "please run the report" is never treated as one, even if it reads like an
instruction.

Precedence for a single message (at most one Command is produced):
  1. the subject
  2. the first line of the body
  3. a "/word rest-of-line" pattern anywhere in the body
"""

import re
from typing import Optional

from mailcommand.models.command import Command, CommandSource

MARKER = "/"

_QUOTES = ("'", '"')

# Marker + word token + rest of line, anywhere in the body.
_EMBEDDED_COMMAND = re.compile(r"^/(\w+)[ \t]*(.*)$", re.MULTILINE)

# Plain-text reply conventions: signature delimiter and quoted history.
_SIGNATURE_DELIMITER = "\n-- \n"
_QUOTE_PREFIX = ">"
_ATTRIBUTION_LINE = re.compile(r"^On .+ wrote:$", re.IGNORECASE)


def tokenize(text: str) -> list[str]:
    """
    Split on spaces, keeping quoted runs together as one token.

    Quote characters are dropped; whitespace inside quotes is kept. An
    unterminated quote swallows the rest of the input instead of raising.
    """
    tokens: list[str] = []
    current = ""
    quote: Optional[str] = None

    for char in text:
        if quote is None and char in _QUOTES:
            quote = char
        elif quote is not None and char == quote:
            quote = None
        elif quote is None and char == " ":
            if current:
                tokens.append(current)
            current = ""
        else:
            current += char

    if current:
        tokens.append(current)

    return tokens


def _command_from_tokens(tokens: list[str], raw: str, source: CommandSource) -> Optional[Command]:
    if not tokens:
        return None
    name = tokens[0][len(MARKER):].lower()
    if not name:
        return None
    return Command(name=name, args=tokens[1:], raw=raw, source=source)


def parse_subject(subject: Optional[str], source: CommandSource = "subject") -> Optional[Command]:
    """Return a Command when ``subject`` starts with the marker, else None."""
    if not subject:
        return None

    trimmed = subject.strip()
    if not trimmed.startswith(MARKER):
        return None

    return _command_from_tokens(tokenize(trimmed), trimmed, source)


def strip_signature(body: str) -> str:
    """Normalize line endings and drop everything after a ``-- `` delimiter."""
    return body.replace("\r\n", "\n").split(_SIGNATURE_DELIMITER)[0].strip()


def strip_reply_noise(body: str) -> str:
    """
    Drop a ``-- `` signature and the quoted reply history that trails the
    message. Quoted lines followed by new text (a blockquote) are kept.
    """
    lines = strip_signature(body).split("\n")
    end = len(lines)
    while end and (not lines[end - 1].strip() or lines[end - 1].startswith(_QUOTE_PREFIX)):
        end -= 1

    if any(line.startswith(_QUOTE_PREFIX) for line in lines[end:]):
        # "On <date>, <someone> wrote:" belongs to the quoted block
        if end and _ATTRIBUTION_LINE.match(lines[end - 1].strip()):
            end -= 1
        lines = lines[:end]

    return "\n".join(lines).strip()


def parse_body(body: Optional[str]) -> Optional[Command]:
    """
    Fallback recognition over an email body.

    Tries the first line with subject rules, then the loose embedded pattern.
    """
    if not body:
        return None

    text = strip_reply_noise(body)
    if not text:
        return None

    first_line = text.split("\n", 1)[0]
    if first_line.strip().startswith(MARKER):
        command = parse_subject(first_line, source="body")
        if command is not None:
            return command

    match = _EMBEDDED_COMMAND.search(text)
    if match:
        rest = match.group(2).strip()
        return Command(
            name=match.group(1).lower(),
            args=tokenize(rest),
            raw=match.group(0).strip(),
            source="body_embedded",
        )

    return None


def parse_email(subject: Optional[str], body: Optional[str]) -> Optional[Command]:
    """Apply subject-then-body precedence; None means "no command"."""
    return parse_subject(subject) or parse_body(body)
