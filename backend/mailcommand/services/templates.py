"""
Text templates for artifacts and replies.

Everything here is pure formatting: no I/O, no branching on state.

Public API:
  format_blog_post(title, content, published_at) -> str
  format_extract_message(title, key_points, url) -> str
  format_stats_message(today, week, total) -> str
  format_help_message(entries, inbound_address) -> str
"""

import textwrap
from datetime import datetime
from typing import Iterable, Optional


def format_blog_post(title: str, content: str, published_at: datetime) -> str:
    """Wrap a post in front matter (title, ISO date) and the standard footer."""
    return (
        "---\n"
        f"title: {title}\n"
        f"date: {published_at.isoformat()}\n"
        "---\n"
        "\n"
        f"{content}\n"
        "\n"
        "---\n"
        "*Posted via MailCommand*\n"
    )


def format_extract_message(title: str, key_points: list[str], url: str) -> str:
    bullets = "\n".join(f"• {p}" for p in key_points)
    return f"Extracted!\n{title}\n\nKey Points:\n{bullets}\n\n{url}"


def format_stats_message(today: int, week: int, total: int) -> str:
    return textwrap.dedent(f"""\
        Your MailCommand stats:
        - Today: {today} artifacts
        - This week: {week} artifacts
        - Total: {total} artifacts""")


def format_help_message(
    entries: Iterable[tuple[str, str, str]],
    inbound_address: Optional[str] = None,
) -> str:
    """
    ``entries`` is (name, usage, summary) per registered command, in the
    order they should be listed.
    """
    lines = ["MailCommand commands:", ""]
    for name, usage, summary in entries:
        command = f"/{name} {usage}".rstrip()
        lines.append(f"{command} - {summary}")
    lines.append("")
    if inbound_address:
        lines.append(f"Email {inbound_address} with a command in the subject to get started.")
    else:
        lines.append("Put a command in the subject line (or the first line of the body).")
    return "\n".join(lines)
