"""
Outbound confirmation reply.

This is the single place the sender-facing reply text is composed.
"""

from mailcommand.models.command import ExecutionResult
from mailcommand.models.inbound_email import InboundEmail, OutboundSendRequest

SUCCESS_GLYPH = "✅"
FAILURE_GLYPH = "❌"


def reply_text(result: ExecutionResult) -> str:
    if not result.success:
        return f"{FAILURE_GLYPH} {result.message}"

    text = f"{SUCCESS_GLYPH} Done: {result.message}"
    if result.url and result.url not in result.message:
        text += f"\n\n{result.url}"
    return text


def reply_subject(subject: str) -> str:
    subject = subject.strip()
    if subject.lower().startswith("re:"):
        return subject
    return f"Re: {subject}" if subject else "Re: your MailCommand request"


def compose_reply(email: InboundEmail, sender: str, result: ExecutionResult) -> OutboundSendRequest:
    """Build the confirmation sent back to ``sender`` for one processed message."""
    headers = {}
    message_id = email.headers.get("message-id")
    if message_id:
        headers = {"In-Reply-To": message_id, "References": message_id}

    return OutboundSendRequest(
        to=sender,
        subject=reply_subject(email.subject),
        text=reply_text(result),
        headers=headers,
    )
