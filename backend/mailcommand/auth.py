"""
Webhook authentication and sender resolution.

Two gates sit in front of the command pipeline:

- verify_webhook_request: the raw webhook must carry a valid vendor
  signature. Failure is a 401 before anything is parsed.
- is_sender_allowed: when ALLOWED_SENDERS is set, only those addresses may
  run commands. Anyone else is ignored without a reply.
"""

import logging
import os
import re
from typing import Mapping, Optional

from fastapi import HTTPException

from mailcommand.services.email_provider import EmailProvider

logger = logging.getLogger(__name__)

_ANGLE_ADDRESS = re.compile(r"<([^>]+)>")


def resolve_sender(from_header: str) -> str:
    """
    Bare lowercase address from a From value.

    Example: resolve_sender('Ada <Ada@Example.com>') -> 'ada@example.com'
    """
    match = _ANGLE_ADDRESS.search(from_header or "")
    address = match.group(1) if match else (from_header or "")
    return address.strip().lower()


def allowed_senders() -> set[str]:
    """Addresses from ALLOWED_SENDERS (comma-separated). Empty means anyone."""
    raw = os.getenv("ALLOWED_SENDERS", "")
    return {resolve_sender(part) for part in raw.split(",") if part.strip()}


def is_sender_allowed(sender: str, allow_list: Optional[set[str]] = None) -> bool:
    allow_list = allowed_senders() if allow_list is None else allow_list
    if not allow_list:
        return True
    return sender in allow_list


def verify_webhook_request(
    provider: EmailProvider,
    headers: Mapping[str, str],
    raw_body: bytes,
) -> None:
    """
    Check the vendor signature on a raw webhook body.

    Raises:
        HTTPException: 401 if the signature is missing or does not verify
    """
    signature = headers.get(provider.signature_header) or ""
    timestamp = headers.get(provider.timestamp_header) if provider.timestamp_header else None

    if not signature:
        logger.warning(f"{provider.name} webhook rejected: missing {provider.signature_header} header")
        raise HTTPException(status_code=401, detail="Missing webhook signature")

    if not provider.verify_webhook_signature(raw_body, signature, timestamp):
        logger.warning(f"{provider.name} webhook rejected: invalid signature")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")
