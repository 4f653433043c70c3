"""
Provider registration table.

Built once at startup and read-only afterwards. There is no default
provider: callers resolve a name and handle the "not found" case.
"""

import logging
import os
from typing import Optional

from mailcommand.services.email_provider import EmailProvider
from mailcommand.services.postmark_provider import PostmarkProvider
from mailcommand.services.resend_provider import ResendProvider
from mailcommand.services.sendgrid_provider import SendGridProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Name -> adapter mapping. Names are unique and case-insensitive."""

    def __init__(self) -> None:
        self._providers: dict[str, EmailProvider] = {}

    def register(self, provider: EmailProvider) -> None:
        key = provider.name.lower().strip()
        if not key:
            raise ValueError("Provider must have a name")
        if key in self._providers:
            raise ValueError(f"Provider {key!r} is already registered")
        self._providers[key] = provider

    def get(self, name: Optional[str]) -> Optional[EmailProvider]:
        if not name:
            return None
        return self._providers.get(name.lower().strip())

    def names(self) -> list[str]:
        return sorted(self._providers)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None


def build_provider_registry() -> ProviderRegistry:
    """Register every built-in adapter, each configured from the environment."""
    registry = ProviderRegistry()
    for provider in (ResendProvider(), SendGridProvider(), PostmarkProvider()):
        registry.register(provider)
    return registry


def active_provider_name() -> str:
    """Provider selected for this deployment (EMAIL_PROVIDER, default "resend")."""
    return os.getenv("EMAIL_PROVIDER", "resend").lower().strip()
