"""
Per-message execution context handed to every handler.

Built fresh for each inbound message; holds the authenticated sender and the
collaborators a handler may call. Nothing here is shared mutable state.
"""

from dataclasses import dataclass
from typing import Optional

from mailcommand.models.inbound_email import InboundEmail
from mailcommand.services.email_provider import EmailProvider
from mailcommand.services.page_fetcher import PageFetcher
from mailcommand.services.storage import ArtifactStore
from mailcommand.services.summarizer import Summarizer
from mailcommand.services.workflows import WorkflowTrigger


@dataclass(frozen=True)
class CommandContext:
    sender: str
    email: InboundEmail
    body: str
    store: ArtifactStore
    provider: EmailProvider
    fetcher: PageFetcher
    summarizer: Summarizer
    workflows: WorkflowTrigger
    artifact_base_url: Optional[str] = None
    claris_address: Optional[str] = None
