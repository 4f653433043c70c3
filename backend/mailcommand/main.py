"""
MailCommand API
FastAPI application that turns inbound emails into commands.
"""

import logging

from fastapi import FastAPI, HTTPException, Request

from mailcommand.routers import inbound
from mailcommand.services.dispatcher import Dispatcher, build_default_registry
from mailcommand.services.page_fetcher import PageFetcher
from mailcommand.services.pipeline import CommandPipeline
from mailcommand.services.provider_registry import active_provider_name, build_provider_registry
from mailcommand.services.storage import SupabaseArtifactStore
from mailcommand.services.summarizer import build_summarizer
from mailcommand.services.workflows import HttpWorkflowTrigger

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="MailCommand API",
    description="Run commands by email: memos, blog posts, page summaries and workflows",
    version="0.1.0",
)

# Registries are populated once, before any request is accepted, and only
# read afterwards.
app.state.providers = build_provider_registry()
app.state.registry = build_default_registry()
app.state.pipeline = CommandPipeline(
    dispatcher=Dispatcher(app.state.registry),
    store=SupabaseArtifactStore(),
    fetcher=PageFetcher(),
    summarizer=build_summarizer(),
    workflows=HttpWorkflowTrigger(),
)

logger.info(
    f"Providers: {', '.join(app.state.providers.names())}; "
    f"active: {active_provider_name()}; "
    f"commands: {', '.join('/' + n for n in app.state.registry.names())}"
)

# Include routers
app.include_router(inbound.router, prefix="/api", tags=["inbound"])


@app.get("/")
async def root():
    return {"message": "MailCommand API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/provider")
async def health_provider(request: Request):
    """
    Check the active provider's credentials against the vendor API.

    Returns 503 when the configured provider is unknown or its credentials
    are rejected.
    """
    name = active_provider_name()
    provider = request.app.state.providers.get(name)
    if provider is None:
        raise HTTPException(status_code=503, detail=f"Email provider '{name}' is not available")

    if not await provider.validate_config():
        logger.warning(f"{name} credentials failed validation")
        raise HTTPException(status_code=503, detail=f"Email provider '{name}' is not configured")

    return {"status": "ok", "provider": name}
