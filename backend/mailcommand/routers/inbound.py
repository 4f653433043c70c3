"""
Inbound email webhook router.

Every supported vendor posts to the same pipeline; the provider adapter is
chosen from the URL (``/inbound/{provider_name}``) or from EMAIL_PROVIDER
(``/inbound``).

Order per request:
  1. verify the vendor signature on the raw body (401 on failure)
  2. decode the body (JSON or form, per adapter) and normalize it
     (400 if the vendor payload cannot be decoded)
  3. run the command pipeline and reply to the sender

Unknown commands, handler input errors and collaborator failures still
return 200: they are reported to the sender by email, and a non-2xx here
would only make the vendor retry the same message.

Endpoints:
  POST /inbound                    webhook for the active provider
  POST /inbound/{provider_name}    webhook for a named provider
  GET  /commands                   registered command names
"""

import logging
from typing import Any, Union

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from mailcommand.auth import verify_webhook_request
from mailcommand.errors import CommandRoutingError, WebhookParseError
from mailcommand.services.email_provider import EmailProvider
from mailcommand.services.provider_registry import active_provider_name

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _decode_body(request: Request, provider: EmailProvider, raw_body: bytes) -> Union[dict[str, Any], bytes]:
    """JSON adapters get the raw bytes; form adapters get the string fields."""
    if provider.inbound_format != "form":
        return raw_body

    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


async def _receive(request: Request, provider: EmailProvider) -> Any:
    raw_body = await request.body()

    # 1. Signature
    verify_webhook_request(provider, request.headers, raw_body)

    # 2. Normalize
    try:
        email = await provider.handle_inbound_webhook(await _decode_body(request, provider, raw_body))
    except WebhookParseError as exc:
        logger.error(f"{provider.name} webhook could not be parsed: {exc}")
        raise HTTPException(status_code=400, detail="Unparseable webhook payload")

    # 3. Pipeline
    try:
        outcome = await request.app.state.pipeline.process(email, provider)
    except CommandRoutingError:
        logger.exception(f"Command routing failed for message {email.id}")
        return JSONResponse(
            status_code=500,
            content={"received": True, "processed": False, "command": None, "success": None},
        )

    return outcome.as_response()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/inbound")
async def receive_inbound_email(request: Request):
    """Webhook for the provider named by EMAIL_PROVIDER (default: resend)."""
    name = active_provider_name()
    provider = request.app.state.providers.get(name)
    if provider is None:
        logger.error(f"EMAIL_PROVIDER {name!r} is not a registered provider")
        raise HTTPException(status_code=503, detail=f"Email provider '{name}' is not available")
    return await _receive(request, provider)


@router.post("/inbound/{provider_name}")
async def receive_provider_email(provider_name: str, request: Request):
    provider = request.app.state.providers.get(provider_name)
    if provider is None:
        raise HTTPException(status_code=404, detail=f"Unknown email provider '{provider_name}'")
    return await _receive(request, provider)


@router.get("/commands")
async def list_commands(request: Request) -> dict:
    return {"commands": request.app.state.registry.names()}
