"""
External workflow trigger used by /run.

POSTs {"workflow": name, "args": {...}} to WORKFLOW_ENDPOINT_URL and relays
the summary the endpoint returns. There is no retry at this layer.

Environment variables
---------------------
WORKFLOW_ENDPOINT_URL   URL accepting workflow execution requests
WORKFLOW_API_TOKEN      optional bearer token
"""

import logging
import os
from typing import Any, Optional, Protocol

import httpx

from mailcommand.errors import WorkflowError
from mailcommand.services.email_provider import http_timeout

logger = logging.getLogger(__name__)


class WorkflowTrigger(Protocol):
    async def execute(self, name: str, args: dict[str, Any]) -> str: ...


class HttpWorkflowTrigger:
    """WorkflowTrigger over a single HTTP endpoint."""

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        api_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint_url = endpoint_url or os.getenv("WORKFLOW_ENDPOINT_URL") or ""
        self.api_token = api_token or os.getenv("WORKFLOW_API_TOKEN") or ""
        self._transport = transport

    async def execute(self, name: str, args: dict[str, Any]) -> str:
        """
        Run workflow ``name`` and return its result summary.

        The endpoint may answer with JSON ({"summary": ...} or {"result": ...})
        or plain text.

        Raises:
            WorkflowError: when unconfigured, unreachable, or non-2xx
        """
        if not self.endpoint_url:
            raise WorkflowError(
                "WORKFLOW_ENDPOINT_URL is not configured",
                user_message="Workflow execution is not configured.",
            )

        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"

        try:
            async with httpx.AsyncClient(timeout=http_timeout(), transport=self._transport) as client:
                response = await client.post(
                    self.endpoint_url,
                    headers=headers,
                    json={"workflow": name, "args": args},
                )
        except httpx.HTTPError as exc:
            raise WorkflowError(
                f"Workflow {name!r} request failed: {exc}",
                user_message="The workflow service could not be reached.",
            ) from exc

        if response.status_code == 404:
            raise WorkflowError(
                f"Workflow {name!r} not found",
                user_message=f'No workflow named "{name}".',
            )
        if not response.is_success:
            raise WorkflowError(
                f"Workflow {name!r} failed: HTTP {response.status_code} - {response.text}",
                user_message=f'Workflow "{name}" failed to run.',
            )

        try:
            data = response.json()
        except ValueError:
            return response.text.strip() or "completed"

        if isinstance(data, dict):
            return str(data.get("summary") or data.get("result") or "completed")
        return str(data)
