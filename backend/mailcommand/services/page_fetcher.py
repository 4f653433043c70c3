"""
Page fetching and HTML-to-text reduction for /extract.
"""

import logging
import re
from typing import Optional

import httpx

from mailcommand.errors import FetchError
from mailcommand.services.email_provider import http_timeout

logger = logging.getLogger(__name__)

USER_AGENT = "MailCommand/1.0"

MAX_TEXT_CHARS = 10_000

_SCRIPT_BLOCK = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_STYLE_BLOCK = re.compile(r"<style[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


def html_to_text(html: str, limit: int = MAX_TEXT_CHARS) -> str:
    """
    Reduce HTML to plain text: drop <script>/<style> blocks, drop remaining
    tags, collapse whitespace, cap at ``limit`` characters.
    """
    text = _SCRIPT_BLOCK.sub("", html)
    text = _STYLE_BLOCK.sub("", text)
    text = _TAG.sub(" ", text)
    text = _WHITESPACE.sub(" ", text).strip()
    return text[:limit]


class PageFetcher:
    """Fetch a URL and return the raw response text."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def fetch(self, url: str) -> str:
        """
        Raises:
            FetchError: on non-2xx, timeout, or any transport failure
        """
        try:
            async with httpx.AsyncClient(
                timeout=http_timeout(),
                transport=self._transport,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException as exc:
            raise FetchError(
                f"Timed out fetching {url}: {exc}",
                user_message="the page took too long to respond",
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(
                f"Could not fetch {url}: {exc}",
                user_message=f"unable to reach {url}; the page may require authentication or be inaccessible",
            ) from exc

        if not response.is_success:
            raise FetchError(
                f"{url} returned HTTP {response.status_code}",
                user_message=f"HTTP {response.status_code} {response.reason_phrase}".strip(),
            )

        return response.text
