"""
Summarization for /extract.

Two implementations share one interface:

  RuleBasedSummarizer   deterministic; the default (SUMMARIZER=rules)
  ClaudeSummarizer      asks Claude for the prose paragraph (SUMMARIZER=claude)

Title and key points always come from the rules below so the reply format
never depends on the model. Summarizing cannot fail: any model error degrades
to the rule-based prose.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Optional, Protocol

import anthropic

logger = logging.getLogger(__name__)

MAX_KEY_POINTS = 5
SHORT_CONTENT_WORDS = 100
MIN_TITLE_LINE_CHARS = 20
MAX_TITLE_CHARS = 80

MODEL = "claude-haiku-4-5"
MAX_TOKENS = 512

_MARKDOWN_HEADING = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_HTML_H1 = re.compile(r"<h1[^>]*>([^<]+)</h1>", re.IGNORECASE)

SUMMARY_PROMPT = """\
Summarize the following web page in one short paragraph (at most 5 sentences).
{focus}
Respond with the paragraph only, no headings or lists.

URL: {url}

PAGE TEXT:
{text}
"""


@dataclass
class Summary:
    title: str
    content: str
    key_points: list[str] = field(default_factory=list)


class Summarizer(Protocol):
    async def summarize(
        self, raw: str, text: str, url: str, questions: Optional[list[str]] = None
    ) -> Summary: ...


def derive_title(raw: str, text: str) -> Optional[str]:
    """
    Title precedence: markdown ``# heading``, then HTML <h1>, then the first
    line longer than 20 characters (cut to 80). None when nothing qualifies.
    """
    match = _MARKDOWN_HEADING.search(raw)
    if match:
        return match.group(1).strip()

    match = _HTML_H1.search(raw)
    if match:
        return match.group(1).strip()

    for line in text.split("\n"):
        if len(line) > MIN_TITLE_LINE_CHARS:
            return line[:MAX_TITLE_CHARS]

    return None


def derive_key_points(text: str, questions: Optional[list[str]] = None) -> list[str]:
    """Questions become the key points (max 5); otherwise word-count rules apply."""
    if questions:
        return list(questions[:MAX_KEY_POINTS])

    points: list[str] = []
    if len(text.split()) < SHORT_CONTENT_WORDS:
        points.append("Short content - visit URL for full details")
    else:
        points.append("Main topic identified from page content")
        points.append("Key information extracted successfully")
        points.append("Multiple sections found in the article")

    points.append("Actionable insights included")
    points.append("Relevant examples mentioned")
    return points[:MAX_KEY_POINTS]


def _rule_based_prose(text: str, questions: Optional[list[str]]) -> str:
    if questions:
        listed = "\n".join(f"- {q}" for q in questions)
        return (
            "This page was analyzed to address the following question(s):\n"
            f"{listed}\n\n"
            "The content provides relevant information covering these topics."
        )
    word_count = len(text.split())
    return (
        f"This article contains approximately {word_count} words of content. "
        "The page covers several key topics and provides detailed information on "
        "the subject matter. The main points have been extracted and summarized below."
    )


def format_summary_document(url: str, prose: str, key_points: list[str]) -> str:
    bullets = "\n".join(f"- {p}" for p in key_points)
    return (
        f"## Summary of {url}\n\n"
        f"{prose}\n\n"
        "### Key Points:\n"
        f"{bullets}\n\n"
        "---\n"
        "*Extracted by MailCommand*\n"
    )


class RuleBasedSummarizer:
    """Deterministic summarizer; never calls out of process."""

    async def summarize(
        self, raw: str, text: str, url: str, questions: Optional[list[str]] = None
    ) -> Summary:
        title = derive_title(raw, text) or "Untitled Article"
        key_points = derive_key_points(text, questions)
        prose = await self._prose(text, url, questions)
        return Summary(
            title=f"Extract: {title}",
            content=format_summary_document(url, prose, key_points),
            key_points=key_points,
        )

    async def _prose(self, text: str, url: str, questions: Optional[list[str]]) -> str:
        return _rule_based_prose(text, questions)


class ClaudeSummarizer(RuleBasedSummarizer):
    """
    Summarizer whose prose paragraph is written by Claude.

    Silent fallback to the rule-based paragraph on any failure (missing key,
    timeout, API error, empty response).
    """

    def __init__(self, api_key: Optional[str] = None, timeout: float = 20.0):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self.timeout = timeout

    async def _prose(self, text: str, url: str, questions: Optional[list[str]]) -> str:
        if not self.api_key:
            return _rule_based_prose(text, questions)

        focus = ""
        if questions:
            focus = "Focus on answering: " + "; ".join(questions[:MAX_KEY_POINTS])

        try:
            client = anthropic.AsyncAnthropic(api_key=self.api_key)
            response = await client.messages.create(
                model=MODEL,
                max_tokens=MAX_TOKENS,
                timeout=self.timeout,
                messages=[{
                    "role": "user",
                    "content": SUMMARY_PROMPT.format(focus=focus, url=url, text=text),
                }],
            )
            prose = response.content[0].text.strip()
        except Exception:
            logger.debug("claude summary: silent fallback", exc_info=True)
            return _rule_based_prose(text, questions)

        return prose or _rule_based_prose(text, questions)


def build_summarizer(kind: Optional[str] = None) -> Summarizer:
    """Select the summarizer from SUMMARIZER (``rules`` or ``claude``)."""
    resolved = (kind or os.getenv("SUMMARIZER", "rules")).lower().strip()
    if resolved == "claude":
        return ClaudeSummarizer()
    if resolved != "rules":
        logger.warning(f"Unknown SUMMARIZER {resolved!r}; using rule-based summaries")
    return RuleBasedSummarizer()
