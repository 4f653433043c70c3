"""
Pydantic models for parsed commands and their results.

Models:
  Command           a recognised command: name + raw argument tokens
  ExecutionResult   the only value a handler returns to the dispatcher
  MemoFields, BlogFields, ExtractFields, RunFields, ReplyFields
                    per-command refinements of Command.args
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

CommandSource = Literal["subject", "body", "body_embedded"]


class Command(BaseModel):
    """
    A command recognised from marker syntax (``/name arg ...``).

    ``name`` is lowercased with the marker stripped and is the sole dispatch
    key. ``args`` holds the remaining tokens; each handler refines them into
    its own fields model.
    """

    model_config = {"frozen": True}

    name: str = Field(min_length=1)
    args: list[str] = []
    raw: str
    source: CommandSource = "subject"


class ExecutionResult(BaseModel):
    """
    Outcome of running one command.

    When ``success`` is False, ``message`` explains the failure in plain
    language for the sender. ``data`` is passed through untouched.
    """

    success: bool
    message: str
    url: Optional[str] = None
    data: Optional[dict[str, Any]] = None

    @classmethod
    def ok(cls, message: str, url: Optional[str] = None, **data: Any) -> "ExecutionResult":
        return cls(success=True, message=message, url=url, data=data or None)

    @classmethod
    def fail(cls, message: str) -> "ExecutionResult":
        return cls(success=False, message=message)


# ---------------------------------------------------------------------------
# Per-command fields
# ---------------------------------------------------------------------------

class MemoFields(BaseModel):
    title: Optional[str] = None
    content: str


class BlogFields(BaseModel):
    title: str
    content: str


class ExtractFields(BaseModel):
    url: str
    questions: list[str] = []


class RunFields(BaseModel):
    workflow: str
    args: dict[str, Any] = {}


class ReplyFields(BaseModel):
    to: str
    content: str
