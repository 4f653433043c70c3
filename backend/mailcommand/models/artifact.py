"""
Artifact records persisted by handlers (memo, blog post, extract summary, ...).
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


class ArtifactRecord(BaseModel):
    """One row of the ``artifacts`` table."""

    model_config = {"from_attributes": True, "coerce_numbers_to_str": True}

    id: Optional[str] = None
    owner_id: str
    kind: str
    title: Optional[str] = None
    content: str = ""
    metadata: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def created_at_ms(self) -> int:
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return int(created.timestamp() * 1000)
