"""
Supabase-backed artifact store.

The pipeline depends only on two operations:

  create(record) -> id
  query_by_owner(owner_id) -> list[ArtifactRecord]

Any other engine can stand in as long as it offers the same pair.
"""

import asyncio
import logging
import os
from typing import Optional, Protocol

from mailcommand.db import supabase_admin
from mailcommand.errors import StorageError
from mailcommand.models.artifact import ArtifactRecord

logger = logging.getLogger(__name__)

ARTIFACTS_TABLE = "artifacts"

DEFAULT_ARTIFACT_BASE_URL = "https://mailcommand.app"

# URL path segment per artifact kind; kinds not listed fall back to "memo".
_URL_SEGMENTS = {
    "memo": "memo",
    "blog": "blog",
    "extract": "memo",
    "note": "note",
}


class ArtifactStore(Protocol):
    async def create(self, record: ArtifactRecord) -> str: ...

    async def query_by_owner(self, owner_id: str) -> list[ArtifactRecord]: ...


def artifact_url(kind: str, artifact_id: str, base_url: Optional[str] = None) -> str:
    """
    Deterministic public URL for an artifact.

    Example: artifact_url("blog", "42") -> "https://mailcommand.app/blog/42"
    """
    base = (base_url or os.getenv("ARTIFACT_BASE_URL") or DEFAULT_ARTIFACT_BASE_URL).rstrip("/")
    return f"{base}/{_URL_SEGMENTS.get(kind, 'memo')}/{artifact_id}"


class SupabaseArtifactStore:
    """ArtifactStore over the Supabase ``artifacts`` table."""

    def __init__(self, client=None):
        self._client = client

    def _admin(self):
        admin = self._client or supabase_admin
        if not admin:
            raise StorageError(
                "SUPABASE_SERVICE_KEY is required for storage operations",
                user_message="Storage is not available right now.",
            )
        return admin

    async def create(self, record: ArtifactRecord) -> str:
        """
        Insert an artifact and return its id.

        Raises:
            StorageError: if the insert fails or returns no row
        """
        admin = self._admin()
        insert_data = record.model_dump(exclude={"id"}, mode="json")

        try:
            query = admin.table(ARTIFACTS_TABLE).insert(insert_data)
            result = await asyncio.to_thread(query.execute)
        except Exception as e:
            raise StorageError(
                f"Failed to insert artifact: {str(e)}",
                user_message="Your content could not be saved.",
            ) from e

        if not result.data:
            raise StorageError(
                "Artifact insert returned no data",
                user_message="Your content could not be saved.",
            )
        return str(result.data[0]["id"])

    async def query_by_owner(self, owner_id: str) -> list[ArtifactRecord]:
        """
        Fetch every artifact owned by ``owner_id``.

        Only the columns the stats view needs are selected; the store is
        responsible for bounding result size.
        """
        admin = self._admin()

        try:
            query = (
                admin.table(ARTIFACTS_TABLE)
                .select("id, owner_id, kind, title, created_at")
                .eq("owner_id", owner_id)
            )
            result = await asyncio.to_thread(query.execute)
        except Exception as e:
            raise StorageError(
                f"Failed to query artifacts for {owner_id!r}: {str(e)}",
                user_message="Your artifacts could not be loaded.",
            ) from e

        return [ArtifactRecord(**row) for row in result.data or []]
