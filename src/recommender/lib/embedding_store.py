"""Embedding store: one vector per (content type, content id, model).

Records live in the ``content_embeddings`` index under a document id derived
from :class:`EmbeddingKey`. They are created lazily the first time a vector
is needed and never rewritten. A model upgrade writes new records under the
new model name; old ones stay until :meth:`EmbeddingStore.purge_model`.

The key is identity, not content: editing a post does not change its stored
vector. Callers that need a fresh vector after a meaningful edit must purge
or use a new model key.
"""

import logging
from datetime import datetime, timezone
from typing import NamedTuple
from urllib.parse import quote

from elasticsearch import ConflictError, NotFoundError
from pydantic import BaseModel, Field

from ..errors import EmbeddingGenerationFailed, ProviderUnavailable
from .content import fetch_backfill_items
from .elasticsearch import EMBEDDINGS_INDEX, unwrap_es_response
from .embeddings import EmbeddingConfig, EmbeddingProvider

logger = logging.getLogger(__name__)

CONTENT_TYPES = ("post", "paper", "user_profile")

SOURCE_SNIPPET_CHARS = 500


class EmbeddingKey(NamedTuple):
    content_type: str
    content_id: str
    model: str

    @property
    def doc_id(self) -> str:
        """Document id; each part is percent-encoded so ``:`` only ever separates."""
        return ":".join(quote(part, safe="") for part in self)


class EmbeddingRecord(BaseModel):
    """A stored embedding vector."""

    content_type: str
    content_id: str
    model: str
    vector: list[float]
    source_text_snippet: str = Field("", max_length=SOURCE_SNIPPET_CHARS)
    created_at: datetime


class BackfillResult(BaseModel):
    processed: int = 0
    errors: int = 0


class EmbeddingStore:
    """Get-or-create access to stored embeddings."""

    def __init__(self, es, provider: EmbeddingProvider):
        self._es = es
        self._provider = provider

    async def get(self, key: EmbeddingKey) -> EmbeddingRecord | None:
        try:
            resp = await self._es.get(index=EMBEDDINGS_INDEX, id=key.doc_id)
        except NotFoundError:
            return None
        src = unwrap_es_response(resp).get("_source")
        if not src:
            return None
        return EmbeddingRecord.model_validate(src)

    async def get_or_create(
        self,
        content_type: str,
        content_id: str,
        text: str,
        config: EmbeddingConfig,
    ) -> list[float]:
        """Return the stored vector for the key, embedding *text* on a miss.

        On a hit *text* is ignored. Raises :class:`EmbeddingGenerationFailed`
        if the provider fails; nothing is written in that case.
        """
        if content_type not in CONTENT_TYPES:
            raise ValueError(f"Unknown content type: {content_type}")

        key = EmbeddingKey(content_type, content_id, config.model)
        existing = await self.get(key)
        if existing is not None:
            return existing.vector

        try:
            vector = await self._provider.embed(text, config)
        except (ProviderUnavailable, NotImplementedError) as exc:
            raise EmbeddingGenerationFailed(
                f"Could not embed {content_type} {content_id}: {exc}"
            ) from exc

        record = EmbeddingRecord(
            content_type=content_type,
            content_id=content_id,
            model=config.model,
            vector=vector,
            source_text_snippet=text[:SOURCE_SNIPPET_CHARS],
            created_at=datetime.now(timezone.utc),
        )
        try:
            await self._es.index(
                index=EMBEDDINGS_INDEX,
                id=key.doc_id,
                document=record.model_dump(mode="json"),
                op_type="create",
            )
        except ConflictError:
            # A concurrent request stored this key first; keep its vector.
            logger.debug("Embedding %s already stored by another writer", key.doc_id)
            winner = await self.get(key)
            if winner is not None:
                return winner.vector
        return vector

    async def create_user_profile_embedding(
        self,
        user_id: str,
        research_interests: list[str],
        config: EmbeddingConfig,
    ) -> list[float]:
        profile_text = ". ".join(research_interests)
        return await self.get_or_create("user_profile", user_id, profile_text, config)

    async def batch_backfill(
        self,
        content_type: str,
        config: EmbeddingConfig,
        batch_size: int = 10,
    ) -> BackfillResult:
        """Ensure embeddings exist for up to *batch_size* items of *content_type*.

        A failing item is logged and counted; it never aborts the batch.
        """
        result = BackfillResult()
        items = await fetch_backfill_items(self._es, content_type, batch_size)
        for content_id, text in items:
            try:
                await self.get_or_create(content_type, content_id, text, config)
                result.processed += 1
            except Exception:
                logger.exception("Error creating embedding for %s %s", content_type, content_id)
                result.errors += 1
        return result

    async def purge_model(self, model: str) -> int:
        """Delete every record stored under *model*; returns the number removed."""
        resp = await self._es.delete_by_query(
            index=EMBEDDINGS_INDEX,
            query={"term": {"model": model}},
        )
        deleted = unwrap_es_response(resp).get("deleted", 0)
        logger.info("Purged %d embeddings for model %s", deleted, model)
        return deleted
