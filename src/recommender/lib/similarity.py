"""Query-time nearest-neighbour search over stored embeddings.

There is no vector index: ``find_similar`` pulls every embedding record of a
content type (and model) and ranks them with cosine similarity in process.
That keeps the engine dependent on nothing but the document store, at the
cost of O(N) work per query. ``scan_size`` caps N; collections larger than
that need a real kNN index.
"""

import logging
import math
from collections.abc import Sequence

from pydantic import BaseModel, Field

from ..errors import DimensionMismatch
from .elasticsearch import EMBEDDINGS_INDEX, unwrap_es_response

logger = logging.getLogger(__name__)

DEFAULT_MIN_SIMILARITY = 0.5
DEFAULT_SCAN_SIZE = 10_000


class SimilarItem(BaseModel):
    """One hit from a similarity scan."""

    content_id: str = Field(..., description="Id of the similar content item")
    similarity: float = Field(..., description="Cosine similarity to the query vector")


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors.

    Returns ``0.0`` when either vector has zero magnitude. Raises
    :class:`DimensionMismatch` when the vectors differ in length.
    """
    if len(vec_a) != len(vec_b):
        raise DimensionMismatch(
            f"Vectors must have the same length ({len(vec_a)} != {len(vec_b)})"
        )

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for a, b in zip(vec_a, vec_b):
        dot += a * b
        norm_a += a * a
        norm_b += b * b

    magnitude = math.sqrt(norm_a) * math.sqrt(norm_b)
    if magnitude == 0:
        return 0.0
    return dot / magnitude


class SimilarityEngine:
    """Linear-scan similarity search against the embeddings index."""

    def __init__(
        self,
        es,
        scan_size: int = DEFAULT_SCAN_SIZE,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
    ):
        self._es = es
        self._scan_size = scan_size
        self._min_similarity = min_similarity

    async def _load_vectors(
        self,
        content_type: str,
        model: str | None,
        exclude_ids: set[str],
    ) -> list[tuple[str, list[float]]]:
        filters: list[dict] = [{"term": {"content_type": content_type}}]
        if model is not None:
            filters.append({"term": {"model": model}})

        query: dict = {"bool": {"filter": filters}}
        if exclude_ids:
            query["bool"]["must_not"] = [{"terms": {"content_id": sorted(exclude_ids)}}]

        resp = await self._es.search(
            index=EMBEDDINGS_INDEX,
            query=query,
            size=self._scan_size,
            _source=["content_id", "vector"],
        )
        data = unwrap_es_response(resp)
        hits = data.get("hits", {}).get("hits", [])
        if len(hits) >= self._scan_size:
            logger.warning(
                "Similarity scan for %s hit the scan cap of %d records",
                content_type,
                self._scan_size,
            )

        records: list[tuple[str, list[float]]] = []
        for hit in hits:
            src = hit.get("_source") or {}
            content_id = src.get("content_id")
            vector = src.get("vector")
            if not content_id or not vector or content_id in exclude_ids:
                continue
            records.append((content_id, vector))
        return records

    async def find_similar(
        self,
        query_vector: Sequence[float],
        content_type: str,
        exclude_ids: Sequence[str] = (),
        limit: int = 20,
        min_similarity: float | None = None,
        model: str | None = None,
    ) -> list[SimilarItem]:
        """Return up to *limit* items of *content_type* most similar to *query_vector*.

        Every returned similarity is ``>= min_similarity`` and no id from
        *exclude_ids* is ever returned. Results are sorted by descending
        similarity, ties broken by content id.
        """
        if limit <= 0:
            return []

        if min_similarity is None:
            min_similarity = self._min_similarity
        excluded = set(exclude_ids)
        records = await self._load_vectors(content_type, model, excluded)

        scored = [
            SimilarItem(content_id=content_id, similarity=cosine_similarity(query_vector, vector))
            for content_id, vector in records
        ]
        matches = [s for s in scored if s.similarity >= min_similarity]
        matches.sort(key=lambda s: (-s.similarity, s.content_id))
        return matches[:limit]
