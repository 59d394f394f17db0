"""Recommendation request orchestration.

``RecommendationEngine`` ties the pieces together for one request:
cache lookup, A/B variant assignment, per-type scoring (or mixed mode),
cache write and hydration of the recommended documents.
"""

import asyncio
import logging
import time
from collections.abc import Sequence

from ..models import (
    RecommendationScore,
    RecommendationsResponse,
    RecommendationType,
    RecommendedItem,
    ScoringWeights,
)
from .cache import RecommendationCache
from .content import fetch_items_by_ids
from .experiments import ExperimentTracker
from .mixer import mix, split_limit
from .scoring import ItemScorer

logger = logging.getLogger(__name__)

ITEM_TYPE_FOR = {"posts": "post", "papers": "paper"}

DEFAULT_POST_SHARE = 0.5


class RecommendationEngine:
    def __init__(
        self,
        es,
        scorers: dict[str, ItemScorer],
        cache: RecommendationCache,
        tracker: ExperimentTracker,
        post_share: float = DEFAULT_POST_SHARE,
    ):
        self._es = es
        self._scorers = scorers
        self._cache = cache
        self._tracker = tracker
        self._post_share = post_share

    async def get_mixed_recommendations(
        self,
        user_id: str,
        limit: int,
        exclude_ids: Sequence[str] = (),
        weights: ScoringWeights | None = None,
        post_share: float | None = None,
    ) -> list[RecommendationScore]:
        """Score posts and papers with a shared exclusion set, then mix them.

        Each type is asked for up to twice its share of *limit* (never more
        than *limit*), so ``mix`` can give a type with uniformly higher
        scores more than its even split.
        """
        share = self._post_share if post_share is None else post_share
        fetch = split_limit(2 * limit, {"post": share, "paper": 1.0 - share})
        posts, papers = await asyncio.gather(
            self._scorers["post"].score_candidates(
                user_id, min(limit, fetch["post"]), exclude_ids, weights
            ),
            self._scorers["paper"].score_candidates(
                user_id, min(limit, fetch["paper"]), exclude_ids, weights
            ),
        )
        return mix({"post": posts, "paper": papers}, limit)

    async def _score(
        self,
        user_id: str,
        rec_type: RecommendationType,
        limit: int,
        exclude_ids: Sequence[str],
        weights: ScoringWeights,
    ) -> list[RecommendationScore]:
        if rec_type == "mixed":
            return await self.get_mixed_recommendations(user_id, limit, exclude_ids, weights)
        scorer = self._scorers[ITEM_TYPE_FOR[rec_type]]
        return await scorer.score_candidates(user_id, limit, exclude_ids, weights)

    async def _hydrate(
        self,
        scores: Sequence[RecommendationScore],
        session_id: str,
        variant_id: str,
    ) -> list[RecommendedItem]:
        ids_by_type: dict[str, list[str]] = {}
        for s in scores:
            ids_by_type.setdefault(s.item_type, []).append(s.item_id)
        item_types = list(ids_by_type)
        fetched = await asyncio.gather(
            *(fetch_items_by_ids(self._es, t, ids_by_type[t]) for t in item_types)
        )
        docs = dict(zip(item_types, fetched))

        items: list[RecommendedItem] = []
        for s in scores:
            doc = docs[s.item_type].get(s.item_id)
            if doc is None:
                logger.debug("Recommended %s %s no longer exists", s.item_type, s.item_id)
                continue
            items.append(RecommendedItem(
                type=s.item_type,
                id=s.item_id,
                item=doc,
                recommendation_score=s.score,
                recommendation_reasons=s.reasons,
                recommendation_position=len(items) + 1,
                recommendation_session_id=session_id,
                variant_id=variant_id,
            ))
        return items

    async def get_recommendations(
        self,
        user_id: str,
        rec_type: RecommendationType = "mixed",
        limit: int = 20,
        exclude_ids: Sequence[str] = (),
        use_cache: bool = True,
    ) -> RecommendationsResponse:
        """Ranked recommendations for *user_id*.

        The cache is only consulted for requests without exclusions, since a
        cached list was computed without them. A cached list computed for a
        smaller limit counts as a miss unless it was already short.
        """
        session_id = f"{user_id}-{int(time.time() * 1000)}"
        assignment = await self._tracker.assign_variant(user_id)
        cacheable = use_cache and not exclude_ids

        cached = await self._cache.get(user_id, rec_type) if cacheable else None
        if cached is not None and not cached.covers(limit):
            cached = None
        if cached is not None:
            scores = cached.payload[:limit]
        else:
            scores = await self._score(user_id, rec_type, limit, exclude_ids, assignment.weights)
            if cacheable:
                await self._cache.put(user_id, scores, namespace=rec_type, limit=limit)

        items = await self._hydrate(scores, session_id, assignment.variant_id)
        return RecommendationsResponse(
            recommendations=items,
            total=len(items),
            session_id=session_id,
            variant_id=assignment.variant_id,
            cached=cached is not None,
        )
