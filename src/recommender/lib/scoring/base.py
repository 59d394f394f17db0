"""Base abstraction for per-type recommendation scorers.

A scorer pulls candidate items for one content type, computes four signals
for each, normalizes every signal to [0, 1] and combines them with a fixed
weight vector:

``score = recency·w_r + network·w_n + topical·w_t + popularity·w_p``

* **recency** halves every ``RECENCY_HALF_LIFE_DAYS``.
* **network** is 1 when the user follows an author of the item.
* **topical** is the (non-negative) cosine similarity between the user's
  research-interest embedding and the item's embedding.
* **popularity** is type specific (engagement for posts, citations and
  reviews for papers).

The topical signal is best effort. Every embedding call of a request runs
concurrently under one bounded timeout; a provider failure or timeout only
zeroes the topical term of the affected items.
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ...errors import EmbeddingGenerationFailed
from ...models import RecommendationScore, ScoringWeights
from ..content import UserProfile, fetch_items_by_ids, fetch_user_profile, item_text, parse_timestamp
from ..embedding_store import EmbeddingStore
from ..embeddings import EmbeddingConfig
from ..similarity import SimilarityEngine, cosine_similarity

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tunables
# ---------------------------------------------------------------------------

# Fixed evaluation order of the weighted sum.
SIGNALS = ("recency", "network", "topical", "popularity")

DEFAULT_CANDIDATE_POOL_SIZE = 200
DEFAULT_EMBEDDING_TIMEOUT = 5.0

# Older items at least this similar to the user's interests join the pool.
EXPANSION_MIN_SIMILARITY = 0.6

# A signal needs this much weighted contribution to be given as a reason.
REASON_MIN_CONTRIBUTION = 0.05
MAX_REASONS = 3
FALLBACK_REASON = "Suggested for you"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def recency_signal(created_at: datetime | None, now: datetime, half_life_days: float) -> float:
    """``0.5 ** (age / half_life)``; 0 for undated items, 1 for future-dated ones."""
    if created_at is None or half_life_days <= 0:
        return 0.0
    age_days = max((now - created_at).total_seconds() / 86400.0, 0.0)
    return math.pow(0.5, age_days / half_life_days)


def log_points(value: float, factor: float, ceiling: float) -> float:
    """``min(ceiling, ln(value + 1) * factor)``, never negative."""
    return min(ceiling, math.log(max(value, 0.0) + 1.0) * factor)


def combine(signals: dict[str, float], weights: ScoringWeights) -> dict[str, float]:
    """Weighted contribution of each signal, clamped to [0, 1] first."""
    w = weights.as_dict()
    return {name: w[name] * min(1.0, max(0.0, signals.get(name, 0.0))) for name in SIGNALS}


def explain(contributions: dict[str, float], labels: dict[str, str]) -> list[str]:
    """Labels of the top contributing signals, largest contribution first."""
    ranked = sorted(
        (name for name in SIGNALS if contributions[name] >= REASON_MIN_CONTRIBUTION),
        key=lambda name: (-contributions[name], SIGNALS.index(name)),
    )
    reasons = [labels[name] for name in ranked[:MAX_REASONS]]
    return reasons or [FALLBACK_REASON]


def rank(scores: list[RecommendationScore]) -> list[RecommendationScore]:
    """Sort by descending score, newer items first on ties."""
    def _key(s: RecommendationScore):
        ts = s.created_at.timestamp() if s.created_at is not None else float("-inf")
        return (-s.score, -ts)

    return sorted(scores, key=_key)


@dataclass
class TopicalResult:
    similarities: dict[str, float] = field(default_factory=dict)
    extra_items: list[dict] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class ItemScorer(ABC):
    """Scores candidate items of one type for a user.

    Subclasses provide candidate retrieval and the type-specific parts of
    the signals (``item_type``, ``fetch_candidates``, ``seen_ids``,
    ``author_ids``, ``popularity``).
    """

    recency_half_life_days: float = 7.0
    reason_labels: dict[str, str] = {
        "recency": "Recently published",
        "network": "From researchers you follow",
        "topical": "Similar research interests",
        "popularity": "Popular in the community",
    }

    def __init__(
        self,
        es,
        store: EmbeddingStore,
        similarity: SimilarityEngine,
        embedding_config: EmbeddingConfig,
        weights: ScoringWeights | None = None,
        candidate_pool_size: int = DEFAULT_CANDIDATE_POOL_SIZE,
        embedding_timeout: float = DEFAULT_EMBEDDING_TIMEOUT,
    ):
        self._es = es
        self._store = store
        self._similarity = similarity
        self._config = embedding_config
        self._weights = weights or ScoringWeights()
        self._pool_size = candidate_pool_size
        self._timeout = embedding_timeout

    @property
    @abstractmethod
    def item_type(self) -> str:
        """``post`` or ``paper``."""
        ...

    @abstractmethod
    async def fetch_candidates(self, user_id: str, exclude_ids: set[str], size: int) -> list[dict]:
        ...

    @abstractmethod
    def seen_ids(self, profile: UserProfile) -> set[str]:
        """Items the user already engaged with; never recommended again."""
        ...

    @abstractmethod
    def author_ids(self, doc: dict) -> list[str]:
        ...

    @abstractmethod
    def popularity(self, doc: dict) -> float:
        """Popularity normalized to [0, 1]."""
        ...

    def network(self, doc: dict, profile: UserProfile) -> float:
        followed = set(profile.followed_users)
        return 1.0 if any(a in followed for a in self.author_ids(doc)) else 0.0

    # -- topical signal -----------------------------------------------------

    async def _embed_or_none(self, coro, label: str) -> list[float] | None:
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.info("Embedding for %s timed out after %.1fs", label, self._timeout)
        except EmbeddingGenerationFailed as exc:
            logger.info("Embedding for %s unavailable: %s", label, exc)
        return None

    async def topical(
        self,
        profile: UserProfile,
        candidates: list[dict],
        excluded: set[str],
        limit: int,
    ) -> TopicalResult:
        """Similarity of each candidate to the user's interests.

        Also asks the similarity engine for older items close to the user's
        interests that the recency-ordered pool missed.
        """
        result = TopicalResult()
        if not profile.research_interests:
            logger.info("User %s has no research interests; topical signal is 0", profile.id)
            return result

        user_task = self._embed_or_none(
            self._store.create_user_profile_embedding(
                profile.id, profile.research_interests, self._config
            ),
            f"user_profile {profile.id}",
        )
        item_tasks = [
            self._embed_or_none(
                self._store.get_or_create(
                    self.item_type, doc["id"], item_text(self.item_type, doc), self._config
                ),
                f"{self.item_type} {doc['id']}",
            )
            for doc in candidates
        ]
        user_vec, *item_vecs = await asyncio.gather(user_task, *item_tasks)
        if user_vec is None:
            return result

        for doc, vec in zip(candidates, item_vecs):
            if vec is not None:
                result.similarities[doc["id"]] = max(0.0, cosine_similarity(user_vec, vec))

        known = excluded | {doc["id"] for doc in candidates}
        similar = await self._similarity.find_similar(
            user_vec,
            self.item_type,
            exclude_ids=sorted(known),
            limit=limit,
            min_similarity=EXPANSION_MIN_SIMILARITY,
            model=self._config.model,
        )
        if similar:
            docs = await fetch_items_by_ids(
                self._es, self.item_type, [s.content_id for s in similar]
            )
            for hit in similar:
                doc = docs.get(hit.content_id)
                if doc is None or profile.id in self.author_ids(doc):
                    continue
                result.extra_items.append(doc)
                result.similarities[hit.content_id] = hit.similarity
        return result

    # -- scoring ------------------------------------------------------------

    def score_item(
        self,
        doc: dict,
        profile: UserProfile,
        topical_similarity: float,
        weights: ScoringWeights,
        now: datetime,
    ) -> RecommendationScore:
        created_at = parse_timestamp(doc.get("created_at"))
        signals = {
            "recency": recency_signal(created_at, now, self.recency_half_life_days),
            "network": self.network(doc, profile),
            "topical": topical_similarity,
            "popularity": self.popularity(doc),
        }
        contributions = combine(signals, weights)
        score = 0.0
        for name in SIGNALS:
            score += contributions[name]
        return RecommendationScore(
            item_type=self.item_type,
            item_id=doc["id"],
            score=score,
            reasons=explain(contributions, self.reason_labels),
            created_at=created_at,
        )

    async def score_candidates(
        self,
        user_id: str,
        limit: int,
        exclude_ids: Sequence[str] = (),
        weights: ScoringWeights | None = None,
    ) -> list[RecommendationScore]:
        """Return up to *limit* scored items for *user_id*, best first."""
        if limit <= 0:
            return []

        profile = await fetch_user_profile(self._es, user_id)
        if profile is None:
            logger.info("No profile for user %s; returning no %s recommendations", user_id, self.item_type)
            return []

        excluded = set(exclude_ids) | self.seen_ids(profile)
        candidates = await self.fetch_candidates(user_id, excluded, self._pool_size)
        candidates = [doc for doc in candidates if doc.get("id") and doc["id"] not in excluded]

        topical = await self.topical(profile, candidates, excluded, limit)
        candidates.extend(topical.extra_items)

        now = datetime.now(timezone.utc)
        weights = weights or self._weights
        scored = [
            self.score_item(doc, profile, topical.similarities.get(doc["id"], 0.0), weights, now)
            for doc in candidates
        ]
        return rank(scored)[:limit]
