"""Paper scorer.

Paper popularity is a quality measure rather than raw engagement:

* citations above ``CITATION_MIN``: ``min(20, 5·ln(citations))``
* average review rating (1–5) × 4, up to 20
* a flat bonus of 5 for a journal or conference venue

normalized by the 45-point ceiling.
"""

import math

from ..content import UserProfile, fetch_paper_candidates
from .base import ItemScorer

CITATION_MIN = 10
CITATION_FACTOR = 5.0
CITATION_CEILING = 20.0
RATING_FACTOR = 4.0
RATING_CEILING = 20.0
VENUE_BONUS = 5.0
POPULARITY_CEILING = CITATION_CEILING + RATING_CEILING + VENUE_BONUS


class PaperScorer(ItemScorer):
    recency_half_life_days = 14.0
    reason_labels = {
        "recency": "Recently added",
        "network": "From researchers you follow",
        "topical": "Similar research interests",
        "popularity": "Highly cited and well reviewed",
    }

    @property
    def item_type(self) -> str:
        return "paper"

    async def fetch_candidates(self, user_id: str, exclude_ids: set[str], size: int) -> list[dict]:
        return await fetch_paper_candidates(self._es, user_id, exclude_ids, size)

    def seen_ids(self, profile: UserProfile) -> set[str]:
        return set(profile.liked_papers)

    def author_ids(self, doc: dict) -> list[str]:
        return list(doc.get("author_ids") or [])

    def popularity(self, doc: dict) -> float:
        points = 0.0
        citations = doc.get("citations") or 0
        if citations > CITATION_MIN:
            points += min(CITATION_CEILING, math.log(citations) * CITATION_FACTOR)
        if (doc.get("review_count") or 0) > 0 and doc.get("avg_rating") is not None:
            points += min(RATING_CEILING, float(doc["avg_rating"]) * RATING_FACTOR)
        if doc.get("journal") or doc.get("conference"):
            points += VENUE_BONUS
        return points / POPULARITY_CEILING
