"""Post scorer.

Popularity for posts blends engagement and views on log scales, following
the point scheme the feed has always used:

* engagement (reactions + 2 × bookmarks): ``min(30, 8·ln(1 + e))``
* views: ``min(10, 3·ln(1 + v))``

normalized by the 40-point ceiling.
"""

from ..content import UserProfile, fetch_post_candidates
from .base import ItemScorer, log_points

ENGAGEMENT_FACTOR = 8.0
ENGAGEMENT_CEILING = 30.0
VIEW_FACTOR = 3.0
VIEW_CEILING = 10.0
BOOKMARK_WEIGHT = 2


class PostScorer(ItemScorer):
    recency_half_life_days = 7.0

    @property
    def item_type(self) -> str:
        return "post"

    async def fetch_candidates(self, user_id: str, exclude_ids: set[str], size: int) -> list[dict]:
        return await fetch_post_candidates(self._es, user_id, exclude_ids, size)

    def seen_ids(self, profile: UserProfile) -> set[str]:
        return set(profile.liked_posts) | set(profile.bookmarked_posts)

    def author_ids(self, doc: dict) -> list[str]:
        author = doc.get("author_id")
        return [author] if author else []

    def popularity(self, doc: dict) -> float:
        engagement = (doc.get("reaction_count") or 0) + BOOKMARK_WEIGHT * (doc.get("bookmark_count") or 0)
        points = log_points(engagement, ENGAGEMENT_FACTOR, ENGAGEMENT_CEILING)
        points += log_points(doc.get("view_count") or 0, VIEW_FACTOR, VIEW_CEILING)
        return points / (ENGAGEMENT_CEILING + VIEW_CEILING)
