"""Read access to the content store.

Posts, papers, users and the social graph are owned by the rest of the
application; the engine only reads them. Each helper takes an
``AsyncElasticsearch`` client and returns plain ``_source`` dicts.

Document shapes the engine relies on:

* ``posts``: ``id, author_id, title, content, tags, type, published,
  created_at, reaction_count, bookmark_count, view_count, group_id,
  project_id``
* ``papers``: ``id, title, abstract, author_ids, citations, journal,
  conference, avg_rating, review_count, project_id, created_at``
* ``users``: ``id, name, research_interests, department, institution,
  verification_status``
* ``follows``: ``follower_id, following_id``
* ``reactions`` / ``bookmarks``: ``user_id, post_id``
* ``reviews``: ``reviewer_id, paper_id, rating``
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .elasticsearch import (
    BOOKMARKS_INDEX,
    FOLLOWS_INDEX,
    PAPERS_INDEX,
    POSTS_INDEX,
    REACTIONS_INDEX,
    REVIEWS_INDEX,
    USERS_INDEX,
    hit_sources,
)

logger = logging.getLogger(__name__)

ITEM_INDEXES = {"post": POSTS_INDEX, "paper": PAPERS_INDEX}

# Upper bound for per-user relation lookups (likes, bookmarks, follows).
RELATION_LOOKUP_LIMIT = 1000

# A review at or above this rating counts as the user "liking" the paper.
POSITIVE_REVIEW_RATING = 4


@dataclass
class UserProfile:
    id: str
    research_interests: list[str] = field(default_factory=list)
    department: str | None = None
    institution: str | None = None
    liked_posts: list[str] = field(default_factory=list)
    liked_papers: list[str] = field(default_factory=list)
    bookmarked_posts: list[str] = field(default_factory=list)
    followed_users: list[str] = field(default_factory=list)


def parse_timestamp(value) -> datetime | None:
    """Parse an ISO-8601 string or epoch milliseconds into an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable timestamp %r", value)
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def item_text(item_type: str, doc: dict) -> str:
    """Text used to embed a post or paper."""
    if item_type == "post":
        return f"{doc.get('title') or ''} {doc.get('content') or ''}".strip()
    if item_type == "paper":
        return f"{doc.get('title') or ''} {doc.get('abstract') or ''}".strip()
    raise ValueError(f"Unknown item type: {item_type}")


async def _field_values(es, index: str, query: dict, field_name: str) -> list[str]:
    resp = await es.search(
        index=index, query=query, size=RELATION_LOOKUP_LIMIT, _source=[field_name]
    )
    return [src[field_name] for src in hit_sources(resp) if src.get(field_name)]


async def fetch_user(es, user_id: str) -> dict | None:
    resp = await es.search(index=USERS_INDEX, query={"term": {"id": user_id}}, size=1)
    sources = hit_sources(resp)
    return sources[0] if sources else None


async def fetch_followed_user_ids(es, user_id: str) -> list[str]:
    return await _field_values(
        es, FOLLOWS_INDEX, {"term": {"follower_id": user_id}}, "following_id"
    )


async def fetch_user_profile(es, user_id: str) -> UserProfile | None:
    """Assemble the signals the scorers need about *user_id*.

    Returns ``None`` if the user does not exist.
    """
    user = await fetch_user(es, user_id)
    if user is None:
        return None

    liked_posts, bookmarked, followed, liked_papers = await asyncio.gather(
        _field_values(es, REACTIONS_INDEX, {"term": {"user_id": user_id}}, "post_id"),
        _field_values(es, BOOKMARKS_INDEX, {"term": {"user_id": user_id}}, "post_id"),
        fetch_followed_user_ids(es, user_id),
        _field_values(
            es,
            REVIEWS_INDEX,
            {
                "bool": {
                    "filter": [
                        {"term": {"reviewer_id": user_id}},
                        {"range": {"rating": {"gte": POSITIVE_REVIEW_RATING}}},
                    ]
                }
            },
            "paper_id",
        ),
    )

    return UserProfile(
        id=user_id,
        research_interests=list(user.get("research_interests") or []),
        department=user.get("department"),
        institution=user.get("institution"),
        liked_posts=liked_posts,
        liked_papers=liked_papers,
        bookmarked_posts=bookmarked,
        followed_users=followed,
    )


async def fetch_post_candidates(
    es,
    user_id: str,
    exclude_ids: set[str],
    size: int,
) -> list[dict]:
    """Newest published posts not written by the user and not excluded."""
    must_not: list[dict] = [{"term": {"author_id": user_id}}]
    if exclude_ids:
        must_not.append({"terms": {"id": sorted(exclude_ids)}})
    query = {"bool": {"filter": [{"term": {"published": True}}], "must_not": must_not}}

    resp = await es.search(
        index=POSTS_INDEX, query=query, size=size, sort=[{"created_at": "desc"}]
    )
    return hit_sources(resp)


async def fetch_paper_candidates(
    es,
    user_id: str,
    exclude_ids: set[str],
    size: int,
) -> list[dict]:
    """Newest papers the user did not co-author and has not excluded."""
    must_not: list[dict] = [{"term": {"author_ids": user_id}}]
    if exclude_ids:
        must_not.append({"terms": {"id": sorted(exclude_ids)}})
    query = {"bool": {"must_not": must_not}}

    resp = await es.search(
        index=PAPERS_INDEX, query=query, size=size, sort=[{"created_at": "desc"}]
    )
    return hit_sources(resp)


async def fetch_items_by_ids(es, item_type: str, ids: list[str]) -> dict[str, dict]:
    """Fetch posts or papers by id; missing ids are absent from the result."""
    if not ids:
        return {}
    resp = await es.search(
        index=ITEM_INDEXES[item_type], query={"terms": {"id": list(ids)}}, size=len(ids)
    )
    return {src["id"]: src for src in hit_sources(resp) if src.get("id")}


async def fetch_backfill_items(es, content_type: str, batch_size: int) -> list[tuple[str, str]]:
    """Return ``(id, text)`` pairs eligible for embedding backfill."""
    if content_type == "post":
        query = {"bool": {"filter": [{"term": {"published": True}}]}}
        source = ["id", "title", "content"]
    elif content_type == "paper":
        query = {"match_all": {}}
        source = ["id", "title", "abstract"]
    else:
        raise ValueError(f"Backfill is not supported for {content_type}")

    resp = await es.search(
        index=ITEM_INDEXES[content_type], query=query, size=batch_size, _source=source
    )
    return [
        (src["id"], item_text(content_type, src))
        for src in hit_sources(resp)
        if src.get("id")
    ]
