"""Cross-domain discovery: groups, projects and people to follow.

Relatedness comes from what the user already engaged with: the groups and
projects of posts they reacted to, the projects of papers they reviewed
positively, and the authors of both. Users are also matched on overlapping
research interests. Groups and projects the user already belongs to are
left out.

Extra document fields used here:

* ``groups``: ``id, name, is_private, member_ids``
* ``projects``: ``id, name, visibility, status, member_ids``
"""

import asyncio
import logging

from .content import fetch_user
from .elasticsearch import (
    GROUPS_INDEX,
    PAPERS_INDEX,
    POSTS_INDEX,
    PROJECTS_INDEX,
    REACTIONS_INDEX,
    REVIEWS_INDEX,
    USERS_INDEX,
    hit_sources,
)

logger = logging.getLogger(__name__)

GROUP_REASON = "Based on your research interests and network"
PROJECT_REASON = "Researchers in your network are involved"
USER_REASON = "Similar research interests"

# How many recent likes/reviews seed the related sets.
ENGAGEMENT_SEED_LIMIT = 20


async def _liked_posts(es, user_id: str) -> list[dict]:
    resp = await es.search(
        index=REACTIONS_INDEX,
        query={"term": {"user_id": user_id}},
        size=ENGAGEMENT_SEED_LIMIT,
        _source=["post_id"],
    )
    post_ids = [src["post_id"] for src in hit_sources(resp) if src.get("post_id")]
    if not post_ids:
        return []
    resp = await es.search(index=POSTS_INDEX, query={"terms": {"id": post_ids}}, size=len(post_ids))
    return hit_sources(resp)


async def _liked_papers(es, user_id: str) -> list[dict]:
    resp = await es.search(
        index=REVIEWS_INDEX,
        query={
            "bool": {
                "filter": [
                    {"term": {"reviewer_id": user_id}},
                    {"range": {"rating": {"gte": 4}}},
                ]
            }
        },
        size=ENGAGEMENT_SEED_LIMIT,
        _source=["paper_id"],
    )
    paper_ids = [src["paper_id"] for src in hit_sources(resp) if src.get("paper_id")]
    if not paper_ids:
        return []
    resp = await es.search(index=PAPERS_INDEX, query={"terms": {"id": paper_ids}}, size=len(paper_ids))
    return hit_sources(resp)


def _related_query(ids: set[str], members: set[str], open_filter: dict, user_id: str) -> dict:
    should: list[dict] = []
    if ids:
        should.append({"terms": {"id": sorted(ids)}})
    if members:
        should.append({"bool": {"filter": [open_filter, {"terms": {"member_ids": sorted(members)}}]}})
    return {
        "bool": {
            "should": should,
            "minimum_should_match": 1,
            "must_not": [{"term": {"member_ids": user_id}}],
        }
    }


def _annotate(docs: list[dict], kind: str, reason: str) -> list[dict]:
    return [{**doc, "recommendationType": kind, "reason": reason} for doc in docs]


async def get_cross_domain_recommendations(es, user_id: str, limit: int = 10) -> dict[str, list[dict]]:
    user = await fetch_user(es, user_id)
    if user is None:
        return {"groups": [], "projects": [], "users": []}

    liked_posts, liked_papers = await asyncio.gather(
        _liked_posts(es, user_id), _liked_papers(es, user_id)
    )

    group_ids = {p["group_id"] for p in liked_posts if p.get("group_id")}
    project_ids = {p["project_id"] for p in liked_posts if p.get("project_id")}
    project_ids |= {p["project_id"] for p in liked_papers if p.get("project_id")}
    related_users = {p["author_id"] for p in liked_posts if p.get("author_id")}
    for paper in liked_papers:
        related_users.update(paper.get("author_ids") or [])
    related_users.discard(user_id)

    searches = []
    if group_ids or related_users:
        searches.append(es.search(
            index=GROUPS_INDEX,
            query=_related_query(group_ids, related_users, {"term": {"is_private": False}}, user_id),
            size=limit,
        ))
    else:
        searches.append(None)

    if project_ids or related_users:
        project_query = _related_query(
            project_ids, related_users, {"term": {"visibility": "PUBLIC"}}, user_id
        )
        project_query["bool"]["filter"] = [{"term": {"status": "ACTIVE"}}]
        searches.append(es.search(index=PROJECTS_INDEX, query=project_query, size=limit))
    else:
        searches.append(None)

    interests = list(user.get("research_interests") or [])
    user_should: list[dict] = []
    if related_users:
        user_should.append({"terms": {"id": sorted(related_users)}})
    if interests:
        user_should.append({"terms": {"research_interests": interests}})
    if user_should:
        searches.append(es.search(
            index=USERS_INDEX,
            query={
                "bool": {
                    "should": user_should,
                    "minimum_should_match": 1,
                    "filter": [{"term": {"verification_status": "VERIFIED"}}],
                    "must_not": [{"term": {"id": user_id}}],
                }
            },
            size=limit,
        ))
    else:
        searches.append(None)

    async def _run(search) -> list[dict]:
        if search is None:
            return []
        return hit_sources(await search)

    groups, projects, users = await asyncio.gather(*(_run(s) for s in searches))
    logger.debug(
        "Discovery for %s: %d groups, %d projects, %d users",
        user_id, len(groups), len(projects), len(users),
    )
    return {
        "groups": _annotate(groups, "group", GROUP_REASON),
        "projects": _annotate(projects, "project", PROJECT_REASON),
        "users": _annotate(users, "user", USER_REASON),
    }
