"""Shared Elasticsearch utilities.

Index names and helpers for working with Elasticsearch responses, used by
the content-store queries and by the engine-owned stores.
"""

import logging

from elastic_transport import ObjectApiResponse

from ..errors import InternalError

logger = logging.getLogger(__name__)

# Content store (read only for the engine)
POSTS_INDEX = "posts"
PAPERS_INDEX = "papers"
USERS_INDEX = "users"
FOLLOWS_INDEX = "follows"
REACTIONS_INDEX = "reactions"
BOOKMARKS_INDEX = "bookmarks"
REVIEWS_INDEX = "reviews"
GROUPS_INDEX = "groups"
PROJECTS_INDEX = "projects"

# Owned by the engine
EMBEDDINGS_INDEX = "content_embeddings"
FEEDBACK_INDEX = "recommendation_feedback"
VARIANTS_INDEX = "ab_test_variants"
ASSIGNMENTS_INDEX = "ab_test_assignments"


def unwrap_es_response(resp) -> dict:
    """Unwrap an Elasticsearch response, handling both ObjectApiResponse and dict.

    Raises ``InternalError`` if the response type is unexpected.
    """
    if isinstance(resp, ObjectApiResponse):
        return resp.body
    elif isinstance(resp, dict):
        return resp
    else:
        logger.error("Unexpected Elasticsearch response type: %s", type(resp))
        raise InternalError("Invalid Elasticsearch response")


def hit_sources(resp) -> list[dict]:
    """Return the ``_source`` of every hit in a search response."""
    data = unwrap_es_response(resp)
    return [hit.get("_source") or {} for hit in data.get("hits", {}).get("hits", [])]
