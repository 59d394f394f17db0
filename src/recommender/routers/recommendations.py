"""Recommendations router – personalized feeds, discovery and feedback.

GET /recommendations
    Ranked posts, papers or a mix of both for the authenticated user.

GET /recommendations/discover
    Groups, projects and researchers related to the user's activity.

POST /recommendations/feedback
    Record the user's reaction to a recommended item.

GET /recommendations/feedback
    The user's feedback history, newest first.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Request

from ..lib.discover import get_cross_domain_recommendations
from ..models import (
    DiscoverResponse,
    FeedbackHistoryResponse,
    FeedbackItemType,
    FeedbackRequest,
    FeedbackResponse,
    RecommendationsResponse,
    RecommendationType,
)
from ..security import CurrentUserId

router = APIRouter(prefix="/recommendations", tags=["recommendations"])

logger = logging.getLogger(__name__)

MAX_LIMIT = 100


def _parse_exclude(raw: str | None) -> list[str]:
    """Split the comma-separated ``exclude`` parameter, dropping blanks."""
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


@router.get("", response_model=RecommendationsResponse)
async def get_recommendations(
    request: Request,
    user_id: CurrentUserId,
    type: Annotated[RecommendationType, Query()] = "mixed",
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = 20,
    exclude: Annotated[str | None, Query(description="Comma-separated item ids")] = None,
    cache: Annotated[bool, Query(description="Use cached results when available")] = True,
) -> RecommendationsResponse:
    engine = request.app.state.services.engine
    try:
        return await engine.get_recommendations(
            user_id,
            rec_type=type,
            limit=limit,
            exclude_ids=_parse_exclude(exclude),
            use_cache=cache,
        )
    except Exception as exc:
        logger.exception("Error fetching recommendations for %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to fetch recommendations") from exc


@router.get("/discover", response_model=DiscoverResponse)
async def discover(
    request: Request,
    user_id: CurrentUserId,
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = 10,
) -> DiscoverResponse:
    es = request.app.state.services.es
    try:
        found = await get_cross_domain_recommendations(es, user_id, limit=limit)
    except Exception as exc:
        logger.exception("Error fetching discovery recommendations for %s", user_id)
        raise HTTPException(
            status_code=500, detail="Failed to fetch discovery recommendations"
        ) from exc
    return DiscoverResponse(
        groups=found["groups"],
        projects=found["projects"],
        users=found["users"],
        total=sum(len(v) for v in found.values()),
    )


@router.post("/feedback", response_model=FeedbackResponse)
async def record_feedback(
    request: Request,
    user_id: CurrentUserId,
    payload: FeedbackRequest,
) -> FeedbackResponse:
    ledger = request.app.state.services.ledger
    try:
        await ledger.record_feedback(
            user_id,
            item_type=payload.item_type,
            item_id=payload.item_id,
            feedback=payload.feedback,
            reason=payload.reason,
            session_id=payload.session_id,
            position=payload.position,
            variant_id=payload.variant_id,
        )
    except Exception as exc:
        logger.exception("Error recording feedback from %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to record feedback") from exc
    return FeedbackResponse()


@router.get("/feedback", response_model=FeedbackHistoryResponse)
async def list_feedback(
    request: Request,
    user_id: CurrentUserId,
    item_type: Annotated[FeedbackItemType | None, Query(alias="itemType")] = None,
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = 50,
) -> FeedbackHistoryResponse:
    ledger = request.app.state.services.ledger
    try:
        records = await ledger.list_feedback(user_id, item_type=item_type, limit=limit)
    except Exception as exc:
        logger.exception("Error fetching feedback for %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to fetch feedback") from exc
    return FeedbackHistoryResponse(feedback=records, total=len(records))
