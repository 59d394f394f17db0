"""Feedback ledger and cache invalidation.

Every reaction to a recommended item is appended to the
``recommendation_feedback`` index; repeated feedback on the same item is
kept as history. After the write, two side effects run best effort:

* the outcome is forwarded to the experiment tracker when the
  recommendation came from a variant;
* ``negative`` and ``not_interested`` evict the user's cached lists so the
  next request is recomputed. Positive feedback leaves the cache alone.

A failing side effect is logged and never fails the feedback write.
"""

import logging
from datetime import datetime, timezone

from ..models import (
    CONTROL_VARIANT,
    FeedbackItemType,
    FeedbackKind,
    FeedbackRecord,
)
from .cache import RecommendationCache
from .elasticsearch import FEEDBACK_INDEX, hit_sources
from .experiments import ExperimentTracker

logger = logging.getLogger(__name__)

INVALIDATING_FEEDBACK = ("negative", "not_interested")

DEFAULT_HISTORY_LIMIT = 50


class FeedbackLedger:
    def __init__(self, es, cache: RecommendationCache, tracker: ExperimentTracker):
        self._es = es
        self._cache = cache
        self._tracker = tracker

    async def record_feedback(
        self,
        user_id: str,
        item_type: FeedbackItemType,
        item_id: str,
        feedback: FeedbackKind,
        reason: str | None = None,
        session_id: str | None = None,
        position: int | None = None,
        variant_id: str | None = None,
    ) -> FeedbackRecord:
        record = FeedbackRecord(
            user_id=user_id,
            item_type=item_type,
            item_id=item_id,
            feedback=feedback,
            reason=reason,
            session_id=session_id,
            position=position,
            created_at=datetime.now(timezone.utc),
        )
        await self._es.index(index=FEEDBACK_INDEX, document=record.model_dump(mode="json"))

        if variant_id and variant_id != CONTROL_VARIANT:
            try:
                await self._tracker.record_outcome(
                    user_id,
                    variant_id,
                    "positive" if feedback == "positive" else "negative",
                    clicked=True,
                )
            except Exception:
                logger.warning(
                    "Failed to record A/B outcome for variant %s", variant_id, exc_info=True
                )

        if feedback in INVALIDATING_FEEDBACK:
            try:
                await self._cache.invalidate(user_id)
            except Exception:
                logger.warning(
                    "Failed to invalidate recommendation cache for %s", user_id, exc_info=True
                )

        return record

    async def list_feedback(
        self,
        user_id: str,
        item_type: str | None = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[FeedbackRecord]:
        """Feedback history of *user_id*, newest first."""
        filters: list[dict] = [{"term": {"user_id": user_id}}]
        if item_type:
            filters.append({"term": {"item_type": item_type}})
        resp = await self._es.search(
            index=FEEDBACK_INDEX,
            query={"bool": {"filter": filters}},
            size=limit,
            sort=[{"created_at": "desc"}],
        )
        return [FeedbackRecord.model_validate(src) for src in hit_sources(resp)]
