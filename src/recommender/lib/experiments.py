"""A/B experiment tracking for recommendation variants.

Variants live in the ``ab_test_variants`` index; each document carries the
variant's scoring weights, its traffic share and its outcome counters.
Counters are only ever changed with a server-side scripted ``update``, which
Elasticsearch applies atomically per document (retrying on version
conflicts), so concurrent outcomes are never lost.

Users are bucketed deterministically from a hash of their id, so the same
user sees the same variant for as long as the set of active variants is
unchanged. ``control`` is the baseline: it is never stored and its outcomes
are never counted.
"""

import hashlib
import logging
import uuid
from datetime import datetime, timezone
from urllib.parse import quote

from elasticsearch import ConflictError, NotFoundError

from ..models import (
    CONTROL_VARIANT,
    Outcome,
    ScoringWeights,
    VariantAssignment,
    VariantConfig,
    VariantResults,
)
from .elasticsearch import ASSIGNMENTS_INDEX, VARIANTS_INDEX, hit_sources, unwrap_es_response

logger = logging.getLogger(__name__)

RETRY_ON_CONFLICT = 5
MAX_VARIANTS = 100

COUNTERS = (
    "total_assignments",
    "total_shown",
    "total_clicked",
    "total_positive",
    "total_negative",
)

INCREMENT_SCRIPT = """
for (entry in params.increments.entrySet()) {
  def current = ctx._source.containsKey(entry.getKey()) ? ctx._source[entry.getKey()] : 0;
  ctx._source[entry.getKey()] = current + entry.getValue();
}
"""

# Weighted combination used to rank variants against each other.
FEEDBACK_SHARE = 0.6
CTR_SHARE = 0.4
NEUTRAL_FEEDBACK_SCORE = 50.0


def bucket_for(user_id: str) -> float:
    """Stable bucket in [0, 100) for *user_id*."""
    digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()
    return (int(digest[:8], 16) % 10_000) / 100.0


def performance_score(positive: int, negative: int, ctr: float) -> float:
    total = positive + negative
    feedback_score = (positive / total) * 100 if total > 0 else NEUTRAL_FEEDBACK_SCORE
    return feedback_score * FEEDBACK_SHARE + ctr * CTR_SHARE


def _results_from_source(src: dict) -> VariantResults:
    positive = src.get("total_positive", 0)
    negative = src.get("total_negative", 0)
    shown = src.get("total_shown", 0)
    clicked = src.get("total_clicked", 0)
    users = src.get("total_assignments", 0)
    ctr = (clicked / shown) * 100 if shown > 0 else 0.0
    return VariantResults(
        id=src["variant_id"],
        name=src.get("name") or src["variant_id"],
        description=src.get("description") or "",
        weights=ScoringWeights.model_validate(src.get("weights") or {}),
        is_control=bool(src.get("is_control", False)),
        is_active=bool(src.get("is_active", True)),
        total_assignments=users,
        total_shown=shown,
        total_clicked=clicked,
        total_positive_feedback=positive,
        total_negative_feedback=negative,
        acceptance_rate=positive / (positive + negative) if positive + negative > 0 else None,
        avg_click_through_rate=ctr,
        avg_positive_feedback_per_user=positive / users if users > 0 else 0.0,
        avg_negative_feedback_per_user=negative / users if users > 0 else 0.0,
        performance_score=performance_score(positive, negative, ctr),
    )


class ExperimentTracker:
    def __init__(self, es, control_weights: ScoringWeights | None = None):
        self._es = es
        self._control_weights = control_weights or ScoringWeights()

    async def _increment(self, variant_id: str, increments: dict[str, int]) -> None:
        await self._es.update(
            index=VARIANTS_INDEX,
            id=variant_id,
            script={
                "source": INCREMENT_SCRIPT,
                "lang": "painless",
                "params": {"increments": increments},
            },
            retry_on_conflict=RETRY_ON_CONFLICT,
        )

    async def create_variant(self, config: VariantConfig) -> str:
        variant_id = uuid.uuid4().hex
        document = {
            "variant_id": variant_id,
            "name": config.name,
            "description": config.description,
            "weights": config.weights.model_dump(),
            "is_control": config.is_control,
            "traffic_percent": config.traffic_percent,
            "is_active": True,
            "created_at": datetime.now(timezone.utc).isoformat(),
            **{counter: 0 for counter in COUNTERS},
        }
        await self._es.index(index=VARIANTS_INDEX, id=variant_id, document=document, refresh="wait_for")
        logger.info("Created A/B variant %s (%s)", variant_id, config.name)
        return variant_id

    async def deactivate_variant(self, variant_id: str) -> bool:
        """Stop assigning users to *variant_id*. Returns False if it does not exist."""
        try:
            await self._es.update(
                index=VARIANTS_INDEX, id=variant_id, doc={"is_active": False}, refresh="wait_for"
            )
        except NotFoundError:
            return False
        logger.info("Deactivated A/B variant %s", variant_id)
        return True

    async def active_variants(self) -> list[dict]:
        resp = await self._es.search(
            index=VARIANTS_INDEX,
            query={"bool": {"filter": [{"term": {"is_active": True}}]}},
            size=MAX_VARIANTS,
            sort=[{"created_at": "asc"}],
        )
        return hit_sources(resp)

    async def _record_assignment(self, user_id: str, variant_id: str) -> None:
        doc_id = f"{quote(user_id, safe='')}:{quote(variant_id, safe='')}"
        try:
            await self._es.index(
                index=ASSIGNMENTS_INDEX,
                id=doc_id,
                document={
                    "user_id": user_id,
                    "variant_id": variant_id,
                    "created_at": datetime.now(timezone.utc).isoformat(),
                },
                op_type="create",
            )
        except ConflictError:
            return
        await self._increment(variant_id, {"total_assignments": 1})

    async def assign_variant(self, user_id: str) -> VariantAssignment:
        """Return the variant *user_id* falls into, or ``control``."""
        control = VariantAssignment(variant_id=CONTROL_VARIANT, weights=self._control_weights)
        variants = [v for v in await self.active_variants() if not v.get("is_control")]
        if not variants:
            return control

        bucket = bucket_for(user_id)
        cumulative = 0.0
        for variant in variants:
            cumulative += float(variant.get("traffic_percent") or 0)
            if bucket < cumulative:
                variant_id = variant["variant_id"]
                try:
                    await self._record_assignment(user_id, variant_id)
                except Exception:
                    logger.warning(
                        "Failed to record A/B assignment of %s to %s", user_id, variant_id, exc_info=True
                    )
                return VariantAssignment(
                    variant_id=variant_id,
                    weights=ScoringWeights.model_validate(variant.get("weights") or {}),
                )
        return control

    async def record_outcome(
        self,
        user_id: str,
        variant_id: str,
        outcome: Outcome,
        clicked: bool = False,
    ) -> None:
        """Count one outcome for *variant_id*.

        Does nothing for ``control``. Counters are only updated on an existing
        variant document; an unknown id is logged and ignored.
        """
        if variant_id == CONTROL_VARIANT:
            return
        increments = {
            "total_shown": 1,
            "total_clicked": 1 if clicked else 0,
            "total_positive": 1 if outcome == "positive" else 0,
            "total_negative": 0 if outcome == "positive" else 1,
        }
        try:
            await self._increment(variant_id, increments)
        except NotFoundError:
            logger.warning("Ignoring outcome for unknown A/B variant %s", variant_id)
            return
        logger.debug("Recorded %s outcome for %s in variant %s", outcome, user_id, variant_id)

    async def get_counters(self, variant_id: str) -> dict[str, int]:
        try:
            resp = await self._es.get(index=VARIANTS_INDEX, id=variant_id)
        except NotFoundError:
            return {counter: 0 for counter in COUNTERS}
        src = unwrap_es_response(resp).get("_source") or {}
        return {counter: int(src.get(counter, 0)) for counter in COUNTERS}

    async def get_results(self, variant_id: str | None = None) -> list[VariantResults]:
        """Outcome statistics for one variant, or for every active one."""
        if variant_id is not None:
            query = {"term": {"variant_id": variant_id}}
        else:
            query = {"bool": {"filter": [{"term": {"is_active": True}}]}}
        resp = await self._es.search(index=VARIANTS_INDEX, query=query, size=MAX_VARIANTS)
        return [_results_from_source(src) for src in hit_sources(resp) if src.get("variant_id")]
