"""Tests for the paper-specific parts of the paper scorer."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from ..content import UserProfile
from ..elasticsearch import PAPERS_INDEX, REVIEWS_INDEX, USERS_INDEX
from ..embedding_store import EmbeddingStore
from ..embeddings import EmbeddingConfig, LocalFallbackProvider
from ..similarity import SimilarityEngine
from .papers import PaperScorer

CONFIG = EmbeddingConfig(provider="local", model="local-test")


def _build(cls, es):
    return cls(es, EmbeddingStore(es, LocalFallbackProvider()), SimilarityEngine(es), CONFIG)


class TestPaperPopularity:
    def test_few_citations_ignored(self, fake_es):
        assert _build(PaperScorer, fake_es).popularity({"citations": 10}) == 0.0

    def test_points(self, fake_es):
        doc = {"citations": 50, "avg_rating": 4.5, "review_count": 2, "journal": "Nature"}
        expected = (min(20, 5 * math.log(50)) + 18 + 5) / 45
        assert _build(PaperScorer, fake_es).popularity(doc) == pytest.approx(expected)

    def test_rating_needs_reviews(self, fake_es):
        assert _build(PaperScorer, fake_es).popularity({"avg_rating": 5, "review_count": 0}) == 0.0

    def test_network_through_any_author(self, fake_es):
        profile = UserProfile(id="u1", followed_users=["a3"])
        scorer = _build(PaperScorer, fake_es)
        assert scorer.network({"author_ids": ["a1", "a3"]}, profile) == 1.0
        assert scorer.network({"author_ids": ["a1"]}, profile) == 0.0


class TestPaperCandidates:
    @pytest.mark.asyncio
    async def test_skips_coauthored_and_well_reviewed(self, fake_es):
        now = datetime.now(timezone.utc)
        fake_es.add(USERS_INDEX, {"id": "u1", "research_interests": ["ecology"]})
        fake_es.add(REVIEWS_INDEX, {"reviewer_id": "u1", "paper_id": "x2", "rating": 5})
        fake_es.add(REVIEWS_INDEX, {"reviewer_id": "u1", "paper_id": "x4", "rating": 2})
        for paper_id, authors in [("x1", ["a1"]), ("x2", ["a1"]), ("x3", ["u1", "a2"]), ("x4", ["a2"])]:
            fake_es.add(PAPERS_INDEX, {
                "id": paper_id,
                "title": f"Paper {paper_id}",
                "abstract": "Field study",
                "author_ids": authors,
                "created_at": (now - timedelta(days=3)).isoformat(),
            })

        scores = await _build(PaperScorer, fake_es).score_candidates("u1", 10)

        assert {s.item_id for s in scores} == {"x1", "x4"}
        assert all(s.item_type == "paper" for s in scores)
