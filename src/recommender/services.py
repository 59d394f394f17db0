"""Wiring of the engine components.

Everything is built once per process from ``Settings`` and the clients
opened in the app lifespan, then shared by the routers through
``app.state.services``.
"""

import logging
from dataclasses import dataclass

import httpx
import redis.asyncio as redis

from .config import Settings
from .lib.cache import RecommendationCache
from .lib.embedding_store import EmbeddingStore
from .lib.embeddings import (
    EmbeddingConfig,
    EmbeddingProvider,
    build_embedding_provider,
    embeddings_enabled,
)
from .lib.engine import RecommendationEngine
from .lib.experiments import ExperimentTracker
from .lib.feedback import FeedbackLedger
from .lib.scoring import ItemScorer, PaperScorer, PostScorer
from .lib.similarity import SimilarityEngine
from .security import SignedTokenVerifier

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    es: object
    embedding_config: EmbeddingConfig
    provider: EmbeddingProvider
    store: EmbeddingStore
    similarity: SimilarityEngine
    scorers: dict[str, ItemScorer]
    cache: RecommendationCache
    tracker: ExperimentTracker
    ledger: FeedbackLedger
    engine: RecommendationEngine
    identity: SignedTokenVerifier


def build_services(
    es,
    settings: Settings,
    redis_client: redis.Redis,
    http_client: httpx.AsyncClient | None = None,
) -> Services:
    embedding_config = settings.embedding_config
    provider = build_embedding_provider(
        embedding_config, http_client, timeout=settings.embedding_timeout_seconds
    )
    if not embeddings_enabled(embedding_config):
        logger.warning(
            "Semantic embeddings disabled (provider=%s); using %s provider",
            embedding_config.provider,
            provider.name,
        )

    weights = settings.scoring_weights
    store = EmbeddingStore(es, provider)
    similarity = SimilarityEngine(
        es, scan_size=settings.similarity_scan_size, min_similarity=settings.similarity_min
    )
    scorer_kwargs = dict(
        weights=weights,
        candidate_pool_size=settings.candidate_pool_size,
        embedding_timeout=settings.embedding_timeout_seconds,
    )
    scorers: dict[str, ItemScorer] = {
        "post": PostScorer(es, store, similarity, embedding_config, **scorer_kwargs),
        "paper": PaperScorer(es, store, similarity, embedding_config, **scorer_kwargs),
    }
    cache = RecommendationCache(redis_client, ttl_seconds=settings.cache_ttl_seconds)
    tracker = ExperimentTracker(es, control_weights=weights)

    return Services(
        settings=settings,
        es=es,
        embedding_config=embedding_config,
        provider=provider,
        store=store,
        similarity=similarity,
        scorers=scorers,
        cache=cache,
        tracker=tracker,
        ledger=FeedbackLedger(es, cache, tracker),
        engine=RecommendationEngine(es, scorers, cache, tracker),
        identity=SignedTokenVerifier(
            settings.auth_secret, max_age_seconds=settings.auth_token_max_age_seconds
        ),
    )
